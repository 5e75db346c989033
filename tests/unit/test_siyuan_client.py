"""Unit tests for the SiYuan kernel document store."""

from unittest.mock import AsyncMock, Mock, patch

import httpx
import pytest

from quickedit.models.config import SiyuanConfig
from quickedit.services.exceptions import InvalidUnitIdError, StoreError
from quickedit.services.siyuan_client import SiyuanClient, clamp_limit

from fakes import DOC_ID, PARA1_ID, PARA2_ID


def kernel_response(data=None, code=0, msg=""):
    response = Mock()
    response.status_code = 200
    response.raise_for_status = Mock()
    response.json = Mock(return_value={"code": code, "msg": msg, "data": data})
    return response


def create_mock_client(*responses):
    mock_client = AsyncMock()
    mock_client.post = AsyncMock(side_effect=list(responses))
    mock_client.__aenter__ = AsyncMock(return_value=mock_client)
    mock_client.__aexit__ = AsyncMock(return_value=None)
    return mock_client


def row(unit_id, type_="p", content="text", sort=10, subtype=""):
    return {
        "id": unit_id,
        "parent_id": DOC_ID,
        "root_id": DOC_ID,
        "type": type_,
        "subtype": subtype,
        "content": content,
        "sort": sort,
    }


@pytest.fixture
def client():
    return SiyuanClient(SiyuanConfig(endpoint="http://127.0.0.1:6806", token="secret"))


class TestSiyuanRequests:
    """Test request envelope handling."""

    @pytest.mark.asyncio
    async def test_token_header_and_url(self, client):
        mock_client = create_mock_client(kernel_response("3.2.1"))

        with patch("httpx.AsyncClient", return_value=mock_client):
            assert await client.get_version() == "3.2.1"

        args, kwargs = mock_client.post.call_args
        assert args[0] == "http://127.0.0.1:6806/api/system/version"
        assert kwargs["headers"]["Authorization"] == "Token secret"

    @pytest.mark.asyncio
    async def test_nonzero_code_raises_store_error(self, client):
        mock_client = create_mock_client(kernel_response(code=-1, msg="block not found"))

        with patch("httpx.AsyncClient", return_value=mock_client):
            with pytest.raises(StoreError) as exc_info:
                await client.delete_unit(PARA1_ID)

        assert exc_info.value.code == -1
        assert exc_info.value.message == "block not found"
        assert exc_info.value.operation == "delete_unit"

    @pytest.mark.asyncio
    async def test_transport_error_raises_store_error(self, client):
        mock_client = AsyncMock()
        mock_client.post = AsyncMock(side_effect=httpx.ConnectError("Connection refused"))
        mock_client.__aenter__ = AsyncMock(return_value=mock_client)
        mock_client.__aexit__ = AsyncMock(return_value=None)

        with patch("httpx.AsyncClient", return_value=mock_client):
            with pytest.raises(StoreError, match="Connection refused"):
                await client.get_version()

    @pytest.mark.asyncio
    async def test_http_status_error(self, client):
        response = kernel_response()
        error_response = Mock()
        error_response.status_code = 401
        response.raise_for_status = Mock(
            side_effect=httpx.HTTPStatusError("Unauthorized", request=Mock(), response=error_response)
        )

        with patch("httpx.AsyncClient", return_value=create_mock_client(response)):
            with pytest.raises(StoreError, match="HTTP 401"):
                await client.update_unit(PARA1_ID, "x")


class TestSiyuanQueries:
    """Test SQL-backed reads."""

    @pytest.mark.asyncio
    async def test_get_unit_maps_type_codes(self, client):
        mock_client = create_mock_client(kernel_response([row(PARA1_ID, type_="h", subtype="h2", content="Title")]))

        with patch("httpx.AsyncClient", return_value=mock_client):
            unit = await client.get_unit(PARA1_ID)

        assert unit.type == "NodeHeading"
        assert unit.subtype == "h2"
        assert unit.root_id == DOC_ID
        stmt = mock_client.post.call_args.kwargs["json"]["stmt"]
        assert f"id = '{PARA1_ID}'" in stmt

    @pytest.mark.asyncio
    async def test_get_unit_missing(self, client):
        with patch("httpx.AsyncClient", return_value=create_mock_client(kernel_response([]))):
            assert await client.get_unit(PARA1_ID) is None

    @pytest.mark.asyncio
    async def test_invalid_id_never_reaches_kernel(self, client):
        mock_client = create_mock_client()
        with patch("httpx.AsyncClient", return_value=mock_client):
            with pytest.raises(InvalidUnitIdError):
                await client.get_unit("1' OR '1'='1")
        mock_client.post.assert_not_called()

    @pytest.mark.asyncio
    async def test_query_above_returned_in_document_order(self, client):
        rows = [row(PARA2_ID, sort=30), row(PARA1_ID, sort=20)]
        mock_client = create_mock_client(kernel_response(rows))

        with patch("httpx.AsyncClient", return_value=mock_client):
            units = await client.query_units(DOC_ID, 40, "above", 500, exclude_id=PARA1_ID)

        assert [u.id for u in units] == [PARA1_ID, PARA2_ID]
        stmt = mock_client.post.call_args.kwargs["json"]["stmt"]
        assert "sort < 40 ORDER BY sort DESC LIMIT 100" in stmt
        assert f"id != '{PARA1_ID}'" in stmt

    @pytest.mark.asyncio
    async def test_query_below(self, client):
        mock_client = create_mock_client(kernel_response([row(PARA2_ID, sort=30)]))

        with patch("httpx.AsyncClient", return_value=mock_client):
            await client.query_units(DOC_ID, 20, "below", 3)

        stmt = mock_client.post.call_args.kwargs["json"]["stmt"]
        assert "sort > 20 ORDER BY sort ASC LIMIT 3" in stmt

    @pytest.mark.parametrize("limit,expected", [(0, 1), (-3, 1), (5, 5), (100, 100), (101, 100)])
    def test_clamp_limit(self, limit, expected):
        assert clamp_limit(limit) == expected


class TestSiyuanMutations:
    """Test block insert and delete calls."""

    @pytest.mark.asyncio
    async def test_insert_returns_new_id(self, client):
        data = [{"doOperations": [{"action": "insert", "id": "20250102000000-new0001"}]}]
        mock_client = create_mock_client(kernel_response(data))

        with patch("httpx.AsyncClient", return_value=mock_client):
            new_id = await client.insert_unit("Hello", PARA1_ID)

        assert new_id == "20250102000000-new0001"
        payload = mock_client.post.call_args.kwargs["json"]
        assert payload == {"dataType": "markdown", "data": "Hello", "previousID": PARA1_ID}

    @pytest.mark.asyncio
    async def test_insert_without_id_raises(self, client):
        with patch("httpx.AsyncClient", return_value=create_mock_client(kernel_response([]))):
            with pytest.raises(StoreError, match="inserted unit id"):
                await client.insert_unit("Hello", PARA1_ID)

    @pytest.mark.asyncio
    async def test_batch_insert_returns_reported_ids(self, client):
        """A successful call never raises, even when fewer ids come back than segments."""
        data = [{"doOperations": [{"action": "insert", "id": "20250102000000-new0001"}]}]
        mock_client = create_mock_client(kernel_response(data))
        with patch("httpx.AsyncClient", return_value=mock_client):
            ids = await client.batch_insert_units(["A", "B"], PARA1_ID)

        assert ids == ["20250102000000-new0001"]
        assert mock_client.post.await_count == 1
        payload = mock_client.post.call_args.kwargs["json"]
        assert payload["data"] == "A\n\nB"

    @pytest.mark.asyncio
    async def test_batch_insert_without_ids_returns_empty(self, client):
        with patch("httpx.AsyncClient", return_value=create_mock_client(kernel_response([]))):
            assert await client.batch_insert_units(["A", "B"], PARA1_ID) == []

    @pytest.mark.asyncio
    async def test_batch_delete_single_transaction(self, client):
        mock_client = create_mock_client(kernel_response(None))

        with patch("httpx.AsyncClient", return_value=mock_client):
            await client.batch_delete_units([PARA1_ID, PARA2_ID])

        args, kwargs = mock_client.post.call_args
        assert args[0].endswith("/api/transactions")
        operations = kwargs["json"]["transactions"][0]["doOperations"]
        assert [op["id"] for op in operations] == [PARA1_ID, PARA2_ID]
        assert all(op["action"] == "delete" for op in operations)

    @pytest.mark.asyncio
    async def test_supports_batch_insert_checks_version_once(self, client):
        mock_client = create_mock_client(kernel_response("3.2.1"))

        with patch("httpx.AsyncClient", return_value=mock_client):
            assert await client.supports_batch_insert() is True
            assert await client.supports_batch_insert() is True

        assert mock_client.post.await_count == 1
