"""HTTP document store backed by the SiYuan kernel API."""

import time
from typing import Any, Optional

import httpx

from quickedit.models.config import SiyuanConfig
from quickedit.models.unit import Unit
from quickedit.services.capability import CapabilityDetector
from quickedit.services.exceptions import StoreError
from quickedit.utils.ids import validate_unit_id
from quickedit.utils.logging import get_logger


logger = get_logger(__name__)

# SQL `blocks.type` codes -> node type names used by the editor DOM
NODE_TYPES = {
    "d": "NodeDocument",
    "h": "NodeHeading",
    "p": "NodeParagraph",
    "l": "NodeList",
    "i": "NodeListItem",
    "b": "NodeBlockquote",
    "c": "NodeCodeBlock",
    "t": "NodeTable",
    "m": "NodeMathBlock",
    "s": "NodeSuperBlock",
    "html": "NodeHTMLBlock",
    "tb": "NodeThematicBreak",
}

UNIT_COLUMNS = "id, parent_id, root_id, type, subtype, content, sort"

MAX_QUERY_LIMIT = 100


def clamp_limit(limit: int) -> int:
    """Clamp a query limit to 1..100."""
    return max(1, min(MAX_QUERY_LIMIT, int(limit)))


def _row_to_unit(row: dict[str, Any]) -> Unit:
    raw_type = row.get("type") or "p"
    sort = row.get("sort")
    try:
        sort = int(sort) if sort is not None else None
    except (TypeError, ValueError):
        sort = None
    return Unit(
        id=row["id"],
        content=row.get("content") or "",
        type=NODE_TYPES.get(raw_type, raw_type),
        subtype=row.get("subtype") or None,
        root_id=row.get("root_id") or None,
        parent_id=row.get("parent_id") or None,
        sort=sort,
    )


class SiyuanClient:
    """
    ``DocumentStore`` implementation over the SiYuan kernel HTTP API.

    Every identifier interpolated into SQL goes through ``validate_unit_id``
    and every limit through ``clamp_limit``.

    Example:
        >>> client = SiyuanClient(config.siyuan)
        >>> unit = await client.get_unit("20251028234416-aw9bzvx")
        >>> new_id = await client.insert_unit("New paragraph", unit.id)
    """

    def __init__(self, config: SiyuanConfig):
        """
        Initialize SiYuan client.

        Args:
            config: SiYuan configuration (endpoint, API token)
        """
        self.config = config
        self.timeout = httpx.Timeout(connect=5.0, read=30.0, write=10.0, pool=5.0)
        self.capabilities = CapabilityDetector(self.get_version)

    @property
    def base_url(self) -> str:
        return str(self.config.endpoint).rstrip("/")

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.config.token:
            headers["Authorization"] = f"Token {self.config.token}"
        return headers

    async def _post(self, operation: str, path: str, payload: Optional[dict] = None) -> Any:
        """
        POST to a kernel endpoint and unwrap ``{"code", "msg", "data"}``.

        Raises:
            StoreError: On transport errors, HTTP errors or a non-zero code
        """
        url = self.base_url + path
        logger.debug("siyuan_request", operation=operation, path=path, payload=payload)
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(url, json=payload or {}, headers=self._headers())
                response.raise_for_status()
                result = response.json()
        except httpx.HTTPStatusError as e:
            logger.error(
                "siyuan_http_error",
                operation=operation,
                status_code=e.response.status_code,
            )
            raise StoreError(operation, f"HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            logger.error("siyuan_transport_error", operation=operation, error=str(e))
            raise StoreError(operation, str(e) or type(e).__name__) from e
        except ValueError as e:
            raise StoreError(operation, f"Invalid JSON response: {e}") from e

        code = result.get("code", -1) if isinstance(result, dict) else -1
        if code != 0:
            message = result.get("msg") if isinstance(result, dict) else None
            logger.warning("siyuan_api_error", operation=operation, code=code, msg=message)
            raise StoreError(operation, message or "API returned an error", code=code)

        return result.get("data")

    async def get_version(self) -> Optional[str]:
        """Kernel version string, e.g. '3.2.1'."""
        data = await self._post("get_version", "/api/system/version")
        return data or None

    async def supports_batch_insert(self) -> bool:
        return await self.capabilities.supports_batch_insert()

    async def sql(self, stmt: str) -> list[dict[str, Any]]:
        """Run a read-only SQL query."""
        data = await self._post("query_sql", "/api/query/sql", {"stmt": stmt})
        return data or []

    async def get_unit(self, unit_id: str) -> Optional[Unit]:
        safe_id = validate_unit_id(unit_id)
        rows = await self.sql(f"SELECT {UNIT_COLUMNS} FROM blocks WHERE id = '{safe_id}'")
        return _row_to_unit(rows[0]) if rows else None

    async def query_units(
        self,
        root_id: str,
        sort: int,
        direction: str,
        limit: int,
        exclude_id: Optional[str] = None,
    ) -> list[Unit]:
        safe_root = validate_unit_id(root_id)
        safe_limit = clamp_limit(limit)
        safe_sort = int(sort)
        exclude = ""
        if exclude_id is not None:
            exclude = f" AND id != '{validate_unit_id(exclude_id)}'"

        if direction == "above":
            stmt = (
                f"SELECT {UNIT_COLUMNS} FROM blocks WHERE root_id = '{safe_root}'{exclude}"
                f" AND sort < {safe_sort} ORDER BY sort DESC LIMIT {safe_limit}"
            )
        else:
            stmt = (
                f"SELECT {UNIT_COLUMNS} FROM blocks WHERE root_id = '{safe_root}'{exclude}"
                f" AND sort > {safe_sort} ORDER BY sort ASC LIMIT {safe_limit}"
            )

        units = [_row_to_unit(row) for row in await self.sql(stmt)]
        if direction == "above":
            # Queried nearest-first
            units.reverse()
        return units

    async def list_units(self, root_id: str) -> list[Unit]:
        safe_root = validate_unit_id(root_id)
        rows = await self.sql(
            f"SELECT {UNIT_COLUMNS} FROM blocks WHERE root_id = '{safe_root}' ORDER BY sort ASC"
        )
        return [_row_to_unit(row) for row in rows]

    async def insert_unit(self, content: str, anchor_id: str) -> str:
        ids = await self._insert(content, anchor_id, "insert_unit")
        if not ids:
            raise StoreError("insert_unit", "Response did not contain an inserted unit id")
        return ids[0]

    async def batch_insert_units(self, contents: list[str], anchor_id: str) -> list[str]:
        """
        Insert all segments with one kernel call.

        Once the kernel accepted the call the content is in the document, so
        this never raises afterwards: it returns whatever ids the kernel
        reported, which may be fewer than ``contents``.
        """
        ids = await self._insert("\n\n".join(contents), anchor_id, "batch_insert_units")
        if len(ids) != len(contents):
            logger.warning(
                "batch_insert_ids_incomplete",
                expected=len(contents),
                reported=len(ids),
                anchor_id=anchor_id,
            )
        return ids

    async def _insert(self, markdown: str, anchor_id: str, operation: str) -> list[str]:
        data = await self._post(
            operation,
            "/api/block/insertBlock",
            {"dataType": "markdown", "data": markdown, "previousID": validate_unit_id(anchor_id)},
        )
        try:
            return [op["id"] for op in data[0]["doOperations"] if op.get("id")]
        except (TypeError, KeyError, IndexError):
            return []

    async def delete_unit(self, unit_id: str) -> None:
        await self._post("delete_unit", "/api/block/deleteBlock", {"id": validate_unit_id(unit_id)})

    async def batch_delete_units(self, unit_ids: list[str]) -> None:
        transactions = [
            {"doOperations": [{"action": "delete", "id": validate_unit_id(uid)} for uid in unit_ids]}
        ]
        await self._post(
            "batch_delete_units",
            "/api/transactions",
            {"session": str(int(time.time() * 1000)), "app": "quickedit", "transactions": transactions},
        )

    async def update_unit(self, unit_id: str, content: str) -> None:
        await self._post(
            "update_unit",
            "/api/block/updateBlock",
            {"dataType": "markdown", "data": content, "id": validate_unit_id(unit_id)},
        )
