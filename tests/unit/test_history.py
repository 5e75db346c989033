"""Unit tests for the bounded edit history."""

import pytest

from quickedit.models.history import HistoryEntry
from quickedit.orchestration.history import EditHistory

from fakes import PARA1_ID


def entry(index, unit_id=PARA1_ID, inserted=()):
    return HistoryEntry(
        id=f"hist_{index}",
        original_content=f"before {index}",
        modified_content=f"after {index}",
        unit_id=unit_id,
        inserted_unit_ids=list(inserted),
    )


class TestEditHistory:
    """Test EditHistory capacity and lookups."""

    def test_empty(self):
        history = EditHistory()
        assert len(history) == 0
        assert history.last() is None
        assert history.pop_last() is None
        assert history.capacity == 50

    def test_oldest_evicted_when_full(self):
        history = EditHistory(capacity=2)
        for i in range(3):
            history.add(entry(i))
        assert [e.id for e in history.entries()] == ["hist_1", "hist_2"]

    @pytest.mark.parametrize("requested,effective", [(0, 1), (-5, 1), (100, 100), (500, 100), (7, 7)])
    def test_capacity_clamped(self, requested, effective):
        assert EditHistory(capacity=requested).capacity == effective
        assert EditHistory().set_capacity(requested) == effective

    def test_shrinking_keeps_newest(self):
        history = EditHistory(capacity=5)
        for i in range(4):
            history.add(entry(i))
        history.set_capacity(2)
        assert [e.id for e in history.entries()] == ["hist_2", "hist_3"]

    def test_pop_last_removes_exactly_one(self):
        history = EditHistory()
        history.add(entry(1))
        history.add(entry(2))
        assert history.pop_last().id == "hist_2"
        assert [e.id for e in history.entries()] == ["hist_1"]

    def test_for_unit_matches_inserted_ids(self):
        history = EditHistory()
        history.add(entry(1, unit_id="u-1", inserted=["n-1"]))
        history.add(entry(2, unit_id="u-2", inserted=["n-2"]))
        assert [e.id for e in history.for_unit("n-1")] == ["hist_1"]
        assert [e.id for e in history.for_unit("u-2")] == ["hist_2"]
        assert history.for_unit("other") == []

    def test_clear(self):
        history = EditHistory()
        history.add(entry(1))
        history.clear()
        assert len(history) == 0
