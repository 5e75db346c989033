"""Bounded log of committed edits."""

from collections import deque
from typing import Optional

import structlog

from quickedit.models.history import HistoryEntry


logger = structlog.get_logger()

DEFAULT_CAPACITY = 50
MIN_CAPACITY = 1
MAX_CAPACITY = 100


class EditHistory:
    """
    Append-only edit log; the oldest entry is evicted when full.

    Example:
        >>> history = EditHistory(capacity=2)
        >>> history.add(first); history.add(second); history.add(third)
        >>> [e.id for e in history.entries()]
        ['second-id', 'third-id']
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY):
        self._entries: deque[HistoryEntry] = deque(maxlen=self._clamp(capacity))

    @staticmethod
    def _clamp(capacity: int) -> int:
        return max(MIN_CAPACITY, min(MAX_CAPACITY, capacity))

    @property
    def capacity(self) -> int:
        return self._entries.maxlen

    def __len__(self) -> int:
        return len(self._entries)

    def set_capacity(self, capacity: int) -> int:
        """
        Resize the log, keeping the newest entries.

        Returns:
            The effective capacity (clamped to 1..100)
        """
        clamped = self._clamp(capacity)
        if clamped != self._entries.maxlen:
            self._entries = deque(self._entries, maxlen=clamped)
            logger.info("edit_history_resized", capacity=clamped, entries=len(self._entries))
        return clamped

    def add(self, entry: HistoryEntry) -> None:
        if len(self._entries) == self._entries.maxlen:
            logger.debug("edit_history_evicted", entry_id=self._entries[0].id)
        self._entries.append(entry)

    def last(self) -> Optional[HistoryEntry]:
        return self._entries[-1] if self._entries else None

    def pop_last(self) -> Optional[HistoryEntry]:
        return self._entries.pop() if self._entries else None

    def entries(self) -> list[HistoryEntry]:
        """Entries oldest first."""
        return list(self._entries)

    def for_unit(self, unit_id: str) -> list[HistoryEntry]:
        """Entries touching ``unit_id``, either as the original unit or an inserted one."""
        return [
            e for e in self._entries
            if e.unit_id == unit_id or unit_id in e.inserted_unit_ids
        ]

    def clear(self) -> None:
        self._entries.clear()
