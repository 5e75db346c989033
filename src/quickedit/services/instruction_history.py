"""Recent-instruction history and last-used preset, persisted in a key-value store."""

import time
from typing import Literal, Optional

import structlog
from pydantic import BaseModel, Field, ValidationError

from quickedit.services.kv_store import KeyValueStore


logger = structlog.get_logger()

HISTORY_KEY = "instruction_history"
LAST_PRESET_KEY = "last_preset"
LAST_ACTION_MODE_KEY = "last_action_mode"
MAX_INSTRUCTIONS = 30


class InstructionEntry(BaseModel):
    """One submitted instruction."""

    text: str = Field(..., min_length=1)
    timestamp: float = Field(default_factory=time.time)

    model_config = {"frozen": True}


class InstructionHistory:
    """
    FIFO list of recently submitted instructions (oldest first).

    Consecutive duplicates are skipped and the list keeps the newest
    ``max_entries``. Invalid persisted entries are dropped on load.

    Example:
        >>> history = InstructionHistory(MemoryStore())
        >>> history.add("Make it formal")
        >>> history.navigate(-1, "up")
        (0, 'Make it formal')
    """

    def __init__(self, store: KeyValueStore, max_entries: int = MAX_INSTRUCTIONS):
        self.store = store
        self.max_entries = max_entries
        self._entries = self._load()

    def _load(self) -> list[InstructionEntry]:
        raw = self.store.get(HISTORY_KEY, [])
        if not isinstance(raw, list):
            logger.warning("instruction_history_invalid", type=type(raw).__name__)
            return []
        entries = []
        for item in raw:
            try:
                entries.append(InstructionEntry.model_validate(item))
            except ValidationError:
                continue
        return entries[-self.max_entries:]

    def _save(self) -> None:
        self.store.set(HISTORY_KEY, [e.model_dump() for e in self._entries])

    @property
    def entries(self) -> list[InstructionEntry]:
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def add(self, text: str) -> None:
        """Record an instruction; blanks and repeats of the newest entry are ignored."""
        trimmed = text.strip()
        if not trimmed:
            return
        if self._entries and self._entries[-1].text == trimmed:
            return
        self._entries.append(InstructionEntry(text=trimmed))
        if len(self._entries) > self.max_entries:
            self._entries = self._entries[-self.max_entries:]
        self._save()

    def clear(self) -> None:
        self._entries = []
        self._save()

    def navigate(self, index: int, direction: Literal["up", "down"]) -> Optional[tuple[int, str]]:
        """
        Step through history for up/down key browsing.

        Args:
            index: Current browsing index, -1 when not browsing
            direction: "up" for older, "down" for newer

        Returns:
            (new_index, text), or None at a boundary
        """
        if not self._entries:
            return None
        if direction == "up":
            if index == -1:
                new_index = len(self._entries) - 1
            elif index > 0:
                new_index = index - 1
            else:
                return None
        else:
            if index == -1 or index >= len(self._entries) - 1:
                return None
            new_index = index + 1
        return new_index, self._entries[new_index].text

    @property
    def last_preset(self) -> Optional[str]:
        return self.store.get(LAST_PRESET_KEY)

    @last_preset.setter
    def last_preset(self, preset_id: Optional[str]) -> None:
        if preset_id is None:
            self.store.delete(LAST_PRESET_KEY)
        else:
            self.store.set(LAST_PRESET_KEY, preset_id)

    @property
    def last_action_mode(self) -> str:
        mode = self.store.get(LAST_ACTION_MODE_KEY, "replace")
        return mode if mode in ("replace", "insert") else "replace"

    @last_action_mode.setter
    def last_action_mode(self, mode: str) -> None:
        self.store.set(LAST_ACTION_MODE_KEY, mode)
