"""Key-value stores for small persisted preferences.

Read and write failures never propagate: a missing or unreadable key
yields the caller's default, and a failed write is logged.
"""

import json
import os
from pathlib import Path
from typing import Any, Optional, Protocol

import structlog


logger = structlog.get_logger()


class KeyValueStore(Protocol):
    """Preference store injected into the engine."""

    def get(self, key: str, default: Any = None) -> Any:
        """Value for ``key``, or ``default`` if missing or unreadable."""
        ...

    def set(self, key: str, value: Any) -> bool:
        """Store a JSON-serializable value; False if the write failed."""
        ...

    def delete(self, key: str) -> bool:
        """Remove ``key``; False if the write failed."""
        ...


class MemoryStore:
    """In-process store; nothing survives the process."""

    def __init__(self, initial: Optional[dict[str, Any]] = None) -> None:
        self._data: dict[str, Any] = dict(initial or {})

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def set(self, key: str, value: Any) -> bool:
        self._data[key] = value
        return True

    def delete(self, key: str) -> bool:
        self._data.pop(key, None)
        return True


class JsonFileStore:
    """
    Store backed by one JSON object on disk, written with temp-file-rename.

    Example:
        >>> store = JsonFileStore(Path("~/.config/quickedit/state.json").expanduser())
        >>> store.set("last_preset", "formal")
        True
        >>> store.get("last_preset", "default")
        'formal'
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self._cache: Optional[dict[str, Any]] = None

    def _load(self) -> dict[str, Any]:
        if self._cache is not None:
            return self._cache
        data: dict[str, Any] = {}
        if self.path.exists():
            try:
                loaded = json.loads(self.path.read_text(encoding="utf-8"))
                if isinstance(loaded, dict):
                    data = loaded
                else:
                    logger.warning("kv_store_invalid_format", path=str(self.path))
            except (OSError, ValueError) as e:
                logger.warning("kv_store_read_failed", path=str(self.path), error=str(e))
        self._cache = data
        return data

    def _save(self, data: dict[str, Any]) -> bool:
        temp_path = self.path.parent / f".{self.path.name}.tmp.{os.getpid()}"
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            temp_path.write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")
            temp_path.replace(self.path)
        except (OSError, TypeError, ValueError) as e:
            if temp_path.exists():
                temp_path.unlink()
            logger.error("kv_store_write_failed", path=str(self.path), error=str(e))
            return False
        logger.debug("kv_store_write_success", path=str(self.path), keys=len(data))
        return True

    def get(self, key: str, default: Any = None) -> Any:
        return self._load().get(key, default)

    def set(self, key: str, value: Any) -> bool:
        data = dict(self._load())
        data[key] = value
        if not self._save(data):
            return False
        self._cache = data
        return True

    def delete(self, key: str) -> bool:
        data = dict(self._load())
        if key not in data:
            return True
        del data[key]
        if not self._save(data):
            return False
        self._cache = data
        return True
