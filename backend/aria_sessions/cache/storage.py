"""Raw string key/value backends standing in for browser local storage."""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Protocol

logger = logging.getLogger(__name__)


class StorageQuotaExceeded(OSError):
    """Raised when a write would exceed the backend's configured capacity."""


class StorageBackend(Protocol):
    """The only primitive the cache needs: string values addressed by key."""

    def get_item(self, key: str) -> Optional[str]:  # pragma: no cover - protocol definition
        ...

    def set_item(self, key: str, value: str) -> None:  # pragma: no cover - protocol definition
        ...

    def remove_item(self, key: str) -> None:  # pragma: no cover - protocol definition
        ...

    def keys(self) -> List[str]:  # pragma: no cover - protocol definition
        ...


def _size(items: Dict[str, str]) -> int:
    return sum(len(key) + len(value) for key, value in items.items())


class MemoryStorage:
    """Process-local storage, optionally capped like a browser quota."""

    def __init__(self, initial: Optional[Dict[str, str]] = None, *, max_bytes: Optional[int] = None) -> None:
        self._items: Dict[str, str] = dict(initial or {})
        self._max_bytes = max_bytes

    def get_item(self, key: str) -> Optional[str]:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        if self._max_bytes is not None:
            projected = dict(self._items)
            projected[key] = value
            if _size(projected) > self._max_bytes:
                raise StorageQuotaExceeded(f"Writing '{key}' exceeds the {self._max_bytes} byte quota.")
        self._items[key] = value

    def remove_item(self, key: str) -> None:
        self._items.pop(key, None)

    def keys(self) -> List[str]:
        return list(self._items)

    def __iter__(self) -> Iterator[str]:
        return iter(self.keys())

    def __len__(self) -> int:
        return len(self._items)


class JsonFileStorage:
    """One JSON document per browser profile, rewritten on every mutation."""

    def __init__(self, path: Path) -> None:
        self._path = path
        self._lock = threading.RLock()

    @property
    def path(self) -> Path:
        return self._path

    def _load_unlocked(self) -> Dict[str, str]:
        if not self._path.exists():
            return {}
        try:
            with self._path.open("r", encoding="utf-8") as handle:
                raw = json.load(handle)
        except json.JSONDecodeError:
            logger.warning("Profile storage %s is unreadable; starting from an empty store", self._path)
            return {}
        if not isinstance(raw, dict):
            logger.warning("Profile storage %s does not hold a mapping; ignoring it", self._path)
            return {}
        return {str(key): value for key, value in raw.items() if isinstance(value, str)}

    def _write_unlocked(self, items: Dict[str, str]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
        with tmp_path.open("w", encoding="utf-8") as handle:
            json.dump(items, handle, indent=2, sort_keys=True)
        tmp_path.replace(self._path)

    def get_item(self, key: str) -> Optional[str]:
        with self._lock:
            return self._load_unlocked().get(key)

    def set_item(self, key: str, value: str) -> None:
        with self._lock:
            items = self._load_unlocked()
            items[key] = value
            self._write_unlocked(items)

    def remove_item(self, key: str) -> None:
        with self._lock:
            items = self._load_unlocked()
            if items.pop(key, None) is not None:
                self._write_unlocked(items)

    def keys(self) -> List[str]:
        with self._lock:
            return list(self._load_unlocked())


__all__ = ["JsonFileStorage", "MemoryStorage", "StorageBackend", "StorageQuotaExceeded"]
