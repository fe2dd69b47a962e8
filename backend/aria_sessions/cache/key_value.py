"""Crash-safe JSON cache over a raw string key/value backend.

Persistence here is a convenience, never a correctness boundary: every public
method returns a value or a flag and none of them raise. Corrupt entries are
removed on read so they are only reported once.
"""

from __future__ import annotations

import json
import logging
from typing import Any, List, Optional

from ..errors import SerializationError
from .storage import StorageBackend

logger = logging.getLogger(__name__)

SESSION_POINTER_KEY = "aria_current_assessment_id"
EVALUATION_TYPE_KEY = "aria_evaluation_type"
DEMO_ASSESSMENTS_KEY = "aria_demo_assessments"
CACHE_PREFIX = "cache:"

_STRUCTURED_PREFIXES = ("{", "[")


def assessment_cache_key(assessment_id: str) -> str:
    return f"{CACHE_PREFIX}assessment:{assessment_id}"


def step_cache_key(assessment_id: str, step_key: str) -> str:
    return f"{CACHE_PREFIX}step:{assessment_id}:{step_key}"


def step_cache_prefix(assessment_id: str) -> str:
    return f"{CACHE_PREFIX}step:{assessment_id}:"


def _decode(key: str, raw: Any) -> Any:
    if not isinstance(raw, str):
        raise SerializationError(key, f"expected stored text, found {type(raw).__name__}")
    try:
        return json.loads(raw)
    except json.JSONDecodeError as exc:
        if raw.lstrip().startswith(_STRUCTURED_PREFIXES):
            raise SerializationError(key, f"truncated or invalid JSON ({exc.msg})") from exc
        # Legacy plain-string value, e.g. a bare assessment id.
        return raw


def _encode(key: str, value: Any) -> str:
    try:
        return json.dumps(value)
    except (TypeError, ValueError) as exc:
        raise SerializationError(key, str(exc)) from exc


class KeyValueCache:
    """JSON view over a :class:`StorageBackend` that never propagates errors."""

    def __init__(self, backend: StorageBackend) -> None:
        self._backend = backend

    @property
    def backend(self) -> StorageBackend:
        return self._backend

    def get(self, key: str, fallback: Any = None) -> Any:
        try:
            raw = self._backend.get_item(key)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Failed to read cache key %s: %s", key, exc)
            return fallback
        if raw is None:
            return fallback
        try:
            return _decode(key, raw)
        except SerializationError as exc:
            logger.warning("Removing corrupt cache entry %s", exc)
            self.remove(key)
            return fallback

    def set(self, key: str, value: Any) -> bool:
        try:
            encoded = _encode(key, value)
        except SerializationError as exc:
            logger.error("Refusing to cache unserializable value for %s", exc)
            return False
        return self._write(key, encoded)

    def get_string(self, key: str, fallback: Optional[str] = None) -> Optional[str]:
        """Read a raw string without JSON decoding (pointer-style keys)."""
        try:
            raw = self._backend.get_item(key)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Failed to read cache key %s: %s", key, exc)
            return fallback
        return raw if isinstance(raw, str) and raw else fallback

    def set_string(self, key: str, value: str) -> bool:
        return self._write(key, value)

    def remove(self, key: str) -> bool:
        try:
            self._backend.remove_item(key)
            return True
        except Exception as exc:  # noqa: BLE001
            logger.warning("Failed to remove cache key %s: %s", key, exc)
            return False

    def keys(self) -> List[str]:
        try:
            return list(self._backend.keys())
        except Exception as exc:  # noqa: BLE001
            logger.warning("Failed to list cache keys: %s", exc)
            return []

    def clear_prefix(self, *prefixes: str) -> int:
        """Remove every key starting with one of ``prefixes``; returns the count removed."""
        removed = 0
        for key in self.keys():
            if key.startswith(prefixes) and self.remove(key):
                removed += 1
        return removed

    def _write(self, key: str, encoded: str) -> bool:
        try:
            self._backend.set_item(key, encoded)
            return True
        except Exception as exc:  # noqa: BLE001
            logger.error("Failed to write cache key %s: %s", key, exc)
            return False


__all__ = [
    "CACHE_PREFIX",
    "DEMO_ASSESSMENTS_KEY",
    "EVALUATION_TYPE_KEY",
    "KeyValueCache",
    "SESSION_POINTER_KEY",
    "assessment_cache_key",
    "step_cache_prefix",
    "step_cache_key",
]
