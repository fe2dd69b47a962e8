"""Local key/value caching used in front of the assessment stores."""

from .key_value import (
    DEMO_ASSESSMENTS_KEY,
    EVALUATION_TYPE_KEY,
    SESSION_POINTER_KEY,
    KeyValueCache,
    assessment_cache_key,
    step_cache_key,
)
from .storage import JsonFileStorage, MemoryStorage, StorageBackend, StorageQuotaExceeded

__all__ = [
    "DEMO_ASSESSMENTS_KEY",
    "EVALUATION_TYPE_KEY",
    "JsonFileStorage",
    "KeyValueCache",
    "MemoryStorage",
    "SESSION_POINTER_KEY",
    "StorageBackend",
    "StorageQuotaExceeded",
    "assessment_cache_key",
    "step_cache_key",
]
