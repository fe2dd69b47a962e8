"""One-shot import of the flat ``aria-*`` local storage layout into step records.

Before the per-step model, every wizard page wrote its form to its own local
storage key (``aria-goals``, ``aria-risk-assessment``, ...), sometimes wrapped
in a ``{"data": ..., "savedAt": ..., "version": ...}`` envelope. When a *new*
assessment is created those keys are replayed as step writes and then dropped.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional

from .cache.key_value import EVALUATION_TYPE_KEY, SESSION_POINTER_KEY, KeyValueCache
from .evaluation_type import normalize_evaluation_type
from .models import StepKey
from .telemetry import emit_event

logger = logging.getLogger(__name__)

LEGACY_KEY_MAP: Dict[str, StepKey] = {
    "aria-client-info": StepKey.CLIENT_INFO,
    "aria-background-history": StepKey.BACKGROUND_HISTORY,
    "aria-assessment-context": StepKey.EVALUATION,
    "aria-domains": StepKey.DOMAINS,
    "aria-abc-observation": StepKey.ABC_OBSERVATION,
    "aria-risk-assessment": StepKey.RISK_ASSESSMENT,
    "aria-goals": StepKey.GOALS,
    "aria-service-plan": StepKey.SERVICE_PLAN,
    "aria-cpt-authorization": StepKey.CPT_AUTHORIZATION,
    "aria-medical-necessity": StepKey.MEDICAL_NECESSITY,
}

LEGACY_POINTER_KEYS = ("assessment_id", "aria_assessment_id", "aria_active_assessment_id")

_POINTER_PATTERN = re.compile(r"^([a-f0-9-]{36}|demo-[A-Za-z0-9-]+)$", re.IGNORECASE)

StepWriter = Callable[[StepKey, Any], Awaitable[None]]


@dataclass
class MigrationReport:
    assessment_id: str
    migrated: List[StepKey] = field(default_factory=list)
    failed: List[StepKey] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.migrated and not self.failed


def _unwrap_envelope(value: Any) -> Any:
    if isinstance(value, Mapping) and "data" in value and ("savedAt" in value or "version" in value):
        return value["data"]
    return value


_EVALUATION_TYPE_FIELDS = ("assessmentType", "evaluationType")


def _normalize_type_fields(value: Any) -> Any:
    """Return a copy with every legacy evaluation type string normalized."""
    if isinstance(value, Mapping):
        normalized: Dict[str, Any] = {}
        for key, item in value.items():
            if key in _EVALUATION_TYPE_FIELDS and isinstance(item, str):
                normalized[key] = normalize_evaluation_type(item).value
            else:
                normalized[key] = _normalize_type_fields(item)
        return normalized
    if isinstance(value, list):
        return [_normalize_type_fields(item) for item in value]
    return value


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, (str, list, dict)):
        return len(value) == 0
    return False


class LegacyMigrator:
    """Replays legacy keys through a step writer; failures never abort the batch."""

    def __init__(self, cache: KeyValueCache, key_map: Optional[Mapping[str, StepKey]] = None) -> None:
        self._cache = cache
        self._key_map = dict(key_map or LEGACY_KEY_MAP)

    def pending(self) -> Dict[StepKey, Any]:
        """Legacy payloads currently present in storage, keyed by step."""
        found: Dict[StepKey, Any] = {}
        for legacy_key, step_key in self._key_map.items():
            value = _unwrap_envelope(self._cache.get(legacy_key))
            if not _is_blank(value):
                found[step_key] = _normalize_type_fields(value)
        return found

    async def migrate(self, assessment_id: str, write: StepWriter) -> MigrationReport:
        report = MigrationReport(assessment_id=assessment_id)
        legacy_keys = {step: key for key, step in self._key_map.items()}
        payloads = self.pending()
        if not payloads:
            return report

        steps = list(payloads)
        results = await asyncio.gather(
            *(write(step, payloads[step]) for step in steps),
            return_exceptions=True,
        )
        for step, result in zip(steps, results):
            if isinstance(result, BaseException):
                logger.warning(
                    "Legacy migration of %s into %s failed: %s", step.value, assessment_id, result
                )
                report.failed.append(step)
                continue
            report.migrated.append(step)
            self._cache.remove(legacy_keys[step])

        emit_event(
            "legacy_migration_completed",
            assessment_id=assessment_id,
            migrated=[step.value for step in report.migrated],
            failed=[step.value for step in report.failed],
        )
        return report


def _clean_pointer(raw: Optional[str]) -> Optional[str]:
    if raw is None:
        return None
    value = raw.strip()
    if value.startswith(("{", "[")) or value in ("", "null", "undefined"):
        try:
            parsed = json.loads(value)
        except json.JSONDecodeError:
            return None
        if isinstance(parsed, Mapping) and isinstance(parsed.get("id"), str):
            return _clean_pointer(parsed["id"])
        return None
    value = value.strip("'\"")
    return value if _POINTER_PATTERN.match(value) else None


def normalize_legacy_pointers(cache: KeyValueCache) -> Optional[str]:
    """Fold old pointer keys into the current-session pointer and tidy stored values.

    Returns the resulting current-session id, if any.
    """
    raw_current = cache.get_string(SESSION_POINTER_KEY)
    current = _clean_pointer(raw_current)
    if raw_current is not None and current != raw_current:
        logger.info("Replacing malformed session pointer %r", raw_current)
        if current:
            cache.set_string(SESSION_POINTER_KEY, current)
        else:
            cache.remove(SESSION_POINTER_KEY)

    for legacy_key in LEGACY_POINTER_KEYS:
        raw = cache.get_string(legacy_key)
        if raw is None:
            continue
        candidate = _clean_pointer(raw)
        if candidate and not current:
            logger.info("Migrating legacy session pointer from %s", legacy_key)
            cache.set_string(SESSION_POINTER_KEY, candidate)
            current = candidate
        cache.remove(legacy_key)

    raw_type = cache.get_string(EVALUATION_TYPE_KEY)
    if raw_type is not None:
        normalized = normalize_evaluation_type(raw_type).value
        if normalized != raw_type:
            cache.set_string(EVALUATION_TYPE_KEY, normalized)
    return current


__all__ = [
    "LEGACY_KEY_MAP",
    "LEGACY_POINTER_KEYS",
    "LegacyMigrator",
    "MigrationReport",
    "normalize_legacy_pointers",
]
