"""Evaluation type values and the normalizer for free-text input.

Stored values come from several generations of the wizard: plain strings,
JSON-encoded strings (``'"Initial Assessment"'``), doubly encoded strings and
short forms such as ``"initial"`` or ``"re-assessment"``. Everything funnels
through :func:`normalize_evaluation_type`, which always returns one of the two
canonical values.
"""

from __future__ import annotations

import logging
import re
from enum import Enum
from typing import Any

from .config import get_settings

logger = logging.getLogger(__name__)

_QUOTES = ("'", '"')
_REASSESSMENT_PATTERN = re.compile(r"\bre[\s_-]?assess")


class EvaluationType(str, Enum):
    INITIAL = "Initial Assessment"
    REASSESSMENT = "Reassessment"

    def __str__(self) -> str:
        return self.value


def _warn(message: str, *args: Any) -> None:
    try:
        production = get_settings().is_production
    except RuntimeError:
        production = False
    if not production:
        logger.warning(message, *args)


def _unwrap_quotes(value: str) -> str:
    text = value.strip()
    while len(text) >= 2 and text[0] == text[-1] and text[0] in _QUOTES:
        text = text[1:-1].strip()
    # A lone leftover quote ("""Initial Assessment"") is noise as well.
    return text.strip("'\"").strip()


def normalize_evaluation_type(value: Any) -> EvaluationType:
    """Map arbitrary input onto :class:`EvaluationType`; never raises."""
    if isinstance(value, EvaluationType):
        return value
    if not isinstance(value, str):
        _warn("Non-string evaluation type received: %r", value)
        return EvaluationType.INITIAL

    lowered = _unwrap_quotes(value).lower()
    if _REASSESSMENT_PATTERN.search(lowered):
        return EvaluationType.REASSESSMENT
    if "initial" in lowered:
        return EvaluationType.INITIAL

    _warn("Unrecognized evaluation type %r, defaulting to %r", value, EvaluationType.INITIAL.value)
    return EvaluationType.INITIAL


def is_reassessment(value: Any) -> bool:
    return normalize_evaluation_type(value) is EvaluationType.REASSESSMENT


__all__ = ["EvaluationType", "is_reassessment", "normalize_evaluation_type"]
