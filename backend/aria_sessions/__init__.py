"""Assessment session storage and synchronization engine."""

from .assessment_session import AssessmentSession, SessionPointer
from .errors import (
    AssessmentNotFound,
    AssessmentStorageError,
    RemoteUnavailable,
    SerializationError,
    SessionCreationError,
)
from .evaluation_type import EvaluationType, normalize_evaluation_type
from .models import Assessment, StepKey
from .progress import ProgressResult, calculate_progress

__all__ = [
    "Assessment",
    "AssessmentNotFound",
    "AssessmentSession",
    "AssessmentStorageError",
    "EvaluationType",
    "ProgressResult",
    "RemoteUnavailable",
    "SerializationError",
    "SessionCreationError",
    "SessionPointer",
    "StepKey",
    "calculate_progress",
    "normalize_evaluation_type",
]
