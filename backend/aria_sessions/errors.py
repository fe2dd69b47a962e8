"""Error taxonomy for the assessment storage engine."""

from __future__ import annotations

from typing import Optional


class AssessmentStorageError(Exception):
    """Base class for storage engine failures."""


class AssessmentNotFound(AssessmentStorageError, LookupError):
    """The assessment (or one of its rows) does not exist for this owner."""

    def __init__(self, assessment_id: str, message: Optional[str] = None) -> None:
        self.assessment_id = assessment_id
        super().__init__(message or f"Assessment '{assessment_id}' was not found.")


class RemoteUnavailable(AssessmentStorageError):
    """No authenticated session, or the database could not be reached."""


class SerializationError(AssessmentStorageError):
    """A cached value could not be encoded or decoded."""

    def __init__(self, key: str, message: str) -> None:
        self.key = key
        super().__init__(f"{key}: {message}")


class SessionCreationError(AssessmentStorageError):
    """Neither the remote nor the demo store could create a session."""


__all__ = [
    "AssessmentNotFound",
    "AssessmentStorageError",
    "RemoteUnavailable",
    "SerializationError",
    "SessionCreationError",
]
