"""Backend stores the session orchestrator routes between."""

from .base import AssessmentStore
from .demo import DemoAssessmentStore
from .remote import RemoteAssessmentStore

__all__ = ["AssessmentStore", "DemoAssessmentStore", "RemoteAssessmentStore"]
