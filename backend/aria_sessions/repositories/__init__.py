"""SQL repositories used by the remote assessment store."""

from .assessments import AssessmentRepository, assessments

__all__ = ["AssessmentRepository", "assessments"]
