"""Capability shared by the remote and demo assessment stores."""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Protocol

from ..evaluation_type import EvaluationType
from ..models import Assessment, AssessmentStatus, StepKey


class AssessmentStore(Protocol):
    """Operations the session orchestrator routes to per call."""

    name: str

    async def create(self, evaluation_type: EvaluationType, owner_id: str) -> Assessment:  # pragma: no cover
        ...

    async def fetch(self, assessment_id: str, owner_id: str) -> Assessment:  # pragma: no cover
        ...

    async def list(self, owner_id: str) -> List[Assessment]:  # pragma: no cover
        ...

    async def update_status(self, assessment_id: str, status: AssessmentStatus, owner_id: str) -> Assessment:  # pragma: no cover
        ...

    async def save_step(self, assessment_id: str, step_key: StepKey, value: Any, owner_id: str) -> Optional[bool]:  # pragma: no cover
        """Persist one step. ``False`` means accepted but not persisted (local storage full)."""
        ...

    async def get_step(self, assessment_id: str, step_key: StepKey, owner_id: str) -> Any:  # pragma: no cover
        ...

    async def get_steps(self, assessment_id: str, owner_id: str) -> Dict[str, Any]:  # pragma: no cover
        ...

    async def delete(self, assessment_id: str, owner_id: str) -> None:  # pragma: no cover
        ...


__all__ = ["AssessmentStore"]
