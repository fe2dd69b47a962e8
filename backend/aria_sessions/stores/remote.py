"""Authenticated assessment store backed by the SQL database."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, ContextManager, Dict, List, Optional, TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..db.session import session_scope
from ..errors import RemoteUnavailable
from ..evaluation_type import EvaluationType
from ..models import Assessment, AssessmentStatus, StepKey
from ..repositories.assessments import AssessmentRepository, assessments

logger = logging.getLogger(__name__)

T = TypeVar("T")

SessionScope = Callable[..., ContextManager[Session]]


class RemoteAssessmentStore:
    """Runs repository calls on a worker thread so callers can await them.

    Database and configuration failures surface as :class:`RemoteUnavailable`;
    rows that are missing or owned by another account surface as
    :class:`~aria_sessions.errors.AssessmentNotFound`.
    """

    name = "remote"

    def __init__(
        self,
        repository: Optional[AssessmentRepository] = None,
        scope: Optional[SessionScope] = None,
    ) -> None:
        self._repo = repository or assessments
        self._scope = scope or session_scope

    async def _run(self, operation: str, owner_id: str, work: Callable[[Session], T], *, commit: bool = True) -> T:
        if not owner_id:
            raise RemoteUnavailable(f"{operation} requires an authenticated user.")

        def _call() -> T:
            with self._scope(commit=commit) as session:
                return work(session)

        try:
            return await asyncio.to_thread(_call)
        except (SQLAlchemyError, RuntimeError, OSError) as exc:
            logger.warning("Remote assessment store %s failed: %s", operation, exc)
            raise RemoteUnavailable(f"{operation} failed: {exc}") from exc

    async def create(self, evaluation_type: EvaluationType, owner_id: str) -> Assessment:
        return await self._run("create", owner_id, lambda s: self._repo.create(s, owner_id, evaluation_type))

    async def fetch(self, assessment_id: str, owner_id: str) -> Assessment:
        return await self._run(
            "fetch", owner_id, lambda s: self._repo.get(s, owner_id, assessment_id), commit=False
        )

    async def list(self, owner_id: str) -> List[Assessment]:
        return await self._run("list", owner_id, lambda s: self._repo.list_for_owner(s, owner_id), commit=False)

    async def update_status(self, assessment_id: str, status: AssessmentStatus, owner_id: str) -> Assessment:
        return await self._run(
            "update_status",
            owner_id,
            lambda s: self._repo.update_status(s, owner_id, assessment_id, status),
        )

    async def save_step(self, assessment_id: str, step_key: StepKey, value: Any, owner_id: str) -> None:
        await self._run(
            "save_step",
            owner_id,
            lambda s: self._repo.upsert_step(s, owner_id, assessment_id, step_key, value),
        )

    async def get_step(self, assessment_id: str, step_key: StepKey, owner_id: str) -> Any:
        return await self._run(
            "get_step",
            owner_id,
            lambda s: self._repo.get_step(s, owner_id, assessment_id, step_key),
            commit=False,
        )

    async def get_steps(self, assessment_id: str, owner_id: str) -> Dict[str, Any]:
        return await self._run(
            "get_steps", owner_id, lambda s: self._repo.get_steps(s, owner_id, assessment_id), commit=False
        )

    async def delete(self, assessment_id: str, owner_id: str) -> None:
        await self._run("delete", owner_id, lambda s: self._repo.delete(s, owner_id, assessment_id))


__all__ = ["RemoteAssessmentStore"]
