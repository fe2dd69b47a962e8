"""Database-backed assessment repository."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from ..db.models import AssessmentModel, AssessmentStepModel
from ..errors import AssessmentNotFound
from ..evaluation_type import EvaluationType, normalize_evaluation_type
from ..models import Assessment, AssessmentStatus, StepKey, derive_title


def _now() -> datetime:
    return datetime.now(timezone.utc)


class AssessmentRepository:
    """Row-level operations; callers own the session and its transaction."""

    def create(self, session: Session, owner_id: str, evaluation_type: EvaluationType) -> Assessment:
        now = _now()
        model = AssessmentModel(
            owner_id=owner_id,
            evaluation_type=normalize_evaluation_type(evaluation_type).value,
            status="draft",
            created_at=now,
            updated_at=now,
        )
        session.add(model)
        session.flush()
        return self._to_domain(model, steps={})

    def get(self, session: Session, owner_id: str, assessment_id: str) -> Assessment:
        model = self._require_model(session, owner_id, assessment_id)
        return self._to_domain(model)

    def list_for_owner(self, session: Session, owner_id: str) -> List[Assessment]:
        stmt = (
            select(AssessmentModel)
            .where(AssessmentModel.owner_id == owner_id)
            .options(selectinload(AssessmentModel.steps))
            .order_by(AssessmentModel.updated_at.desc(), AssessmentModel.created_at.desc())
        )
        return [self._to_domain(model) for model in session.execute(stmt).scalars().all()]

    def update_status(
        self,
        session: Session,
        owner_id: str,
        assessment_id: str,
        status: AssessmentStatus,
    ) -> Assessment:
        model = self._require_model(session, owner_id, assessment_id)
        model.status = status
        model.updated_at = _now()
        session.flush()
        return self._to_domain(model)

    def upsert_step(
        self,
        session: Session,
        owner_id: str,
        assessment_id: str,
        step_key: StepKey,
        payload: Any,
    ) -> None:
        model = self._require_model(session, owner_id, assessment_id)
        step = next((row for row in model.steps if row.step_key == step_key.value), None)
        now = _now()
        if step is None:
            step = AssessmentStepModel(step_key=step_key.value)
            model.steps.append(step)
        step.payload = payload
        step.updated_at = now

        if step_key is StepKey.CLIENT_INFO:
            model.title = derive_title(payload, model.evaluation_type)
        model.updated_at = now
        session.flush()

    def get_step(self, session: Session, owner_id: str, assessment_id: str, step_key: StepKey) -> Any:
        model = self._require_model(session, owner_id, assessment_id)
        stmt = select(AssessmentStepModel.payload).where(
            AssessmentStepModel.assessment_id == model.id,
            AssessmentStepModel.step_key == step_key.value,
        )
        payload = session.execute(stmt).scalar_one_or_none()
        return {} if payload is None else payload

    def get_steps(self, session: Session, owner_id: str, assessment_id: str) -> Dict[str, Any]:
        model = self._require_model(session, owner_id, assessment_id)
        return {step.step_key: step.payload for step in model.steps}

    def delete(self, session: Session, owner_id: str, assessment_id: str) -> None:
        model = self._require_model(session, owner_id, assessment_id)
        session.delete(model)
        session.flush()

    def _require_model(self, session: Session, owner_id: str, assessment_id: str) -> AssessmentModel:
        stmt = (
            select(AssessmentModel)
            .where(AssessmentModel.id == assessment_id, AssessmentModel.owner_id == owner_id)
            .options(selectinload(AssessmentModel.steps))
        )
        model = session.execute(stmt).scalar_one_or_none()
        if model is None:
            raise AssessmentNotFound(assessment_id)
        return model

    @staticmethod
    def _to_domain(model: AssessmentModel, steps: Dict[str, Any] | None = None) -> Assessment:
        if steps is None:
            steps = {step.step_key: step.payload for step in model.steps}
        return Assessment(
            id=model.id,
            owner_id=model.owner_id,
            evaluation_type=model.evaluation_type,
            status=model.status,
            title=model.title,
            created_at=model.created_at,
            updated_at=model.updated_at,
            steps=steps,
        )


assessments = AssessmentRepository()

__all__ = ["AssessmentRepository", "assessments"]
