"""Domain models shared by the stores, the orchestrator and the API."""

from __future__ import annotations

import re
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Literal, Mapping, Optional
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator

from .evaluation_type import EvaluationType, normalize_evaluation_type

AssessmentStatus = Literal["draft", "submitted", "completed", "archived"]
ASSESSMENT_STATUSES: tuple[str, ...] = ("draft", "submitted", "completed", "archived")

DEMO_ID_PREFIX = "demo-"
DEMO_OWNER_ID = "demo-user"

_UUID_PATTERN = re.compile(r"^[a-f0-9-]{36}$", re.IGNORECASE)


class StepKey(str, Enum):
    CLIENT_INFO = "clientInfo"
    BACKGROUND_HISTORY = "backgroundHistory"
    PROGRESS_DASHBOARD = "progressDashboard"
    EVALUATION = "evaluation"
    REASON_FOR_REFERRAL = "reasonForReferral"
    STANDARDIZED_ASSESSMENTS = "standardizedAssessments"
    DOMAINS = "domains"
    ABC_OBSERVATION = "abcObservation"
    RISK_ASSESSMENT = "riskAssessment"
    GOALS = "goals"
    INTERVENTIONS = "interventions"
    SERVICE_PLAN = "servicePlan"
    CPT_AUTHORIZATION = "cptAuthorization"
    MEDICAL_NECESSITY = "medicalNecessity"
    BARRIERS_GENERALIZATION = "barriersGeneralization"
    SIGNATURES = "signatures"
    REPORT_GENERATED = "reportGenerated"

    def __str__(self) -> str:
        return self.value


def coerce_step_key(value: Any) -> StepKey:
    if isinstance(value, StepKey):
        return value
    try:
        return StepKey(str(value).strip())
    except ValueError:
        raise ValueError(f"Unknown assessment step '{value}'.") from None


def _now() -> datetime:
    return datetime.now(timezone.utc)


def new_demo_id() -> str:
    return f"{DEMO_ID_PREFIX}{uuid4().hex}"


def is_demo_assessment_id(assessment_id: Optional[str]) -> bool:
    return bool(assessment_id) and str(assessment_id).startswith(DEMO_ID_PREFIX)


def is_valid_assessment_id(assessment_id: Optional[str]) -> bool:
    """True for database UUIDs and locally generated demo ids."""
    if not assessment_id:
        return False
    return bool(_UUID_PATTERN.match(assessment_id)) or is_demo_assessment_id(assessment_id)


def _first_text(payload: Mapping[str, Any], *keys: str) -> str:
    for key in keys:
        value = payload.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return ""


def derive_title(client_info: Any, evaluation_type: EvaluationType | str) -> str:
    """Build the ``"<client> - <evaluation type>"`` label for an assessment."""
    label = normalize_evaluation_type(evaluation_type).value
    name = ""
    if isinstance(client_info, Mapping):
        # Old saves wrapped the form in {"data": {...}}.
        payload = client_info.get("data") if isinstance(client_info.get("data"), Mapping) else client_info
        first = _first_text(payload, "firstName", "first_name", "client_first_name")
        last = _first_text(payload, "lastName", "last_name", "client_last_name")
        name = f"{first} {last}".strip()
    return f"{name or 'Unnamed Client'} - {label}"


class CurrentUser(BaseModel):
    id: str


class Assessment(BaseModel):
    id: str
    owner_id: str
    evaluation_type: EvaluationType = EvaluationType.INITIAL
    status: AssessmentStatus = "draft"
    title: Optional[str] = None
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)
    steps: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("evaluation_type", mode="before")
    @classmethod
    def _normalize_type(cls, value: Any) -> EvaluationType:
        return normalize_evaluation_type(value)

    @property
    def display_name(self) -> str:
        return self.title or f"{self.evaluation_type.value} draft"

    @property
    def is_demo(self) -> bool:
        return is_demo_assessment_id(self.id)

    def touch(self) -> None:
        self.updated_at = _now()


__all__ = [
    "ASSESSMENT_STATUSES",
    "Assessment",
    "AssessmentStatus",
    "CurrentUser",
    "DEMO_ID_PREFIX",
    "DEMO_OWNER_ID",
    "StepKey",
    "coerce_step_key",
    "derive_title",
    "is_demo_assessment_id",
    "is_valid_assessment_id",
    "new_demo_id",
]
