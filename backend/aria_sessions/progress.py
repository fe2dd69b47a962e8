"""Completion progress over the materialized step data of one assessment."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, List, Mapping, Optional

from pydantic import BaseModel

from .models import StepKey


def _has_content(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, (Mapping, list, tuple, set)):
        return len(value) > 0
    return bool(value)


def _unwrap(value: Any) -> Any:
    # Legacy section envelopes: {"data": ..., "savedAt": ...}
    if isinstance(value, Mapping) and "data" in value and "savedAt" in value:
        return value["data"]
    return value


def _field(payload: Any, *names: str) -> Any:
    if not isinstance(payload, Mapping):
        return None
    for name in names:
        value = payload.get(name)
        if _has_content(value):
            return value
    return None


def _client_info_complete(value: Any) -> bool:
    return all(
        _has_content(_field(value, *names))
        for names in (
            ("firstName", "first_name", "client_first_name"),
            ("lastName", "last_name", "client_last_name"),
            ("dateOfBirth", "date_of_birth", "dob"),
        )
    )


def _non_empty_mapping(value: Any) -> bool:
    return isinstance(value, Mapping) and _has_content(value)


def _goals_complete(value: Any) -> bool:
    if isinstance(value, Mapping):
        return _has_content(value.get("goals"))
    return isinstance(value, (list, tuple)) and len(value) > 0


def _service_plan_complete(value: Any) -> bool:
    hours = _field(value, "total_hours", "totalHours", "totalWeeklyHours")
    try:
        return float(hours) > 0
    except (TypeError, ValueError):
        return False


@dataclass(frozen=True)
class SectionRule:
    id: str
    name: str
    step: StepKey
    required: bool
    is_complete: Callable[[Any], bool] = _has_content


SECTION_RULES: tuple[SectionRule, ...] = (
    SectionRule("client-info", "Client Information", StepKey.CLIENT_INFO, True, _client_info_complete),
    SectionRule("background", "Background & History", StepKey.BACKGROUND_HISTORY, True, _non_empty_mapping),
    SectionRule("referral", "Reason for Referral", StepKey.REASON_FOR_REFERRAL, True),
    SectionRule("standardized", "Standardized Assessments", StepKey.STANDARDIZED_ASSESSMENTS, True),
    SectionRule("abc-observations", "ABC Observations", StepKey.ABC_OBSERVATION, False),
    SectionRule("risk-assessment", "Risk Assessment", StepKey.RISK_ASSESSMENT, True, _non_empty_mapping),
    SectionRule("goals", "Goals", StepKey.GOALS, True, _goals_complete),
    SectionRule("interventions", "Interventions", StepKey.INTERVENTIONS, False),
    SectionRule("service-schedule", "Service Schedule", StepKey.SERVICE_PLAN, True, _service_plan_complete),
    SectionRule("medical-necessity", "Medical Necessity", StepKey.MEDICAL_NECESSITY, False),
    SectionRule("cpt-auth", "CPT Authorization", StepKey.CPT_AUTHORIZATION, False),
    SectionRule("barriers-generalization", "Barriers & Generalization", StepKey.BARRIERS_GENERALIZATION, False),
    SectionRule("generate-report", "Generate Report", StepKey.REPORT_GENERATED, False),
)


class ProgressSection(BaseModel):
    id: str
    name: str
    step_key: StepKey
    required: bool
    is_complete: bool


class ProgressResult(BaseModel):
    sections: List[ProgressSection]
    total_sections: int
    completed_count: int
    percentage: int
    required_total: int
    required_completed: int
    required_percentage: int
    all_required_complete: bool


def _percent(part: int, whole: int) -> int:
    if whole <= 0:
        return 0
    return max(0, min(100, round(part * 100 / whole)))


def calculate_progress(step_data: Optional[Mapping[str, Any]]) -> ProgressResult:
    """Evaluate every section against ``step_data`` (step key -> payload).

    ``required_percentage`` counts completed *required* sections against all
    sections, so it never exceeds ``percentage``; ``all_required_complete``
    is the submit gate.
    """
    data: Mapping[str, Any] = step_data if isinstance(step_data, Mapping) else {}

    sections: List[ProgressSection] = []
    for rule in SECTION_RULES:
        payload = _unwrap(data.get(rule.step.value))
        sections.append(
            ProgressSection(
                id=rule.id,
                name=rule.name,
                step_key=rule.step,
                required=rule.required,
                is_complete=bool(payload is not None and rule.is_complete(payload)),
            )
        )

    total = len(sections)
    completed = sum(1 for section in sections if section.is_complete)
    required = [section for section in sections if section.required]
    required_completed = sum(1 for section in required if section.is_complete)

    return ProgressResult(
        sections=sections,
        total_sections=total,
        completed_count=completed,
        percentage=_percent(completed, total),
        required_total=len(required),
        required_completed=required_completed,
        required_percentage=_percent(required_completed, total),
        all_required_complete=required_completed == len(required),
    )


__all__ = ["ProgressResult", "ProgressSection", "SECTION_RULES", "SectionRule", "calculate_progress"]
