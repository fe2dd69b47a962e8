"""REST endpoints exposing the assessment session to the wizard client."""

from __future__ import annotations

import logging
import re
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Response, status
from pydantic import BaseModel, Field

from .assessment_session import AssessmentSession
from .auth import StaticAuth
from .cache import JsonFileStorage, KeyValueCache
from .config import Settings, get_settings
from .errors import AssessmentNotFound, RemoteUnavailable, SessionCreationError
from .models import Assessment, AssessmentStatus
from .progress import ProgressResult
from .stores.remote import RemoteAssessmentStore


router = APIRouter(prefix="/api/assessments", tags=["assessments"])
logger = logging.getLogger(__name__)

_PROFILE_PATTERN = re.compile(r"[^A-Za-z0-9_.-]+")

_remote_store = RemoteAssessmentStore()


class SessionRequest(BaseModel):
    evaluation_type: Optional[str] = Field(default=None, max_length=64)


class SessionResponse(BaseModel):
    assessment: Assessment
    current_assessment_id: Optional[str] = None
    degraded: bool = False


class StatusUpdateRequest(BaseModel):
    status: AssessmentStatus


class StepPayload(BaseModel):
    value: Any = None


class StepResponse(BaseModel):
    assessment_id: str
    step_key: str
    value: Any = None
    pending_sync: bool = False


def _profile_name(raw: Optional[str]) -> str:
    cleaned = _PROFILE_PATTERN.sub("_", (raw or "").strip()).strip("._")
    return cleaned[:64] or "default"


@lru_cache(maxsize=256)
def _profile_storage(path: Path) -> JsonFileStorage:
    # One storage per file so its lock serializes every request on that profile.
    return JsonFileStorage(path)


def get_profile_cache(
    x_aria_profile: Optional[str] = Header(default=None),
    settings: Settings = Depends(get_settings),
) -> KeyValueCache:
    path = settings.storage_dir / f"{_profile_name(x_aria_profile)}.json"
    return KeyValueCache(_profile_storage(path))


def get_assessment_session(
    cache: KeyValueCache = Depends(get_profile_cache),
    x_aria_user: Optional[str] = Header(default=None),
) -> AssessmentSession:
    return AssessmentSession(cache, remote=_remote_store, auth=StaticAuth(x_aria_user))


def _not_found(exc: AssessmentNotFound) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail=f"Assessment '{exc.assessment_id}' was not found.",
    )


def _unavailable(exc: Exception) -> HTTPException:
    return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc))


def _invalid(exc: ValueError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc))


@router.post("/session", response_model=SessionResponse, status_code=status.HTTP_200_OK)
async def open_session(
    payload: Optional[SessionRequest] = None,
    session: AssessmentSession = Depends(get_assessment_session),
) -> SessionResponse:
    evaluation_type = payload.evaluation_type if payload else None
    try:
        assessment = await session.get_or_create_assessment(evaluation_type)
    except (RemoteUnavailable, SessionCreationError) as exc:
        raise _unavailable(exc) from exc
    return SessionResponse(
        assessment=assessment,
        current_assessment_id=session.current_assessment_id,
        degraded=session.is_degraded,
    )


@router.post("/session/logout", status_code=status.HTTP_204_NO_CONTENT)
async def logout(session: AssessmentSession = Depends(get_assessment_session)) -> Response:
    session.logout()
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("", response_model=List[Assessment], status_code=status.HTTP_200_OK)
async def list_assessments(session: AssessmentSession = Depends(get_assessment_session)) -> List[Assessment]:
    try:
        return await session.list_assessments()
    except RemoteUnavailable as exc:
        raise _unavailable(exc) from exc


@router.get("/{assessment_id}", response_model=Assessment, status_code=status.HTTP_200_OK)
async def open_assessment(
    assessment_id: str,
    session: AssessmentSession = Depends(get_assessment_session),
) -> Assessment:
    try:
        return await session.open_assessment(assessment_id)
    except AssessmentNotFound as exc:
        raise _not_found(exc) from exc
    except RemoteUnavailable as exc:
        raise _unavailable(exc) from exc


@router.patch("/{assessment_id}/status", response_model=Assessment, status_code=status.HTTP_200_OK)
async def update_status(
    assessment_id: str,
    payload: StatusUpdateRequest,
    session: AssessmentSession = Depends(get_assessment_session),
) -> Assessment:
    try:
        return await session.update_status(assessment_id, payload.status)
    except AssessmentNotFound as exc:
        raise _not_found(exc) from exc
    except RemoteUnavailable as exc:
        raise _unavailable(exc) from exc
    except ValueError as exc:
        raise _invalid(exc) from exc


@router.get("/{assessment_id}/steps/{step_key}", response_model=StepResponse, status_code=status.HTTP_200_OK)
async def get_step(
    assessment_id: str,
    step_key: str,
    session: AssessmentSession = Depends(get_assessment_session),
) -> StepResponse:
    try:
        value = await session.get_step_data(assessment_id, step_key)
    except AssessmentNotFound as exc:
        raise _not_found(exc) from exc
    except RemoteUnavailable as exc:
        raise _unavailable(exc) from exc
    except ValueError as exc:
        raise _invalid(exc) from exc
    pending = any(
        pending_id == assessment_id and pending_step == step_key
        for pending_id, pending_step in session.pending_writes
    )
    return StepResponse(assessment_id=assessment_id, step_key=step_key, value=value, pending_sync=pending)


@router.put("/{assessment_id}/steps/{step_key}", response_model=StepResponse, status_code=status.HTTP_200_OK)
async def save_step(
    assessment_id: str,
    step_key: str,
    payload: StepPayload,
    session: AssessmentSession = Depends(get_assessment_session),
) -> StepResponse:
    try:
        persisted = await session.save_step(assessment_id, step_key, payload.value)
    except AssessmentNotFound as exc:
        raise _not_found(exc) from exc
    except RemoteUnavailable as exc:
        logger.warning("Step %s for %s kept locally until the backend recovers", step_key, assessment_id)
        raise _unavailable(exc) from exc
    except ValueError as exc:
        raise _invalid(exc) from exc
    return StepResponse(assessment_id=assessment_id, step_key=step_key, value=payload.value, pending_sync=not persisted)


@router.get("/{assessment_id}/progress", response_model=ProgressResult, status_code=status.HTTP_200_OK)
async def get_progress(
    assessment_id: str,
    session: AssessmentSession = Depends(get_assessment_session),
) -> ProgressResult:
    try:
        return await session.get_progress(assessment_id)
    except AssessmentNotFound as exc:
        raise _not_found(exc) from exc
    except RemoteUnavailable as exc:
        raise _unavailable(exc) from exc


@router.post("/sync", status_code=status.HTTP_200_OK)
async def retry_pending(session: AssessmentSession = Depends(get_assessment_session)) -> Dict[str, int]:
    flushed = await session.retry_pending()
    return {"flushed": flushed, "pending": len(session.pending_writes)}


@router.delete("/{assessment_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_assessment(
    assessment_id: str,
    session: AssessmentSession = Depends(get_assessment_session),
) -> Response:
    try:
        await session.delete_assessment(assessment_id)
    except AssessmentNotFound as exc:
        raise _not_found(exc) from exc
    except RemoteUnavailable as exc:
        raise _unavailable(exc) from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)


__all__ = ["get_assessment_session", "get_profile_cache", "router"]
