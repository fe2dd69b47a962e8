"""Routing, caching and fallback behaviour of the session orchestrator."""

from __future__ import annotations

import asyncio
import uuid
from typing import Any, Dict, List, Optional

import pytest

from aria_sessions.assessment_session import PENDING_WRITES_KEY, AssessmentSession
from aria_sessions.auth import StaticAuth
from aria_sessions.cache import KeyValueCache, MemoryStorage, StorageQuotaExceeded
from aria_sessions.cache.key_value import (
    DEMO_ASSESSMENTS_KEY,
    SESSION_POINTER_KEY,
    assessment_cache_key,
    step_cache_key,
)
from aria_sessions.errors import AssessmentNotFound, RemoteUnavailable, SessionCreationError
from aria_sessions.evaluation_type import EvaluationType
from aria_sessions.models import Assessment, CurrentUser, StepKey
from aria_sessions.telemetry import TelemetryEvent, register_listener


class _FakeRemoteStore:
    name = "remote"

    def __init__(self) -> None:
        self.raise_errors = False
        self.records: Dict[str, Assessment] = {}
        self.saved: List[tuple[str, StepKey]] = []

    def _check(self) -> None:
        if self.raise_errors:
            raise RemoteUnavailable("db unavailable")

    def _find(self, assessment_id: str, owner_id: str) -> Assessment:
        record = self.records.get(assessment_id)
        if record is None or record.owner_id != owner_id:
            raise AssessmentNotFound(assessment_id)
        return record

    async def create(self, evaluation_type: EvaluationType, owner_id: str) -> Assessment:
        self._check()
        record = Assessment(id=str(uuid.uuid4()), owner_id=owner_id, evaluation_type=evaluation_type)
        self.records[record.id] = record
        return record.model_copy(deep=True)

    async def fetch(self, assessment_id: str, owner_id: str) -> Assessment:
        self._check()
        return self._find(assessment_id, owner_id).model_copy(deep=True)

    async def list(self, owner_id: str) -> List[Assessment]:
        self._check()
        return [record.model_copy(deep=True) for record in self.records.values() if record.owner_id == owner_id]

    async def update_status(self, assessment_id: str, status: str, owner_id: str) -> Assessment:
        self._check()
        record = self._find(assessment_id, owner_id)
        record.status = status  # type: ignore[assignment]
        return record.model_copy(deep=True)

    async def save_step(self, assessment_id: str, step_key: StepKey, value: Any, owner_id: str) -> None:
        self._check()
        self._find(assessment_id, owner_id).steps[step_key.value] = value
        self.saved.append((assessment_id, step_key))

    async def get_step(self, assessment_id: str, step_key: StepKey, owner_id: str) -> Any:
        self._check()
        return self._find(assessment_id, owner_id).steps.get(step_key.value, {})

    async def get_steps(self, assessment_id: str, owner_id: str) -> Dict[str, Any]:
        self._check()
        return dict(self._find(assessment_id, owner_id).steps)

    async def delete(self, assessment_id: str, owner_id: str) -> None:
        self._check()
        self._find(assessment_id, owner_id)
        del self.records[assessment_id]


class _UnreachableAuth:
    async def get_current_user(self) -> Optional[CurrentUser]:
        raise RemoteUnavailable("identity service down")


def _session(
    user_id: Optional[str] = "user-1",
    *,
    storage: Optional[MemoryStorage] = None,
    remote: Optional[_FakeRemoteStore] = None,
    auth: Any = None,
) -> tuple[AssessmentSession, _FakeRemoteStore, KeyValueCache]:
    cache = KeyValueCache(storage if storage is not None else MemoryStorage())
    remote = remote or _FakeRemoteStore()
    session = AssessmentSession(cache, remote=remote, auth=auth or StaticAuth(user_id))
    return session, remote, cache


def test_anonymous_user_gets_a_demo_assessment() -> None:
    session, remote, cache = _session(user_id=None)

    async def scenario():
        first = await session.get_or_create_assessment("re-assessment")
        second = await session.get_or_create_assessment()
        return first, second

    first, second = asyncio.run(scenario())
    assert first.id.startswith("demo-")
    assert second.id == first.id
    assert first.evaluation_type is EvaluationType.REASSESSMENT
    assert cache.get_string(SESSION_POINTER_KEY) == first.id
    assert remote.records == {}


def test_signed_in_user_creates_remote_assessment_and_migrates_legacy_keys() -> None:
    session, remote, cache = _session()
    cache.set("aria-goals", {"goals": ["mand training"]})
    cache.set("aria-client-info", {"data": {"firstName": "Ada"}, "savedAt": "2024-01-01"})
    events: List[TelemetryEvent] = []
    register_listener(events.append)

    assessment = asyncio.run(session.get_or_create_assessment())

    assert assessment.id in remote.records
    assert remote.records[assessment.id].steps == {
        "goals": {"goals": ["mand training"]},
        "clientInfo": {"firstName": "Ada"},
    }
    assert assessment.steps["goals"] == {"goals": ["mand training"]}
    assert cache.get("aria-goals") is None
    assert cache.get(step_cache_key(assessment.id, "goals")) == {"goals": ["mand training"]}
    names = [event.name for event in events]
    assert "assessment_created" in names
    assert "legacy_migration_completed" in names


def test_reopening_an_existing_assessment_does_not_migrate() -> None:
    session, remote, cache = _session()
    assessment = asyncio.run(session.get_or_create_assessment())
    cache.set("aria-goals", {"goals": ["late arrival"]})

    reopened = asyncio.run(session.get_or_create_assessment())

    assert reopened.id == assessment.id
    assert remote.saved == []
    assert cache.get("aria-goals") == {"goals": ["late arrival"]}


def test_remote_fetch_failure_surfaces_without_creating_a_demo_session() -> None:
    storage = MemoryStorage()
    session, remote, _ = _session(storage=storage)
    assessment = asyncio.run(session.get_or_create_assessment())
    snapshot = {key: storage.get_item(key) for key in storage.keys()}

    remote.raise_errors = True
    fresh, _, _ = _session(storage=storage, remote=remote)
    with pytest.raises(RemoteUnavailable):
        asyncio.run(fresh.get_or_create_assessment())

    assert {key: storage.get_item(key) for key in storage.keys()} == snapshot
    assert storage.get_item(DEMO_ASSESSMENTS_KEY) is None
    assert fresh.is_degraded
    cached = fresh.cached_assessment(assessment.id)
    assert cached is not None and cached.id == assessment.id


def test_pointer_missing_remotely_starts_a_new_assessment() -> None:
    storage = MemoryStorage({SESSION_POINTER_KEY: "3f2b1c9e-8a7d-4e6f-9b0a-1c2d3e4f5a6b"})
    session, remote, cache = _session(storage=storage)
    cache.set("aria-risk-assessment", {"selfHarm": "none reported"})

    assessment = asyncio.run(session.get_or_create_assessment())

    assert assessment.id != "3f2b1c9e-8a7d-4e6f-9b0a-1c2d3e4f5a6b"
    assert cache.get_string(SESSION_POINTER_KEY) == assessment.id
    assert remote.records[assessment.id].steps["riskAssessment"] == {"selfHarm": "none reported"}


def test_unreachable_auth_falls_back_to_demo_for_new_sessions() -> None:
    events: List[TelemetryEvent] = []
    register_listener(events.append)
    session, remote, _ = _session(auth=_UnreachableAuth())

    assessment = asyncio.run(session.get_or_create_assessment())

    assert assessment.id.startswith("demo-")
    assert remote.records == {}
    assert any(event.name == "remote_fallback" for event in events)


def test_remote_create_failure_raises_session_creation_error() -> None:
    session, remote, cache = _session()
    remote.raise_errors = True

    with pytest.raises(SessionCreationError):
        asyncio.run(session.get_or_create_assessment())
    assert cache.get_string(SESSION_POINTER_KEY) is None


def test_failed_save_keeps_read_your_write_and_retries_later() -> None:
    session, remote, _ = _session()
    assessment = asyncio.run(session.get_or_create_assessment())
    events: List[TelemetryEvent] = []
    register_listener(events.append)

    remote.raise_errors = True
    with pytest.raises(RemoteUnavailable):
        asyncio.run(session.save_step(assessment.id, "goals", {"goals": ["tolerate transitions"]}))

    assert asyncio.run(session.get_step_data(assessment.id, StepKey.GOALS)) == {"goals": ["tolerate transitions"]}
    assert session.pending_writes == [(assessment.id, "goals")]
    assert session.is_degraded
    assert any(event.name == "step_save_failed" for event in events)

    remote.raise_errors = False
    assert asyncio.run(session.retry_pending()) == 1
    assert session.pending_writes == []
    assert not session.is_degraded
    assert remote.records[assessment.id].steps["goals"] == {"goals": ["tolerate transitions"]}


def test_step_reads_are_served_from_cache_after_first_fetch() -> None:
    session, remote, cache = _session()
    assessment = asyncio.run(session.get_or_create_assessment())
    remote.records[assessment.id].steps["domains"] = {"communication": "emerging"}

    assert asyncio.run(session.get_step_data(assessment.id, "domains")) == {"communication": "emerging"}
    remote.raise_errors = True
    assert asyncio.run(session.get_step_data(assessment.id, "domains")) == {"communication": "emerging"}
    assert cache.get(step_cache_key(assessment.id, "domains")) == {"communication": "emerging"}


def test_unknown_step_key_is_rejected() -> None:
    session, _, _ = _session()
    assessment = asyncio.run(session.get_or_create_assessment())
    with pytest.raises(ValueError):
        asyncio.run(session.save_step(assessment.id, "notAStep", {}))


def test_demo_ids_route_to_demo_store_even_when_signed_in() -> None:
    storage = MemoryStorage()
    anonymous, remote, _ = _session(user_id=None, storage=storage)
    demo = asyncio.run(anonymous.get_or_create_assessment())

    signed_in, _, _ = _session(storage=storage, remote=remote)
    asyncio.run(signed_in.save_step(demo.id, StepKey.SIGNATURES, {"bcba": "signed"}))

    assert remote.saved == []
    reopened = asyncio.run(signed_in.open_assessment(demo.id))
    assert reopened.steps["signatures"] == {"bcba": "signed"}


def test_list_and_update_status() -> None:
    session, _, cache = _session()
    assessment = asyncio.run(session.get_or_create_assessment())

    updated = asyncio.run(session.update_status(assessment.id, "submitted"))
    listed = asyncio.run(session.list_assessments())

    assert updated.status == "submitted"
    assert [item.id for item in listed] == [assessment.id]
    assert cache.get(assessment_cache_key(assessment.id))["status"] == "submitted"
    with pytest.raises(ValueError):
        asyncio.run(session.update_status(assessment.id, "shredded"))


def test_progress_reflects_saved_steps() -> None:
    session, _, _ = _session()
    assessment = asyncio.run(session.get_or_create_assessment())

    async def scenario():
        await session.save_step(
            assessment.id, StepKey.CLIENT_INFO, {"firstName": "A", "lastName": "B", "dateOfBirth": "2015-02-01"}
        )
        await session.save_step(assessment.id, StepKey.GOALS, {"goals": [{"id": "g1"}]})
        return await session.get_progress(assessment.id)

    progress = asyncio.run(scenario())
    assert progress.completed_count == 2
    assert progress.required_completed == 2
    assert not progress.all_required_complete


def test_all_step_data_falls_back_to_cache_when_remote_is_down() -> None:
    session, remote, _ = _session()
    assessment = asyncio.run(session.get_or_create_assessment())
    asyncio.run(session.save_step(assessment.id, StepKey.DOMAINS, {"social": "limited"}))

    remote.raise_errors = True
    assert asyncio.run(session.get_all_step_data(assessment.id)) == {"domains": {"social": "limited"}}


def test_delete_clears_cache_and_pointer() -> None:
    session, remote, cache = _session()
    assessment = asyncio.run(session.get_or_create_assessment())
    asyncio.run(session.save_step(assessment.id, StepKey.GOALS, {"goals": ["x"]}))

    asyncio.run(session.delete_assessment(assessment.id))

    assert assessment.id not in remote.records
    assert cache.get(assessment_cache_key(assessment.id)) is None
    assert cache.get(step_cache_key(assessment.id, "goals")) is None
    assert session.current_assessment_id is None


def test_logout_clears_pointer_only() -> None:
    session, _, cache = _session(user_id=None)
    assessment = asyncio.run(session.get_or_create_assessment())

    session.logout()

    assert session.current_assessment_id is None
    assert cache.get(assessment_cache_key(assessment.id)) is not None
    assert asyncio.run(session.get_or_create_assessment()).id != assessment.id


class _DemoListQuota(MemoryStorage):
    """Memory storage whose demo assessment array can be switched to read-only."""

    def __init__(self) -> None:
        super().__init__()
        self.full = False

    def set_item(self, key: str, value: str) -> None:
        if self.full and key == DEMO_ASSESSMENTS_KEY:
            raise StorageQuotaExceeded(f"Writing '{key}' exceeds the quota.")
        super().set_item(key, value)


def test_client_info_save_retitles_the_cached_assessment() -> None:
    session, _, _ = _session(user_id=None)

    async def scenario():
        created = await session.get_or_create_assessment()
        await session.save_step(created.id, StepKey.CLIENT_INFO, {"firstName": "Ada", "lastName": "L"})
        stored = await session._demo.fetch(created.id)
        return created, stored

    created, stored = asyncio.run(scenario())
    cached = session.cached_assessment(created.id)
    assert stored.title == "Ada L - Initial Assessment"
    assert cached is not None
    assert cached.title == stored.title


def test_new_assessment_carries_title_from_migrated_client_info() -> None:
    session, _, cache = _session(user_id=None)
    cache.set("aria-client-info", {"data": {"firstName": "Ada", "lastName": "L"}, "savedAt": "2024-01-01"})

    assessment = asyncio.run(session.get_or_create_assessment())

    assert assessment.title == "Ada L - Initial Assessment"
    cached = session.cached_assessment(assessment.id)
    assert cached is not None
    assert cached.title == "Ada L - Initial Assessment"


def test_demo_save_that_cannot_be_persisted_stays_pending() -> None:
    storage = _DemoListQuota()
    session, _, _ = _session(user_id=None, storage=storage)
    notes = {"notes": "x" * 300}

    async def scenario():
        created = await session.get_or_create_assessment()
        storage.full = True
        persisted = await session.save_step(created.id, StepKey.REASON_FOR_REFERRAL, notes)
        degraded = session.is_degraded
        steps = await session.get_all_step_data(created.id)
        blocked = await session.retry_pending()
        storage.full = False
        flushed = await session.retry_pending()
        stored = await session._demo.get_steps(created.id)
        return persisted, degraded, steps, blocked, flushed, stored

    persisted, degraded, steps, blocked, flushed, stored = asyncio.run(scenario())

    assert persisted is False
    assert degraded
    assert steps[StepKey.REASON_FOR_REFERRAL.value] == notes
    assert blocked == 0
    assert flushed == 1
    assert session.pending_writes == []
    assert stored[StepKey.REASON_FOR_REFERRAL.value] == notes


def test_pending_write_with_unknown_step_is_dropped() -> None:
    session, remote, cache = _session()
    assessment = asyncio.run(session.get_or_create_assessment())
    cache.set(PENDING_WRITES_KEY, [[assessment.id, "bogus"]])

    assert asyncio.run(session.retry_pending()) == 0
    assert session.pending_writes == []
    assert remote.saved == []
