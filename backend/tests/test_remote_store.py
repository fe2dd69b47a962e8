"""Remote store behaviour against a real sqlite database."""

from __future__ import annotations

import asyncio
from contextlib import contextmanager

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from aria_sessions.db import session_scope
from aria_sessions.db.models import AssessmentStepModel
from aria_sessions.errors import AssessmentNotFound, RemoteUnavailable
from aria_sessions.evaluation_type import EvaluationType
from aria_sessions.models import StepKey
from aria_sessions.stores import RemoteAssessmentStore


def test_create_and_fetch_round_trip(sqlite_database: str) -> None:
    store = RemoteAssessmentStore()

    async def scenario():
        created = await store.create(EvaluationType.REASSESSMENT, "user-1")
        return created, await store.fetch(created.id, "user-1")

    created, fetched = asyncio.run(scenario())
    assert len(created.id) == 36
    assert fetched.id == created.id
    assert fetched.owner_id == "user-1"
    assert fetched.evaluation_type is EvaluationType.REASSESSMENT
    assert fetched.status == "draft"
    assert fetched.steps == {}


def test_upsert_keeps_one_row_per_step(sqlite_database: str) -> None:
    store = RemoteAssessmentStore()

    async def scenario():
        created = await store.create(EvaluationType.INITIAL, "user-1")
        await store.save_step(created.id, StepKey.GOALS, {"goals": ["a"]}, "user-1")
        await store.save_step(created.id, StepKey.GOALS, {"goals": ["a", "b"]}, "user-1")
        return created, await store.get_step(created.id, StepKey.GOALS, "user-1")

    created, value = asyncio.run(scenario())
    assert value == {"goals": ["a", "b"]}
    with session_scope(commit=False) as session:
        count = session.execute(
            select(func.count()).select_from(AssessmentStepModel).where(
                AssessmentStepModel.assessment_id == created.id
            )
        ).scalar_one()
    assert count == 1


def test_client_info_refreshes_title(sqlite_database: str) -> None:
    store = RemoteAssessmentStore()

    async def scenario():
        created = await store.create(EvaluationType.INITIAL, "user-1")
        await store.save_step(
            created.id, StepKey.CLIENT_INFO, {"firstName": "Sam", "lastName": "Rivera"}, "user-1"
        )
        return await store.fetch(created.id, "user-1")

    fetched = asyncio.run(scenario())
    assert fetched.title == "Sam Rivera - Initial Assessment"
    assert fetched.steps["clientInfo"]["firstName"] == "Sam"


def test_other_owner_sees_not_found(sqlite_database: str) -> None:
    store = RemoteAssessmentStore()
    created = asyncio.run(store.create(EvaluationType.INITIAL, "user-1"))

    with pytest.raises(AssessmentNotFound):
        asyncio.run(store.fetch(created.id, "user-2"))
    with pytest.raises(AssessmentNotFound):
        asyncio.run(store.save_step(created.id, StepKey.GOALS, {}, "user-2"))


def test_missing_step_reads_as_empty_mapping(sqlite_database: str) -> None:
    store = RemoteAssessmentStore()

    async def scenario():
        created = await store.create(EvaluationType.INITIAL, "user-1")
        return await store.get_step(created.id, StepKey.SIGNATURES, "user-1")

    assert asyncio.run(scenario()) == {}


def test_list_orders_by_most_recent_update(sqlite_database: str) -> None:
    store = RemoteAssessmentStore()

    async def scenario():
        older = await store.create(EvaluationType.INITIAL, "user-1")
        newer = await store.create(EvaluationType.INITIAL, "user-1")
        await store.create(EvaluationType.INITIAL, "user-2")
        await store.update_status(older.id, "completed", "user-1")
        return older, newer, await store.list("user-1")

    older, newer, listed = asyncio.run(scenario())
    assert [assessment.id for assessment in listed] == [older.id, newer.id]
    assert listed[0].status == "completed"


def test_delete_removes_assessment_and_steps(sqlite_database: str) -> None:
    store = RemoteAssessmentStore()

    async def scenario():
        created = await store.create(EvaluationType.INITIAL, "user-1")
        await store.save_step(created.id, StepKey.GOALS, {"goals": ["a"]}, "user-1")
        await store.delete(created.id, "user-1")
        return created

    created = asyncio.run(scenario())
    with pytest.raises(AssessmentNotFound):
        asyncio.run(store.fetch(created.id, "user-1"))
    with session_scope(commit=False) as session:
        remaining = session.execute(select(func.count()).select_from(AssessmentStepModel)).scalar_one()
    assert remaining == 0


def test_missing_owner_is_unavailable() -> None:
    store = RemoteAssessmentStore()
    with pytest.raises(RemoteUnavailable):
        asyncio.run(store.list(""))


def test_database_errors_become_remote_unavailable() -> None:
    @contextmanager
    def broken_scope(*, commit: bool = True):
        raise OperationalError("SELECT 1", {}, Exception("connection refused"))
        yield  # pragma: no cover

    store = RemoteAssessmentStore(scope=broken_scope)
    with pytest.raises(RemoteUnavailable):
        asyncio.run(store.fetch("3f2b1c9e-8a7d-4e6f-9b0a-1c2d3e4f5a6b", "user-1"))


def test_unconfigured_database_is_unavailable(monkeypatch: pytest.MonkeyPatch) -> None:
    from aria_sessions.config import get_settings
    from aria_sessions.db import dispose_engine

    monkeypatch.delenv("ARIA_DATABASE_URL", raising=False)
    get_settings.cache_clear()
    dispose_engine()
    try:
        with pytest.raises(RemoteUnavailable):
            asyncio.run(RemoteAssessmentStore().list("user-1"))
    finally:
        get_settings.cache_clear()
