"""Assessment session orchestrator.

:class:`AssessmentSession` is the single entry point the rest of the
application uses. Every call asks the auth provider who is signed in and
routes to the remote (database) store or the local demo store accordingly;
a :class:`~aria_sessions.cache.KeyValueCache` mirrors whatever either store
returns so repeated reads in one browser profile are served locally.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Tuple

from pydantic import ValidationError

from .auth import AuthProvider
from .cache.key_value import (
    SESSION_POINTER_KEY,
    KeyValueCache,
    assessment_cache_key,
    step_cache_prefix,
    step_cache_key,
)
from .errors import AssessmentNotFound, RemoteUnavailable, SessionCreationError
from .evaluation_type import normalize_evaluation_type
from .legacy_migration import LegacyMigrator, normalize_legacy_pointers
from .models import (
    ASSESSMENT_STATUSES,
    DEMO_OWNER_ID,
    Assessment,
    StepKey,
    coerce_step_key,
    derive_title,
    is_demo_assessment_id,
    is_valid_assessment_id,
)
from .progress import ProgressResult, calculate_progress
from .stores.base import AssessmentStore
from .stores.demo import DemoAssessmentStore
from .telemetry import emit_event

logger = logging.getLogger(__name__)

PENDING_WRITES_KEY = "aria_pending_step_writes"

_MISSING = object()


class SessionPointer:
    """The "current assessment" id for one browser profile.

    Initialised by the first :meth:`AssessmentSession.get_or_create_assessment`,
    replaced whenever a new assessment is created or one is reopened, and
    cleared on logout.
    """

    def __init__(self, cache: KeyValueCache, key: str = SESSION_POINTER_KEY) -> None:
        self._cache = cache
        self._key = key

    def get(self) -> Optional[str]:
        value = self._cache.get_string(self._key)
        return value if is_valid_assessment_id(value) else None

    def set(self, assessment_id: str) -> None:
        self._cache.set_string(self._key, assessment_id)

    def clear(self) -> None:
        self._cache.remove(self._key)


class AssessmentSession:
    def __init__(
        self,
        cache: KeyValueCache,
        *,
        remote: AssessmentStore,
        auth: AuthProvider,
        demo: Optional[AssessmentStore] = None,
        pointer: Optional[SessionPointer] = None,
        migrator: Optional[LegacyMigrator] = None,
    ) -> None:
        self._cache = cache
        self._remote = remote
        self._demo = demo or DemoAssessmentStore(cache)
        self._auth = auth
        self._pointer = pointer or SessionPointer(cache)
        self._migrator = migrator or LegacyMigrator(cache)
        self._pointers_normalized = False
        self.is_degraded = False

    # ------------------------------------------------------------------ routing

    async def _route(self, *, allow_auth_fallback: bool = False) -> Tuple[AssessmentStore, str]:
        try:
            user = await self._auth.get_current_user()
        except RemoteUnavailable as exc:
            if not allow_auth_fallback:
                self.is_degraded = True
                raise
            logger.warning("Authentication unavailable; using the demo store: %s", exc)
            emit_event("remote_fallback", reason=str(exc))
            return self._demo, DEMO_OWNER_ID
        if user is None:
            return self._demo, DEMO_OWNER_ID
        return self._remote, user.id

    async def _store_for(self, assessment_id: str) -> Tuple[AssessmentStore, str]:
        # Demo ids never exist remotely, whoever is signed in.
        if is_demo_assessment_id(assessment_id):
            return self._demo, DEMO_OWNER_ID
        return await self._route()

    def _mark_remote_result(self, store: AssessmentStore, ok: bool) -> None:
        if store is self._remote:
            self.is_degraded = not ok

    # -------------------------------------------------------------- cache glue

    def cached_assessment(self, assessment_id: str) -> Optional[Assessment]:
        raw = self._cache.get(assessment_cache_key(assessment_id))
        if raw is None:
            return None
        try:
            return Assessment.model_validate(raw)
        except ValidationError:
            logger.warning("Dropping unreadable cached assessment %s", assessment_id)
            self._cache.remove(assessment_cache_key(assessment_id))
            return None

    def _cache_assessment(self, assessment: Assessment) -> None:
        self._cache.set(assessment_cache_key(assessment.id), assessment.model_dump(mode="json"))

    def _pending(self) -> List[Tuple[str, str]]:
        raw = self._cache.get(PENDING_WRITES_KEY, [])
        if not isinstance(raw, list):
            return []
        return [
            (str(entry[0]), str(entry[1]))
            for entry in raw
            if isinstance(entry, list) and len(entry) == 2
        ]

    def _set_pending(self, assessment_id: str, step_value: str, pending: bool) -> None:
        entries = self._pending()
        marker = (assessment_id, step_value)
        if pending and marker not in entries:
            entries.append(marker)
        elif not pending and marker in entries:
            entries.remove(marker)
        else:
            return
        self._cache.set(PENDING_WRITES_KEY, [list(entry) for entry in entries])

    @property
    def pending_writes(self) -> List[Tuple[str, str]]:
        """(assessment id, step key) pairs whose last backend save failed."""
        return self._pending()

    @property
    def current_assessment_id(self) -> Optional[str]:
        self._normalize_pointers()
        return self._pointer.get()

    def _normalize_pointers(self) -> None:
        if self._pointers_normalized:
            return
        self._pointers_normalized = True
        normalize_legacy_pointers(self._cache)

    # ----------------------------------------------------------- session setup

    async def get_or_create_assessment(self, evaluation_type: Any = None) -> Assessment:
        """Return the current assessment, creating (and migrating) a new one if needed.

        For a signed-in user a failed fetch of the existing pointer is raised as
        :class:`RemoteUnavailable`; the cached copy stays untouched and readable
        through :meth:`cached_assessment`.
        """
        evaluation = normalize_evaluation_type(evaluation_type)
        self._normalize_pointers()
        pointer = self._pointer.get()

        if pointer is not None:
            store, owner_id = await self._store_for(pointer)
            try:
                assessment = await store.fetch(pointer, owner_id)
            except AssessmentNotFound:
                logger.info("Current assessment %s no longer exists for this account; starting a new one", pointer)
            except RemoteUnavailable:
                self._mark_remote_result(store, ok=False)
                raise
            else:
                self._mark_remote_result(store, ok=True)
                self._cache_assessment(assessment)
                return assessment

        return await self._create(evaluation)

    async def _create(self, evaluation: Any) -> Assessment:
        store, owner_id = await self._route(allow_auth_fallback=True)
        try:
            assessment = await store.create(evaluation, owner_id)
        except RemoteUnavailable as exc:
            self._mark_remote_result(store, ok=False)
            emit_event("assessment_create_failed", store=store.name, reason=str(exc))
            raise SessionCreationError(f"Could not create an assessment session: {exc}") from exc
        self._mark_remote_result(store, ok=True)

        self._pointer.set(assessment.id)
        self._cache_assessment(assessment)
        emit_event(
            "assessment_created",
            assessment_id=assessment.id,
            store=store.name,
            evaluation_type=assessment.evaluation_type.value,
        )

        report = await self._migrator.migrate(
            assessment.id,
            lambda step, value: self._write_step(store, owner_id, assessment.id, step, value),
        )
        if report.migrated:
            refreshed = self.cached_assessment(assessment.id)
            if refreshed is not None:
                assessment = refreshed
        return assessment

    async def open_assessment(self, assessment_id: str) -> Assessment:
        """Reopen an existing assessment and make it current; never migrates."""
        store, owner_id = await self._store_for(assessment_id)
        try:
            assessment = await store.fetch(assessment_id, owner_id)
        except RemoteUnavailable:
            self._mark_remote_result(store, ok=False)
            raise
        self._mark_remote_result(store, ok=True)
        self._pointer.set(assessment.id)
        self._cache_assessment(assessment)
        return assessment

    def logout(self) -> None:
        self._pointer.clear()

    # -------------------------------------------------------------- step data

    async def _write_step(
        self, store: AssessmentStore, owner_id: str, assessment_id: str, step: StepKey, value: Any
    ) -> bool:
        self._cache.set(step_cache_key(assessment_id, step.value), value)
        cached = self.cached_assessment(assessment_id)
        if cached is not None:
            cached.steps[step.value] = value
            # Both stores retitle on clientInfo; keep the mirror identical.
            if step is StepKey.CLIENT_INFO:
                cached.title = derive_title(value, cached.evaluation_type)
            cached.touch()
            self._cache_assessment(cached)

        try:
            persisted = await store.save_step(assessment_id, step, value, owner_id)
        except RemoteUnavailable as exc:
            self._mark_remote_result(store, ok=False)
            self._set_pending(assessment_id, step.value, True)
            emit_event("step_save_failed", assessment_id=assessment_id, step=step.value, reason=str(exc))
            raise
        self._mark_remote_result(store, ok=True)
        if persisted is False:
            logger.warning("%s store could not persist %s for %s; keeping it pending", store.name, step.value, assessment_id)
            self.is_degraded = True
            self._set_pending(assessment_id, step.value, True)
            emit_event("step_save_failed", assessment_id=assessment_id, step=step.value, reason="storage full")
            return False
        self._set_pending(assessment_id, step.value, False)
        return True

    async def save_step(self, assessment_id: str, step_key: Any, value: Any) -> bool:
        """Cache ``value`` immediately, then persist it through the active store.

        If the backend write fails the cached value is kept, the step is
        recorded in :attr:`pending_writes` and the error is raised. A demo
        store that cannot persist (local storage full) does not raise; the
        step stays pending and ``False`` is returned.
        """
        step = coerce_step_key(step_key)
        try:
            store, owner_id = await self._store_for(assessment_id)
        except RemoteUnavailable:
            self._cache.set(step_cache_key(assessment_id, step.value), value)
            self._set_pending(assessment_id, step.value, True)
            raise
        return await self._write_step(store, owner_id, assessment_id, step, value)

    async def get_step_data(self, assessment_id: str, step_key: Any) -> Any:
        step = coerce_step_key(step_key)
        key = step_cache_key(assessment_id, step.value)
        cached = self._cache.get(key, _MISSING)
        if cached is not _MISSING:
            return cached

        store, owner_id = await self._store_for(assessment_id)
        try:
            value = await store.get_step(assessment_id, step, owner_id)
        except RemoteUnavailable:
            self._mark_remote_result(store, ok=False)
            raise
        self._mark_remote_result(store, ok=True)
        self._cache.set(key, value)
        return value

    def _cached_steps(self, assessment_id: str) -> Dict[str, Any]:
        step_prefix = step_cache_prefix(assessment_id)
        steps: Dict[str, Any] = {}
        for key in self._cache.keys():
            if key.startswith(step_prefix):
                value = self._cache.get(key, _MISSING)
                if value is not _MISSING:
                    steps[key[len(step_prefix):]] = value
        return steps

    async def get_all_step_data(self, assessment_id: str) -> Dict[str, Any]:
        """Materialized step bundle; falls back to cached steps when the backend is down."""
        store, owner_id = await self._store_for(assessment_id)
        try:
            steps = await store.get_steps(assessment_id, owner_id)
        except RemoteUnavailable as exc:
            self._mark_remote_result(store, ok=False)
            logger.warning("Serving cached steps for %s: %s", assessment_id, exc)
            return self._cached_steps(assessment_id)
        self._mark_remote_result(store, ok=True)

        steps = dict(steps)
        for pending_id, step_value in self._pending():
            if pending_id != assessment_id:
                continue
            cached = self._cache.get(step_cache_key(assessment_id, step_value), _MISSING)
            if cached is not _MISSING:
                steps[step_value] = cached
        for step_value, value in steps.items():
            self._cache.set(step_cache_key(assessment_id, step_value), value)
        return steps

    async def get_progress(self, assessment_id: str) -> ProgressResult:
        return calculate_progress(await self.get_all_step_data(assessment_id))

    async def retry_pending(self) -> int:
        """Re-send cached payloads of failed step saves; returns how many succeeded."""
        flushed = 0
        for assessment_id, step_value in self._pending():
            try:
                step = coerce_step_key(step_value)
            except ValueError:
                logger.warning("Dropping pending write with unknown step %r for %s", step_value, assessment_id)
                self._set_pending(assessment_id, step_value, False)
                continue
            value = self._cache.get(step_cache_key(assessment_id, step.value), _MISSING)
            if value is _MISSING:
                self._set_pending(assessment_id, step_value, False)
                continue
            try:
                persisted = await self.save_step(assessment_id, step, value)
            except RemoteUnavailable:
                break
            except AssessmentNotFound:
                logger.warning("Dropping pending %s write for missing assessment %s", step_value, assessment_id)
                self._set_pending(assessment_id, step_value, False)
                continue
            if not persisted:
                break
            flushed += 1
        return flushed

    # ------------------------------------------------------------ assessments

    async def list_assessments(self) -> List[Assessment]:
        store, owner_id = await self._route()
        try:
            assessments = await store.list(owner_id)
        except RemoteUnavailable:
            self._mark_remote_result(store, ok=False)
            raise
        self._mark_remote_result(store, ok=True)
        for assessment in assessments:
            self._cache_assessment(assessment)
        return assessments

    async def update_status(self, assessment_id: str, status: str) -> Assessment:
        if status not in ASSESSMENT_STATUSES:
            raise ValueError(f"Unsupported assessment status '{status}'.")
        store, owner_id = await self._store_for(assessment_id)
        try:
            assessment = await store.update_status(assessment_id, status, owner_id)  # type: ignore[arg-type]
        except RemoteUnavailable:
            self._mark_remote_result(store, ok=False)
            raise
        self._mark_remote_result(store, ok=True)
        self._cache_assessment(assessment)
        return assessment

    async def delete_assessment(self, assessment_id: str) -> None:
        """Delete an assessment with its steps and drop every cached mirror of it."""
        store, owner_id = await self._store_for(assessment_id)
        try:
            await store.delete(assessment_id, owner_id)
        except RemoteUnavailable:
            self._mark_remote_result(store, ok=False)
            raise
        self._mark_remote_result(store, ok=True)
        self._cache.remove(assessment_cache_key(assessment_id))
        removed = self._cache.clear_prefix(step_cache_prefix(assessment_id))
        for pending_id, step_value in self._pending():
            if pending_id == assessment_id:
                self._set_pending(assessment_id, step_value, False)
        if self._pointer.get() == assessment_id:
            self._pointer.clear()
        logger.info("Deleted assessment %s (%d cached steps removed)", assessment_id, removed)


__all__ = ["AssessmentSession", "PENDING_WRITES_KEY", "SessionPointer"]
