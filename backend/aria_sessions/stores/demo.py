"""Local-only assessment store used when nobody is signed in."""

from __future__ import annotations

import copy
import logging
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from ..cache.key_value import DEMO_ASSESSMENTS_KEY, KeyValueCache
from ..errors import AssessmentNotFound
from ..evaluation_type import EvaluationType, normalize_evaluation_type
from ..models import DEMO_OWNER_ID, Assessment, AssessmentStatus, StepKey, derive_title, new_demo_id

logger = logging.getLogger(__name__)


class DemoAssessmentStore:
    """Keeps every demo assessment in one JSON array under a single cache key.

    Writes rewrite the whole array, which is fine for one browser profile with
    a few dozen assessments. Storage failures are logged, never raised; the
    only exception reported to callers is :class:`AssessmentNotFound`, and
    :meth:`save_step` returns ``False`` when the array could not be rewritten.
    """

    name = "demo"

    def __init__(self, cache: KeyValueCache, list_key: str = DEMO_ASSESSMENTS_KEY) -> None:
        self._cache = cache
        self._list_key = list_key

    def _load(self) -> List[Assessment]:
        raw = self._cache.get(self._list_key, [])
        if not isinstance(raw, list):
            logger.warning("Demo assessment list under %s is not an array; resetting it", self._list_key)
            return []
        records: List[Assessment] = []
        for entry in raw:
            try:
                records.append(Assessment.model_validate(entry))
            except ValidationError as exc:
                logger.warning("Skipping unreadable demo assessment: %s", exc)
        return records

    def _write(self, records: List[Assessment]) -> bool:
        payload = [record.model_dump(mode="json") for record in records]
        if not self._cache.set(self._list_key, payload):
            logger.warning("Demo assessments could not be persisted under %s; the change was not saved", self._list_key)
            return False
        return True

    @staticmethod
    def _find(records: List[Assessment], assessment_id: str) -> Assessment:
        for record in records:
            if record.id == assessment_id:
                return record
        raise AssessmentNotFound(assessment_id)

    async def create(self, evaluation_type: EvaluationType, owner_id: Optional[str] = None) -> Assessment:
        records = self._load()
        assessment = Assessment(
            id=new_demo_id(),
            owner_id=DEMO_OWNER_ID,
            evaluation_type=normalize_evaluation_type(evaluation_type),
        )
        records.append(assessment)
        self._write(records)
        return assessment.model_copy(deep=True)

    async def fetch(self, assessment_id: str, owner_id: Optional[str] = None) -> Assessment:
        return self._find(self._load(), assessment_id).model_copy(deep=True)

    async def list(self, owner_id: Optional[str] = None) -> List[Assessment]:
        records = self._load()
        records.sort(key=lambda record: record.updated_at, reverse=True)
        return records

    async def update_status(
        self, assessment_id: str, status: AssessmentStatus, owner_id: Optional[str] = None
    ) -> Assessment:
        records = self._load()
        record = self._find(records, assessment_id)
        record.status = status
        record.touch()
        self._write(records)
        return record.model_copy(deep=True)

    async def save_step(
        self, assessment_id: str, step_key: StepKey, value: Any, owner_id: Optional[str] = None
    ) -> bool:
        records = self._load()
        record = self._find(records, assessment_id)
        record.steps[step_key.value] = copy.deepcopy(value)
        if step_key is StepKey.CLIENT_INFO:
            record.title = derive_title(value, record.evaluation_type)
        record.touch()
        return self._write(records)

    async def get_step(self, assessment_id: str, step_key: StepKey, owner_id: Optional[str] = None) -> Any:
        record = self._find(self._load(), assessment_id)
        value = record.steps.get(step_key.value)
        return {} if value is None else value

    async def get_steps(self, assessment_id: str, owner_id: Optional[str] = None) -> Dict[str, Any]:
        return dict(self._find(self._load(), assessment_id).steps)

    async def delete(self, assessment_id: str, owner_id: Optional[str] = None) -> None:
        records = self._load()
        remaining = [record for record in records if record.id != assessment_id]
        if len(remaining) == len(records):
            raise AssessmentNotFound(assessment_id)
        self._write(remaining)


__all__ = ["DemoAssessmentStore"]
