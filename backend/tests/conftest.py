from __future__ import annotations

from pathlib import Path
from typing import Iterator

import pytest

from aria_sessions.config import get_settings
from aria_sessions.db import Base, dispose_engine, get_engine
from aria_sessions.db import models  # noqa: F401
from aria_sessions.telemetry import clear_listeners


@pytest.fixture(autouse=True)
def _reset_telemetry() -> Iterator[None]:
    yield
    clear_listeners()


@pytest.fixture
def sqlite_database(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[str]:
    """A file-backed sqlite database with the assessment tables created.

    A file is required because the remote store talks to it from worker threads.
    """
    url = f"sqlite:///{tmp_path / 'assessments.sqlite'}"
    monkeypatch.setenv("ARIA_DATABASE_URL", url)
    get_settings.cache_clear()
    dispose_engine()
    Base.metadata.create_all(get_engine())
    yield url
    dispose_engine()
    get_settings.cache_clear()
