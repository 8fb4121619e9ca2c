from __future__ import annotations

import os
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Callable, Iterator, List

import pytest

_TEST_DIR = Path(tempfile.mkdtemp(prefix="lingo-progress-tests-"))
os.environ.setdefault("LINGO_DATABASE_URL", f"sqlite:///{_TEST_DIR / 'progress.sqlite'}")
os.environ.setdefault("LINGO_LOCAL_CACHE_PATH", str(_TEST_DIR / "local_progress.json"))
os.environ.setdefault("LINGO_DB_TELEMETRY_INTERVAL", "0")

from sqlalchemy import delete  # noqa: E402

from app.db.base import Base  # noqa: E402
from app.db import models  # noqa: E402
from app.db.session import dispose_engine, get_engine, session_scope  # noqa: E402
from app.progress_store import InMemoryProgressStore  # noqa: E402
from app.telemetry import TelemetryEvent, register_listener, unregister_listener  # noqa: E402


@pytest.fixture(scope="session", autouse=True)
def _schema() -> Iterator[None]:
    Base.metadata.create_all(get_engine())
    yield
    dispose_engine()


@pytest.fixture
def database() -> Iterator[None]:
    """Empty progress tables before and after the test."""

    def _wipe() -> None:
        with session_scope() as session:
            for model in (
                models.ProgressAuditEventModel,
                models.CompletionOperationModel,
                models.LessonProgressModel,
                models.UserProgressModel,
            ):
                session.execute(delete(model))

    _wipe()
    yield
    _wipe()


@pytest.fixture
def memory_store() -> InMemoryProgressStore:
    return InMemoryProgressStore()


@pytest.fixture
def fixed_clock() -> Callable[[datetime], Callable[[], datetime]]:
    def factory(moment: datetime) -> Callable[[], datetime]:
        return lambda: moment

    return factory


@pytest.fixture
def events() -> Iterator[List[TelemetryEvent]]:
    captured: List[TelemetryEvent] = []
    register_listener(captured.append)
    yield captured
    unregister_listener(captured.append)


class ManualClock:
    """Monotonic clock the tests move forward by hand."""

    def __init__(self, start: float = 1000.0) -> None:
        self.value = start

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float) -> None:
        self.value += seconds


@pytest.fixture
def manual_clock() -> ManualClock:
    return ManualClock()
