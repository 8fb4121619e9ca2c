"""DatabaseProgressStore against the sqlite test database."""

from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime, timezone

import pytest
from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.exc import OperationalError, ProgrammingError

from app import progress_store as store_module
from app.config import Settings
from app.db.models import LessonProgressModel, UserProgressModel
from app.db.session import session_scope
from app.lesson_progress import LessonProgressTracker
from app.progress_models import (
    ActivityUpdate,
    ArchivedWeek,
    LessonProgress,
    LessonUpdate,
    UserMessage,
    WeeklyEntry,
    weekday_abbreviation,
)
from app.progress_store import (
    DatabaseProgressStore,
    InMemoryProgressStore,
    ProgressStoreError,
    StorePermissionError,
    StoreUnavailableError,
    build_progress_store,
)
from app.weekly import WeeklyAggregator, format_weekly_data

NOW = datetime(2024, 1, 10, 12, 0, tzinfo=timezone.utc)


def test_ensure_user_creates_defaults(database) -> None:
    store = DatabaseProgressStore()
    assert store.get_user("learner") is None

    progress = store.ensure_user(" learner ")

    assert progress.user_id == "learner"
    assert progress.total_minutes == 0
    assert progress.weekly_progress == []
    assert store.get_user("learner") is not None


def test_activity_updates_increment_and_union(database) -> None:
    store = DatabaseProgressStore()
    entry = WeeklyEntry(day="Wed", minutes=15, timestamp=NOW, lesson_id="1_1")
    update = ActivityUpdate(
        total_minutes_delta=15,
        lessons_completed_delta=1,
        activity_day="2024-01-10",
        weekly_entry=entry,
    )

    store.apply_activity("learner", update)
    progress = store.apply_activity("learner", update)

    assert progress.total_minutes == 30
    assert progress.lessons_completed == 2
    assert progress.activity_log == {"2024-01-10": 2}
    assert progress.weekly_progress == [entry]


def test_archive_week_moves_entries(database) -> None:
    store = DatabaseProgressStore()
    entry = WeeklyEntry(day="Mon", minutes=5, timestamp=NOW)
    store.apply_activity("learner", ActivityUpdate(weekly_entry=entry))

    progress = store.archive_week("learner", ArchivedWeek(week_ending=NOW, progress=[entry]), NOW)

    assert progress.weekly_progress == []
    assert progress.archived_progress[0].progress == [entry]
    assert progress.last_week_reset == NOW


def test_lesson_documents_round_trip(database) -> None:
    store = DatabaseProgressStore()
    lesson = LessonProgress(chapter_id="3", lesson_id="1", unlocked=True, unlocked_at=NOW, created_at=NOW)

    assert store.create_lesson("learner", lesson)
    assert not store.create_lesson("learner", lesson)

    message = UserMessage(id=7, content="Guten Tag", timestamp=NOW)
    updated = store.update_lesson(
        "learner",
        "3",
        "1",
        LessonUpdate(started=True, append_messages=[message], last_attempt=NOW),
    )
    assert updated.state == "started"
    assert updated.messages == [message]

    with pytest.raises(LookupError):
        store.update_lesson("learner", "3", "9", LessonUpdate(started=True))

    assert sorted(store.list_chapter("learner", "3")) == ["1"]
    assert store.list_chapter("learner", "4") == {}


def test_operations_are_recorded_once(database) -> None:
    store = DatabaseProgressStore()
    assert not store.has_operation("learner", "op-1")
    store.record_operation("learner", "op-1", "1_1")
    store.record_operation("learner", "op-1", "1_1")
    assert store.has_operation("learner", "op-1")
    assert not store.has_operation("someone-else", "op-1")


def test_tracker_and_aggregator_on_database(database) -> None:
    store = DatabaseProgressStore()
    tracker = LessonProgressTracker(store, clock=lambda: NOW)
    aggregator = WeeklyAggregator(store, clock=lambda: NOW)

    tracker.initialize("learner", "1", "1", is_first_lesson=True)
    assert tracker.complete_and_unlock_next("learner", "1", "1", 960, [], operation_id="op-db")
    assert tracker.complete_and_unlock_next("learner", "1", "1", 960, [], operation_id="op-db")
    assert aggregator.record_practice("learner", 20)

    progress = store.get_user("learner")
    assert progress.lessons_completed == 1
    assert progress.sessions_completed == 1
    assert progress.total_minutes == 36
    assert store.get_lesson("learner", "1", "2").unlocked


def test_subscribers_receive_snapshots(database) -> None:
    store = DatabaseProgressStore()
    received = []
    unsubscribe = store.subscribe("learner", received.append)

    store.apply_activity("learner", ActivityUpdate(total_minutes_delta=4))
    unsubscribe()
    store.apply_activity("learner", ActivityUpdate(total_minutes_delta=4))

    assert [snapshot.total_minutes for snapshot in received] == [4]


def test_failing_listener_does_not_break_writes(memory_store) -> None:
    def boom(_snapshot) -> None:
        raise RuntimeError("listener failed")

    memory_store.subscribe("learner", boom)
    assert memory_store.apply_activity("learner", ActivityUpdate(total_minutes_delta=1)).total_minutes == 1


@pytest.mark.parametrize(
    ("error", "expected"),
    [
        (ProgrammingError("SELECT", {}, Exception("permission denied for table user_progress")), StorePermissionError),
        (OperationalError("SELECT", {}, Exception("could not connect")), StoreUnavailableError),
        (RuntimeError("LINGO_DATABASE_URL must be configured"), StoreUnavailableError),
    ],
)
def test_database_errors_are_mapped(monkeypatch, error, expected) -> None:
    @contextmanager
    def failing_scope():
        raise error
        yield  # pragma: no cover

    monkeypatch.setattr(store_module, "session_scope", failing_scope)

    with pytest.raises(expected):
        DatabaseProgressStore().ensure_user("learner")


def test_build_progress_store_honours_persistence_mode() -> None:
    memory = Settings(LINGO_PERSISTENCE_MODE="memory")
    database = Settings(LINGO_PERSISTENCE_MODE="database")
    assert isinstance(build_progress_store(memory), InMemoryProgressStore)
    assert isinstance(build_progress_store(database), DatabaseProgressStore)


def test_stored_messages_that_fail_validation_are_skipped(database) -> None:
    store = DatabaseProgressStore()
    tracker = LessonProgressTracker(store, clock=lambda: NOW)
    tracker.initialize("learner", "1", "1", is_first_lesson=True)
    with session_scope() as session:
        row = session.execute(select(LessonProgressModel)).scalar_one()
        row.messages = [
            {"id": 1, "content": "x", "sender": "system"},
            {"id": 2, "content": "Hola", "sender": "user", "timestamp": NOW.isoformat()},
        ]

    assert [message.content for message in store.get_lesson("learner", "1", "1").messages] == ["Hola"]
    assert tracker.start_session("learner", "1", "1") is True
    assert tracker.save_chat_message("learner", "1", "1", UserMessage(id=3, content="Adios", timestamp=NOW))
    assert [message.id for message in store.get_lesson("learner", "1", "1").messages] == [2, 3]


def test_weekly_entries_without_timestamp_are_stamped_on_read(database) -> None:
    store = DatabaseProgressStore()
    store.ensure_user("learner")
    today = weekday_abbreviation(datetime.now(timezone.utc))
    with session_scope() as session:
        row = session.execute(select(UserProgressModel)).scalar_one()
        row.weekly_progress = [{"day": today, "minutes": 30}, {"day": today, "minutes": "bad"}]

    progress = store.get_user("learner")

    assert [entry.minutes for entry in progress.weekly_progress] == [30]
    assert sum(bucket.minutes for bucket in format_weekly_data(progress.weekly_progress)) == 30


def test_chapter_lessons_are_listed_in_numeric_order(database, memory_store) -> None:
    for store in (DatabaseProgressStore(), memory_store):
        for lesson_id in ("10", "2", "1"):
            store.create_lesson("learner", LessonProgress(chapter_id="5", lesson_id=lesson_id, created_at=NOW))

        assert list(store.list_chapter("learner", "5")) == ["1", "2", "10"]


def test_validation_errors_surface_as_store_errors(monkeypatch) -> None:
    try:
        WeeklyEntry.model_validate({"day": "Mon"})
    except ValidationError as exc:
        error = exc

    @contextmanager
    def failing_scope():
        raise error
        yield  # pragma: no cover

    monkeypatch.setattr(store_module, "session_scope", failing_scope)

    with pytest.raises(ProgressStoreError):
        DatabaseProgressStore().get_lesson("learner", "1", "1")
