from __future__ import annotations

from datetime import datetime, timezone

from app.config import Settings
from app.constants import SOFT_FAILURE_WARNING
from app.lesson_progress import LessonProgressTracker
from app.local_cache import LocalProgressCache
from app.progress_models import AIMessage, UserMessage
from app.progress_store import InMemoryProgressStore, StoreUnavailableError
from app.sessions import LessonChatSession, PracticeSession
from app.weekly import WeeklyAggregator

NOW = datetime(2024, 1, 10, 12, 0, tzinfo=timezone.utc)


class _OfflineStore(InMemoryProgressStore):
    offline = False

    def update_lesson(self, *args, **kwargs):  # type: ignore[override]
        if self.offline:
            raise StoreUnavailableError("offline")
        return super().update_lesson(*args, **kwargs)


def _session(store, manual_clock, cache=None, threshold=900) -> LessonChatSession:
    tracker = LessonProgressTracker(store, clock=lambda: NOW)
    return LessonChatSession(
        tracker,
        "learner",
        "1",
        "1",
        threshold_seconds=threshold,
        cache=cache,
        clock=manual_clock,
        is_first_lesson=True,
    )


def test_lesson_completes_when_threshold_is_reached(memory_store, manual_clock) -> None:
    session = _session(memory_store, manual_clock)
    assert session.open()
    assert memory_store.get_lesson("learner", "1", "1").started

    session.add_message(AIMessage(id=1, content="Hola!"))
    session.add_message(UserMessage(id=2, content="Hola, que tal?"))
    manual_clock.advance(600)
    session.tick()
    assert not session.completed

    manual_clock.advance(300)
    session.tick()

    assert session.completed
    assert session.outcome.saved_to_cloud
    assert memory_store.get_lesson("learner", "1", "1").minutes_spent == 15
    assert memory_store.get_lesson("learner", "1", "2").unlocked
    assert memory_store.get_user("learner").lessons_completed == 1


def test_messages_after_completion_are_still_saved(memory_store, manual_clock) -> None:
    session = _session(memory_store, manual_clock, threshold=60)
    session.open()
    session.add_message(UserMessage(id=1, content="Hi"))
    manual_clock.advance(60)
    session.tick()

    assert session.add_message(UserMessage(id=2, content="One more question"))

    assert len(memory_store.get_lesson("learner", "1", "1").messages) == 2
    assert memory_store.get_user("learner").lessons_completed == 1


def test_exit_saves_partial_progress(memory_store, manual_clock) -> None:
    session = _session(memory_store, manual_clock)
    session.open()
    session.add_message(UserMessage(id=1, content="Hi"))
    manual_clock.advance(185)

    outcome = session.exit()

    assert outcome.saved_to_cloud
    lesson = memory_store.get_lesson("learner", "1", "1")
    assert lesson.minutes_spent == 3
    assert lesson.completed is False


def test_failed_exit_is_cached_locally(manual_clock, tmp_path) -> None:
    store = _OfflineStore()
    cache = LocalProgressCache(tmp_path / "cache.json")
    session = _session(store, manual_clock, cache=cache)
    session.open()
    session.add_message(UserMessage(id=1, content="Hi"))
    manual_clock.advance(240)
    store.offline = True

    outcome = session.exit()

    assert outcome.saved_to_cloud is False
    assert outcome.cached_locally is True
    assert outcome.warning == SOFT_FAILURE_WARNING
    snapshot = cache.get("learner", "1", "1")
    assert snapshot is not None
    assert snapshot.duration_seconds == 240
    assert snapshot.completed is False
    assert [message.content for message in snapshot.messages] == ["Hi"]


def test_failed_completion_keeps_operation_id_for_replay(manual_clock, tmp_path) -> None:
    store = _OfflineStore()
    cache = LocalProgressCache(tmp_path / "cache.json")
    session = _session(store, manual_clock, cache=cache, threshold=60)
    session.open()
    session.add_message(UserMessage(id=1, content="Hi"))
    store.offline = True
    manual_clock.advance(60)
    session.tick()

    assert session.outcome is not None
    assert session.outcome.cached_locally
    snapshot = cache.get("learner", "1", "1")
    assert snapshot.completed is True
    assert snapshot.operation_id == session.operation_id

    store.offline = False
    assert session.complete().saved_to_cloud


def test_soft_failure_without_cache_still_warns(manual_clock) -> None:
    store = _OfflineStore()
    session = _session(store, manual_clock)
    session.open()
    manual_clock.advance(120)
    session.timer.start()
    manual_clock.advance(120)
    store.offline = True

    outcome = session.exit()

    assert outcome.saved_to_cloud is False
    assert outcome.cached_locally is False
    assert outcome.warning == SOFT_FAILURE_WARNING


def test_practice_session_records_each_threshold(memory_store, manual_clock) -> None:
    aggregator = WeeklyAggregator(memory_store, clock=lambda: NOW)
    practice = PracticeSession(aggregator, "learner", threshold_seconds=300, kind="voice", clock=manual_clock)

    practice.add_message(UserMessage(id=1, content="Good morning"))
    manual_clock.advance(300)
    practice.tick()
    manual_clock.advance(300)
    practice.tick()

    assert practice.recorded == [True, True]
    progress = memory_store.get_user("learner")
    assert progress.sessions_completed == 2
    assert progress.total_minutes == 10


def test_sessions_take_thresholds_from_settings(memory_store, monkeypatch) -> None:
    monkeypatch.setenv("LINGO_LESSON_SESSION_THRESHOLD_SECONDS", "600")
    monkeypatch.setenv("LINGO_VOICE_SESSION_THRESHOLD_SECONDS", "1200")
    settings = Settings()
    tracker = LessonProgressTracker(memory_store, clock=lambda: NOW)
    aggregator = WeeklyAggregator(memory_store, clock=lambda: NOW)

    lesson = LessonChatSession.from_settings(tracker, "learner", "1", "1", settings=settings)
    practice = PracticeSession.from_settings(aggregator, "learner", kind="chat", settings=settings)

    assert lesson.timer.threshold_seconds == 600
    assert practice.timer.threshold_seconds == 1200
    assert practice.kind == "chat"
