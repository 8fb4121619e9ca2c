from __future__ import annotations

from datetime import datetime, timezone

from app.lesson_progress import LessonProgressTracker
from app.local_cache import LocalProgressCache, LocalProgressSnapshot
from app.progress_models import UserMessage
from app.progress_store import InMemoryProgressStore, StoreUnavailableError
from scripts.backfill_local_progress import replay_local_progress

NOW = datetime(2024, 1, 10, 12, 0, tzinfo=timezone.utc)


class _FlakyStore(InMemoryProgressStore):
    def __init__(self, broken_chapter: str) -> None:
        super().__init__()
        self.broken_chapter = broken_chapter

    def update_lesson(self, user_id, chapter_id, *args, **kwargs):  # type: ignore[override]
        if chapter_id == self.broken_chapter:
            raise StoreUnavailableError("still offline")
        return super().update_lesson(user_id, chapter_id, *args, **kwargs)


def _snapshot(chapter_id: str, lesson_id: str, *, completed: bool, operation_id: str | None = None) -> LocalProgressSnapshot:
    return LocalProgressSnapshot(
        user_id="learner",
        chapter_id=chapter_id,
        lesson_id=lesson_id,
        duration_seconds=900 if completed else 180,
        messages=[UserMessage(id=1, content="Ciao", timestamp=NOW)],
        completed=completed,
        operation_id=operation_id,
        saved_at=NOW,
    )


def test_replay_pushes_snapshots_and_clears_cache(tmp_path) -> None:
    cache = LocalProgressCache(tmp_path / "cache.json")
    cache.save(_snapshot("1", "1", completed=True, operation_id="op-cached"))
    cache.save(_snapshot("1", "2", completed=False))
    store = InMemoryProgressStore()
    tracker = LessonProgressTracker(store, clock=lambda: NOW)

    summary = replay_local_progress(cache, tracker)

    assert (summary.replayed, summary.failed) == (2, 0)
    assert cache.pending() == []
    assert store.get_lesson("learner", "1", "1").completed
    assert store.get_lesson("learner", "1", "2").minutes_spent == 3
    assert store.has_operation("learner", "op-cached")


def test_replayed_completion_is_not_credited_twice(tmp_path) -> None:
    store = InMemoryProgressStore()
    tracker = LessonProgressTracker(store, clock=lambda: NOW)
    assert tracker.complete_and_unlock_next("learner", "1", "1", 900, [], operation_id="op-dup")

    cache = LocalProgressCache(tmp_path / "cache.json")
    cache.save(_snapshot("1", "1", completed=True, operation_id="op-dup"))
    replay_local_progress(cache, tracker)

    assert store.get_user("learner").lessons_completed == 1


def test_failed_replays_stay_cached(tmp_path) -> None:
    cache = LocalProgressCache(tmp_path / "cache.json")
    cache.save(_snapshot("1", "1", completed=False))
    cache.save(_snapshot("2", "1", completed=False))
    tracker = LessonProgressTracker(_FlakyStore(broken_chapter="2"), clock=lambda: NOW)

    summary = replay_local_progress(cache, tracker, user_id="learner")

    assert (summary.replayed, summary.failed) == (1, 1)
    assert [snapshot.chapter_id for snapshot in cache.pending()] == ["2"]
