"""Session orchestration: timer, tracker and aggregator wired together per conversation."""

from __future__ import annotations

import logging
import time
from typing import Callable, List, Literal, Optional
from uuid import uuid4

from pydantic import BaseModel

from .config import Settings, get_settings
from .constants import SOFT_FAILURE_WARNING
from .lesson_progress import LessonProgressTracker
from .local_cache import LocalProgressCache, LocalProgressSnapshot
from .progress_models import ChatMessage, lesson_key
from .session_timer import SessionTimer
from .weekly import WeeklyAggregator

logger = logging.getLogger(__name__)


class SaveOutcome(BaseModel):
    saved_to_cloud: bool
    cached_locally: bool = False
    warning: Optional[str] = None


def cache_locally(
    cache: Optional[LocalProgressCache],
    snapshot: LocalProgressSnapshot,
) -> SaveOutcome:
    """Shadow a failed write in the local cache and build the soft-failure outcome."""
    if cache is None:
        return SaveOutcome(saved_to_cloud=False, warning=SOFT_FAILURE_WARNING)
    try:
        cache.save(snapshot)
    except (OSError, ValueError):
        logger.exception("Failed to cache %s locally for user_id=%s", snapshot.key, snapshot.user_id)
        return SaveOutcome(saved_to_cloud=False, warning=SOFT_FAILURE_WARNING)
    return SaveOutcome(saved_to_cloud=False, cached_locally=True, warning=SOFT_FAILURE_WARNING)


class LessonChatSession:
    """One learner conversation inside a lesson.

    The timer starts on the first user message and completes the lesson once the
    threshold is reached. Leaving early stores partial progress instead. Failed
    writes are shadowed in the local cache under the session's operation id, so
    a later replay does not credit the lesson twice.
    """

    def __init__(
        self,
        tracker: LessonProgressTracker,
        user_id: str,
        chapter_id: str,
        lesson_id: str,
        *,
        threshold_seconds: int,
        cache: Optional[LocalProgressCache] = None,
        clock: Callable[[], float] = time.monotonic,
        is_first_lesson: bool = False,
    ) -> None:
        self.user_id = user_id
        self.chapter_id = chapter_id
        self.lesson_id = lesson_id
        self.is_first_lesson = is_first_lesson
        self.operation_id = uuid4().hex
        self.messages: List[ChatMessage] = []
        self.outcome: Optional[SaveOutcome] = None
        self._tracker = tracker
        self._cache = cache
        self.timer = SessionTimer(threshold_seconds, self._on_threshold, clock=clock)

    @classmethod
    def from_settings(
        cls,
        tracker: LessonProgressTracker,
        user_id: str,
        chapter_id: str,
        lesson_id: str,
        *,
        settings: Optional[Settings] = None,
        cache: Optional[LocalProgressCache] = None,
        is_first_lesson: bool = False,
    ) -> "LessonChatSession":
        settings = settings or get_settings()
        return cls(
            tracker,
            user_id,
            chapter_id,
            lesson_id,
            threshold_seconds=settings.lesson_session_threshold_seconds,
            cache=cache,
            is_first_lesson=is_first_lesson,
        )

    @property
    def key(self) -> str:
        return lesson_key(self.chapter_id, self.lesson_id)

    @property
    def completed(self) -> bool:
        return self.outcome is not None

    def open(self) -> bool:
        if not self._tracker.initialize(self.user_id, self.chapter_id, self.lesson_id, self.is_first_lesson):
            return False
        return self._tracker.start_session(self.user_id, self.chapter_id, self.lesson_id)

    def add_message(self, message: ChatMessage) -> bool:
        """Record ``message``; completed lessons keep accepting chat."""
        self.messages.append(message)
        self.timer.observe(message)
        saved = self._tracker.save_chat_message(self.user_id, self.chapter_id, self.lesson_id, message)
        self.timer.tick()
        return saved

    def tick(self) -> int:
        return self.timer.tick()

    def clear(self) -> None:
        self.messages = []
        self.timer.reset()

    def _on_threshold(self, elapsed: int) -> None:
        self.complete(elapsed)

    def complete(self, duration_seconds: Optional[int] = None) -> SaveOutcome:
        if self.outcome is not None and self.outcome.saved_to_cloud:
            return self.outcome
        duration = self.timer.elapsed_seconds() if duration_seconds is None else duration_seconds
        ok = self._tracker.complete_and_unlock_next(
            self.user_id,
            self.chapter_id,
            self.lesson_id,
            duration,
            self.messages,
            operation_id=self.operation_id,
        )
        if ok:
            self.outcome = SaveOutcome(saved_to_cloud=True)
        else:
            logger.warning("Lesson %s completion not saved for user_id=%s; caching locally", self.key, self.user_id)
            self.outcome = cache_locally(self._cache, self._snapshot(duration, completed=True))
        return self.outcome

    def exit(self) -> SaveOutcome:
        """Persist what the learner did when they leave the lesson."""
        if self.outcome is not None:
            return self.outcome
        duration = self.timer.elapsed_seconds()
        self.timer.stop()
        if self._tracker.save_partial_progress(
            self.user_id, self.chapter_id, self.lesson_id, duration, self.messages
        ):
            return SaveOutcome(saved_to_cloud=True)
        logger.warning("Partial progress for %s not saved for user_id=%s; caching locally", self.key, self.user_id)
        return cache_locally(self._cache, self._snapshot(duration, completed=False))

    def _snapshot(self, duration_seconds: int, *, completed: bool) -> LocalProgressSnapshot:
        return LocalProgressSnapshot(
            user_id=self.user_id,
            chapter_id=self.chapter_id,
            lesson_id=self.lesson_id,
            duration_seconds=max(int(duration_seconds), 0),
            messages=list(self.messages),
            completed=completed,
            operation_id=self.operation_id if completed else None,
        )


class PracticeSession:
    """Free voice or chat practice outside the lesson roadmap.

    Each time the threshold is reached the session is credited to the user's
    aggregates and the timer starts again from zero.
    """

    def __init__(
        self,
        aggregator: WeeklyAggregator,
        user_id: str,
        *,
        threshold_seconds: int,
        kind: Literal["voice", "chat"] = "voice",
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.user_id = user_id
        self.kind = kind
        self.recorded: List[bool] = []
        self._aggregator = aggregator
        self.timer = SessionTimer(threshold_seconds, self._on_threshold, clock=clock)

    @classmethod
    def from_settings(
        cls,
        aggregator: WeeklyAggregator,
        user_id: str,
        *,
        kind: Literal["voice", "chat"] = "voice",
        settings: Optional[Settings] = None,
    ) -> "PracticeSession":
        settings = settings or get_settings()
        return cls(aggregator, user_id, threshold_seconds=settings.voice_session_threshold_seconds, kind=kind)

    def add_message(self, message: ChatMessage) -> None:
        self.timer.observe(message)
        self.timer.tick()

    def tick(self) -> int:
        return self.timer.tick()

    def _on_threshold(self, elapsed: int) -> None:
        self.finish(elapsed)

    def finish(self, duration_seconds: Optional[int] = None) -> bool:
        duration = self.timer.elapsed_seconds() if duration_seconds is None else duration_seconds
        ok = self._aggregator.record_practice(self.user_id, duration // 60, kind=self.kind)
        self.recorded.append(ok)
        self.timer.reset()
        return ok


__all__ = ["LessonChatSession", "PracticeSession", "SaveOutcome", "cache_locally"]
