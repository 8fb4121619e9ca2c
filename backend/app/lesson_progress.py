"""Lesson unlock/start/completion state machine.

Lessons move ``locked -> unlocked -> started -> completed`` and never regress.
Write operations return ``True``/``False``; storage failures are logged and
reported as ``False`` so callers can keep a local copy of the session.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Dict, Optional, Sequence

from pydantic import BaseModel

from .progress_models import (
    ActivityUpdate,
    ChatMessage,
    LessonProgress,
    LessonUpdate,
    WeeklyEntry,
    lesson_key,
    next_lesson_id,
    weekday_abbreviation,
)
from .progress_store import ProgressStore, ProgressStoreError
from .telemetry import emit_event
from .weekly import Clock, make_clock

logger = logging.getLogger(__name__)

FIRST_LESSON_ID = "1"


class LessonAccess(BaseModel):
    chapter_id: str
    lesson_id: str
    accessible: bool
    unlocked: bool
    reason: Optional[str] = None


def is_first_lesson(lesson_id: str) -> bool:
    return lesson_id.strip() == FIRST_LESSON_ID


class LessonProgressTracker:
    def __init__(self, store: ProgressStore, *, clock: Optional[Clock] = None) -> None:
        self._store = store
        self._clock = clock or make_clock(timezone.utc)

    def _now(self) -> datetime:
        return self._clock()

    def initialize(self, user_id: str, chapter_id: str, lesson_id: str, is_first_lesson: bool = False) -> bool:
        """Create the lesson document on first visit; existing documents are left alone."""
        now = self._now()
        try:
            created = self._store.create_lesson(
                user_id,
                LessonProgress(
                    chapter_id=chapter_id,
                    lesson_id=lesson_id,
                    unlocked=is_first_lesson,
                    unlocked_at=now if is_first_lesson else None,
                    created_at=now,
                ),
            )
        except ProgressStoreError:
            logger.exception("Error initializing lesson progress %s for user_id=%s", lesson_key(chapter_id, lesson_id), user_id)
            return False
        if created:
            logger.debug("Created lesson progress %s for user_id=%s", lesson_key(chapter_id, lesson_id), user_id)
        return True

    def start_session(self, user_id: str, chapter_id: str, lesson_id: str) -> bool:
        try:
            self._store.update_lesson(
                user_id,
                chapter_id,
                lesson_id,
                LessonUpdate(started=True, last_attempt=self._now()),
                create_missing=True,
            )
        except ProgressStoreError:
            logger.exception("Error starting lesson session %s for user_id=%s", lesson_key(chapter_id, lesson_id), user_id)
            return False
        return True

    def save_chat_message(self, user_id: str, chapter_id: str, lesson_id: str, message: ChatMessage) -> bool:
        try:
            self._store.update_lesson(
                user_id,
                chapter_id,
                lesson_id,
                LessonUpdate(append_messages=[message], last_attempt=self._now()),
                create_missing=True,
            )
        except ProgressStoreError:
            logger.exception("Error saving chat message to %s for user_id=%s", lesson_key(chapter_id, lesson_id), user_id)
            return False
        return True

    def complete_and_unlock_next(
        self,
        user_id: str,
        chapter_id: str,
        lesson_id: str,
        duration_seconds: int,
        messages: Sequence[ChatMessage],
        *,
        operation_id: Optional[str] = None,
    ) -> bool:
        """Complete the lesson, unlock the next one and credit the user's aggregates.

        The three writes are independent; a failure part-way leaves earlier
        writes in place and the operation id unrecorded, so the same call can
        be retried.
        """
        key = lesson_key(chapter_id, lesson_id)
        following = next_lesson_id(lesson_id)
        minutes = max(int(duration_seconds), 0) // 60
        now = self._now()
        today = now.date().isoformat()
        try:
            if operation_id and self._store.has_operation(user_id, operation_id):
                logger.info("Completion %s for %s already applied; skipping", operation_id, key)
                return True

            self._store.update_lesson(
                user_id,
                chapter_id,
                lesson_id,
                LessonUpdate(
                    started=True,
                    completed=True,
                    minutes_spent=minutes,
                    messages=list(messages),
                    last_attempt=now,
                    completed_at=now,
                ),
                create_missing=True,
            )

            created = self._store.create_lesson(
                user_id,
                LessonProgress(
                    chapter_id=chapter_id,
                    lesson_id=following,
                    unlocked=True,
                    unlocked_at=now,
                    created_at=now,
                ),
            )
            if not created:
                self._store.update_lesson(
                    user_id,
                    chapter_id,
                    following,
                    LessonUpdate(unlocked=True, unlocked_at=now),
                )

            self._store.apply_activity(
                user_id,
                ActivityUpdate(
                    total_minutes_delta=minutes,
                    lessons_completed_delta=1,
                    last_completed_lesson=key,
                    last_active_day=today,
                    activity_day=today,
                    weekly_entry=WeeklyEntry(
                        day=weekday_abbreviation(now),
                        minutes=minutes,
                        timestamp=now,
                        lesson_id=key,
                    ),
                ),
            )
            if operation_id:
                self._store.record_operation(user_id, operation_id, key)
        except ProgressStoreError:
            logger.exception("Error completing lesson %s for user_id=%s", key, user_id)
            emit_event("progress_save_failed", user_id=user_id, operation="complete_lesson", lesson=key)
            return False

        emit_event("lesson_completed", user_id=user_id, lesson=key, minutes=minutes)
        emit_event("lesson_unlocked", user_id=user_id, lesson=lesson_key(chapter_id, following), created=created)
        return True

    def save_partial_progress(
        self,
        user_id: str,
        chapter_id: str,
        lesson_id: str,
        duration_seconds: int,
        messages: Sequence[ChatMessage],
    ) -> bool:
        """Keep time and transcript of a session left before completion."""
        if duration_seconds <= 0:
            return True
        key = lesson_key(chapter_id, lesson_id)
        try:
            self._store.update_lesson(
                user_id,
                chapter_id,
                lesson_id,
                LessonUpdate(
                    minutes_delta=int(duration_seconds) // 60,
                    messages=list(messages),
                    last_attempt=self._now(),
                ),
                create_missing=True,
            )
        except ProgressStoreError:
            logger.exception("Error saving partial progress %s for user_id=%s", key, user_id)
            emit_event("progress_save_failed", user_id=user_id, operation="save_partial", lesson=key)
            return False
        return True

    def get_lesson_progress(self, user_id: str, chapter_id: str, lesson_id: str) -> Optional[LessonProgress]:
        return self._store.get_lesson(user_id, chapter_id, lesson_id)

    def get_chapter_progress(self, user_id: str, chapter_id: str) -> Dict[str, LessonProgress]:
        return self._store.list_chapter(user_id, chapter_id)

    def check_lesson_access(self, user_id: str, chapter_id: str, lesson_id: str) -> LessonAccess:
        current = self._store.get_lesson(user_id, chapter_id, lesson_id)
        unlocked = bool(current and current.unlocked)
        if is_first_lesson(lesson_id):
            return LessonAccess(chapter_id=chapter_id, lesson_id=lesson_id, accessible=True, unlocked=True)

        previous_id = str(int(lesson_id) - 1)
        previous = self._store.get_lesson(user_id, chapter_id, previous_id)
        if previous is None or not previous.completed:
            return LessonAccess(
                chapter_id=chapter_id,
                lesson_id=lesson_id,
                accessible=False,
                unlocked=unlocked,
                reason=f"Complete lesson {previous_id} to unlock this lesson.",
            )
        return LessonAccess(chapter_id=chapter_id, lesson_id=lesson_id, accessible=True, unlocked=unlocked)


__all__ = ["FIRST_LESSON_ID", "LessonAccess", "LessonProgressTracker", "is_first_lesson"]
