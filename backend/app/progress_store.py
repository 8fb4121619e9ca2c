"""Progress document store: the persistence seam for trackers and aggregators.

Both implementations expose the same primitives (point read, create, merge/update,
increment and append via :class:`ActivityUpdate` / :class:`LessonUpdate`, and
chapter queries by equality) plus ``subscribe`` for live change notification.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Callable, Dict, Iterator, List, Optional, Set, Tuple

from pydantic import ValidationError
from sqlalchemy.exc import OperationalError, ProgrammingError, SQLAlchemyError
from sqlalchemy.orm import Session

from .config import Settings, get_settings
from .db.session import session_scope
from .progress_models import (
    ActivityUpdate,
    ArchivedWeek,
    LessonProgress,
    LessonUpdate,
    UserProgress,
    apply_activity,
    apply_lesson_update,
)
from .repositories.progress import lesson_sort_key, normalize_user_id, progress_repository

logger = logging.getLogger(__name__)

ProgressListener = Callable[[UserProgress], None]


class ProgressStoreError(RuntimeError):
    """Base class for storage failures surfaced to trackers as soft errors."""


class StorePermissionError(ProgressStoreError):
    pass


class StoreUnavailableError(ProgressStoreError):
    pass


class ProgressStore:
    """Interface shared by the database and in-memory stores."""

    def __init__(self) -> None:
        self._listeners: Dict[str, List[ProgressListener]] = {}
        self._listener_lock = threading.RLock()

    def get_user(self, user_id: str) -> Optional[UserProgress]:
        raise NotImplementedError

    def ensure_user(self, user_id: str) -> UserProgress:
        raise NotImplementedError

    def apply_activity(self, user_id: str, update: ActivityUpdate) -> UserProgress:
        raise NotImplementedError

    def archive_week(self, user_id: str, archived: ArchivedWeek, reset_at: datetime) -> UserProgress:
        raise NotImplementedError

    def get_lesson(self, user_id: str, chapter_id: str, lesson_id: str) -> Optional[LessonProgress]:
        raise NotImplementedError

    def create_lesson(self, user_id: str, lesson: LessonProgress) -> bool:
        """Create ``lesson`` unless it already exists; returns whether it was created."""
        raise NotImplementedError

    def update_lesson(
        self,
        user_id: str,
        chapter_id: str,
        lesson_id: str,
        update: LessonUpdate,
        *,
        create_missing: bool = False,
    ) -> LessonProgress:
        """Apply ``update``; with ``create_missing`` this behaves as a merge write."""
        raise NotImplementedError

    def list_chapter(self, user_id: str, chapter_id: str) -> Dict[str, LessonProgress]:
        raise NotImplementedError

    def has_operation(self, user_id: str, operation_id: str) -> bool:
        raise NotImplementedError

    def record_operation(self, user_id: str, operation_id: str, key: str) -> None:
        raise NotImplementedError

    def subscribe(self, user_id: str, listener: ProgressListener) -> Callable[[], None]:
        """Call ``listener`` with the new snapshot after every write to the user document."""
        normalized = normalize_user_id(user_id)
        with self._listener_lock:
            self._listeners.setdefault(normalized, []).append(listener)

        def unsubscribe() -> None:
            with self._listener_lock:
                listeners = self._listeners.get(normalized, [])
                if listener in listeners:
                    listeners.remove(listener)
                if not listeners:
                    self._listeners.pop(normalized, None)

        return unsubscribe

    def _notify(self, progress: UserProgress) -> None:
        with self._listener_lock:
            listeners = list(self._listeners.get(progress.user_id, []))
        for listener in listeners:
            try:
                listener(progress.model_copy(deep=True))
            except Exception:  # noqa: BLE001
                logger.exception("Progress listener failed for user_id=%s", progress.user_id)


class InMemoryProgressStore(ProgressStore):
    """Process-local store used by tests and the ``memory`` persistence mode."""

    def __init__(self) -> None:
        super().__init__()
        self._users: Dict[str, UserProgress] = {}
        self._lessons: Dict[Tuple[str, str, str], LessonProgress] = {}
        self._operations: Set[Tuple[str, str]] = set()
        self._lock = threading.RLock()

    def get_user(self, user_id: str) -> Optional[UserProgress]:
        with self._lock:
            progress = self._users.get(normalize_user_id(user_id))
            return progress.model_copy(deep=True) if progress else None

    def ensure_user(self, user_id: str) -> UserProgress:
        with self._lock:
            return self._require_user(user_id).model_copy(deep=True)

    def apply_activity(self, user_id: str, update: ActivityUpdate) -> UserProgress:
        with self._lock:
            progress = apply_activity(self._require_user(user_id), update)
            self._users[progress.user_id] = progress
            snapshot = progress.model_copy(deep=True)
        self._notify(snapshot)
        return snapshot

    def archive_week(self, user_id: str, archived: ArchivedWeek, reset_at: datetime) -> UserProgress:
        with self._lock:
            progress = self._require_user(user_id).model_copy(deep=True)
            progress.archived_progress.append(archived.model_copy(deep=True))
            progress.weekly_progress = []
            progress.last_week_reset = reset_at
            progress.last_updated = reset_at
            self._users[progress.user_id] = progress
            snapshot = progress.model_copy(deep=True)
        self._notify(snapshot)
        return snapshot

    def get_lesson(self, user_id: str, chapter_id: str, lesson_id: str) -> Optional[LessonProgress]:
        with self._lock:
            lesson = self._lessons.get(self._lesson_key(user_id, chapter_id, lesson_id))
            return lesson.model_copy(deep=True) if lesson else None

    def create_lesson(self, user_id: str, lesson: LessonProgress) -> bool:
        key = self._lesson_key(user_id, lesson.chapter_id, lesson.lesson_id)
        with self._lock:
            if key in self._lessons:
                return False
            self._lessons[key] = lesson.model_copy(deep=True)
            return True

    def update_lesson(
        self,
        user_id: str,
        chapter_id: str,
        lesson_id: str,
        update: LessonUpdate,
        *,
        create_missing: bool = False,
    ) -> LessonProgress:
        key = self._lesson_key(user_id, chapter_id, lesson_id)
        with self._lock:
            current = self._lessons.get(key)
            if current is None:
                if not create_missing:
                    raise LookupError(f"Lesson progress '{chapter_id}_{lesson_id}' not found for '{user_id}'.")
                current = LessonProgress(chapter_id=chapter_id, lesson_id=lesson_id)
            updated = apply_lesson_update(current, update)
            self._lessons[key] = updated
            return updated.model_copy(deep=True)

    def list_chapter(self, user_id: str, chapter_id: str) -> Dict[str, LessonProgress]:
        normalized = normalize_user_id(user_id)
        with self._lock:
            lessons = [
                lesson.model_copy(deep=True)
                for (owner, chapter, _), lesson in self._lessons.items()
                if owner == normalized and chapter == chapter_id
            ]
        lessons.sort(key=lambda lesson: lesson_sort_key(lesson.lesson_id))
        return {lesson.lesson_id: lesson for lesson in lessons}

    def has_operation(self, user_id: str, operation_id: str) -> bool:
        with self._lock:
            return (normalize_user_id(user_id), operation_id) in self._operations

    def record_operation(self, user_id: str, operation_id: str, key: str) -> None:
        with self._lock:
            self._operations.add((normalize_user_id(user_id), operation_id))

    def _require_user(self, user_id: str) -> UserProgress:
        normalized = normalize_user_id(user_id)
        progress = self._users.get(normalized)
        if progress is None:
            progress = UserProgress(user_id=normalized)
            self._users[normalized] = progress
        return progress

    @staticmethod
    def _lesson_key(user_id: str, chapter_id: str, lesson_id: str) -> Tuple[str, str, str]:
        return normalize_user_id(user_id), chapter_id, lesson_id


class DatabaseProgressStore(ProgressStore):
    """SQLAlchemy-backed store; every primitive is one transaction."""

    @contextmanager
    def _session(self, operation: str) -> Iterator[Session]:
        try:
            with session_scope() as session:
                yield session
        except LookupError:
            raise
        except ValidationError as exc:
            raise ProgressStoreError(f"Stored document failed validation during {operation}: {exc}") from exc
        except ProgrammingError as exc:
            if "permission denied" in str(exc).lower():
                raise StorePermissionError(f"Permission denied during {operation}") from exc
            raise StoreUnavailableError(f"Database error during {operation}: {exc}") from exc
        except (OperationalError, SQLAlchemyError) as exc:
            raise StoreUnavailableError(f"Database error during {operation}: {exc}") from exc
        except RuntimeError as exc:
            # raised by the engine helpers when no database is configured
            raise StoreUnavailableError(str(exc)) from exc

    def get_user(self, user_id: str) -> Optional[UserProgress]:
        with self._session("get_user") as session:
            return progress_repository.get_user(session, user_id)

    def ensure_user(self, user_id: str) -> UserProgress:
        with self._session("ensure_user") as session:
            return progress_repository.ensure_user(session, user_id)

    def apply_activity(self, user_id: str, update: ActivityUpdate) -> UserProgress:
        with self._session("apply_activity") as session:
            progress = progress_repository.apply_activity(session, user_id, update)
        self._notify(progress)
        return progress

    def archive_week(self, user_id: str, archived: ArchivedWeek, reset_at: datetime) -> UserProgress:
        with self._session("archive_week") as session:
            progress = progress_repository.archive_week(session, user_id, archived, reset_at)
        self._notify(progress)
        return progress

    def get_lesson(self, user_id: str, chapter_id: str, lesson_id: str) -> Optional[LessonProgress]:
        with self._session("get_lesson") as session:
            return progress_repository.get_lesson(session, user_id, chapter_id, lesson_id)

    def create_lesson(self, user_id: str, lesson: LessonProgress) -> bool:
        with self._session("create_lesson") as session:
            return progress_repository.create_lesson(session, user_id, lesson)

    def update_lesson(
        self,
        user_id: str,
        chapter_id: str,
        lesson_id: str,
        update: LessonUpdate,
        *,
        create_missing: bool = False,
    ) -> LessonProgress:
        with self._session("update_lesson") as session:
            return progress_repository.update_lesson(
                session,
                user_id,
                chapter_id,
                lesson_id,
                update,
                create_missing=create_missing,
            )

    def list_chapter(self, user_id: str, chapter_id: str) -> Dict[str, LessonProgress]:
        with self._session("list_chapter") as session:
            return progress_repository.list_chapter(session, user_id, chapter_id)

    def has_operation(self, user_id: str, operation_id: str) -> bool:
        with self._session("has_operation") as session:
            return progress_repository.has_operation(session, user_id, operation_id)

    def record_operation(self, user_id: str, operation_id: str, key: str) -> None:
        with self._session("record_operation") as session:
            progress_repository.record_operation(session, user_id, operation_id, key)


def build_progress_store(settings: Optional[Settings] = None) -> ProgressStore:
    settings = settings or get_settings()
    if settings.persistence_mode == "memory":
        logger.info("Using in-memory progress store; progress will not survive restarts.")
        return InMemoryProgressStore()
    return DatabaseProgressStore()


__all__ = [
    "DatabaseProgressStore",
    "InMemoryProgressStore",
    "ProgressListener",
    "ProgressStore",
    "ProgressStoreError",
    "StorePermissionError",
    "StoreUnavailableError",
    "build_progress_store",
]
