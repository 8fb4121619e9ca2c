"""Database-backed progress repository."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..db.models import (
    CompletionOperationModel,
    LessonProgressModel,
    ProgressAuditEventModel,
    UserProgressModel,
)
from ..progress_models import (
    ActivityUpdate,
    ArchivedWeek,
    LessonProgress,
    LessonUpdate,
    UserProgress,
    apply_activity,
    apply_lesson_update,
    clean_chat_messages,
    clean_weekly_entries,
)


def normalize_user_id(user_id: str) -> str:
    normalized = user_id.strip() if isinstance(user_id, str) else ""
    if not normalized:
        raise ValueError("User id cannot be empty.")
    return normalized


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # sqlite hands back naive datetimes even for timezone-aware columns
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def lesson_sort_key(lesson_id: str) -> tuple:
    # numeric lesson ids sort by value, so "10" follows "2"
    return (0, int(lesson_id), "") if lesson_id.isdigit() else (1, 0, lesson_id)


class ProgressRepository:
    """Row-level persistence for user aggregates and lesson documents."""

    def get_user(self, session: Session, user_id: str) -> UserProgress | None:
        model = self._user_model(session, user_id)
        if model is None:
            return None
        return self._user_to_domain(model)

    def ensure_user(self, session: Session, user_id: str) -> UserProgress:
        model = self._require_user(session, user_id)
        return self._user_to_domain(model)

    def apply_activity(self, session: Session, user_id: str, update: ActivityUpdate) -> UserProgress:
        model = self._require_user(session, user_id)
        updated = apply_activity(self._user_to_domain(model), update)
        self._apply_user(model, updated)
        session.flush()
        return self._user_to_domain(model)

    def archive_week(
        self,
        session: Session,
        user_id: str,
        archived: ArchivedWeek,
        reset_at: datetime,
    ) -> UserProgress:
        model = self._require_user(session, user_id)
        history = list(model.archived_progress or [])
        history.append(archived.model_dump(mode="json"))
        model.archived_progress = history
        model.weekly_progress = []
        model.last_week_reset = reset_at
        model.last_updated = reset_at
        session.flush()
        return self._user_to_domain(model)

    def get_lesson(
        self,
        session: Session,
        user_id: str,
        chapter_id: str,
        lesson_id: str,
    ) -> LessonProgress | None:
        model = self._lesson_model(session, user_id, chapter_id, lesson_id)
        if model is None:
            return None
        return self._lesson_to_domain(model)

    def create_lesson(self, session: Session, user_id: str, lesson: LessonProgress) -> bool:
        if self._lesson_model(session, user_id, lesson.chapter_id, lesson.lesson_id) is not None:
            return False
        model = LessonProgressModel(
            user_id=normalize_user_id(user_id),
            chapter_id=lesson.chapter_id,
            lesson_id=lesson.lesson_id,
        )
        self._apply_lesson(model, lesson)
        model.created_at = lesson.created_at
        session.add(model)
        session.flush()
        return True

    def update_lesson(
        self,
        session: Session,
        user_id: str,
        chapter_id: str,
        lesson_id: str,
        update: LessonUpdate,
        *,
        create_missing: bool = False,
    ) -> LessonProgress:
        model = self._lesson_model(session, user_id, chapter_id, lesson_id)
        if model is None:
            if not create_missing:
                raise LookupError(f"Lesson progress '{chapter_id}_{lesson_id}' not found for '{user_id}'.")
            model = LessonProgressModel(
                user_id=normalize_user_id(user_id),
                chapter_id=chapter_id,
                lesson_id=lesson_id,
            )
            session.add(model)
            current = LessonProgress(chapter_id=chapter_id, lesson_id=lesson_id)
        else:
            current = self._lesson_to_domain(model)
        self._apply_lesson(model, apply_lesson_update(current, update))
        session.flush()
        return self._lesson_to_domain(model)

    def list_chapter(self, session: Session, user_id: str, chapter_id: str) -> Dict[str, LessonProgress]:
        stmt = (
            select(LessonProgressModel)
            .where(
                LessonProgressModel.user_id == normalize_user_id(user_id),
                LessonProgressModel.chapter_id == chapter_id,
            )
        )
        models = sorted(session.execute(stmt).scalars().all(), key=lambda model: lesson_sort_key(model.lesson_id))
        return {model.lesson_id: self._lesson_to_domain(model) for model in models}

    def has_operation(self, session: Session, user_id: str, operation_id: str) -> bool:
        stmt = select(CompletionOperationModel.id).where(
            CompletionOperationModel.user_id == normalize_user_id(user_id),
            CompletionOperationModel.operation_id == operation_id,
        )
        return session.execute(stmt).first() is not None

    def record_operation(self, session: Session, user_id: str, operation_id: str, lesson_key: str) -> None:
        if self.has_operation(session, user_id, operation_id):
            return
        session.add(
            CompletionOperationModel(
                user_id=normalize_user_id(user_id),
                operation_id=operation_id,
                lesson_key=lesson_key,
            )
        )
        session.flush()

    def record_audit(self, session: Session, user_id: Optional[str], event_type: str, payload: Dict[str, Any]) -> None:
        session.add(
            ProgressAuditEventModel(
                user_id=user_id.strip() if isinstance(user_id, str) and user_id.strip() else None,
                event_type=event_type,
                payload=dict(payload),
            )
        )
        session.flush()

    def recent_audit_events(self, session: Session, user_id: str, limit: int = 50) -> List[ProgressAuditEventModel]:
        stmt = (
            select(ProgressAuditEventModel)
            .where(ProgressAuditEventModel.user_id == normalize_user_id(user_id))
            .order_by(ProgressAuditEventModel.created_at.desc())
            .limit(limit)
        )
        return list(session.execute(stmt).scalars().all())

    def _user_model(self, session: Session, user_id: str) -> UserProgressModel | None:
        stmt = select(UserProgressModel).where(UserProgressModel.user_id == normalize_user_id(user_id))
        return session.execute(stmt).scalar_one_or_none()

    def _require_user(self, session: Session, user_id: str) -> UserProgressModel:
        model = self._user_model(session, user_id)
        if model is None:
            model = UserProgressModel(
                user_id=normalize_user_id(user_id),
                total_minutes=0,
                sessions_completed=0,
                lessons_completed=0,
                activity_log={},
                contribution_data={},
                weekly_progress=[],
                archived_progress=[],
                last_updated=datetime.now(timezone.utc),
            )
            session.add(model)
            session.flush([model])
        return model

    def _lesson_model(
        self,
        session: Session,
        user_id: str,
        chapter_id: str,
        lesson_id: str,
    ) -> LessonProgressModel | None:
        stmt = select(LessonProgressModel).where(
            LessonProgressModel.user_id == normalize_user_id(user_id),
            LessonProgressModel.chapter_id == chapter_id,
            LessonProgressModel.lesson_id == lesson_id,
        )
        return session.execute(stmt).scalar_one_or_none()

    @staticmethod
    def _apply_user(model: UserProgressModel, progress: UserProgress) -> None:
        model.total_minutes = progress.total_minutes
        model.sessions_completed = progress.sessions_completed
        model.lessons_completed = progress.lessons_completed
        model.last_completed_lesson = progress.last_completed_lesson
        model.last_active_day = progress.last_active_day
        model.activity_log = dict(progress.activity_log)
        model.contribution_data = dict(progress.contribution_data)
        model.weekly_progress = [entry.model_dump(mode="json") for entry in progress.weekly_progress]
        model.archived_progress = [week.model_dump(mode="json") for week in progress.archived_progress]
        model.last_week_reset = progress.last_week_reset
        model.last_updated = progress.last_updated

    @staticmethod
    def _user_to_domain(model: UserProgressModel) -> UserProgress:
        archived: List[ArchivedWeek] = []
        for raw in model.archived_progress or []:
            try:
                archived.append(ArchivedWeek.model_validate(raw))
            except ValueError:
                continue
        return UserProgress(
            user_id=model.user_id,
            total_minutes=model.total_minutes or 0,
            sessions_completed=model.sessions_completed or 0,
            lessons_completed=model.lessons_completed or 0,
            last_completed_lesson=model.last_completed_lesson,
            last_active_day=model.last_active_day,
            activity_log=dict(model.activity_log or {}),
            contribution_data=dict(model.contribution_data or {}),
            weekly_progress=clean_weekly_entries(model.weekly_progress or []),
            archived_progress=archived,
            last_week_reset=_as_utc(model.last_week_reset),
            last_updated=_as_utc(model.last_updated) or datetime.now(timezone.utc),
        )

    @staticmethod
    def _apply_lesson(model: LessonProgressModel, lesson: LessonProgress) -> None:
        model.unlocked = lesson.unlocked
        model.started = lesson.started
        model.completed = lesson.completed
        model.minutes_spent = lesson.minutes_spent
        model.messages = [message.model_dump(mode="json") for message in lesson.messages]
        model.last_attempt = lesson.last_attempt
        model.completed_at = lesson.completed_at
        model.unlocked_at = lesson.unlocked_at

    @staticmethod
    def _lesson_to_domain(model: LessonProgressModel) -> LessonProgress:
        return LessonProgress.model_validate(
            {
                "chapter_id": model.chapter_id,
                "lesson_id": model.lesson_id,
                "unlocked": bool(model.unlocked),
                "started": bool(model.started),
                "completed": bool(model.completed),
                "minutes_spent": model.minutes_spent or 0,
                "messages": clean_chat_messages(model.messages or []),
                "created_at": _as_utc(model.created_at) or datetime.now(timezone.utc),
                "last_attempt": _as_utc(model.last_attempt),
                "completed_at": _as_utc(model.completed_at),
                "unlocked_at": _as_utc(model.unlocked_at),
            }
        )


progress_repository = ProgressRepository()

__all__ = ["ProgressRepository", "lesson_sort_key", "normalize_user_id", "progress_repository"]
