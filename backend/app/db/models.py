"""ORM models backing the progress store."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import JSON

from .base import Base, TimestampMixin

JSONType = JSON


class UserProgressModel(TimestampMixin, Base):
    __tablename__ = "user_progress"
    __table_args__ = (Index("ix_user_progress_user_id", "user_id", unique=True),)

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    total_minutes: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    sessions_completed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    lessons_completed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_completed_lesson: Mapped[str | None] = mapped_column(String(160), nullable=True)
    last_active_day: Mapped[str | None] = mapped_column(String(10), nullable=True)
    activity_log: Mapped[dict[str, int]] = mapped_column(JSONType, default=dict, nullable=False)
    contribution_data: Mapped[dict[str, int]] = mapped_column(JSONType, default=dict, nullable=False)
    weekly_progress: Mapped[list[dict]] = mapped_column(JSONType, default=list, nullable=False)
    archived_progress: Mapped[list[dict]] = mapped_column(JSONType, default=list, nullable=False)
    last_week_reset: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_updated: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False
    )


class LessonProgressModel(TimestampMixin, Base):
    __tablename__ = "lesson_progress"
    __table_args__ = (
        UniqueConstraint("user_id", "chapter_id", "lesson_id", name="uq_lesson_progress_lesson"),
        Index("ix_lesson_progress_chapter", "user_id", "chapter_id"),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    chapter_id: Mapped[str] = mapped_column(String(64), nullable=False)
    lesson_id: Mapped[str] = mapped_column(String(64), nullable=False)
    unlocked: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    started: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    completed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    minutes_spent: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    messages: Mapped[list[dict]] = mapped_column(JSONType, default=list, nullable=False)
    last_attempt: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    unlocked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class CompletionOperationModel(Base):
    __tablename__ = "completion_operations"
    __table_args__ = (
        UniqueConstraint("user_id", "operation_id", name="uq_completion_operation"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    operation_id: Mapped[str] = mapped_column(String(128), nullable=False)
    lesson_key: Mapped[str] = mapped_column(String(160), nullable=False)
    recorded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)
    )


class ProgressAuditEventModel(Base):
    __tablename__ = "progress_audit_events"
    __table_args__ = (Index("ix_progress_audit_events_user", "user_id"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    event_type: Mapped[str] = mapped_column(String(64), nullable=False)
    payload: Mapped[dict] = mapped_column(JSONType, default=dict, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)
    )


__all__ = [
    "CompletionOperationModel",
    "LessonProgressModel",
    "ProgressAuditEventModel",
    "UserProgressModel",
]
