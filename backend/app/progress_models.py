"""Progress documents and the update payloads applied to them."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated, Any, Dict, Iterable, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError, field_validator

from .constants import WEEKDAY_ABBREVIATIONS

Weekday = Literal["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"]


def _now() -> datetime:
    return datetime.now(timezone.utc)


def lesson_key(chapter_id: str, lesson_id: str) -> str:
    return f"{chapter_id}_{lesson_id}"


def next_lesson_id(lesson_id: str) -> str:
    """Lessons are numbered within a chapter; the next one is ``lesson_id + 1``."""
    try:
        return str(int(lesson_id) + 1)
    except ValueError as exc:
        raise ValueError(f"Lesson id '{lesson_id}' is not numeric; cannot resolve the next lesson.") from exc


def weekday_abbreviation(moment: datetime) -> Weekday:
    return WEEKDAY_ABBREVIATIONS[moment.weekday()]  # type: ignore[return-value]


class GrammarFeedback(BaseModel):
    grammar: str = ""
    suggestions: str = ""
    coherence: str = ""


class _ChatMessageBase(BaseModel):
    id: int
    content: str
    timestamp: datetime = Field(default_factory=_now)
    grammar_feedback: Optional[GrammarFeedback] = None


class UserMessage(_ChatMessageBase):
    sender: Literal["user"] = "user"


class AIMessage(_ChatMessageBase):
    sender: Literal["ai"] = "ai"


ChatMessage = Annotated[Union[UserMessage, AIMessage], Field(discriminator="sender")]


class WeeklyEntry(BaseModel):
    """One practice record; ``day`` is the weekday it was logged on."""

    day: Weekday
    minutes: int = Field(ge=0)
    timestamp: datetime
    lesson_id: Optional[str] = None


class ArchivedWeek(BaseModel):
    week_ending: datetime
    progress: List[WeeklyEntry] = Field(default_factory=list)


class UserProgress(BaseModel):
    user_id: str
    total_minutes: int = 0
    sessions_completed: int = 0
    lessons_completed: int = 0
    last_completed_lesson: Optional[str] = None
    last_active_day: Optional[str] = None
    activity_log: Dict[str, int] = Field(default_factory=dict)
    contribution_data: Dict[str, int] = Field(default_factory=dict)
    weekly_progress: List[WeeklyEntry] = Field(default_factory=list)
    archived_progress: List[ArchivedWeek] = Field(default_factory=list)
    last_week_reset: Optional[datetime] = None
    last_updated: datetime = Field(default_factory=_now)


class LessonProgress(BaseModel):
    chapter_id: str
    lesson_id: str
    unlocked: bool = False
    started: bool = False
    completed: bool = False
    minutes_spent: int = 0
    messages: List[ChatMessage] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_now)
    last_attempt: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    unlocked_at: Optional[datetime] = None

    @property
    def key(self) -> str:
        return lesson_key(self.chapter_id, self.lesson_id)

    @property
    def state(self) -> Literal["locked", "unlocked", "started", "completed"]:
        if self.completed:
            return "completed"
        if self.started:
            return "started"
        if self.unlocked:
            return "unlocked"
        return "locked"


_chat_message_adapter: TypeAdapter[ChatMessage] = TypeAdapter(ChatMessage)


def clean_weekly_entries(raw: Iterable[Any], now: Optional[datetime] = None) -> List[WeeklyEntry]:
    """Drop malformed stored entries; entries without a timestamp are stamped with ``now``."""
    now = now or _now()
    cleaned: List[WeeklyEntry] = []
    for item in raw:
        if isinstance(item, WeeklyEntry):
            cleaned.append(item)
            continue
        if not isinstance(item, dict) or not item.get("day"):
            continue
        minutes = item.get("minutes")
        if not isinstance(minutes, int) or isinstance(minutes, bool):
            continue
        payload = dict(item)
        if not payload.get("timestamp"):
            payload["timestamp"] = now
        try:
            cleaned.append(WeeklyEntry.model_validate(payload))
        except ValidationError:
            continue
    return cleaned


def clean_chat_messages(raw: Iterable[Any]) -> List[ChatMessage]:
    """Stored messages that no longer validate are skipped."""
    cleaned: List[ChatMessage] = []
    for item in raw:
        try:
            cleaned.append(_chat_message_adapter.validate_python(item))
        except ValidationError:
            continue
    return cleaned


class ActivityUpdate(BaseModel):
    """Field-level changes to a user's aggregate document.

    Deltas are applied as increments, ``activity_day``/``contribution_day``
    bump the per-day counters and ``weekly_entry`` is appended.
    """

    total_minutes_delta: int = 0
    sessions_completed_delta: int = 0
    lessons_completed_delta: int = 0
    last_completed_lesson: Optional[str] = None
    last_active_day: Optional[str] = None
    activity_day: Optional[str] = None
    contribution_day: Optional[str] = None
    weekly_entry: Optional[WeeklyEntry] = None


class LessonUpdate(BaseModel):
    """Field-level changes to a lesson document; ``None`` leaves a field untouched."""

    unlocked: Optional[bool] = None
    started: Optional[bool] = None
    completed: Optional[bool] = None
    minutes_spent: Optional[int] = Field(default=None, ge=0)
    minutes_delta: int = Field(default=0, ge=0)
    messages: Optional[List[ChatMessage]] = None
    append_messages: List[ChatMessage] = Field(default_factory=list)
    last_attempt: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    unlocked_at: Optional[datetime] = None

    @field_validator("completed")
    @classmethod
    def _no_regression(cls, value: Optional[bool]) -> Optional[bool]:
        if value is False:
            raise ValueError("Completed lessons cannot be reverted.")
        return value


def apply_activity(progress: UserProgress, update: ActivityUpdate, *, now: Optional[datetime] = None) -> UserProgress:
    updated = progress.model_copy(deep=True)
    updated.total_minutes += update.total_minutes_delta
    updated.sessions_completed += update.sessions_completed_delta
    updated.lessons_completed += update.lessons_completed_delta
    if update.last_completed_lesson is not None:
        updated.last_completed_lesson = update.last_completed_lesson
    if update.last_active_day is not None:
        updated.last_active_day = update.last_active_day
    if update.activity_day is not None:
        updated.activity_log[update.activity_day] = updated.activity_log.get(update.activity_day, 0) + 1
    if update.contribution_day is not None:
        updated.contribution_data[update.contribution_day] = (
            updated.contribution_data.get(update.contribution_day, 0) + 1
        )
    if update.weekly_entry is not None and update.weekly_entry not in updated.weekly_progress:
        # array-union semantics: identical entries are stored once
        updated.weekly_progress.append(update.weekly_entry.model_copy())
    updated.last_updated = now or _now()
    return updated


def apply_lesson_update(lesson: LessonProgress, update: LessonUpdate) -> LessonProgress:
    updated = lesson.model_copy(deep=True)
    if update.unlocked is not None:
        updated.unlocked = update.unlocked or updated.unlocked
    if update.started is not None:
        updated.started = update.started or updated.started
    if update.completed:
        updated.completed = True
    if update.minutes_spent is not None:
        updated.minutes_spent = update.minutes_spent
    updated.minutes_spent += update.minutes_delta
    if update.messages is not None:
        updated.messages = list(update.messages)
    for message in update.append_messages:
        if message not in updated.messages:
            updated.messages.append(message)
    if update.last_attempt is not None:
        updated.last_attempt = update.last_attempt
    if update.completed_at is not None:
        updated.completed_at = update.completed_at
    if update.unlocked_at is not None:
        updated.unlocked_at = update.unlocked_at
    return updated


__all__ = [
    "AIMessage",
    "ActivityUpdate",
    "ArchivedWeek",
    "ChatMessage",
    "GrammarFeedback",
    "LessonProgress",
    "LessonUpdate",
    "UserMessage",
    "UserProgress",
    "WeeklyEntry",
    "Weekday",
    "apply_activity",
    "apply_lesson_update",
    "lesson_key",
    "next_lesson_id",
    "weekday_abbreviation",
]
