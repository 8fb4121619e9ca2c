"""Current-week bucketing, weekly archive resets and practice recording."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone, tzinfo
from typing import Callable, Iterable, List, Literal, Optional

from pydantic import BaseModel
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .constants import WEEKDAY_ABBREVIATIONS
from .progress_models import (
    ActivityUpdate,
    ArchivedWeek,
    UserProgress,
    WeeklyEntry,
    clean_weekly_entries,
    weekday_abbreviation,
)
from .progress_store import ProgressStore, ProgressStoreError
from .telemetry import emit_event

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


class WeeklyBucket(BaseModel):
    day: str
    minutes: int


def resolve_timezone(name: Optional[str]) -> tzinfo:
    if not name:
        return timezone.utc
    try:
        return ZoneInfo(name.strip())
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown progress timezone %r; falling back to UTC.", name)
        return timezone.utc


def make_clock(tz: tzinfo) -> Clock:
    def clock() -> datetime:
        return datetime.now(tz)

    return clock


def _align(moment: datetime, reference: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=reference.tzinfo) if reference.tzinfo else moment
    if reference.tzinfo is None:
        return moment.replace(tzinfo=None)
    return moment.astimezone(reference.tzinfo)


def start_of_week(now: datetime) -> datetime:
    """Monday 00:00 of the week containing ``now`` (Sunday counts as day 7)."""
    monday = now - timedelta(days=now.isoweekday() - 1)
    return monday.replace(hour=0, minute=0, second=0, microsecond=0)


def is_current_week(moment: datetime, now: Optional[datetime] = None) -> bool:
    now = now or datetime.now(timezone.utc)
    start = start_of_week(now)
    end = start + timedelta(days=7)
    aligned = _align(moment, now)
    return start <= aligned < end


def format_weekly_data(entries: Iterable[WeeklyEntry], now: Optional[datetime] = None) -> List[WeeklyBucket]:
    """Seven Mon..Sun buckets summing minutes of entries logged this week."""
    now = now or datetime.now(timezone.utc)
    totals = {day: 0 for day in WEEKDAY_ABBREVIATIONS}
    for entry in entries:
        if entry.day in totals and is_current_week(entry.timestamp, now):
            totals[entry.day] += entry.minutes
    return [WeeklyBucket(day=day, minutes=totals[day]) for day in WEEKDAY_ABBREVIATIONS]


def needs_weekly_reset(last_reset: Optional[datetime], now: datetime) -> bool:
    if last_reset is None:
        return True
    return _align(last_reset, now) < start_of_week(now)


class WeeklyAggregator:
    """Keeps ``weekly_progress`` scoped to the current week and records practice time."""

    def __init__(self, store: ProgressStore, *, clock: Optional[Clock] = None) -> None:
        self._store = store
        self._clock = clock or make_clock(timezone.utc)

    def now(self) -> datetime:
        return self._clock()

    def weekly_buckets(self, progress: UserProgress) -> List[WeeklyBucket]:
        return format_weekly_data(progress.weekly_progress, self.now())

    def handle_weekly_reset(
        self,
        user_id: str,
        snapshot: Optional[UserProgress] = None,
        *,
        now: Optional[datetime] = None,
    ) -> bool:
        """Archive last week's entries when the stored reset predates this week.

        Check-then-act without a transaction: two concurrent sessions can both
        archive the same week.
        """
        now = now or self.now()
        try:
            if snapshot is None:
                snapshot = self._store.ensure_user(user_id)
            if not needs_weekly_reset(snapshot.last_week_reset, now):
                return False
            archived = ArchivedWeek(
                week_ending=now,
                progress=[entry.model_copy() for entry in snapshot.weekly_progress],
            )
            self._store.archive_week(user_id, archived, now)
        except ProgressStoreError:
            logger.exception("Error resetting weekly progress for user_id=%s", user_id)
            return False
        logger.info("Weekly progress reset for user_id=%s", user_id)
        emit_event(
            "weekly_progress_reset",
            user_id=user_id,
            archived_entries=len(archived.progress),
            week_ending=now,
        )
        return True

    def record_practice(
        self,
        user_id: str,
        minutes: int,
        *,
        kind: Literal["voice", "chat"] = "voice",
        now: Optional[datetime] = None,
    ) -> bool:
        """Count one finished practice session towards totals, streaks and this week."""
        now = now or self.now()
        minutes = max(int(minutes), 0)
        today = now.date().isoformat()
        try:
            snapshot = self._store.ensure_user(user_id)
            if needs_weekly_reset(snapshot.last_week_reset, now):
                self.handle_weekly_reset(user_id, snapshot, now=now)
            self._store.apply_activity(
                user_id,
                ActivityUpdate(
                    total_minutes_delta=minutes,
                    sessions_completed_delta=1,
                    last_active_day=today,
                    activity_day=today,
                    contribution_day=today,
                    weekly_entry=WeeklyEntry(day=weekday_abbreviation(now), minutes=minutes, timestamp=now),
                ),
            )
        except ProgressStoreError:
            logger.exception("Failed to record %s practice for user_id=%s", kind, user_id)
            emit_event("progress_save_failed", user_id=user_id, operation="record_practice", kind=kind)
            return False
        emit_event("practice_session_recorded", user_id=user_id, kind=kind, minutes=minutes)
        return True


__all__ = [
    "WeeklyAggregator",
    "WeeklyBucket",
    "clean_weekly_entries",
    "format_weekly_data",
    "is_current_week",
    "make_clock",
    "needs_weekly_reset",
    "resolve_timezone",
    "start_of_week",
]
