"""Streak and contribution-graph statistics derived from ``activity_log``."""

from __future__ import annotations

from datetime import date, timedelta
from typing import Any, Dict, List, Mapping, Optional

from pydantic import BaseModel, Field


class ContributionStats(BaseModel):
    current_streak: int = 0
    longest_streak: int = 0
    total_contributions: int = 0
    average_contributions: float = 0.0


class ContributionDay(BaseModel):
    date: date
    count: int = 0
    level: int = Field(default=0, ge=0, le=4)
    in_year: bool = True


def _parse_day(value: str) -> Optional[date]:
    try:
        return date.fromisoformat(value)
    except (TypeError, ValueError):
        return None


def _count(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    return int(value)


def compute_contribution_stats(activity_log: Mapping[str, Any], today: Optional[date] = None) -> ContributionStats:
    """Streaks count calendar-consecutive days with activity; future days are ignored."""
    today = today or date.today()
    days: Dict[date, int] = {}
    for key, value in activity_log.items():
        day = _parse_day(key)
        if day is None or day > today:
            continue
        days[day] = days.get(day, 0) + _count(value)

    total = 0
    active_days = 0
    longest = 0
    run = 0
    previous: Optional[date] = None
    for day in sorted(days):
        count = days[day]
        if count <= 0:
            run = 0
            previous = day
            continue
        total += count
        active_days += 1
        run = run + 1 if previous is not None and day - previous == timedelta(days=1) and run else 1
        longest = max(longest, run)
        previous = day

    current = 0
    cursor = today
    while days.get(cursor, 0) > 0:
        current += 1
        cursor -= timedelta(days=1)

    average = round(total / active_days, 1) if active_days else 0.0
    return ContributionStats(
        current_streak=current,
        longest_streak=longest,
        total_contributions=total,
        average_contributions=average,
    )


def contribution_level(count: int) -> int:
    if count <= 0:
        return 0
    if count < 3:
        return 1
    if count < 6:
        return 2
    if count < 9:
        return 3
    return 4


def available_years(activity_log: Mapping[str, Any], today: Optional[date] = None) -> List[int]:
    today = today or date.today()
    years = {today.year, today.year + 1}
    for key in activity_log:
        day = _parse_day(key)
        if day is not None:
            years.add(day.year)
    return sorted(years, reverse=True)


def calendar_weeks(year: int, activity_log: Optional[Mapping[str, Any]] = None) -> List[List[ContributionDay]]:
    """Sunday-first week columns covering every day of ``year``."""
    activity_log = activity_log or {}
    start = date(year, 1, 1)
    start -= timedelta(days=(start.weekday() + 1) % 7)
    end = date(year, 12, 31)
    end += timedelta(days=(5 - end.weekday()) % 7)

    weeks: List[List[ContributionDay]] = []
    cursor = start
    while cursor <= end:
        week: List[ContributionDay] = []
        for _ in range(7):
            count = _count(activity_log.get(cursor.isoformat(), 0))
            week.append(
                ContributionDay(
                    date=cursor,
                    count=count,
                    level=contribution_level(count),
                    in_year=cursor.year == year,
                )
            )
            cursor += timedelta(days=1)
        weeks.append(week)
    return weeks


__all__ = [
    "ContributionDay",
    "ContributionStats",
    "available_years",
    "calendar_weeks",
    "compute_contribution_stats",
    "contribution_level",
]
