from __future__ import annotations

from datetime import date

from app.contribution import (
    available_years,
    calendar_weeks,
    compute_contribution_stats,
    contribution_level,
)


def test_streaks_break_on_an_empty_day() -> None:
    log = {"2024-01-01": 1, "2024-01-02": 1, "2024-01-03": 0, "2024-01-04": 1}

    stats = compute_contribution_stats(log, date(2024, 1, 4))

    assert stats.current_streak == 1
    assert stats.longest_streak == 2
    assert stats.total_contributions == 3
    assert stats.average_contributions == 1.0


def test_missing_calendar_day_breaks_the_streak() -> None:
    log = {"2024-03-01": 2, "2024-03-03": 1, "2024-03-04": 4}

    stats = compute_contribution_stats(log, date(2024, 3, 4))

    assert stats.current_streak == 2
    assert stats.longest_streak == 2


def test_current_streak_is_zero_without_activity_today() -> None:
    log = {"2024-05-01": 1, "2024-05-02": 3}

    stats = compute_contribution_stats(log, date(2024, 5, 3))

    assert stats.current_streak == 0
    assert stats.longest_streak == 2


def test_future_days_are_ignored() -> None:
    log = {"2024-05-01": 1, "2024-05-02": 1, "2024-05-03": 1, "2024-06-01": 7}

    stats = compute_contribution_stats(log, date(2024, 5, 2))

    assert stats.longest_streak == 2
    assert stats.total_contributions == 2


def test_average_rounds_to_one_decimal_and_skips_zero_days() -> None:
    log = {"2024-02-01": 1, "2024-02-02": 0, "2024-02-03": 2, "2024-02-04": 2, "bad-key": 5}

    stats = compute_contribution_stats(log, date(2024, 2, 10))

    assert stats.total_contributions == 5
    assert stats.average_contributions == 1.7


def test_empty_log() -> None:
    stats = compute_contribution_stats({}, date(2024, 1, 1))
    assert stats.model_dump() == {
        "current_streak": 0,
        "longest_streak": 0,
        "total_contributions": 0,
        "average_contributions": 0.0,
    }


def test_contribution_levels() -> None:
    assert [contribution_level(count) for count in (0, 1, 2, 3, 5, 6, 8, 9, 20)] == [0, 1, 1, 2, 2, 3, 3, 4, 4]


def test_available_years_include_next_year_and_logged_years() -> None:
    years = available_years({"2021-07-01": 1, "2024-01-01": 2}, date(2024, 6, 1))
    assert years == [2025, 2024, 2021]


def test_calendar_weeks_are_sunday_aligned() -> None:
    weeks = calendar_weeks(2024, {"2024-01-01": 4})

    assert all(len(week) == 7 for week in weeks)
    first_day = weeks[0][0]
    assert first_day.date == date(2023, 12, 31)
    assert first_day.in_year is False
    assert weeks[0][1].date == date(2024, 1, 1)
    assert weeks[0][1].count == 4
    assert weeks[0][1].level == 2
    assert weeks[-1][-1].date == date(2025, 1, 4)
    assert len(weeks) == 53
