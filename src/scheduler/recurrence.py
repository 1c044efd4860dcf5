"""Next-run computation for recurring schedule definitions.

Each frequency is a small tagged variant with its own advance function.
Wall-clock arithmetic happens in the configured local timezone and results
are returned in UTC.
"""

from __future__ import annotations

import calendar
from dataclasses import dataclass, replace
from datetime import date, datetime, time, timedelta
from typing import Callable, Union

from errors import InputError
from time_utils import local_wall_clock, to_local, to_utc


@dataclass(frozen=True)
class Daily:
    """Fire every ``interval`` days."""

    interval: int = 1


@dataclass(frozen=True)
class Weekly:
    """Fire on listed weekdays (0 = Sunday), or every ``interval`` weeks."""

    interval: int = 1
    days_of_week: frozenset[int] = frozenset()


@dataclass(frozen=True)
class Monthly:
    """Fire every ``interval`` months, clamped to the end of short months."""

    interval: int = 1


@dataclass(frozen=True)
class Custom:
    """Opaque pattern; advances one day at a time."""

    pattern: str


Frequency = Union[Daily, Weekly, Monthly, Custom]


@dataclass(frozen=True)
class RecurringScheduleSnapshot:
    """Point-in-time view of a recurring schedule definition."""

    id: int
    task_template_id: int
    frequency: str
    start_date: datetime
    time: str
    department: str
    end_date: datetime | None = None
    days_of_week: tuple[int, ...] = ()
    interval: int = 1
    custom_pattern: str | None = None
    assign_to: str | None = None
    priority: str | None = None
    is_active: bool = True
    last_run: datetime | None = None
    next_run: datetime | None = None
    created_by: str = "system"


@dataclass(frozen=True)
class RecurrenceAdvance:
    """Result of advancing a schedule against a reference time."""

    next_run: datetime | None
    is_active: bool


def parse_time_of_day(value: str) -> time:
    """Parse an ``HH:MM`` string into a time of day."""
    try:
        hours_text, minutes_text = value.split(":")
        if len(hours_text) != 2 or len(minutes_text) != 2:
            raise ValueError(value)
        return time(int(hours_text), int(minutes_text))
    except (AttributeError, ValueError):
        raise InputError(
            "invalid_time",
            "Schedule time must be formatted as HH:MM.",
            {"time": value},
        ) from None


def frequency_of(schedule: RecurringScheduleSnapshot) -> Frequency:
    """Build the frequency variant for a schedule definition."""
    if schedule.interval is None or schedule.interval < 1:
        raise InputError(
            "invalid_interval",
            "Schedule interval must be >= 1.",
            {"interval": schedule.interval},
        )
    if schedule.frequency == "daily":
        return Daily(schedule.interval)
    if schedule.frequency == "weekly":
        days = frozenset(schedule.days_of_week or ())
        if any(day not in range(7) for day in days):
            raise InputError(
                "invalid_days_of_week",
                "days_of_week values must be between 0 (Sunday) and 6 (Saturday).",
                {"days_of_week": sorted(days)},
            )
        return Weekly(schedule.interval, days)
    if schedule.frequency == "monthly":
        return Monthly(schedule.interval)
    if schedule.frequency == "custom":
        if not schedule.custom_pattern:
            raise InputError(
                "missing_custom_pattern",
                "Custom schedules require a custom pattern.",
                {"schedule_id": schedule.id},
            )
        return Custom(schedule.custom_pattern)
    raise InputError(
        "invalid_frequency",
        f"Unsupported schedule frequency: {schedule.frequency!r}.",
        {"frequency": schedule.frequency},
    )


def anchor_time(schedule: RecurringScheduleSnapshot) -> datetime:
    """Return the first run: the start date's local day at the schedule time."""
    start_day = to_local(schedule.start_date).date()
    return local_wall_clock(start_day, parse_time_of_day(schedule.time))


def _at_local(day: date, template: datetime) -> datetime:
    return local_wall_clock(day, template.time())


def _add_months(value: datetime, months: int) -> datetime:
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def _skip_ahead(anchor: datetime, now_local: datetime, step_days: int) -> int:
    """Return how many whole steps can be skipped without passing ``now``."""
    elapsed = (now_local.date() - anchor.date()).days
    return max(0, elapsed // step_days - 1)


def _advance_daily(frequency: Daily, anchor: datetime, now: datetime) -> datetime:
    steps = _skip_ahead(anchor, to_local(now), frequency.interval)
    candidate = _at_local(anchor.date() + timedelta(days=steps * frequency.interval), anchor)
    while to_utc(candidate) < now:
        candidate = _at_local(candidate.date() + timedelta(days=frequency.interval), anchor)
    return candidate


def _advance_weekly(frequency: Weekly, anchor: datetime, now: datetime) -> datetime:
    if not frequency.days_of_week:
        step = 7 * frequency.interval
        steps = _skip_ahead(anchor, to_local(now), step)
        candidate = _at_local(anchor.date() + timedelta(days=steps * step), anchor)
        while to_utc(candidate) < now:
            candidate = _at_local(candidate.date() + timedelta(days=step), anchor)
        return candidate

    start_day = max(anchor.date(), to_local(now).date() - timedelta(days=1))
    candidate = _at_local(start_day, anchor)
    while True:
        weekday = (candidate.weekday() + 1) % 7
        if weekday in frequency.days_of_week and to_utc(candidate) >= now:
            return candidate
        candidate = _at_local(candidate.date() + timedelta(days=1), anchor)


def _advance_monthly(frequency: Monthly, anchor: datetime, now: datetime) -> datetime:
    months = 0
    candidate = anchor
    while to_utc(candidate) < now:
        months += frequency.interval
        candidate = _add_months(anchor, months)
    return candidate


def _advance_custom(frequency: Custom, anchor: datetime, now: datetime) -> datetime:
    return _advance_daily(Daily(1), anchor, now)


_ADVANCERS: dict[type, Callable[..., datetime]] = {
    Daily: _advance_daily,
    Weekly: _advance_weekly,
    Monthly: _advance_monthly,
    Custom: _advance_custom,
}


def next_run(schedule: RecurringScheduleSnapshot, now: datetime) -> datetime | None:
    """Return the next run at or after ``now`` in UTC, or None past end_date.

    An anchor that has not passed yet is the next run, whatever the frequency.
    """
    frequency = frequency_of(schedule)
    reference = to_utc(now)
    anchor = anchor_time(schedule)
    if to_utc(anchor) >= reference:
        candidate = anchor
    else:
        candidate = _ADVANCERS[type(frequency)](frequency, anchor, reference)
    candidate_utc = to_utc(candidate)
    if schedule.end_date is not None and candidate_utc > to_utc(schedule.end_date):
        return None
    return candidate_utc


def advance(schedule: RecurringScheduleSnapshot, now: datetime) -> RecurrenceAdvance:
    """Compute the next run and active flag for a schedule.

    The result depends only on the definition and ``now``, so repeating the
    call with the same reference time yields the same next run. Inactive
    schedules stay inactive.
    """
    if not schedule.is_active:
        return RecurrenceAdvance(next_run=None, is_active=False)
    upcoming = next_run(schedule, now)
    return RecurrenceAdvance(next_run=upcoming, is_active=upcoming is not None)


def apply_advance(
    schedule: RecurringScheduleSnapshot,
    result: RecurrenceAdvance,
) -> RecurringScheduleSnapshot:
    """Return a copy of the schedule carrying an advance result."""
    return replace(schedule, next_run=result.next_run, is_active=result.is_active)
