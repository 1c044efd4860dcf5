"""Reusable validation helpers for recurring schedule definitions."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Iterable, Protocol

from errors import InputError
from models import ScheduleFrequencyEnum, TaskPriorityEnum
from scheduler.recurrence import parse_time_of_day

_WEEKDAYS = range(0, 7)


class RecurringScheduleLike(Protocol):
    """Protocol for schedule definition payloads used by validation."""

    frequency: str
    start_date: datetime
    end_date: datetime | None
    time: str
    days_of_week: Iterable[int]
    interval: int
    custom_pattern: str | None
    department: str
    priority: str | None


def _normalize_timestamp(value: datetime) -> datetime:
    """Ensure timestamps are timezone-aware, defaulting to UTC if naive."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _require_non_empty(value: str | None, field: str) -> str:
    """Ensure a string field is present and non-empty."""
    if value is None or not value.strip():
        raise InputError("missing_field", f"{field} is required.", {"field": field})
    return value


def validate_frequency(frequency: str) -> None:
    """Validate frequency against allowed values."""
    if frequency not in ScheduleFrequencyEnum.enums:
        raise InputError(
            "invalid_frequency",
            f"Invalid frequency: {frequency}.",
            {"field": "frequency", "frequency": frequency, "allowed": list(ScheduleFrequencyEnum.enums)},
        )


def validate_days_of_week(days_of_week: Iterable[int]) -> None:
    """Validate weekday numbers, where 0 is Sunday."""
    for day in days_of_week:
        if not isinstance(day, int) or isinstance(day, bool) or day not in _WEEKDAYS:
            raise InputError(
                "invalid_days_of_week",
                "days_of_week entries must be integers between 0 and 6.",
                {"field": "days_of_week", "value": day},
            )


def validate_schedule_definition(definition: RecurringScheduleLike) -> None:
    """Validate recurring schedule fields before they are persisted."""
    validate_frequency(definition.frequency)
    _require_non_empty(definition.department, "department")
    parse_time_of_day(definition.time)

    if definition.interval is None or definition.interval < 1:
        raise InputError(
            "invalid_interval",
            "interval is required and must be >= 1.",
            {"field": "interval", "interval": definition.interval},
        )

    days = list(definition.days_of_week or ())
    validate_days_of_week(days)
    if days and definition.frequency != "weekly":
        raise InputError(
            "invalid_days_of_week",
            "days_of_week is only valid for weekly schedules.",
            {"field": "days_of_week", "frequency": definition.frequency},
        )

    has_pattern = bool(definition.custom_pattern and definition.custom_pattern.strip())
    if definition.frequency == "custom" and not has_pattern:
        raise InputError(
            "missing_custom_pattern",
            "custom_pattern is required for custom schedules.",
            {"field": "custom_pattern"},
        )
    if definition.frequency != "custom" and has_pattern:
        raise InputError(
            "invalid_custom_pattern",
            "custom_pattern is only valid for custom schedules.",
            {"field": "custom_pattern", "frequency": definition.frequency},
        )

    if definition.priority is not None and definition.priority not in TaskPriorityEnum.enums:
        raise InputError(
            "invalid_priority",
            f"Invalid priority: {definition.priority}.",
            {"field": "priority", "priority": definition.priority},
        )

    if definition.start_date is None:
        raise InputError("missing_field", "start_date is required.", {"field": "start_date"})
    if definition.end_date is not None:
        start = _normalize_timestamp(definition.start_date)
        end = _normalize_timestamp(definition.end_date)
        if end < start:
            raise InputError(
                "invalid_end_date",
                "end_date must not be earlier than start_date.",
                {
                    "field": "end_date",
                    "start_date": start.isoformat(),
                    "end_date": end.isoformat(),
                },
            )
