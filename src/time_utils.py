"""Time zone helpers for UTC storage and local wall-clock scheduling.

Stored timestamps are UTC. SQLite returns them without tzinfo, so every
naive value handled here is read as UTC.
"""

from __future__ import annotations

from datetime import date, datetime, time, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from config import settings


def get_local_timezone() -> ZoneInfo:
    """Return the configured local timezone."""
    timezone_name = settings.user.timezone
    try:
        return ZoneInfo(timezone_name)
    except ZoneInfoNotFoundError as exc:
        raise ValueError(f"Invalid timezone: {timezone_name}") from exc


def to_utc(value: datetime) -> datetime:
    """Convert a datetime to UTC, treating naive values as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_local(value: datetime) -> datetime:
    """Convert a datetime to the configured local timezone."""
    return to_utc(value).astimezone(get_local_timezone())


def local_wall_clock(day: date, time_of_day: time) -> datetime:
    """Return ``day`` at ``time_of_day`` in the local timezone.

    The UTC offset is the one in force on ``day``, so a 09:00 slot stays at
    09:00 local across daylight-saving changes.
    """
    return datetime.combine(day, time_of_day, tzinfo=get_local_timezone())


def utc_now() -> datetime:
    """Return the current time in UTC."""
    return datetime.now(timezone.utc)
