"""Notification events emitted by the periodic sweeps and emergency intake."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Protocol, Union

from tasks.snapshots import TaskSnapshot
from time_utils import to_local

logger = logging.getLogger(__name__)


class NotificationEventType(str, Enum):
    """Supported sweep notification types."""

    DEADLINE_REMINDER = "DEADLINE_REMINDER"
    BOTTLENECK_ALERT = "BOTTLENECK_ALERT"
    REASSIGNMENT_NOTICE = "REASSIGNMENT_NOTICE"
    EMERGENCY_ALERT = "EMERGENCY_ALERT"


@dataclass(frozen=True)
class DeadlineReminder:
    """Reminder that an open task is due within the deadline window."""

    task_id: int
    title: str
    department: str
    assigned_to: str | None
    due_date: datetime
    hours_remaining: float
    message: str
    event_type: NotificationEventType = NotificationEventType.DEADLINE_REMINDER


@dataclass(frozen=True)
class ReassignmentNotice:
    """Notice that a task moved between staff members."""

    task_id: int
    department: str
    from_staff: str
    to_staff: str
    reason: str
    workload_delta: float
    message: str
    event_type: NotificationEventType = NotificationEventType.REASSIGNMENT_NOTICE


@dataclass(frozen=True)
class OverloadedStaff:
    """Staff member still above the overload threshold after rebalancing."""

    staff_id: str
    weighted: float


@dataclass(frozen=True)
class BottleneckAlert:
    """Department-wide summary of a bottleneck sweep."""

    department: str
    reassignment_count: int
    still_overloaded: tuple[OverloadedStaff, ...]
    message: str
    event_type: NotificationEventType = NotificationEventType.BOTTLENECK_ALERT


@dataclass(frozen=True)
class EmergencyAlert:
    """Department-wide alert for an emergency task that needs a response."""

    task_id: int
    title: str
    department: str
    assigned_to: str | None
    location: str | None
    message: str
    response_required: bool = True
    event_type: NotificationEventType = NotificationEventType.EMERGENCY_ALERT


NotificationEvent = Union[DeadlineReminder, ReassignmentNotice, BottleneckAlert, EmergencyAlert]


class NotificationSink(Protocol):
    """Fire-and-forget destination for sweep events."""

    def emit(self, event: NotificationEvent) -> None:
        ...


class LoggingNotificationSink:
    """Sink that writes events to the log; the default when no transport is wired."""

    def emit(self, event: NotificationEvent) -> None:
        logger.info("%s: %s", event.event_type.value, event.message)


def build_deadline_reminder(task: TaskSnapshot, now: datetime) -> DeadlineReminder:
    """Build a reminder for a task approaching its due date."""
    hours_remaining = (task.due_date - now).total_seconds() / 3600
    message = (
        f'Task "{task.title}" is due at {to_local(task.due_date).isoformat()} '
        f"({hours_remaining:.1f}h remaining)."
    )
    return DeadlineReminder(
        task_id=task.id,
        title=task.title,
        department=task.department,
        assigned_to=task.assigned_to,
        due_date=task.due_date,
        hours_remaining=hours_remaining,
        message=message,
    )


def build_reassignment_notice(
    department: str,
    task_id: int,
    from_staff: str,
    to_staff: str,
    reason: str,
    workload_delta: float,
) -> ReassignmentNotice:
    """Build a notice for a persisted reassignment."""
    message = f"Task {task_id} reassigned from {from_staff} to {to_staff} ({reason})."
    return ReassignmentNotice(
        task_id=task_id,
        department=department,
        from_staff=from_staff,
        to_staff=to_staff,
        reason=reason,
        workload_delta=workload_delta,
        message=message,
    )


def build_bottleneck_alert(
    department: str,
    reassignment_count: int,
    still_overloaded: tuple[OverloadedStaff, ...],
) -> BottleneckAlert:
    """Build the department summary for a bottleneck sweep."""
    if still_overloaded:
        listed = ", ".join(f"{item.staff_id} ({item.weighted:.1f})" for item in still_overloaded)
        tail = f"still overloaded: {listed}."
    else:
        tail = "no staff remain overloaded."
    message = f"{department}: {reassignment_count} task(s) reassigned; {tail}"
    return BottleneckAlert(
        department=department,
        reassignment_count=reassignment_count,
        still_overloaded=still_overloaded,
        message=message,
    )


def build_emergency_alert(task: TaskSnapshot, location: str | None = None) -> EmergencyAlert:
    """Build the department alert for a newly created emergency task."""
    where = f" at {location}" if location else ""
    if task.assigned_to is not None:
        tail = f"assigned to {task.assigned_to}."
    else:
        tail = "no eligible staff available; response required."
    return EmergencyAlert(
        task_id=task.id,
        title=task.title,
        department=task.department,
        assigned_to=task.assigned_to,
        location=location,
        message=f"{task.department}: {task.title}{where}, {tail}",
    )


def emit_safely(sink: NotificationSink, event: NotificationEvent) -> bool:
    """Emit an event, logging delivery failures instead of raising."""
    try:
        sink.emit(event)
    except Exception:
        logger.exception(
            "Notification sink failed for %s.",
            event.event_type.value,
        )
        return False
    return True
