"""Immutable task and staff snapshots consumed by the workload components."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Mapping

from models import StaffMember, Task
from time_utils import to_utc

OPEN_STATUSES = ("todo", "in_progress")
TERMINAL_STATUSES = ("completed", "cancelled")


@dataclass(frozen=True)
class TaskSnapshot:
    """Point-in-time view of a task used for scoring and selection."""

    id: int
    title: str
    priority: str
    urgency_level: str
    status: str
    department: str
    category: str
    estimated_duration_minutes: int | None
    due_date: datetime | None = None
    assigned_to: str | None = None
    specialty_tags: tuple[str, ...] = ()
    dependencies: tuple[int, ...] = ()
    metadata: Mapping[str, object] = field(default_factory=dict)
    version: int = 1


@dataclass(frozen=True)
class PerformanceSummary:
    """Rolling completion rates for one staff member, each in [0, 1]."""

    completion_rate: float
    on_time_completion_rate: float


@dataclass(frozen=True)
class StaffSnapshot:
    """Point-in-time view of a staff member eligible for assignment."""

    id: str
    department: str
    roles: tuple[str, ...] = ()
    specialty_tags: tuple[str, ...] = ()
    is_active: bool = True
    name: str | None = None
    performance: PerformanceSummary | None = None


@dataclass(frozen=True)
class DepartmentSnapshot:
    """Consistent department view fetched once per bottleneck sweep."""

    department: str
    staff: tuple[StaffSnapshot, ...]
    tasks: tuple[TaskSnapshot, ...]
    now: datetime


def _optional_utc(value: datetime | None) -> datetime | None:
    return to_utc(value) if value is not None else None


def task_to_snapshot(task: Task) -> TaskSnapshot:
    """Convert a task row into an immutable snapshot."""
    return TaskSnapshot(
        id=task.id,
        title=task.title,
        priority=task.priority,
        urgency_level=task.urgency_level,
        status=task.status,
        department=task.department,
        category=task.category,
        estimated_duration_minutes=task.estimated_duration_minutes,
        due_date=_optional_utc(task.due_date),
        assigned_to=task.assigned_to,
        specialty_tags=tuple(task.specialty_tags or ()),
        dependencies=tuple(task.dependencies or ()),
        metadata=dict(task.task_metadata or {}),
        version=task.version,
    )


def staff_to_snapshot(
    member: StaffMember,
    performance: PerformanceSummary | None = None,
) -> StaffSnapshot:
    """Convert a staff row into an immutable snapshot."""
    return StaffSnapshot(
        id=member.id,
        department=member.department,
        roles=tuple(member.roles or ()),
        specialty_tags=tuple(member.specialty_tags or ()),
        is_active=bool(member.is_active),
        name=member.name,
        performance=performance,
    )
