"""Department task metrics over a creation-date window."""

from __future__ import annotations

import logging
from collections import Counter
from contextlib import closing
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable

from sqlalchemy.orm import Session

from models import RecurringSchedule, Task, TaskHistoryEntry, TaskTemplate
from tasks.snapshots import OPEN_STATUSES
from time_utils import to_utc

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_DAYS = 30


@dataclass(frozen=True)
class TaskFacts:
    """Fields of one task read when computing department metrics."""

    task_id: int
    status: str
    category: str
    priority: str
    created_at: datetime
    due_date: datetime | None = None
    completed_at: datetime | None = None
    template_id: int | None = None


@dataclass(frozen=True)
class DepartmentMetrics:
    """Counts, rates, and distributions for one department.

    Rates are fractions in [0, 1]. Average completion time is measured in
    hours from creation to completion.
    """

    department: str
    start: datetime
    end: datetime
    total: int
    completed: int
    active: int
    overdue: int
    completion_rate: float
    overdue_rate: float
    average_completion_hours: float
    by_category: dict[str, int] = field(default_factory=dict)
    by_priority: dict[str, int] = field(default_factory=dict)
    by_status: dict[str, int] = field(default_factory=dict)
    by_template: dict[str, int] = field(default_factory=dict)
    active_templates: int = 0
    active_schedules: int = 0


def summarize_department(
    department: str,
    tasks: Iterable[TaskFacts],
    *,
    start: datetime,
    end: datetime,
    now: datetime,
) -> DepartmentMetrics:
    """Aggregate task facts into department metrics.

    A task is overdue when it is still open and its due date has passed.
    """
    reference = to_utc(now)
    total = completed = active = overdue = 0
    completion_hours: list[float] = []
    by_category: Counter[str] = Counter()
    by_priority: Counter[str] = Counter()
    by_status: Counter[str] = Counter()
    by_template: Counter[str] = Counter()

    for task in tasks:
        total += 1
        by_category[task.category] += 1
        by_priority[task.priority] += 1
        by_status[task.status] += 1
        if task.template_id is not None:
            by_template[str(task.template_id)] += 1
        if task.status == "completed":
            completed += 1
            if task.completed_at is not None:
                elapsed = to_utc(task.completed_at) - to_utc(task.created_at)
                completion_hours.append(elapsed.total_seconds() / 3600)
        elif task.status in OPEN_STATUSES:
            active += 1
            if task.due_date is not None and to_utc(task.due_date) < reference:
                overdue += 1

    return DepartmentMetrics(
        department=department,
        start=to_utc(start),
        end=to_utc(end),
        total=total,
        completed=completed,
        active=active,
        overdue=overdue,
        completion_rate=(completed / total) if total else 0.0,
        overdue_rate=(overdue / total) if total else 0.0,
        average_completion_hours=(
            sum(completion_hours) / len(completion_hours) if completion_hours else 0.0
        ),
        by_category=dict(by_category),
        by_priority=dict(by_priority),
        by_status=dict(by_status),
        by_template=dict(by_template),
    )


class DepartmentAnalytics:
    """Read department metrics from task, template, and schedule records."""

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        """Initialize analytics with a SQLAlchemy session factory."""
        self._session_factory = session_factory

    def metrics(
        self,
        department: str,
        *,
        start: datetime | None = None,
        end: datetime | None = None,
        now: datetime | None = None,
    ) -> DepartmentMetrics:
        """Return metrics for tasks created between ``start`` and ``end``.

        The window defaults to the thirty days ending at ``now``.
        """
        reference = to_utc(now or datetime.now(timezone.utc))
        window_end = to_utc(end) if end is not None else reference
        window_start = (
            to_utc(start) if start is not None else window_end - timedelta(days=DEFAULT_WINDOW_DAYS)
        )

        with closing(self._session_factory()) as session:
            rows = (
                session.query(Task)
                .filter(Task.department == department)
                .filter(Task.created_at >= window_start)
                .filter(Task.created_at <= window_end)
                .order_by(Task.id.asc())
                .all()
            )
            completion_times = _completion_times(
                session,
                [row.id for row in rows if row.status == "completed"],
            )
            facts = [
                TaskFacts(
                    task_id=row.id,
                    status=row.status,
                    category=row.category,
                    priority=row.priority,
                    created_at=row.created_at,
                    due_date=row.due_date,
                    completed_at=completion_times.get(row.id, row.completed_at),
                    template_id=row.template_id,
                )
                for row in rows
            ]
            active_templates = (
                session.query(TaskTemplate)
                .filter(TaskTemplate.department == department)
                .filter(TaskTemplate.is_active.is_(True))
                .count()
            )
            active_schedules = (
                session.query(RecurringSchedule)
                .filter(RecurringSchedule.department == department)
                .filter(RecurringSchedule.is_active.is_(True))
                .count()
            )

        summary = summarize_department(
            department,
            facts,
            start=window_start,
            end=window_end,
            now=reference,
        )
        logger.debug("Computed metrics for %s over %s task(s).", department, summary.total)
        return replace(summary, active_templates=active_templates, active_schedules=active_schedules)


def _completion_times(session: Session, task_ids: list[int]) -> dict[int, datetime]:
    """Return the first completion timestamp recorded for each task."""
    if not task_ids:
        return {}
    entries = (
        session.query(TaskHistoryEntry)
        .filter(TaskHistoryEntry.task_id.in_(task_ids))
        .filter(TaskHistoryEntry.action == "completed")
        .order_by(TaskHistoryEntry.timestamp.asc())
        .all()
    )
    times: dict[int, datetime] = {}
    for entry in entries:
        times.setdefault(entry.task_id, entry.timestamp)
    return times
