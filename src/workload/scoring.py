"""Workload scoring for staff members from their active task load.

Scoring is pure: it reads immutable snapshots and returns a fresh
``WorkloadScore``. Scores are recomputed for every sweep and never cached.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable

from errors import InputError
from models import MIN_ESTIMATED_DURATION_MINUTES
from tasks.snapshots import OPEN_STATUSES, PerformanceSummary, StaffSnapshot, TaskSnapshot
from time_utils import to_utc

PRIORITY_WEIGHTS = {"high": 3, "medium": 2, "low": 1}
URGENCY_WEIGHTS = {"emergency": 3, "urgent": 2, "routine": 1}

MIN_PERFORMANCE_SCORE = 0.05
MAX_PERFORMANCE_SCORE = 1.0
NEUTRAL_PERFORMANCE_SCORE = 1.0


@dataclass(frozen=True)
class WorkloadMetrics:
    """Supporting metrics reported alongside a workload score."""

    active_task_count: int
    total_estimated_hours: float
    performance_score: float
    overdue_task_count: int


@dataclass(frozen=True)
class WorkloadScore:
    """Raw and performance-weighted workload for one staff member."""

    staff_id: str
    raw: float
    weighted: float
    metrics: WorkloadMetrics


def _priority_weight(task: TaskSnapshot) -> int:
    try:
        return PRIORITY_WEIGHTS[task.priority]
    except KeyError:
        raise InputError(
            "invalid_priority",
            f"Task {task.id} has unknown priority {task.priority!r}.",
            {"task_id": task.id, "priority": task.priority},
        ) from None


def _urgency_weight(task: TaskSnapshot) -> int:
    try:
        return URGENCY_WEIGHTS[task.urgency_level]
    except KeyError:
        raise InputError(
            "invalid_urgency",
            f"Task {task.id} has unknown urgency level {task.urgency_level!r}.",
            {"task_id": task.id, "urgency_level": task.urgency_level},
        ) from None


def _duration_hours(task: TaskSnapshot) -> float:
    duration = task.estimated_duration_minutes
    if duration is None:
        raise InputError(
            "missing_duration",
            f"Task {task.id} has no estimated duration.",
            {"task_id": task.id},
        )
    if duration < MIN_ESTIMATED_DURATION_MINUTES:
        raise InputError(
            "invalid_duration",
            f"Task {task.id} estimated duration must be >= {MIN_ESTIMATED_DURATION_MINUTES} minutes.",
            {"task_id": task.id, "estimated_duration_minutes": duration},
        )
    return duration / 60


def impact_rank(task: TaskSnapshot) -> int:
    """Return the priority-by-urgency impact of a task."""
    return _priority_weight(task) * _urgency_weight(task)


def task_weight(task: TaskSnapshot) -> float:
    """Return one task's contribution to raw workload."""
    return impact_rank(task) * _duration_hours(task)


def performance_score(summary: PerformanceSummary | None) -> float:
    """Return the clamped performance divisor for a summary.

    Staff without history get the neutral score of 1.0.
    """
    if summary is None:
        return NEUTRAL_PERFORMANCE_SCORE
    for name in ("completion_rate", "on_time_completion_rate"):
        value = getattr(summary, name)
        if value is None or not 0.0 <= value <= 1.0:
            raise InputError(
                "invalid_performance_rate",
                f"{name} must be within [0, 1].",
                {name: value},
            )
    score = (summary.completion_rate + summary.on_time_completion_rate) / 2
    return min(MAX_PERFORMANCE_SCORE, max(MIN_PERFORMANCE_SCORE, score))


def contribution(task: TaskSnapshot, score: float) -> float:
    """Return a task's weighted contribution for a given performance score."""
    return task_weight(task) / score


def score_workload(
    staff_id: str,
    active_tasks: Iterable[TaskSnapshot],
    performance: PerformanceSummary | None,
    *,
    now: datetime,
) -> WorkloadScore:
    """Compute the workload score for a staff member."""
    perf = performance_score(performance)
    reference = to_utc(now)
    raw = 0.0
    total_minutes = 0
    count = 0
    overdue = 0
    for task in active_tasks:
        raw += task_weight(task)
        total_minutes += task.estimated_duration_minutes
        count += 1
        if task.due_date is not None and to_utc(task.due_date) < reference:
            overdue += 1
    return WorkloadScore(
        staff_id=staff_id,
        raw=raw,
        weighted=raw / perf,
        metrics=WorkloadMetrics(
            active_task_count=count,
            total_estimated_hours=total_minutes / 60,
            performance_score=perf,
            overdue_task_count=overdue,
        ),
    )


def score_department(
    staff: Iterable[StaffSnapshot],
    tasks: Iterable[TaskSnapshot],
    *,
    now: datetime,
) -> dict[str, WorkloadScore]:
    """Score every staff member against the open tasks they hold."""
    members = list(staff)
    held: dict[str, list[TaskSnapshot]] = {member.id: [] for member in members}
    for task in tasks:
        if task.status in OPEN_STATUSES and task.assigned_to in held:
            held[task.assigned_to].append(task)
    return {
        member.id: score_workload(member.id, held[member.id], member.performance, now=now)
        for member in members
    }
