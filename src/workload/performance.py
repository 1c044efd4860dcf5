"""Rolling completion metrics used as the workload performance divisor."""

from __future__ import annotations

import logging
from contextlib import closing
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable

from sqlalchemy.orm import Session

from config import settings
from models import Task, TaskHistoryEntry
from tasks.snapshots import PerformanceSummary
from time_utils import to_utc

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AssignedTaskOutcome:
    """Completion facts for one task assigned within the window."""

    task_id: int
    status: str
    due_date: datetime | None
    completed_at: datetime | None


def compute_summary(outcomes: Iterable[AssignedTaskOutcome]) -> PerformanceSummary | None:
    """Summarize completion and on-time rates, or None without history.

    Staff who have not completed anything in the window have no history yet
    and get None, which scores as neutral. A completed task only counts as on
    time when it has both a due date and a completion time at or before it.
    """
    assigned = 0
    completed = 0
    on_time = 0
    for outcome in outcomes:
        assigned += 1
        if outcome.status != "completed":
            continue
        completed += 1
        if outcome.due_date is None or outcome.completed_at is None:
            continue
        if to_utc(outcome.completed_at) <= to_utc(outcome.due_date):
            on_time += 1
    if completed == 0:
        return None
    return PerformanceSummary(
        completion_rate=completed / assigned,
        on_time_completion_rate=on_time / completed,
    )


class PerformanceAnalytics:
    """Compute performance summaries from task and history records."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        *,
        window_days: int | None = None,
    ) -> None:
        """Initialize analytics with a session factory and rolling window."""
        self._session_factory = session_factory
        self._window_days = window_days or settings.workload.performance_window_days

    def summaries_for(
        self,
        staff_ids: Iterable[str],
        *,
        now: datetime | None = None,
    ) -> dict[str, PerformanceSummary]:
        """Return summaries keyed by staff id; staff without history are omitted."""
        ids = list(staff_ids)
        if not ids:
            return {}
        reference = to_utc(now or datetime.now(timezone.utc))
        cutoff = reference - timedelta(days=self._window_days)

        with closing(self._session_factory()) as session:
            tasks = (
                session.query(Task)
                .filter(Task.assigned_to.in_(ids))
                .filter(Task.created_at >= cutoff)
                .filter(Task.created_at <= reference)
                .all()
            )
            completed_ids = [task.id for task in tasks if task.status == "completed"]
            completion_times: dict[int, datetime] = {}
            if completed_ids:
                entries = (
                    session.query(TaskHistoryEntry)
                    .filter(TaskHistoryEntry.task_id.in_(completed_ids))
                    .filter(TaskHistoryEntry.action == "completed")
                    .order_by(TaskHistoryEntry.timestamp.asc())
                    .all()
                )
                for entry in entries:
                    completion_times.setdefault(entry.task_id, entry.timestamp)

            grouped: dict[str, list[AssignedTaskOutcome]] = {staff_id: [] for staff_id in ids}
            for task in tasks:
                grouped[task.assigned_to].append(
                    AssignedTaskOutcome(
                        task_id=task.id,
                        status=task.status,
                        due_date=task.due_date,
                        completed_at=completion_times.get(task.id, task.completed_at),
                    )
                )

        summaries: dict[str, PerformanceSummary] = {}
        for staff_id, outcomes in grouped.items():
            summary = compute_summary(outcomes)
            if summary is not None:
                summaries[staff_id] = summary
        logger.debug(
            "Computed performance summaries for %s of %s staff.",
            len(summaries),
            len(ids),
        )
        return summaries

    def summary_for(
        self,
        staff_id: str,
        *,
        now: datetime | None = None,
    ) -> PerformanceSummary | None:
        """Return the summary for one staff member, or None without history."""
        return self.summaries_for([staff_id], now=now).get(staff_id)
