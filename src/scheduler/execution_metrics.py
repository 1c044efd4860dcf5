"""Aggregate metrics over recurring schedule execution history."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Protocol

from time_utils import to_utc


class ExecutionLike(Protocol):
    """Fields read from an execution record."""

    scheduled_time: datetime
    actual_execution_time: datetime
    status: str


@dataclass(frozen=True)
class ExecutionSummary:
    """Counts, success rate, and mean firing delay for executions."""

    total: int
    success: int
    failed: int
    skipped: int
    success_rate: float
    average_delay_minutes: float


def summarize_executions(history: Iterable[ExecutionLike]) -> ExecutionSummary:
    """Summarize execution history.

    Success rate is a fraction in [0, 1]; delay is measured from the
    scheduled time to the actual execution time.
    """
    total = success = failed = skipped = 0
    delay_minutes = 0.0
    for execution in history:
        total += 1
        if execution.status == "success":
            success += 1
        elif execution.status == "failed":
            failed += 1
        elif execution.status == "skipped":
            skipped += 1
        delay = to_utc(execution.actual_execution_time) - to_utc(execution.scheduled_time)
        delay_minutes += delay.total_seconds() / 60
    return ExecutionSummary(
        total=total,
        success=success,
        failed=failed,
        skipped=skipped,
        success_rate=(success / total) if total else 0.0,
        average_delay_minutes=(delay_minutes / total) if total else 0.0,
    )
