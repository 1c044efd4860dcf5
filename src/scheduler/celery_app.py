"""Celery entry point for the periodic caseload sweeps."""

from __future__ import annotations

import logging
import os
from datetime import datetime, timezone
from typing import Any, Callable

from celery import Celery

from config import settings
from logging_config import SWEEP, log_context
from scheduler.sweeps import (
    BottleneckSweepResult,
    DeadlineSweepResult,
    RecurrenceSweepResult,
    SweepRunner,
    build_sweep_runner,
)
from services.database import get_sync_session
from workload.advisory import build_advisory

LOGGER = logging.getLogger(__name__)

DEADLINE_TASK_NAME = "caseload.deadline_sweep"
BOTTLENECK_TASK_NAME = "caseload.bottleneck_sweep"
RECURRENCE_TASK_NAME = "caseload.recurrence_sweep"


def _env(var: str, default: str) -> str:
    return os.environ.get(var, default)


celery_app = Celery("caseload.scheduler")
celery_app.conf.broker_url = _env("CELERY_BROKER_URL", "redis://redis:6379/1")
celery_app.conf.result_backend = _env("CELERY_RESULT_BACKEND", "redis://redis:6379/2")
celery_app.conf.task_default_queue = _env("CELERY_QUEUE_NAME", "scheduler")
celery_app.conf.task_serializer = "json"
celery_app.conf.result_serializer = "json"
celery_app.conf.accept_content = ["json"]
celery_app.conf.enable_utc = True
celery_app.conf.timezone = "UTC"

beat_schedule = celery_app.conf.get("beat_schedule")
if beat_schedule is None:
    beat_schedule = {}
beat_schedule[DEADLINE_TASK_NAME] = {
    "task": DEADLINE_TASK_NAME,
    "schedule": float(settings.scheduler.deadline_interval_seconds),
}
beat_schedule[BOTTLENECK_TASK_NAME] = {
    "task": BOTTLENECK_TASK_NAME,
    "schedule": float(settings.scheduler.bottleneck_interval_seconds),
}
beat_schedule[RECURRENCE_TASK_NAME] = {
    "task": RECURRENCE_TASK_NAME,
    "schedule": float(settings.scheduler.recurrence_interval_seconds),
}
celery_app.conf.beat_schedule = beat_schedule


def _session_factory():
    """Return a new synchronous SQLAlchemy session for sweep tasks."""
    return get_sync_session()


# One advisory worker pool per process, shared by every sweep task.
_advisory = build_advisory()


def _default_runner_factory() -> SweepRunner:
    return build_sweep_runner(_session_factory, advisory=_advisory)


_runner_factory: Callable[[], SweepRunner] = _default_runner_factory


def _coerce_datetime(value: Any) -> datetime | None:
    """Coerce a JSON-serializable value into an aware datetime."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.astimezone(timezone.utc)
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, timezone.utc)
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.endswith("Z"):
            text = f"{text[:-1]}+00:00"
        return datetime.fromisoformat(text)
    raise ValueError(f"Unsupported datetime format: {value!r}")


def summarize_deadline(result: DeadlineSweepResult) -> dict[str, int]:
    return {"reminders": result.reminders, "delivered": result.delivered}


def summarize_bottleneck(result: BottleneckSweepResult) -> dict[str, object]:
    """Reduce a bottleneck sweep result to a JSON-friendly summary."""
    return {
        "departments": len(result.departments),
        "reassignments": result.reassignments,
        "conflicts": sum(item.conflicts for item in result.departments),
        "failed_departments": [
            item.department for item in result.departments if item.error is not None
        ],
        "still_overloaded": {
            item.department: [entry.staff_id for entry in item.still_overloaded]
            for item in result.departments
            if item.still_overloaded
        },
    }


def summarize_recurrence(result: RecurrenceSweepResult) -> dict[str, object]:
    """Reduce a recurrence sweep result to a JSON-friendly summary."""
    counts: dict[str, int] = {}
    for firing in result.firings:
        counts[firing.status] = counts.get(firing.status, 0) + 1
    return {
        "evaluated": len(result.firings),
        "by_status": counts,
        "task_ids": [firing.task_id for firing in result.firings if firing.task_id is not None],
    }


def run_deadline_sweep(
    now: Any | None = None,
    *,
    runner_factory: Callable[[], SweepRunner] | None = None,
) -> dict[str, int]:
    """Core logic for the deadline beat job."""
    runner = (runner_factory or _runner_factory)()
    with log_context({SWEEP: "deadline"}):
        result = runner.run_deadline_sweep(_coerce_datetime(now))
    LOGGER.info("Deadline sweep completed: reminders=%s", result.reminders)
    return summarize_deadline(result)


def run_bottleneck_sweep(
    now: Any | None = None,
    *,
    runner_factory: Callable[[], SweepRunner] | None = None,
) -> dict[str, object]:
    """Core logic for the bottleneck beat job."""
    runner = (runner_factory or _runner_factory)()
    with log_context({SWEEP: "bottleneck"}):
        result = runner.run_bottleneck_sweep(_coerce_datetime(now))
    LOGGER.info("Bottleneck sweep completed: reassignments=%s", result.reassignments)
    return summarize_bottleneck(result)


def run_recurrence_sweep(
    now: Any | None = None,
    *,
    runner_factory: Callable[[], SweepRunner] | None = None,
) -> dict[str, object]:
    """Core logic for the recurrence beat job."""
    runner = (runner_factory or _runner_factory)()
    with log_context({SWEEP: "recurrence"}):
        result = runner.run_recurrence_sweep(_coerce_datetime(now))
    LOGGER.info("Recurrence sweep completed: evaluated=%s", len(result.firings))
    return summarize_recurrence(result)


@celery_app.task(name=DEADLINE_TASK_NAME)
def deadline_sweep(now: Any | None = None) -> dict[str, int]:
    """Celery beat job that emits deadline reminders."""
    return run_deadline_sweep(now)


@celery_app.task(name=BOTTLENECK_TASK_NAME)
def bottleneck_sweep(now: Any | None = None) -> dict[str, object]:
    """Celery beat job that rebalances overloaded departments."""
    return run_bottleneck_sweep(now)


@celery_app.task(name=RECURRENCE_TASK_NAME)
def recurrence_sweep(now: Any | None = None) -> dict[str, object]:
    """Celery beat job that instantiates due recurring tasks."""
    return run_recurrence_sweep(now)
