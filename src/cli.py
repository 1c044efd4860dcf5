"""Caseload command-line interface implemented with Typer."""

from __future__ import annotations

import dataclasses
import json
import sys
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Iterator

import typer
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from config import settings
from errors import CaseloadError, NotFoundError, PersistenceFailure
from logging_config import configure_logging
from scheduler.execution_metrics import summarize_executions
from scheduler.orchestrator import SchedulerOrchestrator, SweepKind
from scheduler.recurrence import next_run
from scheduler.schedule_repository import ScheduleRepository
from scheduler.sweeps import SweepRunner, build_sweep_runner
from services.database import get_session_factory, run_migrations_sync
from time_utils import utc_now
from workload.advisory import build_advisory
from workload.assignment_service import EmergencyInput
from workload.department_metrics import DEFAULT_WINDOW_DAYS, DepartmentAnalytics

SUCCESS_EXIT_CODE = 0
DOMAIN_ERROR_EXIT_CODE = 3
PERSISTENCE_ERROR_EXIT_CODE = 4

_session_factory_provider: Callable[[], Callable[[], Session]] = get_session_factory


@dataclass(frozen=True)
class CliConfig:
    """Global CLI runtime options."""

    as_json: bool


def _serialize(value: Any) -> Any:
    """Convert result objects to JSON-serializable structures."""

    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, (date, Decimal, Path)):
        return str(value)
    if dataclasses.is_dataclass(value):
        return _serialize(dataclasses.asdict(value))
    if isinstance(value, dict):
        return {str(key): _serialize(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_serialize(item) for item in value]
    return str(value)


def _emit_output(result: Any, as_json: bool) -> None:
    """Render command output in requested format."""

    data = _serialize(result)
    if as_json:
        typer.echo(json.dumps(data, sort_keys=True, separators=(",", ":")))
        return
    if data is None:
        typer.echo("ok")
        return
    if isinstance(data, (dict, list)):
        typer.echo(json.dumps(data, indent=2, sort_keys=True))
        return
    typer.echo(str(data))


def _emit_error(exc: Exception, as_json: bool) -> None:
    """Render mapped errors to stderr."""

    if as_json:
        payload: dict[str, Any] = {"error": str(exc)}
        if isinstance(exc, CaseloadError):
            payload.update({"code": exc.code, "details": _serialize(exc.details)})
        typer.echo(json.dumps(payload, sort_keys=True), err=True)
        return
    typer.echo(f"error: {exc}", err=True)


@contextmanager
def _build_runner() -> Iterator[SweepRunner]:
    """Yield a sweep runner and release its advisory pool afterwards."""
    advisory = build_advisory()
    try:
        yield build_sweep_runner(_session_factory_provider(), advisory=advisory)
    finally:
        if advisory is not None:
            advisory.close()


def _run_command(cfg: CliConfig, invoke: Callable[[], Any]) -> None:
    """Execute one command and map outputs/errors to process semantics."""
    try:
        result = invoke()
    except (PersistenceFailure, SQLAlchemyError) as exc:
        _emit_error(exc, cfg.as_json)
        raise typer.Exit(code=PERSISTENCE_ERROR_EXIT_CODE) from exc
    except CaseloadError as exc:
        _emit_error(exc, cfg.as_json)
        raise typer.Exit(code=DOMAIN_ERROR_EXIT_CODE) from exc

    _emit_output(result, cfg.as_json)
    raise typer.Exit(code=SUCCESS_EXIT_CODE)


def _require_config(ctx: typer.Context) -> CliConfig:
    """Return required CLI config from Typer context."""

    config = ctx.obj
    if not isinstance(config, CliConfig):
        raise RuntimeError("CLI configuration not initialized")
    return config


app = typer.Typer(no_args_is_help=True, help="Caseload workload and scheduling commands")
sweep_app = typer.Typer(help="Run one sweep immediately")


@app.callback()
def main(
    ctx: typer.Context,
    as_json: bool = typer.Option(False, "--json", help="Emit JSON output"),
    log_level: str = typer.Option(settings.log_level, help="Logging level"),
) -> None:
    """Store global options and configure logging."""

    configure_logging(level=log_level, json_output=settings.log_json, stream=sys.stderr)
    ctx.obj = CliConfig(as_json=as_json)


@app.command("run")
def run_command(
    migrate: bool = typer.Option(True, help="Apply database migrations before starting"),
) -> None:
    """Run the sweep scheduler until interrupted."""
    if migrate:
        run_migrations_sync()
    with _build_runner() as runner:
        SchedulerOrchestrator(runner, config=settings.scheduler).run_forever()


def _sweep(ctx: typer.Context, kind: SweepKind) -> None:
    cfg = _require_config(ctx)

    def invoke() -> Any:
        with _build_runner() as runner:
            return SchedulerOrchestrator(runner, config=settings.scheduler).run_sweep(kind)

    _run_command(cfg, invoke)


@sweep_app.command("deadline")
def sweep_deadline(ctx: typer.Context) -> None:
    """Emit reminders for tasks due within the deadline window."""
    _sweep(ctx, SweepKind.DEADLINE)


@sweep_app.command("bottleneck")
def sweep_bottleneck(ctx: typer.Context) -> None:
    """Rebalance every department."""
    _sweep(ctx, SweepKind.BOTTLENECK)


@sweep_app.command("recurrence")
def sweep_recurrence(ctx: typer.Context) -> None:
    """Instantiate tasks for due recurring schedules."""
    _sweep(ctx, SweepKind.RECURRENCE)


@app.command("rebalance")
def rebalance_command(
    ctx: typer.Context,
    department: str = typer.Argument(..., help="Department to rebalance"),
    apply: bool = typer.Option(False, "--apply", help="Persist the planned reassignments"),
) -> None:
    """Plan a department rebalance, or apply it with --apply."""
    cfg = _require_config(ctx)

    def invoke() -> Any:
        with _build_runner() as runner:
            if apply:
                return runner.rebalance_department(department)
            _, plan = runner.plan_department(department)
            return plan

    _run_command(cfg, invoke)


@app.command("workload")
def workload_command(
    ctx: typer.Context,
    department: str = typer.Argument(..., help="Department to score"),
) -> None:
    """Show weighted workload for each eligible staff member."""
    cfg = _require_config(ctx)

    def invoke() -> Any:
        with _build_runner() as runner:
            return runner.workloads(department)

    _run_command(cfg, invoke)


@app.command("metrics")
def metrics_command(
    ctx: typer.Context,
    department: str = typer.Argument(..., help="Department to summarize"),
    days: int = typer.Option(DEFAULT_WINDOW_DAYS, min=1, help="Window of task creation days"),
) -> None:
    """Show completion, overdue, and distribution metrics for a department."""
    cfg = _require_config(ctx)

    def invoke() -> Any:
        end = utc_now()
        analytics = DepartmentAnalytics(_session_factory_provider())
        return analytics.metrics(department, start=end - timedelta(days=days), end=end, now=end)

    _run_command(cfg, invoke)


@app.command("emergency")
def emergency_command(
    ctx: typer.Context,
    department: str = typer.Argument(..., help="Department handling the emergency"),
    kind: str = typer.Argument(..., help="Short emergency type, e.g. 'cardiac arrest'"),
    description: str | None = typer.Option(None, help="Free-text description"),
    location: str | None = typer.Option(None, help="Where the response is needed"),
    category: str = typer.Option("patient_care", help="Task category"),
    minutes: int = typer.Option(30, min=1, help="Estimated response duration in minutes"),
) -> None:
    """Create an emergency task, assign it immediately, and alert the department."""
    cfg = _require_config(ctx)
    payload = EmergencyInput(
        kind=kind,
        department=department,
        description=description,
        location=location,
        category=category,
        estimated_duration_minutes=minutes,
        reported_by="cli",
    )

    def invoke() -> Any:
        with _build_runner() as runner:
            return runner.report_emergency(payload)

    _run_command(cfg, invoke)


@app.command("next-run")
def next_run_command(
    ctx: typer.Context,
    schedule_id: int = typer.Argument(..., help="Recurring schedule id"),
) -> None:
    """Show the next run for a recurring schedule."""
    cfg = _require_config(ctx)

    def invoke() -> dict[str, Any]:
        schedule = ScheduleRepository(_session_factory_provider()).get_schedule(schedule_id)
        if schedule is None:
            raise NotFoundError(
                "schedule_not_found",
                f"Schedule {schedule_id} not found.",
                {"schedule_id": schedule_id},
            )
        upcoming = next_run(schedule, utc_now()) if schedule.is_active else None
        return {"schedule_id": schedule_id, "is_active": schedule.is_active, "next_run": upcoming}

    _run_command(cfg, invoke)


@app.command("executions")
def executions_command(
    ctx: typer.Context,
    schedule_id: int | None = typer.Argument(None, help="Limit to one recurring schedule"),
) -> None:
    """Summarize recurring schedule execution history."""
    cfg = _require_config(ctx)

    def invoke() -> Any:
        repository = ScheduleRepository(_session_factory_provider())
        return summarize_executions(repository.list_executions(schedule_id))

    _run_command(cfg, invoke)


app.add_typer(sweep_app, name="sweep")


if __name__ == "__main__":
    app()
