"""CLI tests for the caseload Typer commands."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker
from typer.testing import CliRunner

import cli
from models import ScheduleExecution, StaffMember, TaskTemplate
from scheduler.schedule_repository import RecurringScheduleCreateInput, ScheduleRepository
from tasks.repository import TaskCreateInput, TaskRepository

runner = CliRunner()


@pytest.fixture(autouse=True)
def _restore_root_logger():
    """Undo the CLI's logging configuration after each invocation."""
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def factory(monkeypatch, sqlite_session_factory: sessionmaker) -> sessionmaker:
    """Point the CLI at the in-memory database."""
    monkeypatch.setattr(cli, "_session_factory_provider", lambda: sqlite_session_factory)
    return sqlite_session_factory


def _invoke(*args: str) -> Any:
    return runner.invoke(cli.app, ["--json", "--log-level", "CRITICAL", *args])


def _seed_ward(factory: sessionmaker) -> list[int]:
    """Seed an overloaded ward whose tasks predate the performance window."""
    with factory() as session:
        session.add_all(
            [
                StaffMember(id="a", name="A", department="ward-a", roles=["nurse"]),
                StaffMember(id="b", name="B", department="ward-a", roles=["nurse"]),
            ]
        )
        session.commit()
    repo = TaskRepository(factory)
    created = datetime.now(timezone.utc) - timedelta(days=60)
    specs = [
        ("a", 300, "low", "routine"),
        ("a", 360, "medium", "routine"),
        ("a", 240, "medium", "routine"),
        ("a", 300, "medium", "urgent"),
        ("b", 600, "low", "routine"),
    ]
    ids = []
    for assignee, minutes, priority, urgency in specs:
        task = repo.create_task(
            TaskCreateInput(
                title="Ward task",
                department="ward-a",
                estimated_duration_minutes=minutes,
                priority=priority,
                urgency_level=urgency,
                assigned_to=assignee,
            ),
            now=created,
        )
        ids.append(task.id)
    return ids


def test_workload_command_outputs_scores(factory: sessionmaker) -> None:
    """workload prints each staff member's score as JSON."""
    _seed_ward(factory)

    result = _invoke("workload", "ward-a")

    assert result.exit_code == 0
    data = json.loads(result.stdout)
    assert data["a"]["weighted"] == pytest.approx(45.0)
    assert data["b"]["metrics"]["active_task_count"] == 1


def test_rebalance_plans_without_writing(factory: sessionmaker) -> None:
    """Without --apply the plan is printed and nothing moves."""
    task_ids = _seed_ward(factory)

    result = _invoke("rebalance", "ward-a")

    assert result.exit_code == 0
    plan = json.loads(result.stdout)
    assert [move["task_id"] for move in plan["reassignments"]] == [task_ids[0]]
    assert TaskRepository(factory).get_task(task_ids[0]).assigned_to == "a"


def test_rebalance_apply_persists(factory: sessionmaker) -> None:
    """--apply persists the planned moves."""
    task_ids = _seed_ward(factory)

    result = _invoke("rebalance", "ward-a", "--apply")

    assert result.exit_code == 0
    assert json.loads(result.stdout)["persisted"] == 1
    assert TaskRepository(factory).get_task(task_ids[0]).assigned_to == "b"


def test_sweep_deadline_command(factory: sessionmaker) -> None:
    """sweep deadline runs one deadline sweep."""
    result = _invoke("sweep", "deadline")

    assert result.exit_code == 0
    assert json.loads(result.stdout) == {"delivered": 0, "reminders": 0}


def _seed_schedule(factory: sessionmaker) -> int:
    with factory() as session:
        template = TaskTemplate(
            name="Linen check",
            category="admin",
            estimated_duration_minutes=15,
            department="ward-a",
        )
        session.add(template)
        session.commit()
        template_id = template.id
    schedule = ScheduleRepository(factory).create_schedule(
        RecurringScheduleCreateInput(
            task_template_id=template_id,
            frequency="daily",
            start_date=datetime(2025, 1, 1, tzinfo=timezone.utc),
            time="07:30",
            department="ward-a",
        )
    )
    return schedule.id


def test_next_run_command(factory: sessionmaker) -> None:
    """next-run reports an upcoming run for an active schedule."""
    schedule_id = _seed_schedule(factory)

    result = _invoke("next-run", str(schedule_id))

    assert result.exit_code == 0
    data = json.loads(result.stdout)
    assert data["schedule_id"] == schedule_id
    assert data["is_active"] is True
    assert datetime.fromisoformat(data["next_run"]) >= datetime.now(timezone.utc) - timedelta(minutes=1)


def test_next_run_unknown_schedule_is_domain_error(factory: sessionmaker) -> None:
    """Unknown schedules exit with the domain error code."""
    result = _invoke("next-run", "999")

    assert result.exit_code == cli.DOMAIN_ERROR_EXIT_CODE
    assert "schedule_not_found" in result.output


def test_executions_command_summarizes_history(factory: sessionmaker) -> None:
    """executions summarizes recorded firings."""
    schedule_id = _seed_schedule(factory)
    slot = datetime(2025, 1, 2, 7, 30, tzinfo=timezone.utc)
    with factory() as session:
        session.add_all(
            [
                ScheduleExecution(
                    schedule_id=schedule_id,
                    scheduled_time=slot,
                    actual_execution_time=slot + timedelta(minutes=2),
                    status="success",
                ),
                ScheduleExecution(
                    schedule_id=schedule_id,
                    scheduled_time=slot + timedelta(days=1),
                    actual_execution_time=slot + timedelta(days=1, minutes=4),
                    status="failed",
                ),
            ]
        )
        session.commit()

    result = _invoke("executions", str(schedule_id))

    assert result.exit_code == 0
    data = json.loads(result.stdout)
    assert (data["total"], data["success"], data["failed"]) == (2, 1, 1)
    assert data["average_delay_minutes"] == pytest.approx(3.0)


def test_database_errors_map_to_persistence_exit_code(monkeypatch, factory: sessionmaker) -> None:
    """SQLAlchemy failures exit with the persistence error code."""

    def _broken_runner():
        raise OperationalError("SELECT 1", {}, Exception("database is locked"))

    monkeypatch.setattr(cli, "_build_runner", _broken_runner)

    result = _invoke("workload", "ward-a")

    assert result.exit_code == cli.PERSISTENCE_ERROR_EXIT_CODE


class _ClosingAdvisory:
    """Advisory double that records whether it was closed."""

    def __init__(self) -> None:
        self.closed = False

    def suggest(self, task, candidates):
        return None

    def close(self) -> None:
        self.closed = True


def test_commands_close_the_advisory_pool(monkeypatch, factory: sessionmaker) -> None:
    """Each command releases the advisory worker threads it started."""
    _seed_ward(factory)
    advisories = []

    def _build():
        advisories.append(_ClosingAdvisory())
        return advisories[-1]

    monkeypatch.setattr(cli, "build_advisory", _build)

    assert _invoke("workload", "ward-a").exit_code == 0
    assert _invoke("sweep", "deadline").exit_code == 0

    assert [advisory.closed for advisory in advisories] == [True, True]


def test_metrics_command_summarizes_department(factory: sessionmaker) -> None:
    """metrics reports counts and distributions over the requested window."""
    _seed_ward(factory)

    recent = json.loads(_invoke("metrics", "ward-a").stdout)
    wide = json.loads(_invoke("metrics", "ward-a", "--days", "90").stdout)

    assert recent["total"] == 0
    assert (wide["total"], wide["active"], wide["completed"]) == (5, 5, 0)
    assert wide["by_priority"] == {"low": 2, "medium": 3}
    assert wide["completion_rate"] == 0.0


def test_emergency_command_assigns_least_loaded(factory: sessionmaker) -> None:
    """emergency creates a staffed emergency task and reports the alert."""
    _seed_ward(factory)

    result = _invoke("emergency", "ward-a", "fall", "--location", "Bay 2")

    assert result.exit_code == 0
    data = json.loads(result.stdout)
    assert data["task"]["assigned_to"] == "b"
    assert data["task"]["urgency_level"] == "emergency"
    assert data["alerted"] is True


def test_emergency_command_rejects_unknown_category(factory: sessionmaker) -> None:
    """Invalid task fields exit with the domain error code."""
    result = _invoke("emergency", "ward-a", "fall", "--category", "triage")

    assert result.exit_code == cli.DOMAIN_ERROR_EXIT_CODE
