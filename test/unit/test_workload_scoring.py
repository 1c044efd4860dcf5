"""Unit tests for workload scoring."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from errors import InputError
from tasks.snapshots import PerformanceSummary, StaffSnapshot, TaskSnapshot
from workload.scoring import (
    MIN_PERFORMANCE_SCORE,
    contribution,
    impact_rank,
    performance_score,
    score_department,
    score_workload,
    task_weight,
)

NOW = datetime(2025, 3, 4, 12, 0, tzinfo=timezone.utc)


def _task(
    task_id: int = 1,
    *,
    priority: str = "medium",
    urgency: str = "routine",
    minutes: int | None = 60,
    assigned_to: str | None = "a",
    status: str = "todo",
    due_date: datetime | None = None,
) -> TaskSnapshot:
    """Build a task snapshot for scoring tests."""
    return TaskSnapshot(
        id=task_id,
        title=f"Task {task_id}",
        priority=priority,
        urgency_level=urgency,
        status=status,
        department="ward-a",
        category="patient_care",
        estimated_duration_minutes=minutes,
        due_date=due_date,
        assigned_to=assigned_to,
    )


def test_high_emergency_hour_scored_against_performance() -> None:
    """A one hour high/emergency task scores 9 raw and 10 weighted at 0.9."""
    summary = PerformanceSummary(completion_rate=1.0, on_time_completion_rate=0.8)
    task = _task(priority="high", urgency="emergency", minutes=60)

    score = score_workload("a", [task], summary, now=NOW)

    assert score.raw == pytest.approx(9.0)
    assert score.weighted == pytest.approx(10.0)
    assert score.metrics.performance_score == pytest.approx(0.9)
    assert score.metrics.active_task_count == 1
    assert score.metrics.total_estimated_hours == pytest.approx(1.0)


def test_impact_rank_multiplies_priority_and_urgency() -> None:
    """Impact rank is priority weight times urgency weight."""
    assert impact_rank(_task(priority="low", urgency="routine")) == 1
    assert impact_rank(_task(priority="medium", urgency="urgent")) == 4
    assert impact_rank(_task(priority="high", urgency="emergency")) == 9


def test_task_weight_scales_with_duration() -> None:
    """Task weight is impact rank times duration in hours."""
    assert task_weight(_task(priority="medium", urgency="routine", minutes=360)) == pytest.approx(12.0)
    assert task_weight(_task(priority="low", urgency="routine", minutes=30)) == pytest.approx(0.5)


def test_no_history_uses_neutral_performance() -> None:
    """Staff without history are scored with a performance score of 1.0."""
    score = score_workload("a", [_task(minutes=120)], None, now=NOW)

    assert score.weighted == pytest.approx(score.raw)
    assert score.metrics.performance_score == 1.0


def test_performance_score_is_clamped_to_minimum() -> None:
    """A zero completion history cannot divide by zero."""
    summary = PerformanceSummary(completion_rate=0.0, on_time_completion_rate=0.0)

    assert performance_score(summary) == MIN_PERFORMANCE_SCORE
    score = score_workload("a", [_task(minutes=60)], summary, now=NOW)
    assert score.weighted == pytest.approx(score.raw / MIN_PERFORMANCE_SCORE)


def test_weighted_never_below_raw() -> None:
    """Weighted workload is at least the raw workload for any valid history."""
    tasks = [_task(1, minutes=45), _task(2, priority="high", minutes=90)]
    for completion in (0.0, 0.3, 0.7, 1.0):
        for on_time in (0.0, 0.5, 1.0):
            summary = PerformanceSummary(completion, on_time)
            score = score_workload("a", tasks, summary, now=NOW)
            assert score.weighted >= score.raw


def test_adding_a_task_never_lowers_raw_workload() -> None:
    """Raw workload is monotonic in the task set."""
    base = [_task(1, minutes=30)]
    before = score_workload("a", base, None, now=NOW)
    after = score_workload("a", base + [_task(2, priority="low", minutes=5)], None, now=NOW)

    assert after.raw > before.raw


def test_empty_task_list_scores_zero() -> None:
    """Staff with no open tasks have zero workload."""
    score = score_workload("a", [], None, now=NOW)

    assert score.raw == 0.0
    assert score.weighted == 0.0
    assert score.metrics.active_task_count == 0


def test_overdue_tasks_are_counted() -> None:
    """Tasks past their due date are reported as overdue."""
    tasks = [
        _task(1, due_date=NOW - timedelta(hours=1)),
        _task(2, due_date=NOW + timedelta(hours=1)),
        _task(3),
    ]

    score = score_workload("a", tasks, None, now=NOW)

    assert score.metrics.overdue_task_count == 1


def test_missing_duration_is_rejected() -> None:
    """Tasks without an estimated duration cannot be scored."""
    with pytest.raises(InputError) as excinfo:
        score_workload("a", [_task(minutes=None)], None, now=NOW)

    assert excinfo.value.code == "missing_duration"


def test_duration_below_minimum_is_rejected() -> None:
    """Durations under five minutes are invalid."""
    with pytest.raises(InputError) as excinfo:
        task_weight(_task(minutes=4))

    assert excinfo.value.code == "invalid_duration"


def test_unknown_priority_is_rejected() -> None:
    """Unknown priority values raise an input error."""
    with pytest.raises(InputError) as excinfo:
        task_weight(_task(priority="critical"))

    assert excinfo.value.code == "invalid_priority"


def test_unknown_urgency_is_rejected() -> None:
    """Unknown urgency values raise an input error."""
    with pytest.raises(InputError) as excinfo:
        task_weight(_task(urgency="whenever"))

    assert excinfo.value.code == "invalid_urgency"


def test_out_of_range_rates_are_rejected() -> None:
    """Performance rates outside [0, 1] are invalid input."""
    with pytest.raises(InputError):
        performance_score(PerformanceSummary(completion_rate=1.2, on_time_completion_rate=0.5))


def test_contribution_divides_by_performance() -> None:
    """Per-party contribution divides task weight by the party's score."""
    task = _task(priority="medium", urgency="routine", minutes=300)

    assert contribution(task, 1.0) == pytest.approx(10.0)
    assert contribution(task, 0.5) == pytest.approx(20.0)


def test_score_department_only_counts_open_tasks_held_by_staff() -> None:
    """Department scoring ignores closed tasks and tasks held by others."""
    staff = [StaffSnapshot(id="a", department="ward-a"), StaffSnapshot(id="b", department="ward-a")]
    tasks = [
        _task(1, minutes=60, assigned_to="a"),
        _task(2, minutes=60, assigned_to="a", status="completed"),
        _task(3, minutes=120, assigned_to="b", status="in_progress"),
        _task(4, minutes=60, assigned_to="someone-else"),
        _task(5, minutes=60, assigned_to=None),
    ]

    scores = score_department(staff, tasks, now=NOW)

    assert set(scores) == {"a", "b"}
    assert scores["a"].raw == pytest.approx(2.0)
    assert scores["b"].raw == pytest.approx(4.0)
