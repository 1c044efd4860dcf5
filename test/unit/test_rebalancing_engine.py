"""Unit tests for the rebalancing engine."""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timezone

import pytest

from errors import InputError
from tasks.snapshots import DepartmentSnapshot, PerformanceSummary, StaffSnapshot, TaskSnapshot
from workload.assignment import AssignmentSelector, candidate_from_staff
from workload.rebalancing import REBALANCE_REASON, RebalancingEngine
from workload.scoring import contribution, performance_score, score_department

NOW = datetime(2025, 3, 4, 12, 0, tzinfo=timezone.utc)


def _task(
    task_id: int,
    assigned_to: str | None,
    minutes: int,
    *,
    priority: str = "medium",
    urgency: str = "routine",
    department: str = "ward-a",
    version: int = 1,
) -> TaskSnapshot:
    """Build a task snapshot held by a staff member."""
    return TaskSnapshot(
        id=task_id,
        title=f"Task {task_id}",
        priority=priority,
        urgency_level=urgency,
        status="todo",
        department=department,
        category="patient_care",
        estimated_duration_minutes=minutes,
        assigned_to=assigned_to,
        version=version,
    )


def _staff(staff_id: str, performance: PerformanceSummary | None = None) -> StaffSnapshot:
    return StaffSnapshot(
        id=staff_id,
        department="ward-a",
        roles=("nurse",),
        performance=performance,
    )


def _snapshot(staff: list[StaffSnapshot], tasks: list[TaskSnapshot]) -> DepartmentSnapshot:
    return DepartmentSnapshot(department="ward-a", staff=tuple(staff), tasks=tuple(tasks), now=NOW)


def _overloaded_ward() -> DepartmentSnapshot:
    """Staff a at 45 across four tasks; staff b at 10."""
    tasks = [
        _task(1, "a", 300, priority="low"),
        _task(2, "a", 360),
        _task(3, "a", 240),
        _task(4, "a", 300, urgency="urgent"),
        _task(5, "b", 600, priority="low", version=3),
    ]
    return _snapshot([_staff("a"), _staff("b")], tasks)


def test_lowest_impact_task_moves_until_threshold_met() -> None:
    """The five-unit task moves; a lands exactly on the threshold and stops."""
    plan = RebalancingEngine().plan(_overloaded_ward(), overload_threshold=40, improvement_margin=10)

    assert len(plan.reassignments) == 1
    move = plan.reassignments[0]
    assert move.task_id == 1
    assert (move.from_staff, move.to_staff) == ("a", "b")
    assert move.reason == REBALANCE_REASON
    assert move.workload_delta == pytest.approx(5.0)
    assert move.expected_version == 1
    assert move.expected_assignee == "a"
    assert plan.workloads["a"] == pytest.approx(40.0)
    assert plan.workloads["b"] == pytest.approx(15.0)
    assert plan.still_overloaded == ()


def test_rebalance_returns_reassignment_list() -> None:
    """rebalance() exposes just the list of proposed moves."""
    moves = RebalancingEngine().rebalance(_overloaded_ward())

    assert [move.task_id for move in moves] == [1]


def test_nothing_moves_when_nobody_is_overloaded() -> None:
    """A balanced department yields an empty plan."""
    snapshot = _snapshot(
        [_staff("a"), _staff("b")],
        [_task(1, "a", 60), _task(2, "b", 120)],
    )

    plan = RebalancingEngine().plan(snapshot)

    assert plan.reassignments == ()
    assert plan.still_overloaded == ()


def test_move_rejected_without_sufficient_improvement() -> None:
    """A move that would not beat the margin is not made."""
    snapshot = _snapshot(
        [_staff("a"), _staff("b")],
        [_task(1, "a", 1260), _task(2, "b", 1080)],
    )

    plan = RebalancingEngine().plan(snapshot, overload_threshold=40, improvement_margin=10)

    assert plan.reassignments == ()
    assert plan.still_overloaded == ("a",)


def test_single_staff_department_cannot_rebalance() -> None:
    """Without another candidate the holder stays overloaded."""
    snapshot = _snapshot([_staff("a")], [_task(1, "a", 1500), _task(2, "a", 60)])

    plan = RebalancingEngine().plan(snapshot)

    assert plan.reassignments == ()
    assert plan.still_overloaded == ("a",)


def test_no_task_moves_to_its_holder_and_none_moves_twice() -> None:
    """Every move leaves its holder and each task moves at most once."""
    tasks = [_task(i, "a", 120) for i in range(1, 11)]
    tasks += [_task(i, "b", 120, urgency="urgent") for i in range(11, 17)]
    snapshot = _snapshot([_staff("a"), _staff("b"), _staff("c"), _staff("d")], tasks)

    plan = RebalancingEngine().plan(snapshot, overload_threshold=10, improvement_margin=1)

    moved_ids = [move.task_id for move in plan.reassignments]
    assert len(moved_ids) == len(set(moved_ids))
    for move in plan.reassignments:
        assert move.from_staff != move.to_staff


def test_plan_workloads_match_rescoring_the_applied_moves() -> None:
    """In-memory workloads agree with scoring the post-move task set."""
    tasks = [_task(i, "a", 90, urgency="urgent") for i in range(1, 9)]
    tasks += [_task(20, "b", 30)]
    staff = [_staff("a"), _staff("b"), _staff("c")]
    snapshot = _snapshot(staff, tasks)

    plan = RebalancingEngine().plan(snapshot, overload_threshold=20, improvement_margin=2)

    destination = {move.task_id: move.to_staff for move in plan.reassignments}
    applied = [
        replace(task, assigned_to=destination.get(task.id, task.assigned_to))
        for task in tasks
    ]
    rescored = score_department(staff, applied, now=NOW)
    for staff_id, value in plan.workloads.items():
        assert rescored[staff_id].weighted == pytest.approx(value)


def test_rebalancing_terminates_and_improves_the_worst_case() -> None:
    """The worst workload never increases after planning."""
    tasks = [_task(i, "a", 60 + 15 * i, urgency="urgent") for i in range(1, 13)]
    tasks += [_task(100 + i, "b", 45, priority="high") for i in range(1, 6)]
    staff = [_staff("a"), _staff("b"), _staff("c")]
    snapshot = _snapshot(staff, tasks)
    before = max(score.weighted for score in score_department(staff, tasks, now=NOW).values())

    plan = RebalancingEngine().plan(snapshot, overload_threshold=25, improvement_margin=5)

    assert max(plan.workloads.values()) <= before


def test_performance_divisor_applies_to_both_parties() -> None:
    """Contributions are divided by each party's own performance score."""
    strong = PerformanceSummary(completion_rate=1.0, on_time_completion_rate=1.0)
    weak = PerformanceSummary(completion_rate=0.5, on_time_completion_rate=0.5)
    snapshot = _snapshot(
        [_staff("a", weak), _staff("b", strong)],
        [_task(1, "a", 600, priority="low"), _task(2, "a", 750, priority="low")],
    )

    plan = RebalancingEngine().plan(snapshot, overload_threshold=40, improvement_margin=10)

    assert [move.task_id for move in plan.reassignments] == [1]
    assert plan.reassignments[0].workload_delta == pytest.approx(20.0)
    assert plan.workloads["a"] == pytest.approx(25.0)
    assert plan.workloads["b"] == pytest.approx(10.0)


def test_empty_department_is_rejected() -> None:
    """A blank department name is invalid."""
    snapshot = DepartmentSnapshot(department=" ", staff=(), tasks=(), now=NOW)

    with pytest.raises(InputError):
        RebalancingEngine().plan(snapshot)


def test_negative_threshold_is_rejected() -> None:
    """Negative thresholds are invalid."""
    with pytest.raises(InputError) as excinfo:
        RebalancingEngine().plan(_overloaded_ward(), overload_threshold=-1)

    assert excinfo.value.code == "invalid_threshold"


def test_negative_margin_is_rejected() -> None:
    """Negative margins are invalid."""
    with pytest.raises(InputError) as excinfo:
        RebalancingEngine().plan(_overloaded_ward(), improvement_margin=-0.5)

    assert excinfo.value.code == "invalid_margin"


def test_tasks_from_other_departments_are_rejected() -> None:
    """A snapshot mixing departments is invalid."""
    snapshot = _snapshot([_staff("a")], [_task(1, "a", 60, department="ward-b")])

    with pytest.raises(InputError) as excinfo:
        RebalancingEngine().plan(snapshot)

    assert excinfo.value.code == "department_mismatch"


def _partially_relieved_ward() -> DepartmentSnapshot:
    """Staff a at 44 with two light colleagues; two moves bring a to 26."""
    tasks = [
        _task(1, "a", 240),
        _task(2, "a", 300),
        _task(3, "a", 360),
        _task(4, "a", 420),
        _task(10, "b", 180),
        _task(11, "c", 240),
    ]
    return _snapshot([_staff("a"), _staff("b"), _staff("c")], tasks)


def _stuck_ward() -> DepartmentSnapshot:
    """Staff a at 40 holds two large tasks that would overload b just as much."""
    tasks = [_task(1, "a", 600), _task(2, "a", 600), _task(3, "b", 480)]
    return _snapshot([_staff("a"), _staff("b")], tasks)


@pytest.mark.parametrize(
    "snapshot, threshold, margin",
    [
        (_overloaded_ward(), 40, 10),
        (_partially_relieved_ward(), 30, 4),
        (_stuck_ward(), 20, 5),
    ],
)
def test_touched_holders_end_relieved_or_without_an_acceptable_move(
    snapshot: DepartmentSnapshot,
    threshold: float,
    margin: float,
) -> None:
    """Each overloaded holder ends under the threshold or no remaining task can move."""
    before = score_department(snapshot.staff, snapshot.tasks, now=NOW)

    plan = RebalancingEngine().plan(snapshot, overload_threshold=threshold, improvement_margin=margin)

    touched = {move.from_staff for move in plan.reassignments}
    touched |= {staff_id for staff_id, score in before.items() if score.weighted > threshold}
    assert touched
    moved = {move.task_id for move in plan.reassignments}
    perf = {member.id: performance_score(member.performance) for member in snapshot.staff}
    selector = AssignmentSelector()
    for holder in touched:
        if plan.workloads[holder] <= threshold:
            continue
        remaining = [
            task for task in snapshot.tasks if task.assigned_to == holder and task.id not in moved
        ]
        candidates = [
            candidate_from_staff(member, plan.workloads[member.id]) for member in snapshot.staff
        ]
        for task in remaining:
            target = selector.select_best(task, candidates, exclude={holder})
            if target is None:
                continue
            target_after = plan.workloads[target] + contribution(task, perf[target])
            assert not target_after < plan.workloads[holder] - margin


def test_stuck_holder_keeps_its_work() -> None:
    """When every move fails the margin test the holder stays overloaded."""
    plan = RebalancingEngine().plan(_stuck_ward(), overload_threshold=20, improvement_margin=5)

    assert plan.reassignments == ()
    assert plan.still_overloaded == ("a",)
    assert plan.workloads["a"] == pytest.approx(40.0)


def test_partial_relief_moves_lightest_tasks_to_least_loaded() -> None:
    """Moves go lightest first, each to the least-loaded colleague at the time."""
    plan = RebalancingEngine().plan(
        _partially_relieved_ward(), overload_threshold=30, improvement_margin=4
    )

    assert [(move.task_id, move.to_staff) for move in plan.reassignments] == [(1, "b"), (2, "c")]
    assert plan.workloads == pytest.approx({"a": 26.0, "b": 14.0, "c": 18.0})
    assert plan.still_overloaded == ()
