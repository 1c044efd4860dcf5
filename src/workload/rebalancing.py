"""Greedy rebalancing of overloaded staff within one department snapshot.

The engine never touches storage. It plans moves against the snapshot it is
handed and returns them; the bottleneck sweep persists each move with a
conditional update keyed on ``expected_version`` and ``expected_assignee``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from errors import InputError
from tasks.snapshots import OPEN_STATUSES, DepartmentSnapshot, TaskSnapshot
from workload.assignment import AssignmentSelector, candidate_from_staff
from workload.scoring import (
    contribution,
    impact_rank,
    performance_score,
    score_department,
)

logger = logging.getLogger(__name__)

DEFAULT_OVERLOAD_THRESHOLD = 40.0
DEFAULT_IMPROVEMENT_MARGIN = 10.0
REBALANCE_REASON = "workload_balancing"


@dataclass(frozen=True)
class Reassignment:
    """Proposed move of one task between staff members."""

    task_id: int
    from_staff: str
    to_staff: str
    reason: str
    workload_delta: float
    expected_version: int
    expected_assignee: str


@dataclass(frozen=True)
class RebalancingPlan:
    """Outcome of a rebalancing pass over a department snapshot."""

    department: str
    reassignments: tuple[Reassignment, ...]
    workloads: dict[str, float] = field(default_factory=dict)
    still_overloaded: tuple[str, ...] = ()


def _validate(
    snapshot: DepartmentSnapshot,
    overload_threshold: float,
    improvement_margin: float,
) -> None:
    if not snapshot.department or not snapshot.department.strip():
        raise InputError("invalid_department", "Department is required.")
    if overload_threshold < 0:
        raise InputError(
            "invalid_threshold",
            "Overload threshold must be >= 0.",
            {"overload_threshold": overload_threshold},
        )
    if improvement_margin < 0:
        raise InputError(
            "invalid_margin",
            "Improvement margin must be >= 0.",
            {"improvement_margin": improvement_margin},
        )
    for task in snapshot.tasks:
        if task.department != snapshot.department:
            raise InputError(
                "department_mismatch",
                f"Task {task.id} belongs to {task.department!r}, not {snapshot.department!r}.",
                {"task_id": task.id, "department": task.department},
            )


class RebalancingEngine:
    """Plan reassignments that move work off overloaded staff."""

    def __init__(self, selector: AssignmentSelector | None = None) -> None:
        """Initialize the engine with an optional assignment selector."""
        self._selector = selector or AssignmentSelector()

    def rebalance(
        self,
        snapshot: DepartmentSnapshot,
        overload_threshold: float = DEFAULT_OVERLOAD_THRESHOLD,
        improvement_margin: float = DEFAULT_IMPROVEMENT_MARGIN,
    ) -> list[Reassignment]:
        """Return the reassignments proposed for a department snapshot."""
        return list(self.plan(snapshot, overload_threshold, improvement_margin).reassignments)

    def plan(
        self,
        snapshot: DepartmentSnapshot,
        overload_threshold: float = DEFAULT_OVERLOAD_THRESHOLD,
        improvement_margin: float = DEFAULT_IMPROVEMENT_MARGIN,
    ) -> RebalancingPlan:
        """Plan reassignments and report the resulting in-memory workloads."""
        _validate(snapshot, overload_threshold, improvement_margin)

        staff = {member.id: member for member in snapshot.staff}
        perf = {member.id: performance_score(member.performance) for member in snapshot.staff}
        holdings: dict[str, list[TaskSnapshot]] = {staff_id: [] for staff_id in staff}
        for task in snapshot.tasks:
            if task.status in OPEN_STATUSES and task.assigned_to in holdings:
                holdings[task.assigned_to].append(task)

        scores = score_department(snapshot.staff, snapshot.tasks, now=snapshot.now)
        weighted = {staff_id: score.weighted for staff_id, score in scores.items()}

        reassignments: list[Reassignment] = []
        processed: set[str] = set()
        moved: set[int] = set()
        while True:
            overloaded = [
                staff_id
                for staff_id, value in weighted.items()
                if value > overload_threshold and staff_id not in processed
            ]
            if not overloaded:
                break
            holder = min(overloaded, key=lambda staff_id: (-weighted[staff_id], staff_id))
            processed.add(holder)
            reassignments.extend(
                self._relieve_holder(
                    holder,
                    staff,
                    perf,
                    holdings,
                    weighted,
                    moved,
                    overload_threshold,
                    improvement_margin,
                )
            )

        still_overloaded = tuple(
            sorted(
                (staff_id for staff_id, value in weighted.items() if value > overload_threshold),
                key=lambda staff_id: (-weighted[staff_id], staff_id),
            )
        )
        logger.info(
            "Rebalancing planned %s reassignment(s) for %s; %s still overloaded.",
            len(reassignments),
            snapshot.department,
            len(still_overloaded),
        )
        return RebalancingPlan(
            department=snapshot.department,
            reassignments=tuple(reassignments),
            workloads=dict(weighted),
            still_overloaded=still_overloaded,
        )

    def _relieve_holder(
        self,
        holder: str,
        staff,
        perf: dict[str, float],
        holdings: dict[str, list[TaskSnapshot]],
        weighted: dict[str, float],
        moved: set[int],
        overload_threshold: float,
        improvement_margin: float,
    ) -> list[Reassignment]:
        """Move the holder's lowest-impact tasks until relieved or stuck.

        A task moves at most once per plan so every move stays valid against
        the original snapshot version.
        """
        accepted: list[Reassignment] = []
        pending = sorted(
            (task for task in holdings[holder] if task.id not in moved),
            key=lambda task: (impact_rank(task), contribution(task, perf[holder]), task.id),
        )
        while weighted[holder] > overload_threshold:
            moved_this_pass = False
            for task in list(pending):
                if weighted[holder] <= overload_threshold:
                    break
                candidates = [
                    candidate_from_staff(member, weighted[staff_id])
                    for staff_id, member in staff.items()
                ]
                target = self._selector.select_best(task, candidates, exclude={holder})
                if target is None:
                    return accepted
                target_after = weighted[target] + contribution(task, perf[target])
                if not target_after < weighted[holder] - improvement_margin:
                    logger.debug(
                        "Rejected move of task %s from %s to %s: %.2f >= %.2f.",
                        task.id,
                        holder,
                        target,
                        target_after,
                        weighted[holder] - improvement_margin,
                    )
                    continue
                delta = contribution(task, perf[holder])
                weighted[holder] -= delta
                weighted[target] = target_after
                pending.remove(task)
                moved.add(task.id)
                holdings[holder].remove(task)
                holdings[target].append(task)
                accepted.append(
                    Reassignment(
                        task_id=task.id,
                        from_staff=holder,
                        to_staff=target,
                        reason=REBALANCE_REASON,
                        workload_delta=delta,
                        expected_version=task.version,
                        expected_assignee=holder,
                    )
                )
                moved_this_pass = True
            if not moved_this_pass:
                break
        return accepted
