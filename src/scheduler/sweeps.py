"""Deadline, bottleneck, and recurrence sweeps.

Each sweep reads fresh data from the stores, computes decisions with the pure
workload and recurrence functions, then persists and notifies. Failures are
isolated per task, department, or schedule definition and never abort the
rest of the sweep.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable

from sqlalchemy.orm import Session

from config import WorkloadConfig, settings
from errors import InputError
from logging_config import DEPARTMENT, SCHEDULE_ID, log_context
from scheduler.notifications import (
    LoggingNotificationSink,
    NotificationSink,
    OverloadedStaff,
    build_bottleneck_alert,
    build_deadline_reminder,
    build_reassignment_notice,
    emit_safely,
)
from scheduler.recurrence import RecurrenceAdvance, RecurringScheduleSnapshot, advance
from scheduler.schedule_repository import ScheduleExecutionInput, ScheduleRepository, ScheduleStore
from tasks.repository import SYSTEM_ACTOR, TaskRepository, TaskStore
from tasks.snapshots import DepartmentSnapshot
from tasks.staff_directory import StaffDirectory, StaffRepository
from time_utils import to_utc
from workload.advisory import BoundedAdvisory
from workload.assignment_service import AssignmentService, EmergencyInput, EmergencyResponse
from workload.performance import PerformanceAnalytics
from workload.rebalancing import RebalancingEngine, RebalancingPlan
from workload.scoring import WorkloadScore, score_department

logger = logging.getLogger(__name__)

# Smallest step past a fired slot so the next run is strictly later.
_AFTER_FIRED = timedelta(microseconds=1)


@dataclass(frozen=True)
class DeadlineSweepResult:
    """Outcome of a deadline sweep."""

    reminders: int
    delivered: int


@dataclass(frozen=True)
class DepartmentRebalanceResult:
    """Outcome of rebalancing one department."""

    department: str
    overloaded_before: tuple[str, ...] = ()
    planned: int = 0
    persisted: int = 0
    conflicts: int = 0
    failures: int = 0
    still_overloaded: tuple[OverloadedStaff, ...] = ()
    error: str | None = None


@dataclass(frozen=True)
class BottleneckSweepResult:
    """Outcome of a bottleneck sweep across departments."""

    departments: tuple[DepartmentRebalanceResult, ...]

    @property
    def reassignments(self) -> int:
        """Return the number of persisted reassignments."""
        return sum(result.persisted for result in self.departments)


@dataclass(frozen=True)
class RecurrenceFiring:
    """Outcome of evaluating one due schedule."""

    schedule_id: int
    status: str
    task_id: int | None = None
    error: str | None = None
    next_run: datetime | None = None
    is_active: bool = True


@dataclass(frozen=True)
class RecurrenceSweepResult:
    """Outcome of a recurrence sweep."""

    firings: tuple[RecurrenceFiring, ...]


class SweepRunner:
    """Run the periodic sweeps against the configured stores and sink."""

    def __init__(
        self,
        tasks: TaskStore,
        staff: StaffDirectory,
        schedules: ScheduleStore,
        sink: NotificationSink,
        *,
        engine: RebalancingEngine | None = None,
        assignment: AssignmentService | None = None,
        workload_config: WorkloadConfig | None = None,
        deadline_window_hours: int | None = None,
    ) -> None:
        """Initialize the runner with its collaborators."""
        self._tasks = tasks
        self._staff = staff
        self._schedules = schedules
        self._sink = sink
        self._engine = engine or RebalancingEngine()
        self._assignment = assignment
        self._workload = workload_config or settings.workload
        self._deadline_window = timedelta(
            hours=deadline_window_hours or settings.scheduler.deadline_window_hours
        )

    def run_deadline_sweep(self, now: datetime | None = None) -> DeadlineSweepResult:
        """Emit one reminder per open task due within the deadline window."""
        reference = to_utc(now or datetime.now(timezone.utc))
        due = self._tasks.list_open_tasks_due_between(reference, reference + self._deadline_window)
        delivered = 0
        for task in due:
            if emit_safely(self._sink, build_deadline_reminder(task, reference)):
                delivered += 1
        logger.info("Deadline sweep found %s task(s) due soon.", len(due))
        return DeadlineSweepResult(reminders=len(due), delivered=delivered)

    def run_bottleneck_sweep(self, now: datetime | None = None) -> BottleneckSweepResult:
        """Rebalance every department, isolating failures per department."""
        reference = to_utc(now or datetime.now(timezone.utc))
        results = []
        for department in self._tasks.list_departments():
            with log_context({DEPARTMENT: department}):
                try:
                    results.append(self.rebalance_department(department, now=reference))
                except Exception as exc:
                    logger.exception("Bottleneck sweep failed for department %s.", department)
                    results.append(DepartmentRebalanceResult(department=department, error=str(exc)))
        return BottleneckSweepResult(departments=tuple(results))

    def plan_department(
        self,
        department: str,
        now: datetime | None = None,
    ) -> tuple[DepartmentSnapshot, RebalancingPlan]:
        """Fetch a department snapshot and plan its rebalancing."""
        snapshot = self._department_snapshot(department, to_utc(now or datetime.now(timezone.utc)))
        return snapshot, self._plan(snapshot)

    def workloads(
        self,
        department: str,
        now: datetime | None = None,
    ) -> dict[str, WorkloadScore]:
        """Score every eligible staff member in a department."""
        snapshot = self._department_snapshot(department, to_utc(now or datetime.now(timezone.utc)))
        return score_department(snapshot.staff, snapshot.tasks, now=snapshot.now)

    def report_emergency(
        self,
        payload: EmergencyInput,
        now: datetime | None = None,
    ) -> EmergencyResponse:
        """Create and staff an emergency task, alerting through this runner's sink."""
        service = self._assignment or AssignmentService(self._tasks, self._staff, sink=self._sink)
        return service.create_emergency(payload, now=to_utc(now or datetime.now(timezone.utc)))

    def _department_snapshot(self, department: str, now: datetime) -> DepartmentSnapshot:
        return DepartmentSnapshot(
            department=department,
            staff=tuple(self._staff.get_eligible_staff(department, now=now)),
            tasks=tuple(self._tasks.get_active_tasks(department)),
            now=now,
        )

    def _plan(self, snapshot: DepartmentSnapshot) -> RebalancingPlan:
        return self._engine.plan(
            snapshot,
            overload_threshold=self._workload.threshold_for(snapshot.department),
            improvement_margin=self._workload.margin_for(snapshot.department),
        )

    def rebalance_department(
        self,
        department: str,
        now: datetime | None = None,
        *,
        apply: bool = True,
    ) -> DepartmentRebalanceResult:
        """Rebalance one department and emit its alert when anyone is overloaded."""
        reference = to_utc(now or datetime.now(timezone.utc))
        threshold = self._workload.threshold_for(department)
        snapshot = self._department_snapshot(department, reference)
        before = score_department(snapshot.staff, snapshot.tasks, now=reference)
        overloaded_before = tuple(
            staff_id for staff_id, score in before.items() if score.weighted > threshold
        )
        if not overloaded_before:
            return DepartmentRebalanceResult(department=department)

        plan = self._plan(snapshot)

        if not apply:
            still = tuple(
                OverloadedStaff(staff_id, plan.workloads[staff_id])
                for staff_id in plan.still_overloaded
            )
            return DepartmentRebalanceResult(
                department=department,
                overloaded_before=overloaded_before,
                planned=len(plan.reassignments),
                still_overloaded=still,
            )

        persisted = conflicts = failures = 0
        for move in plan.reassignments:
            try:
                result = self._tasks.update_task_assignment(
                    move.task_id,
                    move.to_staff,
                    move.expected_version,
                    expected_assignee=move.expected_assignee,
                    performed_by=SYSTEM_ACTOR,
                    details={"reason": move.reason, "workload_delta": round(move.workload_delta, 4)},
                    now=reference,
                )
            except Exception:
                failures += 1
                logger.exception("Failed to persist reassignment of task %s.", move.task_id)
                continue
            if not result.succeeded:
                conflicts += 1
                logger.warning(
                    "Skipped reassignment of task %s from %s to %s: %s",
                    move.task_id,
                    move.from_staff,
                    move.to_staff,
                    result.details,
                )
                continue
            persisted += 1
            emit_safely(
                self._sink,
                build_reassignment_notice(
                    department,
                    move.task_id,
                    move.from_staff,
                    move.to_staff,
                    move.reason,
                    move.workload_delta,
                ),
            )

        still = self._still_overloaded(snapshot, threshold, reference)
        emit_safely(self._sink, build_bottleneck_alert(department, persisted, still))
        logger.info(
            "Rebalanced %s: %s persisted, %s conflicts, %s still overloaded.",
            department,
            persisted,
            conflicts,
            len(still),
        )
        return DepartmentRebalanceResult(
            department=department,
            overloaded_before=overloaded_before,
            planned=len(plan.reassignments),
            persisted=persisted,
            conflicts=conflicts,
            failures=failures,
            still_overloaded=still,
        )

    def _still_overloaded(
        self,
        snapshot: DepartmentSnapshot,
        threshold: float,
        now: datetime,
    ) -> tuple[OverloadedStaff, ...]:
        """Rescore from current task data after persisting moves."""
        current = self._tasks.get_active_tasks(snapshot.department)
        scores = score_department(snapshot.staff, current, now=now)
        overloaded = [score for score in scores.values() if score.weighted > threshold]
        overloaded.sort(key=lambda score: (-score.weighted, score.staff_id))
        return tuple(OverloadedStaff(score.staff_id, score.weighted) for score in overloaded)

    def run_recurrence_sweep(self, now: datetime | None = None) -> RecurrenceSweepResult:
        """Fire every due schedule, isolating failures per definition."""
        reference = to_utc(now or datetime.now(timezone.utc))
        firings = []
        for schedule in self._schedules.get_due_schedules(reference):
            with log_context({SCHEDULE_ID: schedule.id, DEPARTMENT: schedule.department}):
                try:
                    firing = self.fire_schedule(schedule, reference)
                except Exception as exc:
                    logger.exception("Recurrence sweep failed for schedule %s.", schedule.id)
                    firing = RecurrenceFiring(schedule_id=schedule.id, status="failed", error=str(exc))
                if firing is not None:
                    firings.append(firing)
        logger.info("Recurrence sweep evaluated %s due schedule(s).", len(firings))
        return RecurrenceSweepResult(firings=tuple(firings))

    def fire_schedule(
        self,
        schedule: RecurringScheduleSnapshot,
        now: datetime,
    ) -> RecurrenceFiring | None:
        """Instantiate one due schedule, record the execution, and advance it.

        The advance is claimed against the schedule's stored next run before
        any task is created. Returns None when another sweep claimed the slot
        first.
        """
        scheduled_time = schedule.next_run or now
        ended = schedule.end_date is not None and to_utc(schedule.end_date) < now

        try:
            if ended:
                result = advance(schedule, now)
            else:
                result = self._advance_after_firing(schedule, scheduled_time, now)
        except InputError as exc:
            return self._retire_malformed(schedule, scheduled_time, now, exc)

        if not self._schedules.claim_run(schedule.id, schedule.next_run, result, now=now):
            return None

        if ended:
            self._schedules.record_execution(
                schedule.id,
                ScheduleExecutionInput(
                    scheduled_time=scheduled_time,
                    status="skipped",
                    actual_execution_time=now,
                    error="schedule ended before evaluation",
                ),
            )
            logger.info("Schedule %s passed its end date; deactivated.", schedule.id)
            return RecurrenceFiring(
                schedule_id=schedule.id,
                status="skipped",
                next_run=result.next_run,
                is_active=result.is_active,
            )

        task_id = None
        error = None
        try:
            task = self._tasks.create_task_from_template(
                schedule.task_template_id,
                _instance_overrides(schedule, scheduled_time),
                scheduled_for=scheduled_time,
                now=now,
            )
            task_id = task.id
            status = "success"
        except Exception as exc:
            status = "failed"
            error = str(exc)
            logger.exception("Failed to instantiate task for schedule %s.", schedule.id)

        if task_id is not None and schedule.assign_to is None and self._assignment is not None:
            try:
                self._assignment.assign(task_id, now=now)
            except Exception:
                logger.exception("Failed to assign recurring task %s.", task_id)

        self._schedules.record_execution(
            schedule.id,
            ScheduleExecutionInput(
                scheduled_time=scheduled_time,
                status=status,
                actual_execution_time=now,
                task_id=task_id,
                error=error,
            ),
        )
        return RecurrenceFiring(
            schedule_id=schedule.id,
            status=status,
            task_id=task_id,
            error=error,
            next_run=result.next_run,
            is_active=result.is_active,
        )

    def _retire_malformed(
        self,
        schedule: RecurringScheduleSnapshot,
        scheduled_time: datetime,
        now: datetime,
        exc: InputError,
    ) -> RecurrenceFiring | None:
        """Deactivate a definition that can no longer be advanced."""
        retired = RecurrenceAdvance(next_run=None, is_active=False)
        if not self._schedules.claim_run(schedule.id, schedule.next_run, retired, now=now):
            return None
        logger.error("Schedule %s has an invalid definition (%s); deactivated.", schedule.id, exc.code)
        self._schedules.record_execution(
            schedule.id,
            ScheduleExecutionInput(
                scheduled_time=scheduled_time,
                status="failed",
                actual_execution_time=now,
                error=str(exc),
            ),
        )
        return RecurrenceFiring(
            schedule_id=schedule.id,
            status="failed",
            error=str(exc),
            next_run=None,
            is_active=False,
        )

    def _advance_after_firing(
        self,
        schedule: RecurringScheduleSnapshot,
        scheduled_time: datetime,
        now: datetime,
    ) -> RecurrenceAdvance:
        reference = max(now, to_utc(scheduled_time) + _AFTER_FIRED)
        return advance(schedule, reference)


def _instance_overrides(
    schedule: RecurringScheduleSnapshot,
    scheduled_time: datetime,
) -> dict[str, object]:
    """Build template overrides for a recurring task instance."""
    overrides: dict[str, object] = {
        "department": schedule.department,
        "created_by": schedule.created_by,
        "metadata": {
            "schedule_id": schedule.id,
            "scheduled_time": to_utc(scheduled_time).isoformat(),
        },
    }
    if schedule.assign_to is not None:
        overrides["assigned_to"] = schedule.assign_to
    if schedule.priority is not None:
        overrides["priority"] = schedule.priority
    return overrides


def build_sweep_runner(
    session_factory: Callable[[], Session],
    *,
    sink: NotificationSink | None = None,
    advisory: BoundedAdvisory | None = None,
) -> SweepRunner:
    """Wire a sweep runner against SQLAlchemy-backed stores."""
    tasks = TaskRepository(session_factory)
    staff = StaffRepository(
        session_factory,
        analytics=PerformanceAnalytics(
            session_factory,
            window_days=settings.workload.performance_window_days,
        ),
        eligible_roles=settings.workload.eligible_roles,
    )
    sink = sink or LoggingNotificationSink()
    return SweepRunner(
        tasks,
        staff,
        ScheduleRepository(session_factory),
        sink,
        assignment=AssignmentService(tasks, staff, advisory=advisory, sink=sink),
    )
