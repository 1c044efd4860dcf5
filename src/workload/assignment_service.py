"""Assign newly created tasks to the best available staff member."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Sequence

from errors import NotFoundError
from scheduler.notifications import NotificationSink, build_emergency_alert, emit_safely
from tasks.repository import SYSTEM_ACTOR, TaskCreateInput, TaskStore
from tasks.snapshots import TaskSnapshot
from tasks.staff_directory import StaffDirectory
from workload.advisory import AdvisorySuggestion, BoundedAdvisory
from workload.assignment import AssignmentSelector, CandidateScore, candidate_from_staff
from workload.scoring import score_department

logger = logging.getLogger(__name__)

# Scores closer than this are treated as tied for advisory tie-breaks.
SCORE_TIE_TOLERANCE = 1e-9


@dataclass(frozen=True)
class AssignmentDecision:
    """Outcome of assigning one task."""

    task_id: int
    staff_id: str | None
    status: str
    ranked: tuple[CandidateScore, ...] = ()
    advisory: AdvisorySuggestion | None = None
    advisory_applied: bool = False


@dataclass(frozen=True)
class EmergencyInput:
    """Input payload for reporting an emergency that needs immediate staffing."""

    kind: str
    department: str
    description: str | None = None
    location: str | None = None
    category: str = "patient_care"
    estimated_duration_minutes: int = 30
    due_date: datetime | None = None
    specialty_tags: tuple[str, ...] = ()
    reported_by: str = SYSTEM_ACTOR


@dataclass(frozen=True)
class EmergencyResponse:
    """Emergency task, its assignment decision, and whether the alert went out."""

    task: TaskSnapshot
    decision: AssignmentDecision | None
    alerted: bool


def choose_assignee(
    ranked: Sequence[CandidateScore],
    suggestion: AdvisorySuggestion | None,
) -> tuple[str, bool]:
    """Pick the assignee, letting the advisory break ties at the top score only."""
    best = ranked[0]
    if suggestion is None or suggestion.staff_id == best.staff_id:
        return best.staff_id, False
    tied = {
        candidate.staff_id
        for candidate in ranked
        if best.score - candidate.score <= SCORE_TIE_TOLERANCE
    }
    if suggestion.staff_id in tied:
        return suggestion.staff_id, True
    return best.staff_id, False


def advisory_metadata(
    suggestion: AdvisorySuggestion | None,
    applied: bool,
) -> dict[str, object] | None:
    """Return task metadata annotating an advisory suggestion."""
    if suggestion is None:
        return None
    return {
        "advisory": {
            "staff_id": suggestion.staff_id,
            "confidence": suggestion.confidence,
            "reasoning": suggestion.reasoning,
            "applied": applied,
        }
    }


class AssignmentService:
    """Create and assign tasks through the deterministic selector."""

    def __init__(
        self,
        tasks: TaskStore,
        staff: StaffDirectory,
        *,
        selector: AssignmentSelector | None = None,
        advisory: BoundedAdvisory | None = None,
        sink: NotificationSink | None = None,
    ) -> None:
        """Initialize the service with its stores, advisory wrapper, and alert sink."""
        self._tasks = tasks
        self._staff = staff
        self._selector = selector or AssignmentSelector()
        self._advisory = advisory
        self._sink = sink

    def create_and_assign(
        self,
        payload: TaskCreateInput,
        *,
        now: datetime | None = None,
    ) -> tuple[TaskSnapshot, AssignmentDecision | None]:
        """Create a task and assign it unless an assignee was given."""
        task = self._tasks.create_task(payload, now=now)
        if task.assigned_to is not None:
            return task, None
        decision = self.assign(task.id, now=now)
        refreshed = self._tasks.get_task(task.id) or task
        return refreshed, decision

    def create_emergency(
        self,
        payload: EmergencyInput,
        *,
        now: datetime | None = None,
    ) -> EmergencyResponse:
        """Create a high-priority emergency task, assign it, and alert the department.

        The alert goes out whether or not anyone could be assigned, so an
        unstaffed emergency is still visible.
        """
        reference = now or datetime.now(timezone.utc)
        details = {"kind": payload.kind}
        if payload.location:
            details["location"] = payload.location
        task, decision = self.create_and_assign(
            TaskCreateInput(
                title=f"Emergency: {payload.kind}",
                department=payload.department,
                estimated_duration_minutes=payload.estimated_duration_minutes,
                priority="high",
                urgency_level="emergency",
                category=payload.category,
                description=payload.description,
                due_date=payload.due_date,
                specialty_tags=payload.specialty_tags,
                metadata={"emergency": details},
                created_by=payload.reported_by,
            ),
            now=reference,
        )
        alerted = False
        if self._sink is not None:
            alerted = emit_safely(self._sink, build_emergency_alert(task, payload.location))
        logger.warning(
            "Emergency task %s in %s assigned to %s.",
            task.id,
            task.department,
            task.assigned_to or "nobody",
        )
        return EmergencyResponse(task=task, decision=decision, alerted=alerted)

    def assign(
        self,
        task_id: int,
        *,
        now: datetime | None = None,
        performed_by: str = SYSTEM_ACTOR,
    ) -> AssignmentDecision:
        """Assign an unassigned open task to the best eligible staff member."""
        reference = now or datetime.now(timezone.utc)
        task = self._tasks.get_task(task_id)
        if task is None:
            raise NotFoundError("task_not_found", f"Task {task_id} not found.", {"task_id": task_id})
        if task.assigned_to is not None:
            return AssignmentDecision(task_id=task_id, staff_id=task.assigned_to, status="unchanged")

        staff = self._staff.get_eligible_staff(task.department, task.category, now=reference)
        scores = score_department(
            staff,
            self._tasks.get_active_tasks(task.department),
            now=reference,
        )
        candidates = [candidate_from_staff(member, scores[member.id].weighted) for member in staff]
        ranked = self._selector.rank(task, candidates)
        if not ranked:
            logger.info("No eligible staff for task %s in %s.", task_id, task.department)
            return AssignmentDecision(task_id=task_id, staff_id=None, status="no_candidate")

        suggestion = self._advisory.suggest(task, ranked) if self._advisory else None
        staff_id, applied = choose_assignee(ranked, suggestion)
        chosen = next(candidate for candidate in ranked if candidate.staff_id == staff_id)
        result = self._tasks.update_task_assignment(
            task_id,
            staff_id,
            task.version,
            expected_assignee=None,
            performed_by=performed_by,
            details={"reason": "initial_assignment", "score": round(chosen.score, 6)},
            metadata=advisory_metadata(suggestion, applied),
            now=reference,
        )
        if not result.succeeded:
            logger.warning(
                "Assignment of task %s skipped after concurrent change: %s",
                task_id,
                result.details,
            )
            return AssignmentDecision(
                task_id=task_id,
                staff_id=None,
                status="conflict",
                ranked=tuple(ranked),
                advisory=suggestion,
            )
        logger.info("Assigned task %s to %s.", task_id, staff_id)
        return AssignmentDecision(
            task_id=task_id,
            staff_id=staff_id,
            status="assigned",
            ranked=tuple(ranked),
            advisory=suggestion,
            advisory_applied=applied,
        )
