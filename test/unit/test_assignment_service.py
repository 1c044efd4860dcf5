"""Unit tests for assigning tasks on creation."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest
from sqlalchemy.orm import sessionmaker

from errors import NotFoundError
from models import StaffMember
from tasks.repository import TaskCreateInput, TaskRepository
from tasks.staff_directory import StaffRepository
from workload.advisory import AdvisorySuggestion
from workload.assignment import CandidateScore
from scheduler.notifications import EmergencyAlert
from workload.assignment_service import (
    AssignmentService,
    EmergencyInput,
    advisory_metadata,
    choose_assignee,
)

NOW = datetime(2025, 3, 4, 12, 0, tzinfo=timezone.utc)


def _score(staff_id: str, score: float) -> CandidateScore:
    return CandidateScore(
        staff_id=staff_id,
        score=score,
        weighted=0.0,
        workload_factor=1.0,
        role_suitability=1.0,
        specialty_match=0.5,
    )


class _FixedAdvisory:
    """Advisory double returning a fixed suggestion."""

    def __init__(self, staff_id: str) -> None:
        self.staff_id = staff_id

    def suggest(self, task, ranked):
        return AdvisorySuggestion(staff_id=self.staff_id, confidence=0.7, reasoning="continuity")


def _seed(factory: sessionmaker) -> None:
    with factory() as session:
        session.add_all(
            [
                StaffMember(id="d1", name="Doctor", department="ward-a", roles=["doctor"]),
                StaffMember(id="n1", name="Nurse", department="ward-a", roles=["nurse"]),
                StaffMember(id="n2", name="Nurse Two", department="ward-a", roles=["nurse"]),
            ]
        )
        session.commit()


def _payload(**overrides) -> TaskCreateInput:
    values = {
        "title": "Medication review",
        "department": "ward-a",
        "estimated_duration_minutes": 30,
        "category": "consultation",
    }
    values.update(overrides)
    return TaskCreateInput(**values)


def _service(factory: sessionmaker, advisory=None, sink=None) -> AssignmentService:
    tasks = TaskRepository(factory)
    return AssignmentService(
        tasks,
        StaffRepository(factory, eligible_roles=["doctor", "nurse"]),
        advisory=advisory,
        sink=sink,
    )


def test_choose_assignee_keeps_top_without_tie() -> None:
    """The advisory cannot override a strictly better candidate."""
    ranked = [_score("a", 0.9), _score("b", 0.8)]

    assert choose_assignee(ranked, AdvisorySuggestion("b", 1.0)) == ("a", False)


def test_choose_assignee_breaks_exact_tie() -> None:
    """The advisory picks among candidates tied at the top score."""
    ranked = [_score("a", 0.9), _score("b", 0.9), _score("c", 0.5)]

    assert choose_assignee(ranked, AdvisorySuggestion("b", 0.5)) == ("b", True)
    assert choose_assignee(ranked, None) == ("a", False)


def test_advisory_metadata_annotation() -> None:
    """Suggestions are recorded with whether they were applied."""
    suggestion = AdvisorySuggestion("b", 0.5, "knows patient")

    assert advisory_metadata(suggestion, False) == {
        "advisory": {"staff_id": "b", "confidence": 0.5, "reasoning": "knows patient", "applied": False}
    }
    assert advisory_metadata(None, False) is None


def test_create_and_assign_picks_best_role(sqlite_session_factory: sessionmaker) -> None:
    """A consultation goes to the doctor, with assignment history recorded."""
    _seed(sqlite_session_factory)
    service = _service(sqlite_session_factory)

    task, decision = service.create_and_assign(_payload(), now=NOW)

    assert decision.status == "assigned"
    assert decision.staff_id == "d1"
    assert task.assigned_to == "d1"
    assert task.version == 2
    history = TaskRepository(sqlite_session_factory).list_history(task.id)
    assert history[-1].details["reason"] == "initial_assignment"


def test_preassigned_task_is_left_alone(sqlite_session_factory: sessionmaker) -> None:
    """Tasks created with an assignee skip selection."""
    _seed(sqlite_session_factory)

    task, decision = _service(sqlite_session_factory).create_and_assign(
        _payload(assigned_to="n2"), now=NOW
    )

    assert decision is None
    assert task.assigned_to == "n2"


def test_advisory_breaks_tie_and_is_annotated(sqlite_session_factory: sessionmaker) -> None:
    """Between two identical nurses the advisory suggestion wins."""
    _seed(sqlite_session_factory)
    service = _service(sqlite_session_factory, advisory=_FixedAdvisory("n2"))

    task, decision = service.create_and_assign(_payload(category="lab"), now=NOW)

    assert decision.staff_id == "n2"
    assert decision.advisory_applied is True
    assert task.metadata["advisory"]["applied"] is True


def test_advisory_disagreement_is_recorded_not_applied(
    sqlite_session_factory: sessionmaker,
) -> None:
    """A suggestion below the top score is kept in metadata only."""
    _seed(sqlite_session_factory)
    service = _service(sqlite_session_factory, advisory=_FixedAdvisory("n1"))

    task, decision = service.create_and_assign(_payload(), now=NOW)

    assert decision.staff_id == "d1"
    assert decision.advisory_applied is False
    assert task.metadata["advisory"] == {
        "staff_id": "n1",
        "confidence": 0.7,
        "reasoning": "continuity",
        "applied": False,
    }


def test_no_candidates(sqlite_session_factory: sessionmaker) -> None:
    """Departments without eligible staff leave the task unassigned."""
    service = _service(sqlite_session_factory)

    task, decision = service.create_and_assign(_payload(department="ward-z"), now=NOW)

    assert decision.status == "no_candidate"
    assert task.assigned_to is None


def test_assign_unknown_task(sqlite_session_factory: sessionmaker) -> None:
    """Assigning a missing task raises not found."""
    with pytest.raises(NotFoundError):
        _service(sqlite_session_factory).assign(404, now=NOW)


class _RecordingSink:
    """Notification sink that keeps every emitted event."""

    def __init__(self) -> None:
        self.events = []

    def emit(self, event) -> None:
        self.events.append(event)


def test_emergency_goes_to_least_loaded_and_alerts(sqlite_session_factory: sessionmaker) -> None:
    """An emergency is created high/emergency, staffed at once, and announced."""
    _seed(sqlite_session_factory)
    tasks = TaskRepository(sqlite_session_factory)
    for holder in ("d1", "n1"):
        tasks.create_task(_payload(assigned_to=holder, estimated_duration_minutes=120), now=NOW)
    sink = _RecordingSink()

    response = _service(sqlite_session_factory, sink=sink).create_emergency(
        EmergencyInput(kind="cardiac arrest", department="ward-a", location="Bay 4"),
        now=NOW,
    )

    task = response.task
    assert (task.priority, task.urgency_level, task.category) == ("high", "emergency", "patient_care")
    assert task.title == "Emergency: cardiac arrest"
    assert task.assigned_to == "n2"
    assert task.metadata["emergency"] == {"kind": "cardiac arrest", "location": "Bay 4"}
    assert response.decision.status == "assigned"
    assert response.alerted is True
    (alert,) = sink.events
    assert isinstance(alert, EmergencyAlert)
    assert (alert.task_id, alert.assigned_to, alert.location) == (task.id, "n2", "Bay 4")
    assert "Bay 4" in alert.message


def test_unstaffed_emergency_still_alerts(sqlite_session_factory: sessionmaker) -> None:
    """With nobody eligible the task stays open and the alert still goes out."""
    sink = _RecordingSink()

    response = _service(sqlite_session_factory, sink=sink).create_emergency(
        EmergencyInput(kind="fall", department="ward-z"),
        now=NOW,
    )

    assert response.task.assigned_to is None
    assert response.decision.status == "no_candidate"
    assert response.alerted is True
    assert "response required" in sink.events[0].message


def test_emergency_without_sink_is_not_alerted(sqlite_session_factory: sessionmaker) -> None:
    """Services wired without a sink create and assign but report no alert."""
    _seed(sqlite_session_factory)

    response = _service(sqlite_session_factory).create_emergency(
        EmergencyInput(kind="fall", department="ward-a"),
        now=NOW,
    )

    assert response.task.assigned_to is not None
    assert response.alerted is False
