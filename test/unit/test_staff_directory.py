"""Unit tests for the staff directory."""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy.orm import sessionmaker

from models import StaffMember
from tasks.repository import TaskCreateInput, TaskRepository
from tasks.staff_directory import StaffRepository
from workload.performance import PerformanceAnalytics

NOW = datetime(2025, 3, 31, 12, 0, tzinfo=timezone.utc)


def _seed(factory: sessionmaker) -> None:
    with factory() as session:
        session.add_all(
            [
                StaffMember(id="d1", name="Doctor", department="ward-a", roles=["Doctor"]),
                StaffMember(id="n1", name="Nurse", department="ward-a", roles=["nurse"], specialty_tags=["icu"]),
                StaffMember(id="p1", name="Porter", department="ward-a", roles=["porter"]),
                StaffMember(id="v1", name="Volunteer", department="ward-a", roles=[]),
                StaffMember(id="x1", name="Away", department="ward-a", roles=["nurse"], is_active=False),
                StaffMember(id="n2", name="Other ward", department="ward-b", roles=["nurse"]),
            ]
        )
        session.commit()


def test_eligible_staff_filters_roles_and_activity(sqlite_session_factory: sessionmaker) -> None:
    """Inactive staff and ineligible roles are excluded; role-less staff stay."""
    _seed(sqlite_session_factory)
    directory = StaffRepository(sqlite_session_factory, eligible_roles=["doctor", "nurse"])

    staff = directory.get_eligible_staff("ward-a", now=NOW)

    assert [member.id for member in staff] == ["d1", "n1", "v1"]
    assert staff[1].specialty_tags == ("icu",)


def test_role_filter_can_be_disabled(sqlite_session_factory: sessionmaker) -> None:
    """Without an eligible role list every active member is returned."""
    _seed(sqlite_session_factory)

    staff = StaffRepository(sqlite_session_factory).get_eligible_staff("ward-a", "lab", now=NOW)

    assert [member.id for member in staff] == ["d1", "n1", "p1", "v1"]


def test_eligible_staff_carry_performance(sqlite_session_factory: sessionmaker) -> None:
    """Performance summaries are attached when history exists."""
    _seed(sqlite_session_factory)
    repo = TaskRepository(sqlite_session_factory)
    task = repo.create_task(
        TaskCreateInput(
            title="Obs",
            department="ward-a",
            estimated_duration_minutes=30,
            assigned_to="n1",
        ),
        now=NOW,
    )
    repo.update_status(task.id, "completed", performed_by="n1", now=NOW)
    directory = StaffRepository(
        sqlite_session_factory,
        analytics=PerformanceAnalytics(sqlite_session_factory, window_days=30),
        eligible_roles=["nurse"],
    )

    staff = {member.id: member for member in directory.get_eligible_staff("ward-a", now=NOW)}

    assert staff["n1"].performance.completion_rate == 1.0
    assert staff["v1"].performance is None


def test_get_staff(sqlite_session_factory: sessionmaker) -> None:
    """Single lookups return snapshots or None."""
    _seed(sqlite_session_factory)
    directory = StaffRepository(sqlite_session_factory)

    assert directory.get_staff("n2").department == "ward-b"
    assert directory.get_staff("missing") is None
