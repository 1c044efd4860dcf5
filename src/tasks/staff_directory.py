"""Staff lookups with current performance summaries."""

from __future__ import annotations

from contextlib import closing
from datetime import datetime
from typing import Callable, Iterable, Protocol

from sqlalchemy.orm import Session

from models import StaffMember
from tasks.snapshots import StaffSnapshot, staff_to_snapshot
from workload.performance import PerformanceAnalytics


class StaffDirectory(Protocol):
    """Staff lookup contract consumed by sweeps and services."""

    def get_eligible_staff(
        self,
        department: str,
        category: str | None = None,
        *,
        now: datetime | None = None,
    ) -> list[StaffSnapshot]:
        ...


class StaffRepository:
    """SQLAlchemy-backed staff directory."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        *,
        analytics: PerformanceAnalytics | None = None,
        eligible_roles: Iterable[str] | None = None,
    ) -> None:
        """Initialize the directory.

        ``eligible_roles`` limits candidates to staff holding at least one of
        the listed roles; staff without any roles stay eligible and are scored
        with the default suitability. ``None`` disables role filtering.
        """
        self._session_factory = session_factory
        self._analytics = analytics or PerformanceAnalytics(session_factory)
        self._eligible_roles = (
            {role.lower() for role in eligible_roles} if eligible_roles is not None else None
        )

    def get_eligible_staff(
        self,
        department: str,
        category: str | None = None,
        *,
        now: datetime | None = None,
    ) -> list[StaffSnapshot]:
        """Return active department staff ordered by id.

        ``category`` does not narrow the pool; role fit for a category is
        scored by the assignment selector instead.
        """
        with closing(self._session_factory()) as session:
            members = (
                session.query(StaffMember)
                .filter(StaffMember.department == department)
                .filter(StaffMember.is_active.is_(True))
                .order_by(StaffMember.id.asc())
                .all()
            )
            members = [member for member in members if self._role_allowed(member)]
            performance = self._analytics.summaries_for(
                [member.id for member in members],
                now=now,
            )
            return [staff_to_snapshot(member, performance.get(member.id)) for member in members]

    def get_staff(self, staff_id: str) -> StaffSnapshot | None:
        """Fetch a staff snapshot without performance data."""
        with closing(self._session_factory()) as session:
            member = session.get(StaffMember, staff_id)
            return staff_to_snapshot(member) if member is not None else None

    def _role_allowed(self, member: StaffMember) -> bool:
        if self._eligible_roles is None:
            return True
        roles = {role.lower() for role in (member.roles or ())}
        if not roles:
            return True
        return bool(roles & self._eligible_roles)
