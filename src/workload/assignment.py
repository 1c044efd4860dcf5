"""Deterministic ranking of staff candidates for a task."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Mapping

from tasks.snapshots import StaffSnapshot, TaskSnapshot

WORKLOAD_WEIGHT = 0.4
ROLE_WEIGHT = 0.3
SPECIALTY_WEIGHT = 0.3

DEFAULT_ROLE_SUITABILITY = 0.5

ROLE_SUITABILITY: dict[str, dict[str, float]] = {
    "doctor": {
        "patient_care": 1.0,
        "medication": 1.0,
        "consultation": 1.0,
        "lab": 0.8,
        "admin": 0.6,
    },
    "nurse": {
        "patient_care": 1.0,
        "medication": 0.9,
        "lab": 1.0,
        "consultation": 0.7,
        "admin": 0.8,
    },
}


@dataclass(frozen=True)
class AssignmentCandidate:
    """Staff member under consideration with their current weighted workload."""

    staff_id: str
    weighted: float
    roles: tuple[str, ...] = ()
    specialty_tags: tuple[str, ...] = ()


@dataclass(frozen=True)
class CandidateScore:
    """Assignment score breakdown for one candidate."""

    staff_id: str
    score: float
    weighted: float
    workload_factor: float
    role_suitability: float
    specialty_match: float


def candidate_from_staff(staff: StaffSnapshot, weighted: float) -> AssignmentCandidate:
    """Build an assignment candidate from a staff snapshot and workload."""
    return AssignmentCandidate(
        staff_id=staff.id,
        weighted=weighted,
        roles=staff.roles,
        specialty_tags=staff.specialty_tags,
    )


def specialty_match(task_tags: Iterable[str], candidate_tags: Iterable[str]) -> float:
    """Return how well candidate tags cover the task's required tags."""
    required = {tag.lower() for tag in task_tags}
    if not required:
        return 0.5
    offered = {tag.lower() for tag in candidate_tags}
    if not offered:
        return 0.7
    return 0.7 + 0.3 * (len(required & offered) / len(required))


class AssignmentSelector:
    """Rank eligible staff for a task and pick the best assignee."""

    def __init__(self, role_table: Mapping[str, Mapping[str, float]] | None = None) -> None:
        """Initialize the selector with an optional role suitability table."""
        self._role_table = ROLE_SUITABILITY if role_table is None else role_table

    def role_suitability(self, roles: Iterable[str], category: str) -> float:
        """Return the best suitability across a candidate's roles."""
        scores = [
            self._role_table.get(role.lower(), {}).get(category, DEFAULT_ROLE_SUITABILITY)
            for role in roles
        ]
        if not scores:
            return DEFAULT_ROLE_SUITABILITY
        return max(scores)

    def score(self, task: TaskSnapshot, candidate: AssignmentCandidate) -> CandidateScore:
        """Compute the assignment score for one candidate."""
        workload_factor = 1 / (candidate.weighted + 1)
        role = self.role_suitability(candidate.roles, task.category)
        specialty = specialty_match(task.specialty_tags, candidate.specialty_tags)
        return CandidateScore(
            staff_id=candidate.staff_id,
            score=WORKLOAD_WEIGHT * workload_factor + ROLE_WEIGHT * role + SPECIALTY_WEIGHT * specialty,
            weighted=candidate.weighted,
            workload_factor=workload_factor,
            role_suitability=role,
            specialty_match=specialty,
        )

    def rank(
        self,
        task: TaskSnapshot,
        candidates: Iterable[AssignmentCandidate],
        exclude: Iterable[str] = (),
    ) -> list[CandidateScore]:
        """Return candidates ordered best first.

        Ordering is total: higher score, then lower weighted workload, then
        the lexicographically smaller staff id.
        """
        excluded = set(exclude)
        scored = [
            self.score(task, candidate)
            for candidate in candidates
            if candidate.staff_id not in excluded
        ]
        scored.sort(key=lambda item: (-item.score, item.weighted, item.staff_id))
        return scored

    def select_best(
        self,
        task: TaskSnapshot,
        candidates: Iterable[AssignmentCandidate],
        exclude: Iterable[str] = (),
    ) -> str | None:
        """Return the best staff id, or None when nobody remains."""
        ranked = self.rank(task, candidates, exclude)
        if not ranked:
            return None
        return ranked[0].staff_id
