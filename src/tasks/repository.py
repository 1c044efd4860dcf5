"""Repository helpers for task persistence and task history."""

from __future__ import annotations

import logging
from contextlib import closing
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import Callable, Mapping, Protocol

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from errors import ConcurrencyConflict, InputError, NotFoundError, PersistenceFailure
from models import (
    MIN_ESTIMATED_DURATION_MINUTES,
    StaffMember,
    Task,
    TaskCategoryEnum,
    TaskHistoryActionEnum,
    TaskHistoryEntry,
    TaskPriorityEnum,
    TaskTemplate,
    TaskUrgencyEnum,
)
from tasks.snapshots import OPEN_STATUSES, TaskSnapshot, task_to_snapshot
from tasks.transitions import history_action_for, validate_status_transition
from time_utils import to_utc

UNSET = object()
SYSTEM_ACTOR = "system"
logger = logging.getLogger(__name__)

_TEMPLATE_OVERRIDE_FIELDS = frozenset(
    {
        "title",
        "description",
        "priority",
        "urgency_level",
        "department",
        "due_date",
        "assigned_to",
        "specialty_tags",
        "metadata",
        "created_by",
    }
)


@dataclass(frozen=True)
class TaskCreateInput:
    """Input payload for creating a task record."""

    title: str
    department: str
    estimated_duration_minutes: int
    priority: str = "medium"
    urgency_level: str = "routine"
    category: str = "other"
    description: str | None = None
    due_date: datetime | None = None
    assigned_to: str | None = None
    specialty_tags: tuple[str, ...] = ()
    dependencies: tuple[int, ...] = ()
    metadata: Mapping[str, object] | None = None
    template_id: int | None = None
    created_by: str = SYSTEM_ACTOR


@dataclass(frozen=True)
class TaskHistoryInput:
    """Input payload for appending a task history entry."""

    action: str
    performed_by: str = SYSTEM_ACTOR
    details: Mapping[str, object] | None = None
    timestamp: datetime | None = None


@dataclass(frozen=True)
class AssignmentUpdateResult:
    """Outcome of a conditional assignment update."""

    status: str
    task_id: int
    task: TaskSnapshot | None = None
    details: dict[str, object] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        """Return True when the update was applied."""
        return self.status == "success"


class TaskStore(Protocol):
    """Task persistence contract consumed by sweeps and services."""

    def create_task(self, payload: TaskCreateInput, *, now: datetime | None = None) -> TaskSnapshot:
        ...

    def get_active_tasks(self, department: str) -> list[TaskSnapshot]:
        ...

    def get_task(self, task_id: int) -> TaskSnapshot | None:
        ...

    def update_task_assignment(
        self,
        task_id: int,
        new_staff_id: str,
        expected_version: int,
        *,
        expected_assignee: str | None | object = UNSET,
        performed_by: str = SYSTEM_ACTOR,
        details: Mapping[str, object] | None = None,
        metadata: Mapping[str, object] | None = None,
        now: datetime | None = None,
    ) -> AssignmentUpdateResult:
        ...

    def append_history(self, task_id: int, entry: TaskHistoryInput) -> TaskHistoryEntry:
        ...

    def create_task_from_template(
        self,
        template_id: int,
        overrides: Mapping[str, object] | None = None,
        *,
        scheduled_for: datetime | None = None,
        now: datetime | None = None,
    ) -> TaskSnapshot:
        ...

    def list_departments(self) -> list[str]:
        ...

    def list_open_tasks_due_between(self, start: datetime, end: datetime) -> list[TaskSnapshot]:
        ...


class TaskRepository:
    """SQLAlchemy-backed task store."""

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        """Initialize repository with a SQLAlchemy session factory."""
        self._session_factory = session_factory

    def create_task(
        self,
        payload: TaskCreateInput,
        *,
        now: datetime | None = None,
    ) -> TaskSnapshot:
        """Create a task and its ``created`` history entry."""

        def handler(session: Session) -> TaskSnapshot:
            return task_to_snapshot(create_task_record(session, payload, now=now))

        return self._execute(handler)

    def create_task_from_template(
        self,
        template_id: int,
        overrides: Mapping[str, object] | None = None,
        *,
        scheduled_for: datetime | None = None,
        now: datetime | None = None,
    ) -> TaskSnapshot:
        """Instantiate a task from a template with optional field overrides.

        When ``scheduled_for`` is given and no due date is overridden, the
        instance is due one estimated duration after its scheduled time.
        """

        def handler(session: Session) -> TaskSnapshot:
            template = session.get(TaskTemplate, template_id)
            if template is None:
                raise NotFoundError(
                    "template_not_found",
                    f"Task template {template_id} not found.",
                    {"template_id": template_id},
                )
            if not template.is_active:
                raise InputError(
                    "template_inactive",
                    f"Task template {template_id} is inactive.",
                    {"template_id": template_id},
                )
            payload = _payload_from_template(template, overrides or {})
            if payload.due_date is None and scheduled_for is not None:
                payload = replace(
                    payload,
                    due_date=due_date_for_instance(scheduled_for, template.estimated_duration_minutes),
                )
            return task_to_snapshot(create_task_record(session, payload, now=now))

        return self._execute(handler)

    def get_task(self, task_id: int) -> TaskSnapshot | None:
        """Fetch a task snapshot by its primary key."""

        def handler(session: Session) -> TaskSnapshot | None:
            task = session.get(Task, task_id)
            return task_to_snapshot(task) if task is not None else None

        return self._execute(handler)

    def get_active_tasks(self, department: str) -> list[TaskSnapshot]:
        """Return open tasks for a department ordered by id."""

        def handler(session: Session) -> list[TaskSnapshot]:
            tasks = (
                session.query(Task)
                .filter(Task.department == department)
                .filter(Task.status.in_(OPEN_STATUSES))
                .order_by(Task.id.asc())
                .all()
            )
            return [task_to_snapshot(task) for task in tasks]

        return self._execute(handler)

    def list_departments(self) -> list[str]:
        """Return departments with active staff or open tasks."""

        def handler(session: Session) -> list[str]:
            staff_departments = {
                row[0]
                for row in session.query(StaffMember.department)
                .filter(StaffMember.is_active.is_(True))
                .distinct()
            }
            task_departments = {
                row[0]
                for row in session.query(Task.department)
                .filter(Task.status.in_(OPEN_STATUSES))
                .distinct()
            }
            return sorted(staff_departments | task_departments)

        return self._execute(handler)

    def list_open_tasks_due_between(self, start: datetime, end: datetime) -> list[TaskSnapshot]:
        """Return open tasks with ``start < due_date <= end``."""

        def handler(session: Session) -> list[TaskSnapshot]:
            tasks = (
                session.query(Task)
                .filter(Task.status.in_(OPEN_STATUSES))
                .filter(Task.due_date.is_not(None))
                .filter(Task.due_date > to_utc(start))
                .filter(Task.due_date <= to_utc(end))
                .order_by(Task.due_date.asc(), Task.id.asc())
                .all()
            )
            return [task_to_snapshot(task) for task in tasks]

        return self._execute(handler)

    def count_open_tasks(self, department: str) -> int:
        """Return the number of open tasks in a department."""

        def handler(session: Session) -> int:
            return int(
                session.query(func.count(Task.id))
                .filter(Task.department == department)
                .filter(Task.status.in_(OPEN_STATUSES))
                .scalar()
                or 0
            )

        return self._execute(handler)

    def update_task_assignment(
        self,
        task_id: int,
        new_staff_id: str,
        expected_version: int,
        *,
        expected_assignee: str | None | object = UNSET,
        performed_by: str = SYSTEM_ACTOR,
        details: Mapping[str, object] | None = None,
        metadata: Mapping[str, object] | None = None,
        now: datetime | None = None,
    ) -> AssignmentUpdateResult:
        """Reassign a task only if it is unchanged since the caller's snapshot.

        The update applies when the task is still open, still at
        ``expected_version``, and (when given) still held by
        ``expected_assignee``. Otherwise the result reports a conflict and
        nothing is written.
        """

        def handler(session: Session) -> AssignmentUpdateResult:
            task = session.get(Task, task_id)
            if task is None:
                return AssignmentUpdateResult(
                    status="conflict",
                    task_id=task_id,
                    details={"reason": "not_found"},
                )
            previous_assignee = task.assigned_to
            timestamp = _normalize_timestamp(now)
            values: dict[object, object] = {
                Task.assigned_to: new_staff_id,
                Task.version: Task.version + 1,
                Task.updated_at: timestamp,
            }
            if metadata:
                merged = dict(task.task_metadata or {})
                merged.update(metadata)
                values[Task.task_metadata] = merged

            query = (
                session.query(Task)
                .filter(Task.id == task_id)
                .filter(Task.version == expected_version)
                .filter(Task.status.in_(OPEN_STATUSES))
            )
            if expected_assignee is not UNSET:
                if expected_assignee is None:
                    query = query.filter(Task.assigned_to.is_(None))
                else:
                    query = query.filter(Task.assigned_to == expected_assignee)
            updated = query.update(values, synchronize_session=False)
            if not updated:
                return AssignmentUpdateResult(
                    status="conflict",
                    task_id=task_id,
                    details={
                        "reason": "stale_snapshot",
                        "expected_version": expected_version,
                        "current_version": task.version,
                        "current_assignee": previous_assignee,
                        "current_status": task.status,
                    },
                )

            history_details = {"from": previous_assignee, "to": new_staff_id}
            if details:
                history_details.update(details)
            append_history_record(
                session,
                task_id,
                TaskHistoryInput(
                    action="assigned",
                    performed_by=performed_by,
                    details=history_details,
                    timestamp=timestamp,
                ),
            )
            session.refresh(task)
            return AssignmentUpdateResult(
                status="success",
                task_id=task_id,
                task=task_to_snapshot(task),
            )

        return self._execute(handler)

    def update_status(
        self,
        task_id: int,
        status: str,
        *,
        performed_by: str,
        expected_version: int | None = None,
        details: Mapping[str, object] | None = None,
        now: datetime | None = None,
    ) -> TaskSnapshot:
        """Move a task forward through its lifecycle."""

        def handler(session: Session) -> TaskSnapshot:
            task = _fetch_task(session, task_id)
            if expected_version is not None and task.version != expected_version:
                raise ConcurrencyConflict(
                    "stale_version",
                    f"Task {task_id} changed since version {expected_version}.",
                    {"task_id": task_id, "current_version": task.version},
                )
            validate_status_transition(task.status, status)
            timestamp = _normalize_timestamp(now)
            previous_status = task.status
            task.status = status
            task.version = task.version + 1
            task.updated_at = timestamp
            if status == "completed":
                task.completed_at = timestamp
            history_details: dict[str, object] = {"from": previous_status, "to": status}
            if details:
                history_details.update(details)
            append_history_record(
                session,
                task_id,
                TaskHistoryInput(
                    action=history_action_for(status),
                    performed_by=performed_by,
                    details=history_details,
                    timestamp=timestamp,
                ),
            )
            session.flush()
            return task_to_snapshot(task)

        return self._execute(handler)

    def cancel_task(
        self,
        task_id: int,
        *,
        performed_by: str,
        reason: str | None = None,
        now: datetime | None = None,
    ) -> TaskSnapshot:
        """Cancel an open task, keeping its assignee."""
        details = {"reason": reason} if reason else None
        return self.update_status(
            task_id,
            "cancelled",
            performed_by=performed_by,
            details=details,
            now=now,
        )

    def append_history(self, task_id: int, entry: TaskHistoryInput) -> TaskHistoryEntry:
        """Append a standalone history entry, bumping the task version."""

        def handler(session: Session) -> TaskHistoryEntry:
            task = _fetch_task(session, task_id)
            task.version = task.version + 1
            task.updated_at = _normalize_timestamp(entry.timestamp)
            return append_history_record(session, task_id, entry)

        return self._execute(handler)

    def list_history(self, task_id: int) -> list[TaskHistoryEntry]:
        """Return the ordered history log for a task."""

        def handler(session: Session) -> list[TaskHistoryEntry]:
            return list(
                session.query(TaskHistoryEntry)
                .filter(TaskHistoryEntry.task_id == task_id)
                .order_by(TaskHistoryEntry.timestamp.asc(), TaskHistoryEntry.id.asc())
                .all()
            )

        return self._execute(handler)

    def _execute(self, handler):
        """Execute repository work inside a managed session."""
        with closing(self._session_factory()) as session:
            session.expire_on_commit = False
            try:
                result = handler(session)
                session.commit()
            except SQLAlchemyError as exc:
                session.rollback()
                raise PersistenceFailure("task_store_failed", str(exc)) from exc
            except Exception:
                session.rollback()
                raise
        return result


def _normalize_timestamp(value: datetime | None) -> datetime:
    """Normalize an optional datetime to UTC, defaulting to now."""
    return to_utc(value or datetime.now(timezone.utc))


def _fetch_task(session: Session, task_id: int) -> Task:
    """Fetch a task or raise when it does not exist."""
    task = session.get(Task, task_id)
    if task is None:
        raise NotFoundError("task_not_found", f"Task {task_id} not found.", {"task_id": task_id})
    return task


def _validate_task_payload(payload: TaskCreateInput) -> None:
    """Validate task creation fields."""
    if not payload.title or not payload.title.strip():
        raise InputError("missing_field", "title is required.", {"field": "title"})
    if not payload.department or not payload.department.strip():
        raise InputError("missing_field", "department is required.", {"field": "department"})
    duration = payload.estimated_duration_minutes
    if duration is None or duration < MIN_ESTIMATED_DURATION_MINUTES:
        raise InputError(
            "invalid_duration",
            f"estimated_duration_minutes must be >= {MIN_ESTIMATED_DURATION_MINUTES}.",
            {"field": "estimated_duration_minutes", "value": duration},
        )
    for field_name, value, enum in (
        ("priority", payload.priority, TaskPriorityEnum),
        ("urgency_level", payload.urgency_level, TaskUrgencyEnum),
        ("category", payload.category, TaskCategoryEnum),
    ):
        if value not in enum.enums:
            raise InputError(
                f"invalid_{field_name}",
                f"Invalid {field_name}: {value}.",
                {"field": field_name, "value": value},
            )


def _payload_from_template(
    template: TaskTemplate,
    overrides: Mapping[str, object],
) -> TaskCreateInput:
    """Build a task creation payload from a template and overrides."""
    unknown = set(overrides) - _TEMPLATE_OVERRIDE_FIELDS
    if unknown:
        raise InputError(
            "invalid_override",
            "Unsupported template override fields.",
            {"fields": sorted(unknown)},
        )
    return TaskCreateInput(
        title=overrides.get("title") or template.name,
        description=overrides.get("description", template.description),
        department=overrides.get("department") or template.department,
        estimated_duration_minutes=template.estimated_duration_minutes,
        priority=overrides.get("priority") or template.priority,
        urgency_level=overrides.get("urgency_level") or template.urgency_level,
        category=template.category,
        due_date=overrides.get("due_date"),
        assigned_to=overrides.get("assigned_to"),
        specialty_tags=tuple(overrides.get("specialty_tags") or template.specialty_tags or ()),
        metadata=overrides.get("metadata"),
        template_id=template.id,
        created_by=overrides.get("created_by") or SYSTEM_ACTOR,
    )


def create_task_record(
    session: Session,
    payload: TaskCreateInput,
    *,
    now: datetime | None = None,
) -> Task:
    """Create a task and its ``created`` history entry using an existing session."""
    _validate_task_payload(payload)
    timestamp = _normalize_timestamp(now)
    task = Task(
        title=payload.title,
        description=payload.description,
        priority=payload.priority,
        urgency_level=payload.urgency_level,
        status="todo",
        department=payload.department,
        category=payload.category,
        estimated_duration_minutes=payload.estimated_duration_minutes,
        due_date=to_utc(payload.due_date) if payload.due_date is not None else None,
        assigned_to=payload.assigned_to,
        specialty_tags=list(payload.specialty_tags),
        dependencies=list(payload.dependencies),
        task_metadata=dict(payload.metadata) if payload.metadata is not None else {},
        template_id=payload.template_id,
        created_by=payload.created_by,
        version=1,
        created_at=timestamp,
        updated_at=timestamp,
    )
    session.add(task)
    session.flush()
    details: dict[str, object] = {"title": payload.title}
    if payload.assigned_to is not None:
        details["assigned_to"] = payload.assigned_to
    if payload.template_id is not None:
        details["template_id"] = payload.template_id
    append_history_record(
        session,
        task.id,
        TaskHistoryInput(
            action="created",
            performed_by=payload.created_by,
            details=details,
            timestamp=timestamp,
        ),
    )
    logger.debug("Created task %s in %s.", task.id, task.department)
    return task


def append_history_record(
    session: Session,
    task_id: int,
    entry: TaskHistoryInput,
) -> TaskHistoryEntry:
    """Append a task history entry using an existing session."""
    if entry.action not in TaskHistoryActionEnum.enums:
        raise InputError(
            "invalid_history_action",
            f"Invalid history action: {entry.action}.",
            {"field": "action", "action": entry.action},
        )
    record = TaskHistoryEntry(
        task_id=task_id,
        action=entry.action,
        performed_by=entry.performed_by,
        timestamp=_normalize_timestamp(entry.timestamp),
        details=dict(entry.details) if entry.details is not None else None,
    )
    session.add(record)
    session.flush()
    return record


def due_date_for_instance(scheduled_time: datetime, duration_minutes: int) -> datetime:
    """Return the due date for a recurring task instance."""
    return to_utc(scheduled_time) + timedelta(minutes=duration_minutes)
