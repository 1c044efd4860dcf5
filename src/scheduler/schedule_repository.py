"""Repository helpers for recurring schedules and their execution history."""

from __future__ import annotations

import logging
from contextlib import closing
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Protocol, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from errors import InputError, NotFoundError, PersistenceFailure
from models import RecurringSchedule, ScheduleExecution, ScheduleExecutionStatusEnum, TaskTemplate
from scheduler.recurrence import (
    RecurrenceAdvance,
    RecurringScheduleSnapshot,
    advance,
)
from scheduler.schedule_validation import validate_schedule_definition
from time_utils import to_utc

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RecurringScheduleCreateInput:
    """Input payload for creating a recurring schedule definition."""

    task_template_id: int
    frequency: str
    start_date: datetime
    time: str
    department: str
    end_date: datetime | None = None
    days_of_week: Sequence[int] = ()
    interval: int = 1
    custom_pattern: str | None = None
    assign_to: str | None = None
    priority: str | None = None
    created_by: str = "system"


@dataclass(frozen=True)
class ScheduleExecutionInput:
    """Input payload for appending a schedule execution record."""

    scheduled_time: datetime
    status: str
    actual_execution_time: datetime | None = None
    task_id: int | None = None
    error: str | None = None


class ScheduleStore(Protocol):
    """Recurring schedule persistence contract consumed by the recurrence sweep."""

    def get_active_schedules(self, department: str | None = None) -> list[RecurringScheduleSnapshot]:
        ...

    def get_due_schedules(self, now: datetime) -> list[RecurringScheduleSnapshot]:
        ...

    def save_schedule(self, definition: RecurringScheduleSnapshot) -> RecurringScheduleSnapshot:
        ...

    def claim_run(
        self,
        schedule_id: int,
        expected_next_run: datetime | None,
        advance_result: RecurrenceAdvance,
        *,
        now: datetime | None = None,
    ) -> bool:
        ...

    def record_execution(
        self,
        schedule_id: int,
        payload: ScheduleExecutionInput,
        *,
        advance_result: RecurrenceAdvance | None = None,
    ) -> ScheduleExecution:
        ...


def _optional_utc(value: datetime | None) -> datetime | None:
    return to_utc(value) if value is not None else None


def schedule_to_snapshot(schedule: RecurringSchedule) -> RecurringScheduleSnapshot:
    """Convert a schedule row into an immutable snapshot."""
    return RecurringScheduleSnapshot(
        id=schedule.id,
        task_template_id=schedule.task_template_id,
        frequency=schedule.frequency,
        start_date=to_utc(schedule.start_date),
        time=schedule.time,
        department=schedule.department,
        end_date=_optional_utc(schedule.end_date),
        days_of_week=tuple(schedule.days_of_week or ()),
        interval=schedule.interval,
        custom_pattern=schedule.custom_pattern,
        assign_to=schedule.assign_to,
        priority=schedule.priority,
        is_active=bool(schedule.is_active),
        last_run=_optional_utc(schedule.last_run),
        next_run=_optional_utc(schedule.next_run),
        created_by=schedule.created_by,
    )


class ScheduleRepository:
    """SQLAlchemy-backed schedule store."""

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        """Initialize repository with a SQLAlchemy session factory."""
        self._session_factory = session_factory

    def create_schedule(
        self,
        payload: RecurringScheduleCreateInput,
        *,
        now: datetime | None = None,
    ) -> RecurringScheduleSnapshot:
        """Validate and persist a schedule with its first next run."""
        validate_schedule_definition(payload)
        timestamp = to_utc(now or datetime.now(timezone.utc))

        def handler(session: Session) -> RecurringScheduleSnapshot:
            if session.get(TaskTemplate, payload.task_template_id) is None:
                raise NotFoundError(
                    "template_not_found",
                    f"Task template {payload.task_template_id} not found.",
                    {"template_id": payload.task_template_id},
                )
            schedule = RecurringSchedule(
                task_template_id=payload.task_template_id,
                frequency=payload.frequency,
                start_date=to_utc(payload.start_date),
                end_date=_optional_utc(payload.end_date),
                time=payload.time,
                days_of_week=sorted(set(payload.days_of_week or ())),
                interval=payload.interval,
                custom_pattern=payload.custom_pattern,
                department=payload.department,
                assign_to=payload.assign_to,
                priority=payload.priority,
                is_active=True,
                created_by=payload.created_by,
                created_at=timestamp,
                updated_at=timestamp,
            )
            result = advance(schedule_to_snapshot(schedule), timestamp)
            schedule.next_run = result.next_run
            schedule.is_active = result.is_active
            session.add(schedule)
            session.flush()
            return schedule_to_snapshot(schedule)

        return self._execute(handler)

    def get_schedule(self, schedule_id: int) -> RecurringScheduleSnapshot | None:
        """Fetch a schedule snapshot by its primary key."""

        def handler(session: Session) -> RecurringScheduleSnapshot | None:
            schedule = session.get(RecurringSchedule, schedule_id)
            return schedule_to_snapshot(schedule) if schedule is not None else None

        return self._execute(handler)

    def get_active_schedules(self, department: str | None = None) -> list[RecurringScheduleSnapshot]:
        """Return active schedules, optionally limited to one department."""

        def handler(session: Session) -> list[RecurringScheduleSnapshot]:
            query = session.query(RecurringSchedule).filter(RecurringSchedule.is_active.is_(True))
            if department is not None:
                query = query.filter(RecurringSchedule.department == department)
            return [schedule_to_snapshot(row) for row in query.order_by(RecurringSchedule.id.asc())]

        return self._execute(handler)

    def get_due_schedules(self, now: datetime) -> list[RecurringScheduleSnapshot]:
        """Return active schedules whose next run is at or before ``now``."""

        def handler(session: Session) -> list[RecurringScheduleSnapshot]:
            rows = (
                session.query(RecurringSchedule)
                .filter(RecurringSchedule.is_active.is_(True))
                .filter(RecurringSchedule.next_run.is_not(None))
                .filter(RecurringSchedule.next_run <= to_utc(now))
                .order_by(RecurringSchedule.next_run.asc(), RecurringSchedule.id.asc())
                .all()
            )
            return [schedule_to_snapshot(row) for row in rows]

        return self._execute(handler)

    def save_schedule(self, definition: RecurringScheduleSnapshot) -> RecurringScheduleSnapshot:
        """Persist the mutable run state of a schedule definition."""

        def handler(session: Session) -> RecurringScheduleSnapshot:
            schedule = _fetch_schedule(session, definition.id)
            schedule.is_active = definition.is_active
            schedule.next_run = _optional_utc(definition.next_run)
            schedule.last_run = _optional_utc(definition.last_run)
            schedule.updated_at = datetime.now(timezone.utc)
            session.flush()
            return schedule_to_snapshot(schedule)

        return self._execute(handler)

    def claim_run(
        self,
        schedule_id: int,
        expected_next_run: datetime | None,
        advance_result: RecurrenceAdvance,
        *,
        now: datetime | None = None,
    ) -> bool:
        """Apply an advance only if the schedule still waits on ``expected_next_run``.

        Returns False when another sweep already moved the schedule on, in
        which case nothing is written and the caller must not fire it.
        """
        timestamp = to_utc(now or datetime.now(timezone.utc))

        def handler(session: Session) -> bool:
            query = (
                session.query(RecurringSchedule)
                .filter(RecurringSchedule.id == schedule_id)
                .filter(RecurringSchedule.is_active.is_(True))
            )
            if expected_next_run is None:
                query = query.filter(RecurringSchedule.next_run.is_(None))
            else:
                query = query.filter(RecurringSchedule.next_run == to_utc(expected_next_run))
            updated = query.update(
                {
                    RecurringSchedule.next_run: _optional_utc(advance_result.next_run),
                    RecurringSchedule.is_active: advance_result.is_active,
                    RecurringSchedule.updated_at: timestamp,
                },
                synchronize_session=False,
            )
            return updated == 1

        claimed = self._execute(handler)
        if not claimed:
            logger.info("Schedule %s was already claimed by another sweep.", schedule_id)
        return claimed

    def record_execution(
        self,
        schedule_id: int,
        payload: ScheduleExecutionInput,
        *,
        advance_result: RecurrenceAdvance | None = None,
    ) -> ScheduleExecution:
        """Append an execution record and apply the advance in one transaction."""
        if payload.status not in ScheduleExecutionStatusEnum.enums:
            raise InputError(
                "invalid_execution_status",
                f"Invalid execution status: {payload.status}.",
                {"field": "status", "status": payload.status},
            )

        def handler(session: Session) -> ScheduleExecution:
            schedule = _fetch_schedule(session, schedule_id)
            executed_at = to_utc(payload.actual_execution_time or datetime.now(timezone.utc))
            record = ScheduleExecution(
                schedule_id=schedule_id,
                scheduled_time=to_utc(payload.scheduled_time),
                actual_execution_time=executed_at,
                status=payload.status,
                task_id=payload.task_id,
                error=payload.error,
            )
            session.add(record)
            schedule.last_run = executed_at
            if advance_result is not None:
                schedule.next_run = advance_result.next_run
                schedule.is_active = advance_result.is_active
            schedule.updated_at = executed_at
            session.flush()
            return record

        return self._execute(handler)

    def list_executions(
        self,
        schedule_id: int | None = None,
        *,
        limit: int | None = None,
    ) -> list[ScheduleExecution]:
        """Return execution history ordered by actual execution time."""

        def handler(session: Session) -> list[ScheduleExecution]:
            query = session.query(ScheduleExecution)
            if schedule_id is not None:
                query = query.filter(ScheduleExecution.schedule_id == schedule_id)
            query = query.order_by(
                ScheduleExecution.actual_execution_time.asc(),
                ScheduleExecution.id.asc(),
            )
            if limit is not None:
                query = query.limit(limit)
            return list(query.all())

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
                raise PersistenceFailure("schedule_store_failed", str(exc)) from exc
            except Exception:
                session.rollback()
                raise
        return result


def _fetch_schedule(session: Session, schedule_id: int) -> RecurringSchedule:
    """Fetch a schedule or raise when it does not exist."""
    schedule = session.get(RecurringSchedule, schedule_id)
    if schedule is None:
        raise NotFoundError(
            "schedule_not_found",
            f"Recurring schedule {schedule_id} not found.",
            {"schedule_id": schedule_id},
        )
    return schedule
