"""Data models for the Caseload engine."""

from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import declarative_base

# SQLAlchemy base
Base = declarative_base()

# Task enums
TaskPriorityEnum = Enum(
    "high",
    "medium",
    "low",
    name="task_priority",
    native_enum=False,
)
TaskUrgencyEnum = Enum(
    "routine",
    "urgent",
    "emergency",
    name="task_urgency",
    native_enum=False,
)
TaskStatusEnum = Enum(
    "todo",
    "in_progress",
    "completed",
    "cancelled",
    name="task_status",
    native_enum=False,
)
TaskCategoryEnum = Enum(
    "patient_care",
    "admin",
    "lab",
    "medication",
    "consultation",
    "other",
    name="task_category",
    native_enum=False,
)
TaskHistoryActionEnum = Enum(
    "created",
    "updated",
    "status_changed",
    "assigned",
    "completed",
    "cancelled",
    name="task_history_action",
    native_enum=False,
)

# Recurrence enums
ScheduleFrequencyEnum = Enum(
    "daily",
    "weekly",
    "monthly",
    "custom",
    name="schedule_frequency",
    native_enum=False,
)
ScheduleExecutionStatusEnum = Enum(
    "success",
    "failed",
    "skipped",
    name="schedule_execution_status",
    native_enum=False,
)

MIN_ESTIMATED_DURATION_MINUTES = 5


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# Database models
class StaffMember(Base):
    """Staff member eligible to hold department tasks."""

    __tablename__ = "staff_members"

    id = Column(String(100), primary_key=True)
    name = Column(String(200), nullable=False)
    department = Column(String(100), nullable=False, index=True)
    roles = Column(JSON, nullable=False, default=list)
    specialty_tags = Column(JSON, nullable=False, default=list)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow)


class TaskTemplate(Base):
    """Reusable blueprint for recurring task instances."""

    __tablename__ = "task_templates"
    __table_args__ = (
        CheckConstraint(
            f"estimated_duration_minutes >= {MIN_ESTIMATED_DURATION_MINUTES}",
            name="ck_task_templates_estimated_duration",
        ),
    )

    id = Column(Integer, primary_key=True)
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    category = Column(TaskCategoryEnum, nullable=False)
    estimated_duration_minutes = Column(Integer, nullable=False)
    priority = Column(TaskPriorityEnum, nullable=False, default="medium")
    urgency_level = Column(TaskUrgencyEnum, nullable=False, default="routine")
    department = Column(String(100), nullable=False)
    specialty_tags = Column(JSON, nullable=False, default=list)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow)


class Task(Base):
    """Discrete unit of department work."""

    __tablename__ = "tasks"
    __table_args__ = (
        CheckConstraint(
            f"estimated_duration_minutes >= {MIN_ESTIMATED_DURATION_MINUTES}",
            name="ck_tasks_estimated_duration",
        ),
        Index("ix_tasks_department_status", "department", "status"),
    )

    id = Column(Integer, primary_key=True)
    title = Column(String(300), nullable=False)
    description = Column(Text, nullable=True)
    priority = Column(TaskPriorityEnum, nullable=False, default="medium")
    urgency_level = Column(TaskUrgencyEnum, nullable=False, default="routine")
    status = Column(TaskStatusEnum, nullable=False, default="todo")
    department = Column(String(100), nullable=False)
    category = Column(TaskCategoryEnum, nullable=False, default="other")
    estimated_duration_minutes = Column(Integer, nullable=False)
    due_date = Column(DateTime(timezone=True), nullable=True)
    assigned_to = Column(String(100), ForeignKey("staff_members.id"), nullable=True)
    specialty_tags = Column(JSON, nullable=False, default=list)
    dependencies = Column(JSON, nullable=False, default=list)
    # "metadata" is reserved on declarative classes.
    task_metadata = Column("metadata", JSON, nullable=False, default=dict)
    template_id = Column(Integer, ForeignKey("task_templates.id"), nullable=True)
    created_by = Column(String(100), nullable=False, default="system")
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow)
    completed_at = Column(DateTime(timezone=True), nullable=True)


class TaskHistoryEntry(Base):
    """Append-only audit entry for a task mutation."""

    __tablename__ = "task_history"

    id = Column(Integer, primary_key=True)
    task_id = Column(Integer, ForeignKey("tasks.id"), nullable=False, index=True)
    action = Column(TaskHistoryActionEnum, nullable=False)
    performed_by = Column(String(100), nullable=False)
    timestamp = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    details = Column(JSON, nullable=True)


class RecurringSchedule(Base):
    """Rule that periodically instantiates tasks from a template."""

    __tablename__ = "recurring_schedules"
    __table_args__ = (
        CheckConstraint("interval >= 1", name="ck_recurring_schedules_interval"),
        Index("ix_recurring_schedules_active_next_run", "is_active", "next_run"),
    )

    id = Column(Integer, primary_key=True)
    task_template_id = Column(Integer, ForeignKey("task_templates.id"), nullable=False)
    frequency = Column(ScheduleFrequencyEnum, nullable=False)
    start_date = Column(DateTime(timezone=True), nullable=False)
    end_date = Column(DateTime(timezone=True), nullable=True)
    time = Column(String(5), nullable=False)
    days_of_week = Column(JSON, nullable=False, default=list)
    interval = Column(Integer, nullable=False, default=1)
    custom_pattern = Column(String(200), nullable=True)
    department = Column(String(100), nullable=False)
    assign_to = Column(String(100), ForeignKey("staff_members.id"), nullable=True)
    priority = Column(TaskPriorityEnum, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    last_run = Column(DateTime(timezone=True), nullable=True)
    next_run = Column(DateTime(timezone=True), nullable=True)
    created_by = Column(String(100), nullable=False, default="system")
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow)


class ScheduleExecution(Base):
    """Append-only record of one recurring schedule firing."""

    __tablename__ = "schedule_executions"

    id = Column(Integer, primary_key=True)
    schedule_id = Column(Integer, ForeignKey("recurring_schedules.id"), nullable=False, index=True)
    scheduled_time = Column(DateTime(timezone=True), nullable=False)
    actual_execution_time = Column(DateTime(timezone=True), nullable=False)
    status = Column(ScheduleExecutionStatusEnum, nullable=False)
    task_id = Column(Integer, ForeignKey("tasks.id"), nullable=True)
    error = Column(Text, nullable=True)
