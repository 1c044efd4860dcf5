"""Initial database schema.

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-18 00:00:00.000000

"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None

_PRIORITY = sa.Enum("high", "medium", "low", name="task_priority", native_enum=False)
_URGENCY = sa.Enum("routine", "urgent", "emergency", name="task_urgency", native_enum=False)
_STATUS = sa.Enum(
    "todo",
    "in_progress",
    "completed",
    "cancelled",
    name="task_status",
    native_enum=False,
)
_CATEGORY = sa.Enum(
    "patient_care",
    "admin",
    "lab",
    "medication",
    "consultation",
    "other",
    name="task_category",
    native_enum=False,
)
_HISTORY_ACTION = sa.Enum(
    "created",
    "updated",
    "status_changed",
    "assigned",
    "completed",
    "cancelled",
    name="task_history_action",
    native_enum=False,
)
_FREQUENCY = sa.Enum(
    "daily",
    "weekly",
    "monthly",
    "custom",
    name="schedule_frequency",
    native_enum=False,
)
_EXECUTION_STATUS = sa.Enum(
    "success",
    "failed",
    "skipped",
    name="schedule_execution_status",
    native_enum=False,
)


def upgrade() -> None:
    """Create staff, task, template, and recurring schedule tables."""
    op.create_table(
        "staff_members",
        sa.Column("id", sa.String(length=100), primary_key=True),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("department", sa.String(length=100), nullable=False),
        sa.Column("roles", sa.JSON(), nullable=False),
        sa.Column("specialty_tags", sa.JSON(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_staff_members_department", "staff_members", ["department"])

    op.create_table(
        "task_templates",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("category", _CATEGORY, nullable=False),
        sa.Column("estimated_duration_minutes", sa.Integer(), nullable=False),
        sa.Column("priority", _PRIORITY, nullable=False),
        sa.Column("urgency_level", _URGENCY, nullable=False),
        sa.Column("department", sa.String(length=100), nullable=False),
        sa.Column("specialty_tags", sa.JSON(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint(
            "estimated_duration_minutes >= 5",
            name="ck_task_templates_estimated_duration",
        ),
    )

    op.create_table(
        "tasks",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("title", sa.String(length=300), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("priority", _PRIORITY, nullable=False),
        sa.Column("urgency_level", _URGENCY, nullable=False),
        sa.Column("status", _STATUS, nullable=False),
        sa.Column("department", sa.String(length=100), nullable=False),
        sa.Column("category", _CATEGORY, nullable=False),
        sa.Column("estimated_duration_minutes", sa.Integer(), nullable=False),
        sa.Column("due_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "assigned_to",
            sa.String(length=100),
            sa.ForeignKey("staff_members.id"),
            nullable=True,
        ),
        sa.Column("specialty_tags", sa.JSON(), nullable=False),
        sa.Column("dependencies", sa.JSON(), nullable=False),
        sa.Column("metadata", sa.JSON(), nullable=False),
        sa.Column("template_id", sa.Integer(), sa.ForeignKey("task_templates.id"), nullable=True),
        sa.Column("created_by", sa.String(length=100), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint(
            "estimated_duration_minutes >= 5",
            name="ck_tasks_estimated_duration",
        ),
    )
    op.create_index("ix_tasks_department_status", "tasks", ["department", "status"])

    op.create_table(
        "task_history",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("task_id", sa.Integer(), sa.ForeignKey("tasks.id"), nullable=False),
        sa.Column("action", _HISTORY_ACTION, nullable=False),
        sa.Column("performed_by", sa.String(length=100), nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("details", sa.JSON(), nullable=True),
    )
    op.create_index("ix_task_history_task_id", "task_history", ["task_id"])

    op.create_table(
        "recurring_schedules",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "task_template_id",
            sa.Integer(),
            sa.ForeignKey("task_templates.id"),
            nullable=False,
        ),
        sa.Column("frequency", _FREQUENCY, nullable=False),
        sa.Column("start_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("time", sa.String(length=5), nullable=False),
        sa.Column("days_of_week", sa.JSON(), nullable=False),
        sa.Column("interval", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("custom_pattern", sa.String(length=200), nullable=True),
        sa.Column("department", sa.String(length=100), nullable=False),
        sa.Column(
            "assign_to",
            sa.String(length=100),
            sa.ForeignKey("staff_members.id"),
            nullable=True,
        ),
        sa.Column("priority", _PRIORITY, nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("last_run", sa.DateTime(timezone=True), nullable=True),
        sa.Column("next_run", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_by", sa.String(length=100), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("interval >= 1", name="ck_recurring_schedules_interval"),
    )
    op.create_index(
        "ix_recurring_schedules_active_next_run",
        "recurring_schedules",
        ["is_active", "next_run"],
    )

    op.create_table(
        "schedule_executions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "schedule_id",
            sa.Integer(),
            sa.ForeignKey("recurring_schedules.id"),
            nullable=False,
        ),
        sa.Column("scheduled_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("actual_execution_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", _EXECUTION_STATUS, nullable=False),
        sa.Column("task_id", sa.Integer(), sa.ForeignKey("tasks.id"), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
    )
    op.create_index("ix_schedule_executions_schedule_id", "schedule_executions", ["schedule_id"])


def downgrade() -> None:
    """Drop all tables."""
    op.drop_index("ix_schedule_executions_schedule_id", table_name="schedule_executions")
    op.drop_table("schedule_executions")
    op.drop_index("ix_recurring_schedules_active_next_run", table_name="recurring_schedules")
    op.drop_table("recurring_schedules")
    op.drop_index("ix_task_history_task_id", table_name="task_history")
    op.drop_table("task_history")
    op.drop_index("ix_tasks_department_status", table_name="tasks")
    op.drop_table("tasks")
    op.drop_table("task_templates")
    op.drop_index("ix_staff_members_department", table_name="staff_members")
    op.drop_table("staff_members")
