"""Task status transition rules."""

from __future__ import annotations

from errors import InputError
from models import TaskStatusEnum

_ALLOWED_STATUS_TRANSITIONS: dict[str, set[str]] = {
    "todo": {"in_progress", "completed", "cancelled"},
    "in_progress": {"completed", "cancelled"},
    "completed": set(),
    "cancelled": set(),
}


def validate_task_status(status: str) -> None:
    """Validate a task status against allowed values."""
    if status not in TaskStatusEnum.enums:
        raise InputError(
            "invalid_status",
            f"Invalid task status: {status}.",
            {"field": "status", "status": status},
        )


def validate_status_transition(current_status: str, target_status: str) -> None:
    """Validate that a status change only moves forward or cancels."""
    validate_task_status(current_status)
    validate_task_status(target_status)
    allowed = _ALLOWED_STATUS_TRANSITIONS.get(current_status, set())
    if target_status not in allowed:
        raise InputError(
            "invalid_status_transition",
            f"Invalid task status transition from '{current_status}' to '{target_status}'.",
            {"current_status": current_status, "target_status": target_status},
        )


def history_action_for(target_status: str) -> str:
    """Return the history action recorded for a status change."""
    if target_status == "completed":
        return "completed"
    if target_status == "cancelled":
        return "cancelled"
    return "status_changed"
