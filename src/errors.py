"""Error taxonomy shared by the workload, task, and scheduler modules."""

from __future__ import annotations

from enum import Enum


class ErrorCategory(str, Enum):
    """High-level categories used when reporting failures."""

    VALIDATION = "validation"
    CONFLICT = "conflict"
    NOT_FOUND = "not_found"
    DEPENDENCY = "dependency"
    PERSISTENCE = "persistence"


class CaseloadError(Exception):
    """Base error carrying a stable code and structured details."""

    category = ErrorCategory.VALIDATION

    def __init__(self, code: str, message: str, details: dict[str, object] | None = None) -> None:
        """Initialize the error with structured metadata."""
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details or {}


class InputError(CaseloadError):
    """Raised for malformed task, staff, or schedule input."""

    category = ErrorCategory.VALIDATION


class NotFoundError(CaseloadError):
    """Raised when a referenced record does not exist."""

    category = ErrorCategory.NOT_FOUND


class ConcurrencyConflict(CaseloadError):
    """Raised when a conditional write finds the snapshot stale."""

    category = ErrorCategory.CONFLICT


class AdvisoryUnavailable(CaseloadError):
    """Raised when the advisory signal errors or times out."""

    category = ErrorCategory.DEPENDENCY


class PersistenceFailure(CaseloadError):
    """Raised when a store fails to create or update a record."""

    category = ErrorCategory.PERSISTENCE
