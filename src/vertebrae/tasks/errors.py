# src/vertebrae/tasks/errors.py

"""
Error taxonomy for the task core.

Every error raised by the store, the graph and the workflow layer derives from
TaskError, so callers (console, tests) can catch one type and show the message.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .triage import TriageResult


class TaskError(Exception):
    """Base class for task-core errors."""


class NotFoundError(TaskError):
    def __init__(self, task_id: str) -> None:
        self.task_id = task_id
        super().__init__(f"Task '{task_id}' not found")


class InvalidStatusTransitionError(TaskError):
    def __init__(self, task_id: str, from_status: str, to_status: str, message: str) -> None:
        self.task_id = task_id
        self.from_status = from_status
        self.to_status = to_status
        self.message = message
        super().__init__(message)


class ValidationError(TaskError):
    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class TriageValidationError(ValidationError):
    """Raised when a task's sections do not pass triage (backlog -> todo)."""

    def __init__(self, task_id: str, result: TriageResult, message: str | None = None) -> None:
        self.task_id = task_id
        self.result = result
        if message is None:
            message = (
                f"Task '{task_id}' failed triage validation "
                f"({result.error_count} error(s), {result.warning_count} warning(s)):\n{result}"
            )
        super().__init__(message)


class StorageError(TaskError):
    """Opaque failure from the storage layer (sqlite3 errors are wrapped into this)."""
