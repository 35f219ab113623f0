# src/vertebrae/tasks/lifecycle.py

"""
Status lifecycle.

Fail-closed transition table: anything not listed is rejected. done and rejected
are terminal, including same-state requests, so callers that want an
"already in this state" no-op must check for it before validating.

The unconditional completion path (completion.py) does not go through here.
"""

from __future__ import annotations

from .errors import InvalidStatusTransitionError
from .task_models import TaskStatus

TERMINAL_STATUSES: frozenset[TaskStatus] = frozenset({TaskStatus.DONE, TaskStatus.REJECTED})

_TRANSITIONS: dict[TaskStatus, tuple[TaskStatus, ...]] = {
    # backlog -> todo is gated by triage validation at the call site
    TaskStatus.BACKLOG: (TaskStatus.TODO,),
    TaskStatus.TODO: (TaskStatus.IN_PROGRESS, TaskStatus.REJECTED),
    TaskStatus.BLOCKED: (TaskStatus.IN_PROGRESS,),
    TaskStatus.PENDING_REVIEW: (TaskStatus.IN_PROGRESS, TaskStatus.DONE),
    TaskStatus.IN_PROGRESS: (TaskStatus.DONE, TaskStatus.PENDING_REVIEW, TaskStatus.BLOCKED),
    TaskStatus.DONE: (),
    TaskStatus.REJECTED: (),
}


def is_terminal(status: TaskStatus) -> bool:
    return status in TERMINAL_STATUSES


def allowed_transitions(from_status: TaskStatus) -> tuple[TaskStatus, ...]:
    return _TRANSITIONS.get(from_status, ())


def validate_transition(from_status: TaskStatus, to_status: TaskStatus) -> str | None:
    """Return None if the transition is allowed, else a human-readable reason."""
    if is_terminal(from_status):
        return f"Cannot transition from '{from_status}': this is a final state"

    allowed = allowed_transitions(from_status)
    if to_status in allowed:
        return None

    valid = ", ".join(s.value for s in allowed) or "none"
    return (
        f"Invalid status transition from '{from_status}' to '{to_status}'. "
        f"Valid transitions from '{from_status}' are: {valid}"
    )


def check_transition(task_id: str, from_status: TaskStatus, to_status: TaskStatus) -> None:
    """Raise InvalidStatusTransitionError if the transition is not allowed."""
    reason = validate_transition(from_status, to_status)
    if reason is not None:
        raise InvalidStatusTransitionError(task_id, from_status.value, to_status.value, reason)
