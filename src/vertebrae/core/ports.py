# src/vertebrae/core/ports.py

from __future__ import annotations

"""
Ports (interfaces) used by the derived task components.

Readiness, completion and deletion depend on these Protocols rather than on
the SQLite classes, so tests can hand them in-memory fakes and another store
can be plugged in.
"""

from contextlib import AbstractContextManager
from typing import Any, Iterable, Protocol

from ..tasks.task_models import Task, TaskStatus


class TaskRepo(Protocol):
    """Storage collaborator: task records."""

    # Store-wide mutual exclusion for multi-step operations (re-entrant).
    lock: AbstractContextManager[Any]

    def exists(self, task_id: str) -> bool: ...
    def get(self, task_id: str) -> Task | None: ...
    def delete(self, task_id: str) -> None: ...
    def mark_done(self, task_id: str, now_ts: float | None = None) -> float: ...
    def list_by_status(self, status: TaskStatus) -> list[Task]: ...
    def get_statuses(self, task_ids: Iterable[str] | None = None) -> dict[str, TaskStatus]: ...


class RelationshipRepo(Protocol):
    """Storage collaborator: child_of and depends_on edges."""

    def get_children(self, parent_id: str) -> list[str]: ...
    def get_all_descendants(self, task_id: str) -> list[str]: ...
    def orphan_children(self, parent_id: str) -> None: ...
    def get_dependencies(self, dependent_id: str) -> list[str]: ...
    def get_dependents(self, blocker_id: str) -> list[str]: ...
    def remove_all_relationships(self, task_id: str) -> None: ...
