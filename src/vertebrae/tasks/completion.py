# src/vertebrae/tasks/completion.py

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from ..core.ports import RelationshipRepo, TaskRepo
from .errors import NotFoundError
from .task_models import TaskStatus, normalize_id

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class CompletionResult:
    """
    Outcome of complete().

    incomplete_children is advisory ("soft enforcement"): it never blocks completion.
    """

    task_id: str
    already_done: bool = False
    incomplete_children: list[tuple[str, str, TaskStatus]] = field(default_factory=list)
    unblocked: list[tuple[str, str]] = field(default_factory=list)
    completed_at: float | None = None


class CompletionPropagator:
    """
    Marks a task done from any non-done status and reports the side effects.

    This is the unconditional completion path: it bypasses lifecycle
    validation on purpose. The validated path is TaskStore.update(status=done).
    """

    def __init__(self, store: TaskRepo, graph: RelationshipRepo) -> None:
        self._store = store
        self._graph = graph

    def complete(self, task_id: str) -> CompletionResult:
        task_id = normalize_id(task_id)

        # Reads and the status write happen under the store lock so no edge
        # mutation can interleave between computing `unblocked` and marking done.
        with self._store.lock:
            task = self._store.get(task_id)
            if task is None:
                raise NotFoundError(task_id)

            if task.status == TaskStatus.DONE:
                return CompletionResult(
                    task_id=task_id,
                    already_done=True,
                    completed_at=task.completed_at,
                )

            incomplete_children: list[tuple[str, str, TaskStatus]] = []
            for child_id in self._graph.get_children(task_id):
                child = self._store.get(child_id)
                if child is not None and child.status != TaskStatus.DONE:
                    incomplete_children.append((child.id, child.title, child.status))

            unblocked = self._newly_unblocked(task_id)
            completed_at = self._store.mark_done(task_id)

        logger.info(
            "Task completed id=%s unblocked=%s incomplete_children=%s",
            task_id,
            len(unblocked),
            len(incomplete_children),
        )
        return CompletionResult(
            task_id=task_id,
            incomplete_children=incomplete_children,
            unblocked=unblocked,
            completed_at=completed_at,
        )

    def _newly_unblocked(self, task_id: str) -> list[tuple[str, str]]:
        """Dependents whose only remaining not-done blocker is task_id."""
        out: list[tuple[str, str]] = []
        for dependent_id in self._graph.get_dependents(task_id):
            others = [b for b in self._graph.get_dependencies(dependent_id) if b != task_id]
            statuses = self._store.get_statuses(others)
            if any(statuses.get(b) != TaskStatus.DONE for b in others):
                continue
            dependent = self._store.get(dependent_id)
            if dependent is not None:
                out.append((dependent.id, dependent.title))
        return out
