# src/vertebrae/tasks/readiness.py

"""
Readiness: highest-level actionable entry points per status bucket.

A task T is ready for bucket S when:
1. T.status == S,
2. every blocker of T is done (vacuously true without dependencies),
3. no strict descendant of T (children, grandchildren, ...) has started work
   (in_progress, pending_review or done).

Exclusion only looks downward from each candidate: a child whose parent is
excluded is still evaluated on its own.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from ..core.ports import RelationshipRepo, TaskRepo
from .task_models import WORK_STARTED, TaskStatus, TaskSummary

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ReadyResult:
    todo_ready: list[TaskSummary] = field(default_factory=list)
    backlog_ready: list[TaskSummary] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not self.todo_ready and not self.backlog_ready


class ReadinessEngine:
    def __init__(self, store: TaskRepo, graph: RelationshipRepo) -> None:
        self._store = store
        self._graph = graph

    def ready(self, status: TaskStatus) -> list[TaskSummary]:
        """Entry points in one bucket (todo = ready to work, backlog = ready to triage)."""
        with self._store.lock:
            statuses = self._store.get_statuses()
            out: list[TaskSummary] = []
            for task in self._store.list_by_status(status):
                if not self._is_unblocked(task.id, statuses):
                    continue
                if self._has_started_descendant(task.id, statuses):
                    continue
                out.append(task.summary())

        logger.debug("Ready items status=%s count=%s", status, len(out))
        return out

    def ready_all(self) -> ReadyResult:
        return ReadyResult(
            todo_ready=self.ready(TaskStatus.TODO),
            backlog_ready=self.ready(TaskStatus.BACKLOG),
        )

    def _is_unblocked(self, task_id: str, statuses: dict[str, TaskStatus]) -> bool:
        # A blocker missing from the store cannot be done; treat it as blocking.
        return all(
            statuses.get(blocker_id) == TaskStatus.DONE
            for blocker_id in self._graph.get_dependencies(task_id)
        )

    def _has_started_descendant(self, task_id: str, statuses: dict[str, TaskStatus]) -> bool:
        return any(
            statuses.get(desc_id) in WORK_STARTED
            for desc_id in self._graph.get_all_descendants(task_id)
        )
