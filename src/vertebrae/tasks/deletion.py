# src/vertebrae/tasks/deletion.py

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from ..core.ports import RelationshipRepo, TaskRepo
from .errors import NotFoundError
from .task_models import normalize_id

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class DeletionResult:
    task_id: str
    deleted_count: int
    deleted_ids: list[str] = field(default_factory=list)
    # Direct children turned into roots (non-cascade delete only).
    orphaned_children: list[str] = field(default_factory=list)
    # Tasks that depended on a deleted task; surfaced as a warning, never resolved.
    dependents: list[str] = field(default_factory=list)


class DeletionPropagator:
    """
    Deletes a task and keeps the graphs consistent.

    - cascade=False (or no children): children are orphaned, edges purged, task deleted.
    - cascade=True: the whole subtree (breadth-first, no revisits) is purged and deleted.

    After either path no edge references a deleted task. The cascade is a
    sequence of per-task deletes, not one transaction: a crash midway leaves a
    partially deleted subtree whose remaining tasks are still consistent.
    """

    def __init__(self, store: TaskRepo, graph: RelationshipRepo) -> None:
        self._store = store
        self._graph = graph

    def delete(self, task_id: str, cascade: bool = False) -> DeletionResult:
        task_id = normalize_id(task_id)

        with self._store.lock:
            if not self._store.exists(task_id):
                raise NotFoundError(task_id)

            children = self._graph.get_children(task_id)

            if not children or not cascade:
                dependents = self._graph.get_dependents(task_id)
                self._graph.orphan_children(task_id)
                self._graph.remove_all_relationships(task_id)
                self._store.delete(task_id)
                logger.info("Task deleted id=%s orphaned=%s", task_id, len(children))
                return DeletionResult(
                    task_id=task_id,
                    deleted_count=1,
                    deleted_ids=[task_id],
                    orphaned_children=children,
                    dependents=dependents,
                )

            doomed = [task_id, *self._graph.get_all_descendants(task_id)]
            doomed_set = set(doomed)
            dependents = [
                d for d in self._graph.get_dependents(task_id) if d not in doomed_set
            ]

            for doomed_id in doomed:
                self._graph.remove_all_relationships(doomed_id)
            for doomed_id in doomed:
                self._store.delete(doomed_id)

        logger.info("Task cascade-deleted id=%s count=%s", task_id, len(doomed))
        return DeletionResult(
            task_id=task_id,
            deleted_count=len(doomed),
            deleted_ids=doomed,
            dependents=dependents,
        )
