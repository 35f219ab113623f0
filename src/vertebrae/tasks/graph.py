# src/vertebrae/tasks/graph.py

"""
Relationship graph over task ids.

Two independent edge kinds share the same node set:
- child_of:   child -> parent   (hierarchy, at most one parent by convention)
- depends_on: task  -> blocker  (dependency, many-to-many)

Creating an existing edge and removing a missing edge are both no-ops.
No cycle check happens here; the workflow layer (task_api.py) uses
would_create_cycle() before creating edges.
"""

from __future__ import annotations

import logging
import time
from collections import deque
from dataclasses import dataclass, field

from .errors import NotFoundError
from .task_models import TaskStatus, TaskSummary, normalize_id
from .task_store import TaskStore

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class BlockerNode:
    """A blocker and (recursively) the tasks blocking it."""

    id: str
    title: str
    status: TaskStatus
    children: list[BlockerNode] = field(default_factory=list)


class RelationshipGraph:
    def __init__(self, store: TaskStore) -> None:
        self._store = store

    def _require(self, *task_ids: str) -> None:
        for task_id in task_ids:
            if not self._store.exists(task_id):
                raise NotFoundError(task_id)

    # ---- hierarchy (child_of) ----

    def set_parent(self, child_id: str, parent_id: str) -> None:
        """Create child -> parent. Removing an existing parent edge first is the caller's job."""
        child_id, parent_id = normalize_id(child_id), normalize_id(parent_id)
        self._require(child_id, parent_id)
        with self._store.connection() as conn:
            conn.execute(
                "INSERT OR IGNORE INTO child_of(child, parent, created_at) VALUES (?, ?, ?)",
                (child_id, parent_id, time.time()),
            )
        logger.debug("child_of created %s -> %s", child_id, parent_id)

    def remove_parent(self, child_id: str) -> None:
        child_id = normalize_id(child_id)
        with self._store.connection() as conn:
            conn.execute("DELETE FROM child_of WHERE child = ?", (child_id,))

    def get_parent(self, child_id: str) -> str | None:
        child_id = normalize_id(child_id)
        with self._store.connection() as conn:
            row = conn.execute(
                "SELECT parent FROM child_of WHERE child = ? ORDER BY created_at ASC, rowid ASC LIMIT 1",
                (child_id,),
            ).fetchone()
            return str(row["parent"]) if row else None

    def get_children(self, parent_id: str) -> list[str]:
        """Direct children only."""
        parent_id = normalize_id(parent_id)
        with self._store.connection() as conn:
            rows = conn.execute(
                "SELECT child FROM child_of WHERE parent = ? ORDER BY created_at ASC, rowid ASC",
                (parent_id,),
            ).fetchall()
            return [str(r["child"]) for r in rows]

    def orphan_children(self, parent_id: str) -> None:
        """Remove every child_of edge pointing at parent_id; those children become roots."""
        parent_id = normalize_id(parent_id)
        with self._store.connection() as conn:
            cur = conn.execute("DELETE FROM child_of WHERE parent = ?", (parent_id,))
            if cur.rowcount:
                logger.debug("Orphaned %s children of %s", cur.rowcount, parent_id)

    # ---- dependencies (depends_on) ----

    def add_dependency(self, dependent_id: str, blocker_id: str) -> None:
        dependent_id, blocker_id = normalize_id(dependent_id), normalize_id(blocker_id)
        self._require(dependent_id, blocker_id)
        with self._store.connection() as conn:
            conn.execute(
                "INSERT OR IGNORE INTO depends_on(task, blocker, created_at) VALUES (?, ?, ?)",
                (dependent_id, blocker_id, time.time()),
            )
        logger.debug("depends_on created %s -> %s", dependent_id, blocker_id)

    def remove_dependency(self, dependent_id: str, blocker_id: str) -> None:
        dependent_id, blocker_id = normalize_id(dependent_id), normalize_id(blocker_id)
        with self._store.connection() as conn:
            conn.execute(
                "DELETE FROM depends_on WHERE task = ? AND blocker = ?",
                (dependent_id, blocker_id),
            )

    def dependency_exists(self, dependent_id: str, blocker_id: str) -> bool:
        dependent_id, blocker_id = normalize_id(dependent_id), normalize_id(blocker_id)
        with self._store.connection() as conn:
            row = conn.execute(
                "SELECT 1 FROM depends_on WHERE task = ? AND blocker = ? LIMIT 1",
                (dependent_id, blocker_id),
            ).fetchone()
            return row is not None

    def get_dependencies(self, dependent_id: str) -> list[str]:
        """Blockers of dependent_id."""
        dependent_id = normalize_id(dependent_id)
        with self._store.connection() as conn:
            rows = conn.execute(
                "SELECT blocker FROM depends_on WHERE task = ? ORDER BY created_at ASC, rowid ASC",
                (dependent_id,),
            ).fetchall()
            return [str(r["blocker"]) for r in rows]

    def get_dependents(self, blocker_id: str) -> list[str]:
        """Tasks that depend on blocker_id."""
        blocker_id = normalize_id(blocker_id)
        with self._store.connection() as conn:
            rows = conn.execute(
                "SELECT task FROM depends_on WHERE blocker = ? ORDER BY created_at ASC, rowid ASC",
                (blocker_id,),
            ).fetchall()
            return [str(r["task"]) for r in rows]

    def remove_all_relationships(self, task_id: str) -> None:
        """Purge task_id from every edge role: child, parent, dependent, blocker."""
        task_id = normalize_id(task_id)
        with self._store.connection() as conn:
            conn.execute("DELETE FROM child_of WHERE child = ? OR parent = ?", (task_id, task_id))
            conn.execute("DELETE FROM depends_on WHERE task = ? OR blocker = ?", (task_id, task_id))

    def export_child_of(self) -> list[tuple[str, str]]:
        with self._store.connection() as conn:
            rows = conn.execute(
                "SELECT child, parent FROM child_of ORDER BY created_at ASC, rowid ASC"
            ).fetchall()
            return [(str(r["child"]), str(r["parent"])) for r in rows]

    def export_depends_on(self) -> list[tuple[str, str]]:
        with self._store.connection() as conn:
            rows = conn.execute(
                "SELECT task, blocker FROM depends_on ORDER BY created_at ASC, rowid ASC"
            ).fetchall()
            return [(str(r["task"]), str(r["blocker"])) for r in rows]

    # ---- traversal ----

    def get_all_descendants(self, task_id: str) -> list[str]:
        """
        Children, grandchildren, ... in breadth-first order (task_id excluded).

        Never revisits a node, so an ill-formed cycle cannot loop forever.
        """
        root = normalize_id(task_id)
        seen = {root}
        out: list[str] = []
        queue = deque([root])
        while queue:
            current = queue.popleft()
            for child in self.get_children(current):
                if child in seen:
                    continue
                seen.add(child)
                out.append(child)
                queue.append(child)
        return out

    def get_ancestor_chain(self, task_id: str) -> list[str]:
        """Parent, grandparent, ... up to the root."""
        current = normalize_id(task_id)
        seen = {current}
        chain: list[str] = []
        while True:
            parent = self.get_parent(current)
            if parent is None or parent in seen:
                return chain
            chain.append(parent)
            seen.add(parent)
            current = parent

    def find_path(self, from_id: str, to_id: str) -> list[str] | None:
        """Shortest depends_on path from_id -> ... -> to_id, or None."""
        from_id, to_id = normalize_id(from_id), normalize_id(to_id)
        if from_id == to_id:
            return [from_id]

        previous: dict[str, str] = {}
        seen = {from_id}
        queue = deque([from_id])
        while queue:
            current = queue.popleft()
            for dep in self.get_dependencies(current):
                if dep in seen:
                    continue
                seen.add(dep)
                previous[dep] = current
                if dep == to_id:
                    path = [dep]
                    while path[-1] != from_id:
                        path.append(previous[path[-1]])
                    path.reverse()
                    return path
                queue.append(dep)
        return None

    def would_create_cycle(self, dependent_id: str, blocker_id: str) -> bool:
        """True if adding dependent -> blocker closes a depends_on cycle (self-edges included)."""
        dependent_id, blocker_id = normalize_id(dependent_id), normalize_id(blocker_id)
        if dependent_id == blocker_id:
            return True
        return self.find_path(blocker_id, dependent_id) is not None

    def get_cycle_path(self, dependent_id: str, blocker_id: str) -> str:
        """Render the cycle that dependent -> blocker would close, e.g. "a -> b -> c -> a"."""
        dependent_id, blocker_id = normalize_id(dependent_id), normalize_id(blocker_id)
        back = self.find_path(blocker_id, dependent_id)
        if back is None:
            return f"{dependent_id} -> ... -> {blocker_id}"
        return " -> ".join([dependent_id, *back])

    def would_create_parent_cycle(self, child_id: str, parent_id: str) -> bool:
        """True if making parent_id the parent of child_id puts child_id above itself."""
        child_id, parent_id = normalize_id(child_id), normalize_id(parent_id)
        if child_id == parent_id:
            return True
        return child_id in self.get_ancestor_chain(parent_id)

    def get_incomplete_dependencies(self, task_id: str) -> list[TaskSummary]:
        """Blockers of task_id whose status is not done."""
        out: list[TaskSummary] = []
        for blocker_id in self.get_dependencies(task_id):
            blocker = self._store.get(blocker_id)
            if blocker is not None and blocker.status != TaskStatus.DONE:
                out.append(blocker.summary())
        return out

    def get_blockers(self, task_id: str, max_depth: int | None = None) -> list[BlockerNode]:
        """Tree of blockers (blockers of blockers, ...) limited by max_depth."""
        root = normalize_id(task_id)
        return self._blocker_tree(root, 0, max_depth, frozenset({root}))

    def _blocker_tree(
        self,
        task_id: str,
        depth: int,
        max_depth: int | None,
        path: frozenset[str],
    ) -> list[BlockerNode]:
        if max_depth is not None and depth >= max_depth:
            return []
        nodes: list[BlockerNode] = []
        for blocker_id in self.get_dependencies(task_id):
            blocker = self._store.get(blocker_id)
            if blocker is None:
                continue
            children = (
                []
                if blocker_id in path
                else self._blocker_tree(blocker_id, depth + 1, max_depth, path | {blocker_id})
            )
            nodes.append(
                BlockerNode(
                    id=blocker.id,
                    title=blocker.title,
                    status=blocker.status,
                    children=children,
                )
            )
        return nodes
