# src/vertebrae/tasks/task_store.py

from __future__ import annotations

import contextlib
import json
import logging
import secrets
import sqlite3
import threading
import time
from collections.abc import Iterable, Iterator
from pathlib import Path
from typing import Any

from .errors import NotFoundError, StorageError, ValidationError
from .lifecycle import check_transition
from .task_models import (
    UNSET,
    CodeRef,
    Level,
    Priority,
    Section,
    SectionType,
    Task,
    TaskFilter,
    TaskStatus,
    TaskSummary,
    TaskUpdate,
    normalize_id,
    with_section,
)

logger = logging.getLogger(__name__)

_HIDDEN_BY_DEFAULT = (TaskStatus.DONE.value, TaskStatus.REJECTED.value)


class TaskStore:
    """
    SQLite task store.

    Holds task records plus the two edge tables (child_of, depends_on); the
    edge tables are read and written by RelationshipGraph through connection().

    The schema is migration-safe:
    - create tables if missing
    - use PRAGMA table_info to detect missing columns
    - add columns with ALTER TABLE only when needed

    Concurrency:
    - each method opens its own SQLite connection
    - `lock` is a re-entrant, store-wide mutex; read-modify-write operations and
      multi-step operations in other components hold it for their whole duration
    """

    def __init__(self, db_path: str | Path = "tasks.sqlite3") -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self.lock = threading.RLock()
        self._ensure_schema()
        logger.info("TaskStore ready db=%s total=%s", self._db_path, self.count_tasks())

    @property
    def db_path(self) -> Path:
        return self._db_path

    def close(self) -> None:
        """Compatibility hook for shutdown (no persistent connections to close)."""
        return

    # ---- low-level helpers ----

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        self._configure_conn(conn)
        return conn

    @staticmethod
    def _configure_conn(conn: sqlite3.Connection) -> None:
        with contextlib.suppress(sqlite3.Error):
            conn.execute("PRAGMA journal_mode=WAL")

    @contextlib.contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        """
        Short-lived connection; commits on success, rolls back on any error.

        sqlite3 errors are re-raised as StorageError.
        """
        try:
            conn = self._get_conn()
        except sqlite3.Error as exc:
            raise StorageError(f"Failed to open task database at {self._db_path}: {exc}") from exc
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as exc:
            conn.rollback()
            raise StorageError(f"Storage operation failed: {exc}") from exc
        except BaseException:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _ensure_schema(self) -> None:
        with self.connection() as conn:
            cur = conn.cursor()

            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS tasks (
                    id TEXT PRIMARY KEY,
                    title TEXT NOT NULL,
                    level TEXT NOT NULL DEFAULT 'task',
                    status TEXT NOT NULL DEFAULT 'todo',
                    priority TEXT,
                    tags TEXT NOT NULL DEFAULT '[]',
                    sections TEXT NOT NULL DEFAULT '[]',
                    created_at REAL NOT NULL,
                    updated_at REAL NOT NULL
                )
                """
            )

            # Migrations (safe): add missing columns.
            cur.execute("PRAGMA table_info(tasks)")
            cols = {row["name"] for row in cur.fetchall()}

            def add_col(name: str, decl: str) -> None:
                if name in cols:
                    return
                cur.execute(f"ALTER TABLE tasks ADD COLUMN {name} {decl}")
                logger.info("TaskStore migration: added column %s", name)

            add_col("refs", "TEXT NOT NULL DEFAULT '[]'")
            add_col("needs_human_review", "INTEGER NOT NULL DEFAULT 0")
            add_col("started_at", "REAL")
            add_col("completed_at", "REAL")

            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS child_of (
                    child TEXT NOT NULL,
                    parent TEXT NOT NULL,
                    created_at REAL NOT NULL,
                    PRIMARY KEY (child, parent)
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS depends_on (
                    task TEXT NOT NULL,
                    blocker TEXT NOT NULL,
                    created_at REAL NOT NULL,
                    PRIMARY KEY (task, blocker)
                )
                """
            )

            cur.execute("CREATE INDEX IF NOT EXISTS idx_tasks_status ON tasks(status)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_child_of_parent ON child_of(parent)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_depends_on_blocker ON depends_on(blocker)")

    @staticmethod
    def _list_to_str(items: Iterable[Any]) -> str:
        return json.dumps(list(items), ensure_ascii=False)

    @staticmethod
    def _str_to_list(s: str | None) -> list[Any]:
        if not s:
            return []
        try:
            val = json.loads(s)
        except json.JSONDecodeError:
            logger.warning("Malformed JSON column value ignored: %r", s[:80])
            return []
        return val if isinstance(val, list) else []

    def _row_to_task(self, row: sqlite3.Row) -> Task:
        return Task(
            id=str(row["id"]),
            title=str(row["title"] or ""),
            level=Level.from_db(row["level"]),
            status=TaskStatus.from_db(row["status"]),
            priority=Priority.from_db(row["priority"]),
            tags=[str(t) for t in self._str_to_list(row["tags"])],
            sections=[Section.from_dict(s) for s in self._str_to_list(row["sections"])],
            code_refs=[CodeRef.from_dict(r) for r in self._str_to_list(row["refs"])],
            needs_human_review=bool(row["needs_human_review"]),
            created_at=float(row["created_at"] or 0.0),
            updated_at=float(row["updated_at"] or 0.0),
            started_at=float(row["started_at"]) if row["started_at"] is not None else None,
            completed_at=float(row["completed_at"]) if row["completed_at"] is not None else None,
        )

    @staticmethod
    def _fetch_row(conn: sqlite3.Connection, task_id: str) -> sqlite3.Row:
        row = conn.execute("SELECT * FROM tasks WHERE id = ?", (task_id,)).fetchone()
        if row is None:
            raise NotFoundError(task_id)
        return row

    # ---- public API ----

    def count_tasks(self) -> int:
        with self.connection() as conn:
            (n,) = conn.execute("SELECT COUNT(*) FROM tasks").fetchone()
            return int(n)

    def exists(self, task_id: str) -> bool:
        task_id = normalize_id(task_id)
        with self.connection() as conn:
            row = conn.execute("SELECT 1 FROM tasks WHERE id = ? LIMIT 1", (task_id,)).fetchone()
            return row is not None

    def generate_id(self, length: int = 6, max_attempts: int = 100) -> str:
        """Random lowercase hex id that is not taken yet."""
        nbytes = (max(1, length) + 1) // 2
        for _ in range(max_attempts):
            candidate = secrets.token_hex(nbytes)[:length]
            if not self.exists(candidate):
                return candidate
        raise StorageError("Failed to generate a unique task id after maximum retries")

    def create(self, task_id: str, task: Task) -> None:
        task_id = normalize_id(task_id)
        title = (task.title or "").strip()
        if not title:
            raise ValidationError("Task title cannot be empty")

        now = time.time()
        created_at = task.created_at if task.created_at is not None else now
        updated_at = task.updated_at if task.updated_at is not None else created_at
        completed_at = task.completed_at
        if completed_at is None and task.status == TaskStatus.DONE:
            # created directly as done
            completed_at = created_at

        with self.lock, self.connection() as conn:
            if conn.execute("SELECT 1 FROM tasks WHERE id = ?", (task_id,)).fetchone():
                raise ValidationError(f"Task '{task_id}' already exists")
            conn.execute(
                """
                INSERT INTO tasks(
                    id, title, level, status, priority,
                    tags, sections, refs, needs_human_review,
                    created_at, updated_at, started_at, completed_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    task_id,
                    title,
                    task.level.value,
                    task.status.value,
                    task.priority.value if task.priority else None,
                    self._list_to_str(dict.fromkeys(task.tags)),
                    self._list_to_str(s.to_dict() for s in task.sections),
                    self._list_to_str(r.to_dict() for r in task.code_refs),
                    1 if task.needs_human_review else 0,
                    created_at,
                    updated_at,
                    task.started_at,
                    completed_at,
                ),
            )
        logger.debug("Task created id=%s level=%s status=%s", task_id, task.level, task.status)

    def get(self, task_id: str) -> Task | None:
        task_id = normalize_id(task_id)
        with self.connection() as conn:
            row = conn.execute("SELECT * FROM tasks WHERE id = ?", (task_id,)).fetchone()
            return self._row_to_task(row) if row else None

    def require(self, task_id: str) -> Task:
        task = self.get(task_id)
        if task is None:
            raise NotFoundError(normalize_id(task_id))
        return task

    def update(self, task_id: str, updates: TaskUpdate) -> None:
        """
        Apply a sparse update atomically.

        A status change is validated against the stored status first; an invalid
        transition fails the whole update. Every applied update refreshes updated_at.
        """
        task_id = normalize_id(task_id)
        if not updates.has_updates():
            return

        now = time.time()
        fields: list[str] = []
        params: list[Any] = []

        with self.lock, self.connection() as conn:
            current = self._row_to_task(self._fetch_row(conn, task_id))

            if updates.status is not None:
                check_transition(task_id, current.status, updates.status)
                fields.append("status = ?")
                params.append(updates.status.value)
                if updates.status == TaskStatus.DONE:
                    fields.append("completed_at = ?")
                    params.append(now)

            if updates.title is not None:
                title = updates.title.strip()
                if not title:
                    raise ValidationError("Task title cannot be empty")
                fields.append("title = ?")
                params.append(title)

            if updates.priority is not UNSET:
                fields.append("priority = ?")
                params.append(updates.priority.value if updates.priority else None)

            if updates.add_tags or updates.remove_tags:
                removed = set(updates.remove_tags)
                tags = [t for t in current.tags if t not in removed]
                for tag in updates.add_tags:
                    if tag not in tags:
                        tags.append(tag)
                fields.append("tags = ?")
                params.append(self._list_to_str(tags))

            if updates.sections is not UNSET:
                fields.append("sections = ?")
                params.append(self._list_to_str(s.to_dict() for s in updates.sections or []))

            if updates.code_refs is not UNSET:
                fields.append("refs = ?")
                params.append(self._list_to_str(r.to_dict() for r in updates.code_refs or []))

            if updates.needs_human_review is not None:
                fields.append("needs_human_review = ?")
                params.append(1 if updates.needs_human_review else 0)

            if updates.started_at is not None:
                fields.append("started_at = ?")
                params.append(float(updates.started_at))
            elif updates.started_at_if_null:
                fields.append("started_at = COALESCE(started_at, ?)")
                params.append(now)

            fields.append("updated_at = ?")
            params.append(now)
            params.append(task_id)

            conn.execute(f"UPDATE tasks SET {', '.join(fields)} WHERE id = ?", params)

        logger.debug("Task updated id=%s fields=%s", task_id, len(fields) - 1)

    def touch(self, task_id: str) -> None:
        task_id = normalize_id(task_id)
        with self.connection() as conn:
            cur = conn.execute("UPDATE tasks SET updated_at = ? WHERE id = ?", (time.time(), task_id))
            if cur.rowcount == 0:
                raise NotFoundError(task_id)

    def mark_done(self, task_id: str, now_ts: float | None = None) -> float:
        """
        Set status=done, updated_at and completed_at without lifecycle validation.

        Only the completion path calls this. Returns the completion timestamp.
        """
        task_id = normalize_id(task_id)
        if now_ts is None:
            now_ts = time.time()
        with self.connection() as conn:
            cur = conn.execute(
                """
                UPDATE tasks
                SET status = 'done',
                    updated_at = ?,
                    completed_at = ?
                WHERE id = ?
                """,
                (now_ts, now_ts, task_id),
            )
            if cur.rowcount == 0:
                raise NotFoundError(task_id)
        return now_ts

    def delete(self, task_id: str) -> None:
        """Delete the task record only. Edges are purged by the caller (see deletion.py)."""
        task_id = normalize_id(task_id)
        with self.connection() as conn:
            cur = conn.execute("DELETE FROM tasks WHERE id = ?", (task_id,))
            if cur.rowcount == 0:
                raise NotFoundError(task_id)
        logger.debug("Task deleted id=%s", task_id)

    # ---- sections ----

    def add_section(self, task_id: str, section_type: SectionType, content: str) -> Section:
        """
        Add a section by whole-array replacement.

        Single-instance types replace the existing one; multi-instance types get
        ordinal = max + 1 (0 for the first).
        """
        content = (content or "").strip()
        if not content:
            raise ValidationError("Section content cannot be empty")

        with self.lock:
            task = self.require(task_id)
            sections = with_section(task.sections, section_type, content)
            self.update(task.id, TaskUpdate(sections=sections))

        added = [s for s in sections if s.section_type == section_type]
        return added[0] if section_type.is_single_instance else added[-1]

    def remove_sections(self, task_id: str, section_type: SectionType) -> int:
        """Remove every section of a type. Returns how many were removed."""
        with self.lock:
            task = self.require(task_id)
            kept = [s for s in task.sections if s.section_type != section_type]
            removed = len(task.sections) - len(kept)
            if removed:
                self.update(task.id, TaskUpdate(sections=kept))
            return removed

    def mark_step_done(self, task_id: str, index: int) -> Section:
        """
        Mark the index-th step (1-based, ordered by ordinal) as done.

        Out-of-range indices raise ValidationError.
        """
        if index < 1:
            raise ValidationError("Step index must be 1 or greater")

        with self.lock:
            task = self.require(task_id)
            steps = task.steps()
            if index > len(steps):
                raise ValidationError(f"Step {index} not found. Task has {len(steps)} step(s).")

            target = steps[index - 1]
            target.done = True
            target.done_at = time.time()
            # `target` is the same object held in task.sections
            self.update(task.id, TaskUpdate(sections=task.sections))
            return target

    # ---- queries ----

    def list_by_status(self, status: TaskStatus) -> list[Task]:
        with self.connection() as conn:
            rows = conn.execute(
                "SELECT * FROM tasks WHERE status = ? ORDER BY created_at ASC, rowid ASC",
                (status.value,),
            ).fetchall()
            return [self._row_to_task(r) for r in rows]

    def get_statuses(self, task_ids: Iterable[str] | None = None) -> dict[str, TaskStatus]:
        """id -> status for the given ids (all tasks if None). Missing ids are omitted."""
        with self.connection() as conn:
            if task_ids is None:
                rows = conn.execute("SELECT id, status FROM tasks").fetchall()
            else:
                ids = [normalize_id(t) for t in task_ids]
                if not ids:
                    return {}
                placeholders = ",".join("?" for _ in ids)
                rows = conn.execute(
                    f"SELECT id, status FROM tasks WHERE id IN ({placeholders})", ids
                ).fetchall()
            return {str(r["id"]): TaskStatus.from_db(r["status"]) for r in rows}

    def list_tasks(self, task_filter: TaskFilter | None = None) -> list[TaskSummary]:
        """Filtered listing, newest first."""
        f = task_filter or TaskFilter()
        clauses: list[str] = []
        params: list[Any] = []

        def add_in(column: str, values: list[str]) -> None:
            placeholders = ",".join("?" for _ in values)
            clauses.append(f"{column} IN ({placeholders})")
            params.extend(values)

        if f.levels:
            add_in("level", [lv.value for lv in f.levels])
        if f.statuses:
            add_in("status", [st.value for st in f.statuses])
        elif not f.include_done:
            clauses.append("status NOT IN (?, ?)")
            params.extend(_HIDDEN_BY_DEFAULT)
        if f.priorities:
            add_in("priority", [p.value for p in f.priorities])
        if f.root_only:
            clauses.append("NOT EXISTS (SELECT 1 FROM child_of c WHERE c.child = tasks.id)")
        if f.children_of:
            clauses.append(
                "EXISTS (SELECT 1 FROM child_of c WHERE c.child = tasks.id AND c.parent = ?)"
            )
            params.append(normalize_id(f.children_of))
        if f.search and f.search.strip():
            clauses.append("LOWER(title) LIKE ?")
            params.append(f"%{f.search.strip().lower()}%")

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        sql = f"SELECT * FROM tasks {where} ORDER BY created_at DESC, rowid DESC"

        with self.connection() as conn:
            tasks = [self._row_to_task(r) for r in conn.execute(sql, params).fetchall()]

        if f.tags:
            wanted = set(f.tags)
            tasks = [t for t in tasks if wanted.issubset(t.tags)]
        return [t.summary() for t in tasks]

    def export_all(self) -> list[Task]:
        with self.connection() as conn:
            rows = conn.execute("SELECT * FROM tasks ORDER BY created_at ASC, rowid ASC").fetchall()
            return [self._row_to_task(r) for r in rows]
