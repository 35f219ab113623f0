# tests/test_task_store.py

from __future__ import annotations

import sqlite3
from pathlib import Path

import pytest

from vertebrae.tasks.errors import InvalidStatusTransitionError, NotFoundError, ValidationError
from vertebrae.tasks.task_models import (
    UNSET,
    Level,
    Priority,
    SectionType,
    Task,
    TaskFilter,
    TaskStatus,
    TaskUpdate,
)
from vertebrae.tasks.task_store import TaskStore


def test_create_and_get_is_case_insensitive(store: TaskStore) -> None:
    store.create("AbC123", Task(id="AbC123", title="  Write docs  ", level=Level.TICKET))

    assert store.exists("abc123")
    task = store.get("ABC123")
    assert task is not None
    assert task.id == "abc123"
    assert task.title == "Write docs"
    assert task.level == Level.TICKET
    assert task.status == TaskStatus.TODO
    assert task.created_at is not None
    assert task.updated_at == task.created_at
    assert task.started_at is None
    assert task.completed_at is None


def test_create_rejects_blank_title_and_duplicate_id(store: TaskStore) -> None:
    with pytest.raises(ValidationError):
        store.create("a1", Task(id="a1", title="   "))

    store.create("a1", Task(id="a1", title="first"))
    with pytest.raises(ValidationError, match="already exists"):
        store.create("A1", Task(id="A1", title="second"))


def test_generate_id_is_lowercase_hex_of_requested_length(store: TaskStore) -> None:
    task_id = store.generate_id(length=8)
    assert len(task_id) == 8
    int(task_id, 16)
    assert task_id == task_id.lower()


def test_update_missing_task_raises_not_found(store: TaskStore) -> None:
    with pytest.raises(NotFoundError):
        store.update("nope", TaskUpdate(title="x"))


def test_update_refreshes_updated_at(store: TaskStore) -> None:
    store.create("t1", Task(id="t1", title="t", created_at=1.0, updated_at=1.0))
    store.update("t1", TaskUpdate(title="renamed"))

    task = store.require("t1")
    assert task.title == "renamed"
    assert task.created_at == 1.0
    assert task.updated_at is not None and task.updated_at > 1.0


def test_invalid_status_change_fails_whole_update(store: TaskStore) -> None:
    store.create("t1", Task(id="t1", title="original"))

    with pytest.raises(InvalidStatusTransitionError):
        store.update("t1", TaskUpdate(title="changed", status=TaskStatus.DONE))

    task = store.require("t1")
    assert task.title == "original"
    assert task.status == TaskStatus.TODO


def test_status_change_into_done_sets_completed_at(store: TaskStore) -> None:
    store.create("t1", Task(id="t1", title="t", status=TaskStatus.IN_PROGRESS))
    store.update("t1", TaskUpdate(status=TaskStatus.DONE))

    task = store.require("t1")
    assert task.status == TaskStatus.DONE
    assert task.completed_at is not None


def test_tags_have_set_semantics(store: TaskStore) -> None:
    store.create("t1", Task(id="t1", title="t", tags=["a"]))

    store.update("t1", TaskUpdate(add_tags=["a", "b"]))
    assert store.require("t1").tags == ["a", "b"]

    store.update("t1", TaskUpdate(remove_tags=["missing", "a"]))
    assert store.require("t1").tags == ["b"]


def test_priority_set_and_clear(store: TaskStore) -> None:
    store.create("t1", Task(id="t1", title="t"))

    store.update("t1", TaskUpdate(priority=Priority.HIGH))
    assert store.require("t1").priority == Priority.HIGH

    store.update("t1", TaskUpdate(priority=None))
    assert store.require("t1").priority is None

    # UNSET leaves it alone
    store.update("t1", TaskUpdate(priority=UNSET, title="x"))
    assert store.require("t1").priority is None


def test_started_at_if_null_never_overwrites(store: TaskStore) -> None:
    store.create("t1", Task(id="t1", title="t", started_at=5.0))
    store.update("t1", TaskUpdate(started_at_if_null=True))
    assert store.require("t1").started_at == 5.0

    store.update("t1", TaskUpdate(started_at=7.0))
    assert store.require("t1").started_at == 7.0


def test_sections_and_review_flag_replace(store: TaskStore) -> None:
    store.create("t1", Task(id="t1", title="t"))
    store.add_section("t1", SectionType.GOAL, "goal")
    store.update("t1", TaskUpdate(needs_human_review=True))

    task = store.require("t1")
    assert task.needs_human_review is True
    assert [s.content for s in task.sections] == ["goal"]

    store.update("t1", TaskUpdate(sections=[]))
    assert store.require("t1").sections == []


def test_add_section_rejects_blank_content(store: TaskStore) -> None:
    store.create("t1", Task(id="t1", title="t"))
    with pytest.raises(ValidationError):
        store.add_section("t1", SectionType.STEP, "   ")


def test_remove_sections_removes_all_of_a_type(store: TaskStore) -> None:
    store.create("t1", Task(id="t1", title="t"))
    store.add_section("t1", SectionType.STEP, "a")
    store.add_section("t1", SectionType.STEP, "b")
    store.add_section("t1", SectionType.GOAL, "g")

    assert store.remove_sections("t1", SectionType.STEP) == 2
    assert [s.section_type for s in store.require("t1").sections] == [SectionType.GOAL]
    assert store.remove_sections("t1", SectionType.STEP) == 0


def test_mark_step_done_is_one_based_and_bounded(store: TaskStore) -> None:
    store.create("t1", Task(id="t1", title="t"))
    store.add_section("t1", SectionType.STEP, "first")
    store.add_section("t1", SectionType.STEP, "second")

    section = store.mark_step_done("t1", 2)
    assert section.content == "second"

    steps = store.require("t1").steps()
    assert steps[0].done is None
    assert steps[1].done is True
    assert steps[1].done_at is not None

    with pytest.raises(ValidationError, match="Step 3 not found. Task has 2 step"):
        store.mark_step_done("t1", 3)
    with pytest.raises(ValidationError):
        store.mark_step_done("t1", 0)


def test_mark_done_bypasses_lifecycle(store: TaskStore) -> None:
    store.create("t1", Task(id="t1", title="t", status=TaskStatus.BACKLOG))
    ts = store.mark_done("t1", now_ts=42.0)

    task = store.require("t1")
    assert ts == 42.0
    assert task.status == TaskStatus.DONE
    assert task.completed_at == 42.0
    assert task.updated_at == 42.0


def test_delete_missing_raises_not_found(store: TaskStore) -> None:
    with pytest.raises(NotFoundError):
        store.delete("nope")


def test_list_tasks_filters(store: TaskStore) -> None:
    store.create("a1", Task(id="a1", title="Alpha feature", tags=["ui"], created_at=1.0))
    store.create("b2", Task(id="b2", title="Beta bug", tags=["ui", "bug"], created_at=2.0))
    store.create("c3", Task(id="c3", title="Done thing", status=TaskStatus.DONE, created_at=3.0))

    assert [s.id for s in store.list_tasks()] == ["b2", "a1"]
    assert [s.id for s in store.list_tasks(TaskFilter(include_done=True))] == ["c3", "b2", "a1"]
    assert [s.id for s in store.list_tasks(TaskFilter(tags=["ui", "bug"]))] == ["b2"]
    assert [s.id for s in store.list_tasks(TaskFilter(search="ALPHA"))] == ["a1"]
    assert [s.id for s in store.list_tasks(TaskFilter(statuses=[TaskStatus.DONE]))] == ["c3"]


def test_get_statuses_omits_missing_ids(store: TaskStore) -> None:
    store.create("a1", Task(id="a1", title="a"))
    assert store.get_statuses(["A1", "zz"]) == {"a1": TaskStatus.TODO}
    assert store.get_statuses([]) == {}


def test_schema_migration_adds_missing_columns(tmp_path: Path) -> None:
    db = tmp_path / "old.sqlite3"
    conn = sqlite3.connect(db)
    conn.execute(
        """
        CREATE TABLE tasks (
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
    conn.execute(
        "INSERT INTO tasks(id, title, created_at, updated_at) VALUES ('old1', 'legacy', 1.0, 1.0)"
    )
    conn.commit()
    conn.close()

    store = TaskStore(db)
    task = store.require("old1")
    assert task.title == "legacy"
    assert task.code_refs == []
    assert task.needs_human_review is False
    assert task.started_at is None
    assert task.completed_at is None
