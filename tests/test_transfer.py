# tests/test_transfer.py

from __future__ import annotations

import json
from pathlib import Path

import pytest

from vertebrae.core.state import AppState
from vertebrae.tasks import task_api
from vertebrae.tasks.completion import CompletionPropagator
from vertebrae.tasks.deletion import DeletionPropagator
from vertebrae.tasks.errors import ValidationError
from vertebrae.tasks.graph import RelationshipGraph
from vertebrae.tasks.readiness import ReadinessEngine
from vertebrae.tasks.task_models import SectionType, TaskStatus, TaskUpdate
from vertebrae.tasks.task_store import TaskStore
from vertebrae.tasks.transfer import export_jsonl, import_jsonl
from vertebrae.tasks.triage import TriageValidator


def _fresh_state(settings, db_path: Path) -> AppState:
    store = TaskStore(db_path)
    graph = RelationshipGraph(store)
    return AppState(
        settings=settings,
        store=store,
        graph=graph,
        readiness=ReadinessEngine(store, graph),
        completion=CompletionPropagator(store, graph),
        deletion=DeletionPropagator(store, graph),
        triage=TriageValidator(),
    )


def test_export_writes_tasks_then_edges(state, tmp_path: Path) -> None:
    epic = task_api.add_task(state, "epic")
    child = task_api.add_task(state, "child", parent=epic.id, depends_on=[epic.id])

    result = export_jsonl(state, tmp_path / "out" / "tasks.jsonl")

    assert (result.tasks, result.child_of, result.depends_on) == (2, 1, 1)
    records = [json.loads(line) for line in result.path.read_text("utf-8").splitlines()]
    assert [r["type"] for r in records] == ["task", "task", "child_of", "depends_on"]
    assert records[2] == {"type": "child_of", "child": child.id, "parent": epic.id}
    assert records[3] == {"type": "depends_on", "task": child.id, "blocker": epic.id}


def test_import_restores_tasks_and_edges(state, settings, tmp_path: Path) -> None:
    epic = task_api.add_task(state, "epic")
    child = task_api.add_task(state, "child", parent=epic.id, depends_on=[epic.id])
    task_api.add_section(state, child.id, SectionType.STEP, "do it")
    task_api.complete(state, epic.id)
    path = export_jsonl(state, tmp_path / "tasks.jsonl").path

    target = _fresh_state(settings, tmp_path / "other.sqlite3")
    result = import_jsonl(target, path)

    assert (result.created, result.overwritten, result.edges) == (2, 0, 2)
    restored = target.store.require(child.id)
    assert [s.content for s in restored.steps()] == ["do it"]
    assert target.store.require(epic.id).status == TaskStatus.DONE
    assert target.graph.get_parent(child.id) == epic.id
    assert target.graph.get_dependencies(child.id) == [epic.id]


def test_import_overwrites_or_skips_existing(state, tmp_path: Path) -> None:
    task = task_api.add_task(state, "original")
    path = export_jsonl(state, tmp_path / "tasks.jsonl").path
    task_api.update_task(state, task.id, TaskUpdate(title="changed"))

    skipped = import_jsonl(state, path, skip_existing=True)
    assert skipped.skipped == 1
    assert state.store.require(task.id).title == "changed"

    overwritten = import_jsonl(state, path)
    assert overwritten.overwritten == 1
    assert state.store.require(task.id).title == "original"


def test_malformed_line_names_line_number(state, tmp_path: Path) -> None:
    path = tmp_path / "bad.jsonl"
    path.write_text(
        json.dumps({"type": "task", "id": "abc", "title": "ok"}) + "\n{not json\n",
        "utf-8",
    )

    with pytest.raises(ValidationError, match="Line 2"):
        import_jsonl(state, path)
    # nothing is written when the file does not parse
    assert state.store.count_tasks() == 0


def test_non_numeric_timestamp_is_rejected(state, tmp_path: Path) -> None:
    path = tmp_path / "bad.jsonl"
    path.write_text(
        json.dumps({"type": "task", "id": "abc123", "title": "x", "created_at": "yesterday"}) + "\n",
        "utf-8",
    )

    with pytest.raises(ValidationError, match="Line 1: Field 'created_at'"):
        import_jsonl(state, path)

    assert state.store.count_tasks() == 0
    assert task_api.list_tasks(state) == []


@pytest.mark.parametrize(
    ("field", "value"),
    [
        ("sections", {"goal": "g"}),
        ("sections", ["goal"]),
        ("refs", "src/a.py"),
        ("tags", "abc"),
    ],
)
def test_non_list_collections_are_rejected(state, tmp_path: Path, field: str, value) -> None:
    path = tmp_path / "bad.jsonl"
    record = {"type": "task", "id": "abc124", "title": "x", field: value}
    path.write_text(json.dumps(record) + "\n", "utf-8")

    with pytest.raises(ValidationError, match=f"Line 1: Field '{field}'"):
        import_jsonl(state, path)
    assert state.store.count_tasks() == 0


def test_unknown_record_type_and_missing_edge_fields(state, tmp_path: Path) -> None:
    path = tmp_path / "bad.jsonl"
    path.write_text(json.dumps({"type": "comment"}) + "\n", "utf-8")
    with pytest.raises(ValidationError, match="unknown record type"):
        import_jsonl(state, path)

    path.write_text(json.dumps({"type": "child_of", "child": "a"}) + "\n", "utf-8")
    with pytest.raises(ValidationError, match="parent"):
        import_jsonl(state, path)


def test_edges_to_unknown_tasks_are_skipped(state, tmp_path: Path) -> None:
    path = tmp_path / "edges.jsonl"
    path.write_text(
        json.dumps({"type": "task", "id": "aaa111", "title": "a"})
        + "\n"
        + json.dumps({"type": "depends_on", "task": "aaa111", "blocker": "ghost"})
        + "\n",
        "utf-8",
    )

    result = import_jsonl(state, path)

    assert result.created == 1
    assert result.edges == 0
    assert result.skipped_edges == ["depends_on aaa111 -> ghost"]
