# tests/conftest.py

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from types import SimpleNamespace
from typing import Any

import pytest

from vertebrae.core.state import AppState
from vertebrae.tasks.completion import CompletionPropagator
from vertebrae.tasks.deletion import DeletionPropagator
from vertebrae.tasks.graph import RelationshipGraph
from vertebrae.tasks.readiness import ReadinessEngine
from vertebrae.tasks.task_models import Level, Task, TaskStatus
from vertebrae.tasks.task_store import TaskStore
from vertebrae.tasks.triage import TriageValidator


@pytest.fixture()
def settings(tmp_path: Path) -> SimpleNamespace:
    """
    Minimal settings object compatible with AppState and the workflow layer.

    We intentionally use a SimpleNamespace rather than importing real config,
    to keep unit tests isolated and deterministic.
    """
    return SimpleNamespace(
        app_name="vertebrae-test",
        log_level="DEBUG",
        data_dir=tmp_path,
        db_path=tmp_path / "tasks.sqlite3",
        log_dir=tmp_path,
        id_length=6,
        cycle_check=True,
        triage_force_default=False,
    )


@pytest.fixture()
def state(settings: SimpleNamespace) -> AppState:
    """
    AppState wired like cli/bootstrap.py does it.

    NOTE: We keep a real SQLite store here because its correctness is part of
    what we want to test.
    """
    store = TaskStore(settings.db_path)
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


@pytest.fixture()
def store(state: AppState) -> TaskStore:
    return state.store


@pytest.fixture()
def graph(state: AppState) -> RelationshipGraph:
    return state.graph


@pytest.fixture()
def make_task(store: TaskStore) -> Callable[..., Task]:
    """Create a task straight in the store (no workflow rules) and return it."""

    def _make(
        title: str = "task",
        *,
        status: TaskStatus = TaskStatus.TODO,
        level: Level = Level.TASK,
        **fields: Any,
    ) -> Task:
        task_id = store.generate_id()
        store.create(task_id, Task(id=task_id, title=title, status=status, level=level, **fields))
        return store.require(task_id)

    return _make
