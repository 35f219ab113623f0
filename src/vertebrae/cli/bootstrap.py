# src/vertebrae/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- loads settings once,
- ensures local (gitignored) directories exist,
- wires the store, the graph and the derived components into AppState.
"""

from __future__ import annotations

import logging

from ..config import get_settings
from ..core.state import AppState
from ..tasks.completion import CompletionPropagator
from ..tasks.deletion import DeletionPropagator
from ..tasks.graph import RelationshipGraph
from ..tasks.readiness import ReadinessEngine
from ..tasks.task_store import TaskStore
from ..tasks.triage import TriageValidator

logger = logging.getLogger(__name__)


def _ensure_local_dirs(settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.db_path.parent.mkdir(parents=True, exist_ok=True)


def create_initial_state(*, settings=None) -> AppState:
    """
    Create AppState from the provided settings.

    Keeping settings injectable makes the app easier to test and avoids hidden global config reads.
    If settings is None, falls back to get_settings().
    """
    if settings is None:
        settings = get_settings()

    _ensure_local_dirs(settings)

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
