# src/vertebrae/core/state.py

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from ..tasks.completion import CompletionPropagator
from ..tasks.deletion import DeletionPropagator
from ..tasks.graph import RelationshipGraph
from ..tasks.readiness import ReadinessEngine
from ..tasks.task_store import TaskStore
from ..tasks.triage import TriageValidator


@dataclass
class AppState:
    """Everything a workflow call needs, wired once in cli/bootstrap.py."""

    # Settings object (config.Settings in the app, a SimpleNamespace in tests).
    settings: Any

    store: TaskStore
    graph: RelationshipGraph
    readiness: ReadinessEngine
    completion: CompletionPropagator
    deletion: DeletionPropagator
    triage: TriageValidator
