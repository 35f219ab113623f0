# src/vertebrae/tasks/task_api.py

"""
Workflow operations used by the console (and anything else driving the core).

Each function takes the AppState built in cli/bootstrap.py and composes the
store, the relationship graph and the derived components. Two completion paths
exist side by side:
- set_status(..., DONE) / transition_to(..., DONE): validated by the lifecycle
- complete(): unconditional "complete from any status"
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable

from ..core.state import AppState
from .completion import CompletionResult
from .deletion import DeletionResult
from .errors import TriageValidationError, ValidationError
from .lifecycle import check_transition, is_terminal
from .readiness import ReadyResult
from .task_models import (
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
from .triage import TriageResult

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class TransitionResult:
    task_id: str
    from_status: TaskStatus
    to_status: TaskStatus
    already_in_target: bool = False
    # Triage outcome when moving backlog -> todo (warnings/notes that did not block).
    triage: TriageResult | None = None
    # Advisory on start: blockers that are not done yet.
    incomplete_dependencies: list[TaskSummary] = field(default_factory=list)
    # Set when the target was done.
    completion: CompletionResult | None = None


def _cycle_check_enabled(state: AppState) -> bool:
    return bool(getattr(state.settings, "cycle_check", True))


# ---- create / read / update ----


def add_task(
    state: AppState,
    title: str,
    *,
    level: Level = Level.TASK,
    status: TaskStatus = TaskStatus.TODO,
    priority: Priority | None = None,
    tags: Iterable[str] | None = None,
    parent: str | None = None,
    depends_on: Iterable[str] | None = None,
    sections: Iterable[tuple[SectionType, str]] | None = None,
) -> Task:
    """
    Create a task with a fresh id and optional parent / blockers / sections.

    The parent and every blocker must already exist.
    """
    title = (title or "").strip()
    if not title:
        raise ValidationError("Task title cannot be empty")

    parent_id = normalize_id(parent) if parent else None
    blocker_ids = list(dict.fromkeys(normalize_id(b) for b in depends_on or []))

    built: list[Section] = []
    for section_type, content in sections or []:
        content = (content or "").strip()
        if not content:
            raise ValidationError("Section content cannot be empty")
        built = with_section(built, section_type, content)

    store = state.store
    with store.lock:
        for ref in ([parent_id] if parent_id else []) + blocker_ids:
            store.require(ref)

        task_id = store.generate_id(getattr(state.settings, "id_length", 6))
        store.create(
            task_id,
            Task(
                id=task_id,
                title=title,
                level=level,
                status=status,
                priority=priority,
                tags=[t.strip() for t in tags or [] if t.strip()],
                sections=built,
            ),
        )
        if parent_id:
            state.graph.set_parent(task_id, parent_id)
        for blocker_id in blocker_ids:
            state.graph.add_dependency(task_id, blocker_id)

    logger.info("Task added id=%s level=%s status=%s", task_id, level, status)
    return store.require(task_id)


def get_task(state: AppState, task_id: str) -> Task:
    return state.store.require(task_id)


def update_task(state: AppState, task_id: str, updates: TaskUpdate) -> Task:
    """Generic validated update (status changes go through the lifecycle)."""
    state.store.update(task_id, updates)
    return state.store.require(task_id)


def list_tasks(state: AppState, task_filter: TaskFilter | None = None) -> list[TaskSummary]:
    return state.store.list_tasks(task_filter)


# ---- status ----


def set_status(state: AppState, task_id: str, status: TaskStatus) -> TransitionResult:
    """
    Validated status change.

    Same-status requests on a non-terminal task are reported as a no-op;
    on done/rejected they fail like any other transition out of a final state.
    """
    store = state.store
    with store.lock:
        task = store.require(task_id)
        if task.status == status and not is_terminal(status):
            return TransitionResult(task.id, task.status, status, already_in_target=True)

        store.update(
            task.id,
            TaskUpdate(status=status, started_at_if_null=status == TaskStatus.IN_PROGRESS),
        )

    logger.info("Task status id=%s %s -> %s", task.id, task.status, status)
    return TransitionResult(task.id, task.status, status)


def transition_to(
    state: AppState,
    task_id: str,
    target: TaskStatus,
    *,
    reason: str | None = None,
    force: bool | None = None,
    skip_validation: bool = False,
) -> TransitionResult:
    """
    Move a task to `target` with the per-target side effects:

    - todo: triage gating (errors block; warnings block unless force)
    - in_progress: started_at set only once; incomplete blockers reported
    - done: CompletionPropagator (after lifecycle validation)
    - rejected: optional "REJECTED: <reason>" constraint section
    """
    if force is None:
        force = bool(getattr(state.settings, "triage_force_default", False))

    store = state.store
    with store.lock:
        task = store.require(task_id)
        result = TransitionResult(task.id, task.status, target)

        if task.status == target:
            result.already_in_target = True
            if target == TaskStatus.REJECTED and reason and reason.strip():
                _append_rejection_reason(state, task.id, reason)
            return result

        check_transition(task.id, task.status, target)

        if target == TaskStatus.TODO:
            if not skip_validation:
                result.triage = _gate_triage(state, task, force=force)
            store.update(task.id, TaskUpdate(status=target))

        elif target == TaskStatus.IN_PROGRESS:
            store.update(task.id, TaskUpdate(status=target, started_at_if_null=True))
            result.incomplete_dependencies = state.graph.get_incomplete_dependencies(task.id)

        elif target == TaskStatus.DONE:
            result.completion = state.completion.complete(task.id)

        elif target == TaskStatus.REJECTED:
            store.update(task.id, TaskUpdate(status=target))
            if reason and reason.strip():
                _append_rejection_reason(state, task.id, reason)

        else:
            store.update(task.id, TaskUpdate(status=target))

    logger.info("Task transition id=%s %s -> %s", task.id, task.status, target)
    return result


def _gate_triage(state: AppState, task: Task, *, force: bool) -> TriageResult:
    result = state.triage.validate(task)
    if result.has_errors:
        raise TriageValidationError(task.id, result)
    if result.has_warnings and not force:
        raise TriageValidationError(
            task.id,
            result,
            f"Task '{task.id}' has {result.warning_count} triage warning(s); "
            f"use force to triage anyway:\n{result}",
        )
    return result


def _append_rejection_reason(state: AppState, task_id: str, reason: str) -> None:
    state.store.add_section(task_id, SectionType.CONSTRAINT, f"REJECTED: {reason.strip()}")


def triage(
    state: AppState, task_id: str, *, force: bool | None = None, skip_validation: bool = False
) -> TransitionResult:
    """backlog -> todo."""
    return transition_to(
        state, task_id, TaskStatus.TODO, force=force, skip_validation=skip_validation
    )


def start(state: AppState, task_id: str) -> TransitionResult:
    return transition_to(state, task_id, TaskStatus.IN_PROGRESS)


def submit(state: AppState, task_id: str) -> TransitionResult:
    """in_progress -> pending_review."""
    return transition_to(state, task_id, TaskStatus.PENDING_REVIEW)


def block(state: AppState, task_id: str) -> TransitionResult:
    return transition_to(state, task_id, TaskStatus.BLOCKED)


def reject(state: AppState, task_id: str, reason: str | None = None) -> TransitionResult:
    return transition_to(state, task_id, TaskStatus.REJECTED, reason=reason)


def complete(state: AppState, task_id: str) -> CompletionResult:
    """Unconditional completion from any status (no lifecycle validation)."""
    return state.completion.complete(task_id)


# ---- sections / refs / review flag ----


def add_section(state: AppState, task_id: str, section_type: SectionType, content: str) -> Section:
    return state.store.add_section(task_id, section_type, content)


def remove_sections(state: AppState, task_id: str, section_type: SectionType) -> int:
    return state.store.remove_sections(task_id, section_type)


def step_done(state: AppState, task_id: str, index: int) -> Section:
    """Mark the index-th step (1-based) as done."""
    return state.store.mark_step_done(task_id, index)


def add_code_ref(state: AppState, task_id: str, ref: CodeRef) -> Task:
    """Attach a code reference; an identical path + line range replaces the old one."""
    if not (ref.path or "").strip():
        raise ValidationError("Code reference path cannot be empty")

    store = state.store
    with store.lock:
        task = store.require(task_id)
        refs = [
            r
            for r in task.code_refs
            if (r.path, r.line_start, r.line_end) != (ref.path, ref.line_start, ref.line_end)
        ]
        refs.append(ref)
        store.update(task.id, TaskUpdate(code_refs=refs))
        return store.require(task.id)


def remove_code_ref(state: AppState, task_id: str, path: str) -> int:
    """Remove every code reference to `path`. Returns how many were removed."""
    store = state.store
    with store.lock:
        task = store.require(task_id)
        kept = [r for r in task.code_refs if r.path != path]
        removed = len(task.code_refs) - len(kept)
        if removed:
            store.update(task.id, TaskUpdate(code_refs=kept))
        return removed


def set_review(state: AppState, task_id: str, value: bool | None = None) -> bool:
    """Set the needs_human_review flag; value=None toggles it. Returns the new value."""
    store = state.store
    with store.lock:
        task = store.require(task_id)
        new_value = (not task.needs_human_review) if value is None else bool(value)
        store.update(task.id, TaskUpdate(needs_human_review=new_value))
    return new_value


# ---- relationships ----


def depend(state: AppState, task_id: str, blocker_id: str) -> None:
    """task_id becomes blocked by blocker_id."""
    task_id, blocker_id = normalize_id(task_id), normalize_id(blocker_id)
    if task_id == blocker_id:
        raise ValidationError("A task cannot depend on itself")

    with state.store.lock:
        state.store.require(task_id)
        state.store.require(blocker_id)
        if _cycle_check_enabled(state) and state.graph.would_create_cycle(task_id, blocker_id):
            path = state.graph.get_cycle_path(task_id, blocker_id)
            raise ValidationError(f"Adding this dependency would create a cycle: {path}")
        state.graph.add_dependency(task_id, blocker_id)

    logger.info("Dependency added %s blocked-by %s", task_id, blocker_id)


def undepend(state: AppState, task_id: str, blocker_id: str) -> None:
    state.graph.remove_dependency(task_id, blocker_id)


def set_parent(state: AppState, child_id: str, parent_id: str) -> str | None:
    """Make parent_id the (only) parent of child_id. Returns the replaced parent, if any."""
    child_id, parent_id = normalize_id(child_id), normalize_id(parent_id)
    if child_id == parent_id:
        raise ValidationError("A task cannot be its own parent")

    graph = state.graph
    with state.store.lock:
        state.store.require(child_id)
        state.store.require(parent_id)
        if _cycle_check_enabled(state) and graph.would_create_parent_cycle(child_id, parent_id):
            raise ValidationError(
                f"Cannot make '{parent_id}' the parent of '{child_id}': "
                f"'{child_id}' is already above it in the hierarchy"
            )
        previous = graph.get_parent(child_id)
        if previous == parent_id:
            return previous
        graph.remove_parent(child_id)
        graph.set_parent(child_id, parent_id)

    logger.info("Parent set %s -> %s (was %s)", child_id, parent_id, previous)
    return previous


def unparent(state: AppState, child_id: str) -> None:
    state.graph.remove_parent(child_id)


# ---- delete / ready ----


def delete_task(state: AppState, task_id: str, *, cascade: bool = False) -> DeletionResult:
    return state.deletion.delete(task_id, cascade=cascade)


def ready(state: AppState) -> ReadyResult:
    return state.readiness.ready_all()
