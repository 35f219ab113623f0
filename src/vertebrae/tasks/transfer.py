# src/vertebrae/tasks/transfer.py

"""
JSON Lines export / import of the whole task database.

One record per line:
    {"type": "task", "id": "...", "title": "...", ...}
    {"type": "child_of", "child": "...", "parent": "..."}
    {"type": "depends_on", "task": "...", "blocker": "..."}

Import parses and validates the whole file before writing anything, then runs
two passes: tasks first, edges second.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from ..core.state import AppState
from .errors import ValidationError
from .task_models import Task, normalize_id

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ExportResult:
    path: Path
    tasks: int = 0
    child_of: int = 0
    depends_on: int = 0


@dataclass(slots=True)
class ImportResult:
    path: Path
    created: int = 0
    overwritten: int = 0
    skipped: int = 0
    edges: int = 0
    # Edges whose endpoints exist neither in the file nor in the database.
    skipped_edges: list[str] = field(default_factory=list)


def export_jsonl(state: AppState, path: str | Path) -> ExportResult:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    result = ExportResult(path=path)

    lines: list[str] = []
    for task in state.store.export_all():
        lines.append(json.dumps({"type": "task", **task.to_record()}, ensure_ascii=False))
        result.tasks += 1
    for child, parent in state.graph.export_child_of():
        lines.append(json.dumps({"type": "child_of", "child": child, "parent": parent}))
        result.child_of += 1
    for task_id, blocker in state.graph.export_depends_on():
        lines.append(json.dumps({"type": "depends_on", "task": task_id, "blocker": blocker}))
        result.depends_on += 1

    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text("".join(line + "\n" for line in lines), "utf-8")
    os.replace(tmp, path)

    logger.info(
        "Exported tasks=%s child_of=%s depends_on=%s to %s",
        result.tasks,
        result.child_of,
        result.depends_on,
        path,
    )
    return result


def _edge_field(record: dict[str, Any], key: str, line_no: int) -> str:
    raw = record.get(key)
    if not isinstance(raw, str) or not raw.strip():
        raise ValidationError(f"Line {line_no}: {record.get('type')} record is missing '{key}'")
    return normalize_id(raw)


def _parse(path: Path) -> tuple[list[Task], list[tuple[str, str, str]]]:
    tasks: list[Task] = []
    edges: list[tuple[str, str, str]] = []

    with path.open("r", encoding="utf-8") as fh:
        for line_no, line in enumerate(fh, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                record = json.loads(line)
            except json.JSONDecodeError as exc:
                raise ValidationError(f"Line {line_no}: invalid JSON ({exc.msg})") from None
            if not isinstance(record, dict):
                raise ValidationError(f"Line {line_no}: expected a JSON object")

            kind = record.get("type")
            if kind == "task":
                try:
                    tasks.append(Task.from_record(record))
                except (ValidationError, ValueError, TypeError) as exc:
                    raise ValidationError(f"Line {line_no}: {exc}") from None
            elif kind == "child_of":
                edges.append(
                    ("child_of", _edge_field(record, "child", line_no), _edge_field(record, "parent", line_no))
                )
            elif kind == "depends_on":
                edges.append(
                    ("depends_on", _edge_field(record, "task", line_no), _edge_field(record, "blocker", line_no))
                )
            else:
                raise ValidationError(f"Line {line_no}: unknown record type {kind!r}")

    return tasks, edges


def import_jsonl(state: AppState, path: str | Path, *, skip_existing: bool = False) -> ImportResult:
    """
    Load an export file.

    Existing tasks with the same id are replaced (their edges are kept) unless
    skip_existing is set. Edges are idempotent, so re-importing a file is safe.
    """
    path = Path(path)
    if not path.exists():
        raise ValidationError(f"Import file not found: {path}")

    tasks, edges = _parse(path)
    result = ImportResult(path=path)
    store, graph = state.store, state.graph

    with store.lock:
        for task in tasks:
            if store.exists(task.id):
                if skip_existing:
                    result.skipped += 1
                    continue
                store.delete(task.id)
                result.overwritten += 1
            else:
                result.created += 1
            store.create(task.id, task)

        for kind, a, b in edges:
            if not (store.exists(a) and store.exists(b)):
                result.skipped_edges.append(f"{kind} {a} -> {b}")
                logger.warning("Import skipped %s edge %s -> %s: unknown task", kind, a, b)
                continue
            if kind == "child_of":
                if graph.get_parent(a) not in (None, b):
                    graph.remove_parent(a)
                graph.set_parent(a, b)
            else:
                graph.add_dependency(a, b)
            result.edges += 1

    logger.info(
        "Imported from %s created=%s overwritten=%s skipped=%s edges=%s",
        path,
        result.created,
        result.overwritten,
        result.skipped,
        result.edges,
    )
    return result
