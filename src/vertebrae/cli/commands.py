# src/vertebrae/cli/commands.py

from __future__ import annotations

import logging
import shlex
from collections.abc import Callable
from datetime import datetime
from typing import Any

from ..core.state import AppState
from ..tasks import task_api
from ..tasks.errors import TaskError, ValidationError
from ..tasks.graph import BlockerNode
from ..tasks.task_models import (
    Level,
    Priority,
    SectionType,
    Task,
    TaskFilter,
    TaskStatus,
    TaskSummary,
    normalize_id,
)
from ..tasks.transfer import export_jsonl, import_jsonl

CommandHandler = Callable[[AppState, list[str]], str]

logger = logging.getLogger(__name__)


class CommandRegistry:
    """Slash-command registry used by the console (/help, /add, /ready, ...)."""

    def __init__(self) -> None:
        self._handlers: dict[str, CommandHandler] = {}
        self._help: dict[str, str] = {}

    def register(
        self,
        name: str,
        handler: CommandHandler,
        help_text: str,
        aliases: list[str] | None = None,
    ) -> None:
        aliases = aliases or []
        key = name.lower()
        self._handlers[key] = handler
        self._help[key] = help_text
        for alias in aliases:
            self._handlers[alias.lower()] = handler

    def handle(self, state: AppState, line: str) -> str | None:
        """
        Handle a string like "/command args".
        Returns a reply string or None if not a command.

        Task errors (not found, invalid transition, validation) become the reply.
        """
        if not line.startswith("/"):
            return None

        try:
            parts = shlex.split(line[1:])
        except ValueError:
            # Unbalanced quotes: fall back to plain whitespace splitting.
            parts = line[1:].split()
        if not parts:
            return "Empty command. Use /help to list available commands."

        name = parts[0].lower()
        args = parts[1:]

        handler = self._handlers.get(name)
        if not handler:
            return f"Unknown command: /{name}. Use /help to list available commands."

        try:
            return handler(state, args)
        except TaskError as exc:
            logger.debug("Command /%s failed: %s", name, exc)
            return f"Error: {exc}"

    def build_help(self) -> str:
        lines = ["Available commands:"]
        for name, help_text in self._help.items():
            lines.append(f"  /{name} - {help_text}")
        return "\n".join(lines)


registry = CommandRegistry()


# ---- argument helpers ----


def _parse_opts(
    args: list[str],
    *,
    flags: tuple[str, ...] = (),
    options: tuple[str, ...] = (),
    multi: tuple[str, ...] = (),
) -> tuple[list[str], dict[str, Any]]:
    """Split args into positionals and --options (flags, single-value, repeatable)."""
    positional: list[str] = []
    opts: dict[str, Any] = {}
    i = 0
    while i < len(args):
        arg = args[i]
        if arg.startswith("--") and len(arg) > 2:
            key = arg[2:]
            if key in flags:
                opts[key] = True
            elif key in options or key in multi:
                if i + 1 >= len(args):
                    raise ValidationError(f"Option --{key} needs a value")
                i += 1
                if key in multi:
                    opts.setdefault(key, []).append(args[i])
                else:
                    opts[key] = args[i]
            else:
                raise ValidationError(f"Unknown option --{key}")
        else:
            positional.append(arg)
        i += 1
    return positional, opts


def _need(args: list[str], n: int, usage: str) -> None:
    if len(args) < n:
        raise ValidationError(f"Usage: {usage}")


# ---- rendering ----


def _ts(ts: float | None) -> str:
    if ts is None:
        return "-"
    return datetime.fromtimestamp(ts).astimezone().strftime("%Y-%m-%d %H:%M:%S")


def _fmt_summary(s: TaskSummary | Task) -> str:
    line = f"{s.id}  [{s.status}] {s.level.value:<6} {s.title}"
    if s.priority:
        line += f"  !{s.priority}"
    if s.tags:
        line += "  #" + " #".join(s.tags)
    if s.needs_human_review:
        line += "  (needs review)"
    return line


def _fmt_blockers(nodes: list[BlockerNode], indent: int = 1) -> list[str]:
    lines: list[str] = []
    for node in nodes:
        lines.append(f"{'  ' * indent}- {node.id} [{node.status}] {node.title}")
        lines.extend(_fmt_blockers(node.children, indent + 1))
    return lines


def _fmt_task(state: AppState, task: Task) -> str:
    graph = state.graph
    lines = [
        _fmt_summary(task),
        f"  created: {_ts(task.created_at)}  updated: {_ts(task.updated_at)}",
    ]
    if task.started_at is not None or task.completed_at is not None:
        lines.append(f"  started: {_ts(task.started_at)}  completed: {_ts(task.completed_at)}")

    parent = graph.get_parent(task.id)
    if parent:
        lines.append(f"  parent: {parent}")
    children = graph.get_children(task.id)
    if children:
        lines.append(f"  children: {', '.join(children)}")
    blockers = graph.get_dependencies(task.id)
    if blockers:
        lines.append(f"  blocked by: {', '.join(blockers)}")
    dependents = graph.get_dependents(task.id)
    if dependents:
        lines.append(f"  blocks: {', '.join(dependents)}")

    for section_type in SectionType:
        group = task.steps() if section_type == SectionType.STEP else task.sections_of(section_type)
        if not group:
            continue
        lines.append(f"  {section_type.value}:")
        for i, section in enumerate(group, start=1):
            if section_type == SectionType.STEP:
                mark = "x" if section.done else " "
                lines.append(f"    {i}. [{mark}] {section.content}")
            elif section_type.is_single_instance:
                lines.append(f"    {section.content}")
            else:
                lines.append(f"    - {section.content}")

    if task.code_refs:
        lines.append("  refs:")
        lines.extend(f"    - {ref}" for ref in task.code_refs)
    return "\n".join(lines)


# ---- handlers ----


def cmd_help(state: AppState, args: list[str]) -> str:
    return registry.build_help()


def cmd_add(state: AppState, args: list[str]) -> str:
    """
    /add <title> [--level L] [--status S] [--priority P] [--tag T]...
                 [--parent ID] [--after BLOCKER]...
    """
    positional, opts = _parse_opts(
        args,
        options=("level", "status", "priority", "parent"),
        multi=("tag", "after"),
    )
    _need(positional, 1, "/add <title> [--level L] [--parent ID] [--after ID] ...")

    task = task_api.add_task(
        state,
        " ".join(positional),
        level=Level.parse(opts["level"]) if "level" in opts else Level.TASK,
        status=TaskStatus.parse(opts["status"]) if "status" in opts else TaskStatus.TODO,
        priority=Priority.parse(opts["priority"]) if "priority" in opts else None,
        tags=opts.get("tag", []),
        parent=opts.get("parent"),
        depends_on=opts.get("after", []),
    )
    return f"Created {task.id}: {task.title}"


def cmd_show(state: AppState, args: list[str]) -> str:
    _need(args, 1, "/show <id>")
    return _fmt_task(state, task_api.get_task(state, args[0]))


def cmd_list(state: AppState, args: list[str]) -> str:
    """/list [--all] [--root] [--status S]... [--level L]... [--tag T]... [--children ID] [--search TEXT]"""
    positional, opts = _parse_opts(
        args,
        flags=("all", "root"),
        options=("children", "search"),
        multi=("status", "level", "tag", "priority"),
    )
    task_filter = TaskFilter(
        levels=[Level.parse(v) for v in opts.get("level", [])],
        statuses=[TaskStatus.parse(v) for v in opts.get("status", [])],
        priorities=[Priority.parse(v) for v in opts.get("priority", [])],
        tags=opts.get("tag", []),
        root_only=bool(opts.get("root")),
        children_of=opts.get("children"),
        include_done=bool(opts.get("all")),
        search=opts.get("search") or (" ".join(positional) if positional else None),
    )
    items = task_api.list_tasks(state, task_filter)
    if not items:
        return "No tasks."
    return "\n".join(_fmt_summary(s) for s in items)


def cmd_ready(state: AppState, args: list[str]) -> str:
    result = task_api.ready(state)
    if result.is_empty():
        return "Nothing is ready."
    lines: list[str] = []
    if result.todo_ready:
        lines.append(f"Ready to work ({len(result.todo_ready)}):")
        lines.extend(f"  {_fmt_summary(s)}" for s in result.todo_ready)
    if result.backlog_ready:
        lines.append(f"Ready to triage ({len(result.backlog_ready)}):")
        lines.extend(f"  {_fmt_summary(s)}" for s in result.backlog_ready)
    return "\n".join(lines)


def cmd_start(state: AppState, args: list[str]) -> str:
    _need(args, 1, "/start <id>")
    result = task_api.start(state, args[0])
    if result.already_in_target:
        return f"{result.task_id} is already in progress."
    lines = [f"Started {result.task_id}."]
    if result.incomplete_dependencies:
        lines.append("Warning: these blockers are not done yet:")
        lines.extend(f"  {_fmt_summary(s)}" for s in result.incomplete_dependencies)
    return "\n".join(lines)


def cmd_submit(state: AppState, args: list[str]) -> str:
    _need(args, 1, "/submit <id>")
    result = task_api.submit(state, args[0])
    if result.already_in_target:
        return f"{result.task_id} is already pending review."
    return f"Submitted {result.task_id} for review."


def cmd_done(state: AppState, args: list[str]) -> str:
    _need(args, 1, "/done <id>")
    result = task_api.complete(state, args[0])
    if result.already_done:
        return f"{result.task_id} is already done."
    lines = [f"Completed {result.task_id}."]
    if result.incomplete_children:
        lines.append("Note: these children are not done yet:")
        lines.extend(f"  {cid} [{st}] {title}" for cid, title, st in result.incomplete_children)
    if result.unblocked:
        lines.append("Unblocked:")
        lines.extend(f"  {did} {title}" for did, title in result.unblocked)
    return "\n".join(lines)


def cmd_reject(state: AppState, args: list[str]) -> str:
    _need(args, 1, "/reject <id> [reason]")
    reason = " ".join(args[1:]) or None
    result = task_api.reject(state, args[0], reason)
    if result.already_in_target:
        return f"{result.task_id} is already rejected." + (" Reason added." if reason else "")
    return f"Rejected {result.task_id}."


def cmd_triage(state: AppState, args: list[str]) -> str:
    positional, opts = _parse_opts(args, flags=("force", "skip"))
    _need(positional, 1, "/triage <id> [--force] [--skip]")
    result = task_api.triage(
        state,
        positional[0],
        force=True if opts.get("force") else None,
        skip_validation=bool(opts.get("skip")),
    )
    if result.already_in_target:
        return f"{result.task_id} is already todo."
    lines = [f"Triaged {result.task_id} (backlog -> todo)."]
    if result.triage is not None and result.triage.issues:
        lines.append(str(result.triage))
    return "\n".join(lines)


def cmd_delete(state: AppState, args: list[str]) -> str:
    positional, opts = _parse_opts(args, flags=("cascade",))
    _need(positional, 1, "/delete <id> [--cascade]")
    result = task_api.delete_task(state, positional[0], cascade=bool(opts.get("cascade")))
    lines = [f"Deleted {result.deleted_count} task(s): {', '.join(result.deleted_ids)}"]
    if result.orphaned_children:
        lines.append(f"Now root tasks: {', '.join(result.orphaned_children)}")
    if result.dependents:
        lines.append(f"Warning: these tasks depended on it: {', '.join(result.dependents)}")
    return "\n".join(lines)


def cmd_depend(state: AppState, args: list[str]) -> str:
    _need(args, 2, "/depend <id> <blocker-id>")
    task_api.depend(state, args[0], args[1])
    return f"{normalize_id(args[0])} is now blocked by {normalize_id(args[1])}."


def cmd_undepend(state: AppState, args: list[str]) -> str:
    _need(args, 2, "/undepend <id> <blocker-id>")
    task_api.undepend(state, args[0], args[1])
    return f"{normalize_id(args[0])} is no longer blocked by {normalize_id(args[1])}."


def cmd_parent(state: AppState, args: list[str]) -> str:
    """
    /parent <child> <parent>  -> set (replaces an existing parent)
    /parent <child> --none    -> make it a root task
    """
    positional, opts = _parse_opts(args, flags=("none",))
    if opts.get("none"):
        _need(positional, 1, "/parent <child> --none")
        task_api.unparent(state, positional[0])
        return f"{normalize_id(positional[0])} is now a root task."

    _need(positional, 2, "/parent <child> <parent> | /parent <child> --none")
    previous = task_api.set_parent(state, positional[0], positional[1])
    msg = f"{normalize_id(positional[0])} is now a child of {normalize_id(positional[1])}."
    if previous and previous != normalize_id(positional[1]):
        msg += f" (was {previous})"
    return msg


def cmd_section(state: AppState, args: list[str]) -> str:
    """
    /section <id> <type> <content>  -> add (goal/context/... replace, others append)
    /section <id> <type> --clear    -> remove all sections of that type
    """
    positional, opts = _parse_opts(args, flags=("clear",))
    if opts.get("clear"):
        _need(positional, 2, "/section <id> <type> --clear")
        removed = task_api.remove_sections(state, positional[0], SectionType.parse(positional[1]))
        return f"Removed {removed} section(s)."

    _need(positional, 3, "/section <id> <type> <content> | /section <id> <type> --clear")
    section_type = SectionType.parse(positional[1])
    section = task_api.add_section(state, positional[0], section_type, " ".join(positional[2:]))
    if section.order is None:
        return f"Set {section_type.value}."
    return f"Added {section_type.value} #{section.order}."


def cmd_step_done(state: AppState, args: list[str]) -> str:
    _need(args, 2, "/step-done <id> <n>")
    try:
        index = int(args[1])
    except ValueError:
        raise ValidationError(f"Step number must be an integer, got '{args[1]}'") from None
    section = task_api.step_done(state, args[0], index)
    return f"Step {index} done: {section.content}"


def cmd_review(state: AppState, args: list[str]) -> str:
    """/review <id> [on|off]  (no argument toggles)"""
    _need(args, 1, "/review <id> [on|off]")
    value: bool | None = None
    if len(args) > 1:
        arg = args[1].lower()
        if arg in ("on", "1", "true", "yes"):
            value = True
        elif arg in ("off", "0", "false", "no"):
            value = False
        else:
            return "Usage: /review <id> [on|off]"
    new_value = task_api.set_review(state, args[0], value)
    return f"{normalize_id(args[0])} needs human review: {'yes' if new_value else 'no'}."


def cmd_blockers(state: AppState, args: list[str]) -> str:
    _need(args, 1, "/blockers <id> [depth]")
    depth: int | None = None
    if len(args) > 1:
        try:
            depth = int(args[1])
        except ValueError:
            raise ValidationError(f"Depth must be an integer, got '{args[1]}'") from None
    task = task_api.get_task(state, args[0])
    nodes = state.graph.get_blockers(task.id, max_depth=depth)
    if not nodes:
        return f"{task.id} has no blockers."
    return "\n".join([f"Blockers of {task.id}:", *_fmt_blockers(nodes)])


def cmd_path(state: AppState, args: list[str]) -> str:
    _need(args, 2, "/path <from-id> <to-id>")
    path = state.graph.find_path(args[0], args[1])
    if path is None:
        return f"No dependency path from {normalize_id(args[0])} to {normalize_id(args[1])}."
    return " -> ".join(path)


def cmd_export(state: AppState, args: list[str]) -> str:
    _need(args, 1, "/export <file.jsonl>")
    result = export_jsonl(state, args[0])
    return (
        f"Exported {result.tasks} task(s), {result.child_of} parent edge(s), "
        f"{result.depends_on} dependency edge(s) to {result.path}"
    )


def cmd_import(state: AppState, args: list[str]) -> str:
    positional, opts = _parse_opts(args, flags=("skip-existing",))
    _need(positional, 1, "/import <file.jsonl> [--skip-existing]")
    result = import_jsonl(state, positional[0], skip_existing=bool(opts.get("skip-existing")))
    lines = [
        f"Imported from {result.path}: created {result.created}, "
        f"overwritten {result.overwritten}, skipped {result.skipped}, edges {result.edges}"
    ]
    if result.skipped_edges:
        lines.append(f"Skipped {len(result.skipped_edges)} edge(s) with unknown tasks.")
    return "\n".join(lines)


registry.register("help", cmd_help, help_text="Show available commands.", aliases=["h", "?"])
registry.register(
    "add", cmd_add, help_text="Create a task: /add <title> [--level L] [--parent ID] [--after ID]."
)
registry.register("show", cmd_show, help_text="Show a task with its sections and edges.")
registry.register(
    "list", cmd_list, help_text="List tasks: /list [--all] [--root] [--status S] [--tag T].", aliases=["ls"]
)
registry.register("ready", cmd_ready, help_text="Show entry points ready to work / ready to triage.")
registry.register("start", cmd_start, help_text="Start work: /start <id>.")
registry.register("submit", cmd_submit, help_text="Submit for review: /submit <id>.")
registry.register("done", cmd_done, help_text="Complete a task from any status: /done <id>.")
registry.register("reject", cmd_reject, help_text="Reject a task: /reject <id> [reason].")
registry.register("triage", cmd_triage, help_text="Move backlog -> todo: /triage <id> [--force].")
registry.register("delete", cmd_delete, help_text="Delete a task: /delete <id> [--cascade].", aliases=["rm"])
registry.register("depend", cmd_depend, help_text="Add a blocker: /depend <id> <blocker-id>.")
registry.register("undepend", cmd_undepend, help_text="Remove a blocker: /undepend <id> <blocker-id>.")
registry.register("parent", cmd_parent, help_text="Set or clear the parent: /parent <child> <parent>|--none.")
registry.register("section", cmd_section, help_text="Add a section: /section <id> <type> <content>.")
registry.register("step-done", cmd_step_done, help_text="Mark a step done: /step-done <id> <n>.")
registry.register("review", cmd_review, help_text="Toggle the needs-review flag: /review <id> [on|off].")
registry.register("blockers", cmd_blockers, help_text="Show the blocker tree: /blockers <id> [depth].")
registry.register("path", cmd_path, help_text="Dependency path between tasks: /path <from> <to>.")
registry.register("export", cmd_export, help_text="Export all tasks to JSON Lines: /export <file>.")
registry.register("import", cmd_import, help_text="Import JSON Lines: /import <file> [--skip-existing].")
