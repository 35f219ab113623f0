# tests/test_commands.py

from __future__ import annotations

from pathlib import Path

from vertebrae.cli.commands import CommandRegistry, registry
from vertebrae.cli.console import run_console_loop
from vertebrae.tasks.errors import NotFoundError
from vertebrae.tasks.task_models import TaskStatus


def test_command_registry_routes_and_aliases(state) -> None:
    reg = CommandRegistry()
    seen: list[list[str]] = []

    def handler(state, args):
        seen.append(args)
        return "ok"

    reg.register("a", handler, "a", aliases=["alias"])

    assert reg.handle(state, "/a x 'y z'") == "ok"
    assert reg.handle(state, "/ALIAS") == "ok"
    assert seen == [["x", "y z"], []]


def test_command_registry_unknown_and_non_command(state) -> None:
    reg = CommandRegistry()
    assert reg.handle(state, "hello") is None
    assert "Unknown command" in (reg.handle(state, "/nope") or "")
    assert "Empty command" in (reg.handle(state, "/") or "")


def test_task_errors_become_replies(state) -> None:
    reg = CommandRegistry()

    def boom(state, args):
        raise NotFoundError("abc")

    reg.register("boom", boom, "boom")
    assert reg.handle(state, "/boom") == "Error: Task 'abc' not found"


def test_help_lists_registered_commands(state) -> None:
    text = registry.handle(state, "/help") or ""
    for name in ("/add", "/ready", "/depend", "/step-done", "/export"):
        assert name in text


def _created_id(reply: str) -> str:
    # "Created <id>: <title>"
    return reply.split()[1].rstrip(":")


def test_add_show_and_ready_flow(state) -> None:
    epic_id = _created_id(registry.handle(state, '/add "Big epic" --level epic') or "")
    child_id = _created_id(
        registry.handle(state, f"/add Small task --parent {epic_id} --tag ui") or ""
    )

    shown = registry.handle(state, f"/show {child_id}") or ""
    assert "Small task" in shown
    assert f"parent: {epic_id}" in shown
    assert "#ui" in shown

    ready = registry.handle(state, "/ready") or ""
    assert "Ready to work (2)" in ready

    started = registry.handle(state, f"/start {child_id}") or ""
    assert started == f"Started {child_id}."
    assert epic_id not in (registry.handle(state, "/ready") or "")


def test_workflow_commands(state) -> None:
    blocker = _created_id(registry.handle(state, "/add blocker") or "")
    task = _created_id(registry.handle(state, "/add task") or "")

    assert "blocked by" in (registry.handle(state, f"/depend {task} {blocker}") or "")
    assert "cycle" in (registry.handle(state, f"/depend {blocker} {task}") or "")
    assert registry.handle(state, f"/path {task} {blocker}") == f"{task} -> {blocker}"
    assert blocker in (registry.handle(state, f"/blockers {task}") or "")

    done = registry.handle(state, f"/done {blocker}") or ""
    assert f"Unblocked:\n  {task} task" in done
    assert "already done" in (registry.handle(state, f"/done {blocker}") or "")

    assert "Added step #0" in (registry.handle(state, f"/section {task} step write it") or "")
    assert "Step 1 done" in (registry.handle(state, f"/step-done {task} 1") or "")
    assert "Error: Step 2 not found" in (registry.handle(state, f"/step-done {task} 2") or "")
    assert "yes" in (registry.handle(state, f"/review {task}") or "")

    registry.handle(state, f"/reject {task} not needed")
    assert state.store.require(task).status == TaskStatus.REJECTED
    assert "final state" in (registry.handle(state, f"/start {task}") or "")

    deleted = registry.handle(state, f"/delete {task}") or ""
    assert deleted.startswith("Deleted 1 task(s)")


def test_triage_command(state) -> None:
    task = _created_id(registry.handle(state, "/add idea --status backlog") or "")
    reply = registry.handle(state, f"/triage {task}") or ""
    assert reply.startswith("Error: ")
    assert "ERRORS" in reply

    assert "Triaged" in (registry.handle(state, f"/triage {task} --skip") or "")


def test_list_and_option_errors(state) -> None:
    assert registry.handle(state, "/list") == "No tasks."
    registry.handle(state, "/add alpha --tag x")
    assert "alpha" in (registry.handle(state, "/list --tag x") or "")
    assert "Unknown option --bogus" in (registry.handle(state, "/list --bogus") or "")
    assert "Invalid status" in (registry.handle(state, "/list --status nope") or "")


def test_export_and_import_commands(state, tmp_path: Path) -> None:
    registry.handle(state, "/add alpha")
    path = tmp_path / "dump.jsonl"

    assert "Exported 1 task(s)" in (registry.handle(state, f"/export {path}") or "")
    assert "skipped 1" in (registry.handle(state, f"/import {path} --skip-existing") or "")


def test_console_loop_runs_commands_until_exit(state) -> None:
    lines = iter(["", "/add from console", "not a command", "/exit", "/add never"])
    out: list[str] = []

    run_console_loop(state, read=lambda _prompt: next(lines), write=out.append)

    assert any(o.startswith("Created ") for o in out)
    assert any("Commands start with '/'" in o for o in out)
    assert state.store.count_tasks() == 1


def test_console_loop_stops_on_eof(state) -> None:
    def read(_prompt: str) -> str:
        raise EOFError

    out: list[str] = []
    run_console_loop(state, read=read, write=out.append)
    assert len(out) == 1
