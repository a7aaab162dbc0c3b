# tests/test_commands.py

from __future__ import annotations

from taskpilot.cli.commands import CommandRegistry, parse_edit_args, registry
from taskpilot.connectors.console_connector import handle_line
from taskpilot.llm.offline import OfflineToolClient
from taskpilot.tasks.task_models import CLEAR, Priority, Progress


def test_command_registry_routes_2_and_3_params(state) -> None:
    reg = CommandRegistry()
    called = {"h2": 0, "h3": 0}
    notes: list[str] = []

    def h2(state, args):
        called["h2"] += 1
        return "h2:" + ",".join(args)

    def h3(state, args, emit):
        called["h3"] += 1
        if emit is not None:
            emit("note")
        return "h3"

    reg.register("a", h2, "a")
    reg.register("b", h3, "b", aliases=["bee"])

    assert reg.handle(state, '/a x "y z"') == "h2:x,y z"
    assert reg.handle(state, "/BEE q", emit=notes.append) == "h3"
    assert called == {"h2": 1, "h3": 1}
    assert notes == ["note"]


def test_command_registry_unknown_and_non_command(state) -> None:
    reg = CommandRegistry()
    assert reg.handle(state, "hello") is None
    assert "Unknown command" in (reg.handle(state, "/nope") or "")
    assert "Empty command" in (reg.handle(state, "/") or "")


def test_add_list_and_show(state) -> None:
    reply = registry.handle(state, "/add team: plan offsite due:2026-03-01 p:high")
    assert reply is not None and reply.startswith("Added")

    task = state.service.list_tasks()[0]
    assert task.bucket == "Team"
    assert task.priority == Priority.HIGH

    listing = registry.handle(state, "/ls team") or ""
    assert task.short_id in listing
    assert registry.handle(state, "/list admin") == "No tasks."

    shown = registry.handle(state, f"/show {task.short_id}") or ""
    assert "plan offsite" in shown
    assert "2026-03-01" in shown


def test_edit_is_not_undoable(state) -> None:
    task = state.service.add_task("Draft").task
    before = len(state.service.history())

    reply = registry.handle(state, f"/edit {task.short_id} title='Final draft' p=low due=none")

    assert reply is not None and reply.startswith("Edited")
    edited = state.service.get_task(task.id)
    assert edited.title == "Final draft"
    assert edited.priority == Priority.LOW
    assert len(state.service.history()) == before


def test_next_prev_rm_and_undo(state) -> None:
    parent = state.service.add_task("Offsite").task
    state.service.add_task("Venue", parent=parent.id)

    registry.handle(state, f"/next {parent.short_id}")
    assert state.service.get_task(parent.id).progress == Progress.TODO
    registry.handle(state, f"/prev {parent.short_id}")
    assert state.service.get_task(parent.id).progress == Progress.BACKLOG

    reply = registry.handle(state, f"/rm {parent.short_id}") or ""
    assert "+1 sub-task" in reply
    assert state.service.list_tasks() == []

    assert registry.handle(state, "/undo") == f"Undid: delete: {parent.short_id}"
    assert len(state.service.list_tasks()) == 2


def test_bucket_subcommands(state) -> None:
    state.service.add_task("File taxes", bucket="Admin")

    assert "added" in (registry.handle(state, "/bucket add Garden outdoor jobs") or "")
    reply = registry.handle(state, "/bucket rename admin Paperwork") or ""
    assert "1 task(s) updated" in reply
    reply = registry.handle(state, "/bucket rm Paperwork") or ""
    assert "moved to 'Personal'" in reply
    listing = registry.handle(state, "/bucket") or ""
    assert "Garden - outdoor jobs" in listing
    assert "Usage" in (registry.handle(state, "/bucket frobnicate") or "")


def test_errors_are_rendered(state) -> None:
    assert (registry.handle(state, "/undo") or "").startswith("Error (NoHistory)")
    assert (registry.handle(state, "/rm ffff") or "").startswith("Error (NotFound)")
    assert (registry.handle(state, "/next ab") or "").startswith("Error (InvalidIdFormat)")
    assert (registry.handle(state, "/bucket add personal") or "").startswith("Error (DuplicateBucket)")


def test_parse_edit_args() -> None:
    changes = parse_edit_args(["status=in-progress", "due=-", "parent=none", "deps=abcd,ef01"])
    assert changes.progress == Progress.IN_PROGRESS
    assert changes.due_date is CLEAR
    assert changes.parent is CLEAR
    assert list(changes.dependencies or []) == ["abcd", "ef01"]


def test_handle_line_quick_add_when_offline(state) -> None:
    state.llm = OfflineToolClient()

    reply = handle_line(state, "admin: renew passport p:critical")

    assert reply is not None and reply.startswith("Added")
    task = state.service.list_tasks()[0]
    assert (task.title, task.bucket, task.priority) == ("renew passport", "Admin", Priority.CRITICAL)
    assert "Offline" in (handle_line(state, "/ai do things") or "")


def test_handle_line_routes_plain_text_to_ai(state, llm) -> None:
    llm.next_calls = [{"name": "create_task", "arguments": '{"title": "Plan sprint"}'}]

    reply = handle_line(state, "we need to plan the sprint")

    assert reply is not None and reply.startswith("[AI] 1/1 tool calls applied")
    assert [t.title for t in state.service.list_tasks()] == ["Plan sprint"]


def test_handle_line_reports_llm_failure(state, llm) -> None:
    llm.next_error = RuntimeError("All LLM models failed.")

    reply = handle_line(state, "/ai tidy up")

    assert reply == "[LLM] All LLM models failed."
    assert state.service.history() == []
