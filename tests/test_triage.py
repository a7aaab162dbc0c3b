# tests/test_triage.py

from __future__ import annotations

from datetime import date

import pytest

from taskpilot.core.triage import build_task_context, run_triage
from taskpilot.llm.tools import triage_tool_defs


def test_context_lists_subtasks_under_parents(state) -> None:
    parent = state.service.add_task("Offsite", bucket="Team").task
    child = state.service.add_task("Book venue", parent=parent.id).task

    text = build_task_context(state.service.list_tasks(), state.service.list_buckets())

    assert f"{parent.short_id} [Team]" in text
    assert f"  ↳ {child.short_id}" in text
    assert "- Admin: " in text


def test_empty_context() -> None:
    assert "(no tasks yet)" in build_task_context([], [])


def test_tool_defs_offer_bucket_enum() -> None:
    defs = triage_tool_defs(["Personal", "Team"])
    names = [d["function"]["name"] for d in defs]
    assert names == [
        "create_task",
        "update_task",
        "delete_task",
        "decompose_task",
        "bulk_update_tasks",
    ]
    create = defs[0]["function"]["parameters"]
    assert create["properties"]["bucket"]["enum"] == ["Personal", "Team"]


def test_run_triage_applies_calls_as_one_step(state, llm) -> None:
    llm.next_calls = [
        {"name": "create_task", "arguments": {"title": "A"}},
        {"name": "create_task", "arguments": {"title": "B", "progress": "Done"}},
    ]

    result = run_triage(state, "add A and B", today=date(2026, 1, 5))

    assert result.succeeded == 2
    assert result.snapshot_taken
    messages, system_prompt, tools = llm.requests[0]
    assert "Today is 2026-01-05" in system_prompt
    assert 'User message: "add A and B"' in messages[0]["content"]
    assert len(tools) == 5

    state.service.undo()
    assert state.service.list_tasks() == []


def test_llm_failure_applies_nothing(state, llm) -> None:
    state.service.add_task("keep")
    llm.next_error = RuntimeError("LLM is rate-limited. Try again later.")

    with pytest.raises(RuntimeError):
        run_triage(state, "delete everything")

    assert [t.title for t in state.service.list_tasks()] == ["keep"]
    assert len(state.service.history()) == 1
