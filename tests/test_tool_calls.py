# tests/test_tool_calls.py

from __future__ import annotations

import json
from datetime import date

import pytest

from taskpilot.tasks.errors import ValidationError
from taskpilot.tasks.task_models import CLEAR, Priority, Progress
from taskpilot.tasks.tool_calls import (
    MAX_DESCRIPTION_LEN,
    MAX_SUBTASKS,
    MAX_TITLE_LEN,
    BulkUpdateTasksCall,
    CreateTaskCall,
    DecomposeTaskCall,
    DeleteTaskCall,
    UpdateTaskCall,
    parse_tool_call,
)


def test_create_from_json_string_arguments() -> None:
    call = parse_tool_call(
        {
            "name": "create_task",
            "arguments": json.dumps(
                {
                    "title": "Book venue",
                    "bucket": "Team",
                    "priority": "high",
                    "progress": "in-progress",
                    "due_date": "2026-04-01",
                    "subtasks": [{"title": "Shortlist", "depends_on": []}],
                }
            ),
        }
    )

    assert isinstance(call, CreateTaskCall)
    assert call.priority == Priority.HIGH
    assert call.progress == Progress.IN_PROGRESS
    assert call.due_date == date(2026, 4, 1)
    assert [s.title for s in call.subtasks] == ["Shortlist"]


def test_title_and_description_are_truncated() -> None:
    call = parse_tool_call(
        {"kind": "create_task", "arguments": {"title": "x" * 500, "description": "y" * 900}}
    )
    assert isinstance(call, CreateTaskCall)
    assert len(call.title) == MAX_TITLE_LEN
    assert len(call.description) == MAX_DESCRIPTION_LEN


def test_subtask_list_is_capped() -> None:
    subtasks = [{"title": f"s{i}"} for i in range(20)]
    call = parse_tool_call({"kind": "decompose_task", "arguments": {"subtasks": subtasks}})
    assert isinstance(call, DecomposeTaskCall)
    assert call.target_id is None
    assert len(call.subtasks) == MAX_SUBTASKS


def test_update_due_none_clears() -> None:
    call = parse_tool_call(
        {"kind": "update_task", "arguments": {"target_id": "abcd1234", "due_date": "none"}}
    )
    assert isinstance(call, UpdateTaskCall)
    assert call.changes.due_date is CLEAR
    assert call.changes.title is None


def test_delete_requires_target() -> None:
    assert parse_tool_call({"kind": "delete_task", "arguments": {"target_id": "abcd"}}) == (
        DeleteTaskCall(target_id="abcd")
    )
    with pytest.raises(ValidationError):
        parse_tool_call({"kind": "delete_task", "arguments": {}})


def test_bulk_update_needs_targets_and_changes() -> None:
    call = parse_tool_call(
        {
            "kind": "bulk_update_tasks",
            "arguments": {"target_ids": ["all"], "progress": "Done"},
        }
    )
    assert isinstance(call, BulkUpdateTasksCall)
    assert call.targets_all

    with pytest.raises(ValidationError):
        parse_tool_call({"kind": "bulk_update_tasks", "arguments": {"progress": "Done"}})
    with pytest.raises(ValidationError):
        parse_tool_call({"kind": "bulk_update_tasks", "arguments": {"target_ids": ["abcd"]}})


@pytest.mark.parametrize(
    "raw",
    [
        {"kind": "remember_fact", "arguments": {"fact": "likes tea"}},
        {"kind": "create_task", "arguments": "{not json"},
        {"kind": "create_task", "arguments": ["title"]},
        {"kind": "create_task", "arguments": {"title": "ok", "priority": "urgent"}},
        {"kind": "create_task", "arguments": {"title": "ok", "due_date": "next week"}},
        {"kind": "create_task", "arguments": {"title": ""}},
        {"kind": "decompose_task", "arguments": {"subtasks": [{"title": "a", "depends_on": ["x"]}]}},
        {"kind": "decompose_task", "arguments": {"subtasks": []}},
    ],
)
def test_malformed_calls_are_rejected(raw) -> None:
    with pytest.raises(ValidationError):
        parse_tool_call(raw)
