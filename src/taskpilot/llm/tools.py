# src/taskpilot/llm/tools.py

"""Tool definitions (OpenAI function-calling format) offered to the triage model."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from ..tasks.task_models import Priority, Progress
from ..tasks.tool_calls import MAX_DEPENDENCIES, MAX_SUBTASKS

_PRIORITIES = [p.value for p in Priority]
_PROGRESS = [p.value for p in Progress]


def _function(name: str, description: str, parameters: dict[str, Any]) -> dict[str, Any]:
    return {
        "type": "function",
        "function": {"name": name, "description": description, "parameters": parameters},
    }


def _subtask_schema(bucket_names: list[str]) -> dict[str, Any]:
    return {
        "type": "object",
        "properties": {
            "title": {"type": "string", "description": "Short, actionable subtask title"},
            "description": {"type": "string", "description": "Brief description"},
            "bucket": {"type": "string", "enum": bucket_names},
            "priority": {"type": "string", "enum": _PRIORITIES},
            "progress": {"type": "string", "enum": _PROGRESS},
            "due_date": {"type": "string", "description": "YYYY-MM-DD format"},
            "depends_on": {
                "type": "array",
                "items": {"type": "integer"},
                "maxItems": MAX_DEPENDENCIES,
                "description": "0-based indices into the subtasks array for ordering",
            },
        },
        "required": ["title"],
    }


def _field_props(bucket_names: list[str]) -> dict[str, Any]:
    return {
        "title": {"type": "string", "description": "Short, actionable title"},
        "bucket": {"type": "string", "enum": bucket_names},
        "description": {"type": "string", "description": "Brief task description"},
        "priority": {"type": "string", "enum": _PRIORITIES},
        "progress": {"type": "string", "enum": _PROGRESS},
        "due_date": {"type": "string", "description": "YYYY-MM-DD format, or \"none\" to clear"},
        "dependencies": {
            "type": "array",
            "items": {"type": "string"},
            "maxItems": MAX_DEPENDENCIES,
            "description": "id_prefix values of existing tasks this depends on",
        },
    }


def triage_tool_defs(bucket_names: Sequence[str]) -> list[dict[str, Any]]:
    names = list(bucket_names)
    subtasks = {
        "type": "array",
        "items": _subtask_schema(names),
        "maxItems": MAX_SUBTASKS,
        "description": "Sub-tasks to create under this task",
    }

    return [
        _function(
            "create_task",
            "Create a new task. Use ONLY when the user describes genuinely new work that does "
            "NOT overlap with any existing task or sub-task. Always check existing tasks first.",
            {
                "type": "object",
                "properties": {**_field_props(names), "subtasks": subtasks},
                "required": ["title", "bucket"],
            },
        ),
        _function(
            "update_task",
            "Update an existing task. PREFER this over create_task when similar work already "
            "exists. Use for status changes, field updates, or adding sub-tasks.",
            {
                "type": "object",
                "properties": {
                    "target_id": {"type": "string", "description": "id_prefix of the task to update"},
                    **_field_props(names),
                    "subtasks": subtasks,
                },
                "required": ["target_id"],
            },
        ),
        _function(
            "delete_task",
            "Delete an existing task (and its sub-tasks).",
            {
                "type": "object",
                "properties": {
                    "target_id": {"type": "string", "description": "id_prefix of the task to delete"},
                },
                "required": ["target_id"],
            },
        ),
        _function(
            "decompose_task",
            "Break down a task into smaller sub-tasks. Use when asked to decompose, split, or "
            "create sub-issues.",
            {
                "type": "object",
                "properties": {
                    "target_id": {
                        "type": "string",
                        "description": "id_prefix of the task to decompose (if known)",
                    },
                    "subtasks": subtasks,
                },
                "required": ["subtasks"],
            },
        ),
        _function(
            "bulk_update_tasks",
            "Apply the same field changes to many tasks at once. Select targets by id_prefix "
            "list (or [\"all\"]) or by filter.",
            {
                "type": "object",
                "properties": {
                    "target_ids": {
                        "type": "array",
                        "items": {"type": "string"},
                        "description": "id_prefix values, or [\"all\"] for every task",
                    },
                    "filter": {
                        "type": "object",
                        "properties": {
                            "bucket": {"type": "string", "enum": names},
                            "progress": {"type": "string", "enum": _PROGRESS},
                            "priority": {"type": "string", "enum": _PRIORITIES},
                        },
                    },
                    "bucket": {"type": "string", "enum": names},
                    "priority": {"type": "string", "enum": _PRIORITIES},
                    "progress": {"type": "string", "enum": _PROGRESS},
                    "due_date": {"type": "string", "description": "YYYY-MM-DD, or \"none\" to clear"},
                },
            },
        ),
    ]
