# src/taskpilot/core/triage.py

"""
AI triage orchestration.

One user instruction -> one agent turn:
- a read-only task listing is captured (short lock, copies only),
- the LLM is called with NO lock held (slow, may fail or be cancelled),
- the returned tool calls are applied by the dispatcher in one transaction.

If the LLM call fails or is interrupted, nothing was applied and history is untouched.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import date

from ..llm.tools import triage_tool_defs
from ..tasks.dispatcher import TurnResult
from ..tasks.task_models import Bucket, Task
from .state import AppState

logger = logging.getLogger(__name__)


def build_task_context(tasks: Sequence[Task], buckets: Sequence[Bucket]) -> str:
    """
    Compact listing the model uses to pick targets:

        3f2a91c0 [Team] (Todo, High) Prepare onboarding doc
          ↳ 77ab0c12 [Team] (Backlog, High) Draft outline
    """
    by_parent: dict[object, list[Task]] = {}
    for t in tasks:
        by_parent.setdefault(t.parent_id, []).append(t)

    lines: list[str] = []

    def walk(parent_id: object, depth: int) -> None:
        for t in by_parent.get(parent_id, []):
            indent = "  " * depth + ("↳ " if depth else "")
            due = f", due {t.due_date.isoformat()}" if t.due_date else ""
            lines.append(
                f"{indent}{t.short_id} [{t.bucket}] ({t.progress.value}, {t.priority.value}{due}) {t.title}"
            )
            walk(t.id, depth + 1)

    walk(None, 0)
    if not lines:
        lines.append("(no tasks yet)")

    bucket_lines = [
        f"- {b.name}: {b.description}" if b.description else f"- {b.name}" for b in buckets
    ]
    return "Buckets:\n" + "\n".join(bucket_lines) + "\n\nExisting tasks:\n" + "\n".join(lines)


def build_system_prompt(today: date) -> str:
    return (
        f"Today is {today.isoformat()}. You are an expert AI project manager. "
        "Analyze the user's message and call the appropriate tools.\n"
        "Rules:\n"
        "- Before creating ANY task, check ALL existing tasks AND their sub-tasks "
        "(lines starting with ↳). If similar work exists, use update_task instead. "
        "NEVER create a duplicate.\n"
        "- Refer to tasks by the 8-character id_prefix shown in the listing.\n"
        "- Generate clean, actionable titles (do NOT copy the user's raw words verbatim).\n"
        "- Infer progress from context (e.g. \"already working on X\" -> \"In progress\").\n"
        "- To break work down, use decompose_task or the subtasks array. "
        "NEVER put sub-task lists into the description field.\n"
        "- Subtasks inherit the parent's bucket and priority unless specified otherwise.\n"
        "- Pick buckets using their descriptions.\n"
        "- For changes that affect many tasks, use bulk_update_tasks."
    )


def run_triage(state: AppState, instruction: str, *, today: date | None = None) -> TurnResult:
    """
    Run one AI turn for `instruction`.

    Raises RuntimeError from the LLM client (see friendly_llm_error_message).
    """
    tasks = state.service.list_tasks()
    buckets = state.service.list_buckets()

    context = build_task_context(tasks, buckets)
    tools = triage_tool_defs([b.name for b in buckets])
    system_prompt = build_system_prompt(today or date.today())

    messages = [{"role": "user", "content": f'User message: "{instruction}"\n\n{context}'}]
    calls = state.llm.request_tool_calls(messages, system_prompt, tools)
    logger.info("Triage: %d tool call(s) proposed", len(calls))

    return state.dispatcher.apply_turn(calls)
