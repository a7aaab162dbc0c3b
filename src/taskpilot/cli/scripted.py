# src/taskpilot/cli/scripted.py

"""
One-shot subcommands for scripts:

    taskpilot task list|add|edit|delete|show ...
    taskpilot bucket list|add|rename|delete ...
    taskpilot undo
    taskpilot history

Every command goes through TaskService (so it is snapshotted, persisted and
undoable like a console command) and prints its result as JSON on stdout.
Task errors are printed as JSON on stderr with exit code 1.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from datetime import date
from typing import Any

from ..core.state import AppState
from ..tasks.engine import TaskChanges
from ..tasks.errors import TaskError, ValidationError
from ..tasks.task_models import CLEAR, Priority, Progress

logger = logging.getLogger(__name__)

_NONE_WORDS = {"none", "clear", "-", ""}


# ---------------------------------------------------------------------
# Argument types
# ---------------------------------------------------------------------


def _priority(raw: str) -> Priority:
    p = Priority.parse(raw)
    if p is None:
        raise argparse.ArgumentTypeError(f"unknown priority {raw!r}")
    return p


def _progress(raw: str) -> Progress:
    p = Progress.parse(raw)
    if p is None:
        raise argparse.ArgumentTypeError(f"unknown progress {raw!r}")
    return p


def _due(raw: str) -> date:
    try:
        return date.fromisoformat(raw.strip())
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"due must be YYYY-MM-DD, got {raw!r}") from e


def _due_or_clear(raw: str):
    return CLEAR if raw.strip().lower() in _NONE_WORDS else _due(raw)


def _ref_or_clear(raw: str):
    return CLEAR if raw.strip().lower() in _NONE_WORDS else raw.strip()


# ---------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------


def _add_task_fields(p: argparse.ArgumentParser, *, editing: bool) -> None:
    p.add_argument("--bucket", help="Bucket name (case-insensitive)")
    p.add_argument("--description", help="Free text")
    p.add_argument("--priority", type=_priority, help="Low, Medium, High, Critical")
    p.add_argument("--progress", type=_progress, help="To Do, In Progress, Done")
    if editing:
        p.add_argument("--title", help="New title")
        p.add_argument("--due", type=_due_or_clear, help="YYYY-MM-DD, or 'none' to clear")
        p.add_argument("--parent", type=_ref_or_clear, help="Parent id, or 'none' to detach")
    else:
        p.add_argument("--due", type=_due, help="YYYY-MM-DD")
        p.add_argument("--parent", help="Parent task id or prefix")
    p.add_argument(
        "--depends-on",
        dest="dependencies",
        action="append",
        metavar="ID",
        help="Dependency id or prefix (repeatable)",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="taskpilot",
        description="Task manager with an AI triage console. Without a command, starts the console.",
    )
    sub = parser.add_subparsers(dest="command")

    # ---- task ----

    p_task = sub.add_parser("task", help="Create, inspect and change tasks")
    task_sub = p_task.add_subparsers(dest="action", required=True)

    p = task_sub.add_parser("list", aliases=["ls"], help="List tasks as JSON")
    p.add_argument("--bucket", help="Only tasks in this bucket")
    p.add_argument("--progress", type=_progress, help="Only tasks with this progress")
    p.set_defaults(func=cmd_task_list)

    p = task_sub.add_parser("add", aliases=["create"], help="Create a task")
    p.add_argument("title")
    _add_task_fields(p, editing=False)
    p.set_defaults(func=cmd_task_add)

    p = task_sub.add_parser("edit", aliases=["update"], help="Change fields of a task")
    p.add_argument("id")
    _add_task_fields(p, editing=True)
    p.set_defaults(func=cmd_task_edit)

    p = task_sub.add_parser("delete", aliases=["rm"], help="Delete a task and its subtasks")
    p.add_argument("id")
    p.set_defaults(func=cmd_task_delete)

    p = task_sub.add_parser("show", aliases=["get"], help="Show one task with its subtasks")
    p.add_argument("id")
    p.set_defaults(func=cmd_task_show)

    # ---- bucket ----

    p_bucket = sub.add_parser("bucket", help="Manage buckets")
    bucket_sub = p_bucket.add_subparsers(dest="action", required=True)

    p = bucket_sub.add_parser("list", aliases=["ls"], help="List buckets as JSON")
    p.set_defaults(func=cmd_bucket_list)

    p = bucket_sub.add_parser("add", aliases=["create"], help="Add a bucket")
    p.add_argument("name")
    p.add_argument("--description")
    p.set_defaults(func=cmd_bucket_add)

    p = bucket_sub.add_parser("rename", help="Rename a bucket and move its tasks along")
    p.add_argument("old")
    p.add_argument("new")
    p.set_defaults(func=cmd_bucket_rename)

    p = bucket_sub.add_parser("delete", aliases=["rm"], help="Delete a bucket")
    p.add_argument("name")
    p.set_defaults(func=cmd_bucket_delete)

    # ---- history ----

    p = sub.add_parser("undo", help="Revert the most recent change")
    p.set_defaults(func=cmd_undo)

    p = sub.add_parser("history", help="List undo snapshots, oldest first")
    p.set_defaults(func=cmd_history)

    return parser


# ---------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------


def _emit(payload: Any) -> int:
    print(json.dumps(payload, ensure_ascii=False, indent=2, default=str))
    return 0


def cmd_task_list(state: AppState, args: argparse.Namespace) -> int:
    tasks = state.service.list_tasks()
    if args.bucket:
        tasks = [t for t in tasks if t.bucket.lower() == args.bucket.strip().lower()]
    if args.progress is not None:
        tasks = [t for t in tasks if t.progress == args.progress]
    return _emit([t.to_dict() for t in tasks])


def cmd_task_add(state: AppState, args: argparse.Namespace) -> int:
    res = state.service.add_task(
        args.title,
        bucket=args.bucket,
        priority=args.priority,
        progress=args.progress,
        due=args.due,
        description=args.description or "",
        parent=args.parent,
        dependencies=args.dependencies,
    )
    return _emit(res.to_dict())


def cmd_task_edit(state: AppState, args: argparse.Namespace) -> int:
    changes = TaskChanges(
        title=args.title,
        description=args.description,
        bucket=args.bucket,
        progress=args.progress,
        priority=args.priority,
        due_date=args.due,
        parent=args.parent,
        dependencies=args.dependencies,
    )
    if changes.is_empty():
        raise ValidationError("Nothing to change")
    return _emit(state.service.edit_task(args.id, changes).to_dict())


def cmd_task_delete(state: AppState, args: argparse.Namespace) -> int:
    return _emit(state.service.delete_task(args.id).to_dict())


def cmd_task_show(state: AppState, args: argparse.Namespace) -> int:
    task = state.service.get_task(args.id)
    payload = task.to_dict()
    payload["subtasks"] = [c.to_dict() for c in state.service.children_of(task.id)]
    payload["blocked_by"] = [str(t.id) for t in state.service.blocked_by(task.id)]
    return _emit(payload)


def cmd_bucket_list(state: AppState, args: argparse.Namespace) -> int:
    return _emit([b.to_dict() for b in state.service.list_buckets()])


def cmd_bucket_add(state: AppState, args: argparse.Namespace) -> int:
    return _emit(state.service.add_bucket(args.name, args.description).to_dict())


def cmd_bucket_rename(state: AppState, args: argparse.Namespace) -> int:
    return _emit(state.service.rename_bucket(args.old, args.new).to_dict())


def cmd_bucket_delete(state: AppState, args: argparse.Namespace) -> int:
    return _emit(state.service.delete_bucket(args.name).to_dict())


def cmd_undo(state: AppState, args: argparse.Namespace) -> int:
    return _emit({"undone": state.service.undo()})


def cmd_history(state: AppState, args: argparse.Namespace) -> int:
    return _emit([e.to_dict() for e in state.service.history()])


def run_command(state: AppState, args: argparse.Namespace) -> int:
    """Run a parsed subcommand. Returns the process exit code."""
    try:
        return args.func(state, args)
    except TaskError as e:
        logger.info("%s %s failed: %s", args.command, getattr(args, "action", ""), e.message)
        print(json.dumps(e.to_dict(), ensure_ascii=False, indent=2, default=str), file=sys.stderr)
        return 1
