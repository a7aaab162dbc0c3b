# src/taskpilot/cli/commands.py

from __future__ import annotations

import contextlib
import inspect
import logging
import shlex
from collections.abc import Callable, Sequence
from datetime import date
from typing import cast

from ..core.state import AppState
from ..core.triage import run_triage
from ..llm.client import friendly_llm_error_message
from ..tasks.engine import TaskChanges
from ..tasks.errors import AmbiguousId, TaskError, ValidationError
from ..tasks.quick_add import infer_new_task
from ..tasks.task_models import CLEAR, ParentRollup, Priority, Progress, Task, short_id

CommandEmitter = Callable[[str], None]
CommandHandler2 = Callable[[AppState, list[str]], str]
CommandHandler3 = Callable[[AppState, list[str], CommandEmitter | None], str]
CommandHandler = CommandHandler2 | CommandHandler3

logger = logging.getLogger(__name__)


def _split_args(text: str) -> list[str]:
    try:
        return shlex.split(text)
    except ValueError:
        # Unbalanced quotes: fall back to plain whitespace split.
        return text.split()


def render_error(e: TaskError) -> str:
    msg = f"Error ({e.kind}): {e.message}"
    if isinstance(e, AmbiguousId) and e.details.get("candidates"):
        msg += "\n  Candidates: " + ", ".join(e.details["candidates"])
    return msg


class CommandRegistry:
    """Simple slash-command registry used by the console (/help, /add, ...)."""

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

    def handle(
        self,
        state: AppState,
        line: str,
        emit: CommandEmitter | None = None,
    ) -> str | None:
        """
        Handle a string like "/command args".
        Returns a reply string or None if not a command.
        """
        if not line.startswith("/"):
            return None

        parts = _split_args(line[1:])
        if not parts:
            return "Empty command. Use /help to list available commands."

        name = parts[0].lower()
        args = parts[1:]

        handler = self._handlers.get(name)
        if not handler:
            return f"Unknown command: /{name}. Use /help to list available commands."

        try:
            nparams = len(inspect.signature(handler).parameters)
        except (TypeError, ValueError):
            nparams = 3

        try:
            if nparams >= 3:
                h3 = cast(CommandHandler3, handler)
                return h3(state, args, emit)
            h2 = cast(CommandHandler2, handler)
            return h2(state, args)
        except TaskError as e:
            logger.debug("/%s failed: %s", name, e.message)
            return render_error(e)

    def build_help(self) -> str:
        lines = ["Available commands:"]
        for name, help_text in self._help.items():
            lines.append(f"  /{name} - {help_text}")
        return "\n".join(lines)


registry = CommandRegistry()


# ---------- formatting ----------


def format_task_line(t: Task, depth: int = 0) -> str:
    indent = "  " * depth + ("↳ " if depth else "")
    due = f" due {t.due_date.isoformat()}" if t.due_date else ""
    return f"{indent}{t.short_id} [{t.bucket}] {t.progress.value:<11} {t.priority.value:<8} {t.title}{due}"


def format_tree(tasks: Sequence[Task]) -> list[str]:
    by_parent: dict[object, list[Task]] = {}
    ids = {t.id for t in tasks}
    for t in tasks:
        # Filtered listings: show a child at top level when its parent is not listed.
        key = t.parent_id if t.parent_id in ids else None
        by_parent.setdefault(key, []).append(t)

    lines: list[str] = []

    def walk(parent_id: object, depth: int) -> None:
        for t in by_parent.get(parent_id, []):
            lines.append(format_task_line(t, depth))
            walk(t.id, depth + 1)

    walk(None, 0)
    return lines


def format_rollups(rollups: Sequence[ParentRollup]) -> str:
    lines = []
    for r in rollups:
        if r.applied:
            lines.append(f"  Parent {short_id(r.parent_id)} moved to {r.rollup.value}.")
        elif r.eligible_for_done:
            lines.append(f"  All sub-tasks of {short_id(r.parent_id)} are Done; parent can be closed.")
        elif r.rollup != r.current:
            lines.append(
                f"  Parent {short_id(r.parent_id)} is {r.current.value}; sub-tasks suggest {r.rollup.value}."
            )
    return ("\n" + "\n".join(lines)) if lines else ""


# ---------- shared actions ----------


def quick_add(state: AppState, text: str) -> str:
    hints = infer_new_task(text, state.service.bucket_names())
    if hints is None:
        return "Nothing to add (empty title)."
    res = state.service.add_task(
        hints.title,
        bucket=hints.bucket,
        priority=hints.priority,
        due=hints.due_date,
    )
    return f"Added {format_task_line(res.task)}"


def ai_triage(state: AppState, text: str, emit: CommandEmitter | None = None) -> str:
    if emit:
        with contextlib.suppress(Exception):
            emit("[AI] Thinking...")
    try:
        result = run_triage(state, text)
    except RuntimeError as e:
        msg = friendly_llm_error_message(e)
        logger.info("LLM runtime error: %s", msg)
        return f"[LLM] {msg}"

    lines = [f"[AI] {result.summary()}"]
    for o in result.outcomes:
        if o.ok:
            lines.append(f"  #{o.index} {o.kind}: ok")
        else:
            lines.append(f"  #{o.index} {o.kind}: {o.error_kind} - {o.message}")
    for f in result.failed:
        if f.selector and not any(o.index == f.index and not o.ok for o in result.outcomes):
            lines.append(f"  #{f.index} {f.selector}: {f.error_kind} - {f.message}")
    return "\n".join(lines)


# ---------- /edit parsing ----------

_EDIT_KEYS = {
    "title": "title",
    "desc": "description",
    "description": "description",
    "bucket": "bucket",
    "progress": "progress",
    "status": "progress",
    "p": "priority",
    "priority": "priority",
    "due": "due_date",
    "parent": "parent",
    "deps": "dependencies",
    "dependencies": "dependencies",
}

_NONE_WORDS = {"none", "clear", "-"}


def parse_edit_args(args: Sequence[str]) -> TaskChanges:
    """key=value pairs -> TaskChanges. Raises ValidationError on bad keys/values."""
    fields: dict[str, object] = {}
    for item in args:
        key, sep, value = item.partition("=")
        if not sep:
            raise ValidationError(f"Expected key=value, got {item!r}")
        field_name = _EDIT_KEYS.get(key.strip().lower())
        if field_name is None:
            raise ValidationError(f"Unknown field {key!r}", known=sorted(_EDIT_KEYS))
        value = value.strip()

        if field_name == "progress":
            prog = Progress.parse(value)
            if prog is None:
                raise ValidationError(f"Unknown progress {value!r}")
            fields[field_name] = prog
        elif field_name == "priority":
            prio = Priority.parse(value)
            if prio is None:
                raise ValidationError(f"Unknown priority {value!r}")
            fields[field_name] = prio
        elif field_name == "due_date":
            if value.lower() in _NONE_WORDS:
                fields[field_name] = CLEAR
            else:
                try:
                    fields[field_name] = date.fromisoformat(value)
                except ValueError as e:
                    raise ValidationError(f"due must be YYYY-MM-DD, got {value!r}") from e
        elif field_name == "parent":
            fields[field_name] = CLEAR if value.lower() in _NONE_WORDS else value
        elif field_name == "dependencies":
            fields[field_name] = [d.strip() for d in value.split(",") if d.strip()]
        else:
            fields[field_name] = value

    changes = TaskChanges(**fields)  # type: ignore[arg-type]
    if changes.is_empty():
        raise ValidationError("Nothing to change")
    return changes


# ---------- handlers ----------


def cmd_help(state: AppState, args: list[str]) -> str:
    return registry.build_help()


def cmd_status(state: AppState, args: list[str]) -> str:
    tasks = state.service.list_tasks()
    done = sum(1 for t in tasks if t.progress == Progress.DONE)
    models = ", ".join(list(getattr(state.settings, "llm_models", []) or []))
    llm = f"online ({models})" if state.llm_online else "offline"
    inbox = "ON" if getattr(state.settings, "inbox_enabled", False) else "OFF"
    return (
        "Status:\n"
        f"  Tasks: {len(tasks)} ({done} done)\n"
        f"  Buckets: {', '.join(state.service.bucket_names())}\n"
        f"  Undo history: {len(state.service.history())}\n"
        f"  Parent progress sync: {state.service.parent_sync}\n"
        f"  Inbox poller: {inbox}\n"
        f"  LLM: {llm}"
    )


def cmd_add(state: AppState, args: list[str]) -> str:
    if not args:
        return "Usage: /add [bucket:] title [due:YYYY-MM-DD] [p:low|medium|high|critical]"
    return quick_add(state, " ".join(args))


def cmd_edit(state: AppState, args: list[str]) -> str:
    """
    /edit <id> key=value ...   (keys: title desc bucket progress p due parent deps)

    Interactive edit: applied immediately and not recorded in undo history.
    """
    if len(args) < 2:
        return "Usage: /edit <id> key=value ... (title, desc, bucket, progress, p, due, parent, deps)"
    res = state.service.live_edit(args[0], parse_edit_args(args[1:]))
    if not res.changed:
        return f"No change: {format_task_line(res.task)}"
    return f"Edited {format_task_line(res.task)}{format_rollups(res.rollups)}"


def cmd_show(state: AppState, args: list[str]) -> str:
    if not args:
        return "Usage: /show <id>"
    t = state.service.get_task(args[0])
    lines = [
        f"{t.title}",
        f"  id:        {t.id}",
        f"  bucket:    {t.bucket}",
        f"  progress:  {t.progress.value}",
        f"  priority:  {t.priority.value}",
        f"  due:       {t.due_date.isoformat() if t.due_date else '-'}",
        f"  started:   {t.start_date.isoformat(timespec='minutes') if t.start_date else '-'}",
        f"  created:   {t.created_at.isoformat(timespec='minutes')}",
        f"  updated:   {t.updated_at.isoformat(timespec='minutes')}",
    ]
    if t.parent_id:
        lines.append(f"  parent:    {short_id(t.parent_id)}")
    if t.description:
        lines.append(f"  {t.description}")

    blocked = state.service.blocked_by(t.id)
    if blocked:
        lines.append("  Waiting on: " + ", ".join(f"{b.short_id} {b.title}" for b in blocked))

    children = state.service.children_of(t.id)
    if children:
        lines.append("  Sub-tasks:")
        lines.extend("    " + format_task_line(c) for c in children)
        rollup = state.service.parent_rollup(t.id)
        if rollup is not None and rollup.rollup != t.progress:
            lines.append(f"  Sub-tasks suggest: {rollup.rollup.value}")
    return "\n".join(lines)


def cmd_list(state: AppState, args: list[str]) -> str:
    tasks = state.service.list_tasks()
    if args:
        wanted = " ".join(args).lower()
        tasks = [t for t in tasks if t.bucket.lower() == wanted]
    if not tasks:
        return "No tasks."
    return "\n".join(format_tree(tasks))


def cmd_next(state: AppState, args: list[str]) -> str:
    if not args:
        return "Usage: /next <id>"
    res = state.service.advance_progress(args[0])
    return f"{format_task_line(res.task)}{format_rollups(res.rollups)}"


def cmd_prev(state: AppState, args: list[str]) -> str:
    if not args:
        return "Usage: /prev <id>"
    res = state.service.retreat_progress(args[0])
    return f"{format_task_line(res.task)}{format_rollups(res.rollups)}"


def cmd_rm(state: AppState, args: list[str]) -> str:
    if not args:
        return "Usage: /rm <id>"
    res = state.service.delete_task(args[0])
    extra = f" (+{res.count - 1} sub-task(s))" if res.count > 1 else ""
    return f"Deleted {res.title!r}{extra}.{format_rollups(res.rollups)}"


def cmd_bucket(state: AppState, args: list[str]) -> str:
    """
    /bucket list
    /bucket add <name> [description...]
    /bucket rename <old> <new>
    /bucket rm <name>
    /bucket describe <name> [description...]
    """
    usage = "Usage: /bucket list | add <name> [desc] | rename <old> <new> | rm <name> | describe <name> [desc]"
    sub = args[0].lower() if args else "list"
    rest = args[1:]

    if sub in ("list", "ls"):
        lines = ["Buckets:"]
        for b in state.service.list_buckets():
            lines.append(f"  {b.name}" + (f" - {b.description}" if b.description else ""))
        return "\n".join(lines)

    if sub == "add" and rest:
        b = state.service.add_bucket(rest[0], " ".join(rest[1:]) or None)
        return f"Bucket {b.name!r} added."

    if sub == "rename" and len(rest) == 2:
        r = state.service.rename_bucket(rest[0], rest[1])
        return f"Bucket {r.old!r} renamed to {r.new!r} ({r.tasks_updated} task(s) updated)."

    if sub in ("rm", "delete") and rest:
        d = state.service.delete_bucket(rest[0])
        return f"Bucket {d.deleted!r} deleted; {d.tasks_moved} task(s) moved to {d.fallback!r}."

    if sub == "describe" and rest:
        b = state.service.describe_bucket(rest[0], " ".join(rest[1:]) or None)
        return f"Bucket {b.name!r}: {b.description or '(no description)'}"

    return usage


def cmd_undo(state: AppState, args: list[str]) -> str:
    label = state.service.undo()
    return f"Undid: {label}"


def cmd_history(state: AppState, args: list[str]) -> str:
    entries = state.service.history()
    if not entries:
        return "No undo history."
    lines = ["Undo history (oldest -> newest):"]
    for e in entries:
        lines.append(f"  #{e.seq} {e.timestamp.astimezone().strftime('%H:%M:%S')} {e.label}")
    return "\n".join(lines)


def cmd_ai(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    if not args:
        return "Usage: /ai <instruction>"
    if not state.llm_online:
        return "[LLM] Offline: set TASKPILOT_OPENROUTER_API_KEY to enable AI triage."
    return ai_triage(state, " ".join(args), emit)


registry.register("help", cmd_help, help_text="Show available commands.", aliases=["h", "?"])
registry.register("status", cmd_status, help_text="Show task counts, buckets and settings.")
registry.register(
    "add", cmd_add, help_text="Add a task: /add [bucket:] title [due:YYYY-MM-DD] [p:high]."
)
registry.register(
    "edit", cmd_edit, help_text="Edit in place (no undo): /edit <id> key=value ..."
)
registry.register("show", cmd_show, help_text="Show one task: /show <id>.")
registry.register("list", cmd_list, help_text="List tasks: /list [bucket].", aliases=["ls"])
registry.register("next", cmd_next, help_text="Advance progress one step: /next <id>.")
registry.register("prev", cmd_prev, help_text="Move progress back one step: /prev <id>.")
registry.register("rm", cmd_rm, help_text="Delete a task and its sub-tasks: /rm <id>.")
registry.register(
    "bucket", cmd_bucket, help_text="Buckets: /bucket list | add | rename | rm | describe."
)
registry.register("undo", cmd_undo, help_text="Revert the most recent change.")
registry.register("history", cmd_history, help_text="Show the undo history.")
registry.register("ai", cmd_ai, help_text="Let the AI triage an instruction: /ai <text>.")
