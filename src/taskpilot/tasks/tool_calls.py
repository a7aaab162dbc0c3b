# src/taskpilot/tasks/tool_calls.py

"""
Typed payloads for the agent's tool calls.

The LLM hands us `{name, arguments}` where arguments is JSON (often a JSON
string). Everything is validated and coerced here, before the engine is
involved; a malformed call raises ValidationError and never reaches the store.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import date
from typing import Any, ClassVar

from .engine import SubTaskSpec, TaskChanges
from .errors import ValidationError
from .task_models import CLEAR, Priority, Progress, Task, _Clear

MAX_TITLE_LEN = 200
MAX_DESCRIPTION_LEN = 400
MAX_SUBTASKS = 12
MAX_DEPENDENCIES = 8

ALL_TARGETS = "all"

# due_date values that mean "remove the due date"
_CLEAR_WORDS = {"none", "clear", "null", "-"}


@dataclass(slots=True, frozen=True)
class CreateTaskCall:
    kind: ClassVar[str] = "create_task"

    title: str
    bucket: str | None = None
    description: str = ""
    priority: Priority | None = None
    progress: Progress | None = None
    due_date: date | None = None
    dependencies: tuple[str, ...] = ()
    subtasks: tuple[SubTaskSpec, ...] = ()


@dataclass(slots=True, frozen=True)
class UpdateTaskCall:
    kind: ClassVar[str] = "update_task"

    target_id: str
    changes: TaskChanges
    subtasks: tuple[SubTaskSpec, ...] = ()


@dataclass(slots=True, frozen=True)
class DeleteTaskCall:
    kind: ClassVar[str] = "delete_task"

    target_id: str


@dataclass(slots=True, frozen=True)
class DecomposeTaskCall:
    kind: ClassVar[str] = "decompose_task"

    target_id: str | None
    subtasks: tuple[SubTaskSpec, ...]


@dataclass(slots=True, frozen=True)
class BulkFilter:
    """Conjunctive match on bucket / progress / priority; unset fields match anything."""

    bucket: str | None = None
    progress: Progress | None = None
    priority: Priority | None = None

    def __call__(self, task: Task) -> bool:
        if self.bucket is not None and task.bucket.lower() != self.bucket.lower():
            return False
        if self.progress is not None and task.progress != self.progress:
            return False
        if self.priority is not None and task.priority != self.priority:
            return False
        return True

    def describe(self) -> str:
        parts = [
            f"{k}={v}"
            for k, v in (("bucket", self.bucket), ("progress", self.progress), ("priority", self.priority))
            if v is not None
        ]
        return "filter(" + ", ".join(parts) + ")" if parts else "filter(*)"


@dataclass(slots=True, frozen=True)
class BulkUpdateTasksCall:
    kind: ClassVar[str] = "bulk_update_tasks"

    changes: TaskChanges
    target_ids: tuple[str, ...] = ()
    filter: BulkFilter | None = None

    @property
    def targets_all(self) -> bool:
        return any(t.lower() == ALL_TARGETS for t in self.target_ids)


ToolCall = CreateTaskCall | UpdateTaskCall | DeleteTaskCall | DecomposeTaskCall | BulkUpdateTasksCall

TOOL_KINDS: tuple[str, ...] = (
    CreateTaskCall.kind,
    UpdateTaskCall.kind,
    DeleteTaskCall.kind,
    DecomposeTaskCall.kind,
    BulkUpdateTasksCall.kind,
)


# ---------- field coercion ----------


def _opt_str(args: Mapping[str, Any], key: str) -> str | None:
    v = args.get(key)
    if v is None:
        return None
    if not isinstance(v, str):
        raise ValidationError(f"{key} must be a string", field=key)
    v = v.strip()
    return v or None


def _title(raw: Any, *, required: bool) -> str | None:
    if raw is None:
        if required:
            raise ValidationError("title is required", field="title")
        return None
    if not isinstance(raw, str):
        raise ValidationError("title must be a string", field="title")
    title = " ".join(raw.split())[:MAX_TITLE_LEN].strip()
    if not title:
        raise ValidationError("title must not be empty", field="title")
    return title


def _description(raw: Any) -> str | None:
    if raw is None:
        return None
    if not isinstance(raw, str):
        raise ValidationError("description must be a string", field="description")
    return raw.strip()[:MAX_DESCRIPTION_LEN]


def _progress(raw: Any) -> Progress | None:
    if raw is None:
        return None
    p = Progress.parse(str(raw))
    if p is None:
        raise ValidationError(f"Unknown progress {raw!r}", field="progress")
    return p


def _priority(raw: Any) -> Priority | None:
    if raw is None:
        return None
    p = Priority.parse(str(raw))
    if p is None:
        raise ValidationError(f"Unknown priority {raw!r}", field="priority")
    return p


def _due(raw: Any, *, allow_clear: bool) -> date | _Clear | None:
    if raw is None:
        return None
    s = str(raw).strip()
    if not s:
        return None
    if allow_clear and s.lower() in _CLEAR_WORDS:
        return CLEAR
    try:
        return date.fromisoformat(s)
    except ValueError as e:
        raise ValidationError(f"due_date {raw!r} is not YYYY-MM-DD", field="due_date") from e


def _id_list(raw: Any, key: str, *, cap: int) -> tuple[str, ...] | None:
    if raw is None:
        return None
    if not isinstance(raw, list):
        raise ValidationError(f"{key} must be a list of id prefixes", field=key)
    out = [str(x).strip() for x in raw if str(x).strip()]
    return tuple(dict.fromkeys(out))[:cap]


def _subtasks(raw: Any) -> tuple[SubTaskSpec, ...]:
    if raw is None:
        return ()
    if not isinstance(raw, list):
        raise ValidationError("subtasks must be a list", field="subtasks")

    specs: list[SubTaskSpec] = []
    for i, item in enumerate(raw[:MAX_SUBTASKS]):
        if not isinstance(item, Mapping):
            raise ValidationError(f"subtasks[{i}] must be an object", field="subtasks")
        deps_raw = item.get("depends_on") or []
        if not isinstance(deps_raw, list):
            raise ValidationError(f"subtasks[{i}].depends_on must be a list", field="subtasks")
        depends_on: list[int] = []
        for d in deps_raw[:MAX_DEPENDENCIES]:
            if isinstance(d, bool) or not isinstance(d, int):
                raise ValidationError(
                    f"subtasks[{i}].depends_on entries must be integers", field="subtasks"
                )
            depends_on.append(d)

        due = _due(item.get("due_date"), allow_clear=False)
        specs.append(
            SubTaskSpec(
                title=_title(item.get("title"), required=True) or "",
                description=_description(item.get("description")) or "",
                bucket=_opt_str(item, "bucket"),
                priority=_priority(item.get("priority")),
                progress=_progress(item.get("progress")),
                due_date=due if isinstance(due, date) else None,
                depends_on=tuple(depends_on),
            )
        )
    return tuple(specs)


def _changes(args: Mapping[str, Any]) -> TaskChanges:
    deps = _id_list(args.get("dependencies"), "dependencies", cap=MAX_DEPENDENCIES)
    return TaskChanges(
        title=_title(args.get("title"), required=False),
        description=_description(args.get("description")),
        bucket=_opt_str(args, "bucket"),
        progress=_progress(args.get("progress")),
        priority=_priority(args.get("priority")),
        due_date=_due(args.get("due_date"), allow_clear=True),
        dependencies=list(deps) if deps is not None else None,
    )


def _required_id(args: Mapping[str, Any], key: str = "target_id") -> str:
    v = _opt_str(args, key)
    if not v:
        raise ValidationError(f"{key} is required", field=key)
    return v


# ---------- public ----------


def decode_arguments(raw: Any) -> dict[str, Any]:
    """Arguments arrive either as a dict or as a JSON string (OpenAI style)."""
    if raw is None:
        return {}
    if isinstance(raw, str):
        if not raw.strip():
            return {}
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ValidationError(f"Tool arguments are not valid JSON: {e.msg}") from e
    if not isinstance(raw, Mapping):
        raise ValidationError("Tool arguments must be a JSON object")
    return dict(raw)


def parse_tool_call(raw: Mapping[str, Any]) -> ToolCall:
    """Validate one `{kind|name, arguments}` request into a typed payload."""
    kind = str(raw.get("kind") or raw.get("name") or "").strip()
    args = decode_arguments(raw.get("arguments"))

    if kind == CreateTaskCall.kind:
        due = _due(args.get("due_date"), allow_clear=False)
        return CreateTaskCall(
            title=_title(args.get("title"), required=True) or "",
            bucket=_opt_str(args, "bucket"),
            description=_description(args.get("description")) or "",
            priority=_priority(args.get("priority")),
            progress=_progress(args.get("progress")),
            due_date=due if isinstance(due, date) else None,
            dependencies=_id_list(args.get("dependencies"), "dependencies", cap=MAX_DEPENDENCIES)
            or (),
            subtasks=_subtasks(args.get("subtasks")),
        )

    if kind == UpdateTaskCall.kind:
        return UpdateTaskCall(
            target_id=_required_id(args),
            changes=_changes(args),
            subtasks=_subtasks(args.get("subtasks")),
        )

    if kind == DeleteTaskCall.kind:
        return DeleteTaskCall(target_id=_required_id(args))

    if kind == DecomposeTaskCall.kind:
        subtasks = _subtasks(args.get("subtasks"))
        if not subtasks:
            raise ValidationError("decompose_task: no subtasks provided", field="subtasks")
        return DecomposeTaskCall(target_id=_opt_str(args, "target_id"), subtasks=subtasks)

    if kind == BulkUpdateTasksCall.kind:
        target_ids = _id_list(args.get("target_ids"), "target_ids", cap=10_000) or ()
        flt_raw = args.get("filter")
        flt: BulkFilter | None = None
        if flt_raw is not None:
            if not isinstance(flt_raw, Mapping):
                raise ValidationError("filter must be an object", field="filter")
            flt = BulkFilter(
                bucket=_opt_str(flt_raw, "bucket"),
                progress=_progress(flt_raw.get("progress")),
                priority=_priority(flt_raw.get("priority")),
            )
        if not target_ids and flt is None:
            raise ValidationError("bulk_update_tasks: empty target_ids", field="target_ids")
        changes = _changes(args)
        if changes.is_empty():
            raise ValidationError("bulk_update_tasks: nothing to change")
        return BulkUpdateTasksCall(changes=changes, target_ids=target_ids, filter=flt)

    raise ValidationError(f"Unknown tool {kind!r}", tool=kind, known=list(TOOL_KINDS))
