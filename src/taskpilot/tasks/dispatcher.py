# src/taskpilot/tasks/dispatcher.py

"""
Tool dispatcher: applies one agent turn (a batch of tool calls) to the store.

Calls run in order inside a single service transaction, so the whole turn is
one undo step. A failing call is recorded and the next call still runs; the
transaction only commits a snapshot if something actually changed.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any
from uuid import UUID

from .engine import MutationEngine
from .errors import TaskError
from .service import TaskService
from .tool_calls import (
    BulkUpdateTasksCall,
    CreateTaskCall,
    DecomposeTaskCall,
    DeleteTaskCall,
    ToolCall,
    UpdateTaskCall,
    parse_tool_call,
)

logger = logging.getLogger(__name__)

AI_TURN_LABEL = "ai triage"


@dataclass(slots=True)
class CallOutcome:
    index: int
    kind: str
    ok: bool
    result: dict[str, Any] | None = None
    error_kind: str | None = None
    message: str | None = None
    changed: list[UUID] = field(default_factory=list)
    # per-target failures of a bulk call that otherwise succeeded
    partial_failures: list[TurnFailure] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"index": self.index, "kind": self.kind, "ok": self.ok}
        if self.ok:
            out["result"] = self.result
        else:
            out["error_kind"] = self.error_kind
            out["message"] = self.message
        return out


@dataclass(slots=True)
class TurnFailure:
    index: int
    selector: str
    error_kind: str
    message: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "id": self.selector,
            "error_kind": self.error_kind,
            "message": self.message,
        }


@dataclass(slots=True)
class TurnResult:
    outcomes: list[CallOutcome] = field(default_factory=list)
    changed: list[UUID] = field(default_factory=list)
    failed: list[TurnFailure] = field(default_factory=list)
    snapshot_taken: bool = False

    @property
    def succeeded(self) -> int:
        return sum(1 for o in self.outcomes if o.ok)

    def summary(self) -> str:
        if not self.outcomes:
            return "AI made no changes."
        parts = [f"{self.succeeded}/{len(self.outcomes)} tool calls applied"]
        if self.changed:
            parts.append(f"{len(self.changed)} task(s) touched")
        if self.failed:
            parts.append(f"{len(self.failed)} failure(s)")
        if self.snapshot_taken:
            parts.append("/undo to revert")
        return ", ".join(parts)

    def to_dict(self) -> dict[str, Any]:
        return {
            "outcomes": [o.to_dict() for o in self.outcomes],
            "changed": [str(c) for c in self.changed],
            "failed": [f.to_dict() for f in self.failed],
            "snapshot_taken": self.snapshot_taken,
        }


class ToolDispatcher:
    def __init__(self, service: TaskService) -> None:
        self.service = service

    def apply_turn(
        self,
        calls: Iterable[Mapping[str, Any] | ToolCall],
        *,
        label: str = AI_TURN_LABEL,
    ) -> TurnResult:
        """
        Run every call of one turn. Raw mappings are parsed first; a parse
        error becomes a ValidationError outcome for that call only.
        """
        result = TurnResult()

        # No other thread may commit between the two seq reads.
        with self.service.exclusive():
            seq_before = self.service.snapshot_seq
            with self.service.transaction(label) as engine:
                for index, raw in enumerate(calls):
                    kind = _kind_of(raw)
                    savepoint = engine.store.capture()
                    try:
                        call = raw if not isinstance(raw, Mapping) else parse_tool_call(raw)
                        outcome = self._apply(engine, index, call)
                    except TaskError as e:
                        # A compound call (create + subtasks) must not leave half of itself behind.
                        if engine.store.capture() != savepoint:
                            engine.store.restore(savepoint)
                        logger.info("Tool call #%d %s failed: %s", index, kind, e.message)
                        outcome = CallOutcome(
                            index=index, kind=kind, ok=False, error_kind=e.kind, message=e.message
                        )
                        result.failed.append(
                            TurnFailure(index, _selector_of(raw), e.kind, e.message)
                        )

                    result.outcomes.append(outcome)
                    result.failed.extend(outcome.partial_failures)
                    for tid in outcome.changed:
                        if tid not in result.changed:
                            result.changed.append(tid)

            result.snapshot_taken = self.service.snapshot_seq > seq_before

        logger.info("AI turn applied: %s", result.summary())
        return result

    # ---- per kind ----

    def _apply(self, engine: MutationEngine, index: int, call: ToolCall) -> CallOutcome:
        if isinstance(call, CreateTaskCall):
            res = engine.add_task(
                call.title,
                bucket=call.bucket,
                priority=call.priority,
                progress=call.progress,
                due=call.due_date,
                description=call.description,
                dependencies=list(call.dependencies),
            )
            changed = [res.task.id]
            payload = res.to_dict()
            if call.subtasks:
                sub = engine.decompose_task(res.task.id, call.subtasks)
                changed.extend(t.id for t in sub.created)
                payload["subtasks"] = [t.to_dict() for t in sub.created]
            return CallOutcome(index, call.kind, True, result=payload, changed=changed)

        if isinstance(call, UpdateTaskCall):
            target = engine.lookup(call.target_id)
            res = engine.edit_task(target.id, call.changes)
            changed = [res.task.id] if res.changed else []
            payload = res.to_dict()
            if call.subtasks:
                sub = engine.decompose_task(target.id, call.subtasks)
                changed.extend(t.id for t in sub.created)
                payload["subtasks"] = [t.to_dict() for t in sub.created]
            return CallOutcome(index, call.kind, True, result=payload, changed=changed)

        if isinstance(call, DeleteTaskCall):
            res_del = engine.delete_task(call.target_id)
            return CallOutcome(
                index, call.kind, True, result=res_del.to_dict(), changed=list(res_del.deleted)
            )

        if isinstance(call, DecomposeTaskCall):
            res_dec = engine.decompose_task(call.target_id, call.subtasks)
            return CallOutcome(
                index,
                call.kind,
                True,
                result=res_dec.to_dict(),
                changed=[t.id for t in res_dec.created],
            )

        if isinstance(call, BulkUpdateTasksCall):
            if call.filter is not None:
                selector = call.filter
            elif call.targets_all:
                selector = lambda _t: True  # noqa: E731
            else:
                selector = list(call.target_ids)
            res_bulk = engine.bulk_update(selector, call.changes)
            return CallOutcome(
                index,
                call.kind,
                True,
                result=res_bulk.to_dict(),
                changed=list(res_bulk.changed),
                partial_failures=[
                    TurnFailure(index, f.selector, f.error_kind, f.message) for f in res_bulk.failed
                ],
            )

        raise TypeError(f"unsupported tool call {call!r}")


def _kind_of(raw: Mapping[str, Any] | ToolCall) -> str:
    if isinstance(raw, Mapping):
        return str(raw.get("kind") or raw.get("name") or "?")
    return raw.kind


def _selector_of(raw: Mapping[str, Any] | ToolCall) -> str:
    if isinstance(raw, Mapping):
        args = raw.get("arguments")
        if isinstance(args, Mapping):
            return str(args.get("target_id") or args.get("title") or "")
        return ""
    for attr in ("target_id", "title"):
        v = getattr(raw, attr, None)
        if v:
            return str(v)
    return ""
