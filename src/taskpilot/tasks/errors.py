# src/taskpilot/tasks/errors.py

"""
Error kinds raised by the task core.

Every failure a caller can see is a TaskError subclass with a stable `kind`
string. Connectors render them; the tool dispatcher reports them back to the
agent as structured outcomes.
"""

from __future__ import annotations

from typing import Any


class TaskError(Exception):
    kind = "TaskError"

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"error_kind": self.kind, "message": self.message}
        if self.details:
            out["details"] = dict(self.details)
        return out


class InvalidIdFormat(TaskError):
    kind = "InvalidIdFormat"


class AmbiguousId(TaskError):
    kind = "AmbiguousId"


class NotFound(TaskError):
    kind = "NotFound"


class UnknownBucket(TaskError):
    kind = "UnknownBucket"


class UnknownParent(TaskError):
    kind = "UnknownParent"


class DuplicateBucket(TaskError):
    kind = "DuplicateBucket"


class LastBucket(TaskError):
    kind = "LastBucket"


class NoHistory(TaskError):
    kind = "NoHistory"


class ValidationError(TaskError):
    kind = "ValidationError"
