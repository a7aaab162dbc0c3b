# src/taskpilot/tasks/task_models.py

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from enum import StrEnum
from typing import Any
from uuid import UUID

SHORT_ID_LEN = 8


class Progress(StrEnum):
    """
    Task stage, ordered Backlog -> Todo -> InProgress -> Done.

    The string values are what the agent and the state file see.
    """

    BACKLOG = "Backlog"
    TODO = "Todo"
    IN_PROGRESS = "In progress"
    DONE = "Done"

    @property
    def stage_index(self) -> int:
        return _PROGRESS_ORDER.index(self)

    def advance(self) -> Progress:
        i = self.stage_index
        return _PROGRESS_ORDER[min(i + 1, len(_PROGRESS_ORDER) - 1)]

    def retreat(self) -> Progress:
        i = self.stage_index
        return _PROGRESS_ORDER[max(i - 1, 0)]

    @classmethod
    def parse(cls, raw: str | None) -> Progress | None:
        if raw is None:
            return None
        s = str(raw).strip().lower().replace("-", " ").replace("_", " ")
        if s in {"in progress", "inprogress"}:
            return cls.IN_PROGRESS
        for p in cls:
            if p.value.lower() == s:
                return p
        return None


_PROGRESS_ORDER: list[Progress] = [
    Progress.BACKLOG,
    Progress.TODO,
    Progress.IN_PROGRESS,
    Progress.DONE,
]


class Priority(StrEnum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"

    @classmethod
    def parse(cls, raw: str | None) -> Priority | None:
        if raw is None:
            return None
        s = str(raw).strip().lower()
        aliases = {"med": "medium", "crit": "critical"}
        s = aliases.get(s, s)
        for p in cls:
            if p.value.lower() == s:
                return p
        return None


class _Clear:
    """Sentinel type: 'remove this optional field' in an edit."""

    _instance: _Clear | None = None

    def __new__(cls) -> _Clear:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "CLEAR"

    def __deepcopy__(self, memo: dict[int, Any]) -> _Clear:
        return self


CLEAR = _Clear()


def utc_now() -> datetime:
    return datetime.now(UTC)


def short_id(task_id: UUID) -> str:
    return str(task_id)[:SHORT_ID_LEN]


def _iso(ts: datetime | date | None) -> str | None:
    return ts.isoformat() if ts is not None else None


@dataclass(slots=True)
class Bucket:
    name: str
    description: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "description": self.description}

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> Bucket:
        desc = raw.get("description")
        return cls(name=str(raw["name"]), description=str(desc) if desc else None)


@dataclass(slots=True)
class Task:
    id: UUID
    title: str
    bucket: str
    created_at: datetime
    updated_at: datetime

    description: str = ""
    progress: Progress = Progress.BACKLOG
    priority: Priority = Priority.MEDIUM
    due_date: date | None = None
    parent_id: UUID | None = None
    dependencies: list[UUID] = field(default_factory=list)
    start_date: datetime | None = None

    @property
    def short_id(self) -> str:
        return short_id(self.id)

    def set_progress(self, new: Progress, now: datetime) -> bool:
        """
        Move to `new`, stamping start_date on the first entry into InProgress.

        Returns False when `new` equals the current progress.
        """
        if self.progress == new:
            return False
        if new == Progress.IN_PROGRESS and self.start_date is None:
            self.start_date = now
        self.progress = new
        self.updated_at = now
        return True

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "short_id": self.short_id,
            "title": self.title,
            "description": self.description,
            "bucket": self.bucket,
            "progress": self.progress.value,
            "priority": self.priority.value,
            "due_date": _iso(self.due_date),
            "parent_id": str(self.parent_id) if self.parent_id else None,
            "dependencies": [str(d) for d in self.dependencies],
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
            "start_date": _iso(self.start_date),
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> Task:
        due = raw.get("due_date")
        parent = raw.get("parent_id")
        start = raw.get("start_date")
        return cls(
            id=UUID(str(raw["id"])),
            title=str(raw["title"]),
            bucket=str(raw["bucket"]),
            created_at=datetime.fromisoformat(str(raw["created_at"])),
            updated_at=datetime.fromisoformat(str(raw["updated_at"])),
            description=str(raw.get("description") or ""),
            progress=Progress.parse(raw.get("progress")) or Progress.BACKLOG,
            priority=Priority.parse(raw.get("priority")) or Priority.MEDIUM,
            due_date=date.fromisoformat(str(due)) if due else None,
            parent_id=UUID(str(parent)) if parent else None,
            dependencies=[UUID(str(d)) for d in raw.get("dependencies") or []],
            start_date=datetime.fromisoformat(str(start)) if start else None,
        )


@dataclass(slots=True)
class StoreState:
    """Deep, self-contained copy of everything a snapshot restores."""

    tasks: dict[UUID, Task]
    buckets: list[Bucket]

    def copy(self) -> StoreState:
        return StoreState(tasks=copy.deepcopy(self.tasks), buckets=copy.deepcopy(self.buckets))


@dataclass(slots=True, frozen=True)
class Snapshot:
    seq: int
    label: str
    timestamp: datetime
    state: StoreState


@dataclass(slots=True, frozen=True)
class HistoryEntry:
    seq: int
    label: str
    timestamp: datetime

    def to_dict(self) -> dict[str, Any]:
        return {"seq": self.seq, "label": self.label, "timestamp": self.timestamp.isoformat()}


@dataclass(slots=True, frozen=True)
class ParentRollup:
    """Aggregate progress derived from a parent's children."""

    parent_id: UUID
    current: Progress
    rollup: Progress
    applied: bool

    @property
    def eligible_for_done(self) -> bool:
        return self.rollup == Progress.DONE and self.current != Progress.DONE

    def to_dict(self) -> dict[str, Any]:
        return {
            "parent_id": str(self.parent_id),
            "current": self.current.value,
            "rollup": self.rollup.value,
            "applied": self.applied,
        }


DEFAULT_BUCKETS: list[Bucket] = [
    Bucket("Personal", "Your own tasks, reviews, and personal direction"),
    Bucket("Team", "Onboarding, coordination, guiding your crew"),
    Bucket("Admin", "Taxes, accounting, admin chores"),
]
