# src/taskpilot/tasks/state_file.py

"""
JSON persistence for the task store.

Layout: {"version": 1, "buckets": [...], "tasks": [...]}.

Loading is forgiving: records that cannot be parsed are skipped and
references that would break store invariants are repaired (and logged)
instead of refusing to start. A file that is not valid JSON at all is moved
aside to <name>.corrupt and the store starts from the default buckets.

Undo snapshots live in a sibling directory (SnapshotDir), one JSON file each.
"""

from __future__ import annotations

import contextlib
import json
import logging
import os
from collections.abc import Iterable, Sequence
from datetime import datetime
from pathlib import Path
from typing import Any
from uuid import UUID

from .task_models import DEFAULT_BUCKETS, Bucket, Snapshot, StoreState, Task

logger = logging.getLogger(__name__)

STATE_VERSION = 1


def _repair(tasks: dict[UUID, Task], buckets: list[Bucket]) -> int:
    """Fix dangling bucket/parent/dependency references in place. Returns repair count."""
    repairs = 0
    names = {b.name.lower(): b.name for b in buckets}
    fallback = buckets[0].name

    for t in tasks.values():
        canonical = names.get(t.bucket.lower())
        if canonical is None:
            logger.warning("Task %s: unknown bucket %r -> %s", t.short_id, t.bucket, fallback)
            t.bucket = fallback
            repairs += 1
        elif canonical != t.bucket:
            t.bucket = canonical

        if t.parent_id is not None and t.parent_id not in tasks:
            logger.warning("Task %s: parent %s missing, detaching", t.short_id, t.parent_id)
            t.parent_id = None
            repairs += 1

        deps = [d for d in dict.fromkeys(t.dependencies) if d in tasks and d != t.id]
        if deps != t.dependencies:
            logger.warning("Task %s: dropped dangling dependencies", t.short_id)
            t.dependencies = deps
            repairs += 1

    # Break parent cycles: walk each chain, detach the task that closes the loop.
    for t in tasks.values():
        seen = {t.id}
        cur = t
        while cur.parent_id is not None:
            if cur.parent_id in seen:
                logger.warning("Task %s: parent cycle, detaching", cur.short_id)
                cur.parent_id = None
                repairs += 1
                break
            seen.add(cur.parent_id)
            cur = tasks[cur.parent_id]

    return repairs


def dump_state(state: StoreState) -> dict[str, Any]:
    return {
        "version": STATE_VERSION,
        "buckets": [b.to_dict() for b in state.buckets],
        "tasks": [t.to_dict() for t in sorted(state.tasks.values(), key=lambda t: t.created_at)],
    }


def parse_state(data: Any, default_buckets: Sequence[Bucket], *, source: object = "") -> StoreState:
    """Build a repaired StoreState from a decoded payload. Raises ValueError on a non-object."""
    if not isinstance(data, dict):
        raise ValueError(f"{source}: top-level JSON must be an object")

    buckets: list[Bucket] = []
    seen_names: set[str] = set()
    for raw in data.get("buckets") or []:
        if not isinstance(raw, dict) or not str(raw.get("name") or "").strip():
            continue
        b = Bucket.from_dict(raw)
        if b.name.lower() in seen_names:
            logger.warning("Duplicate bucket %r in %s skipped", b.name, source)
            continue
        seen_names.add(b.name.lower())
        buckets.append(b)
    if not buckets:
        buckets = [Bucket(b.name, b.description) for b in default_buckets]

    tasks: dict[UUID, Task] = {}
    for raw in data.get("tasks") or []:
        try:
            t = Task.from_dict(raw)
        except (AttributeError, KeyError, TypeError, ValueError):
            logger.warning("Skipping unreadable task record: %r", raw)
            continue
        if t.id in tasks:
            logger.warning("Duplicate task id %s in %s skipped", t.id, source)
            continue
        tasks[t.id] = t

    repairs = _repair(tasks, buckets)
    if repairs:
        logger.info("Repaired %d references in %s", repairs, source)
    return StoreState(tasks=tasks, buckets=buckets)


def write_json_atomic(path: Path, payload: Any) -> None:
    """tmp file + os.replace, so readers never observe a half-written file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(path.name + ".tmp")
    tmp.write_text(json.dumps(payload, ensure_ascii=False, indent=2), "utf-8")
    os.replace(tmp, path)
    with contextlib.suppress(OSError):
        os.chmod(path, 0o600)


class StateFile:
    def __init__(self, path: str | Path, *, default_buckets: Sequence[Bucket] | None = None) -> None:
        self.path = Path(path)
        self._default_buckets = list(default_buckets) if default_buckets else list(DEFAULT_BUCKETS)

    def _defaults(self) -> StoreState:
        return StoreState(
            tasks={},
            buckets=[Bucket(b.name, b.description) for b in self._default_buckets],
        )

    def _quarantine(self, reason: Exception) -> StoreState:
        aside = self.path.with_name(self.path.name + ".corrupt")
        logger.error("State file %s is unreadable (%s); moved to %s", self.path, reason, aside)
        os.replace(self.path, aside)
        return self._defaults()

    def load(self) -> StoreState:
        if not self.path.exists():
            logger.info("No state file at %s; starting with default buckets", self.path)
            return self._defaults()

        try:
            data = json.loads(self.path.read_text("utf-8"))
            state = parse_state(data, self._default_buckets, source=self.path)
        except (UnicodeDecodeError, ValueError) as e:
            return self._quarantine(e)

        logger.info(
            "Loaded state: %d tasks, %d buckets from %s",
            len(state.tasks),
            len(state.buckets),
            self.path,
        )
        return state

    def save(self, state: StoreState) -> None:
        write_json_atomic(self.path, dump_state(state))
        logger.debug("Saved state: %d tasks to %s", len(state.tasks), self.path)


class SnapshotDir:
    """
    Undo snapshots on disk, one file per entry: <seq:05d>-<YYYYmmddTHHMMSS>.json.

    Each file holds {"seq", "label", "timestamp", "state"} where "state" has the
    same layout as the main state file.
    """

    def __init__(self, path: str | Path, *, default_buckets: Sequence[Bucket] | None = None) -> None:
        self.path = Path(path)
        self._default_buckets = list(default_buckets) if default_buckets else list(DEFAULT_BUCKETS)

    def _files(self) -> dict[int, Path]:
        if not self.path.is_dir():
            return {}
        out: dict[int, Path] = {}
        for f in self.path.glob("*.json"):
            head = f.stem.split("-", 1)[0]
            if head.isdigit():
                out[int(head)] = f
        return out

    def write(self, snap: Snapshot) -> None:
        name = f"{snap.seq:05d}-{snap.timestamp:%Y%m%dT%H%M%S}.json"
        payload = {
            "seq": snap.seq,
            "label": snap.label,
            "timestamp": snap.timestamp.isoformat(),
            "state": dump_state(snap.state),
        }
        write_json_atomic(self.path / name, payload)

    def remove(self, seq: int) -> None:
        f = self._files().get(seq)
        if f is not None:
            f.unlink(missing_ok=True)

    def trim(self, keep: Iterable[int]) -> None:
        keep = set(keep)
        for seq, f in self._files().items():
            if seq not in keep:
                f.unlink(missing_ok=True)

    def load(self) -> list[Snapshot]:
        """Readable snapshots, oldest first. Unreadable files are skipped."""
        snaps: list[Snapshot] = []
        for seq, f in sorted(self._files().items()):
            try:
                data = json.loads(f.read_text("utf-8"))
                snaps.append(
                    Snapshot(
                        seq=seq,
                        label=str(data.get("label") or ""),
                        timestamp=datetime.fromisoformat(data["timestamp"]),
                        state=parse_state(data.get("state"), self._default_buckets, source=f),
                    )
                )
            except (AttributeError, KeyError, TypeError, UnicodeDecodeError, ValueError) as e:
                logger.warning("Skipping unreadable snapshot %s: %s", f, e)
        return snaps
