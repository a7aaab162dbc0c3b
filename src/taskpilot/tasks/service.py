# src/taskpilot/tasks/service.py

"""
TaskService: the single ownership boundary around the task store.

Every caller (console commands, AI tool dispatch, inbox poller) goes through
this object. It serializes access with one lock and wraps each mutating entry
point as snapshot -> execute -> commit:

- the pre-change state is captured before the operation runs,
- it is pushed to the undo history only if the operation returned normally
  AND the state actually changed,
- if the operation raises after a partial change, the captured state is
  restored before the error propagates.

Reads return deep copies taken under the lock, so callers never hold live
references into the store.
"""

from __future__ import annotations

import contextlib
import copy
import logging
import threading
from collections.abc import Callable, Iterator, Sequence
from datetime import date, datetime
from typing import TypeVar

from .engine import (
    BucketDeleteResult,
    BucketRenameResult,
    BulkResult,
    DecomposeResult,
    DeleteResult,
    MutationEngine,
    ParentSyncPolicy,
    SubTaskSpec,
    TaskChanges,
    TaskPredicate,
    TaskRef,
    TaskResult,
)
from .history import MAX_SNAPSHOTS, SnapshotHistory, SnapshotJournal
from .task_models import (
    Bucket,
    HistoryEntry,
    ParentRollup,
    Priority,
    Progress,
    StoreState,
    Task,
    utc_now,
)
from .task_store import TaskStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

CommitHook = Callable[[StoreState], None]


class TaskService:
    def __init__(
        self,
        store: TaskStore | None = None,
        *,
        history_limit: int = MAX_SNAPSHOTS,
        parent_sync: ParentSyncPolicy = "surface",
        clock: Callable[[], datetime] = utc_now,
        on_commit: CommitHook | None = None,
        history_journal: SnapshotJournal | None = None,
    ) -> None:
        self._lock = threading.RLock()
        self._store = store if store is not None else TaskStore()
        self._engine = MutationEngine(self._store, parent_sync=parent_sync, clock=clock)
        self._history = SnapshotHistory(history_limit, journal=history_journal)
        self._clock = clock
        self._on_commit = on_commit

    @property
    def parent_sync(self) -> ParentSyncPolicy:
        return self._engine.parent_sync

    # ---- commit plumbing ----

    def _notify_commit(self) -> None:
        if self._on_commit is None:
            return
        try:
            self._on_commit(self._store.capture())
        except Exception:
            logger.exception("on_commit hook failed")

    @contextlib.contextmanager
    def exclusive(self) -> Iterator[None]:
        """Hold the service lock across several calls so no other thread commits in between."""
        with self._lock:
            yield

    @contextlib.contextmanager
    def transaction(self, label: str) -> Iterator[MutationEngine]:
        """
        Hold the lock for a group of engine calls that form one undo step.

        Errors raised out of the block roll the store back. Errors the block
        handles itself (per-call failures in an AI turn) do not.
        """
        with self._lock:
            before = self._store.capture()
            try:
                yield self._engine
            except BaseException:
                if self._store.capture() != before:
                    logger.warning("Rolling back partial change for %r", label)
                    self._store.restore(before)
                raise

            if self._store.capture() == before:
                logger.debug("No-op %r: no snapshot", label)
                return

            snap = self._history.push(label, before, self._clock())
            logger.info("Committed %r (snapshot seq=%s)", label, snap.seq)
            self._notify_commit()

    def _mutate(self, label: str, fn: Callable[[MutationEngine], T]) -> T:
        with self.transaction(label) as engine:
            result = fn(engine)
            return copy.deepcopy(result)

    # ---- tasks ----

    def add_task(
        self,
        title: str,
        *,
        bucket: str | None = None,
        priority: Priority | None = None,
        progress: Progress | None = None,
        due: date | None = None,
        description: str = "",
        parent: TaskRef | None = None,
        dependencies: Sequence[TaskRef] | None = None,
        label: str | None = None,
    ) -> TaskResult:
        return self._mutate(
            label or f"add: {title.strip()}",
            lambda e: e.add_task(
                title,
                bucket=bucket,
                priority=priority,
                progress=progress,
                due=due,
                description=description,
                parent=parent,
                dependencies=dependencies,
            ),
        )

    def edit_task(self, ref: TaskRef, changes: TaskChanges, *, label: str | None = None) -> TaskResult:
        return self._mutate(label or f"edit: {ref}", lambda e: e.edit_task(ref, changes))

    def live_edit(self, ref: TaskRef, changes: TaskChanges) -> TaskResult:
        """Interactive in-place edit: same rules as edit_task, no undo snapshot."""
        with self._lock:
            result = self._engine.edit_task(ref, changes)
            if result.changed:
                self._notify_commit()
            return copy.deepcopy(result)

    def advance_progress(self, ref: TaskRef) -> TaskResult:
        return self._mutate(f"advance: {ref}", lambda e: e.advance_progress(ref))

    def retreat_progress(self, ref: TaskRef) -> TaskResult:
        return self._mutate(f"retreat: {ref}", lambda e: e.retreat_progress(ref))

    def delete_task(self, ref: TaskRef, *, label: str | None = None) -> DeleteResult:
        return self._mutate(label or f"delete: {ref}", lambda e: e.delete_task(ref))

    def decompose_task(self, ref: TaskRef | None, specs: Sequence[SubTaskSpec]) -> DecomposeResult:
        return self._mutate(f"decompose: {ref}", lambda e: e.decompose_task(ref, specs))

    def bulk_update(
        self,
        selector: Sequence[TaskRef] | TaskPredicate,
        changes: TaskChanges,
        *,
        label: str = "bulk update",
    ) -> BulkResult:
        return self._mutate(label, lambda e: e.bulk_update(selector, changes))

    # ---- buckets ----

    def add_bucket(self, name: str, description: str | None = None) -> Bucket:
        return self._mutate(f"bucket add: {name}", lambda e: e.add_bucket(name, description))

    def describe_bucket(self, name: str, description: str | None) -> Bucket:
        return self._mutate(
            f"bucket describe: {name}", lambda e: e.describe_bucket(name, description)
        )

    def rename_bucket(self, old: str, new: str) -> BucketRenameResult:
        return self._mutate(f"bucket rename: {old} -> {new}", lambda e: e.rename_bucket(old, new))

    def delete_bucket(self, name: str) -> BucketDeleteResult:
        return self._mutate(f"bucket delete: {name}", lambda e: e.delete_bucket(name))

    # ---- undo ----

    def undo(self) -> str:
        """Restore the most recent snapshot and return its label."""
        with self._lock:
            snap = self._history.pop()
            self._store.restore(snap.state)
            logger.info("Undo %r (seq=%s)", snap.label, snap.seq)
            self._notify_commit()
            return snap.label

    def history(self) -> list[HistoryEntry]:
        with self._lock:
            return self._history.entries()

    @property
    def snapshot_seq(self) -> int:
        with self._lock:
            return self._history.last_seq

    # ---- reads ----

    def list_tasks(self) -> list[Task]:
        with self._lock:
            return copy.deepcopy(list(self._store.iter_tasks()))

    def get_task(self, ref: TaskRef) -> Task:
        with self._lock:
            return copy.deepcopy(self._engine.lookup(ref))

    def children_of(self, ref: TaskRef) -> list[Task]:
        with self._lock:
            parent = self._engine.lookup(ref)
            return copy.deepcopy(self._store.children_of(parent.id))

    def list_buckets(self) -> list[Bucket]:
        with self._lock:
            return copy.deepcopy(self._store.buckets())

    def bucket_names(self) -> list[str]:
        with self._lock:
            return self._store.bucket_names()

    def parent_rollup(self, ref: TaskRef) -> ParentRollup | None:
        with self._lock:
            return self._engine.parent_rollup(ref)

    def blocked_by(self, ref: TaskRef) -> list[Task]:
        with self._lock:
            return copy.deepcopy(self._engine.blocked_by(ref))

    def capture(self) -> StoreState:
        with self._lock:
            return self._store.capture()
