# src/taskpilot/tasks/task_store.py

from __future__ import annotations

import copy
import logging
from collections.abc import Iterable, Iterator
from uuid import UUID

from .errors import DuplicateBucket, LastBucket, NotFound, UnknownBucket
from .id_resolver import MIN_PREFIX_LEN, resolve_prefix
from .task_models import DEFAULT_BUCKETS, Bucket, StoreState, Task

logger = logging.getLogger(__name__)


class TaskStore:
    """
    In-memory task/bucket store.

    Tasks are keyed by UUID; buckets keep registration order, which defines the
    "first bucket" used for defaults and fallbacks. Hierarchy is stored only as
    parent pointers on tasks; child lookups are derived on demand.

    Not thread-safe by itself: TaskService owns the lock.
    """

    def __init__(
        self,
        *,
        buckets: Iterable[Bucket] | None = None,
        tasks: Iterable[Task] | None = None,
        min_prefix_len: int = MIN_PREFIX_LEN,
    ) -> None:
        seed = list(buckets) if buckets is not None else copy.deepcopy(DEFAULT_BUCKETS)
        if not seed:
            seed = copy.deepcopy(DEFAULT_BUCKETS)
        self._buckets: list[Bucket] = []
        for b in seed:
            self.insert_bucket(Bucket(b.name, b.description))
        self._tasks: dict[UUID, Task] = {}
        for t in tasks or []:
            self._tasks[t.id] = t
        self.min_prefix_len = max(MIN_PREFIX_LEN, min_prefix_len)
        logger.debug("TaskStore ready buckets=%d tasks=%d", len(self._buckets), len(self._tasks))

    # ---- tasks ----

    def __len__(self) -> int:
        return len(self._tasks)

    def __contains__(self, task_id: object) -> bool:
        return task_id in self._tasks

    def task_ids(self) -> list[UUID]:
        return list(self._tasks)

    def get(self, task_id: UUID) -> Task:
        task = self._tasks.get(task_id)
        if task is None:
            raise NotFound(f"Task {task_id} not found", id=str(task_id))
        return task

    def resolve(self, prefix: str) -> Task:
        return self._tasks[resolve_prefix(prefix, self._tasks, min_len=self.min_prefix_len)]

    def iter_tasks(self) -> Iterator[Task]:
        """Tasks ordered by creation time."""
        return iter(sorted(self._tasks.values(), key=lambda t: t.created_at))

    def insert(self, task: Task) -> None:
        if task.id in self._tasks:
            raise ValueError(f"duplicate task id {task.id}")
        self.require_bucket(task.bucket)
        self._tasks[task.id] = task

    def remove(self, task_ids: Iterable[UUID]) -> int:
        n = 0
        for tid in task_ids:
            if self._tasks.pop(tid, None) is not None:
                n += 1
        return n

    def children_index(self) -> dict[UUID, list[UUID]]:
        """Adjacency built from parent pointers: parent id -> child ids (creation order)."""
        index: dict[UUID, list[UUID]] = {}
        for t in self.iter_tasks():
            if t.parent_id is not None:
                index.setdefault(t.parent_id, []).append(t.id)
        return index

    def children_of(self, task_id: UUID) -> list[Task]:
        return [self._tasks[c] for c in self.children_index().get(task_id, [])]

    def descendants_of(self, task_id: UUID) -> list[UUID]:
        index = self.children_index()
        out: list[UUID] = []
        stack = list(index.get(task_id, []))
        while stack:
            cur = stack.pop()
            out.append(cur)
            stack.extend(index.get(cur, []))
        return out

    def ancestors_of(self, task_id: UUID) -> list[UUID]:
        out: list[UUID] = []
        seen = {task_id}
        cur = self._tasks.get(task_id)
        while cur is not None and cur.parent_id is not None and cur.parent_id not in seen:
            out.append(cur.parent_id)
            seen.add(cur.parent_id)
            cur = self._tasks.get(cur.parent_id)
        return out

    # ---- buckets ----

    def buckets(self) -> list[Bucket]:
        return list(self._buckets)

    def bucket_names(self) -> list[str]:
        return [b.name for b in self._buckets]

    def first_bucket(self) -> Bucket:
        return self._buckets[0]

    def find_bucket(self, name: str) -> Bucket | None:
        key = (name or "").strip().lower()
        for b in self._buckets:
            if b.name.lower() == key:
                return b
        return None

    def require_bucket(self, name: str) -> Bucket:
        b = self.find_bucket(name)
        if b is None:
            raise UnknownBucket(f"Bucket {name!r} does not exist", bucket=name)
        return b

    def insert_bucket(self, bucket: Bucket) -> None:
        if self.find_bucket(bucket.name) is not None:
            raise DuplicateBucket(f"Bucket {bucket.name!r} already exists", bucket=bucket.name)
        self._buckets.append(bucket)

    def remove_bucket(self, name: str) -> Bucket:
        b = self.find_bucket(name)
        if b is None:
            raise NotFound(f"Bucket {name!r} not found", bucket=name)
        if len(self._buckets) <= 1:
            raise LastBucket("Cannot delete the last bucket", bucket=b.name)
        self._buckets.remove(b)
        return b

    # ---- whole-state copy ----

    def capture(self) -> StoreState:
        return StoreState(tasks=self._tasks, buckets=self._buckets).copy()

    def restore(self, state: StoreState) -> None:
        fresh = state.copy()
        self._tasks = fresh.tasks
        self._buckets = fresh.buckets
        logger.debug("TaskStore restored buckets=%d tasks=%d", len(self._buckets), len(self._tasks))
