# src/taskpilot/tasks/engine.py

"""
Mutation engine.

All task/bucket changes go through here. Each operation validates every input
before touching the store, so a raised TaskError always means "nothing changed".
Batch operations (bulk_update) are the exception: they report per-target
outcomes and keep whatever succeeded.

Parent progress sync:
- "surface" (default): the parent's rollup is computed and returned as a hint,
  the parent itself is never written.
- "apply": the rollup is written to the parent through the normal progress rule
  and propagated up the ancestor chain.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Literal
from uuid import UUID

from .errors import DuplicateBucket, NotFound, TaskError, UnknownParent, ValidationError
from .task_models import (
    CLEAR,
    Bucket,
    ParentRollup,
    Priority,
    Progress,
    Task,
    _Clear,
    utc_now,
)
from .task_store import TaskStore

logger = logging.getLogger(__name__)

TaskRef = UUID | str
ParentSyncPolicy = Literal["surface", "apply"]
TaskPredicate = Callable[[Task], bool]


@dataclass(slots=True, frozen=True)
class TaskChanges:
    """
    Explicit field updates. None means "leave untouched"; CLEAR removes an
    optional field (due_date, parent).
    """

    title: str | None = None
    description: str | None = None
    bucket: str | None = None
    progress: Progress | None = None
    priority: Priority | None = None
    due_date: date | _Clear | None = None
    parent: TaskRef | _Clear | None = None
    dependencies: Sequence[TaskRef] | None = None

    def is_empty(self) -> bool:
        return all(
            v is None
            for v in (
                self.title,
                self.description,
                self.bucket,
                self.progress,
                self.priority,
                self.due_date,
                self.parent,
                self.dependencies,
            )
        )


@dataclass(slots=True, frozen=True)
class SubTaskSpec:
    title: str
    description: str = ""
    bucket: str | None = None
    priority: Priority | None = None
    progress: Progress | None = None
    due_date: date | None = None
    # 0-based indices into the sibling spec list
    depends_on: tuple[int, ...] = ()


@dataclass(slots=True)
class TaskResult:
    task: Task
    changed: bool = True
    rollups: list[ParentRollup] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "task": self.task.to_dict(),
            "changed": self.changed,
            "rollups": [r.to_dict() for r in self.rollups],
        }


@dataclass(slots=True)
class DeleteResult:
    deleted: list[UUID]
    title: str
    rollups: list[ParentRollup] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.deleted)

    def to_dict(self) -> dict[str, Any]:
        return {
            "deleted": [str(d) for d in self.deleted],
            "title": self.title,
            "cascade_count": self.count,
            "rollups": [r.to_dict() for r in self.rollups],
        }


@dataclass(slots=True)
class DecomposeResult:
    parent_id: UUID | None
    created: list[Task]
    rollups: list[ParentRollup] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "parent_id": str(self.parent_id) if self.parent_id else None,
            "created": [t.to_dict() for t in self.created],
            "rollups": [r.to_dict() for r in self.rollups],
        }


@dataclass(slots=True, frozen=True)
class BulkFailure:
    selector: str
    error_kind: str
    message: str

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.selector, "error_kind": self.error_kind, "message": self.message}


@dataclass(slots=True)
class BulkResult:
    changed: list[UUID] = field(default_factory=list)
    unchanged: list[UUID] = field(default_factory=list)
    failed: list[BulkFailure] = field(default_factory=list)
    rollups: list[ParentRollup] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "changed": [str(c) for c in self.changed],
            "unchanged": [str(u) for u in self.unchanged],
            "failed": [f.to_dict() for f in self.failed],
        }


@dataclass(slots=True, frozen=True)
class BucketRenameResult:
    old: str
    new: str
    tasks_updated: int

    def to_dict(self) -> dict[str, Any]:
        return {"old": self.old, "new": self.new, "tasks_updated": self.tasks_updated}


@dataclass(slots=True, frozen=True)
class BucketDeleteResult:
    deleted: str
    fallback: str
    tasks_moved: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "deleted": self.deleted,
            "tasks_moved_to": self.fallback,
            "tasks_moved": self.tasks_moved,
        }


def compute_rollup(children: Iterable[Progress]) -> Progress | None:
    """Aggregate child progress into the parent's derived progress."""
    stages = list(children)
    if not stages:
        return None
    if all(p == Progress.DONE for p in stages):
        return Progress.DONE
    if all(p == Progress.BACKLOG for p in stages):
        return Progress.BACKLOG
    if any(p in (Progress.IN_PROGRESS, Progress.DONE) for p in stages):
        return Progress.IN_PROGRESS
    return Progress.TODO


def _clean_title(raw: str | None) -> str:
    title = " ".join(str(raw or "").split())
    if not title:
        raise ValidationError("Task title must not be empty")
    return title


class MutationEngine:
    def __init__(
        self,
        store: TaskStore,
        *,
        parent_sync: ParentSyncPolicy = "surface",
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        if parent_sync not in ("surface", "apply"):
            raise ValueError(f"unknown parent_sync policy: {parent_sync!r}")
        self.store = store
        self.parent_sync: ParentSyncPolicy = parent_sync
        self._clock = clock

    # ---- lookups ----

    def lookup(self, ref: TaskRef) -> Task:
        if isinstance(ref, UUID):
            return self.store.get(ref)
        return self.store.resolve(ref)

    def _lookup_parent(self, ref: TaskRef) -> Task:
        try:
            return self.lookup(ref)
        except NotFound as e:
            raise UnknownParent(f"Parent task {ref!s} not found", parent=str(ref)) from e

    def _resolve_dependencies(self, refs: Sequence[TaskRef], self_id: UUID | None) -> list[UUID]:
        out: list[UUID] = []
        for ref in refs:
            dep = self.lookup(ref).id
            if dep != self_id and dep not in out:
                out.append(dep)
        return out

    def blocked_by(self, ref: TaskRef) -> list[Task]:
        """Dependencies that are not Done yet (advisory only)."""
        task = self.lookup(ref)
        out: list[Task] = []
        for dep in task.dependencies:
            if dep in self.store:
                t = self.store.get(dep)
                if t.progress != Progress.DONE:
                    out.append(t)
        return out

    # ---- parent progress ----

    def parent_rollup(self, ref: TaskRef) -> ParentRollup | None:
        parent = self.lookup(ref)
        agg = compute_rollup(c.progress for c in self.store.children_of(parent.id))
        if agg is None:
            return None
        return ParentRollup(parent.id, parent.progress, agg, applied=False)

    def _sync_parents(self, parent_id: UUID | None, now: datetime) -> list[ParentRollup]:
        out: list[ParentRollup] = []
        seen: set[UUID] = set()
        while parent_id is not None and parent_id in self.store and parent_id not in seen:
            seen.add(parent_id)
            parent = self.store.get(parent_id)
            agg = compute_rollup(c.progress for c in self.store.children_of(parent_id))
            if agg is None:
                break

            applied = False
            if self.parent_sync == "apply" and parent.progress != agg:
                applied = parent.set_progress(agg, now)
                logger.debug("Parent %s progress synced -> %s", parent.short_id, agg.value)

            out.append(ParentRollup(parent.id, parent.progress, agg, applied=applied))
            if not applied:
                break
            parent_id = parent.parent_id
        return out

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
    ) -> TaskResult:
        clean_title = _clean_title(title)
        bucket_name = (
            self.store.require_bucket(bucket).name if bucket else self.store.first_bucket().name
        )
        parent_task = self._lookup_parent(parent) if parent is not None else None

        new_id = uuid.uuid4()
        while new_id in self.store:
            new_id = uuid.uuid4()

        deps = self._resolve_dependencies(dependencies or [], new_id)

        now = self._clock()
        task = Task(
            id=new_id,
            title=clean_title,
            bucket=bucket_name,
            created_at=now,
            updated_at=now,
            description=(description or "").strip(),
            priority=priority or Priority.MEDIUM,
            due_date=due,
            parent_id=parent_task.id if parent_task else None,
            dependencies=deps,
        )
        if progress is not None:
            task.set_progress(progress, now)

        self.store.insert(task)
        logger.debug("Task added id=%s bucket=%s title=%r", task.short_id, bucket_name, clean_title)

        rollups = self._sync_parents(task.parent_id, now) if task.parent_id else []
        return TaskResult(task=task, rollups=rollups)

    def edit_task(self, ref: TaskRef, changes: TaskChanges) -> TaskResult:
        task = self.lookup(ref)

        # Validate everything first.
        new_title = _clean_title(changes.title) if changes.title is not None else None
        new_bucket = (
            self.store.require_bucket(changes.bucket).name if changes.bucket is not None else None
        )

        new_parent: UUID | None | _Clear = None
        if isinstance(changes.parent, _Clear):
            new_parent = CLEAR
        elif changes.parent is not None:
            p = self._lookup_parent(changes.parent)
            if p.id == task.id or p.id in self.store.descendants_of(task.id):
                raise ValidationError(
                    f"Cannot move {task.short_id} under {p.short_id}: would create a cycle",
                    id=str(task.id),
                    parent=str(p.id),
                )
            new_parent = p.id

        new_deps = (
            self._resolve_dependencies(changes.dependencies, task.id)
            if changes.dependencies is not None
            else None
        )

        # Apply.
        now = self._clock()
        changed = False
        old_parent = task.parent_id
        progress_changed = False

        if new_title is not None and new_title != task.title:
            task.title = new_title
            changed = True
        if changes.description is not None and changes.description.strip() != task.description:
            task.description = changes.description.strip()
            changed = True
        if new_bucket is not None and new_bucket != task.bucket:
            task.bucket = new_bucket
            changed = True
        if changes.priority is not None and changes.priority != task.priority:
            task.priority = changes.priority
            changed = True
        if isinstance(changes.due_date, _Clear):
            if task.due_date is not None:
                task.due_date = None
                changed = True
        elif changes.due_date is not None and changes.due_date != task.due_date:
            task.due_date = changes.due_date
            changed = True
        if isinstance(new_parent, _Clear):
            if task.parent_id is not None:
                task.parent_id = None
                changed = True
        elif new_parent is not None and new_parent != task.parent_id:
            task.parent_id = new_parent
            changed = True
        if new_deps is not None and new_deps != task.dependencies:
            task.dependencies = new_deps
            changed = True
        if changes.progress is not None and task.set_progress(changes.progress, now):
            changed = True
            progress_changed = True

        if not changed:
            return TaskResult(task=task, changed=False)

        task.updated_at = now
        logger.debug("Task edited id=%s", task.short_id)

        rollups: list[ParentRollup] = []
        if progress_changed or task.parent_id != old_parent:
            rollups.extend(self._sync_parents(task.parent_id, now))
            if old_parent != task.parent_id:
                rollups.extend(self._sync_parents(old_parent, now))
        return TaskResult(task=task, rollups=rollups)

    def advance_progress(self, ref: TaskRef) -> TaskResult:
        task = self.lookup(ref)
        return self.edit_task(task.id, TaskChanges(progress=task.progress.advance()))

    def retreat_progress(self, ref: TaskRef) -> TaskResult:
        task = self.lookup(ref)
        return self.edit_task(task.id, TaskChanges(progress=task.progress.retreat()))

    def delete_task(self, ref: TaskRef) -> DeleteResult:
        task = self.lookup(ref)
        doomed = [task.id, *self.store.descendants_of(task.id)]
        doomed_set = set(doomed)
        parent_id = task.parent_id

        self.store.remove(doomed)
        for other in self.store.iter_tasks():
            if any(d in doomed_set for d in other.dependencies):
                other.dependencies = [d for d in other.dependencies if d not in doomed_set]

        logger.debug("Task deleted id=%s cascade=%d", task.short_id, len(doomed))
        rollups = self._sync_parents(parent_id, self._clock()) if parent_id else []
        return DeleteResult(deleted=doomed, title=task.title, rollups=rollups)

    def decompose_task(self, ref: TaskRef | None, specs: Sequence[SubTaskSpec]) -> DecomposeResult:
        """
        Create one task per spec under `ref` (top-level when ref is None).

        depends_on indices are resolved to the new sibling ids after creation;
        out-of-range and self references are ignored.
        """
        if not specs:
            raise ValidationError("decompose_task needs at least one sub-task")

        parent = self.lookup(ref) if ref is not None else None
        titles = [_clean_title(s.title) for s in specs]
        buckets = [
            self.store.require_bucket(s.bucket).name
            if s.bucket
            else (parent.bucket if parent else self.store.first_bucket().name)
            for s in specs
        ]

        now = self._clock()
        created: list[Task] = []
        for spec, title, bucket in zip(specs, titles, buckets, strict=True):
            new_id = uuid.uuid4()
            while new_id in self.store:
                new_id = uuid.uuid4()
            sub = Task(
                id=new_id,
                title=title,
                bucket=bucket,
                created_at=now,
                updated_at=now,
                description=(spec.description or "").strip(),
                priority=spec.priority or (parent.priority if parent else Priority.MEDIUM),
                due_date=spec.due_date,
                parent_id=parent.id if parent else None,
            )
            if spec.progress is not None:
                sub.set_progress(spec.progress, now)
            self.store.insert(sub)
            created.append(sub)

        new_ids = [t.id for t in created]
        for i, spec in enumerate(specs):
            deps = [
                new_ids[j]
                for j in dict.fromkeys(spec.depends_on)
                if 0 <= j < len(new_ids) and j != i
            ]
            if deps:
                created[i].dependencies = deps

        logger.debug(
            "Decomposed parent=%s into %d sub-tasks",
            parent.short_id if parent else None,
            len(created),
        )
        rollups = self._sync_parents(parent.id, now) if parent else []
        return DecomposeResult(
            parent_id=parent.id if parent else None, created=created, rollups=rollups
        )

    def bulk_update(
        self,
        selector: Sequence[TaskRef] | TaskPredicate,
        changes: TaskChanges,
    ) -> BulkResult:
        """
        Apply the same edit to many tasks, best effort.

        Each target is attempted independently; failures are reported, not raised.
        Raises only when no target could be identified at all.
        """
        if changes.is_empty():
            raise ValidationError("bulk_update needs at least one field to change")

        result = BulkResult()
        targets: list[tuple[str, TaskRef]]
        if callable(selector):
            targets = [(t.short_id, t.id) for t in self.store.iter_tasks() if selector(t)]
            if not targets:
                raise NotFound("No task matches the bulk update filter")
        else:
            targets = [(str(ref), ref) for ref in selector]
            if not targets:
                raise NotFound("bulk_update got an empty target list")

        identified = 0
        for label, ref in targets:
            try:
                task = self.lookup(ref)
                identified += 1
                res = self.edit_task(task.id, changes)
            except TaskError as e:
                result.failed.append(BulkFailure(label, e.kind, e.message))
                continue
            (result.changed if res.changed else result.unchanged).append(task.id)
            result.rollups.extend(res.rollups)

        if identified == 0:
            raise NotFound(
                "None of the bulk update targets could be identified",
                failed=[f.to_dict() for f in result.failed],
            )
        return result

    # ---- buckets ----

    def add_bucket(self, name: str, description: str | None = None) -> Bucket:
        clean = " ".join(str(name or "").split())
        if not clean:
            raise ValidationError("Bucket name must not be empty")
        bucket = Bucket(clean, (description or "").strip() or None)
        self.store.insert_bucket(bucket)
        logger.debug("Bucket added name=%s", clean)
        return bucket

    def describe_bucket(self, name: str, description: str | None) -> Bucket:
        bucket = self.store.find_bucket(name)
        if bucket is None:
            raise NotFound(f"Bucket {name!r} not found", bucket=name)
        bucket.description = (description or "").strip() or None
        return bucket

    def rename_bucket(self, old: str, new: str) -> BucketRenameResult:
        bucket = self.store.find_bucket(old)
        if bucket is None:
            raise NotFound(f"Bucket {old!r} not found", bucket=old)
        clean = " ".join(str(new or "").split())
        if not clean:
            raise ValidationError("Bucket name must not be empty")
        other = self.store.find_bucket(clean)
        if other is not None and other is not bucket:
            raise DuplicateBucket(f"Bucket {clean!r} already exists", bucket=clean)

        if clean == bucket.name:
            return BucketRenameResult(old=bucket.name, new=clean, tasks_updated=0)

        old_name = bucket.name
        bucket.name = clean
        now = self._clock()
        moved = 0
        for task in self.store.iter_tasks():
            if task.bucket.lower() == old_name.lower():
                task.bucket = clean
                task.updated_at = now
                moved += 1

        logger.debug("Bucket renamed %s -> %s tasks=%d", old_name, clean, moved)
        return BucketRenameResult(old=old_name, new=clean, tasks_updated=moved)

    def delete_bucket(self, name: str) -> BucketDeleteResult:
        removed = self.store.remove_bucket(name)
        fallback = self.store.first_bucket().name
        now = self._clock()
        moved = 0
        for task in self.store.iter_tasks():
            if task.bucket.lower() == removed.name.lower():
                task.bucket = fallback
                task.updated_at = now
                moved += 1

        logger.debug("Bucket deleted %s -> %s tasks=%d", removed.name, fallback, moved)
        return BucketDeleteResult(deleted=removed.name, fallback=fallback, tasks_moved=moved)
