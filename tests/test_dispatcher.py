# tests/test_dispatcher.py

from __future__ import annotations

import threading
from uuid import UUID

from taskpilot.tasks.dispatcher import ToolDispatcher
from taskpilot.tasks.service import TaskService
from taskpilot.tasks.task_models import Priority, Progress, Task


def test_turn_keeps_successes_and_reports_failures(service: TaskService) -> None:
    dispatcher = ToolDispatcher(service)

    result = dispatcher.apply_turn(
        [
            {"name": "create_task", "arguments": {"title": "A", "bucket": "Team"}},
            {"name": "delete_task", "arguments": {"target_id": "bad-id"}},
        ]
    )

    assert [t.title for t in service.list_tasks()] == ["A"]
    assert result.succeeded == 1
    assert len(result.failed) == 1
    assert result.failed[0].error_kind == "NotFound"
    assert result.failed[0].index == 1
    assert result.snapshot_taken
    assert [e.label for e in service.history()] == ["ai triage"]


def test_whole_turn_is_one_undo_step(service: TaskService) -> None:
    keep = service.add_task("keep").task
    dispatcher = ToolDispatcher(service)

    dispatcher.apply_turn(
        [
            {"name": "create_task", "arguments": {"title": "x"}},
            {"name": "create_task", "arguments": {"title": "y"}},
            {"name": "update_task", "arguments": {"target_id": keep.short_id, "priority": "Low"}},
        ]
    )
    assert len(service.list_tasks()) == 3
    assert len(service.history()) == 2

    service.undo()
    tasks = service.list_tasks()
    assert [t.title for t in tasks] == ["keep"]
    assert tasks[0].priority == Priority.MEDIUM


def test_turn_without_successful_change_takes_no_snapshot(service: TaskService) -> None:
    dispatcher = ToolDispatcher(service)

    result = dispatcher.apply_turn(
        [
            {"name": "delete_task", "arguments": {"target_id": "deadbeef"}},
            {"name": "explode", "arguments": {}},
        ]
    )

    assert result.succeeded == 0
    assert [f.error_kind for f in result.failed] == ["NotFound", "ValidationError"]
    assert not result.snapshot_taken
    assert service.history() == []

    assert dispatcher.apply_turn([]).snapshot_taken is False


def test_bulk_update_with_one_deleted_target(service: TaskService) -> None:
    tasks = [service.add_task(f"t{i}").task for i in range(5)]
    service.delete_task(tasks[4].id)
    dispatcher = ToolDispatcher(service)

    result = dispatcher.apply_turn(
        [
            {
                "name": "bulk_update_tasks",
                "arguments": {"target_ids": [t.short_id for t in tasks], "progress": "Todo"},
            }
        ]
    )

    assert result.succeeded == 1
    assert len(result.changed) == 4
    assert [(f.selector, f.error_kind) for f in result.failed] == [(tasks[4].short_id, "NotFound")]
    assert all(t.progress == Progress.TODO for t in service.list_tasks())


def test_bulk_update_by_filter_and_all(service: TaskService) -> None:
    service.add_task("a", bucket="Team")
    service.add_task("b", bucket="Team")
    service.add_task("c", bucket="Admin")
    dispatcher = ToolDispatcher(service)

    dispatcher.apply_turn(
        [
            {
                "name": "bulk_update_tasks",
                "arguments": {"filter": {"bucket": "team"}, "priority": "Critical"},
            },
            {"name": "bulk_update_tasks", "arguments": {"target_ids": ["all"], "progress": "Todo"}},
        ]
    )

    by_title = {t.title: t for t in service.list_tasks()}
    assert by_title["a"].priority == Priority.CRITICAL
    assert by_title["c"].priority == Priority.MEDIUM
    assert all(t.progress == Progress.TODO for t in by_title.values())


def test_create_with_subtasks_builds_children(service: TaskService) -> None:
    dispatcher = ToolDispatcher(service)

    result = dispatcher.apply_turn(
        [
            {
                "name": "create_task",
                "arguments": {
                    "title": "Offsite",
                    "bucket": "Team",
                    "subtasks": [
                        {"title": "Pick dates"},
                        {"title": "Book venue", "depends_on": [0]},
                    ],
                },
            }
        ]
    )

    assert len(result.changed) == 3
    parent = next(t for t in service.list_tasks() if t.title == "Offsite")
    children = service.children_of(parent.id)
    assert [c.title for c in children] == ["Pick dates", "Book venue"]
    assert children[1].dependencies == [children[0].id]
    assert all(c.bucket == "Team" for c in children)


def test_failed_compound_call_leaves_nothing_behind(service: TaskService) -> None:
    dispatcher = ToolDispatcher(service)

    result = dispatcher.apply_turn(
        [
            {
                "name": "create_task",
                "arguments": {"title": "Parent", "subtasks": [{"title": "x", "bucket": "Nope"}]},
            }
        ]
    )

    assert result.failed[0].error_kind == "UnknownBucket"
    assert service.list_tasks() == []
    assert not result.snapshot_taken


def test_ambiguous_target_is_reported(service: TaskService) -> None:
    dispatcher = ToolDispatcher(service)
    now = service.add_task("seed").task.created_at
    with service.transaction("seed ids") as engine:
        for suffix in ("1", "2"):
            engine.store.insert(
                Task(
                    id=UUID(f"3614{suffix}000-0000-4000-8000-000000000000"),
                    title=f"t{suffix}",
                    bucket="Personal",
                    created_at=now,
                    updated_at=now,
                )
            )

    result = dispatcher.apply_turn([{"name": "delete_task", "arguments": {"target_id": "3614"}}])
    assert result.failed[0].error_kind == "AmbiguousId"
    assert len(service.list_tasks()) == 3


def test_commit_from_another_thread_does_not_count_as_this_turns_snapshot(
    service: TaskService, monkeypatch
) -> None:
    dispatcher = ToolDispatcher(service)
    real_transaction = service.transaction
    other = threading.Thread(target=lambda: service.add_task("from the inbox"))

    def racing_transaction(label: str):
        if threading.current_thread() is not other:
            # another writer tries to commit while the turn is about to start
            other.start()
            other.join(timeout=0.2)
        return real_transaction(label)

    monkeypatch.setattr(service, "transaction", racing_transaction)

    result = dispatcher.apply_turn([{"name": "delete_task", "arguments": {"target_id": "deadbeef"}}])
    other.join(timeout=5)

    assert not result.snapshot_taken
    assert [t.title for t in service.list_tasks()] == ["from the inbox"]
    assert [e.label for e in service.history()] == ["add: from the inbox"]
