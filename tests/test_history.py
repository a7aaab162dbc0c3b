# tests/test_history.py

from __future__ import annotations

import pytest

from taskpilot.tasks.engine import TaskChanges
from taskpilot.tasks.errors import NoHistory, UnknownBucket
from taskpilot.tasks.history import MAX_SNAPSHOTS
from taskpilot.tasks.service import TaskService
from taskpilot.tasks.state_file import SnapshotDir
from taskpilot.tasks.task_models import Priority, Progress, StoreState
from taskpilot.tasks.task_store import TaskStore

from .fakes import FakeClock


def test_undo_restores_previous_state(service: TaskService) -> None:
    t = service.add_task("a").task
    before = service.capture()

    service.edit_task(t.id, TaskChanges(title="b", priority=Priority.HIGH))
    label = service.undo()

    assert label.startswith("edit:")
    assert service.capture() == before
    assert len(service.history()) == 1


def test_n_undos_return_to_the_original_state(service: TaskService) -> None:
    original = service.capture()

    t = service.add_task("a").task
    service.add_task("b", parent=t.id)
    service.advance_progress(t.id)
    service.rename_bucket("Admin", "Ops")
    service.delete_task(t.id)

    for _ in range(5):
        service.undo()

    assert service.capture() == original
    with pytest.raises(NoHistory):
        service.undo()


def test_history_keeps_the_most_recent_entries() -> None:
    svc = TaskService(TaskStore(), clock=FakeClock())
    for i in range(60):
        svc.add_task(f"task {i}")

    entries = svc.history()
    assert len(entries) == MAX_SNAPSHOTS
    assert [e.seq for e in entries] == list(range(11, 61))
    assert entries[-1].label == "add: task 59"


def test_sequence_numbers_are_not_reused_after_undo(service: TaskService) -> None:
    service.add_task("a")
    service.add_task("b")
    service.undo()
    service.add_task("c")

    assert [e.seq for e in service.history()] == [1, 3]


def test_noop_and_failed_operations_take_no_snapshot(service: TaskService) -> None:
    t = service.add_task("a").task
    assert len(service.history()) == 1

    service.edit_task(t.id, TaskChanges(title="a"))
    service.retreat_progress(t.id)
    with pytest.raises(UnknownBucket):
        service.edit_task(t.id, TaskChanges(bucket="Nope"))

    assert len(service.history()) == 1


def test_live_edit_is_exempt_from_history(service: TaskService) -> None:
    t = service.add_task("a").task

    res = service.live_edit(t.short_id, TaskChanges(progress=Progress.TODO))

    assert res.changed
    assert len(service.history()) == 1
    assert service.get_task(t.id).progress == Progress.TODO


def test_on_commit_sees_committed_state() -> None:
    seen: list[StoreState] = []
    svc = TaskService(TaskStore(), clock=FakeClock(), on_commit=seen.append)

    t = svc.add_task("a").task
    svc.edit_task(t.id, TaskChanges(title="a"))  # no-op
    svc.undo()

    assert len(seen) == 2
    assert t.id in seen[0].tasks
    assert seen[1].tasks == {}


def test_on_commit_failure_does_not_break_the_mutation() -> None:
    def boom(_state: StoreState) -> None:
        raise OSError("disk full")

    svc = TaskService(TaskStore(), clock=FakeClock(), on_commit=boom)
    svc.add_task("a")
    assert len(svc.list_tasks()) == 1


def test_transaction_rolls_back_on_error(service: TaskService) -> None:
    before = service.capture()

    with pytest.raises(UnknownBucket):
        with service.transaction("two step") as engine:
            engine.add_task("first")
            engine.add_task("second", bucket="Nope")

    assert service.capture() == before
    assert service.history() == []


def test_snapshots_are_written_to_disk_and_trimmed(tmp_path) -> None:
    journal = SnapshotDir(tmp_path / "history")
    svc = TaskService(TaskStore(), clock=FakeClock(), history_limit=3, history_journal=journal)

    for i in range(5):
        svc.add_task(f"task {i}")

    names = sorted(f.name for f in (tmp_path / "history").glob("*.json"))
    assert [n.split("-")[0] for n in names] == ["00003", "00004", "00005"]
    assert not list((tmp_path / "history").glob("*.tmp"))

    svc.undo()
    assert len(list((tmp_path / "history").glob("*.json"))) == 2


def test_history_reloads_from_disk_with_the_same_states(tmp_path) -> None:
    journal = SnapshotDir(tmp_path / "history")
    first = TaskService(TaskStore(), clock=FakeClock(), history_journal=journal)
    t = first.add_task("a", priority=Priority.HIGH).task
    mid = first.capture()
    first.edit_task(t.id, TaskChanges(title="b"))

    second = TaskService(
        TaskStore(tasks=first.capture().tasks.values()),
        clock=FakeClock(),
        history_journal=SnapshotDir(tmp_path / "history"),
    )

    assert [e.seq for e in second.history()] == [1, 2]
    second.undo()
    assert second.capture() == mid
    second.add_task("c")
    assert second.history()[-1].seq == 3


def test_unreadable_snapshot_files_are_skipped(tmp_path) -> None:
    hist = tmp_path / "history"
    hist.mkdir()
    (hist / "00001-20260101T000000.json").write_text("{oops", "utf-8")
    (hist / "notes.json").write_text("{}", "utf-8")

    svc = TaskService(TaskStore(), clock=FakeClock(), history_journal=SnapshotDir(hist))

    assert svc.history() == []
    with pytest.raises(NoHistory):
        svc.undo()
