# tests/test_buckets.py

from __future__ import annotations

import pytest

from taskpilot.tasks.errors import DuplicateBucket, LastBucket, NotFound, ValidationError
from taskpilot.tasks.service import TaskService
from taskpilot.tasks.task_models import Bucket
from taskpilot.tasks.task_store import TaskStore

from .fakes import FakeClock


def test_default_buckets_are_seeded(service: TaskService) -> None:
    assert service.bucket_names() == ["Personal", "Team", "Admin"]
    assert all(b.description for b in service.list_buckets())


def test_deleting_the_only_bucket_fails_and_changes_nothing() -> None:
    svc = TaskService(TaskStore(buckets=[Bucket("Solo")]), clock=FakeClock())
    svc.add_task("a")
    before = svc.capture()

    with pytest.raises(LastBucket):
        svc.delete_bucket("solo")

    assert svc.capture() == before


def test_delete_bucket_reassigns_its_tasks(service: TaskService) -> None:
    for i in range(3):
        service.add_task(f"team {i}", bucket="Team")
    service.add_task("admin", bucket="Admin")

    res = service.delete_bucket("team")

    assert res.deleted == "Team"
    assert res.fallback == "Personal"
    assert res.tasks_moved == 3
    buckets = [t.bucket for t in service.list_tasks()]
    assert buckets.count("Personal") == 3
    assert buckets.count("Admin") == 1


def test_rename_bucket_rewrites_tasks(service: TaskService) -> None:
    for i in range(4):
        service.add_task(f"admin {i}", bucket="Admin")
    service.add_task("personal")

    res = service.rename_bucket("Admin", "Operations")

    assert res.tasks_updated == 4
    assert len(service.list_tasks()) == 5
    assert "Admin" not in service.bucket_names()
    assert sum(t.bucket == "Operations" for t in service.list_tasks()) == 4


def test_bucket_name_collisions_are_case_insensitive(service: TaskService) -> None:
    with pytest.raises(DuplicateBucket):
        service.add_bucket("team")
    with pytest.raises(DuplicateBucket):
        service.rename_bucket("Admin", "PERSONAL")
    with pytest.raises(NotFound):
        service.rename_bucket("Nope", "Other")
    with pytest.raises(ValidationError):
        service.add_bucket("  ")


def test_rename_case_only_and_describe(service: TaskService) -> None:
    res = service.rename_bucket("team", "TEAM")
    assert res.new == "TEAM"
    assert "TEAM" in service.bucket_names()

    b = service.describe_bucket("team", "Hiring and 1:1s")
    assert b.description == "Hiring and 1:1s"
    assert service.describe_bucket("TEAM", None).description is None


def test_added_bucket_accepts_tasks(service: TaskService) -> None:
    service.add_bucket("Side Project", "Weekend hacking")
    t = service.add_task("Prototype", bucket="side project").task
    assert t.bucket == "Side Project"
