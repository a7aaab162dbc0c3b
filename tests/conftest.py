# tests/conftest.py

from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace

import pytest

from taskpilot.core.state import AppState
from taskpilot.tasks.dispatcher import ToolDispatcher
from taskpilot.tasks.inbox import InboxBridge
from taskpilot.tasks.service import TaskService
from taskpilot.tasks.task_models import DEFAULT_BUCKETS, Bucket
from taskpilot.tasks.task_store import TaskStore

from .fakes import FakeClock, FakeToolClient


@pytest.fixture()
def settings(tmp_path: Path) -> SimpleNamespace:
    """
    Minimal settings object compatible with AppState and bootstrap.

    We intentionally use a SimpleNamespace rather than importing real config,
    to keep unit tests isolated and deterministic.
    """
    return SimpleNamespace(
        app_name="taskpilot-test",
        data_dir=tmp_path,
        state_path=tmp_path / "tasks.json",
        history_dir=tmp_path / "history",
        history_limit=50,
        min_prefix_len=4,
        parent_progress_sync="surface",
        default_buckets=[Bucket(b.name, b.description) for b in DEFAULT_BUCKETS],
        console_enabled=False,
        inbox_enabled=False,
        inbox_maildir=None,
        inbox_poll_seconds=0.01,
        llm_models=["fake/model"],
        openrouter_api_key=None,
    )


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def service(clock: FakeClock) -> TaskService:
    """TaskService over a fresh store seeded with the default buckets."""
    return TaskService(TaskStore(), clock=clock)


@pytest.fixture()
def llm() -> FakeToolClient:
    return FakeToolClient()


@pytest.fixture()
def state(settings: SimpleNamespace, service: TaskService, llm: FakeToolClient) -> AppState:
    """AppState wired with deterministic fakes (no state file, no network)."""
    return AppState(
        settings=settings,
        service=service,
        dispatcher=ToolDispatcher(service),
        llm=llm,
        inbox=InboxBridge(service),
    )
