# src/taskpilot/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- loads settings once,
- ensures local (gitignored) directories exist,
- loads the task state file and the on-disk undo history,
  and wires the TaskService around them,
- picks the LLM client (OpenRouter, or offline when not configured).
"""

from __future__ import annotations

import logging

from ..config import get_settings
from ..core.ports import LLMToolClient
from ..core.state import AppState
from ..llm.client import OpenRouterToolClient
from ..llm.offline import OfflineToolClient
from ..tasks.dispatcher import ToolDispatcher
from ..tasks.inbox import InboxBridge
from ..tasks.service import TaskService
from ..tasks.state_file import SnapshotDir, StateFile
from ..tasks.task_models import StoreState
from ..tasks.task_store import TaskStore

logger = logging.getLogger(__name__)


def _ensure_local_dirs(settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.state_path.parent.mkdir(parents=True, exist_ok=True)
    settings.history_dir.mkdir(parents=True, exist_ok=True)


def _make_llm(settings) -> LLMToolClient:
    try:
        return OpenRouterToolClient(settings)
    except RuntimeError as e:
        logger.info("LLM not configured (%s); using offline client.", e)
        return OfflineToolClient()


def create_initial_state(*, settings=None, llm: LLMToolClient | None = None) -> AppState:
    """
    Create AppState from the provided settings.

    Keeping settings injectable makes the app easier to test and avoids hidden global config reads.
    If settings is None, falls back to get_settings().
    """
    if settings is None:
        settings = get_settings()

    _ensure_local_dirs(settings)

    state_file = StateFile(settings.state_path, default_buckets=settings.default_buckets)
    loaded = state_file.load()
    store = TaskStore(
        buckets=loaded.buckets,
        tasks=loaded.tasks.values(),
        min_prefix_len=settings.min_prefix_len,
    )

    def _persist(snapshot: StoreState) -> None:
        state_file.save(snapshot)

    service = TaskService(
        store,
        history_limit=settings.history_limit,
        parent_sync=settings.parent_progress_sync,
        on_commit=_persist,
        history_journal=SnapshotDir(settings.history_dir, default_buckets=settings.default_buckets),
    )

    return AppState(
        settings=settings,
        service=service,
        dispatcher=ToolDispatcher(service),
        llm=llm if llm is not None else _make_llm(settings),
        inbox=InboxBridge(service),
        state_file=state_file,
    )


def save_state(state: AppState) -> None:
    if state.state_file is None:
        return
    try:
        state.state_file.save(state.service.capture())
        logger.info("Saved task state to %s", state.state_file.path)
    except Exception:
        logger.exception("Failed to save task state to %s", state.state_file.path)
