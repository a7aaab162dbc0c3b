# src/taskpilot/core/state.py

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from ..tasks.dispatcher import ToolDispatcher
from ..tasks.inbox import InboxBridge
from ..tasks.service import TaskService
from ..tasks.state_file import StateFile
from .ports import LLMToolClient


@dataclass
class AppState:
    """Runtime state shared by connectors (console, inbox poller)."""

    settings: Any

    service: TaskService
    dispatcher: ToolDispatcher
    llm: LLMToolClient
    inbox: InboxBridge

    state_file: StateFile | None = None

    @property
    def llm_online(self) -> bool:
        return not getattr(self.llm, "offline", False)
