# src/taskpilot/core/ports.py

from __future__ import annotations

"""
Ports (interfaces) used by the core.

The core depends on Protocols instead of concrete implementations.
This keeps mail sources and LLM providers swappable and makes testing easier.
"""

from collections.abc import Collection
from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from ..tasks.inbox import InboxMessage

ChatMessage = dict[str, str]
# OpenAI-style chat messages: {"role": "...", "content": "..."}.

RawToolCall = dict[str, Any]
# {"name": "create_task", "arguments": {...} | "<json string>"}


class LLMToolClient(Protocol):
    """Tool-calling chat completion client (OpenAI/OpenRouter-compatible)."""

    def request_tool_calls(
            self,
            messages: list[ChatMessage],
            system_prompt: str,
            tools: list[dict[str, Any]],
    ) -> list[RawToolCall]: ...


class InboxSource(Protocol):
    """
    Where the background poller reads mail from.

    Called from a worker thread; must not touch the task service.

    The listing holds the most recent unread messages (a source may cap how
    many), plus the current read state of every id in `known` that still
    exists, whether or not it is inside that window.
    """

    def fetch_messages(self, known: Collection[str] = ()) -> list[InboxMessage]: ...
