# tests/fakes.py

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from collections.abc import Collection
from typing import Any

from taskpilot.core.ports import ChatMessage, RawToolCall
from taskpilot.tasks.inbox import InboxMessage


class FakeClock:
    """Deterministic clock: every call returns a time one second later than the last."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 5, 9, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        self.now += timedelta(seconds=1)
        return self.now


class FakeToolClient:
    """
    Deterministic LLM tool client for unit tests.

    - Captures calls for assertions
    - Returns the queued tool calls (or raises the queued error)
    """

    def __init__(self, calls: list[RawToolCall] | None = None) -> None:
        self.next_calls: list[RawToolCall] = list(calls or [])
        self.next_error: Exception | None = None
        self.requests: list[tuple[list[ChatMessage], str, list[dict[str, Any]]]] = []

    def request_tool_calls(
        self,
        messages: list[ChatMessage],
        system_prompt: str,
        tools: list[dict[str, Any]],
    ) -> list[RawToolCall]:
        self.requests.append((messages, system_prompt, tools))
        if self.next_error is not None:
            raise self.next_error
        return list(self.next_calls)


class FakeInboxSource:
    """InboxSource whose listing tests can change between polls."""

    def __init__(self, messages: list[InboxMessage] | None = None) -> None:
        self.messages: list[InboxMessage] = list(messages or [])
        self.fetches = 0
        self.known: list[frozenset[str]] = []
        self.fail_next = False

    def fetch_messages(self, known: Collection[str] = ()) -> list[InboxMessage]:
        self.fetches += 1
        self.known.append(frozenset(known))
        if self.fail_next:
            self.fail_next = False
            raise OSError("mailbox unavailable")
        return list(self.messages)
