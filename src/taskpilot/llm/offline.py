# src/taskpilot/llm/offline.py

from __future__ import annotations

import logging
from typing import Any

from ..core.ports import ChatMessage, RawToolCall

logger = logging.getLogger(__name__)


class OfflineToolClient:
    """
    Offline LLM client used when no external API is configured.

    Never proposes tool calls, so an AI turn through it is a no-op and takes no snapshot.
    """

    offline = True

    def request_tool_calls(
            self,
            messages: list[ChatMessage],
            system_prompt: str,
            tools: list[dict[str, Any]],
    ) -> list[RawToolCall]:
        logger.debug("Offline LLM: ignoring request with %d message(s)", len(messages))
        return []
