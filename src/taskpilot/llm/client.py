# src/taskpilot/llm/client.py

from __future__ import annotations

import json
import logging
import time
from typing import Any

import httpx
import openai
from openai import OpenAI

from ..core.ports import ChatMessage, RawToolCall

logger = logging.getLogger(__name__)

_BAD_MODELS: dict[str, float] = {}  # model -> retry_at (monotonic)


def _is_auth_error(exc: Exception) -> bool:
    if isinstance(exc, (openai.AuthenticationError, openai.PermissionDeniedError)):
        return True
    return exc.__class__.__name__ in {"UnauthorizedError"}


def _is_rate_limit_error(exc: Exception) -> bool:
    return isinstance(exc, openai.RateLimitError)


def _is_connection_error(exc: Exception) -> bool:
    return isinstance(exc, (openai.APIConnectionError, httpx.TimeoutException))


def _is_not_found_error(exc: Exception) -> bool:
    # OpenAI-compatible SDK uses NotFoundError for HTTP 404
    return isinstance(exc, openai.NotFoundError)


def friendly_llm_error_message(err: Exception) -> str:
    msg = str(err).strip() or "LLM error."
    if "LLM API key is not set" in msg:
        return "LLM is not configured (missing API key). Set TASKPILOT_OPENROUTER_API_KEY in .env."
    if "LLM model list is empty" in msg:
        return "LLM is not configured (no models). Set TASKPILOT_LLM_MODELS in .env."
    if "LLM base URL is not set" in msg:
        return "LLM is not configured (missing base URL). Set TASKPILOT_OPENROUTER_BASE_URL in .env."
    return msg


def _extract_tool_calls(response: Any) -> list[RawToolCall]:
    try:
        message = response.choices[0].message
    except (AttributeError, IndexError):
        return []

    out: list[RawToolCall] = []
    for tc in getattr(message, "tool_calls", None) or []:
        fn = getattr(tc, "function", None)
        name = getattr(fn, "name", None)
        if not name:
            continue
        args = getattr(fn, "arguments", None)
        if not isinstance(args, str):
            args = json.dumps(args or {})
        out.append({"name": name, "arguments": args})
    return out


class OpenRouterToolClient:
    """
    Tool-calling chat client for any OpenAI-compatible endpoint (OpenRouter by default).

    Behavior:
    - Tries models in the order from settings (TASKPILOT_LLM_MODELS).
    - 404 (model not available) -> try next, and skip that model for an hour.
    - Rate limit / network issues -> try next.
    - Auth issues -> fail fast (no retries across models).
    """

    def __init__(self, settings, *, client: OpenAI | None = None) -> None:
        api_key = getattr(settings, "openrouter_api_key", None)
        base_url = getattr(settings, "openrouter_base_url", "") or ""

        if client is None:
            if not api_key or not str(api_key).strip():
                raise RuntimeError(
                    "LLM API key is not set. Set TASKPILOT_OPENROUTER_API_KEY in your .env."
                )
            if not base_url.strip():
                raise RuntimeError(
                    "LLM base URL is not set. Set TASKPILOT_OPENROUTER_BASE_URL in your .env."
                )

        timeout_s = float(getattr(settings, "llm_timeout_seconds", 60.0))
        self._timeout = httpx.Timeout(connect=5.0, read=timeout_s, write=10.0, pool=5.0)
        self._models: list[str] = list(getattr(settings, "llm_models", []) or [])
        self._headers: dict[str, str] = dict(getattr(settings, "extra_headers", {}) or {})

        # No SDK retries: fallback across models is faster.
        self._client = client or OpenAI(
            base_url=str(base_url),
            api_key=str(api_key),
            timeout=self._timeout,
            max_retries=0,
        )

    def request_tool_calls(
            self,
            messages: list[ChatMessage],
            system_prompt: str,
            tools: list[dict[str, Any]],
    ) -> list[RawToolCall]:
        if not self._models:
            raise RuntimeError("LLM model list is empty. Set TASKPILOT_LLM_MODELS in your .env.")

        last_error: Exception | None = None
        now = time.monotonic()

        for model in self._models:
            model = (model or "").strip()
            if not model:
                continue

            retry_at = _BAD_MODELS.get(model)
            if retry_at is not None and retry_at > now:
                continue

            logger.info("LLM: trying model=%s (%d tools)", model, len(tools))
            t0 = time.monotonic()
            try:
                response = self._client.chat.completions.create(
                    model=model,
                    messages=[{"role": "system", "content": system_prompt}, *messages],
                    tools=tools,
                    tool_choice="auto",
                    extra_headers=self._headers or None,
                    timeout=self._timeout,
                )
            except Exception as e:
                last_error = e

                if _is_auth_error(e):
                    raise RuntimeError(
                        "LLM authentication failed. Check your API key (TASKPILOT_OPENROUTER_API_KEY)."
                    ) from e

                if _is_not_found_error(e):
                    _BAD_MODELS[model] = time.monotonic() + 3600.0
                    logger.info("LLM: model not available (404): %s", model)
                    continue

                if _is_rate_limit_error(e):
                    logger.info("LLM: rate-limited on model=%s, trying next", model)
                    continue

                if _is_connection_error(e):
                    logger.info("LLM: network/timeout error on model=%s, trying next", model)
                    continue

                logger.info("LLM: error on model=%s (%s), trying next", model, e.__class__.__name__)
                continue

            calls = _extract_tool_calls(response)
            logger.info(
                "LLM: model=%s returned %d tool call(s) in %.2fs",
                model,
                len(calls),
                time.monotonic() - t0,
            )
            return calls

        if last_error is not None:
            if _is_rate_limit_error(last_error):
                raise RuntimeError("LLM is rate-limited. Try again later.") from last_error
            if _is_connection_error(last_error):
                raise RuntimeError(
                    "LLM network/timeout error. Try again later or change models."
                ) from last_error
            raise RuntimeError("All LLM models failed.") from last_error

        raise RuntimeError("All LLM models failed.")
