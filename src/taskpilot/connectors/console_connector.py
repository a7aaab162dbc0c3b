# src/taskpilot/connectors/console_connector.py

from __future__ import annotations

import logging
from datetime import datetime

from ..cli.commands import ai_triage, quick_add, registry as command_registry, render_error
from ..core.state import AppState
from ..tasks.errors import TaskError

logger = logging.getLogger(__name__)


def _ts_local() -> str:
    return datetime.now().astimezone().strftime("%Y-%m-%d %H:%M:%S")


def _print_ts(text: str) -> None:
    print(f"[{_ts_local()}] {text}")


def handle_line(state: AppState, line: str) -> str | None:
    """
    One REPL step: slash command, else AI triage (LLM configured), else quick-add.

    Never raises; returns the text to show (or None for nothing).
    """
    def emit(text: str) -> None:
        print(f"[{_ts_local()}] {text}", flush=True)

    try:
        reply = command_registry.handle(state, line, emit=emit)
        if reply is not None:
            return reply
        if state.llm_online:
            return ai_triage(state, line, emit)
        return quick_add(state, line)
    except TaskError as e:
        return render_error(e)
    except Exception:
        logger.exception("Console handler crashed.")
        return "Internal error while handling input."


def run_console_loop(state: AppState) -> None:
    mode = "AI triage" if state.llm_online else "quick-add"
    logger.info("Console connector started (mode=%s).", mode)
    _print_ts(
        f"[CONSOLE] Plain lines go to {mode}. Use /help for commands. Use /exit to quit.\n"
    )

    while True:
        try:
            user_input = input(">>> ").strip()
        except EOFError:
            logger.info("Console EOF received, exiting.")
            break
        except KeyboardInterrupt:
            logger.info("Console KeyboardInterrupt, exiting.")
            print()
            break

        if not user_input:
            continue

        if user_input.lower() in ("/exit", "/quit"):
            logger.info("Console exit command received.")
            break

        reply = handle_line(state, user_input)
        if reply is not None:
            _print_ts(reply)

    logger.info("Console connector finished.")
