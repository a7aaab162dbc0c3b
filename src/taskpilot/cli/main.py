# src/taskpilot/cli/main.py

"""
CLI entrypoint.

With a subcommand (`taskpilot task add ...`), runs it once and exits; see
cli/scripted.py.

Without one, initializes logging, builds AppState, then starts connectors:
- console REPL in the main thread (optional),
- inbox poller in a background thread (optional).
"""

from __future__ import annotations

import logging
import signal
import threading

from ..cli.bootstrap import create_initial_state, save_state
from ..cli.scripted import build_parser, run_command
from ..config import get_settings
from ..connectors.console_connector import run_console_loop
from ..connectors.maildir_inbox import InboxBackgroundRunner, start_inbox_in_background
from ..logging_setup import setup_logging

logger = logging.getLogger(__name__)


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()

    if args.command is not None:
        # stdout carries the JSON result; keep stderr to warnings and up.
        setup_logging(log_dir=settings.data_dir, console_level=logging.WARNING)
        state = create_initial_state(settings=settings)
        return run_command(state, args)

    log_file = setup_logging(log_dir=settings.data_dir, console_level=settings.log_level)
    logger.info("Starting %s (log: %s)...", settings.app_name, log_file)

    state = create_initial_state(settings=settings)

    inbox_runner: InboxBackgroundRunner | None = start_inbox_in_background(state)

    # Use an Event so main can wait without a busy while-loop.
    stop_main = threading.Event()

    def _handle_signal(signum, _frame) -> None:
        logger.info("Signal %s received, shutting down...", signum)
        stop_main.set()

    try:
        signal.signal(signal.SIGTERM, _handle_signal)
        if not settings.console_enabled:
            signal.signal(signal.SIGINT, _handle_signal)
    except (ValueError, OSError):
        # Not in the main thread, or platform without SIGTERM.
        logger.debug("Signal handlers not installed.", exc_info=True)

    try:
        if settings.console_enabled:
            run_console_loop(state)
            stop_main.set()
        else:
            logger.info("Console disabled. Running inbox poller only. Press Ctrl+C to stop.")
            stop_main.wait()

    finally:
        if inbox_runner is not None:
            inbox_runner.stop()
            inbox_runner.join(timeout=10.0)

        save_state(state)
        logger.info("Bye.")

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
