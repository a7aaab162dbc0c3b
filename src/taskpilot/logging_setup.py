# src/taskpilot/logging_setup.py

from __future__ import annotations

import logging
import sys
from pathlib import Path

LOG_FORMAT = "%(asctime)s.%(msecs)03d %(levelname)s %(name)s: %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"

# Loggers that write one INFO line per committed change / undo.
JOURNAL_LOGGERS = ("taskpilot.tasks.service", "taskpilot.tasks.dispatcher")

# Background sources: their INFO chatter would interleave with the REPL prompt.
_BACKGROUND_PREFIXES = ("taskpilot.tasks.inbox", "taskpilot.connectors.maildir_inbox")


class _ConsoleFilter(logging.Filter):
    """
    Console policy while the REPL owns the terminal.

    Own loggers pass at the handler level, background pollers only from WARNING,
    third-party libraries and captured py.warnings only from ERROR.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        name = record.name
        if not name.startswith("taskpilot."):
            return record.levelno >= logging.ERROR
        if name.startswith(_BACKGROUND_PREFIXES):
            return record.levelno >= logging.WARNING
        return True


class _JournalFilter(logging.Filter):
    """Only the change journal: commits, undos and AI turn summaries."""

    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno >= logging.INFO and record.name.startswith(JOURNAL_LOGGERS)


def _file_handler(path: Path, level: int, fmt: logging.Formatter) -> logging.FileHandler:
    fh = logging.FileHandler(str(path), encoding="utf-8")
    fh.setLevel(level)
    fh.setFormatter(fmt)
    return fh


def setup_logging(
    *,
    log_dir: str | Path = ".local/taskpilot",
    console_level: int | str = logging.INFO,
    file_level: int = logging.DEBUG,
    journal: bool = True,
) -> Path:
    """
    Configure root logging once, before the first log call.

    - stderr: filtered for interactive use
    - <log_dir>/taskpilot.log: everything from file_level
    - <log_dir>/changes.log: committed changes only (journal=True)

    Returns the main log file path.
    """
    if isinstance(console_level, str):
        console_level = logging.getLevelName(console_level.upper())
        if not isinstance(console_level, int):
            console_level = logging.INFO

    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / "taskpilot.log"

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    for h in list(root.handlers):
        root.removeHandler(h)
        h.close()

    fmt = logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATEFMT)

    ch = logging.StreamHandler(sys.stderr)
    ch.setLevel(console_level)
    ch.setFormatter(fmt)
    ch.addFilter(_ConsoleFilter())
    root.addHandler(ch)

    root.addHandler(_file_handler(log_file, file_level, fmt))

    if journal:
        jh = _file_handler(log_dir / "changes.log", logging.INFO, fmt)
        jh.addFilter(_JournalFilter())
        root.addHandler(jh)

    logging.captureWarnings(True)

    for noisy in ("httpx", "httpcore", "openai"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    return log_file
