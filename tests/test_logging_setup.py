# tests/test_logging_setup.py

from __future__ import annotations

import logging
from pathlib import Path

import pytest

from taskpilot.logging_setup import setup_logging


@pytest.fixture()
def restore_root_logging():
    root = logging.getLogger()
    before = set(root.handlers)
    level = root.level
    yield
    for h in list(root.handlers):
        if h not in before:
            root.removeHandler(h)
            h.close()
    root.setLevel(level)
    logging.captureWarnings(False)


def _flush() -> None:
    for h in logging.getLogger().handlers:
        h.flush()


def test_journal_gets_only_commits(tmp_path: Path, restore_root_logging) -> None:
    log_file = setup_logging(log_dir=tmp_path, console_level="warning")

    logging.getLogger("taskpilot.tasks.service").info("Committed 'add: x'")
    logging.getLogger("taskpilot.tasks.engine").debug("Task added")
    logging.getLogger("taskpilot.tasks.inbox").info("Inbox task created")
    _flush()

    assert log_file == tmp_path / "taskpilot.log"
    everything = log_file.read_text("utf-8")
    journal = (tmp_path / "changes.log").read_text("utf-8")
    assert "Task added" in everything
    assert "Inbox task created" in everything
    assert "Committed 'add: x'" in journal
    assert "Task added" not in journal
    assert "Inbox" not in journal


def test_console_hides_background_info(tmp_path: Path, restore_root_logging, capsys) -> None:
    setup_logging(log_dir=tmp_path, console_level=logging.INFO, journal=False)

    logging.getLogger("taskpilot.tasks.inbox").info("quiet tick")
    logging.getLogger("taskpilot.tasks.inbox").warning("fetch trouble")
    logging.getLogger("httpx").error("upstream exploded")
    logging.getLogger("somelib").warning("chatty")
    logging.getLogger("taskpilot.cli.main").info("hello")

    err = capsys.readouterr().err
    assert "quiet tick" not in err
    assert "fetch trouble" in err
    assert "upstream exploded" in err
    assert "chatty" not in err
    assert "hello" in err
    assert not (tmp_path / "changes.log").exists()
