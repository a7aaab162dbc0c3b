# tests/test_bootstrap.py

from __future__ import annotations

import json

from taskpilot.cli.bootstrap import create_initial_state, save_state
from taskpilot.cli.commands import registry
from taskpilot.llm.offline import OfflineToolClient

from .fakes import FakeToolClient


def test_state_is_saved_on_every_commit_and_reloaded(settings) -> None:
    state = create_initial_state(settings=settings, llm=FakeToolClient())
    task = state.service.add_task("Water plants", bucket="Personal").task

    saved = json.loads(settings.state_path.read_text("utf-8"))
    assert [t["title"] for t in saved["tasks"]] == ["Water plants"]

    again = create_initial_state(settings=settings, llm=FakeToolClient())
    assert again.service.get_task(task.short_id).title == "Water plants"
    assert [e.label for e in again.service.history()] == ["add: Water plants"]


def test_undo_survives_a_restart(settings) -> None:
    first = create_initial_state(settings=settings, llm=FakeToolClient())
    first.service.add_task("Keep")
    first.service.add_task("Drop")

    second = create_initial_state(settings=settings, llm=FakeToolClient())
    assert second.service.undo() == "add: Drop"
    assert [t.title for t in second.service.list_tasks()] == ["Keep"]
    assert len(list(settings.history_dir.glob("*.json"))) == 1

    # the reloaded state was persisted by the undo
    third = create_initial_state(settings=settings, llm=FakeToolClient())
    assert [t.title for t in third.service.list_tasks()] == ["Keep"]
    assert [e.label for e in third.service.history()] == ["add: Keep"]


def test_corrupt_state_file_is_moved_aside(settings) -> None:
    settings.state_path.write_text("{not json", "utf-8")

    state = create_initial_state(settings=settings, llm=FakeToolClient())

    assert state.service.list_tasks() == []
    assert [b.name for b in state.service.list_buckets()] == ["Personal", "Team", "Admin"]
    aside = settings.state_path.with_name("tasks.json.corrupt")
    assert aside.read_text("utf-8") == "{not json"


def test_live_edit_is_persisted_too(settings) -> None:
    state = create_initial_state(settings=settings, llm=FakeToolClient())
    task = state.service.add_task("Draft").task

    registry.handle(state, f"/edit {task.short_id} title=Final")
    save_state(state)

    saved = json.loads(settings.state_path.read_text("utf-8"))
    assert saved["tasks"][0]["title"] == "Final"


def test_missing_api_key_means_offline(settings) -> None:
    state = create_initial_state(settings=settings)
    assert isinstance(state.llm, OfflineToolClient)
    assert not state.llm_online
