# src/taskpilot/tasks/inbox.py

"""
Inbox integration: the background mutation source.

A polling loop that:
- fetches the current inbox listing from an injected source (off the lock),
- diffs it against what it already tracks (InboxTracker),
- feeds the resulting create/retract events through TaskService (InboxBridge),
  so they are snapshotted and undoable like any console command.

Mail access itself (Maildir, IMAP, ...) belongs to the source, not the poller.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from dataclasses import dataclass
from uuid import UUID

from ..core.ports import InboxSource
from .errors import TaskError
from .service import TaskService
from .task_models import Priority, Task

logger = logging.getLogger(__name__)

_TITLE_LIMIT = 200
_DESCRIPTION_LIMIT = 400


@dataclass(slots=True, frozen=True)
class InboxMessage:
    id: str
    subject: str
    sender: str = ""
    body: str = ""
    is_read: bool = False


@dataclass(slots=True, frozen=True)
class InboxCreate:
    external_ref: str
    title: str
    description: str = ""
    bucket_hint: str | None = None
    priority_hint: str | None = None


@dataclass(slots=True, frozen=True)
class InboxRetract:
    external_ref: str


InboxEvent = InboxCreate | InboxRetract


def message_to_event(msg: InboxMessage) -> InboxCreate:
    title = " ".join((msg.subject or "").split())[:_TITLE_LIMIT] or "(no subject)"
    body = (msg.body or "").strip()
    parts = [f"From: {msg.sender}"] if msg.sender else []
    if body:
        parts.append(body)
    return InboxCreate(
        external_ref=msg.id,
        title=title,
        description="\n\n".join(parts)[:_DESCRIPTION_LIMIT],
    )


class InboxTracker:
    """
    Remembers which unread messages have been turned into tasks.

    diff() returns retractions first (tracked messages the listing reports as
    read, or no longer reports at all: archived or deleted), then creations
    for unread ones not tracked yet. diff() does not change what is tracked:
    the poller calls acknowledge() once an event has been applied, so an event
    that failed is produced again on the next poll.

    The listing must include every tracked ref that still exists (see
    InboxSource.fetch_messages), otherwise a message that merely fell out of
    the source's window would be retracted.
    """

    def __init__(self) -> None:
        self._tracked: set[str] = set()

    @property
    def tracked(self) -> frozenset[str]:
        return frozenset(self._tracked)

    def diff(self, messages: Iterable[InboxMessage]) -> list[InboxEvent]:
        listing = list(messages)
        unread_now = {m.id for m in listing if not m.is_read}

        events: list[InboxEvent] = [InboxRetract(ref) for ref in sorted(self._tracked - unread_now)]

        pending: set[str] = set()
        for msg in listing:
            if msg.is_read or msg.id in self._tracked or msg.id in pending:
                continue
            pending.add(msg.id)
            events.append(message_to_event(msg))
        return events

    def acknowledge(self, event: InboxEvent) -> None:
        if isinstance(event, InboxCreate):
            self._tracked.add(event.external_ref)
        else:
            self._tracked.discard(event.external_ref)


class InboxBridge:
    """Applies inbox events to the service and owns the external_ref -> task map."""

    def __init__(self, service: TaskService) -> None:
        self.service = service
        self._refs: dict[str, UUID] = {}

    def task_for(self, external_ref: str) -> UUID | None:
        return self._refs.get(external_ref)

    def apply(self, event: InboxEvent) -> Task | None:
        if isinstance(event, InboxCreate):
            return self._create(event)
        self._retract(event)
        return None

    def _resolve_bucket(self, hint: str | None) -> str | None:
        if not hint:
            return None
        key = hint.strip().lower()
        for name in self.service.bucket_names():
            if name.lower() == key:
                return name
        logger.debug("Inbox bucket hint %r unknown; using the first bucket", hint)
        return None

    def _create(self, event: InboxCreate) -> Task | None:
        known = self._refs.get(event.external_ref)
        if known is not None and known in {t.id for t in self.service.list_tasks()}:
            logger.debug("Inbox ref %s already has task %s", event.external_ref, known)
            return None

        res = self.service.add_task(
            event.title,
            bucket=self._resolve_bucket(event.bucket_hint),
            priority=Priority.parse(event.priority_hint) or Priority.MEDIUM,
            description=event.description,
            label=f"inbox: {event.title}",
        )
        self._refs[event.external_ref] = res.task.id
        logger.info("Inbox task created %s for ref=%s", res.task.short_id, event.external_ref)
        return res.task

    def _retract(self, event: InboxRetract) -> None:
        task_id = self._refs.get(event.external_ref)
        if task_id is None:
            logger.debug("Inbox retract for untracked ref=%s ignored", event.external_ref)
            return

        # The user (or an undo) may already have removed it.
        title = next((t.title for t in self.service.list_tasks() if t.id == task_id), None)
        if title is None:
            logger.info("Inbox task for ref=%s already gone", event.external_ref)
            self._refs.pop(event.external_ref, None)
            return

        self.service.delete_task(task_id, label=f"inbox retract: {title}")
        self._refs.pop(event.external_ref, None)
        logger.info("Inbox task retracted for ref=%s", event.external_ref)


async def poll_inbox_once(
    source: InboxSource,
    tracker: InboxTracker,
    bridge: InboxBridge,
) -> int:
    """One poller tick. Returns the number of events applied."""
    try:
        messages = await asyncio.to_thread(source.fetch_messages, tracker.tracked)
    except Exception:
        logger.exception("Inbox fetch failed")
        return 0

    applied = 0
    for event in tracker.diff(messages):
        try:
            bridge.apply(event)
            tracker.acknowledge(event)
            applied += 1
        except TaskError as e:
            logger.warning("Inbox event %r rejected (retried next poll): %s", event, e.message)
        except Exception:
            logger.exception("Inbox event %r failed", event)
    return applied


async def run_inbox_poller(
    source: InboxSource,
    bridge: InboxBridge,
    *,
    tracker: InboxTracker | None = None,
    interval_seconds: float = 60.0,
    stop_event: asyncio.Event | None = None,
) -> None:
    """
    Poll `source` every interval_seconds until stop_event is set.

    To stop without an event, cancel the coroutine/task.
    """
    sleep_s = max(0.5, float(interval_seconds))
    tracker = tracker or InboxTracker()

    while stop_event is None or not stop_event.is_set():
        n = await poll_inbox_once(source, tracker, bridge)
        if n:
            logger.debug("Inbox tick applied %d event(s)", n)

        if stop_event is None:
            await asyncio.sleep(sleep_s)
            continue
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=sleep_s)
        except TimeoutError:
            pass
