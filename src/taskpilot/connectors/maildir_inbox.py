# src/taskpilot/connectors/maildir_inbox.py

from __future__ import annotations

import asyncio
import contextlib
import logging
import mailbox
import threading
from collections.abc import Collection
from dataclasses import dataclass
from email.message import Message
from email.utils import parsedate_to_datetime
from pathlib import Path

from ..core.state import AppState
from ..tasks.inbox import InboxMessage, run_inbox_poller

logger = logging.getLogger(__name__)


def _plain_body(msg: Message) -> str:
    if msg.is_multipart():
        for part in msg.walk():
            if part.get_content_type() == "text/plain" and not part.get_filename():
                payload = part.get_payload(decode=True)
                if isinstance(payload, bytes):
                    return payload.decode(part.get_content_charset() or "utf-8", errors="replace")
        return ""
    payload = msg.get_payload(decode=True)
    if isinstance(payload, bytes):
        return payload.decode(msg.get_content_charset() or "utf-8", errors="replace")
    return str(payload or "")


def _received_at(msg: mailbox.MaildirMessage) -> float:
    """Date header as a timestamp, falling back to the delivery time."""
    raw = msg.get("Date")
    if raw:
        try:
            return parsedate_to_datetime(str(raw)).timestamp()
        except (TypeError, ValueError, IndexError):
            pass
    return float(msg.get_date())


def _to_inbox_message(key: str, msg: mailbox.MaildirMessage) -> InboxMessage:
    return InboxMessage(
        id=_message_id(key, msg),
        subject=str(msg.get("Subject") or ""),
        sender=str(msg.get("From") or ""),
        body=_plain_body(msg),
        is_read=not _is_unread(msg),
    )


def _message_id(key: str, msg: mailbox.MaildirMessage) -> str:
    return str(msg.get("Message-ID") or key).strip()


def _is_unread(msg: mailbox.MaildirMessage) -> bool:
    return msg.get_subdir() == "new" or "S" not in msg.get_flags()


class MaildirInboxSource:
    """
    Reads a local Maildir (as synced by mbsync/offlineimap).

    A message is unread while it sits in new/ or lacks the Seen flag; moving it
    out of the folder (archive/delete) makes it disappear from the listing.

    The listing is the `limit` most recent unread messages (by Date header,
    else delivery time), plus every `known` message still in the folder.
    """

    def __init__(self, path: str | Path, *, limit: int = 50) -> None:
        self.path = Path(path).expanduser()
        self.limit = max(1, int(limit))

    def fetch_messages(self, known: Collection[str] = ()) -> list[InboxMessage]:
        known = set(known)
        box = mailbox.Maildir(str(self.path), factory=None, create=False)
        unread: list[tuple[float, str, mailbox.MaildirMessage]] = []
        tracked: dict[str, tuple[str, mailbox.MaildirMessage]] = {}
        try:
            for key, msg in box.iteritems():
                mid = _message_id(key, msg)
                if mid in known:
                    tracked[mid] = (key, msg)
                if _is_unread(msg):
                    unread.append((_received_at(msg), key, msg))
        finally:
            box.close()

        unread.sort(key=lambda item: item[0], reverse=True)
        out = [_to_inbox_message(key, msg) for _, key, msg in unread[: self.limit]]
        listed = {m.id for m in out}
        out.extend(
            _to_inbox_message(key, msg) for mid, (key, msg) in tracked.items() if mid not in listed
        )

        logger.debug(
            "Maildir %s: %d unread, %d listed (%d known)",
            self.path,
            len(unread),
            len(out),
            len(tracked),
        )
        return out


@dataclass
class InboxBackgroundRunner:
    thread: threading.Thread
    loop: asyncio.AbstractEventLoop
    stop_event: asyncio.Event

    def stop(self) -> None:
        try:
            self.loop.call_soon_threadsafe(self.stop_event.set)
        except RuntimeError:
            logger.debug("Failed to signal inbox stop.", exc_info=True)

    def join(self, timeout: float | None = None) -> None:
        self.thread.join(timeout=timeout)


def start_inbox_in_background(state: AppState) -> InboxBackgroundRunner | None:
    """
    Start the inbox poller in a background thread (so the console REPL can run in parallel).

    The console REPL is blocking (input()); the poller is async and wants its own event loop.
    """
    settings = state.settings
    maildir = getattr(settings, "inbox_maildir", None)
    if not getattr(settings, "inbox_enabled", False) or not maildir:
        logger.info("Inbox poller disabled, not starting.")
        return None

    source = MaildirInboxSource(maildir)
    interval = float(getattr(settings, "inbox_poll_seconds", 60.0))

    ready = threading.Event()
    holder: dict[str, object] = {}

    def runner() -> None:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        stop_event = asyncio.Event()

        holder["loop"] = loop
        holder["stop_event"] = stop_event
        ready.set()

        try:
            loop.run_until_complete(
                run_inbox_poller(
                    source,
                    state.inbox,
                    interval_seconds=interval,
                    stop_event=stop_event,
                )
            )
        except Exception:
            logger.exception("Inbox poller crashed.")
        finally:
            with contextlib.suppress(Exception):
                loop.close()

    t = threading.Thread(target=runner, name="inbox-poller", daemon=True)
    t.start()

    ready.wait(timeout=5.0)
    loop = holder.get("loop")
    stop_event = holder.get("stop_event")

    if not isinstance(loop, asyncio.AbstractEventLoop) or not isinstance(stop_event, asyncio.Event):
        logger.error("Inbox thread did not initialize properly.")
        return None

    logger.info("Inbox poller started (maildir=%s, every %.1fs).", maildir, interval)
    return InboxBackgroundRunner(thread=t, loop=loop, stop_event=stop_event)
