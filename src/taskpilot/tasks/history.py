# src/taskpilot/tasks/history.py

from __future__ import annotations

import logging
from collections import deque
from datetime import datetime
from typing import Protocol

from .errors import NoHistory
from .task_models import HistoryEntry, Snapshot, StoreState

logger = logging.getLogger(__name__)

MAX_SNAPSHOTS = 50


class SnapshotJournal(Protocol):
    """Durable mirror of the undo stack (see state_file.SnapshotDir)."""

    def write(self, snap: Snapshot) -> None: ...

    def remove(self, seq: int) -> None: ...

    def trim(self, keep: list[int]) -> None: ...

    def load(self) -> list[Snapshot]: ...


class SnapshotHistory:
    """
    Bounded undo stack, oldest -> newest.

    Sequence numbers are monotonic for the lifetime of the object and are not
    reused after an undo pops an entry.

    With a journal, the stack is reloaded from it on construction and every
    push/pop/eviction is mirrored to it. Journal I/O errors are logged and do
    not fail the in-memory operation.
    """

    def __init__(self, limit: int = MAX_SNAPSHOTS, *, journal: SnapshotJournal | None = None) -> None:
        self.limit = max(1, int(limit))
        self._items: deque[Snapshot] = deque()
        self._next_seq = 1
        self._journal = journal
        if journal is not None:
            self._reload(journal)

    def _reload(self, journal: SnapshotJournal) -> None:
        try:
            snaps = journal.load()
        except OSError:
            logger.exception("Failed to read undo history")
            return
        self._items.extend(snaps[-self.limit :])
        if snaps:
            self._next_seq = snaps[-1].seq + 1
        self._sync(lambda j: j.trim([s.seq for s in self._items]))
        if self._items:
            logger.info("Restored %d undo snapshots", len(self._items))

    def _sync(self, op) -> None:
        if self._journal is None:
            return
        try:
            op(self._journal)
        except OSError:
            logger.exception("Failed to update undo history on disk")

    def __len__(self) -> int:
        return len(self._items)

    @property
    def last_seq(self) -> int:
        """Seq of the most recently pushed snapshot (0 before the first push)."""
        return self._next_seq - 1

    def push(self, label: str, state: StoreState, timestamp: datetime) -> Snapshot:
        snap = Snapshot(seq=self._next_seq, label=label, timestamp=timestamp, state=state)
        self._next_seq += 1
        self._items.append(snap)
        self._sync(lambda j: j.write(snap))
        while len(self._items) > self.limit:
            dropped = self._items.popleft()
            logger.debug("Snapshot evicted seq=%s label=%r", dropped.seq, dropped.label)
            self._sync(lambda j, seq=dropped.seq: j.remove(seq))
        return snap

    def pop(self) -> Snapshot:
        if not self._items:
            raise NoHistory("No undo history available")
        snap = self._items.pop()
        self._sync(lambda j: j.remove(snap.seq))
        return snap

    def entries(self) -> list[HistoryEntry]:
        return [HistoryEntry(seq=s.seq, label=s.label, timestamp=s.timestamp) for s in self._items]
