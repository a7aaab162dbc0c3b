# src/taskpilot/tasks/quick_add.py

"""
Quick-add hint parsing for plain console lines.

    admin: file VAT return due:2026-02-15 p:high

- a leading `<bucket>:` picks the bucket (case-insensitive, must exist),
- the first valid `due:YYYY-MM-DD` token sets the due date,
- the first valid `p:<priority>` token sets the priority,
- whatever is left is the title.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date

from .task_models import Priority


@dataclass(slots=True, frozen=True)
class NewTaskHints:
    title: str
    bucket: str | None = None
    priority: Priority | None = None
    due_date: date | None = None

    @property
    def bucket_locked(self) -> bool:
        return self.bucket is not None


def _bucket_prefix(text: str, bucket_names: Sequence[str]) -> tuple[str | None, str]:
    lower = text.lower()
    for name in bucket_names:
        prefix = f"{name.lower()}:"
        if lower.startswith(prefix):
            return name, text[len(prefix):].lstrip()
    return None, text


def _due_hint(tokens: list[str]) -> tuple[date | None, list[str]]:
    for i, tok in enumerate(tokens):
        if tok.startswith("due:"):
            try:
                due = date.fromisoformat(tok[4:])
            except ValueError:
                continue
            return due, tokens[:i] + tokens[i + 1:]
    return None, tokens


def _priority_hint(tokens: list[str]) -> tuple[Priority | None, list[str]]:
    for i, tok in enumerate(tokens):
        if tok.startswith("p:"):
            prio = Priority.parse(tok[2:])
            if prio is not None:
                return prio, tokens[:i] + tokens[i + 1:]
    return None, tokens


def infer_new_task(text: str, bucket_names: Sequence[str]) -> NewTaskHints | None:
    """Parse a quick-add line; None when nothing usable is left for a title."""
    trimmed = (text or "").strip()
    if not trimmed:
        return None

    bucket, rest = _bucket_prefix(trimmed, bucket_names)
    due, tokens = _due_hint(rest.split())
    priority, tokens = _priority_hint(tokens)

    title = " ".join(tokens).strip()
    if not title:
        return None
    return NewTaskHints(title=title, bucket=bucket, priority=priority, due_date=due)
