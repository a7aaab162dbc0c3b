# src/taskpilot/tasks/id_resolver.py

from __future__ import annotations

import re
from collections.abc import Iterable
from uuid import UUID

from .errors import AmbiguousId, InvalidIdFormat, NotFound
from .task_models import short_id

MIN_PREFIX_LEN = 4

_PREFIX_RE = re.compile(r"^[0-9a-f-]+$")


def normalize_prefix(raw: str, *, min_len: int = MIN_PREFIX_LEN) -> str:
    """Lowercase and length-check a short-ID prefix (UUID hyphens do not count)."""
    prefix = str(raw or "").strip().lower()
    if len(prefix.replace("-", "")) < min_len:
        raise InvalidIdFormat(
            f"ID prefix {raw!r} is too short (need at least {min_len} characters)",
            prefix=raw,
        )
    return prefix


def resolve_prefix(
    prefix: str,
    task_ids: Iterable[UUID],
    *,
    min_len: int = MIN_PREFIX_LEN,
) -> UUID:
    """
    Resolve a hex prefix to exactly one task id.

    Raises InvalidIdFormat / AmbiguousId / NotFound. A non-hex prefix can never
    match a task id, so it is reported as NotFound.
    """
    key = normalize_prefix(prefix, min_len=min_len)
    if not _PREFIX_RE.match(key):
        raise NotFound(f"No task matching {prefix!r}", prefix=prefix)

    matches = [tid for tid in task_ids if str(tid).startswith(key)]

    if not matches:
        raise NotFound(f"No task matching {prefix!r}", prefix=prefix)
    if len(matches) > 1:
        raise AmbiguousId(
            f"ID prefix {prefix!r} matches {len(matches)} tasks",
            prefix=prefix,
            candidates=sorted(short_id(m) for m in matches),
        )
    return matches[0]
