# tests/test_id_resolver.py

from __future__ import annotations

from uuid import UUID

import pytest

from taskpilot.tasks.errors import AmbiguousId, InvalidIdFormat, NotFound
from taskpilot.tasks.id_resolver import resolve_prefix

A = UUID("36140000-0000-4000-8000-000000000001")
B = UUID("36141111-0000-4000-8000-000000000002")
C = UUID("abcdef12-0000-4000-8000-000000000003")

IDS = [A, B, C]


def test_ambiguous_prefix_lists_candidates() -> None:
    with pytest.raises(AmbiguousId) as exc:
        resolve_prefix("3614", IDS)
    assert exc.value.details["candidates"] == ["36140000", "36141111"]


def test_unique_prefix_resolves() -> None:
    assert resolve_prefix("36140", IDS) == A
    assert resolve_prefix("  ABCD  ", IDS) == C


def test_full_uuid_resolves() -> None:
    assert resolve_prefix(str(B), IDS) == B


def test_short_prefix_is_invalid() -> None:
    with pytest.raises(InvalidIdFormat):
        resolve_prefix("361", IDS)
    with pytest.raises(InvalidIdFormat):
        resolve_prefix("", IDS)


def test_unknown_or_non_hex_prefix_is_not_found() -> None:
    with pytest.raises(NotFound):
        resolve_prefix("ffff", IDS)
    with pytest.raises(NotFound):
        resolve_prefix("bad-id", IDS)
