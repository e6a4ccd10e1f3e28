"""Tests for DM access policy evaluation."""

from __future__ import annotations

import pytest

from src.models import DmPolicy
from src.pipeline.policy import coerce_policy, is_sender_allowed


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("open", DmPolicy.OPEN),
        ("allowlist", DmPolicy.ALLOWLIST),
        ("disabled", DmPolicy.DISABLED),
        (None, DmPolicy.PAIRING),
        ("", DmPolicy.PAIRING),
        ("whatever", DmPolicy.PAIRING),
    ],
)
def test_coerce_policy(value: str | None, expected: DmPolicy) -> None:
    assert coerce_policy(value) == expected


def test_open_admits_everyone() -> None:
    assert is_sender_allowed("open", None, "42") is True


def test_disabled_rejects_everyone() -> None:
    assert is_sender_allowed("disabled", ["*"], "42") is False


def test_allowlist_matches_entries() -> None:
    assert is_sender_allowed("allowlist", ["42", 7], "42") is True
    assert is_sender_allowed("allowlist", ["42", 7], "7") is True
    assert is_sender_allowed("allowlist", ["42"], "43") is False


def test_allowlist_entries_may_carry_prefix() -> None:
    assert is_sender_allowed("allowlist", ["serverchan-bot:42"], "42") is True


def test_wildcard_admits_everyone() -> None:
    assert is_sender_allowed("allowlist", ["*"], "99") is True


def test_pairing_admits_only_approved() -> None:
    assert is_sender_allowed(None, ["42"], "42") is True
    assert is_sender_allowed("pairing", [], "42") is False
