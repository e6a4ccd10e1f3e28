"""DM access policy evaluation."""

from __future__ import annotations

from collections.abc import Iterable

from src.accounts.resolver import format_allow_from, normalize_allow_entry
from src.models import DmPolicy


def coerce_policy(value: str | None) -> DmPolicy:
    try:
        return DmPolicy(value) if value else DmPolicy.PAIRING
    except ValueError:
        return DmPolicy.PAIRING


def is_sender_allowed(
    policy: str | None,
    allow_from: Iterable[str | int] | None,
    sender_id: str,
) -> bool:
    """Return True if ``sender_id`` may message the bot under ``policy``.

    Pairing admits only senders already approved into the allow-list.
    """
    mode = coerce_policy(policy)
    if mode == DmPolicy.OPEN:
        return True
    if mode == DmPolicy.DISABLED:
        return False
    entries = format_allow_from(allow_from or [])
    if "*" in entries:
        return True
    return normalize_allow_entry(sender_id).lower() in entries
