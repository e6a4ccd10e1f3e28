"""Host-initiated outbound messaging and target normalization."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any

from src.accounts.resolver import resolve_account
from src.bot.api import send_message
from src.models import CHANNEL_ID, BotTokenMissingError, DeliveryError

APPROVAL_MESSAGE = "✅ 您已被授权使用此 Bot。"

_PREFIX_RE = re.compile(r"^serverchan(-bot)?:", re.IGNORECASE)
_NUMERIC_RE = re.compile(r"^\d+$")


@dataclass(frozen=True)
class OutboundResult:
    channel: str
    message_id: str
    to: str


def normalize_target(raw: str) -> str | None:
    """Strip the channel prefix; only numeric user ids are valid targets."""
    trimmed = raw.strip()
    if not trimmed:
        return None
    normalized = _PREFIX_RE.sub("", trimmed)
    return normalized if _NUMERIC_RE.match(normalized) else None


def looks_like_id(raw: str, normalized: str | None = None) -> bool:
    value = (normalized if normalized is not None else raw).strip()
    return bool(value) and bool(_NUMERIC_RE.match(value))


async def send_text(
    cfg: Any, to: str, text: str, account_id: str | None = None,
) -> OutboundResult:
    account = resolve_account(cfg, account_id)
    token = account.config.bot_token
    if not token:
        raise BotTokenMissingError(account.account_id)

    result = await send_message(token, to, text)
    if not result.ok:
        raise DeliveryError(result.error or "Failed to send message")
    return OutboundResult(
        channel=CHANNEL_ID,
        message_id=str(result.message_id) if result.message_id else "unknown",
        to=to,
    )


async def notify_approval(cfg: Any, user_id: str) -> None:
    """Tell a newly approved user they may now message the bot."""
    account = resolve_account(cfg)
    token = account.config.bot_token
    if not token:
        raise BotTokenMissingError(account.account_id)
    await send_message(token, user_id, APPROVAL_MESSAGE)
