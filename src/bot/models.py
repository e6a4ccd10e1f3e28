"""Data models for the Server酱³ Bot API and the inbound message pipeline."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from src.models import BotIdentity


@dataclass(frozen=True)
class Chat:
    id: int
    type: str | None = None


@dataclass(frozen=True)
class Sender:
    id: int
    is_bot: bool | None = None
    first_name: str | None = None


@dataclass(frozen=True)
class Message:
    message_id: int
    text: str = ""
    chat_id: int | None = None
    chat: Chat | None = None
    from_: Sender | None = None
    date: int | None = None  # epoch seconds


@dataclass(frozen=True)
class Update:
    """One inbound event; ``update_id`` increases monotonically per bot."""

    update_id: int
    message: Message


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def update_from_dict(raw: Any) -> Update | None:
    """Leniently build an Update from a ``getUpdates`` result item.

    Only ``update_id`` and a message object are required; chat identifiers
    may be missing and are checked later by the update processor.
    """
    if not isinstance(raw, Mapping) or not _is_int(raw.get("update_id")):
        return None
    msg = raw.get("message")
    if not isinstance(msg, Mapping):
        return None

    chat_raw = msg.get("chat")
    chat = (
        Chat(id=chat_raw["id"], type=chat_raw.get("type"))
        if isinstance(chat_raw, Mapping) and _is_int(chat_raw.get("id"))
        else None
    )
    from_raw = msg.get("from")
    sender = (
        Sender(
            id=from_raw["id"],
            is_bot=from_raw.get("is_bot"),
            first_name=from_raw.get("first_name"),
        )
        if isinstance(from_raw, Mapping) and _is_int(from_raw.get("id"))
        else None
    )
    message_id = msg.get("message_id")
    text = msg.get("text")
    chat_id = msg.get("chat_id")
    date = msg.get("date")
    return Update(
        update_id=raw["update_id"],
        message=Message(
            message_id=message_id if _is_int(message_id) else 0,
            text=text if isinstance(text, str) else "",
            chat_id=chat_id if _is_int(chat_id) else None,
            chat=chat,
            from_=sender,
            date=date if _is_int(date) else None,
        ),
    )


# --- API results ---


@dataclass
class BotInfoResult:
    ok: bool
    bot: BotIdentity | None = None
    error: str | None = None


@dataclass
class SendResult:
    ok: bool
    message_id: int | None = None
    chat_id: int | None = None
    error: str | None = None


@dataclass
class UpdatesResult:
    ok: bool
    updates: list[Update] = field(default_factory=list)
    error: str | None = None


# --- Host pipeline ---


@dataclass(frozen=True)
class MessageContext:
    """Host-neutral envelope handed to the reply dispatcher."""

    provider: str
    surface: str
    channel: str
    from_: str
    to: str
    body: str
    raw_body: str
    body_for_commands: str
    body_for_agent: str
    account_id: str
    message_sid: str
    message_sid_full: str
    session_key: str
    sender_id: str
    timestamp: int  # epoch milliseconds
    chat_type: str = "direct"


@dataclass(frozen=True)
class ReplyPayload:
    text: str | None = None


@dataclass(frozen=True)
class DispatchOutcome:
    queued_final: bool
