"""Update processor — the single consumer for polled and webhook updates.

Normalizes an Update into a MessageContext, hands it to the reply
dispatcher, and relays generated replies back through the bot API.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Any

from src.bot.api import send_message
from src.bot.models import MessageContext, ReplyPayload, Update
from src.models import CHANNEL_ID, ResolvedAccount
from src.pipeline.dispatcher import ReplyDispatcher

logger = logging.getLogger(__name__)

StatusSink = Callable[[dict[str, Any]], None]
Log = logging.Logger | logging.LoggerAdapter


def now_ms() -> int:
    return int(time.time() * 1000)


def resolve_chat_id(update: Update) -> int | None:
    """Chat id from ``chat.id``, then ``chat_id``, then the sender id."""
    message = update.message
    if message.chat is not None:
        return message.chat.id
    if message.chat_id is not None:
        return message.chat_id
    if message.from_ is not None:
        return message.from_.id
    return None


def build_message_context(
    update: Update, account: ResolvedAccount, chat_id: str,
) -> MessageContext:
    text = update.message.text or ""
    message_id = str(update.message.message_id)
    timestamp = update.message.date * 1000 if update.message.date else now_ms()
    return MessageContext(
        provider=CHANNEL_ID,
        surface=CHANNEL_ID,
        channel=CHANNEL_ID,
        from_=chat_id,
        to=chat_id,
        body=text,
        raw_body=text,
        body_for_commands=text,
        body_for_agent=text,
        account_id=account.account_id,
        message_sid=message_id,
        message_sid_full=f"{CHANNEL_ID}:{message_id}",
        session_key=f"{CHANNEL_ID}:{chat_id}",
        sender_id=chat_id,
        timestamp=timestamp,
    )


async def process_update(
    update: Update,
    account: ResolvedAccount,
    cfg: Any,
    bot_token: str,
    *,
    dispatcher: ReplyDispatcher,
    log: Log | None = None,
    status_sink: StatusSink | None = None,
) -> None:
    log = log or logger
    account_id = account.account_id

    raw_chat_id = resolve_chat_id(update)
    if raw_chat_id is None:
        log.error("[%s] update missing chat id: %r", account_id, update)
        return
    chat_id = str(raw_chat_id)
    ctx = build_message_context(update, account, chat_id)
    log.info(
        "[%s] received message from %s: %s...", account_id, chat_id, ctx.body[:50],
    )

    if status_sink:
        status_sink({"last_inbound_at": now_ms()})

    async def deliver(payload: ReplyPayload) -> None:
        reply_text = payload.text or ""
        if not reply_text.strip():
            return
        target = account.config.chat_id or chat_id
        try:
            result = await send_message(bot_token, target, reply_text)
        except Exception as exc:
            log.error("[%s] send error: %s", account_id, exc)
            return
        if not result.ok:
            log.error("[%s] failed to send reply: %s", account_id, result.error)
            return
        if status_sink:
            status_sink({"last_outbound_at": now_ms()})

    def on_error(err: BaseException, info: dict[str, str]) -> None:
        log.error("[%s] %s reply failed: %s", account_id, info.get("kind", "unknown"), err)

    try:
        outcome = await dispatcher.dispatch(ctx, cfg, deliver=deliver, on_error=on_error)
    except Exception as exc:
        log.error("[%s] dispatch error: %s", account_id, exc)
        return

    if not outcome.queued_final:
        log.debug("[%s] no response generated for message from %s", account_id, chat_id)
