"""Server酱³ Bot API client.

The API mirrors the Telegram Bot API: ``{base}/bot{token}/{method}``.
Every remote call returns an ``ok``/``error`` result instead of raising;
HTTP failures and network errors are folded into ``ok=False``.
"""

from __future__ import annotations

import hmac
import logging
import os
from collections.abc import Mapping
from typing import Any

import httpx

from src.bot.models import (
    BotInfoResult,
    Chat,
    Message,
    SendResult,
    Update,
    UpdatesResult,
    update_from_dict,
)
from src.models import BotIdentity, BotProbe

logger = logging.getLogger(__name__)

API_BASE_URL = "https://bot-go.apijia.cn"
WEBHOOK_SECRET_HEADER = "x-sc3bot-webhook-secret"

_REQUEST_TIMEOUT_SECONDS = 15.0
# Read timeout must outlast the server-side long-poll hold.
_LONG_POLL_GRACE_SECONDS = 10.0


def api_base_url() -> str:
    return os.environ.get("SERVERCHAN_BOT_API_BASE", API_BASE_URL).rstrip("/")


def _method_url(token: str, method: str) -> str:
    return f"{api_base_url()}/bot{token}/{method}"


def _http_error(resp: httpx.Response) -> str | None:
    if 200 <= resp.status_code < 300:
        return None
    return f"HTTP {resp.status_code}: {resp.reason_phrase}"


async def get_me(token: str) -> BotInfoResult:
    """Fetch the bot's identity."""
    try:
        async with httpx.AsyncClient(verify=True) as client:
            resp = await client.get(
                _method_url(token, "getMe"), timeout=_REQUEST_TIMEOUT_SECONDS,
            )
            error = _http_error(resp)
            if error:
                return BotInfoResult(ok=False, error=error)
            data = resp.json()
    except (httpx.HTTPError, ValueError) as exc:
        return BotInfoResult(ok=False, error=str(exc) or type(exc).__name__)

    if not isinstance(data, Mapping) or not data.get("ok"):
        return BotInfoResult(ok=False, error=_api_error(data))
    result = data.get("result")
    if not isinstance(result, Mapping):
        return BotInfoResult(ok=True)
    try:
        bot = BotIdentity.model_validate(dict(result))
    except ValueError as exc:
        return BotInfoResult(ok=False, error=f"Malformed getMe result: {exc}")
    return BotInfoResult(ok=True, bot=bot)


async def send_message(
    token: str,
    chat_id: int | str,
    text: str,
    *,
    parse_mode: str | None = None,
    silent: bool | None = None,
) -> SendResult:
    """Send a text message. ``parse_mode`` is ``"text"`` or ``"markdown"``."""
    try:
        target = int(chat_id)
    except (TypeError, ValueError):
        return SendResult(ok=False, error=f"Invalid chat id: {chat_id!r}")

    payload: dict[str, Any] = {"chat_id": target, "text": text}
    if parse_mode:
        payload["parse_mode"] = parse_mode
    if silent is not None:
        payload["silent"] = silent

    try:
        async with httpx.AsyncClient(verify=True) as client:
            resp = await client.post(
                _method_url(token, "sendMessage"),
                json=payload,
                timeout=_REQUEST_TIMEOUT_SECONDS,
            )
            error = _http_error(resp)
            if error:
                return SendResult(ok=False, error=error)
            data = resp.json()
    except (httpx.HTTPError, ValueError) as exc:
        return SendResult(ok=False, error=str(exc) or type(exc).__name__)

    if not isinstance(data, Mapping) or not data.get("ok"):
        return SendResult(ok=False, error=_api_error(data))
    result = data.get("result")
    result = result if isinstance(result, Mapping) else {}
    message_id = result.get("message_id")
    sent_chat_id = result.get("chat_id")
    return SendResult(
        ok=True,
        message_id=message_id if isinstance(message_id, int) else None,
        chat_id=sent_chat_id if isinstance(sent_chat_id, int) else target,
    )


async def get_updates(
    token: str,
    *,
    timeout: int | None = None,
    offset: int | None = None,
) -> UpdatesResult:
    """Long-poll for updates with ``update_id >= offset``."""
    params: dict[str, str] = {}
    if timeout is not None:
        params["timeout"] = str(timeout)
    if offset is not None:
        params["offset"] = str(offset)
    read_timeout = (timeout or 0) + _LONG_POLL_GRACE_SECONDS

    try:
        async with httpx.AsyncClient(verify=True) as client:
            resp = await client.get(
                _method_url(token, "getUpdates"),
                params=params,
                timeout=max(read_timeout, _REQUEST_TIMEOUT_SECONDS),
            )
            error = _http_error(resp)
            if error:
                return UpdatesResult(ok=False, error=error)
            data = resp.json()
    except (httpx.HTTPError, ValueError) as exc:
        return UpdatesResult(ok=False, error=str(exc) or type(exc).__name__)

    if not isinstance(data, Mapping) or not data.get("ok"):
        return UpdatesResult(ok=False, error=_api_error(data))

    updates: list[Update] = []
    raw_updates = data.get("result")
    for raw in raw_updates if isinstance(raw_updates, list) else []:
        update = update_from_dict(raw)
        if update is None:
            logger.warning("Skipping malformed update: %r", raw)
            continue
        updates.append(update)
    return UpdatesResult(ok=True, updates=updates)


def _api_error(data: Any) -> str:
    if isinstance(data, Mapping) and data.get("error"):
        return str(data["error"])
    return "Unknown error"


async def probe_bot(token: str | None) -> BotProbe:
    """Verify credentials via ``getMe``. Never raises."""
    if not token:
        return BotProbe(ok=False, error="No bot token configured")
    result = await get_me(token)
    if not result.ok:
        return BotProbe(ok=False, error=result.error or "Unknown error")
    return BotProbe(ok=True, bot=result.bot)


# --- Webhook helpers ---


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def parse_webhook_payload(body: Any) -> Update | None:
    """Validate a webhook body and build an Update; None on any mismatch."""
    if not isinstance(body, Mapping) or body.get("ok") is not True:
        return None

    update_id = body.get("update_id")
    message = body.get("message")
    if not _is_int(update_id) or not isinstance(message, Mapping):
        return None

    message_id = message.get("message_id")
    text = message.get("text")
    raw_chat = message.get("chat")
    chat = raw_chat if isinstance(raw_chat, Mapping) else None
    raw_chat_id = message.get("chat_id")
    chat_id = raw_chat_id if _is_int(raw_chat_id) else (chat or {}).get("id")

    if not _is_int(message_id) or not _is_int(chat_id) or not isinstance(text, str):
        return None

    date = message.get("date")
    chat_type = chat.get("type") if chat else None
    return Update(
        update_id=update_id,
        message=Message(
            message_id=message_id,
            text=text,
            chat_id=chat_id,
            chat=(
                Chat(id=chat["id"], type=chat_type if isinstance(chat_type, str) else None)
                if chat and _is_int(chat.get("id"))
                else None
            ),
            date=date if _is_int(date) else None,
        ),
    )


def verify_webhook_secret(
    headers: Mapping[str, str | list[str] | None],
    expected_secret: str,
) -> bool:
    """Check the webhook secret header against ``expected_secret``.

    Header lookup is case-insensitive; the comparison is constant-time.
    """
    value: str | list[str] | None = None
    for key, candidate in headers.items():
        if key.lower() == WEBHOOK_SECRET_HEADER:
            value = candidate
            break
    if isinstance(value, list):
        value = value[0] if value else None
    if value is None:
        return False
    return hmac.compare_digest(value.encode(), expected_secret.encode())
