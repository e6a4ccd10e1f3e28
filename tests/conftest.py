"""Shared test fixtures for the Server酱³ Bot channel bridge."""

from __future__ import annotations

from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.bot.models import DispatchOutcome, Message, Update
from src.models import AccountConfig, ResolvedAccount, TokenSource
from src.webhook.router import webhook_targets


@pytest.fixture(autouse=True)
def _isolate_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("SERVERCHAN_BOT_TOKEN", raising=False)
    monkeypatch.delenv("SERVERCHAN_BOT_API_BASE", raising=False)


@pytest.fixture(autouse=True)
def _clean_webhook_registry():
    webhook_targets.clear()
    yield
    webhook_targets.clear()


@pytest.fixture
def mock_dispatcher() -> MagicMock:
    dispatcher = MagicMock()
    dispatcher.dispatch = AsyncMock(return_value=DispatchOutcome(queued_final=True))
    return dispatcher


def mock_http_client(response: Any = None, *, side_effect: Any = None) -> AsyncMock:
    """AsyncMock usable as ``async with httpx.AsyncClient() as client``."""
    client = AsyncMock()
    for method in (client.get, client.post):
        if side_effect is not None:
            method.side_effect = side_effect
        else:
            method.return_value = response
    client.__aenter__ = AsyncMock(return_value=client)
    client.__aexit__ = AsyncMock(return_value=False)
    return client


def mock_json_response(status_code: int = 200, payload: Any = None) -> MagicMock:
    resp = MagicMock()
    resp.status_code = status_code
    resp.reason_phrase = "OK" if status_code < 400 else "Error"
    resp.json.return_value = payload
    return resp


# --- Factory functions for test data ---


def make_account(**kwargs: Any) -> ResolvedAccount:
    """Factory for ResolvedAccount with a bot token configured."""
    config_fields = {
        key: kwargs.pop(key)
        for key in list(kwargs)
        if key in AccountConfig.model_fields
    }
    config_defaults: dict[str, Any] = {"bot_token": "test-token"}
    config_defaults.update(config_fields)
    defaults: dict[str, Any] = {
        "account_id": "default",
        "token_source": TokenSource.CONFIG,
        "config": AccountConfig(**config_defaults),
    }
    defaults.update(kwargs)
    return ResolvedAccount(**defaults)


def make_update(
    update_id: int = 1,
    text: str = "hello",
    chat_id: int | None = 42,
    message_id: int = 1,
    **kwargs: Any,
) -> Update:
    return Update(
        update_id=update_id,
        message=Message(message_id=message_id, text=text, chat_id=chat_id, **kwargs),
    )


def make_webhook_body(
    update_id: int = 1,
    text: str = "hello",
    chat_id: int = 42,
    message_id: int = 1,
) -> dict[str, Any]:
    return {
        "ok": True,
        "update_id": update_id,
        "message": {"message_id": message_id, "chat_id": chat_id, "text": text},
    }


def make_config(**section: Any) -> dict[str, Any]:
    return {"channels": {"serverchan-bot": section}}
