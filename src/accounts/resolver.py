"""Merges channel-level and per-account configuration.

Accounts are recomputed from the live configuration tree on every call so
that configuration edits take effect on the next lookup. Nothing here raises:
missing or mistyped sections resolve to defaults.
"""

from __future__ import annotations

import os
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from src.models import (
    CHANNEL_ID,
    DEFAULT_ACCOUNT_ID,
    DEFAULT_POLLING_INTERVAL_MS,
    DEFAULT_TEXT_CHUNK_LIMIT,
    AccountConfig,
    DmPolicy,
    ResolvedAccount,
    TokenSource,
)

TOKEN_ENV_VAR = "SERVERCHAN_BOT_TOKEN"

_PREFIX_RE = re.compile(r"^serverchan(-bot)?:", re.IGNORECASE)


@dataclass(frozen=True)
class DmPolicyView:
    """DM access policy for one account plus the config paths that set it."""

    policy: str
    allow_from: list[str | int] = field(default_factory=list)
    policy_path: str = ""
    allow_from_path: str = ""
    approve_hint: str = ""


def default_account_id() -> str:
    return DEFAULT_ACCOUNT_ID


def _as_mapping(value: Any) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


def _channel_section(cfg: Any) -> Mapping[str, Any] | None:
    channels = _as_mapping(_as_mapping(cfg).get("channels"))
    section = channels.get(CHANNEL_ID)
    return section if isinstance(section, Mapping) else None


def _account_section(section: Mapping[str, Any], account_id: str) -> Mapping[str, Any]:
    accounts = _as_mapping(section.get("accounts"))
    return _as_mapping(accounts.get(account_id))


def _pick(key: str, *layers: Mapping[str, Any]) -> Any:
    """First non-None value for ``key`` across layers, most specific first."""
    for layer in layers:
        value = layer.get(key)
        if value is not None:
            return value
    return None


def _opt_str(value: Any) -> str | None:
    return value if isinstance(value, str) else None


def resolve_account(
    cfg: Any,
    account_id: str | None = None,
    env: Mapping[str, str] | None = None,
) -> ResolvedAccount:
    """Resolve the canonical account view for ``account_id``."""
    environ = os.environ if env is None else env
    resolved_id = (account_id or "").strip() or default_account_id()
    section = _channel_section(cfg) or {}
    override = _account_section(section, resolved_id)
    layers = (override, section)

    env_token = environ.get(TOKEN_ENV_VAR) or None
    explicit_token = _opt_str(_pick("botToken", *layers)) or None
    if explicit_token:
        token_source = TokenSource.CONFIG
    elif env_token:
        token_source = TokenSource.ENV
    else:
        token_source = TokenSource.NONE

    enabled = _pick("enabled", *layers)
    raw_chat_id = _pick("chatId", *layers)
    chat_id = str(raw_chat_id).strip() if raw_chat_id is not None else ""
    polling_enabled = _pick("pollingEnabled", *layers)
    interval = _pick("pollingIntervalMs", *layers)
    chunk_limit = _pick("textChunkLimit", *layers)
    allow_from = _pick("allowFrom", *layers)

    return ResolvedAccount(
        account_id=resolved_id,
        name=_opt_str(_pick("name", *layers)),
        enabled=enabled if isinstance(enabled, bool) else True,
        token_source=token_source,
        config=AccountConfig(
            bot_token=explicit_token or env_token,
            chat_id=chat_id or None,
            webhook_url=_opt_str(_pick("webhookUrl", *layers)),
            webhook_secret=_opt_str(_pick("webhookSecret", *layers)),
            webhook_path=_opt_str(_pick("webhookPath", *layers)),
            dm_policy=_opt_str(_pick("dmPolicy", *layers)),
            allow_from=list(allow_from) if isinstance(allow_from, list) else None,
            polling_enabled=polling_enabled if isinstance(polling_enabled, bool) else None,
            polling_interval_ms=(
                int(interval)
                if isinstance(interval, (int, float)) and not isinstance(interval, bool)
                else DEFAULT_POLLING_INTERVAL_MS
            ),
            text_chunk_limit=(
                chunk_limit
                if isinstance(chunk_limit, int) and not isinstance(chunk_limit, bool) and chunk_limit > 0
                else DEFAULT_TEXT_CHUNK_LIMIT
            ),
        ),
    )


def list_account_ids(cfg: Any) -> list[str]:
    """Configured account ids, default first; ``["default"]`` if none."""
    section = _channel_section(cfg)
    if section is None:
        return [DEFAULT_ACCOUNT_ID]
    accounts = section.get("accounts")
    if not isinstance(accounts, Mapping):
        return [DEFAULT_ACCOUNT_ID]
    ids = [key for key in accounts if isinstance(key, str) and key.strip()]
    if not ids:
        return [DEFAULT_ACCOUNT_ID]
    if DEFAULT_ACCOUNT_ID in ids:
        ids.remove(DEFAULT_ACCOUNT_ID)
    return [DEFAULT_ACCOUNT_ID, *ids]


# --- Allow-list helpers ---


def normalize_allow_entry(entry: str) -> str:
    return _PREFIX_RE.sub("", entry).strip()


def resolve_allow_from(cfg: Any, account_id: str | None = None) -> list[str]:
    account = resolve_account(cfg, account_id)
    return [str(entry) for entry in account.config.allow_from or []]


def format_allow_from(entries: Iterable[str | int]) -> list[str]:
    formatted: list[str] = []
    for entry in entries:
        value = str(entry).strip()
        if not value:
            continue
        if value != "*":
            value = normalize_allow_entry(value).lower()
        formatted.append(value)
    return formatted


def resolve_dm_policy(cfg: Any, account: ResolvedAccount) -> DmPolicyView:
    """DM policy for ``account``, defaulting to pairing."""
    section = _channel_section(cfg) or {}
    accounts = _as_mapping(section.get("accounts"))
    if accounts.get(account.account_id):
        base_path = f"channels.{CHANNEL_ID}.accounts.{account.account_id}."
    else:
        base_path = f"channels.{CHANNEL_ID}."
    return DmPolicyView(
        policy=account.config.dm_policy or DmPolicy.PAIRING.value,
        allow_from=list(account.config.allow_from or []),
        policy_path=f"{base_path}dmPolicy",
        allow_from_path=base_path,
        approve_hint=(
            f"Add user ID to channels.{CHANNEL_ID}.allowFrom or run: "
            f"openclaw channels approve {CHANNEL_ID} <userId>"
        ),
    )
