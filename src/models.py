"""Shared Pydantic data models for the Server酱³ Bot channel bridge."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

CHANNEL_ID = "serverchan-bot"
CHANNEL_LABEL = "Server酱³ Bot"
DEFAULT_ACCOUNT_ID = "default"
DEFAULT_POLLING_INTERVAL_MS = 3000
DEFAULT_TEXT_CHUNK_LIMIT = 4000


# --- Exceptions ---


class ServerChanBotError(Exception):
    """Base class for channel bridge errors."""


class BotTokenMissingError(ServerChanBotError):
    """Raised when an operation needs a bot token and none is configured."""

    def __init__(self, account_id: str = DEFAULT_ACCOUNT_ID) -> None:
        self.account_id = account_id
        super().__init__(f"{CHANNEL_LABEL} token not configured")


class DeliveryError(ServerChanBotError):
    """Raised when a host-initiated send is rejected by the bot API."""


class ConfigError(ServerChanBotError):
    """Raised when the configuration file cannot be loaded or validated."""


# --- Enums ---


class TokenSource(str, Enum):
    CONFIG = "config"
    ENV = "env"
    NONE = "none"


class DmPolicy(str, Enum):
    OPEN = "open"
    PAIRING = "pairing"
    ALLOWLIST = "allowlist"
    DISABLED = "disabled"


class AccountState(str, Enum):
    STOPPED = "stopped"
    PROBING = "probing"
    RUNNING = "running"
    ERRORED = "errored"


class IntakeMode(str, Enum):
    POLLING = "polling"
    WEBHOOK = "webhook"


# --- Account Models ---


class AccountConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    bot_token: str | None = None
    chat_id: str | None = None  # default target for replies and outbound sends
    webhook_url: str | None = None
    webhook_secret: str | None = None
    webhook_path: str | None = None
    dm_policy: str | None = None
    allow_from: list[str | int] | None = None
    polling_enabled: bool | None = None
    polling_interval_ms: int = DEFAULT_POLLING_INTERVAL_MS
    text_chunk_limit: int = DEFAULT_TEXT_CHUNK_LIMIT  # advertised to the host; replies are not split


class ResolvedAccount(BaseModel):
    model_config = ConfigDict(frozen=True)

    account_id: str = Field(min_length=1)
    name: str | None = None
    enabled: bool = True
    token_source: TokenSource = TokenSource.NONE
    config: AccountConfig = Field(default_factory=AccountConfig)

    @property
    def configured(self) -> bool:
        return self.token_source != TokenSource.NONE


# --- Probe / Status Models ---


class BotIdentity(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    name: str | None = None
    username: str | None = None


class BotProbe(BaseModel):
    model_config = ConfigDict(frozen=True)

    ok: bool
    bot: BotIdentity | None = None
    error: str | None = None


class AccountSnapshot(BaseModel):
    account_id: str
    name: str | None = None
    enabled: bool = True
    configured: bool = False
    token_source: TokenSource = TokenSource.NONE
    text_chunk_limit: int = DEFAULT_TEXT_CHUNK_LIMIT
    running: bool = False
    state: AccountState = AccountState.STOPPED
    mode: IntakeMode | None = None
    last_start_at: int | None = None
    last_stop_at: int | None = None
    last_error: str | None = None
    last_inbound_at: int | None = None
    last_outbound_at: int | None = None
    bot: BotIdentity | None = None
    probe: BotProbe | None = None


class StatusIssue(BaseModel):
    model_config = ConfigDict(frozen=True)

    channel: str = CHANNEL_ID
    account_id: str
    kind: str  # "config" | "runtime"
    message: str
