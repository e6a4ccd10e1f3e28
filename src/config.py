"""Host config file and environment settings."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, ValidationError
from pydantic.alias_generators import to_camel

from src.models import CHANNEL_ID, ConfigError, DmPolicy

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "config/openclaw.json"


class ServerChanBotAccountSchema(BaseModel):
    model_config = ConfigDict(
        extra="forbid", alias_generator=to_camel, populate_by_name=True,
    )

    name: str | None = None
    enabled: bool | None = None
    bot_token: str | None = None
    chat_id: str | int | None = None
    webhook_url: str | None = None
    webhook_secret: str | None = None
    webhook_path: str | None = None
    dm_policy: DmPolicy | None = None
    allow_from: list[str | int] | None = None
    text_chunk_limit: int | None = None
    polling_enabled: bool | None = None
    polling_interval_ms: int | None = None


class ServerChanBotSection(ServerChanBotAccountSchema):
    accounts: dict[str, ServerChanBotAccountSchema] | None = None


def validate_config(cfg: Any) -> dict[str, Any]:
    """Validate the channel section of a host config tree."""
    if not isinstance(cfg, dict):
        raise ConfigError("Config root must be a JSON object")
    channels = cfg.get("channels") or {}
    if not isinstance(channels, dict):
        raise ConfigError("'channels' must be a JSON object")
    section = channels.get(CHANNEL_ID)
    if section is not None:
        try:
            ServerChanBotSection.model_validate(section)
        except ValidationError as exc:
            raise ConfigError(f"Invalid channels.{CHANNEL_ID} config: {exc}") from exc
    return cfg


def load_config(path: str | Path) -> dict[str, Any]:
    config_path = Path(path)
    if not config_path.exists():
        raise ConfigError(f"Config file not found: {config_path}")
    try:
        raw = json.loads(config_path.read_text())
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Config file is not valid JSON: {config_path}: {exc}") from exc
    return validate_config(raw)


class ConfigFile:
    """Config provider that reloads the file whenever it changes on disk.

    A missing file yields an empty config; an invalid edit keeps serving
    the last valid tree.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._mtime: float | None = None
        self._cfg: dict[str, Any] = {}

    def __call__(self) -> dict[str, Any]:
        try:
            mtime = self.path.stat().st_mtime
        except FileNotFoundError:
            return {}
        if mtime != self._mtime:
            try:
                self._cfg = load_config(self.path)
            except ConfigError as exc:
                logger.warning("Keeping previous config: %s", exc)
            self._mtime = mtime
        return self._cfg


@dataclass(frozen=True)
class BridgeSettings:
    config_path: str
    upstream_url: str | None
    upstream_token: str | None
    log_level: str

    @classmethod
    def from_env(cls) -> BridgeSettings:
        return cls(
            config_path=os.environ.get("SERVERCHAN_BOT_CONFIG", DEFAULT_CONFIG_PATH),
            upstream_url=os.environ.get("UPSTREAM_URL"),
            upstream_token=os.environ.get("OPENCLAW_TOKEN"),
            log_level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        )


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
