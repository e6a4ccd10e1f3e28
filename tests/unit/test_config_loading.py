"""Tests for config file loading and validation."""

from __future__ import annotations

import json
import os
from pathlib import Path

import pytest

from src.accounts.resolver import list_account_ids, resolve_account
from src.config import BridgeSettings, ConfigFile, load_config, validate_config
from src.models import ConfigError, TokenSource

CONFIG_DIR = Path(__file__).parent.parent.parent / "config"


def _write(tmp_path: Path, data: object, name: str = "openclaw.json") -> Path:
    p = tmp_path / name
    p.write_text(json.dumps(data))
    return p


def test_example_config_is_valid() -> None:
    cfg = load_config(CONFIG_DIR / "openclaw.example.json")
    assert list_account_ids(cfg) == ["default", "work"]
    work = resolve_account(cfg, "work")
    assert work.token_source == TokenSource.CONFIG
    assert work.config.webhook_path == "/serverchan-bot/work"


def test_load_valid_config(tmp_path: Path) -> None:
    path = _write(tmp_path, {"channels": {"serverchan-bot": {"botToken": "t", "chatId": 42}}})
    cfg = load_config(path)
    assert cfg["channels"]["serverchan-bot"]["botToken"] == "t"


def test_missing_file(tmp_path: Path) -> None:
    with pytest.raises(ConfigError, match="not found"):
        load_config(tmp_path / "nope.json")


def test_invalid_json(tmp_path: Path) -> None:
    p = tmp_path / "bad.json"
    p.write_text("{not json")
    with pytest.raises(ConfigError, match="not valid JSON"):
        load_config(p)


def test_unknown_channel_key_rejected() -> None:
    with pytest.raises(ConfigError, match="serverchan-bot"):
        validate_config({"channels": {"serverchan-bot": {"botTokn": "typo"}}})


def test_invalid_dm_policy_rejected() -> None:
    with pytest.raises(ConfigError):
        validate_config({"channels": {"serverchan-bot": {"dmPolicy": "everyone"}}})


def test_invalid_account_override_rejected() -> None:
    cfg = {"channels": {"serverchan-bot": {"accounts": {"a": {"pollingEnabled": "maybe"}}}}}
    with pytest.raises(ConfigError):
        validate_config(cfg)


def test_other_channels_ignored() -> None:
    cfg = {"channels": {"telegram": {"anything": True}}}
    assert validate_config(cfg) is cfg


def test_root_must_be_object() -> None:
    with pytest.raises(ConfigError):
        validate_config([])


class TestConfigFile:
    def test_missing_file_yields_empty(self, tmp_path: Path) -> None:
        assert ConfigFile(tmp_path / "nope.json")() == {}

    def test_reloads_on_change(self, tmp_path: Path) -> None:
        path = _write(tmp_path, {"channels": {"serverchan-bot": {"botToken": "one"}}})
        provider = ConfigFile(path)
        assert provider()["channels"]["serverchan-bot"]["botToken"] == "one"

        _write(tmp_path, {"channels": {"serverchan-bot": {"botToken": "two"}}})
        stat = path.stat()
        os.utime(path, (stat.st_atime, stat.st_mtime + 10))
        assert provider()["channels"]["serverchan-bot"]["botToken"] == "two"

    def test_invalid_edit_keeps_previous(self, tmp_path: Path) -> None:
        path = _write(tmp_path, {"channels": {"serverchan-bot": {"botToken": "one"}}})
        provider = ConfigFile(path)
        provider()

        path.write_text("{broken")
        stat = path.stat()
        os.utime(path, (stat.st_atime, stat.st_mtime + 10))
        assert provider()["channels"]["serverchan-bot"]["botToken"] == "one"


class TestBridgeSettings:
    def test_defaults(self, monkeypatch: pytest.MonkeyPatch) -> None:
        for var in ("SERVERCHAN_BOT_CONFIG", "UPSTREAM_URL", "OPENCLAW_TOKEN", "LOG_LEVEL"):
            monkeypatch.delenv(var, raising=False)
        settings = BridgeSettings.from_env()
        assert settings.config_path == "config/openclaw.json"
        assert settings.upstream_url is None
        assert settings.log_level == "INFO"

    def test_from_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SERVERCHAN_BOT_CONFIG", "/etc/openclaw.json")
        monkeypatch.setenv("UPSTREAM_URL", "http://upstream:3000")
        monkeypatch.setenv("OPENCLAW_TOKEN", "tok")
        monkeypatch.setenv("LOG_LEVEL", "debug")
        settings = BridgeSettings.from_env()
        assert settings.config_path == "/etc/openclaw.json"
        assert settings.upstream_url == "http://upstream:3000"
        assert settings.upstream_token == "tok"
        assert settings.log_level == "DEBUG"
