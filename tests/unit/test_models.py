"""Tests for shared Pydantic data models."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from src.models import (
    AccountConfig,
    AccountSnapshot,
    AccountState,
    BotIdentity,
    BotProbe,
    BotTokenMissingError,
    ResolvedAccount,
    ServerChanBotError,
    TokenSource,
)


class TestResolvedAccount:
    def test_configured_follows_token_source(self):
        assert ResolvedAccount(account_id="a", token_source=TokenSource.ENV).configured is True
        assert ResolvedAccount(account_id="a").configured is False

    def test_account_id_must_be_non_empty(self):
        with pytest.raises(ValidationError):
            ResolvedAccount(account_id="")

    def test_frozen(self):
        account = ResolvedAccount(account_id="a")
        with pytest.raises(ValidationError):
            account.enabled = False

    def test_config_defaults(self):
        config = AccountConfig()
        assert config.polling_interval_ms == 3000
        assert config.polling_enabled is None
        assert config.bot_token is None


class TestProbeModels:
    def test_probe_serialization_round_trip(self):
        probe = BotProbe(ok=True, bot=BotIdentity(id=1, name="Helper", username="helper_bot"))
        restored = BotProbe.model_validate_json(probe.model_dump_json())
        assert restored == probe

    def test_snapshot_defaults(self):
        snapshot = AccountSnapshot(account_id="a")
        assert snapshot.state == AccountState.STOPPED
        assert snapshot.running is False
        assert snapshot.mode is None


class TestErrors:
    def test_token_missing_message(self):
        error = BotTokenMissingError("work")
        assert isinstance(error, ServerChanBotError)
        assert error.account_id == "work"
        assert str(error) == "Server酱³ Bot token not configured"
