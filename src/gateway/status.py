"""Runtime status tracking and host-facing account snapshots."""

from __future__ import annotations

import threading
from collections.abc import Iterable
from typing import Any

from pydantic import BaseModel

from src.models import (
    CHANNEL_ID,
    CHANNEL_LABEL,
    DEFAULT_ACCOUNT_ID,
    AccountSnapshot,
    AccountState,
    BotIdentity,
    BotProbe,
    IntakeMode,
    ResolvedAccount,
    StatusIssue,
)
from src.pipeline.processor import StatusSink


class AccountStatus(BaseModel):
    account_id: str = DEFAULT_ACCOUNT_ID
    running: bool = False
    state: AccountState = AccountState.STOPPED
    mode: IntakeMode | None = None
    last_start_at: int | None = None
    last_stop_at: int | None = None
    last_error: str | None = None
    last_inbound_at: int | None = None
    last_outbound_at: int | None = None
    bot: BotIdentity | None = None


class StatusStore:
    """Per-account runtime status, updated by patches."""

    def __init__(self) -> None:
        self._statuses: dict[str, AccountStatus] = {}
        self._lock = threading.Lock()

    def apply(self, patch: dict[str, Any]) -> AccountStatus:
        account_id = patch.get("account_id") or DEFAULT_ACCOUNT_ID
        fields = {key: value for key, value in patch.items() if key != "account_id"}
        unknown = set(fields) - set(AccountStatus.model_fields)
        if unknown:
            raise ValueError(f"Unknown status fields: {sorted(unknown)}")
        with self._lock:
            current = self._statuses.get(account_id) or AccountStatus(account_id=account_id)
            updated = current.model_copy(update=fields)
            self._statuses[account_id] = updated
        return updated

    def get(self, account_id: str) -> AccountStatus | None:
        return self._statuses.get(account_id)

    def sink_for(self, account_id: str) -> StatusSink:
        def sink(patch: dict[str, Any]) -> None:
            self.apply({**patch, "account_id": account_id})

        return sink


def describe_account(account: ResolvedAccount) -> AccountSnapshot:
    return AccountSnapshot(
        account_id=account.account_id,
        name=account.name,
        enabled=account.enabled,
        configured=account.configured,
        token_source=account.token_source,
        text_chunk_limit=account.config.text_chunk_limit,
    )


def build_account_snapshot(
    account: ResolvedAccount,
    status: AccountStatus | None = None,
    probe: BotProbe | None = None,
) -> AccountSnapshot:
    snapshot = describe_account(account)
    if status is None:
        return snapshot.model_copy(update={"probe": probe})
    return snapshot.model_copy(update={
        "running": status.running,
        "state": status.state,
        "mode": status.mode,
        "last_start_at": status.last_start_at,
        "last_stop_at": status.last_stop_at,
        "last_error": status.last_error,
        "last_inbound_at": status.last_inbound_at,
        "last_outbound_at": status.last_outbound_at,
        "bot": status.bot,
        "probe": probe,
    })


def build_channel_summary(snapshot: AccountSnapshot) -> dict[str, Any]:
    return {
        "configured": snapshot.configured,
        "token_source": snapshot.token_source.value,
        "running": snapshot.running,
        "last_start_at": snapshot.last_start_at,
        "last_stop_at": snapshot.last_stop_at,
        "last_error": snapshot.last_error,
        "probe": snapshot.probe.model_dump() if snapshot.probe else None,
    }


def collect_status_issues(snapshots: Iterable[AccountSnapshot]) -> list[StatusIssue]:
    return [
        StatusIssue(
            channel=CHANNEL_ID,
            account_id=snapshot.account_id or DEFAULT_ACCOUNT_ID,
            kind="config",
            message=f"{CHANNEL_LABEL} token not configured",
        )
        for snapshot in snapshots
        if not snapshot.configured
    ]
