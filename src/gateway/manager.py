"""Gateway manager — runs one lifecycle task per enabled account."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from src.accounts.resolver import list_account_ids, resolve_account
from src.gateway.controller import AccountStartContext, start_account
from src.gateway.status import StatusStore, build_account_snapshot
from src.models import CHANNEL_ID, AccountSnapshot, AccountState, ResolvedAccount
from src.pipeline.dispatcher import ReplyDispatcher
from src.pipeline.processor import now_ms
from src.webhook.router import WebhookTargetRegistry

logger = logging.getLogger(__name__)

ConfigProvider = Callable[[], Any]


@dataclass
class _RunningAccount:
    abort: asyncio.Event
    task: asyncio.Task[None]


class ChannelGateway:
    """Starts and stops account lifecycles with a cancellation signal each."""

    def __init__(
        self,
        config_provider: ConfigProvider,
        dispatcher: ReplyDispatcher,
        status: StatusStore | None = None,
        registry: WebhookTargetRegistry | None = None,
        stop_timeout: float = 10.0,
    ) -> None:
        self._config_provider = config_provider
        self._dispatcher = dispatcher
        self.status = status or StatusStore()
        self._registry = registry
        self._stop_timeout = stop_timeout
        self._running: dict[str, _RunningAccount] = {}

    def accounts(self) -> list[ResolvedAccount]:
        cfg = self._config_provider()
        return [resolve_account(cfg, account_id) for account_id in list_account_ids(cfg)]

    def snapshots(self) -> list[AccountSnapshot]:
        return [
            build_account_snapshot(account, self.status.get(account.account_id))
            for account in self.accounts()
        ]

    def running_account_ids(self) -> list[str]:
        return [
            account_id for account_id, entry in self._running.items()
            if not entry.task.done()
        ]

    async def start(self) -> list[str]:
        """Launch every enabled, configured account not already running."""
        cfg = self._config_provider()
        started: list[str] = []
        for account_id in list_account_ids(cfg):
            account = resolve_account(cfg, account_id)
            if not account.enabled:
                logger.info("[%s] account disabled, not starting", account_id)
                continue
            if not account.configured:
                logger.warning("[%s] bot token not configured, not starting", account_id)
                continue
            existing = self._running.get(account_id)
            if existing and not existing.task.done():
                continue

            abort = asyncio.Event()
            ctx = AccountStartContext(
                account=account,
                config=cfg,
                abort=abort,
                set_status=self.status.apply,
                dispatcher=self._dispatcher,
                log=logging.getLogger(f"{__name__}.{account_id}"),
                registry=self._registry,
                config_provider=self._config_provider,
            )
            task = asyncio.create_task(
                self._run(ctx), name=f"{CHANNEL_ID}:{account_id}",
            )
            self._running[account_id] = _RunningAccount(abort=abort, task=task)
            started.append(account_id)
        return started

    async def _run(self, ctx: AccountStartContext) -> None:
        try:
            await start_account(ctx)
        except Exception:
            logger.exception("[%s] account stopped with error", ctx.account.account_id)

    async def stop(self) -> None:
        """Signal every account to stop and wait for the tasks to finish."""
        if not self._running:
            return
        for entry in self._running.values():
            entry.abort.set()
        tasks = [entry.task for entry in self._running.values()]
        _, pending = await asyncio.wait(tasks, timeout=self._stop_timeout)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        for account_id in self._running:
            current = self.status.get(account_id)
            if current is not None and current.state == AccountState.ERRORED:
                continue
            self.status.apply({
                "account_id": account_id,
                "running": False,
                "state": AccountState.STOPPED,
                "last_stop_at": now_ms(),
            })
        self._running.clear()
