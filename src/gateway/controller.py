"""Per-account lifecycle: probe, pick an intake mode, run until cancelled.

State transitions reported through ``set_status``::

    stopped -> probing -> running -> stopped
                              \\-> errored
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from src.bot.api import probe_bot
from src.bot.models import Update
from src.models import (
    AccountState,
    BotTokenMissingError,
    IntakeMode,
    ResolvedAccount,
)
from src.pipeline.dispatcher import ReplyDispatcher
from src.pipeline.processor import Log, now_ms, process_update
from src.polling.loop import run_polling_loop
from src.webhook.router import (
    WebhookTarget,
    WebhookTargetRegistry,
    build_webhook_url_from_config,
    resolve_webhook_path,
    webhook_targets,
)

logger = logging.getLogger(__name__)

PROBE_TIMEOUT_SECONDS = 5.0


@dataclass
class AccountStartContext:
    account: ResolvedAccount
    config: Any
    abort: asyncio.Event
    set_status: Callable[[dict[str, Any]], None]
    dispatcher: ReplyDispatcher
    log: Log | None = None
    registry: WebhookTargetRegistry | None = None
    # Live config source; ``config`` is only the tree the account started with.
    config_provider: Callable[[], Any] | None = None

    def current_config(self) -> Any:
        return self.config_provider() if self.config_provider else self.config


def has_webhook_config(account: ResolvedAccount) -> bool:
    cfg = account.config
    return any(
        bool(value and value.strip())
        for value in (cfg.webhook_url, cfg.webhook_path, cfg.webhook_secret)
    )


def select_intake_mode(account: ResolvedAccount) -> IntakeMode:
    """An explicit ``polling_enabled`` wins; otherwise webhook config implies webhook."""
    polling_enabled = account.config.polling_enabled
    if isinstance(polling_enabled, bool):
        return IntakeMode.POLLING if polling_enabled else IntakeMode.WEBHOOK
    return IntakeMode.WEBHOOK if has_webhook_config(account) else IntakeMode.POLLING


async def start_account(ctx: AccountStartContext) -> None:
    """Run one account until ``ctx.abort`` is set.

    Raises BotTokenMissingError without a token, and re-raises any fatal
    polling error after recording it in status.
    """
    account = ctx.account
    account_id = account.account_id
    log = ctx.log or logger
    bot_token = account.config.bot_token

    def set_status(**patch: Any) -> None:
        ctx.set_status({"account_id": account_id, **patch})

    def status_sink(patch: dict[str, Any]) -> None:
        ctx.set_status({"account_id": account_id, **patch})

    if not bot_token:
        error = BotTokenMissingError(account_id)
        set_status(state=AccountState.ERRORED, running=False, last_error=str(error))
        raise error

    set_status(state=AccountState.PROBING)
    bot_label = ""
    try:
        probe = await asyncio.wait_for(probe_bot(bot_token), PROBE_TIMEOUT_SECONDS)
        if probe.ok and probe.bot:
            if probe.bot.name:
                bot_label = f" ({probe.bot.name})"
            set_status(bot=probe.bot)
        elif not probe.ok:
            log.debug("[%s] bot probe failed: %s", account_id, probe.error)
    except Exception as exc:
        log.debug("[%s] bot probe failed: %s", account_id, exc)

    mode = select_intake_mode(account)
    log.info("[%s] starting Server酱³ Bot provider%s", account_id, bot_label)
    set_status(
        state=AccountState.RUNNING, running=True, mode=mode, last_start_at=now_ms(),
    )

    unregister: Callable[[], None] | None = None
    try:
        if mode == IntakeMode.WEBHOOK:
            unregister = _register_webhook(ctx, bot_token, status_sink, log)
            log.info("[%s] polling disabled, waiting for webhook", account_id)
            await ctx.abort.wait()
        else:
            async def on_update(update: Update) -> None:
                await process_update(
                    update,
                    account,
                    ctx.current_config(),
                    bot_token,
                    dispatcher=ctx.dispatcher,
                    log=log,
                    status_sink=status_sink,
                )

            await run_polling_loop(
                bot_token,
                abort=ctx.abort,
                on_update=on_update,
                interval_ms=account.config.polling_interval_ms,
                log=log,
                account_id=account_id,
            )
    except Exception as exc:
        set_status(state=AccountState.ERRORED, running=False, last_error=str(exc))
        raise
    finally:
        if unregister is not None:
            unregister()

    set_status(state=AccountState.STOPPED, running=False, last_stop_at=now_ms())


def _register_webhook(
    ctx: AccountStartContext,
    bot_token: str,
    status_sink: Callable[[dict[str, Any]], None],
    log: Log,
) -> Callable[[], None] | None:
    account = ctx.account
    account_id = account.account_id
    path = resolve_webhook_path(account.config.webhook_path, account.config.webhook_url)
    if path is None:
        log.error("[%s] webhook path could not be derived", account_id)
        return None

    secret = (account.config.webhook_secret or "").strip() or None
    registry = ctx.registry or webhook_targets
    unregister = registry.register(WebhookTarget(
        account=account,
        config=ctx.config,
        config_provider=ctx.config_provider,
        bot_token=bot_token,
        path=path,
        dispatcher=ctx.dispatcher,
        secret=secret,
        log=log,
        status_sink=status_sink,
    ))
    public_url = (account.config.webhook_url or "").strip() or build_webhook_url_from_config(
        ctx.config, path,
    )
    log.info("[%s] webhook url: %s", account_id, public_url)
    if not secret:
        log.info("[%s] webhook secret not configured", account_id)
    return unregister
