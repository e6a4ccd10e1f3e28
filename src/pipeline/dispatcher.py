"""Reply dispatchers — the seam to the host's reply-generation pipeline.

``ReplyDispatcher`` is what the update processor calls. The upstream
implementation forwards messages to an OpenClaw gateway through its
OpenAI-compatible chat completions endpoint.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Awaitable, Callable
from typing import Any, Protocol

import httpx

from src.accounts.resolver import resolve_account, resolve_dm_policy
from src.bot.models import DispatchOutcome, MessageContext, ReplyPayload
from src.pipeline.policy import is_sender_allowed

logger = logging.getLogger(__name__)

DeliverFn = Callable[[ReplyPayload], Awaitable[None]]
ErrorFn = Callable[[BaseException, dict[str, str]], None]


class ReplyDispatcher(Protocol):
    async def dispatch(
        self,
        ctx: MessageContext,
        cfg: Any,
        *,
        deliver: DeliverFn,
        on_error: ErrorFn,
    ) -> DispatchOutcome: ...


class UpstreamUnavailableError(Exception):
    """Raised when the upstream reply generator cannot be reached."""


class UpstreamReplyDispatcher:
    """Generates replies by calling an OpenClaw upstream.

    Senders rejected by the account's DM policy get no reply and the
    outcome reports ``queued_final=False``.
    """

    def __init__(
        self,
        upstream_url: str,
        upstream_token: str,
        timeout: float = 120.0,
    ) -> None:
        self._upstream_url = upstream_url
        self._upstream_token = upstream_token
        self._timeout = timeout

    async def dispatch(
        self,
        ctx: MessageContext,
        cfg: Any,
        *,
        deliver: DeliverFn,
        on_error: ErrorFn,
    ) -> DispatchOutcome:
        account = resolve_account(cfg, ctx.account_id)
        policy = resolve_dm_policy(cfg, account)
        if not is_sender_allowed(policy.policy, policy.allow_from, ctx.sender_id):
            logger.info(
                "[%s] sender %s rejected by dm policy %s",
                ctx.account_id, ctx.sender_id, policy.policy,
            )
            return DispatchOutcome(queued_final=False)

        try:
            text = await self._complete(ctx)
        except UpstreamUnavailableError as exc:
            on_error(exc, {"kind": "final"})
            return DispatchOutcome(queued_final=False)

        if not text:
            return DispatchOutcome(queued_final=False)
        await deliver(ReplyPayload(text=text))
        return DispatchOutcome(queued_final=True)

    async def _complete(self, ctx: MessageContext) -> str:
        url = f"{self._upstream_url.rstrip('/')}/v1/chat/completions"
        headers = {
            "Authorization": f"Bearer {self._upstream_token}",
            "Content-Type": "application/json",
        }
        request_body = {
            "model": "default",
            "messages": [{"role": "user", "content": ctx.body_for_agent}],
            "user": ctx.session_key,
            "metadata": {
                "source": ctx.channel,
                "session_key": ctx.session_key,
                "sender_id": ctx.sender_id,
                "account_id": ctx.account_id,
            },
        }

        try:
            async with httpx.AsyncClient() as client:
                resp = await client.post(
                    url, json=request_body, headers=headers, timeout=self._timeout,
                )
        except (httpx.ConnectError, httpx.TimeoutException) as exc:
            raise UpstreamUnavailableError(f"Upstream unavailable: {exc}") from exc

        if resp.status_code != 200:
            raise UpstreamUnavailableError(f"Upstream returned HTTP {resp.status_code}")
        try:
            resp_json = resp.json()
            content = resp_json.get("choices", [{}])[0].get("message", {}).get("content")
        except (json.JSONDecodeError, IndexError, KeyError, AttributeError):
            content = resp.text
        return content if isinstance(content, str) else ""
