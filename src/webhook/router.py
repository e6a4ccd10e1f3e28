"""Multi-tenant webhook intake.

A process-wide registry maps normalized URL paths to one or more webhook
targets (one per account). When several accounts share a path the
``x-sc3bot-webhook-secret`` header decides which one receives the update.

Accepted updates are acknowledged with 200 right away; processing runs as
a detached task whose failures only reach the owning account's log.
"""

from __future__ import annotations

import asyncio
import json
import logging
import threading
from collections.abc import Callable, Coroutine, Mapping
from dataclasses import dataclass, replace
from typing import Any
from urllib.parse import urlsplit

from starlette.requests import ClientDisconnect, Request
from starlette.responses import PlainTextResponse, Response

from src.bot.api import parse_webhook_payload, verify_webhook_secret
from src.models import CHANNEL_ID, ResolvedAccount
from src.pipeline.dispatcher import ReplyDispatcher
from src.pipeline.processor import Log, StatusSink, now_ms, process_update

logger = logging.getLogger(__name__)

MAX_WEBHOOK_BODY_BYTES = 1024 * 1024
DEFAULT_WEBHOOK_PATH = f"/{CHANNEL_ID}"
DEFAULT_GATEWAY_PORT = 18789

_PAYLOAD_TOO_LARGE = "payload too large"

# Strong references keep detached processing tasks alive until they finish.
_background_tasks: set[asyncio.Task[None]] = set()


@dataclass(eq=False)
class WebhookTarget:
    """One account's binding to a webhook path. Compared by identity."""

    account: ResolvedAccount
    config: Any
    bot_token: str
    path: str
    dispatcher: ReplyDispatcher
    secret: str | None = None
    log: Log | None = None
    status_sink: StatusSink | None = None
    config_provider: Callable[[], Any] | None = None

    def current_config(self) -> Any:
        return self.config_provider() if self.config_provider else self.config


def normalize_webhook_path(raw: str) -> str:
    trimmed = raw.strip()
    if not trimmed:
        return "/"
    with_slash = trimmed if trimmed.startswith("/") else f"/{trimmed}"
    if len(with_slash) > 1 and with_slash.endswith("/"):
        return with_slash[:-1]
    return with_slash


def resolve_webhook_path(
    webhook_path: str | None = None, webhook_url: str | None = None,
) -> str | None:
    """Explicit path, else the path of ``webhook_url``, else the default."""
    if webhook_path and webhook_path.strip():
        return normalize_webhook_path(webhook_path)
    if webhook_url and webhook_url.strip():
        try:
            parsed = urlsplit(webhook_url.strip())
        except ValueError:
            return None
        if not parsed.scheme or not parsed.netloc:
            return None
        return normalize_webhook_path(parsed.path or "/")
    return DEFAULT_WEBHOOK_PATH


def build_webhook_url_from_config(cfg: Any, path: str) -> str:
    """Local URL of ``path`` on the host gateway listener."""
    gateway = cfg.get("gateway") if isinstance(cfg, Mapping) else None
    gateway = gateway if isinstance(gateway, Mapping) else {}
    port = gateway.get("port")
    if not isinstance(port, int) or isinstance(port, bool) or port <= 0:
        port = DEFAULT_GATEWAY_PORT
    custom_host = gateway.get("customBindHost")
    custom_host = custom_host.strip() if isinstance(custom_host, str) else ""
    bind = gateway.get("bind") if isinstance(gateway.get("bind"), str) else "loopback"
    host = custom_host or ("127.0.0.1" if bind == "loopback" else "localhost")
    tls = gateway.get("tls")
    scheme = "https" if isinstance(tls, Mapping) and tls.get("enabled") else "http"
    return f"{scheme}://{host}:{port}{path}"


class WebhookTargetRegistry:
    """Path -> targets mapping with copy-on-write updates.

    Readers take the current immutable tuple without locking; writers swap
    in a new mapping under a lock, so a lookup never sees a partial update.
    """

    def __init__(self) -> None:
        self._targets: dict[str, tuple[WebhookTarget, ...]] = {}
        self._lock = threading.Lock()

    def register(self, target: WebhookTarget) -> Callable[[], None]:
        key = normalize_webhook_path(target.path)
        normalized = replace(target, path=key)
        with self._lock:
            existing = self._targets.get(key, ())
            self._targets = {**self._targets, key: (*existing, normalized)}

        def unregister() -> None:
            with self._lock:
                remaining = tuple(
                    entry for entry in self._targets.get(key, ()) if entry is not normalized
                )
                updated = dict(self._targets)
                if remaining:
                    updated[key] = remaining
                else:
                    updated.pop(key, None)
                self._targets = updated

        return unregister

    def lookup(self, path: str) -> tuple[WebhookTarget, ...]:
        return self._targets.get(normalize_webhook_path(path), ())

    def paths(self) -> list[str]:
        return sorted(self._targets)

    def clear(self) -> None:
        with self._lock:
            self._targets = {}


webhook_targets = WebhookTargetRegistry()


def select_webhook_target(
    targets: tuple[WebhookTarget, ...],
    headers: Mapping[str, str | list[str] | None],
) -> WebhookTarget | None:
    if len(targets) == 1:
        only = targets[0]
        if not only.secret:
            return only
        return only if verify_webhook_secret(headers, only.secret) else None
    for target in targets:
        if target.secret and verify_webhook_secret(headers, target.secret):
            return target
    without_secret = [target for target in targets if not target.secret]
    if len(without_secret) == 1:
        return without_secret[0]
    return None


@dataclass
class BodyReadResult:
    ok: bool
    value: Any = None
    error: str | None = None


async def read_json_body(request: Request, max_bytes: int) -> BodyReadResult:
    """Read at most ``max_bytes`` from the request stream and parse JSON."""
    chunks: list[bytes] = []
    total = 0
    try:
        async for chunk in request.stream():
            total += len(chunk)
            if total > max_bytes:
                return BodyReadResult(ok=False, error=_PAYLOAD_TOO_LARGE)
            chunks.append(chunk)
    except ClientDisconnect:
        return BodyReadResult(ok=False, error="request body interrupted")

    raw = b"".join(chunks).decode("utf-8", errors="replace")
    if not raw.strip():
        return BodyReadResult(ok=False, error="empty payload")
    try:
        return BodyReadResult(ok=True, value=json.loads(raw))
    except RecursionError:
        return BodyReadResult(ok=False, error="invalid json: nesting too deep")
    except ValueError as exc:
        # JSONDecodeError, and int literals over the interpreter's digit limit.
        return BodyReadResult(ok=False, error=f"invalid json: {exc}")


def run_detached(
    coro: Coroutine[Any, Any, None], log: Log, account_id: str,
) -> asyncio.Task[None]:
    """Schedule ``coro`` without awaiting it; failures are only logged."""
    task = asyncio.create_task(coro)
    _background_tasks.add(task)

    def _done(finished: asyncio.Task[None]) -> None:
        _background_tasks.discard(finished)
        if finished.cancelled():
            return
        exc = finished.exception()
        if exc is not None:
            log.error("[%s] webhook error: %s", account_id, exc)

    task.add_done_callback(_done)
    return task


class WebhookRouter:
    """Routes webhook requests to registered targets."""

    def __init__(
        self,
        registry: WebhookTargetRegistry | None = None,
        max_body_bytes: int = MAX_WEBHOOK_BODY_BYTES,
    ) -> None:
        self._registry = registry or webhook_targets
        self._max_body_bytes = max_body_bytes

    async def handle(self, request: Request) -> Response | None:
        """Return a response, or None when no target owns the path."""
        targets = self._registry.lookup(request.url.path)
        if not targets:
            return None

        if request.method != "POST":
            return PlainTextResponse(
                "Method Not Allowed", status_code=405, headers={"Allow": "POST"},
            )

        selected = select_webhook_target(targets, request.headers)
        if selected is None:
            logger.warning("Webhook request for %s matched no target", request.url.path)
            return PlainTextResponse("unauthorized", status_code=401)

        body = await read_json_body(request, self._max_body_bytes)
        if not body.ok:
            status = 413 if body.error == _PAYLOAD_TOO_LARGE else 400
            return PlainTextResponse(body.error or "invalid payload", status_code=status)

        update = parse_webhook_payload(body.value)
        if update is None:
            return PlainTextResponse("invalid payload", status_code=400)

        log = selected.log or logger
        if selected.status_sink:
            selected.status_sink({"last_inbound_at": now_ms()})
        run_detached(
            process_update(
                update,
                selected.account,
                selected.current_config(),
                selected.bot_token,
                dispatcher=selected.dispatcher,
                log=log,
                status_sink=selected.status_sink,
            ),
            log,
            selected.account.account_id,
        )
        return PlainTextResponse("ok", status_code=200)
