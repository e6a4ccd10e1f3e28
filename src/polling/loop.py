"""Long-poll update loop for one account.

One iteration is one ``getUpdates`` call. The cursor lives only in memory:
it advances to ``update_id + 1`` as each update is handed to ``on_update``,
so a crash mid-batch can redeliver or lose updates after a restart.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable

from src.bot.api import get_updates
from src.bot.models import Update
from src.models import DEFAULT_POLLING_INTERVAL_MS
from src.pipeline.processor import Log

logger = logging.getLogger(__name__)

LONG_POLL_TIMEOUT_SECONDS = 30
ERROR_BACKOFF_SECONDS = 5.0

OnUpdate = Callable[[Update], Awaitable[None]]


async def wait_or_abort(abort: asyncio.Event, seconds: float) -> None:
    """Sleep for ``seconds`` unless ``abort`` is set first."""
    if seconds <= 0 or abort.is_set():
        return
    try:
        await asyncio.wait_for(abort.wait(), timeout=seconds)
    except asyncio.TimeoutError:
        pass


async def run_polling_loop(
    token: str,
    *,
    abort: asyncio.Event,
    on_update: OnUpdate,
    cursor: int = 0,
    interval_ms: int = DEFAULT_POLLING_INTERVAL_MS,
    log: Log | None = None,
    account_id: str = "",
) -> int:
    """Poll until ``abort`` is set and return the final cursor.

    Transport failures back off and retry; exceptions raised by
    ``on_update`` propagate to the caller.
    """
    log = log or logger
    interval_seconds = max(interval_ms, 0) / 1000

    while not abort.is_set():
        started = time.monotonic()
        try:
            result = await get_updates(
                token, timeout=LONG_POLL_TIMEOUT_SECONDS, offset=cursor,
            )
        except Exception as exc:
            log.error("[%s] polling error: %s", account_id, exc)
            await wait_or_abort(abort, ERROR_BACKOFF_SECONDS)
            continue

        if not result.ok:
            log.error("[%s] polling error: %s", account_id, result.error)
            await wait_or_abort(abort, ERROR_BACKOFF_SECONDS)
            continue

        if not result.updates:
            # Servers that ignore the long-poll timeout return immediately.
            elapsed = time.monotonic() - started
            await wait_or_abort(abort, interval_seconds - elapsed)
            continue

        for update in result.updates:
            cursor = update.update_id + 1
            await on_update(update)

    return cursor
