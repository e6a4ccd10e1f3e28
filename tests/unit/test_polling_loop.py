"""Tests for the long-poll update loop."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from src.bot.models import Update, UpdatesResult
from src.polling.loop import run_polling_loop, wait_or_abort
from tests.conftest import make_update


def _poll_sequence(abort: asyncio.Event, *results: UpdatesResult) -> AsyncMock:
    """get_updates mock returning ``results`` in turn, then setting abort."""
    remaining = list(results)

    async def fake_get_updates(token: str, *, timeout: int, offset: int) -> UpdatesResult:
        if remaining:
            return remaining.pop(0)
        abort.set()
        return UpdatesResult(ok=True)

    return AsyncMock(side_effect=fake_get_updates)


class TestPollingLoop:
    @pytest.mark.asyncio
    async def test_happy_path_advances_cursor(self) -> None:
        abort = asyncio.Event()
        received: list[Update] = []

        async def on_update(update: Update) -> None:
            received.append(update)

        mock_get = _poll_sequence(
            abort, UpdatesResult(ok=True, updates=[make_update(update_id=5, chat_id=42, text="hi")]),
        )
        with patch("src.polling.loop.get_updates", mock_get):
            cursor = await run_polling_loop(
                "tok", abort=abort, on_update=on_update, interval_ms=0,
            )

        assert cursor == 6
        assert len(received) == 1
        assert received[0].message.chat_id == 42
        first_call = mock_get.call_args_list[0]
        assert first_call.kwargs == {"timeout": 30, "offset": 0}
        assert mock_get.call_args_list[1].kwargs["offset"] == 6

    @pytest.mark.asyncio
    async def test_updates_processed_in_received_order(self) -> None:
        abort = asyncio.Event()
        seen: list[int] = []

        async def on_update(update: Update) -> None:
            seen.append(update.update_id)

        batch = [make_update(update_id=i) for i in (10, 11, 12)]
        mock_get = _poll_sequence(abort, UpdatesResult(ok=True, updates=batch))
        with patch("src.polling.loop.get_updates", mock_get):
            cursor = await run_polling_loop("tok", abort=abort, on_update=on_update, interval_ms=0)

        assert seen == [10, 11, 12]
        assert cursor == 13

    @pytest.mark.asyncio
    async def test_initial_cursor_forwarded(self) -> None:
        abort = asyncio.Event()
        mock_get = _poll_sequence(abort)
        with patch("src.polling.loop.get_updates", mock_get):
            cursor = await run_polling_loop(
                "tok", abort=abort, on_update=AsyncMock(), cursor=100, interval_ms=0,
            )
        assert mock_get.call_args.kwargs["offset"] == 100
        assert cursor == 100

    @pytest.mark.asyncio
    async def test_empty_results_keep_polling(self) -> None:
        abort = asyncio.Event()
        on_update = AsyncMock()
        mock_get = _poll_sequence(abort, UpdatesResult(ok=True), UpdatesResult(ok=True))
        with patch("src.polling.loop.get_updates", mock_get):
            await run_polling_loop("tok", abort=abort, on_update=on_update, interval_ms=0)
        assert mock_get.await_count == 3
        on_update.assert_not_called()

    @pytest.mark.asyncio
    async def test_error_result_backs_off_and_retries(self) -> None:
        abort = asyncio.Event()
        on_update = AsyncMock()
        mock_get = _poll_sequence(
            abort,
            UpdatesResult(ok=False, error="HTTP 502: Bad Gateway"),
            UpdatesResult(ok=True, updates=[make_update(update_id=1)]),
        )
        with patch("src.polling.loop.get_updates", mock_get), \
             patch("src.polling.loop.wait_or_abort", new_callable=AsyncMock) as mock_wait:
            cursor = await run_polling_loop("tok", abort=abort, on_update=on_update, interval_ms=0)

        mock_wait.assert_any_await(abort, 5.0)
        on_update.assert_awaited_once()
        assert cursor == 2

    @pytest.mark.asyncio
    async def test_transport_exception_backs_off(self) -> None:
        abort = asyncio.Event()
        calls = 0

        async def flaky(token: str, *, timeout: int, offset: int) -> UpdatesResult:
            nonlocal calls
            calls += 1
            if calls == 1:
                raise ConnectionError("network down")
            abort.set()
            return UpdatesResult(ok=True)

        with patch("src.polling.loop.get_updates", AsyncMock(side_effect=flaky)), \
             patch("src.polling.loop.wait_or_abort", new_callable=AsyncMock) as mock_wait:
            await run_polling_loop("tok", abort=abort, on_update=AsyncMock(), interval_ms=0)

        assert calls == 2
        mock_wait.assert_any_await(abort, 5.0)

    @pytest.mark.asyncio
    async def test_on_update_exception_propagates(self) -> None:
        abort = asyncio.Event()
        on_update = AsyncMock(side_effect=RuntimeError("fatal"))
        mock_get = _poll_sequence(abort, UpdatesResult(ok=True, updates=[make_update()]))
        with patch("src.polling.loop.get_updates", mock_get), pytest.raises(RuntimeError):
            await run_polling_loop("tok", abort=abort, on_update=on_update, interval_ms=0)

    @pytest.mark.asyncio
    async def test_abort_before_start_skips_fetch(self) -> None:
        abort = asyncio.Event()
        abort.set()
        with patch("src.polling.loop.get_updates", new_callable=AsyncMock) as mock_get:
            await run_polling_loop("tok", abort=abort, on_update=AsyncMock())
        mock_get.assert_not_called()


class TestWaitOrAbort:
    @pytest.mark.asyncio
    async def test_returns_early_when_aborted(self) -> None:
        abort = asyncio.Event()
        asyncio.get_running_loop().call_later(0.01, abort.set)
        await asyncio.wait_for(wait_or_abort(abort, 30), timeout=1)
        assert abort.is_set()

    @pytest.mark.asyncio
    async def test_times_out_without_abort(self) -> None:
        abort = asyncio.Event()
        await wait_or_abort(abort, 0.01)
        assert not abort.is_set()
