"""Tests for the long-polling loop of Dispatcher."""

import sys
import os
import asyncio
from unittest.mock import patch

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from dispatch.context import Context
from dispatch.dispatcher import Dispatcher
from sdk.testkit import FakeClient, make_message_update

_FAST_POLLING = {"timeout_seconds": 0, "idle_delay_ms": 5, "error_delay_ms": 5, "max_error_delay_ms": 20}


def _make_dispatcher(handler, **polling) -> Dispatcher:
    """Dispatcher whose FakeClient serves get_updates through *handler*."""
    return Dispatcher(FakeClient(handler), {"polling": {**_FAST_POLLING, **polling}})


# ── Basic loop ───────────────────────────────────────────────────────────────


class TestPollingLoop:
    """Fetching, offset tracking and stopping."""

    @pytest.mark.asyncio
    async def test_dispatches_and_advances_offset(self) -> None:
        stop = asyncio.Event()
        seen = []

        def serve(index, offset, limit, timeout):
            if index == 0:
                return [make_message_update("a", update_id=10), make_message_update("b", update_id=11)]
            return []

        dp = _make_dispatcher(serve)

        async def handler(ctx: Context) -> None:
            seen.append(ctx.message_text())
            if len(seen) == 2:
                stop.set()

        dp.message(handler)
        await asyncio.wait_for(dp.start_long_polling(stop), timeout=2)

        assert seen == ["a", "b"]
        assert dp.offset == 12
        assert dp.client.get_updates_calls[0]["offset"] == 0
        assert not dp.is_polling

    @pytest.mark.asyncio
    async def test_next_fetch_uses_offset(self) -> None:
        stop = asyncio.Event()

        def serve(index, offset, limit, timeout):
            if index == 0:
                return [make_message_update("a", update_id=5)]
            stop.set()
            return []

        dp = _make_dispatcher(serve, limit=7)
        await asyncio.wait_for(dp.start_long_polling(stop), timeout=2)

        assert dp.client.get_updates_calls[1] == {"offset": 6, "limit": 7, "timeout": 0}

    @pytest.mark.asyncio
    async def test_lifecycle_hooks_around_loop(self) -> None:
        stop = asyncio.Event()
        calls = []
        dp = _make_dispatcher(lambda *args: stop.set() or [])
        dp.on_startup(lambda: calls.append("start"))
        dp.on_shutdown(lambda: calls.append("stop"))

        await asyncio.wait_for(dp.start_long_polling(stop), timeout=2)
        assert calls == ["start", "stop"]

    @pytest.mark.asyncio
    async def test_already_running(self) -> None:
        stop = asyncio.Event()
        dp = _make_dispatcher(lambda *args: [])
        task = asyncio.ensure_future(dp.start_long_polling(stop))
        await asyncio.sleep(0.01)

        assert dp.is_polling
        with pytest.raises(RuntimeError):
            await dp.start_long_polling()

        stop.set()
        await asyncio.wait_for(task, timeout=2)

    @pytest.mark.asyncio
    async def test_stop_long_polling(self) -> None:
        calls = []

        async def serve(index, offset, limit, timeout):
            await asyncio.sleep(10)
            return []

        dp = _make_dispatcher(serve)
        dp.on_shutdown(lambda: calls.append("stop"))
        task = asyncio.ensure_future(dp.start_long_polling())
        await asyncio.sleep(0.01)

        assert await asyncio.wait_for(dp.stop_long_polling(), timeout=2)
        await asyncio.wait_for(task, timeout=2)
        assert calls == ["stop"]
        assert not dp.is_polling
        assert not await dp.stop_long_polling()

    @pytest.mark.asyncio
    async def test_handler_error_does_not_stop_loop(self) -> None:
        stop = asyncio.Event()
        seen = []

        def serve(index, offset, limit, timeout):
            if index == 0:
                return [make_message_update("bad", update_id=1), make_message_update("good", update_id=2)]
            return []

        dp = _make_dispatcher(serve)

        def handler(ctx: Context) -> None:
            if ctx.message_text() == "bad":
                raise RuntimeError("handler failed")
            seen.append(ctx.message_text())
            stop.set()

        dp.message(handler)
        await asyncio.wait_for(dp.start_long_polling(stop), timeout=2)
        assert seen == ["good"]
        assert dp.offset == 3


    @pytest.mark.asyncio
    async def test_graceful_stop_interrupts_pending_fetch(self) -> None:
        seen = []

        async def serve(index, offset, limit, timeout):
            await asyncio.sleep(0.5)
            return [make_message_update("late", update_id=7)]

        dp = _make_dispatcher(serve)
        dp.message(lambda ctx: seen.append(ctx.message_text()))
        task = asyncio.ensure_future(dp.start_long_polling())
        await asyncio.sleep(0.05)

        loop = asyncio.get_running_loop()
        started = loop.time()
        assert await dp.graceful_stop(timeout_ms=100)
        await asyncio.wait_for(task, timeout=0.3)

        assert loop.time() - started < 0.3
        assert seen == []
        assert dp.offset == 0
        assert not dp.is_polling

    @pytest.mark.asyncio
    async def test_stopping_mid_batch_keeps_rest_unconsumed(self) -> None:
        seen = []
        stoppers = []

        def serve(index, offset, limit, timeout):
            if index == 0:
                return [make_message_update("a", update_id=1), make_message_update("b", update_id=2)]
            return []

        dp = _make_dispatcher(serve)

        async def handler(ctx: Context) -> None:
            seen.append(ctx.message_text())
            stoppers.append(asyncio.ensure_future(dp.graceful_stop(timeout_ms=50)))
            await asyncio.sleep(0)

        dp.message(handler)
        await asyncio.wait_for(dp.start_long_polling(), timeout=2)
        await asyncio.gather(*stoppers)

        assert seen == ["a"]
        assert dp.offset == 2

# ── Drop pending ─────────────────────────────────────────────────────────────


class TestDropPending:
    """drop_pending_updates skips the backlog."""

    @pytest.mark.asyncio
    async def test_backlog_dropped(self) -> None:
        stop = asyncio.Event()
        seen = []

        def serve(index, offset, limit, timeout):
            if index == 0:
                return [make_message_update("old1", update_id=1), make_message_update("old2", update_id=2)]
            if index == 1:
                return []
            if index == 2:
                return [make_message_update("new", update_id=3)]
            return []

        dp = _make_dispatcher(serve, drop_pending_updates=True)

        async def handler(ctx: Context) -> None:
            seen.append(ctx.message_text())
            stop.set()

        dp.message(handler)
        await asyncio.wait_for(dp.start_long_polling(stop), timeout=2)

        assert seen == ["new"]
        calls = dp.client.get_updates_calls
        assert calls[0]["timeout"] == 0
        assert calls[1]["offset"] == 3
        assert calls[2]["offset"] == 3
        assert dp.offset == 4


# ── Error recovery ───────────────────────────────────────────────────────────


class TestErrorRecovery:
    """Fetch failures and backoff."""

    @pytest.mark.asyncio
    async def test_recovers_with_backoff(self) -> None:
        stop = asyncio.Event()
        seen = []

        def serve(index, offset, limit, timeout):
            if index < 3:
                raise ConnectionError("network down")
            if index == 3:
                return [make_message_update("after", update_id=1)]
            return []

        dp = _make_dispatcher(serve)

        async def handler(ctx: Context) -> None:
            seen.append(ctx.message_text())
            stop.set()

        dp.message(handler)
        delays = []
        real_sleep = asyncio.sleep

        async def recording_sleep(delay, *args, **kwargs):
            delays.append(delay)
            await real_sleep(0)

        with patch("dispatch.dispatcher.asyncio.sleep", side_effect=recording_sleep):
            await asyncio.wait_for(dp.start_long_polling(stop), timeout=2)

        assert seen == ["after"]
        assert delays[:3] == [0.005, 0.01, 0.02]

    @pytest.mark.asyncio
    async def test_recover_errors_disabled(self) -> None:
        calls = []

        def serve(index, offset, limit, timeout):
            raise ConnectionError("network down")

        dp = _make_dispatcher(serve, recover_errors=False)
        dp.on_shutdown(lambda: calls.append("stop"))

        with pytest.raises(ConnectionError):
            await asyncio.wait_for(dp.start_long_polling(), timeout=2)
        assert calls == ["stop"]
        assert not dp.is_polling
