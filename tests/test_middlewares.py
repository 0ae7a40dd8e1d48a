"""Tests for the throttle middleware."""

import sys
import os

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from dispatch.context import Context
from dispatch.middlewares import create_throttle_middleware
from dispatch.router import DispatchRouter
from sdk.testkit import FakeClient, make_message_update


class _Clock:
    """Manually advanced monotonic clock."""

    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


async def _send(router: DispatchRouter, chat_id: str = "c1") -> None:
    update = make_message_update("x", chat_id=chat_id)
    await router.dispatch(update, Context(FakeClient(), update))


class TestThrottle:
    """Fixed-window throttling per key."""

    @pytest.mark.asyncio
    async def test_limit_within_window(self) -> None:
        clock = _Clock()
        handled = []
        limited = []
        router = DispatchRouter()
        router.use(
            create_throttle_middleware(
                2, 1000, clock=clock, on_limited=lambda ctx, retry_ms: limited.append(retry_ms)
            )
        )
        router.message(lambda ctx: handled.append(ctx.chat_id()))

        await _send(router)
        await _send(router)
        clock.now += 0.25
        await _send(router)

        assert len(handled) == 2
        assert limited == [750]

    @pytest.mark.asyncio
    async def test_window_resets(self) -> None:
        clock = _Clock()
        handled = []
        router = DispatchRouter()
        router.use(create_throttle_middleware(1, 500, clock=clock))
        router.message(lambda ctx: handled.append(1))

        await _send(router)
        await _send(router)
        clock.now += 0.5
        await _send(router)
        assert len(handled) == 2

    @pytest.mark.asyncio
    async def test_keys_are_independent(self) -> None:
        clock = _Clock()
        handled = []
        router = DispatchRouter()
        router.use(create_throttle_middleware(1, 1000, clock=clock))
        router.message(lambda ctx: handled.append(ctx.chat_id()))

        await _send(router, "a")
        await _send(router, "b")
        await _send(router, "a")
        assert handled == ["a", "b"]

    @pytest.mark.asyncio
    async def test_custom_key(self) -> None:
        clock = _Clock()
        handled = []
        router = DispatchRouter()
        router.use(create_throttle_middleware(1, 1000, key=lambda ctx: "all", clock=clock))
        router.message(lambda ctx: handled.append(ctx.chat_id()))

        await _send(router, "a")
        await _send(router, "b")
        assert handled == ["a"]

    @pytest.mark.parametrize("limit,interval", [(0, 100), (1, 0)])
    def test_invalid_arguments(self, limit, interval) -> None:
        with pytest.raises(ValueError):
            create_throttle_middleware(limit, interval)
