"""Ready-made dispatch middlewares."""

from __future__ import annotations

import dataclasses
import time
from typing import Any, Callable, Dict, Optional

from core.logger import MaxbotLogger
from dispatch.context import Context
from dispatch.router import Handler, Middleware, call_handler

logger = MaxbotLogger.get_logger()


@dataclasses.dataclass(slots=True)
class _Window:
    count: int
    reset_at: float


def _default_key(ctx: Context) -> str:
    return ctx.chat_id() or "global"


def create_throttle_middleware(
    limit: int,
    interval_ms: int,
    *,
    key: Optional[Callable[[Context], str]] = None,
    on_limited: Optional[Callable[[Context, int], Any]] = None,
    clock: Callable[[], float] = time.monotonic,
) -> Middleware:
    """Fixed-window rate limiter: at most *limit* handler runs per key per window.

    Args:
        limit: Allowed runs per window.
        interval_ms: Window length.
        key: Bucket key for a context (default: chat id, or ``"global"``).
        on_limited: Called as ``(ctx, retry_after_ms)`` for dropped updates.
        clock: Monotonic seconds source (injectable for tests).

    Raises:
        ValueError: If *limit* or *interval_ms* is not positive.
    """
    if limit <= 0:
        raise ValueError("throttle limit must be > 0")
    if interval_ms <= 0:
        raise ValueError("throttle interval_ms must be > 0")

    key_fn = key or _default_key
    interval = interval_ms / 1000
    windows: Dict[str, _Window] = {}

    def middleware(next_handler: Handler) -> Handler:
        async def throttled(ctx: Context) -> None:
            now = clock()
            bucket = key_fn(ctx)
            window = windows.get(bucket)

            if window is None or window.reset_at <= now:
                windows[bucket] = _Window(count=1, reset_at=now + interval)
                await call_handler(next_handler, ctx)
                return

            if window.count < limit:
                window.count += 1
                await call_handler(next_handler, ctx)
                return

            retry_after_ms = max(0, int((window.reset_at - now) * 1000))
            logger.debug("Update throttled", extra={"throttle_key": bucket, "retry_after_ms": retry_after_ms})
            if on_limited is not None:
                await call_handler(on_limited, ctx, retry_after_ms)

        return throttled

    return middleware
