"""Admission and ordering gates used by the dispatcher.

* :class:`InFlightLimiter` — counting semaphore with a FIFO wait list.
* :class:`KeyedSerialQueue` — per-key chain of "tail" futures so same-key
  work runs strictly in submission order while distinct keys run freely.

Both live on a single event loop; all state changes happen between await
points, so no extra locking is needed.
"""

from __future__ import annotations

import asyncio
import collections
import contextlib
from typing import AsyncIterator, Awaitable, Callable, Deque, Dict, Optional, TypeVar

T = TypeVar("T")


class InFlightLimiter:
    """Bounded counting semaphore; waiters are admitted first-come first-served.

    A released slot is handed directly to the oldest waiter, so a newcomer
    can never overtake a task that is already queued.
    """

    def __init__(self, limit: int) -> None:
        if limit <= 0:
            raise ValueError("limit must be > 0")
        self._limit = limit
        self._in_flight = 0
        self._waiters: Deque[asyncio.Future] = collections.deque()

    @property
    def limit(self) -> int:
        return self._limit

    @property
    def in_flight(self) -> int:
        return self._in_flight

    @property
    def waiting(self) -> int:
        return sum(1 for fut in self._waiters if not fut.done())

    async def acquire(self) -> None:
        if self._in_flight < self._limit and not self._waiters:
            self._in_flight += 1
            return

        fut = asyncio.get_running_loop().create_future()
        self._waiters.append(fut)
        try:
            await fut
        except asyncio.CancelledError:
            if fut.done() and not fut.cancelled():
                # The slot was handed over just before cancellation landed.
                self.release()
            elif fut in self._waiters:
                self._waiters.remove(fut)
            raise

    def release(self) -> None:
        while self._waiters:
            fut = self._waiters.popleft()
            if not fut.done():
                fut.set_result(None)
                return
        if self._in_flight <= 0:
            raise RuntimeError("release() called more times than acquire()")
        self._in_flight -= 1

    @contextlib.asynccontextmanager
    async def slot(self) -> AsyncIterator[None]:
        await self.acquire()
        try:
            yield
        finally:
            self.release()


class KeyedSerialQueue:
    """Serialise coroutines per order key.

    ``run(key, factory)`` starts ``factory()`` only after every earlier
    ``run`` for the same *key* has finished, whether it succeeded, failed or
    was cancelled.  An empty key means "no ordering constraint".
    """

    def __init__(self) -> None:
        self._tails: Dict[str, asyncio.Future] = {}

    def __len__(self) -> int:
        return len(self._tails)

    def __contains__(self, key: object) -> bool:
        return key in self._tails

    async def run(self, key: Optional[str], factory: Callable[[], Awaitable[T]]) -> T:
        if not key:
            return await factory()

        previous = self._tails.get(key)
        tail: asyncio.Future = asyncio.get_running_loop().create_future()
        self._tails[key] = tail

        def finish(_: object = None) -> None:
            if not tail.done():
                tail.set_result(None)
            if self._tails.get(key) is tail:
                del self._tails[key]

        try:
            if previous is not None and not previous.done():
                # asyncio.wait never cancels or re-raises from *previous*.
                await asyncio.wait({previous})
            return await factory()
        finally:
            if previous is not None and not previous.done():
                # Cancelled while queued: keep the chain intact for successors.
                previous.add_done_callback(finish)
            else:
                finish()
