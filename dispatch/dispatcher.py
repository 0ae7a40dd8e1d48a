"""Dispatcher — orchestration root of the dispatch engine.

Binds a transport client, the root :class:`~dispatch.router.DispatchRouter`
and an FSM store, and runs every update through:

1. payload validation (raw mappings become :class:`~sdk.models.Update`);
2. the ordering gate (:class:`~dispatch.processing.KeyedSerialQueue`) keyed
   by ``processing.ordered_by``;
3. the concurrency gate (:class:`~dispatch.processing.InFlightLimiter`)
   sized by ``processing.max_in_flight``;
4. router dispatch, bounded by ``processing.handler_timeout_ms``;
5. the ``on_unhandled`` hook chain when no handler claimed the update.

It also owns the long-polling ingestion loop and the startup/shutdown
lifecycle.  Updates within one polling batch are handled sequentially, in
update order.
"""

from __future__ import annotations

import asyncio
import dataclasses
from typing import Any, Awaitable, Callable, Iterable, List, Literal, Mapping, Optional, Set, Union

from pydantic import BaseModel, Field, ValidationError, model_validator

from core.fsm import FSMData, FSMStorage, MemoryFSMStorage
from core.identity import chat_id_of, user_id_of
from core.logger import MaxbotLogger
from dispatch.context import Context
from dispatch.exceptions import DispatchTimeoutError
from dispatch.filters import Filter
from dispatch.processing import InFlightLimiter, KeyedSerialQueue
from dispatch.router import (
    DispatchRouter,
    ErrorHandler,
    Handler,
    KindRegistrars,
    MetaResolver,
    Middleware,
    call_handler,
)
from sdk.models import Update

logger = MaxbotLogger.get_logger()

GLOBAL_FSM_KEY = "__global__"

LifecycleHook = Callable[[], Any]
UnhandledHook = Callable[[Context], Any]


# ── Options ──────────────────────────────────────────────────────────────────


class ProcessingOptions(BaseModel):
    """Concurrency, ordering and timeout policy for ``handle_update``."""

    max_in_flight: int = Field(1, gt=0)
    ordered_by: Literal["none", "chat", "user", "fsm"] = "none"
    handler_timeout_ms: Optional[int] = Field(None, gt=0)
    cancel_on_timeout: bool = False
    graceful_shutdown_ms: int = Field(10_000, ge=0)

    model_config = {"extra": "forbid"}


class PollingOptions(BaseModel):
    """Long-polling cursor, batching and error-recovery settings."""

    offset: int = Field(0, ge=0)
    limit: int = Field(100, gt=0)
    timeout_seconds: int = Field(25, ge=0)
    idle_delay_ms: int = Field(400, ge=0)
    drop_pending_updates: bool = False
    recover_errors: bool = True
    error_delay_ms: int = Field(1000, gt=0)
    max_error_delay_ms: int = Field(30_000, gt=0)

    model_config = {"extra": "forbid"}

    @model_validator(mode="after")
    def _check_error_delays(self) -> "PollingOptions":
        if self.max_error_delay_ms < self.error_delay_ms:
            raise ValueError("max_error_delay_ms must be >= error_delay_ms")
        return self


class DispatcherOptions(BaseModel):
    processing: ProcessingOptions = Field(default_factory=ProcessingOptions)
    polling: PollingOptions = Field(default_factory=PollingOptions)
    fsm_strategy: Literal["chat", "user", "user_in_chat", "global"] = "chat"

    model_config = {"extra": "forbid"}


@dataclasses.dataclass(frozen=True, slots=True)
class BatchResult:
    """Outcome of :meth:`Dispatcher.handle_updates`."""
    handled: int
    total: int


class _PollingStopped(Exception):
    """Internal: a stop signal interrupted a polling wait."""


# ── Dispatcher ───────────────────────────────────────────────────────────────


class Dispatcher(KindRegistrars):
    """Orchestrates update handling, long polling and lifecycle hooks."""

    def __init__(
        self,
        client: Any,
        options: Union[DispatcherOptions, Mapping[str, Any], None] = None,
        *,
        fsm_storage: Optional[FSMStorage] = None,
        router: Optional[DispatchRouter] = None,
    ) -> None:
        """Create a dispatcher.

        Args:
            client: Transport client (``MaxClient`` or ``FakeClient``).
            options: :class:`DispatcherOptions` or an equivalent mapping.
            fsm_storage: Session store (defaults to :class:`MemoryFSMStorage`).
            router: Root router (a fresh one by default).

        Raises:
            pydantic.ValidationError: If *options* are invalid.
        """
        self.client = client
        self.options = options if isinstance(options, DispatcherOptions) else DispatcherOptions.model_validate(options or {})
        self.storage: FSMStorage = fsm_storage if fsm_storage is not None else MemoryFSMStorage()
        self.router = router if router is not None else DispatchRouter(name="root")

        self._limiter = InFlightLimiter(self.options.processing.max_in_flight)
        self._serial = KeyedSerialQueue()
        self._pending: Set[asyncio.Task] = set()
        self._detached: Set[asyncio.Task] = set()
        self._stopping = False

        self._startup_hooks: List[LifecycleHook] = []
        self._shutdown_hooks: List[LifecycleHook] = []
        self._unhandled_hooks: List[UnhandledHook] = []
        self._started = False

        self._polling_task: Optional[asyncio.Task] = None
        self._polling_stop: Optional[asyncio.Event] = None
        self._stop_requested = False
        self._offset = self.options.polling.offset

    # ----- Router passthroughs -----

    def use(self, middleware: Middleware) -> Middleware:
        return self.router.use(middleware)

    def include_router(self, router: DispatchRouter) -> None:
        self.router.include_router(router)

    def include_routers(self, *routers: DispatchRouter) -> None:
        self.router.include_routers(*routers)

    def use_filter(self, *filters: Filter) -> None:
        self.router.use_filter(*filters)

    def set_meta(self, patch: Mapping[str, Any]) -> None:
        self.router.set_meta(patch)

    def use_meta(self, resolver: MetaResolver) -> MetaResolver:
        return self.router.use_meta(resolver)

    def on_error(self, handler: ErrorHandler) -> ErrorHandler:
        return self.router.on_error(handler)

    def on_error_first(self, handler: ErrorHandler) -> ErrorHandler:
        return self.router.on_error_first(handler)

    def _add(self, kind: str, filters_or_handler: Any, handler: Optional[Handler], prepend: bool) -> Any:
        return self.router._add(kind, filters_or_handler, handler, prepend)

    # ----- Hooks -----

    def on_startup(self, hook: LifecycleHook) -> LifecycleHook:
        self._startup_hooks.append(hook)
        return hook

    def on_shutdown(self, hook: LifecycleHook) -> LifecycleHook:
        self._shutdown_hooks.append(hook)
        return hook

    def on_unhandled(self, hook: UnhandledHook) -> UnhandledHook:
        """Register a fallback for updates no handler claimed; return ``True`` to claim."""
        self._unhandled_hooks.append(hook)
        return hook

    def on_unhandled_first(self, hook: UnhandledHook) -> UnhandledHook:
        self._unhandled_hooks.insert(0, hook)
        return hook

    # ----- State -----

    @property
    def in_flight(self) -> int:
        return self._limiter.in_flight

    @property
    def pending(self) -> int:
        return len(self._pending)

    @property
    def is_stopping(self) -> bool:
        return self._stopping

    @property
    def is_polling(self) -> bool:
        return self._polling_task is not None and not self._polling_task.done()

    @property
    def offset(self) -> int:
        """Next update id the polling loop will request."""
        return self._offset

    def resolve_fsm_key(self, update: Update) -> Optional[str]:
        """Session key for *update* under the configured ``fsm_strategy``."""
        strategy = self.options.fsm_strategy
        if strategy == "chat":
            return chat_id_of(update)
        if strategy == "user":
            return user_id_of(update)
        if strategy == "user_in_chat":
            chat, user = chat_id_of(update), user_id_of(update)
            return f"{chat}:{user}" if chat and user else None
        return GLOBAL_FSM_KEY

    def _order_key(self, update: Update, ctx: Context) -> Optional[str]:
        ordered_by = self.options.processing.ordered_by
        if ordered_by == "chat":
            return ctx.chat_id()
        if ordered_by == "user":
            return ctx.user_id()
        if ordered_by == "fsm":
            return ctx.state_key
        return None

    # ----- Update handling -----

    async def handle_update(self, update: Union[Update, Mapping[str, Any]]) -> bool:
        """Run one update through ordering, admission, dispatch and fallbacks.

        Returns:
            ``True`` if a handler or an ``on_unhandled`` hook claimed the update.
            ``False`` when nothing claimed it, the payload is invalid, or the
            dispatcher is stopping.

        Raises:
            DispatchTimeoutError: If ``handler_timeout_ms`` elapsed first.
            Exception: Any handler error no router error handler claimed.
        """
        if self._stopping:
            logger.warning("Rejecting update while stopping", extra={"update_id": getattr(update, "update_id", None)})
            return False

        if not isinstance(update, Update):
            try:
                update = Update.model_validate(update)
            except ValidationError as exc:
                logger.warning("Invalid update payload", extra={"error": str(exc)})
                return False

        ctx = Context(self.client, update, self.storage, state_key=self.resolve_fsm_key(update))
        order_key = self._order_key(update, ctx)

        task = asyncio.ensure_future(self._serial.run(order_key, lambda: self._process(update, ctx)))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return await task

    async def _process(self, update: Update, ctx: Context) -> bool:
        async with self._limiter.slot():
            logger.debug(
                "Dispatching update",
                extra={"update_id": update.update_id, "update_kind": update.kind, "fsm_key": ctx.state_key, "in_flight": self._limiter.in_flight},
            )
            handled = await self._dispatch_with_timeout(update, ctx)
            if not handled:
                handled = await self._run_unhandled(ctx)
                if not handled:
                    logger.debug("Update not handled", extra={"update_id": update.update_id, "update_kind": update.kind})
            return handled

    async def _dispatch_with_timeout(self, update: Update, ctx: Context) -> bool:
        processing = self.options.processing
        timeout_ms = processing.handler_timeout_ms
        if timeout_ms is None:
            return await self.router.dispatch(update, ctx)

        task = asyncio.ensure_future(self.router.dispatch(update, ctx))
        try:
            done, _ = await asyncio.wait({task}, timeout=timeout_ms / 1000)
        except asyncio.CancelledError:
            task.cancel()
            raise
        if task in done:
            return task.result()

        if processing.cancel_on_timeout:
            task.cancel()
            logger.warning("Handler timed out, cancelled", extra={"update_id": update.update_id, "timeout_ms": timeout_ms})
        else:
            self._detached.add(task)
            task.add_done_callback(self._on_detached_done)
            logger.warning("Handler timed out, left running", extra={"update_id": update.update_id, "timeout_ms": timeout_ms})
        raise DispatchTimeoutError(timeout_ms)

    def _on_detached_done(self, task: asyncio.Task) -> None:
        self._detached.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Timed-out handler failed", exc_info=(type(exc), exc, exc.__traceback__))

    async def _run_unhandled(self, ctx: Context) -> bool:
        for hook in list(self._unhandled_hooks):
            if await call_handler(hook, ctx) is True:
                return True
        return False

    async def handle_updates(self, updates: Iterable[Union[Update, Mapping[str, Any]]], *, concurrent: bool = False) -> BatchResult:
        """Handle a batch; sequentially by default, or all at once with *concurrent*."""
        items = list(updates)
        if concurrent:
            results = await asyncio.gather(*(self.handle_update(u) for u in items))
        else:
            results = [await self.handle_update(u) for u in items]
        return BatchResult(handled=sum(1 for r in results if r), total=len(items))

    # ----- Lifecycle -----

    async def startup(self) -> None:
        """Run ``on_startup`` hooks once; a no-op until :meth:`shutdown` runs."""
        if self._started:
            return
        self._started = True
        self._stopping = False
        for hook in list(self._startup_hooks):
            await call_handler(hook)
        logger.info("Dispatcher started")

    async def shutdown(self, graceful: bool = True, timeout_ms: Optional[int] = None) -> bool:
        """Optionally drain, then run ``on_shutdown`` hooks once.

        Returns whether the drain completed (``True`` when not graceful or
        already shut down).
        """
        if not self._started:
            return True
        self._started = False
        drained = await self.graceful_stop(timeout_ms) if graceful else True
        for hook in list(self._shutdown_hooks):
            await call_handler(hook)
        logger.info("Dispatcher shut down", extra={"drained": drained, "detached_handlers": len(self._detached)})
        return drained

    async def graceful_stop(self, timeout_ms: Optional[int] = None) -> bool:
        """Reject new updates and wait for in-flight work to finish.

        A running polling loop is woken and exits without consuming the
        batch it was waiting for.

        Returns ``True`` if everything drained before *timeout_ms* (defaults
        to ``processing.graceful_shutdown_ms``).
        """
        self._stopping = True
        if self._polling_stop is not None:
            self._polling_stop.set()
        if timeout_ms is None:
            timeout_ms = self.options.processing.graceful_shutdown_ms

        current = asyncio.current_task()
        pending = {task for task in self._pending if task is not current}
        if not pending:
            return True
        _, not_done = await asyncio.wait(pending, timeout=timeout_ms / 1000)
        if not_done:
            logger.warning("Graceful stop timed out", extra={"timeout_ms": timeout_ms, "pending": len(not_done)})
            return False
        return True

    # ----- Long polling -----

    async def start_long_polling(self, stop_event: Optional[asyncio.Event] = None) -> None:
        """Fetch and handle updates until stopped.

        Stops when *stop_event* is set, :meth:`stop_long_polling` is called,
        or the dispatcher starts stopping.  Runs :meth:`startup` first and
        :meth:`shutdown` on exit (unless :meth:`stop_long_polling` owns it).

        Raises:
            RuntimeError: If a polling loop is already running.
            Exception: The fetch error, when ``polling.recover_errors`` is off.
        """
        if self._polling_task is not None:
            raise RuntimeError("long polling is already running")
        self._polling_stop = asyncio.Event()
        self._stop_requested = False
        self._polling_task = asyncio.ensure_future(self._polling_loop(stop_event))
        await self._polling_task

    async def stop_long_polling(self, graceful: bool = True, timeout_ms: Optional[int] = None) -> bool:
        """Signal the polling loop to stop, wait for it, then shut down.

        Must be called from outside update handlers (a handler awaiting the
        loop it runs in would never finish); handlers should set the
        ``stop_event`` passed to :meth:`start_long_polling` instead.

        Returns ``False`` if no loop was running, else the shutdown result.
        """
        task = self._polling_task
        if task is None:
            return False
        self._stop_requested = True
        if self._polling_stop is not None:
            self._polling_stop.set()
        await asyncio.wait({task})
        if not task.cancelled() and task.exception() is not None:
            logger.warning("Polling loop ended with error", extra={"error": str(task.exception())})
        return await self.shutdown(graceful=graceful, timeout_ms=timeout_ms)

    def _stop_signalled(self, stop_event: Optional[asyncio.Event]) -> bool:
        return (
            self._stopping
            or (self._polling_stop is not None and self._polling_stop.is_set())
            or (stop_event is not None and stop_event.is_set())
        )

    async def _until_stopped(self, work: Awaitable[Any], stop_event: Optional[asyncio.Event]) -> Any:
        """Await *work* unless a stop signal arrives first (then raise ``_PollingStopped``)."""
        work_task = asyncio.ensure_future(work)
        if self._stop_signalled(stop_event):
            work_task.cancel()
            raise _PollingStopped()

        waiters = {asyncio.ensure_future(self._polling_stop.wait())}
        if stop_event is not None:
            waiters.add(asyncio.ensure_future(stop_event.wait()))
        try:
            done, _ = await asyncio.wait({work_task, *waiters}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for waiter in waiters:
                waiter.cancel()
            if not work_task.done():
                work_task.cancel()
        if work_task in done:
            return work_task.result()
        raise _PollingStopped()

    async def _polling_loop(self, stop_event: Optional[asyncio.Event]) -> None:
        try:
            await self.startup()
            await self._poll(stop_event)
        except _PollingStopped:
            logger.info("Long polling stopped", extra={"offset": self._offset})
        finally:
            try:
                if not self._stop_requested:
                    await self.shutdown()
            finally:
                self._polling_task = None

    async def _drop_pending(self, stop_event: Optional[asyncio.Event]) -> None:
        limit = self.options.polling.limit
        dropped = 0
        while True:
            updates = await self._until_stopped(
                self.client.get_updates(offset=self._offset, limit=limit, timeout=0), stop_event
            )
            if not updates:
                break
            for update in updates:
                if update.update_id >= self._offset:
                    self._offset = update.update_id + 1
            dropped += len(updates)
        logger.info("Dropped pending updates", extra={"dropped": dropped, "offset": self._offset})

    async def _poll(self, stop_event: Optional[asyncio.Event]) -> None:
        polling = self.options.polling
        self._offset = max(self._offset, polling.offset)
        if polling.drop_pending_updates:
            await self._drop_pending(stop_event)

        error_delay = polling.error_delay_ms
        logger.info("Long polling started", extra={"offset": self._offset, "limit": polling.limit})
        while not self._stop_signalled(stop_event):
            try:
                updates = await self._until_stopped(
                    self.client.get_updates(offset=self._offset, limit=polling.limit, timeout=polling.timeout_seconds),
                    stop_event,
                )
            except _PollingStopped:
                raise
            except Exception as exc:
                if not polling.recover_errors:
                    logger.error("Polling fetch failed, stopping", extra={"offset": self._offset, "error": str(exc)})
                    raise
                logger.warning("Polling fetch failed, retrying", extra={"offset": self._offset, "delay_ms": error_delay, "error": str(exc)})
                await self._until_stopped(asyncio.sleep(error_delay / 1000), stop_event)
                error_delay = min(error_delay * 2, polling.max_error_delay_ms)
                continue

            error_delay = polling.error_delay_ms
            if not updates:
                await self._until_stopped(asyncio.sleep(polling.idle_delay_ms / 1000), stop_event)
                continue

            for update in updates:
                if self._stopping:
                    break
                if update.update_id >= self._offset:
                    self._offset = update.update_id + 1
                try:
                    await self.handle_update(update)
                except Exception:
                    logger.exception("Update handling failed", extra={"update_id": update.update_id, "update_kind": update.kind})
        logger.info("Long polling stopped", extra={"offset": self._offset})

    # ----- Direct FSM access by key -----

    async def get_state(self, key: str) -> Optional[str]:
        return await self.storage.get(key)

    async def set_state(self, key: str, state: str) -> None:
        await self.storage.set(key, state)

    async def clear_state(self, key: str) -> None:
        await self.storage.clear(key)

    async def get_data(self, key: str) -> FSMData:
        return await self.storage.get_data(key) or {}

    async def set_data(self, key: str, data: Mapping[str, Any]) -> None:
        await self.storage.set_data(key, data)

    async def update_data(self, key: str, patch: Mapping[str, Any]) -> FSMData:
        return await self.storage.update_data(key, patch)

    async def clear_data(self, key: str) -> None:
        await self.storage.clear_data(key)
