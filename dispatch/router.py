"""Dispatch tree — handlers per update kind, guarded by filters, composed recursively.

Each :class:`DispatchRouter` owns:

* ordered handler entries per update kind (``any`` matches every kind);
* shared filters and middlewares inherited by every descendant;
* static metadata plus resolver callables contributing to the context;
* error handlers for failures raised anywhere in its subtree;
* child routers, attached with :meth:`DispatchRouter.include_router`.

Registration accepts three forms::

    router.message(on_any_message)
    router.message([F.command("start")], on_start)

    @router.callback_query([F.callback_data_starts_with("vote:")])
    async def on_vote(ctx): ...

Every kind also has a ``*_first`` twin that prepends instead of appending.
"""

from __future__ import annotations

import dataclasses
import inspect
from typing import Any, Awaitable, Callable, Iterable, List, Mapping, Optional, Sequence, Union

from core.identity import UPDATE_KINDS
from core.logger import MaxbotLogger
from dispatch.context import Context, RuntimeMeta
from dispatch.exceptions import RouterConfigurationError
from dispatch.filters import Filter, apply_filter
from sdk.models import Update

logger = MaxbotLogger.get_logger()

Handler = Callable[[Context], Any]
Middleware = Callable[[Handler], Handler]
ErrorHandler = Callable[[BaseException, Context], Any]
MetaResolver = Callable[[Context], Union[Mapping[str, Any], Awaitable[Mapping[str, Any]]]]

ROUTE_KINDS: tuple[str, ...] = UPDATE_KINDS + ("any",)


async def call_handler(fn: Callable[..., Any], *args: Any) -> Any:
    """Call a sync or async callable and return its (awaited) result."""
    result = fn(*args)
    if inspect.isawaitable(result):
        result = await result
    return result


def matches_kind(kind: str, update: Update) -> bool:
    if kind == "any":
        return True
    return getattr(update, kind, None) is not None


@dataclasses.dataclass(frozen=True, slots=True)
class RegisteredHandler:
    """One handler entry: kind, own filters, callable."""
    kind: str
    filters: tuple
    handler: Handler


def _registrar(kind: str, prepend: bool) -> Callable[..., Any]:
    def register(self: Any, filters_or_handler: Union[Sequence[Filter], Handler, None] = None, handler: Optional[Handler] = None) -> Any:
        return self._add(kind, filters_or_handler, handler, prepend)

    label = "any" if kind == "any" else f"``{kind}``"
    register.__name__ = f"{kind}_first" if prepend else kind
    register.__doc__ = (
        f"Register a handler for {label} updates"
        f"{', checked before existing ones' if prepend else ''}.\n\n"
        "Call as ``(handler)``, ``(filters, handler)`` or as a decorator ``([filters])``."
    )
    return register


class KindRegistrars:
    """Mixin adding ``message`` / ``message_first`` / ... registrars.

    Subclasses implement ``_add(kind, filters_or_handler, handler, prepend)``.
    """

    message = _registrar("message", False)
    message_first = _registrar("message", True)
    edited_message = _registrar("edited_message", False)
    edited_message_first = _registrar("edited_message", True)
    channel_post = _registrar("channel_post", False)
    channel_post_first = _registrar("channel_post", True)
    edited_channel_post = _registrar("edited_channel_post", False)
    edited_channel_post_first = _registrar("edited_channel_post", True)
    inline_query = _registrar("inline_query", False)
    inline_query_first = _registrar("inline_query", True)
    chosen_inline_result = _registrar("chosen_inline_result", False)
    chosen_inline_result_first = _registrar("chosen_inline_result", True)
    callback_query = _registrar("callback_query", False)
    callback_query_first = _registrar("callback_query", True)
    shipping_query = _registrar("shipping_query", False)
    shipping_query_first = _registrar("shipping_query", True)
    pre_checkout_query = _registrar("pre_checkout_query", False)
    pre_checkout_query_first = _registrar("pre_checkout_query", True)
    poll = _registrar("poll", False)
    poll_first = _registrar("poll", True)
    poll_answer = _registrar("poll_answer", False)
    poll_answer_first = _registrar("poll_answer", True)
    my_chat_member = _registrar("my_chat_member", False)
    my_chat_member_first = _registrar("my_chat_member", True)
    chat_member = _registrar("chat_member", False)
    chat_member_first = _registrar("chat_member", True)
    chat_join_request = _registrar("chat_join_request", False)
    chat_join_request_first = _registrar("chat_join_request", True)
    any = _registrar("any", False)
    any_first = _registrar("any", True)

    def _add(self, kind: str, filters_or_handler: Any, handler: Optional[Handler], prepend: bool) -> Any:
        raise NotImplementedError


class DispatchRouter(KindRegistrars):
    """A node of the dispatch tree."""

    def __init__(self, name: Optional[str] = None) -> None:
        self.name = name or f"router-{id(self):x}"
        self._handlers: List[RegisteredHandler] = []
        self._middlewares: List[Middleware] = []
        self._filters: List[Filter] = []
        self._meta: RuntimeMeta = {}
        self._meta_resolvers: List[MetaResolver] = []
        self._error_handlers: List[ErrorHandler] = []
        self._children: List["DispatchRouter"] = []

    def __repr__(self) -> str:
        return f"<DispatchRouter {self.name} handlers={len(self._handlers)} children={len(self._children)}>"

    @property
    def children(self) -> tuple["DispatchRouter", ...]:
        return tuple(self._children)

    # ----- Configuration -----

    def use(self, middleware: Middleware) -> Middleware:
        """Append a ``handler -> handler`` middleware (usable as a decorator)."""
        self._middlewares.append(middleware)
        return middleware

    def include_router(self, router: "DispatchRouter") -> None:
        """Attach *router* as a child.  Idempotent.

        Raises:
            RouterConfigurationError: If *router* is this router or already
                has this router among its descendants.
        """
        if router is self:
            raise RouterConfigurationError("cannot include router into itself")
        if router._has_descendant(self):
            raise RouterConfigurationError("cyclic router include detected")
        if router in self._children:
            return
        self._children.append(router)

    def include_routers(self, *routers: "DispatchRouter") -> None:
        for router in routers:
            self.include_router(router)

    def use_filter(self, *filters: Filter) -> None:
        """Add filters checked for every handler in this subtree, before its own."""
        self._filters.extend(filters)

    def set_meta(self, patch: Mapping[str, Any]) -> None:
        self._meta.update(patch)

    def use_meta(self, resolver: MetaResolver) -> MetaResolver:
        """Add a dynamic metadata resolver; later resolvers override earlier keys."""
        self._meta_resolvers.append(resolver)
        return resolver

    def on_error(self, handler: ErrorHandler) -> ErrorHandler:
        """Register an error handler; the most recently added runs first.

        The handler receives ``(error, ctx)`` and returns ``True`` to mark the
        error handled.
        """
        self._error_handlers.append(handler)
        return handler

    def on_error_first(self, handler: ErrorHandler) -> ErrorHandler:
        """Register an error handler that runs after every other one on this router."""
        self._error_handlers.insert(0, handler)
        return handler

    def _add(self, kind: str, filters_or_handler: Any, handler: Optional[Handler], prepend: bool) -> Any:
        if kind not in ROUTE_KINDS:
            raise ValueError(f"unknown update kind: {kind}")

        def insert(filters: Iterable[Filter], fn: Handler) -> Handler:
            entry = RegisteredHandler(kind=kind, filters=tuple(filters), handler=fn)
            if prepend:
                self._handlers.insert(0, entry)
            else:
                self._handlers.append(entry)
            return fn

        if callable(filters_or_handler) and not isinstance(filters_or_handler, (list, tuple)):
            if handler is not None:
                raise TypeError("pass filters as a list: router.<kind>([filters], handler)")
            return insert((), filters_or_handler)

        if filters_or_handler is not None and not isinstance(filters_or_handler, (list, tuple)):
            raise TypeError("filters must be a list or tuple")

        filters = tuple(filters_or_handler or ())
        if handler is None:
            def decorator(fn: Handler) -> Handler:
                return insert(filters, fn)
            return decorator
        return insert(filters, handler)

    # ----- Dispatch -----

    def _has_descendant(self, target: "DispatchRouter") -> bool:
        return any(child is target or child._has_descendant(target) for child in self._children)

    async def _resolve_meta(self, ctx: Context) -> RuntimeMeta:
        patch = dict(self._meta)
        for resolver in self._meta_resolvers:
            resolved = await call_handler(resolver, ctx)
            if resolved:
                patch.update(resolved)
        return patch

    async def _offer_error(self, error: BaseException, ctx: Context) -> bool:
        for handler in reversed(self._error_handlers):
            if await call_handler(handler, error, ctx) is True:
                return True
        return False

    async def dispatch(
        self,
        update: Update,
        ctx: Context,
        inherited_middlewares: Sequence[Middleware] = (),
        inherited_filters: Sequence[Filter] = (),
    ) -> bool:
        """Route *update* through this subtree.  Returns whether a handler ran.

        Local handlers of a matching kind are tried in order; the first whose
        filters all pass runs wrapped in the composed middleware chain.  If
        none matches, children are tried in attachment order.

        An exception raised inside this subtree is offered to this router's
        error handlers (the parent offers it to its own when it re-raises), so
        every error handler on the path sees it at most once.
        """
        middlewares = [*inherited_middlewares, *self._middlewares]
        base_filters = [*inherited_filters, *self._filters]

        scoped = ctx
        try:
            scoped = ctx.with_meta(await self._resolve_meta(ctx))

            for entry in list(self._handlers):
                if not matches_kind(entry.kind, update):
                    continue
                candidate = scoped.with_meta({})
                if not await self._run_filters([*base_filters, *entry.filters], candidate):
                    continue
                await self._run_chain(middlewares, entry.handler, candidate)
                return True

            for child in list(self._children):
                if await child.dispatch(update, scoped, middlewares, base_filters):
                    return True
            return False
        except Exception as exc:
            if await self._offer_error(exc, scoped):
                logger.debug("Error handled by router", extra={"router": self.name, "update_id": update.update_id, "error": str(exc)})
                return True
            raise

    @staticmethod
    async def _run_filters(filters: Sequence[Filter], ctx: Context) -> bool:
        for flt in filters:
            if not await apply_filter(flt, ctx):
                return False
        return True

    @staticmethod
    async def _run_chain(middlewares: Sequence[Middleware], handler: Handler, ctx: Context) -> None:
        async def terminal(inner_ctx: Context) -> None:
            await call_handler(handler, inner_ctx)

        current: Handler = terminal
        for middleware in reversed(middlewares):
            current = middleware(current)
        await call_handler(current, ctx)
