"""Composable predicates over :class:`~dispatch.context.Context`.

A filter is a sync or async callable ``ctx -> FilterResult`` where the
result is one of:

* ``True`` / ``False`` (``None`` counts as ``False``);
* a mapping — "accept, and merge this metadata into the context";
* an explicit :class:`FilterOutcome`.

Any other value, such as a ``re.Match`` from ``pattern.search(...)``, is a
rejection; wrap it in ``bool(...)`` to pass on a match.

Usage::

    from dispatch import filters as F

    router.message([F.command("start")], on_start)
    router.message([F.and_(F.chat_type("private"), F.regex_match(r"^(\\d+)$"))], on_number)

The ``and_`` / ``or_`` combinators merge sub-filter metadata as they go and
do not roll it back when a later sub-filter rejects.
"""

from __future__ import annotations

import inspect
import re
from typing import Any, Awaitable, Callable, Mapping, NamedTuple, Optional, Pattern, Union

from core.identity import UPDATE_KINDS, normalize_command
from core.logger import MaxbotLogger
from core.states import StateGroup
from dispatch.context import Context

logger = MaxbotLogger.get_logger()


class FilterOutcome(NamedTuple):
    """Normalised filter result: pass/reject plus optional metadata."""
    passed: bool
    meta: Optional[Mapping[str, Any]] = None

    @classmethod
    def of(cls, result: Any) -> "FilterOutcome":
        """Normalise a raw filter return value."""
        if isinstance(result, FilterOutcome):
            return result
        if result is None or isinstance(result, bool):
            return cls(bool(result))
        if isinstance(result, Mapping):
            return cls(True, dict(result) or None)
        logger.debug("Filter returned unsupported result, rejecting", extra={"result_type": type(result).__name__})
        return cls(False)


FilterResult = Union[bool, None, Mapping[str, Any], FilterOutcome]
Filter = Callable[[Context], Union[FilterResult, Awaitable[FilterResult]]]

PatternLike = Union[str, Pattern[str]]


async def evaluate(flt: Filter, ctx: Context) -> FilterOutcome:
    """Run *flt* (sync or async) and normalise its result."""
    result = flt(ctx)
    if inspect.isawaitable(result):
        result = await result
    return FilterOutcome.of(result)


async def apply_filter(flt: Filter, ctx: Context) -> bool:
    """Run *flt*; on pass merge its metadata into *ctx*.  Returns pass/reject."""
    outcome = await evaluate(flt, ctx)
    if outcome.passed and outcome.meta:
        ctx.set_meta_many(outcome.meta)
    return outcome.passed


def _compile(pattern: PatternLike) -> Pattern[str]:
    return pattern if isinstance(pattern, re.Pattern) else re.compile(pattern)


# ── Combinators ──────────────────────────────────────────────────────────────


def and_(*items: Filter) -> Filter:
    """Pass when every item passes; stops at the first rejection."""
    async def _and(ctx: Context) -> bool:
        for item in items:
            if not await apply_filter(item, ctx):
                return False
        return True
    return _and


def or_(*items: Filter) -> Filter:
    """Pass on the first item that passes."""
    async def _or(ctx: Context) -> bool:
        for item in items:
            if await apply_filter(item, ctx):
                return True
        return False
    return _or


def not_(item: Filter) -> Filter:
    """Invert *item*; its metadata is discarded."""
    async def _not(ctx: Context) -> bool:
        return not (await evaluate(item, ctx)).passed
    return _not


# ── Commands ─────────────────────────────────────────────────────────────────


def command(name: str) -> Filter:
    """Match ``/name`` (case-insensitive, any mention)."""
    expected = normalize_command(name)
    return lambda ctx: ctx.is_command(expected)


def command_any(*names: str) -> Filter:
    expected = {normalize_command(n) for n in names if normalize_command(n)}
    return lambda ctx: ctx.command() in expected


def command_for(name: str, username: str, *, allow_without_mention: bool = True) -> Filter:
    """Match ``/name`` addressed to ``@username`` (or to nobody, if allowed)."""
    expected = normalize_command(name)
    return lambda ctx: ctx.is_command(expected) and ctx.is_command_for(
        username, allow_without_mention=allow_without_mention
    )


def command_match(name: Optional[str] = None, *, meta_key: str = "command") -> Filter:
    """Accept any command (or only *name*) and expose the :class:`ParsedCommand`."""
    expected = normalize_command(name) if name else None

    def _match(ctx: Context) -> FilterResult:
        info = ctx.command_info()
        if info is None or (expected and info.name != expected):
            return False
        return {meta_key: info}
    return _match


# ── Message text ─────────────────────────────────────────────────────────────


def text() -> Filter:
    """Message updates with non-empty text."""
    return lambda ctx: ctx.has_message() and bool(ctx.message_text())


def text_equals(value: str, *, ignore_case: bool = False) -> Filter:
    expected = value.strip()
    if ignore_case:
        expected = expected.lower()
        return lambda ctx: ctx.message_text().lower() == expected
    return lambda ctx: ctx.message_text() == expected


def regex(pattern: PatternLike) -> Filter:
    compiled = _compile(pattern)
    return lambda ctx: compiled.search(ctx.message_text()) is not None


def regex_match(pattern: PatternLike, *, meta_key: str = "regex") -> Filter:
    """Accept when *pattern* matches the text; exposes the :class:`re.Match`."""
    compiled = _compile(pattern)

    def _match(ctx: Context) -> FilterResult:
        found = compiled.search(ctx.message_text())
        return {meta_key: found} if found else False
    return _match


# ── Callback data ────────────────────────────────────────────────────────────


def callback_data_equals(value: str) -> Filter:
    expected = value.strip()
    return lambda ctx: ctx.has_callback() and ctx.callback_data() == expected


def callback_data_starts_with(prefix: str) -> Filter:
    expected = prefix.strip()
    return lambda ctx: ctx.has_callback() and ctx.callback_data().startswith(expected)


def callback_data_regex(pattern: PatternLike) -> Filter:
    compiled = _compile(pattern)
    return lambda ctx: ctx.has_callback() and compiled.search(ctx.callback_data()) is not None


def callback_data_match(pattern: PatternLike, *, meta_key: str = "callback_match") -> Filter:
    compiled = _compile(pattern)

    def _match(ctx: Context) -> FilterResult:
        if not ctx.has_callback():
            return False
        found = compiled.search(ctx.callback_data())
        return {meta_key: found} if found else False
    return _match


# ── Identity ─────────────────────────────────────────────────────────────────


def chat_id(*ids: Union[str, int]) -> Filter:
    expected = {str(i) for i in ids}
    return lambda ctx: ctx.chat_id() in expected


def user_id(*ids: Union[str, int]) -> Filter:
    expected = {str(i) for i in ids}
    return lambda ctx: ctx.user_id() in expected


def chat_type(*types: str) -> Filter:
    expected = {t.strip().lower() for t in types}
    return lambda ctx: (ctx.chat_type() or "").lower() in expected


def update_type(*kinds: str) -> Filter:
    unknown = set(kinds) - set(UPDATE_KINDS)
    if unknown:
        raise ValueError(f"unknown update kinds: {sorted(unknown)}")
    expected = set(kinds)
    return lambda ctx: ctx.update_type() in expected


# ── FSM state ────────────────────────────────────────────────────────────────


def state(expected: Optional[str]) -> Filter:
    """Match the exact session state (``None`` = no state set)."""
    async def _state(ctx: Context) -> bool:
        return await ctx.get_state() == expected
    return _state


def state_in(*states: str) -> Filter:
    expected = set(states)

    async def _state_in(ctx: Context) -> bool:
        return await ctx.get_state() in expected
    return _state_in


def state_starts_with(prefix: str) -> Filter:
    async def _starts_with(ctx: Context) -> bool:
        current = await ctx.get_state()
        return current is not None and current.startswith(prefix)
    return _starts_with


def state_regex(pattern: PatternLike) -> Filter:
    compiled = _compile(pattern)

    async def _state_regex(ctx: Context) -> bool:
        current = await ctx.get_state()
        return current is not None and compiled.search(current) is not None
    return _state_regex


def state_group(group: StateGroup) -> Filter:
    """Match any state belonging to *group*."""
    async def _state_group(ctx: Context) -> bool:
        return group.has(await ctx.get_state())
    return _state_group


# ── Metadata ─────────────────────────────────────────────────────────────────


def meta_exists(key: str) -> Filter:
    return lambda ctx: ctx.has_meta(key)


def meta_equals(key: str, value: Any) -> Filter:
    return lambda ctx: ctx.has_meta(key) and ctx.meta(key) == value


def meta_satisfies(key: str, predicate: Callable[[Any], Any]) -> Filter:
    """Pass when *key* is present and ``predicate(value)`` is truthy (may be async)."""
    async def _satisfies(ctx: Context) -> bool:
        if not ctx.has_meta(key):
            return False
        result = predicate(ctx.meta(key))
        if inspect.isawaitable(result):
            result = await result
        return bool(result)
    return _satisfies
