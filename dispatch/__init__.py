"""Update dispatch engine — routers, filters, context, dispatcher, scenes.

Usage::

    from dispatch import Dispatcher, DispatchRouter, filters as F
    from sdk import MaxClient

    dp = Dispatcher(MaxClient.from_env(), {"processing": {"max_in_flight": 8, "ordered_by": "chat"}})

    @dp.message([F.command("start")])
    async def on_start(ctx):
        await ctx.reply("Hello!")

    asyncio.run(dp.start_long_polling())

The FastAPI webhook adapter lives in :mod:`dispatch.webhook` and is not
imported here, so ``fastapi`` stays an optional dependency.
"""

from dispatch import filters
from dispatch.callback_data import CallbackData
from dispatch.context import Context
from dispatch.dispatcher import (
    BatchResult,
    Dispatcher,
    DispatcherOptions,
    PollingOptions,
    ProcessingOptions,
)
from dispatch.exceptions import DispatchError, DispatchTimeoutError, RouterConfigurationError
from dispatch.filters import FilterOutcome
from dispatch.middlewares import create_throttle_middleware
from dispatch.processing import InFlightLimiter, KeyedSerialQueue
from dispatch.router import DispatchRouter
from dispatch.scenes import SceneEnterOptions, SceneManager, SceneSession, SceneState

__all__ = [
    "filters",
    "CallbackData",
    "Context",
    "BatchResult",
    "Dispatcher",
    "DispatcherOptions",
    "PollingOptions",
    "ProcessingOptions",
    "DispatchError",
    "DispatchTimeoutError",
    "RouterConfigurationError",
    "FilterOutcome",
    "create_throttle_middleware",
    "InFlightLimiter",
    "KeyedSerialQueue",
    "DispatchRouter",
    "SceneEnterOptions",
    "SceneManager",
    "SceneSession",
    "SceneState",
]
