"""Webhook delivery — push updates into a :class:`~dispatch.dispatcher.Dispatcher`.

:class:`WebhookHandler` is framework-neutral (``headers, body -> status,
payload``); :func:`create_webhook_router` mounts it on a FastAPI
:class:`~fastapi.APIRouter`::

    app = FastAPI()
    app.include_router(create_webhook_router(dispatcher, secret_token=MAX_WEBHOOK_SECRET))

Responses:

* ``401 {"error": "unauthorized"}`` — shared-secret header missing or wrong;
* ``400 {"error": "invalid update payload"}`` — body is not a valid update;
* ``500 {"error": "failed to dispatch update"}`` — dispatch raised (sync mode);
* ``200 {"ok": true}`` — otherwise.

In background mode the update is acknowledged immediately and dispatch
failures go to the required ``on_dispatch_error`` callback.
"""

from __future__ import annotations

import asyncio
import hmac
import json
from typing import Any, Callable, Dict, Mapping, Optional, Set, Tuple

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from core.logger import MaxbotLogger
from dispatch.dispatcher import Dispatcher
from dispatch.router import call_handler
from sdk.models import Update

logger = MaxbotLogger.get_logger()

DEFAULT_SECRET_HEADER = "X-Max-Bot-Secret-Token"

DispatchErrorCallback = Callable[[BaseException, Update], Any]
WebhookResponse = Tuple[int, Dict[str, Any]]


class WebhookHandler:
    """Authenticates, parses and dispatches one webhook request."""

    def __init__(
        self,
        dispatcher: Dispatcher,
        *,
        secret_token: Optional[str] = None,
        secret_header: str = DEFAULT_SECRET_HEADER,
        handle_in_background: bool = False,
        on_dispatch_error: Optional[DispatchErrorCallback] = None,
    ) -> None:
        if handle_in_background and on_dispatch_error is None:
            raise ValueError("on_dispatch_error is required when handle_in_background is enabled")
        self.dispatcher = dispatcher
        self._secret_token = secret_token or None
        self._secret_header = secret_header.lower()
        self._background = handle_in_background
        self._on_dispatch_error = on_dispatch_error
        self._tasks: Set[asyncio.Task] = set()

    @property
    def background_tasks(self) -> int:
        return len(self._tasks)

    def _authorized(self, headers: Mapping[str, str]) -> bool:
        if self._secret_token is None:
            return True
        lowered = {key.lower(): value for key, value in headers.items()}
        supplied = lowered.get(self._secret_header)
        if not supplied:
            return False
        return hmac.compare_digest(supplied.encode("utf-8"), self._secret_token.encode("utf-8"))

    @staticmethod
    def _parse(body: Any) -> Optional[Update]:
        if isinstance(body, (bytes, bytearray, str)):
            if not body:
                return None
            try:
                body = json.loads(body)
            except ValueError:
                return None
        if not isinstance(body, Mapping):
            return None
        try:
            return Update.model_validate(body)
        except ValidationError:
            return None

    async def handle(self, headers: Mapping[str, str], body: Any) -> WebhookResponse:
        """Process one delivery and return ``(status_code, json_payload)``."""
        if not self._authorized(headers):
            logger.warning("Webhook rejected: bad secret token")
            return 401, {"error": "unauthorized"}

        update = self._parse(body)
        if update is None:
            logger.warning("Webhook rejected: invalid update payload")
            return 400, {"error": "invalid update payload"}

        if self._background:
            task = asyncio.ensure_future(self._dispatch_in_background(update))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
            return 200, {"ok": True}

        try:
            await self.dispatcher.handle_update(update)
        except Exception:
            logger.exception("Webhook dispatch failed", extra={"update_id": update.update_id})
            return 500, {"error": "failed to dispatch update"}
        return 200, {"ok": True}

    async def _dispatch_in_background(self, update: Update) -> None:
        try:
            await self.dispatcher.handle_update(update)
        except Exception as exc:
            logger.warning("Background dispatch failed", extra={"update_id": update.update_id, "error": str(exc)})
            try:
                await call_handler(self._on_dispatch_error, exc, update)
            except Exception:
                logger.exception("on_dispatch_error callback failed", extra={"update_id": update.update_id})

    async def drain(self, timeout: Optional[float] = None) -> bool:
        """Wait for background dispatches; returns ``True`` if all finished."""
        if not self._tasks:
            return True
        _, not_done = await asyncio.wait(set(self._tasks), timeout=timeout)
        return not not_done


def _normalize_path(path: str) -> str:
    path = path.strip()
    if not path:
        return "/webhook"
    return path if path.startswith("/") else f"/{path}"


def create_webhook_router(
    dispatcher: Dispatcher,
    *,
    path: str = "/webhook",
    secret_token: Optional[str] = None,
    secret_header: str = DEFAULT_SECRET_HEADER,
    handle_in_background: bool = False,
    on_dispatch_error: Optional[DispatchErrorCallback] = None,
) -> APIRouter:
    """Build a FastAPI router exposing ``POST <path>`` for update delivery."""
    handler = WebhookHandler(
        dispatcher,
        secret_token=secret_token,
        secret_header=secret_header,
        handle_in_background=handle_in_background,
        on_dispatch_error=on_dispatch_error,
    )
    router = APIRouter(tags=["webhook"])

    @router.post(_normalize_path(path))
    async def receive_update(request: Request) -> JSONResponse:
        body = await request.body()
        status_code, payload = await handler.handle(request.headers, body)
        return JSONResponse(payload, status_code=status_code)

    return router
