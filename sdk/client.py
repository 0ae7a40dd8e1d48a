"""MaxClient -- async service layer over the MAX Bot API endpoints dispatch needs.

HTTP calls use the ``requests`` library; every blocking call is offloaded via
:func:`asyncio.to_thread` so the event loop is never blocked.  Cancelling the
awaiting task stops the caller waiting immediately; the worker thread finishes
its request in the background and the result is discarded.

Retryable failures (HTTP 408/429/5xx and transport errors) are retried up to
``max_retries`` times with exponential backoff, honouring ``Retry-After``.
A client-side rate limiter spaces requests ``1 / rate_limit_rps`` apart.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Dict, List, Optional, Union

import requests
from pydantic import BaseModel

from sdk.exceptions import APIException
from sdk.models import InlineKeyboardMarkup, Update

_sdk_logger = logging.getLogger("maxbot.sdk.client")

ReplyMarkup = Union[InlineKeyboardMarkup, Dict[str, Any]]


def _parse_retry_after(raw: Optional[str]) -> float:
    """``Retry-After`` header -> seconds (0 when absent or not a positive number)."""
    if not raw or not raw.strip():
        return 0.0
    try:
        seconds = float(raw.strip())
    except ValueError:
        return 0.0
    return seconds if seconds > 0 else 0.0


def _dump_markup(markup: Optional[ReplyMarkup]) -> Optional[Dict[str, Any]]:
    if markup is None:
        return None
    if isinstance(markup, BaseModel):
        return markup.model_dump(by_alias=True, exclude_none=True)
    return dict(markup)


class MaxClient:
    """Client-side service layer for the MAX Bot API.

    Each public coroutine corresponds to one endpoint.  Non-2xx responses
    raise :class:`APIException`; transport failures surface as
    :class:`requests.RequestException` once retries are exhausted.
    """

    _DEFAULT_TIMEOUT: int = 10

    def __init__(
        self,
        token: str,
        base_url: str,
        timeout: int = _DEFAULT_TIMEOUT,
        *,
        max_retries: int = 0,
        initial_backoff_ms: int = 250,
        max_backoff_ms: int = 3000,
        rate_limit_rps: float = 30,
        session: Optional[requests.Session] = None,
    ) -> None:
        """Create a new client bound to *base_url*.

        Args:
            token: Bot access token, sent verbatim in the ``Authorization`` header.
            base_url: API root (e.g. ``https://botapi.max.ru``).
            timeout: Default request timeout in seconds.
            max_retries: Extra attempts for retryable failures.
            initial_backoff_ms: First retry delay; doubles per attempt.
            max_backoff_ms: Upper bound for the retry delay.
            rate_limit_rps: Max requests per second (``<= 0`` disables limiting).
            session: Optional pre-configured :class:`requests.Session`.

        Raises:
            ValueError: If *token* or *base_url* is empty.
        """
        if not token or not token.strip():
            raise ValueError("token is required")
        if not base_url or not base_url.strip():
            raise ValueError("base_url is required")
        self._token = token.strip()
        self._base_url = base_url.strip().rstrip("/")
        self._timeout = timeout
        self._max_retries = max(0, max_retries)
        self._initial_backoff_ms = initial_backoff_ms
        self._max_backoff_ms = max_backoff_ms
        self._rate_limit_rps = rate_limit_rps
        self._session = session or requests.Session()
        self._rate_lock = asyncio.Lock()
        self._next_allowed_at = 0.0

    @classmethod
    def from_env(cls, **kwargs: Any) -> "MaxClient":
        """Build a client from :mod:`config` (``MAX_BOT_TOKEN``, ``MAX_API_BASE_URL``)."""
        from config import MAX_API_BASE_URL, MAX_BOT_TOKEN, MAX_HTTP_TIMEOUT  # deferred to avoid circular imports

        kwargs.setdefault("timeout", MAX_HTTP_TIMEOUT)
        return cls(MAX_BOT_TOKEN or "", MAX_API_BASE_URL, **kwargs)

    def close(self) -> None:
        """Release the underlying HTTP session."""
        self._session.close()

    # ------------------------------------------------------------------
    #  Internal helpers
    # ------------------------------------------------------------------

    def _backoff(self, attempt: int) -> float:
        """Delay in seconds before retry number *attempt* (0-based)."""
        return min(self._initial_backoff_ms * 2 ** attempt, self._max_backoff_ms) / 1000.0

    async def _wait_rate_slot(self) -> None:
        if self._rate_limit_rps <= 0:
            return
        async with self._rate_lock:
            interval = 1.0 / self._rate_limit_rps
            wait = self._next_allowed_at - time.monotonic()
            if wait > 0:
                await asyncio.sleep(wait)
            self._next_allowed_at = max(time.monotonic(), self._next_allowed_at) + interval

    @staticmethod
    def _decode_body(response: requests.Response) -> Any:
        try:
            return response.json()
        except ValueError:
            return None

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        payload: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> Any:
        """Send one API request with retry/backoff and return the decoded JSON body.

        Raises:
            APIException: On a non-retryable status, or a retryable one once
                retries are exhausted.
            requests.RequestException: On transport failure once retries are
                exhausted.
        """
        url = f"{self._base_url}/{path.lstrip('/')}"
        headers = {"Authorization": self._token, "Accept": "application/json"}
        request_timeout = timeout if timeout is not None else self._timeout

        for attempt in range(self._max_retries + 1):
            await self._wait_rate_slot()
            try:
                response = await asyncio.to_thread(
                    self._session.request,
                    method,
                    url,
                    params=params,
                    json=payload,
                    headers=headers,
                    timeout=request_timeout,
                )
            except requests.RequestException as exc:
                if attempt >= self._max_retries:
                    _sdk_logger.error("Request failed", extra={"api_endpoint": path, "method": method, "error": str(exc)})
                    raise
                delay = self._backoff(attempt)
                _sdk_logger.warning("Request error, retrying", extra={"api_endpoint": path, "attempt": attempt + 1, "delay_s": delay, "error": str(exc)})
                await asyncio.sleep(delay)
                continue

            body = self._decode_body(response)
            if response.status_code < 400:
                return body

            if not isinstance(body, dict):
                text = (response.text or "").strip()
                body = {"error": text} if text else {}
            error = APIException(response.status_code, body, _parse_retry_after(response.headers.get("Retry-After")))
            if not error.retryable or attempt >= self._max_retries:
                _sdk_logger.error("API error", extra={"api_endpoint": path, "method": method, "status_code": response.status_code, "error": str(error)})
                raise error
            delay = error.retry_after or self._backoff(attempt)
            _sdk_logger.warning("Retryable API error", extra={"api_endpoint": path, "status_code": response.status_code, "attempt": attempt + 1, "delay_s": delay})
            await asyncio.sleep(delay)

        raise RuntimeError("unreachable")  # pragma: no cover

    # ------------------------------------------------------------------
    #  Endpoints
    # ------------------------------------------------------------------

    async def get_updates(self, offset: int = 0, limit: int = 100, timeout: int = 0) -> List[Update]:
        """Long-poll for updates.

        The server holds the request for up to *timeout* seconds, so the HTTP
        timeout is extended by the same amount.  Accepts either a bare JSON
        array or ``{"updates": [...]}``.
        """
        params: Dict[str, Any] = {}
        if offset > 0:
            params["offset"] = offset
        if limit > 0:
            params["limit"] = limit
        if timeout > 0:
            params["timeout"] = timeout

        data = await self._request("GET", "/updates", params=params or None, timeout=self._timeout + max(timeout, 0))
        if isinstance(data, dict) and isinstance(data.get("updates"), list):
            data = data["updates"]
        if not isinstance(data, list):
            raise ValueError("decode updates response: unexpected payload")
        updates = [Update.model_validate(item) for item in data]
        _sdk_logger.debug("Fetched updates", extra={"api_endpoint": "/updates", "count": len(updates), "offset": offset})
        return updates

    async def send_message(self, chat_id: str, text: str, reply_markup: Optional[ReplyMarkup] = None) -> Any:
        """Send a text message to *chat_id*."""
        payload: Dict[str, Any] = {"chat_id": chat_id, "text": text}
        markup = _dump_markup(reply_markup)
        if markup is not None:
            payload["reply_markup"] = markup
        _sdk_logger.debug("Sending message", extra={"chat_id": chat_id, "api_endpoint": "/messages", "text_preview": text[:80]})
        return await self._request("POST", "/messages", payload=payload)

    async def edit_message_text(
        self,
        chat_id: str,
        message_id: str,
        text: str,
        reply_markup: Optional[ReplyMarkup] = None,
    ) -> Any:
        """Replace the text (and optionally the keyboard) of an existing message."""
        payload: Dict[str, Any] = {"chat_id": chat_id, "message_id": message_id, "text": text}
        markup = _dump_markup(reply_markup)
        if markup is not None:
            payload["reply_markup"] = markup
        return await self._request("PATCH", "/messages", payload=payload)

    async def answer_callback_query(
        self,
        callback_id: str,
        text: Optional[str] = None,
        show_alert: Optional[bool] = None,
    ) -> Any:
        """Acknowledge a callback query so the client stops its spinner."""
        payload: Dict[str, Any] = {"callback_id": callback_id}
        if text is not None:
            payload["text"] = text
        if show_alert is not None:
            payload["show_alert"] = show_alert
        return await self._request("POST", "/callbacks/answer", payload=payload)
