"""Test helpers: update factories and an in-process fake transport client.

``FakeClient`` duck-types :class:`sdk.client.MaxClient`: ``get_updates`` is
served by a scripted handler and every outgoing call is recorded in
``calls`` as ``(method_name, kwargs)``.
"""

from __future__ import annotations

import inspect
from typing import Any, Callable, List, Optional, Tuple

from sdk.models import Update

UpdatesHandler = Callable[[int, int, int, int], Any]


def make_message_update(
    text: str = "",
    *,
    update_id: int = 1,
    chat_id: str = "chat1",
    message_id: str = "m1",
    sender_id: Optional[str] = None,
    chat_type: Optional[str] = None,
    edited: bool = False,
) -> Update:
    """Build a ``message`` (or ``edited_message``) update."""
    chat: dict[str, Any] = {"chat_id": chat_id}
    if chat_type is not None:
        chat["type"] = chat_type
    message: dict[str, Any] = {"message_id": message_id, "chat": chat, "text": text}
    if sender_id is not None:
        message["sender"] = {"user_id": sender_id}
    field = "edited_message" if edited else "message"
    return Update.model_validate({"update_id": update_id, field: message})


def make_callback_update(
    data: str = "",
    *,
    update_id: int = 1,
    callback_id: str = "cb1",
    chat_id: str = "chat1",
    message_id: str = "m1",
    sender_id: Optional[str] = None,
) -> Update:
    """Build a ``callback_query`` update attached to message *message_id*."""
    callback: dict[str, Any] = {
        "callback_id": callback_id,
        "data": data,
        "chat": {"chat_id": chat_id},
        "message": {"message_id": message_id, "chat": {"chat_id": chat_id}},
    }
    if sender_id is not None:
        callback["from"] = {"user_id": sender_id}
    return Update.model_validate({"update_id": update_id, "callback_query": callback})


class FakeClient:
    """Scripted stand-in for :class:`~sdk.client.MaxClient`.

    *updates_handler* is called as ``handler(call_index, offset, limit,
    timeout)`` and may return (or resolve to) a list of updates or raise.
    Without a handler ``get_updates`` always returns an empty batch.
    """

    def __init__(self, updates_handler: Optional[UpdatesHandler] = None) -> None:
        self._updates_handler = updates_handler
        self.calls: List[Tuple[str, dict[str, Any]]] = []
        self.get_updates_calls: List[dict[str, int]] = []

    def calls_to(self, method: str) -> List[dict[str, Any]]:
        return [kwargs for name, kwargs in self.calls if name == method]

    async def get_updates(self, offset: int = 0, limit: int = 100, timeout: int = 0) -> List[Update]:
        index = len(self.get_updates_calls)
        self.get_updates_calls.append({"offset": offset, "limit": limit, "timeout": timeout})
        if self._updates_handler is None:
            return []
        result = self._updates_handler(index, offset, limit, timeout)
        if inspect.isawaitable(result):
            result = await result
        return [u if isinstance(u, Update) else Update.model_validate(u) for u in result or []]

    async def send_message(self, chat_id: str, text: str, reply_markup: Any = None) -> None:
        self.calls.append(("send_message", {"chat_id": chat_id, "text": text, "reply_markup": reply_markup}))

    async def edit_message_text(self, chat_id: str, message_id: str, text: str, reply_markup: Any = None) -> None:
        self.calls.append(
            ("edit_message_text", {"chat_id": chat_id, "message_id": message_id, "text": text, "reply_markup": reply_markup})
        )

    async def answer_callback_query(self, callback_id: str, text: Optional[str] = None, show_alert: Optional[bool] = None) -> None:
        self.calls.append(("answer_callback_query", {"callback_id": callback_id, "text": text, "show_alert": show_alert}))
