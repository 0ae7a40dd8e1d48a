"""Per-update request context handed to filters, middlewares and handlers.

A :class:`Context` is a read-only view of one update plus:

* a metadata mapping accumulated while the router tree is walked
  (:meth:`Context.with_meta` copies, it never mutates the caller's view);
* session (FSM state/data) operations bound to one resolution key;
* thin reply helpers that go through the injected transport client.
"""

from __future__ import annotations

from typing import Any, Dict, Mapping, Optional

from core.fsm import FSMData, FSMStorage
from core.identity import (
    ParsedCommand,
    chat_id_of,
    chat_type_of,
    current_message,
    normalize_command,
    parse_command,
    update_kind,
    user_id_of,
)
from sdk.models import (
    CallbackQuery,
    ChatJoinRequest,
    ChatMemberUpdated,
    ChosenInlineResult,
    InlineQuery,
    Message,
    Poll,
    PollAnswer,
    PreCheckoutQuery,
    ShippingQuery,
    Update,
)

RuntimeMeta = Dict[str, Any]

_UNSET: Any = object()


class Context:
    """Facade over one update, its session and its traversal metadata."""

    def __init__(
        self,
        client: Any,
        update: Update,
        storage: Optional[FSMStorage] = None,
        state_key: Optional[str] = _UNSET,
        meta: Optional[Mapping[str, Any]] = None,
    ) -> None:
        """Bind the context.

        Args:
            client: Transport client (``MaxClient`` or a test double).
            update: The inbound update.
            storage: FSM store; session operations are no-ops without one.
            state_key: Session key.  Defaults to the update's chat id; pass
                ``None`` explicitly for "no session".
            meta: Initial metadata (copied).
        """
        self.client = client
        self.update = update
        self._storage = storage
        self._state_key = chat_id_of(update) if state_key is _UNSET else state_key
        self._meta: RuntimeMeta = dict(meta or {})

    def __repr__(self) -> str:
        return f"<Context update_id={self.update.update_id} kind={self.update_type()} state_key={self._state_key!r}>"

    # ----- Variant accessors -----

    def message(self) -> Optional[Message]:
        """``message`` or, failing that, ``edited_message``."""
        return current_message(self.update)

    def edited_message(self) -> Optional[Message]:
        return self.update.edited_message

    def channel_post(self) -> Optional[Message]:
        return self.update.channel_post

    def edited_channel_post(self) -> Optional[Message]:
        return self.update.edited_channel_post

    def callback(self) -> Optional[CallbackQuery]:
        return self.update.callback_query

    def inline_query(self) -> Optional[InlineQuery]:
        return self.update.inline_query

    def chosen_inline_result(self) -> Optional[ChosenInlineResult]:
        return self.update.chosen_inline_result

    def shipping_query(self) -> Optional[ShippingQuery]:
        return self.update.shipping_query

    def pre_checkout_query(self) -> Optional[PreCheckoutQuery]:
        return self.update.pre_checkout_query

    def poll(self) -> Optional[Poll]:
        return self.update.poll

    def poll_answer(self) -> Optional[PollAnswer]:
        return self.update.poll_answer

    def my_chat_member(self) -> Optional[ChatMemberUpdated]:
        return self.update.my_chat_member

    def chat_member(self) -> Optional[ChatMemberUpdated]:
        return self.update.chat_member

    def chat_join_request(self) -> Optional[ChatJoinRequest]:
        return self.update.chat_join_request

    def has_message(self) -> bool:
        return self.message() is not None

    def has_edited_message(self) -> bool:
        return self.update.edited_message is not None

    def has_callback(self) -> bool:
        return self.update.callback_query is not None

    def has(self, kind: str) -> bool:
        """True if the variant field *kind* (e.g. ``"poll_answer"``) is populated."""
        return getattr(self.update, kind, None) is not None

    # ----- Identity -----

    def chat_id(self) -> Optional[str]:
        return chat_id_of(self.update)

    def user_id(self) -> Optional[str]:
        return user_id_of(self.update)

    def chat_type(self) -> Optional[str]:
        return chat_type_of(self.update)

    def update_type(self) -> Optional[str]:
        return update_kind(self.update)

    @property
    def state_key(self) -> Optional[str]:
        """Session key this context reads and writes FSM state under."""
        return self._state_key

    # ----- Text / callback payload -----

    def message_text(self) -> str:
        """Trimmed message text, ``""`` when there is none."""
        message = self.message()
        return (message.text or "").strip() if message is not None else ""

    def callback_data(self) -> str:
        callback = self.update.callback_query
        return (callback.data or "").strip() if callback is not None else ""

    def callback_id(self) -> Optional[str]:
        callback = self.update.callback_query
        return callback.callback_id if callback is not None else None

    # ----- Commands -----

    def command_info(self) -> Optional[ParsedCommand]:
        return parse_command(self.message_text())

    def command(self) -> Optional[str]:
        info = self.command_info()
        return info.name if info else None

    def command_args(self) -> str:
        info = self.command_info()
        return info.args_text if info else ""

    def is_command(self, command: str) -> bool:
        expected = normalize_command(command)
        return bool(expected) and self.command() == expected

    def is_command_for(self, username: str, *, allow_without_mention: bool = True) -> bool:
        """True if the text is a command addressed to *username* (``@`` optional).

        A command without any ``@mention`` counts as addressed to everyone
        unless *allow_without_mention* is False.
        """
        info = self.command_info()
        expected = username.strip().lstrip("@").lower()
        if info is None or not expected:
            return False
        if info.mention is None:
            return allow_without_mention
        return info.mention == expected

    # ----- Metadata -----

    def meta(self, key: str, default: Any = None) -> Any:
        return self._meta.get(key, default)

    def has_meta(self, key: str) -> bool:
        return key in self._meta

    def set_meta(self, key: str, value: Any) -> None:
        self._meta[key] = value

    def set_meta_many(self, patch: Mapping[str, Any]) -> None:
        self._meta.update(patch)

    def meta_all(self) -> RuntimeMeta:
        """A copy of the current metadata."""
        return dict(self._meta)

    def with_meta(self, patch: Mapping[str, Any]) -> "Context":
        """Return a sibling context with *patch* merged over this one's metadata."""
        return Context(
            self.client,
            self.update,
            self._storage,
            self._state_key,
            {**self._meta, **patch},
        )

    # ----- Session (FSM) -----

    def _session(self) -> Optional[FSMStorage]:
        if self._storage is None or not self._state_key:
            return None
        return self._storage

    async def get_state(self) -> Optional[str]:
        storage = self._session()
        if storage is None:
            return None
        return await storage.get(self._state_key)

    async def set_state(self, state: str) -> None:
        storage = self._session()
        if storage is not None:
            await storage.set(self._state_key, state)

    async def clear_state(self) -> None:
        storage = self._session()
        if storage is not None:
            await storage.clear(self._state_key)

    async def get_data(self) -> FSMData:
        storage = self._session()
        if storage is None:
            return {}
        return await storage.get_data(self._state_key) or {}

    async def set_data(self, data: Mapping[str, Any]) -> None:
        storage = self._session()
        if storage is not None:
            await storage.set_data(self._state_key, data)

    async def update_data(self, patch: Mapping[str, Any]) -> FSMData:
        storage = self._session()
        if storage is None:
            return {}
        return await storage.update_data(self._state_key, patch)

    async def clear_data(self) -> None:
        storage = self._session()
        if storage is not None:
            await storage.clear_data(self._state_key)

    # ----- Replies -----

    async def reply(self, text: str, reply_markup: Any = None) -> None:
        """Send *text* to the update's chat (no-op without a chat id)."""
        chat_id = self.chat_id()
        if not chat_id:
            return
        await self.client.send_message(chat_id=chat_id, text=text, reply_markup=reply_markup)

    async def edit_message(self, text: str, reply_markup: Any = None) -> None:
        """Edit the message this update refers to (no-op without chat/message id)."""
        chat_id = self.chat_id()
        message = self.message()
        if message is None and self.update.callback_query is not None:
            message = self.update.callback_query.message
        message_id = message.message_id if message is not None else None
        if not chat_id or not message_id:
            return
        await self.client.edit_message_text(
            chat_id=chat_id, message_id=message_id, text=text, reply_markup=reply_markup
        )

    async def answer_callback(self, text: Optional[str] = None, show_alert: Optional[bool] = None) -> None:
        """Acknowledge the callback query (no-op for non-callback updates)."""
        callback_id = self.callback_id()
        if not callback_id:
            return
        await self.client.answer_callback_query(callback_id=callback_id, text=text, show_alert=show_alert)
