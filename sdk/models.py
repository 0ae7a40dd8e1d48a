"""Pydantic data models for the MAX Bot API update and markup shapes.

Only the fields the dispatch layer reads are declared; every model keeps
unknown keys (``extra="allow"``) so platform additions survive a round trip.
Identifiers are strings on the wire; integer ids are coerced to ``str``.
"""

from __future__ import annotations

from typing import Annotated, Any, List, Optional

from pydantic import BaseModel, BeforeValidator, Field

from core.identity import update_kind


def _coerce_id(value: Any) -> Any:
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    return value


ID = Annotated[str, BeforeValidator(_coerce_id)]

_MODEL_CONFIG = {"populate_by_name": True, "extra": "allow"}


class User(BaseModel):
    """A MAX user or bot."""

    user_id: ID
    username: Optional[str] = None
    name: Optional[str] = None

    model_config = _MODEL_CONFIG


class Chat(BaseModel):
    """A dialog, group chat or channel."""

    chat_id: ID
    title: Optional[str] = None
    type: Optional[str] = None

    model_config = _MODEL_CONFIG


class Message(BaseModel):
    """A message in a chat."""

    message_id: ID
    chat: Chat
    sender: Optional[User] = None
    text: Optional[str] = None

    model_config = _MODEL_CONFIG


class CallbackQuery(BaseModel):
    """A press on an inline keyboard button carrying ``callback_data``."""

    callback_id: ID
    from_field: Optional[User] = Field(None, alias="from")
    data: Optional[str] = None
    chat: Optional[Chat] = None
    message: Optional[Message] = None

    model_config = _MODEL_CONFIG


class InlineQuery(BaseModel):
    """An incoming inline query."""

    id: Optional[ID] = None
    from_field: Optional[User] = Field(None, alias="from")
    query: Optional[str] = None
    offset: Optional[str] = None

    model_config = _MODEL_CONFIG


class ChosenInlineResult(BaseModel):
    """An inline result chosen by a user."""

    result_id: Optional[ID] = None
    from_field: Optional[User] = Field(None, alias="from")
    query: Optional[str] = None

    model_config = _MODEL_CONFIG


class ShippingQuery(BaseModel):
    """An incoming shipping query."""

    id: Optional[ID] = None
    from_field: Optional[User] = Field(None, alias="from")
    invoice_payload: Optional[str] = None

    model_config = _MODEL_CONFIG


class PreCheckoutQuery(BaseModel):
    """An incoming pre-checkout query."""

    id: Optional[ID] = None
    from_field: Optional[User] = Field(None, alias="from")
    currency: Optional[str] = None
    total_amount: Optional[int] = None
    invoice_payload: Optional[str] = None

    model_config = _MODEL_CONFIG


class PollOption(BaseModel):
    text: str
    voter_count: int = 0

    model_config = _MODEL_CONFIG


class Poll(BaseModel):
    """A poll state update."""

    id: Optional[ID] = None
    question: Optional[str] = None
    options: List[PollOption] = Field(default_factory=list)
    is_closed: Optional[bool] = None

    model_config = _MODEL_CONFIG


class PollAnswer(BaseModel):
    """A user's answer in a non-anonymous poll."""

    poll_id: Optional[ID] = None
    user: Optional[User] = None
    option_ids: List[int] = Field(default_factory=list)

    model_config = _MODEL_CONFIG


class ChatMemberUpdated(BaseModel):
    """A change of a chat member's status."""

    chat: Chat
    from_field: Optional[User] = Field(None, alias="from")
    date: Optional[int] = None
    old_chat_member: Optional[dict[str, Any]] = None
    new_chat_member: Optional[dict[str, Any]] = None

    model_config = _MODEL_CONFIG


class ChatJoinRequest(BaseModel):
    """A request to join a chat."""

    chat: Chat
    from_field: Optional[User] = Field(None, alias="from")
    date: Optional[int] = None
    bio: Optional[str] = None

    model_config = _MODEL_CONFIG


class InlineKeyboardButton(BaseModel):
    """One button of an inline keyboard."""

    text: str
    callback_data: Optional[str] = None
    url: Optional[str] = None

    model_config = _MODEL_CONFIG


class InlineKeyboardMarkup(BaseModel):
    """An inline keyboard attached to a message."""

    inline_keyboard: List[List[InlineKeyboardButton]]

    model_config = _MODEL_CONFIG


class Update(BaseModel):
    """One inbound event.  By platform contract exactly one variant field is set."""

    update_id: int
    message: Optional[Message] = None
    edited_message: Optional[Message] = None
    channel_post: Optional[Message] = None
    edited_channel_post: Optional[Message] = None
    inline_query: Optional[InlineQuery] = None
    chosen_inline_result: Optional[ChosenInlineResult] = None
    callback_query: Optional[CallbackQuery] = None
    shipping_query: Optional[ShippingQuery] = None
    pre_checkout_query: Optional[PreCheckoutQuery] = None
    poll: Optional[Poll] = None
    poll_answer: Optional[PollAnswer] = None
    my_chat_member: Optional[ChatMemberUpdated] = None
    chat_member: Optional[ChatMemberUpdated] = None
    chat_join_request: Optional[ChatJoinRequest] = None

    model_config = _MODEL_CONFIG

    @property
    def kind(self) -> Optional[str]:
        """Name of the populated variant field, or ``None``."""
        return update_kind(self)
