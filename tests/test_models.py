"""Tests for the Pydantic update and markup models."""

import sys
import os
import pytest

# Ensure the project root is importable.
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from sdk.models import (
    CallbackQuery,
    Chat,
    InlineKeyboardMarkup,
    Message,
    Poll,
    Update,
    User,
)
from sdk.keyboard import InlineKeyboardBuilder
from pydantic import ValidationError


# ── Identifiers ──────────────────────────────────────────────────────────────


class TestIdentifiers:
    """Integer ids from the wire are coerced to strings."""

    def test_int_chat_id(self) -> None:
        c = Chat(chat_id=-1001234)
        assert c.chat_id == "-1001234"

    def test_string_user_id(self) -> None:
        u = User(user_id="u42", name="Ada")
        assert u.user_id == "u42"
        assert u.username is None

    def test_missing_required_raises(self) -> None:
        with pytest.raises(ValidationError):
            Message(message_id="m1")  # missing chat

    def test_int_callback_id(self) -> None:
        upd = Update.model_validate({"update_id": 3, "callback_query": {"callback_id": 9001, "data": "ok"}})
        assert upd.callback_query.callback_id == "9001"
        assert upd.kind == "callback_query"


# ── Update ───────────────────────────────────────────────────────────────────


class TestUpdateModel:
    """Validate the Update envelope."""

    def test_minimal_update(self) -> None:
        up = Update(update_id=1)
        assert up.update_id == 1
        assert up.message is None
        assert up.kind is None

    def test_nested_message(self) -> None:
        data = {
            "update_id": 10,
            "message": {
                "message_id": 100,
                "chat": {"chat_id": 7, "type": "dialog"},
                "sender": {"user_id": 42, "name": "Ada"},
                "text": "hello",
            },
        }
        up = Update.model_validate(data)
        assert up.kind == "message"
        assert up.message.message_id == "100"
        assert up.message.sender.user_id == "42"
        assert up.message.chat.type == "dialog"

    def test_callback_from_alias(self) -> None:
        """The wire key 'from' maps to ``from_field``."""
        up = Update.model_validate(
            {
                "update_id": 2,
                "callback_query": {"callback_id": "cb", "from": {"user_id": 5}, "data": "x"},
            }
        )
        assert up.kind == "callback_query"
        assert up.callback_query.from_field.user_id == "5"

    def test_populate_by_name(self) -> None:
        cb = CallbackQuery(callback_id="cb", from_field=User(user_id="1"))
        assert cb.from_field.user_id == "1"
        assert cb.model_dump(by_alias=True)["from"]["user_id"] == "1"

    def test_extra_fields_preserved(self) -> None:
        up = Update.model_validate({"update_id": 3, "timestamp": 1700000000})
        assert up.model_dump()["timestamp"] == 1700000000

    def test_poll_defaults(self) -> None:
        up = Update.model_validate({"update_id": 4, "poll": {"id": 9, "question": "?"}})
        assert up.kind == "poll"
        assert isinstance(up.poll, Poll)
        assert up.poll.options == []

    def test_invalid_update_id(self) -> None:
        with pytest.raises(ValidationError):
            Update.model_validate({"update_id": "abc"})


# ── InlineKeyboardMarkup ────────────────────────────────────────────────────


class TestInlineKeyboardMarkup:
    def test_nested_buttons(self) -> None:
        data = {"inline_keyboard": [[{"text": "Click", "callback_data": "action"}]]}
        kb = InlineKeyboardMarkup.model_validate(data)
        assert len(kb.inline_keyboard) == 1
        assert kb.inline_keyboard[0][0].text == "Click"

    def test_builder_rows(self) -> None:
        kb = (
            InlineKeyboardBuilder()
            .button("A", callback_data="a")
            .button("B", url="https://example.com")
            .row()
            .button("C", callback_data="c")
            .build()
        )
        assert [[b.text for b in row] for row in kb.inline_keyboard] == [["A", "B"], ["C"]]
        assert kb.inline_keyboard[0][1].url == "https://example.com"

    def test_builder_empty(self) -> None:
        assert InlineKeyboardBuilder().build().inline_keyboard == [[]]
