"""Identity resolution for inbound updates.

Derives the update kind, chat id, user id and chat type by probing the
populated variant's nested chat/sender fields in a fixed priority order, and
parses leading ``/command@mention args`` text.

Works on any object shaped like :class:`sdk.models.Update` (attribute access
only) so this module stays free of ``sdk`` imports.
"""

from __future__ import annotations

import dataclasses
import re
from typing import Any, Optional

# Variant fields in the order used for kind detection.
UPDATE_KINDS: tuple[str, ...] = (
    "message",
    "edited_message",
    "channel_post",
    "edited_channel_post",
    "inline_query",
    "chosen_inline_result",
    "callback_query",
    "shipping_query",
    "pre_checkout_query",
    "poll",
    "poll_answer",
    "my_chat_member",
    "chat_member",
    "chat_join_request",
)

_WHITESPACE = re.compile(r"\s+")


@dataclasses.dataclass(frozen=True, slots=True)
class ParsedCommand:
    """A ``/name@mention args`` command parsed from message text."""
    name: str
    mention: Optional[str]
    args_text: str
    args: tuple[str, ...]


def _path(obj: Any, *names: str) -> Any:
    """Follow attribute *names* from *obj*, returning ``None`` on any gap."""
    for name in names:
        if obj is None:
            return None
        obj = getattr(obj, name, None)
    return obj


def _first(update: Any, paths: tuple[tuple[str, ...], ...]) -> Optional[str]:
    for path in paths:
        value = _path(update, *path)
        if value is not None:
            return value
    return None


def update_kind(update: Any) -> Optional[str]:
    """Return the name of the populated variant field, or ``None``."""
    for kind in UPDATE_KINDS:
        if getattr(update, kind, None) is not None:
            return kind
    return None


def current_message(update: Any) -> Any:
    """Return ``message`` or, failing that, ``edited_message``."""
    return _path(update, "message") or _path(update, "edited_message")


_CHAT_PATHS: tuple[tuple[str, ...], ...] = (
    ("message", "chat"),
    ("edited_message", "chat"),
    ("channel_post", "chat"),
    ("edited_channel_post", "chat"),
    ("callback_query", "chat"),
    ("callback_query", "message", "chat"),
    ("my_chat_member", "chat"),
    ("chat_member", "chat"),
    ("chat_join_request", "chat"),
)

_USER_PATHS: tuple[tuple[str, ...], ...] = (
    ("message", "sender", "user_id"),
    ("edited_message", "sender", "user_id"),
    ("channel_post", "sender", "user_id"),
    ("edited_channel_post", "sender", "user_id"),
    ("callback_query", "from_field", "user_id"),
    ("callback_query", "message", "sender", "user_id"),
    ("inline_query", "from_field", "user_id"),
    ("chosen_inline_result", "from_field", "user_id"),
    ("shipping_query", "from_field", "user_id"),
    ("pre_checkout_query", "from_field", "user_id"),
    ("poll_answer", "user", "user_id"),
    ("my_chat_member", "from_field", "user_id"),
    ("chat_member", "from_field", "user_id"),
    ("chat_join_request", "from_field", "user_id"),
)


def chat_id_of(update: Any) -> Optional[str]:
    """Return the chat id of *update*, or ``None`` when it has no chat."""
    return _first(update, tuple(path + ("chat_id",) for path in _CHAT_PATHS))


def user_id_of(update: Any) -> Optional[str]:
    """Return the acting user's id, or ``None``."""
    return _first(update, _USER_PATHS)


def chat_type_of(update: Any) -> Optional[str]:
    """Return the chat type (``private``, ``group``, ...), or ``None``."""
    return _first(update, tuple(path + ("type",) for path in _CHAT_PATHS))


def normalize_command(command: str) -> str:
    """``" /Start "`` -> ``"start"``."""
    command = command.strip()
    if command.startswith("/"):
        command = command[1:]
    return command.lower()


def parse_command(text: Optional[str]) -> Optional[ParsedCommand]:
    """Parse ``/name[@mention] args...`` from *text*.

    Returns ``None`` when *text* does not start with ``/`` or the command
    token is empty.
    """
    text = (text or "").strip()
    if not text.startswith("/"):
        return None

    body = text[1:].strip()
    parts = _WHITESPACE.split(body, maxsplit=1)
    token = parts[0].strip() if parts else ""
    if not token:
        return None

    name_raw, _, mention_raw = token.partition("@")
    name = name_raw.strip().lower()
    if not name:
        return None

    args_text = parts[1].strip() if len(parts) > 1 else ""
    mention = mention_raw.strip().lower() or None
    return ParsedCommand(
        name=name,
        mention=mention,
        args_text=args_text,
        args=tuple(args_text.split()) if args_text else (),
    )
