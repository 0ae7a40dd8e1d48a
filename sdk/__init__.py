"""MAX Bot API SDK — Pydantic models, async service client, and exceptions.

The :class:`MaxClient` class wraps the endpoints the dispatch layer needs
(``/updates``, ``/messages``, ``/callbacks/answer``) as coroutines.

Usage::

    from sdk import MaxClient, APIException
    from sdk.models import Update, Message
    from sdk.keyboard import InlineKeyboardBuilder
"""

from sdk.client import MaxClient
from sdk.exceptions import APIException
from sdk.keyboard import InlineKeyboardBuilder

__all__ = [
    "MaxClient",
    "APIException",
    "InlineKeyboardBuilder",
]
