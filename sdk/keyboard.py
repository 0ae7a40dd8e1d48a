"""Fluent builder for :class:`~sdk.models.InlineKeyboardMarkup`.

Usage::

    markup = (
        InlineKeyboardBuilder()
        .button("Yes", callback_data="vote:yes")
        .button("No", callback_data="vote:no")
        .row()
        .button("Docs", url="https://dev.max.ru")
        .build()
    )
"""

from __future__ import annotations

from typing import List, Optional

from sdk.models import InlineKeyboardButton, InlineKeyboardMarkup


class InlineKeyboardBuilder:
    """Accumulates buttons row by row."""

    def __init__(self) -> None:
        self._rows: List[List[InlineKeyboardButton]] = []
        self._current: List[InlineKeyboardButton] = []

    def button(self, text: str, *, callback_data: Optional[str] = None, url: Optional[str] = None) -> "InlineKeyboardBuilder":
        """Append a button to the current row."""
        self._current.append(
            InlineKeyboardButton(text=text, callback_data=callback_data or None, url=url or None)
        )
        return self

    def row(self) -> "InlineKeyboardBuilder":
        """Close the current row (no-op when it is empty)."""
        if self._current:
            self._rows.append(self._current)
            self._current = []
        return self

    def build(self) -> InlineKeyboardMarkup:
        """Close the pending row and return the markup (``[[]]`` when empty)."""
        self.row()
        return InlineKeyboardMarkup(inline_keyboard=[list(r) for r in self._rows] or [[]])
