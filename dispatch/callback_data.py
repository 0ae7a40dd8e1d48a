"""Typed ``callback_data`` packing for inline keyboard buttons.

Format: ``<prefix>:<key>=<value>:<key>=<value>`` with every part
percent-encoded, e.g. ``vote:item=42:up=1``.

Usage::

    Vote = CallbackData("vote", {"item": "number", "up": "boolean"})

    button_data = Vote.pack({"item": 42, "up": True})

    @router.callback_query([Vote.filter(up=True)])
    async def on_upvote(ctx):
        values = ctx.meta("callback_data")   # {"item": 42, "up": True}
"""

from __future__ import annotations

import math
from typing import Any, Dict, Literal, Mapping, Optional
from urllib.parse import quote, unquote

from dispatch.context import Context
from dispatch.filters import Filter, FilterResult

Codec = Literal["string", "number", "boolean"]

_TRUE = {"1", "true"}
_FALSE = {"0", "false"}


def _encode(part: str) -> str:
    return quote(part, safe="")


def _decode_number(raw: str) -> Optional[float]:
    try:
        value = float(raw)
    except ValueError:
        return None
    if not math.isfinite(value):
        return None
    return int(value) if value.is_integer() and "." not in raw and "e" not in raw.lower() else value


def _decode_value(codec: Codec, raw: str) -> Any:
    if codec == "number":
        return _decode_number(raw)
    if codec == "boolean":
        lowered = raw.lower()
        if lowered in _TRUE:
            return True
        if lowered in _FALSE:
            return False
        return None
    return raw


def _encode_value(codec: Codec, value: Any) -> str:
    if codec == "boolean":
        return "1" if value else "0"
    return str(value)


class CallbackData:
    """Packs and unpacks ``prefix:key=value`` payloads with per-field codecs."""

    def __init__(
        self,
        prefix: str,
        codecs: Optional[Mapping[str, Codec]] = None,
        *,
        meta_key: str = "callback_data",
    ) -> None:
        prefix = prefix.strip()
        if not prefix:
            raise ValueError("callback data prefix is required")
        for field, codec in (codecs or {}).items():
            if codec not in ("string", "number", "boolean"):
                raise ValueError(f"unknown codec {codec!r} for field {field!r}")
        self.prefix = prefix
        self.codecs: Dict[str, Codec] = dict(codecs or {})
        self.meta_key = meta_key
        self._safe_prefix = _encode(prefix)

    def __repr__(self) -> str:
        return f"CallbackData({self.prefix!r}, {self.codecs!r})"

    def pack(self, values: Mapping[str, Any]) -> str:
        parts = [self._safe_prefix]
        for key, value in values.items():
            codec = self.codecs.get(key, "string")
            parts.append(f"{_encode(str(key))}={_encode(_encode_value(codec, value))}")
        return ":".join(parts)

    def unpack(self, raw: Optional[str]) -> Optional[Dict[str, Any]]:
        """Decode *raw*; ``None`` on prefix mismatch or an undecodable typed field.

        Fields declared in ``codecs`` but missing from *raw* also yield ``None``.
        """
        if not raw:
            return None
        parts = raw.split(":")
        if parts[0] != self._safe_prefix:
            return None

        values: Dict[str, Any] = {}
        for item in parts[1:]:
            key_raw, sep, value_raw = item.partition("=")
            if not sep or not key_raw:
                continue
            key = unquote(key_raw)
            decoded = _decode_value(self.codecs.get(key, "string"), unquote(value_raw))
            if decoded is None:
                return None
            values[key] = decoded

        if any(field not in values for field in self.codecs):
            return None
        return values

    def filter(self, **expected: Any) -> Filter:
        """Filter accepting callbacks this factory can unpack (and whose fields equal *expected*).

        On success the decoded values are exposed under ``meta_key``.
        """
        def _filter(ctx: Context) -> FilterResult:
            if not ctx.has_callback():
                return False
            values = self.unpack(ctx.callback_data())
            if values is None:
                return False
            for key, value in expected.items():
                if values.get(key) != value:
                    return False
            return {self.meta_key: values}
        return _filter
