"""Redis-backed FSM storage.

Keys are namespaced as ``<namespace>:fsm:state:<key>`` and
``<namespace>:fsm:data:<key>``; data is stored as JSON.  Optional expiry is
applied per key on every write.

The store only needs an async client exposing ``get``, ``set(name, value,
ex=None)`` and ``delete``, such as :class:`redis.asyncio.Redis` or anything shaped
like it.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Mapping, Optional

from core.fsm import FSMData, FSMStorage

logger = logging.getLogger("maxbot.core.redis_storage")


class RedisFSMStorage(FSMStorage):
    """FSM store on top of an async redis client."""

    def __init__(
        self,
        client: Any,
        *,
        namespace: str = "maxbot",
        state_ttl: Optional[int] = None,
        data_ttl: Optional[int] = None,
    ) -> None:
        """Bind the store to *client*.

        Args:
            client: Async redis client (``redis.asyncio.Redis``-compatible).
            namespace: Key prefix; ``:fsm`` is appended.
            state_ttl: Expiry in seconds for state keys (``None`` = no expiry).
            data_ttl: Expiry in seconds for data keys (``None`` = no expiry).
        """
        namespace = namespace.strip().strip(":") or "maxbot"
        self._client = client
        self._prefix = f"{namespace}:fsm"
        self._state_ttl = self._normalize_ttl(state_ttl)
        self._data_ttl = self._normalize_ttl(data_ttl)

    @classmethod
    def from_url(cls, url: str, **kwargs: Any) -> "RedisFSMStorage":
        """Create a store with a fresh ``redis.asyncio`` client for *url*."""
        import redis.asyncio as redis  # optional dependency (``redis`` extra)

        return cls(redis.from_url(url, decode_responses=True), **kwargs)

    @staticmethod
    def _normalize_ttl(ttl: Optional[int]) -> Optional[int]:
        if ttl is None:
            return None
        if ttl <= 0:
            raise ValueError("ttl must be > 0 seconds")
        return int(ttl)

    def state_key(self, key: str) -> str:
        return f"{self._prefix}:state:{key}"

    def data_key(self, key: str) -> str:
        return f"{self._prefix}:data:{key}"

    async def get(self, key: str) -> Optional[str]:
        raw = await self._client.get(self.state_key(key))
        if raw is None:
            return None
        return raw.decode("utf-8") if isinstance(raw, bytes) else str(raw)

    async def set(self, key: str, state: str) -> None:
        await self._client.set(self.state_key(key), state, ex=self._state_ttl)

    async def clear(self, key: str) -> None:
        await self._client.delete(self.state_key(key))

    async def get_data(self, key: str) -> FSMData:
        raw = await self._client.get(self.data_key(key))
        if not raw:
            return {}
        try:
            data = json.loads(raw)
        except ValueError:
            logger.warning("Discarding undecodable FSM data", extra={"fsm_key": key})
            return {}
        return data if isinstance(data, dict) else {}

    async def set_data(self, key: str, data: Mapping[str, Any]) -> None:
        payload = json.dumps(dict(data), ensure_ascii=False, default=str)
        await self._client.set(self.data_key(key), payload, ex=self._data_ttl)

    async def clear_data(self, key: str) -> None:
        await self._client.delete(self.data_key(key))
