"""FSM session storage contract and the in-memory reference store.

A store keeps, per resolution key, one state string plus an auxiliary
key→value data mapping.  All methods are coroutines so external stores
(see :mod:`core.redis_storage`) can do I/O.  Stores must be safe for
concurrent access on distinct keys; ordering of same-key access is the
dispatcher's job.
"""

from __future__ import annotations

import abc
import copy
from typing import Any, Dict, Mapping, Optional

FSMData = Dict[str, Any]


class FSMStorage(abc.ABC):
    """Abstract key → (state, data) session store."""

    @abc.abstractmethod
    async def get(self, key: str) -> Optional[str]:
        """Return the state for *key*, or ``None``."""

    @abc.abstractmethod
    async def set(self, key: str, state: str) -> None:
        """Set the state for *key*."""

    @abc.abstractmethod
    async def clear(self, key: str) -> None:
        """Remove the state for *key* (data is left untouched)."""

    @abc.abstractmethod
    async def get_data(self, key: str) -> FSMData:
        """Return the data mapping for *key* (empty when missing)."""

    @abc.abstractmethod
    async def set_data(self, key: str, data: Mapping[str, Any]) -> None:
        """Replace the data mapping for *key*."""

    @abc.abstractmethod
    async def clear_data(self, key: str) -> None:
        """Remove the data mapping for *key*."""

    async def update_data(self, key: str, patch: Mapping[str, Any]) -> FSMData:
        """Shallow-merge *patch* over the current data and return the result."""
        merged = {**await self.get_data(key), **patch}
        await self.set_data(key, merged)
        return merged


class MemoryFSMStorage(FSMStorage):
    """Process-local store backed by two dicts.

    Data mappings are copied on the way in and out so callers never share
    mutable state with the store.
    """

    def __init__(self) -> None:
        self._states: dict[str, str] = {}
        self._data: dict[str, FSMData] = {}

    async def get(self, key: str) -> Optional[str]:
        return self._states.get(key)

    async def set(self, key: str, state: str) -> None:
        self._states[key] = state

    async def clear(self, key: str) -> None:
        self._states.pop(key, None)

    async def get_data(self, key: str) -> FSMData:
        return copy.deepcopy(self._data.get(key, {}))

    async def set_data(self, key: str, data: Mapping[str, Any]) -> None:
        self._data[key] = copy.deepcopy(dict(data))

    async def clear_data(self, key: str) -> None:
        self._data.pop(key, None)

    async def update_data(self, key: str, patch: Mapping[str, Any]) -> FSMData:
        current = self._data.setdefault(key, {})
        current.update(copy.deepcopy(dict(patch)))
        return copy.deepcopy(current)
