"""Tests for FSM storage backends and state groups."""

import sys
import os
import json

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from core.fsm import MemoryFSMStorage
from core.redis_storage import RedisFSMStorage
from core.states import StateGroup


class _FakeRedis:
    """Minimal async stand-in for redis.asyncio.Redis."""

    def __init__(self) -> None:
        self.store = {}
        self.expiry = {}

    async def get(self, name):
        return self.store.get(name)

    async def set(self, name, value, ex=None):
        self.store[name] = value.encode("utf-8") if isinstance(value, str) else value
        self.expiry[name] = ex

    async def delete(self, name):
        self.store.pop(name, None)


# ── Memory store ─────────────────────────────────────────────────────────────


class TestMemoryStorage:
    """In-memory reference store."""

    @pytest.mark.asyncio
    async def test_state_roundtrip(self) -> None:
        storage = MemoryFSMStorage()
        assert await storage.get("k") is None
        await storage.set("k", "s1")
        assert await storage.get("k") == "s1"
        await storage.clear("k")
        assert await storage.get("k") is None

    @pytest.mark.asyncio
    async def test_clear_state_keeps_data(self) -> None:
        storage = MemoryFSMStorage()
        await storage.set("k", "s1")
        await storage.set_data("k", {"a": 1})
        await storage.clear("k")
        assert await storage.get_data("k") == {"a": 1}

    @pytest.mark.asyncio
    async def test_data_is_copied(self) -> None:
        storage = MemoryFSMStorage()
        source = {"items": [1]}
        await storage.set_data("k", source)
        source["items"].append(2)

        data = await storage.get_data("k")
        data["items"].append(3)
        assert await storage.get_data("k") == {"items": [1]}

    @pytest.mark.asyncio
    async def test_update_data_merges(self) -> None:
        storage = MemoryFSMStorage()
        await storage.set_data("k", {"a": 1, "b": 1})
        assert await storage.update_data("k", {"b": 2}) == {"a": 1, "b": 2}
        await storage.clear_data("k")
        assert await storage.get_data("k") == {}

    @pytest.mark.asyncio
    async def test_keys_are_isolated(self) -> None:
        storage = MemoryFSMStorage()
        await storage.set("a", "x")
        assert await storage.get("b") is None


# ── Redis store ──────────────────────────────────────────────────────────────


class TestRedisStorage:
    """RedisFSMStorage against an in-process fake client."""

    @pytest.mark.asyncio
    async def test_keys_and_ttl(self) -> None:
        client = _FakeRedis()
        storage = RedisFSMStorage(client, namespace="bot:", state_ttl=60)

        await storage.set("chat1", "form:name")
        assert client.store["bot:fsm:state:chat1"] == b"form:name"
        assert client.expiry["bot:fsm:state:chat1"] == 60
        assert await storage.get("chat1") == "form:name"

        await storage.clear("chat1")
        assert await storage.get("chat1") is None

    @pytest.mark.asyncio
    async def test_data_json(self) -> None:
        client = _FakeRedis()
        storage = RedisFSMStorage(client)

        merged = await storage.update_data("k", {"name": "Ада"})
        assert merged == {"name": "Ада"}
        assert json.loads(client.store["maxbot:fsm:data:k"]) == {"name": "Ада"}
        assert client.expiry["maxbot:fsm:data:k"] is None
        assert await storage.get_data("k") == {"name": "Ада"}

        await storage.clear_data("k")
        assert await storage.get_data("k") == {}

    @pytest.mark.asyncio
    async def test_corrupt_data_yields_empty(self) -> None:
        client = _FakeRedis()
        client.store["maxbot:fsm:data:k"] = b"{not json"
        assert await RedisFSMStorage(client).get_data("k") == {}

    def test_invalid_ttl(self) -> None:
        with pytest.raises(ValueError):
            RedisFSMStorage(_FakeRedis(), data_ttl=0)


# ── StateGroup ───────────────────────────────────────────────────────────────


class TestStateGroup:
    def test_states(self) -> None:
        group = StateGroup(" Signup ", ["name", "Age"])
        assert group.prefix == "signup"
        assert group.states == {"name": "signup:name", "Age": "signup:age"}
        assert group.state("Age") == "signup:age"
        assert group.has("signup:name")
        assert "signup:age" in group
        assert not group.has(None)
        assert group.is_state("signup:name", "name")

    def test_states_is_a_copy(self) -> None:
        group = StateGroup("g", ["a"])
        group.states["a"] = "hacked"
        assert group.state("a") == "g:a"

    def test_unknown_state(self) -> None:
        with pytest.raises(KeyError):
            StateGroup("g", ["a"]).state("b")

    @pytest.mark.parametrize("prefix,names", [("", ["a"]), ("g", []), ("g", [" "])])
    def test_invalid(self, prefix, names) -> None:
        with pytest.raises(ValueError):
            StateGroup(prefix, names)
