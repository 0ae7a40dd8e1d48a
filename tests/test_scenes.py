"""Tests for dispatch.scenes (scenes, wizards and their state encoding)."""

import sys
import os
import gc

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from dispatch import filters as F
from dispatch.context import Context
from dispatch.dispatcher import Dispatcher
from dispatch.router import DispatchRouter
from dispatch.scenes import (
    SceneEnterOptions,
    SceneManager,
    SceneState,
    decode_scene_state,
    encode_scene_state,
)
from sdk.testkit import FakeClient, make_message_update


def _make_wizard_bot(step_count: int = 3):
    """Dispatcher with a wizard of *step_count* steps entered by ``/go``.

    Each step records its index and advances; the last step leaves.
    """
    dp = Dispatcher(FakeClient())
    scenes = SceneManager()
    visited = []

    def make_step(index: int):
        async def step(ctx: Context, scene) -> None:
            visited.append(index)
            if index == step_count - 1:
                await scenes.leave(ctx)
            else:
                await scene.next()
        return step

    scenes.register_wizard("Form", [make_step(i) for i in range(step_count)])
    scenes.mount(dp)

    @dp.message([F.command("go")])
    async def go(ctx: Context) -> None:
        await scenes.enter(ctx, "form")

    return dp, scenes, visited


# ── State encoding ───────────────────────────────────────────────────────────


class TestSceneState:
    def test_encode_decode(self) -> None:
        assert encode_scene_state("form", 2) == "__scene:form:2"
        assert decode_scene_state("__scene:form:2") == SceneState("form", 2)

    def test_malformed_step(self) -> None:
        assert decode_scene_state("__scene:form:abc") == SceneState("form", 0)
        assert decode_scene_state("__scene:form") == SceneState("form", 0)

    def test_non_scene_state(self) -> None:
        assert decode_scene_state("form:name") is None
        assert decode_scene_state(None) is None
        assert decode_scene_state("__scene:") is None


# ── Wizards ──────────────────────────────────────────────────────────────────


class TestWizard:
    """Stepping through a wizard via the dispatcher."""

    @pytest.mark.asyncio
    async def test_full_walkthrough(self) -> None:
        dp, scenes, visited = _make_wizard_bot(3)

        assert await dp.handle_update(make_message_update("/go", chat_id="c1"))
        assert await dp.get_state("c1") == "__scene:form:0"

        for text in ("one", "two", "three"):
            assert await dp.handle_update(make_message_update(text, chat_id="c1"))

        assert visited == [0, 1, 2]
        assert await dp.get_state("c1") is None

    @pytest.mark.asyncio
    async def test_scene_takes_priority(self) -> None:
        dp, scenes, visited = _make_wizard_bot(2)
        fallback = []
        dp.message(lambda ctx: fallback.append(ctx.message_text()))

        await dp.handle_update(make_message_update("/go"))
        await dp.handle_update(make_message_update("inside"))
        await dp.handle_update(make_message_update("last"))
        await dp.handle_update(make_message_update("outside"))

        assert visited == [0, 1]
        assert fallback == ["outside"]

    @pytest.mark.asyncio
    async def test_step_out_of_range_leaves(self) -> None:
        dp, scenes, visited = _make_wizard_bot(2)
        await dp.set_state("chat1", encode_scene_state("form", 5))

        assert await dp.handle_update(make_message_update("x"))
        assert visited == []
        assert await dp.get_state("chat1") is None

    @pytest.mark.asyncio
    async def test_unknown_scene_clears_state(self) -> None:
        dp, scenes, visited = _make_wizard_bot(2)
        await dp.set_state("chat1", "__scene:ghost:0")

        await dp.handle_update(make_message_update("x"))
        assert await dp.get_state("chat1") is None

    def test_empty_wizard(self) -> None:
        with pytest.raises(ValueError):
            SceneManager().register_wizard("w", [])

    @pytest.mark.parametrize("scene_id", ["", "  ", "a:b"])
    def test_invalid_id(self, scene_id) -> None:
        with pytest.raises(ValueError):
            SceneManager().register_scene(scene_id, lambda ctx, s: None)


# ── Scenes and hooks ─────────────────────────────────────────────────────────


class TestSceneManager:
    """enter / leave / current and hooks, driven through a bare Context."""

    def _ctx(self, dp: Dispatcher, text: str = "x") -> Context:
        return Context(dp.client, make_message_update(text), dp.storage)

    @pytest.mark.asyncio
    async def test_enter_leave_hooks(self) -> None:
        dp = Dispatcher(FakeClient())
        scenes = SceneManager()
        log = []
        scenes.register_scene(
            "a",
            lambda ctx, s: log.append("a:handle"),
            enter=lambda ctx, s: log.append(f"a:enter:{s.step}"),
            leave=lambda ctx, s: log.append("a:leave"),
        )
        scenes.register_scene("b", lambda ctx, s: None, enter=lambda ctx, s: log.append("b:enter"))
        ctx = self._ctx(dp)

        session = await scenes.enter(ctx, "A", 2)
        assert session.step == 2
        assert await scenes.current(ctx) == SceneState("a", 2)

        await scenes.enter(ctx, "b")
        assert log == ["a:enter:2", "a:leave", "b:enter"]

        await scenes.leave(ctx)
        assert await scenes.current(ctx) is None

    @pytest.mark.asyncio
    async def test_enter_options_data(self) -> None:
        dp = Dispatcher(FakeClient())
        scenes = SceneManager()
        scenes.register_scene("a", lambda ctx, s: None)
        ctx = self._ctx(dp)
        await ctx.set_data({"old": True})

        await scenes.enter(ctx, "a", SceneEnterOptions(step=1, data={"x": 1}, reset_data=True))
        assert await ctx.get_data() == {"x": 1}
        assert await ctx.get_state() == "__scene:a:1"

    @pytest.mark.asyncio
    async def test_enter_unknown(self) -> None:
        dp = Dispatcher(FakeClient())
        with pytest.raises(KeyError):
            await SceneManager().enter(self._ctx(dp), "missing")

    @pytest.mark.asyncio
    async def test_session_navigation(self) -> None:
        dp = Dispatcher(FakeClient())
        scenes = SceneManager()
        scenes.register_wizard("w", [lambda c, s: None] * 3)
        ctx = self._ctx(dp)

        session = await scenes.enter(ctx, "w")
        await session.next()
        await session.next()
        await session.back()
        assert await scenes.current(ctx) == SceneState("w", 1)
        await session.goto(-4)
        assert session.step == 0
        await session.leave()
        assert await ctx.get_state() is None

    @pytest.mark.asyncio
    async def test_plain_scene_handles_every_update(self) -> None:
        dp = Dispatcher(FakeClient())
        scenes = SceneManager()
        seen = []
        scenes.register_scene("echo", lambda ctx, s: seen.append(ctx.message_text()))
        scenes.mount(dp)
        await dp.set_state("chat1", encode_scene_state("echo", 0))

        await dp.handle_update(make_message_update("one"))
        await dp.handle_update(make_message_update("two"))
        assert seen == ["one", "two"]

    def test_mount_idempotent(self) -> None:
        scenes = SceneManager()
        router = DispatchRouter()
        scenes.mount(router)
        scenes.mount(router)
        assert len(router._handlers) == 1

    def test_mount_tracks_targets_not_ids(self) -> None:
        scenes = SceneManager()
        router = DispatchRouter()
        scenes.mount(router)
        del router
        gc.collect()
        assert len(scenes._mounted) == 0

        for _ in range(5):
            fresh = DispatchRouter()
            scenes.mount(fresh)
            assert len(fresh._handlers) == 1
