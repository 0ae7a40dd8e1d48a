"""Scenes and wizards — named, steppable conversations encoded in FSM state.

An active scene is stored as the session state ``__scene:<id>:<step>``.
A plain scene routes every update to one handler; a wizard routes to the
handler at the current step index.

Usage::

    scenes = SceneManager()

    async def ask_name(ctx, scene):
        await ctx.reply("Your name?")
        await scene.next()

    async def save_name(ctx, scene):
        await scene.update_data({"name": ctx.message_text()})
        await scenes.leave(ctx)

    scenes.register_wizard("signup", [ask_name, save_name])
    scenes.mount(dispatcher)

    @dispatcher.message([F.command("signup")])
    async def start_signup(ctx):
        await scenes.enter(ctx, "signup")
"""

from __future__ import annotations

import dataclasses
import weakref
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Sequence, Union

from core.fsm import FSMData
from dispatch import filters
from dispatch.context import Context
from dispatch.router import call_handler

SCENE_STATE_PREFIX = "__scene:"

SceneHandler = Callable[[Context, "SceneSession"], Union[Awaitable[Any], Any]]


@dataclasses.dataclass(frozen=True, slots=True)
class SceneState:
    """Decoded active scene: id and current step."""
    id: str
    step: int


@dataclasses.dataclass(frozen=True, slots=True)
class SceneEnterOptions:
    """How :meth:`SceneManager.enter` prepares the session."""
    step: int = 0
    data: Optional[Mapping[str, Any]] = None
    reset_data: bool = False


@dataclasses.dataclass(frozen=True, slots=True)
class _SceneDefinition:
    kind: str  # "scene" or "wizard"
    handler: Optional[SceneHandler] = None
    steps: tuple = ()
    enter: Optional[SceneHandler] = None
    leave: Optional[SceneHandler] = None


def normalize_scene_id(scene_id: str) -> str:
    return scene_id.strip().lower()


def encode_scene_state(scene_id: str, step: int) -> str:
    return f"{SCENE_STATE_PREFIX}{scene_id}:{max(0, step)}"


def decode_scene_state(raw: Optional[str]) -> Optional[SceneState]:
    """Parse ``__scene:<id>:<step>``; ``None`` for non-scene states.

    A missing or malformed step decodes as 0.
    """
    if not raw or not raw.startswith(SCENE_STATE_PREFIX):
        return None
    scene_id, _, step_raw = raw[len(SCENE_STATE_PREFIX):].partition(":")
    scene_id = normalize_scene_id(scene_id)
    if not scene_id:
        return None
    try:
        step = int(step_raw or "0")
    except ValueError:
        step = 0
    return SceneState(id=scene_id, step=max(0, step))


class SceneSession:
    """Handle given to scene handlers for moving between steps."""

    def __init__(self, ctx: Context, scene_id: str, step: int) -> None:
        self._ctx = ctx
        self.id = scene_id
        self.step = step

    def __repr__(self) -> str:
        return f"<SceneSession {self.id}:{self.step}>"

    async def next(self) -> None:
        await self.goto(self.step + 1)

    async def back(self) -> None:
        await self.goto(self.step - 1)

    async def goto(self, step: int) -> None:
        """Jump to *step* (clamped to 0)."""
        self.step = max(0, step)
        await self._ctx.set_state(encode_scene_state(self.id, self.step))

    async def leave(self) -> None:
        """Clear the session state.  Registered ``leave`` hooks are NOT run."""
        await self._ctx.clear_state()

    async def get_data(self) -> FSMData:
        return await self._ctx.get_data()

    async def set_data(self, data: Mapping[str, Any]) -> None:
        await self._ctx.set_data(data)

    async def update_data(self, patch: Mapping[str, Any]) -> FSMData:
        return await self._ctx.update_data(patch)

    async def clear_data(self) -> None:
        await self._ctx.clear_data()


class SceneManager:
    """Registry of scenes plus the entry/exit/dispatch logic."""

    def __init__(self) -> None:
        self._scenes: Dict[str, _SceneDefinition] = {}
        self._mounted: "weakref.WeakSet[Any]" = weakref.WeakSet()

    def __contains__(self, scene_id: object) -> bool:
        return isinstance(scene_id, str) and normalize_scene_id(scene_id) in self._scenes

    def register_scene(
        self,
        scene_id: str,
        handler: SceneHandler,
        *,
        enter: Optional[SceneHandler] = None,
        leave: Optional[SceneHandler] = None,
    ) -> None:
        """Register a single-handler scene (re-registering replaces it)."""
        key = self._checked_id(scene_id)
        self._scenes[key] = _SceneDefinition(kind="scene", handler=handler, enter=enter, leave=leave)

    def register_wizard(
        self,
        scene_id: str,
        steps: Sequence[SceneHandler],
        *,
        enter: Optional[SceneHandler] = None,
        leave: Optional[SceneHandler] = None,
    ) -> None:
        """Register an ordered list of step handlers."""
        key = self._checked_id(scene_id)
        if not steps:
            raise ValueError("wizard needs at least one step")
        self._scenes[key] = _SceneDefinition(kind="wizard", steps=tuple(steps), enter=enter, leave=leave)

    @staticmethod
    def _checked_id(scene_id: str) -> str:
        key = normalize_scene_id(scene_id)
        if not key or ":" in key:
            raise ValueError(f"invalid scene id: {scene_id!r}")
        return key

    def mount(self, target: Any) -> None:
        """Install the scene catch-all on *target* (router or dispatcher).

        Registers one ``any_first`` handler filtered to scene states, so an
        active scene takes priority over every other handler on *target*.
        Mounting the same target twice is a no-op.
        """
        if target in self._mounted:
            return
        self._mounted.add(target)

        async def scene_entry(ctx: Context) -> None:
            await self.handle(ctx)

        target.any_first([filters.state_starts_with(SCENE_STATE_PREFIX)], scene_entry)

    async def enter(
        self,
        ctx: Context,
        scene_id: str,
        step_or_options: Union[int, SceneEnterOptions, None] = None,
    ) -> SceneSession:
        """Enter *scene_id*, leaving the currently active scene first.

        Raises:
            KeyError: If *scene_id* was never registered.
        """
        key = normalize_scene_id(scene_id)
        target = self._scenes.get(key)
        if target is None:
            raise KeyError(f"scene not found: {key}")
        options = self._enter_options(step_or_options)

        previous = decode_scene_state(await ctx.get_state())
        if previous is not None:
            previous_def = self._scenes.get(previous.id)
            if previous_def is not None and previous_def.leave is not None:
                await call_handler(previous_def.leave, ctx, SceneSession(ctx, previous.id, previous.step))

        if options.reset_data:
            await ctx.clear_data()
        if options.data:
            await ctx.update_data(options.data)

        session = SceneSession(ctx, key, max(0, options.step))
        await ctx.set_state(encode_scene_state(key, session.step))
        if target.enter is not None:
            await call_handler(target.enter, ctx, session)
        return session

    @staticmethod
    def _enter_options(step_or_options: Union[int, SceneEnterOptions, None]) -> SceneEnterOptions:
        if step_or_options is None:
            return SceneEnterOptions()
        if isinstance(step_or_options, SceneEnterOptions):
            return step_or_options
        return SceneEnterOptions(step=max(0, int(step_or_options)))

    async def leave(self, ctx: Context) -> None:
        """Run the active scene's ``leave`` hook and clear the state."""
        current = decode_scene_state(await ctx.get_state())
        if current is None:
            return
        definition = self._scenes.get(current.id)
        if definition is not None and definition.leave is not None:
            await call_handler(definition.leave, ctx, SceneSession(ctx, current.id, current.step))
        await ctx.clear_state()

    async def current(self, ctx: Context) -> Optional[SceneState]:
        return decode_scene_state(await ctx.get_state())

    async def handle(self, ctx: Context) -> bool:
        """Route *ctx* to the active scene.  Returns whether a scene handler ran."""
        current = decode_scene_state(await ctx.get_state())
        if current is None:
            return False

        definition = self._scenes.get(current.id)
        if definition is None:
            await ctx.clear_state()
            return False

        session = SceneSession(ctx, current.id, current.step)
        if definition.kind == "scene":
            await call_handler(definition.handler, ctx, session)
            return True

        if current.step >= len(definition.steps):
            await self.leave(ctx)
            return False
        await call_handler(definition.steps[current.step], ctx, session)
        return True
