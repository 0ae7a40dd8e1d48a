"""Named groups of FSM states sharing a prefix.

Example::

    Signup = StateGroup("signup", ["name", "age"])
    Signup.states["name"]          # "signup:name"
    Signup.has("signup:age")       # True
"""

from __future__ import annotations

from typing import Iterable, Mapping, Optional


class StateGroup:
    """A prefix plus a fixed set of ``prefix:name`` state strings."""

    def __init__(self, prefix: str, names: Iterable[str]) -> None:
        normalized_prefix = prefix.strip().lower()
        if not normalized_prefix:
            raise ValueError("state group prefix is required")

        states: dict[str, str] = {}
        for raw_name in names:
            name = raw_name.strip().lower()
            if not name:
                raise ValueError("state name must be non-empty")
            states[raw_name] = f"{normalized_prefix}:{name}"
        if not states:
            raise ValueError("state group must have at least one state name")

        self.prefix = normalized_prefix
        self._states = states
        self._values = frozenset(states.values())

    @property
    def states(self) -> Mapping[str, str]:
        return dict(self._states)

    def state(self, name: str) -> str:
        """Return the full state string for *name* (``KeyError`` if unknown)."""
        return self._states[name]

    def has(self, value: Optional[str]) -> bool:
        """True if *value* is one of this group's states."""
        return bool(value) and value in self._values

    def is_state(self, value: Optional[str], name: str) -> bool:
        return bool(value) and value == self._states.get(name)

    def __contains__(self, value: object) -> bool:
        return isinstance(value, str) and self.has(value)

    def __repr__(self) -> str:
        return f"StateGroup({self.prefix!r}, {list(self._states)!r})"
