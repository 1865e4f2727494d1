"""Target registry — the closed set of functions a schedule may run.

A schedule names its target by string. The string is only ever looked up in
this registry; it is never imported or evaluated, so an operator can pick
among registered targets but cannot run arbitrary code.

Example:
    >>> targets = TargetRegistry()
    >>>
    >>> @targets.register("cleanup_expired_sessions", description="Drop stale sessions")
    ... def cleanup(ctx: TargetContext) -> str:
    ...     return "removed 12 sessions"
    >>>
    >>> targets.get("cleanup_expired_sessions")(ctx)
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from cadence.core.errors import UnknownTargetError

from .models import TargetContext

TargetFunc = Callable[[TargetContext], Any]


class TargetRegistry:
    """Name → target function mapping."""

    def __init__(self) -> None:
        self._targets: dict[str, TargetFunc] = {}
        self._descriptions: dict[str, str | None] = {}

    def register(
        self,
        name: str,
        func: TargetFunc | None = None,
        *,
        description: str | None = None,
    ) -> Any:
        """Register ``func`` under ``name``; usable as a decorator.

        Raises:
            ValueError: If ``name`` is already registered
        """

        def _register(f: TargetFunc) -> TargetFunc:
            if name in self._targets:
                raise ValueError(f"Target already registered: {name}")
            self._targets[name] = f
            self._descriptions[name] = description or (f.__doc__ or "").strip().split("\n")[0] or None
            return f

        if func is not None:
            return _register(func)
        return _register

    def get(self, name: str) -> TargetFunc:
        """Resolve a target.

        Raises:
            UnknownTargetError: If nothing is registered under ``name``
        """
        if name not in self._targets:
            raise UnknownTargetError(name)
        return self._targets[name]

    def has(self, name: str) -> bool:
        return name in self._targets

    def names(self) -> list[str]:
        return sorted(self._targets)

    def describe(self) -> list[tuple[str, str | None]]:
        return [(name, self._descriptions.get(name)) for name in self.names()]

    def __len__(self) -> int:
        return len(self._targets)


__all__ = ["TargetFunc", "TargetRegistry"]
