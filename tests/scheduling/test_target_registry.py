"""Tests for the target registry."""

import pytest

from cadence.core.errors import UnknownTargetError
from cadence.scheduling.targets import TargetRegistry


def test_register_as_decorator():
    targets = TargetRegistry()

    @targets.register("cleanup")
    def cleanup(ctx):
        """Drop stale sessions.

        Runs nightly.
        """
        return "ok"

    assert targets.get("cleanup") is cleanup
    assert targets.has("cleanup")
    assert targets.describe() == [("cleanup", "Drop stale sessions.")]


def test_register_direct_with_description():
    targets = TargetRegistry()
    targets.register("b", lambda ctx: None, description="second")
    targets.register("a", lambda ctx: None)
    assert targets.names() == ["a", "b"]
    assert len(targets) == 2
    assert dict(targets.describe()) == {"a": None, "b": "second"}


def test_duplicate_rejected():
    targets = TargetRegistry()
    targets.register("a", lambda ctx: None)
    with pytest.raises(ValueError, match="already registered"):
        targets.register("a", lambda ctx: None)


def test_unknown_target():
    with pytest.raises(UnknownTargetError):
        TargetRegistry().get("rm_rf")
