"""Exception types shared across tensornets."""

from __future__ import annotations


class ShapeMismatchError(ValueError):
    """Raised when tensor shapes violate an operation's contract."""


class DeserialisationError(ValueError):
    """Raised when a persisted model or layer record cannot be restored."""


__all__ = ["ShapeMismatchError", "DeserialisationError"]
