"""Policy helpers for position sizing."""

from .sizing import SizingDecision, size_option_position  # noqa: F401

__all__ = ["SizingDecision", "size_option_position"]
