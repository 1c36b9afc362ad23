"""Per-cycle context assembly."""

from autotrader.context.builder import ContextBuilder

__all__ = ["ContextBuilder"]
