"""Domain models for tool call results."""

from .models import ToolCallResult, ToolResultKind

__all__ = ["ToolCallResult", "ToolResultKind"]
