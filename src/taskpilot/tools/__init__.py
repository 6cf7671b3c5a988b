"""Pure tools, their registry and the repetition guard.

Built-in tool classes live in taskpilot.tools.builtin.
"""

from taskpilot.tools.base import (
    Priority,
    PureTool,
    SideEffect,
    SideEffectKind,
    ToolContext,
    ToolInput,
    ToolRegistry,
    ToolResult,
)
from taskpilot.tools.repetition import RepetitionCheck, ToolRepetitionGuard

__all__ = [
    "Priority",
    "PureTool",
    "RepetitionCheck",
    "SideEffect",
    "SideEffectKind",
    "ToolContext",
    "ToolInput",
    "ToolRegistry",
    "ToolResult",
    "ToolRepetitionGuard",
]
