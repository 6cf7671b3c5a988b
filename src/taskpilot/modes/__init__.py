"""Modes: named tool-permission postures and the controller that switches them."""

from taskpilot.modes.controller import ModeController, ModeSwitchResult, transition_text
from taskpilot.modes.registry import ModeRegistry
from taskpilot.modes.schema import BUILT_IN_MODES, DELEGATION_TOOL, Mode, ModeType

__all__ = [
    "BUILT_IN_MODES",
    "DELEGATION_TOOL",
    "Mode",
    "ModeController",
    "ModeRegistry",
    "ModeSwitchResult",
    "ModeType",
    "transition_text",
]
