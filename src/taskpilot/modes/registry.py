"""Mode registry: built-in and custom modes, tool filtering."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import TypeVar

from taskpilot.config.schema import SessionModeConfig
from taskpilot.errors import ModeRegistrationError
from taskpilot.logging import get_logger
from taskpilot.modes.schema import (
    BUILT_IN_MODES,
    DELEGATION_TOOL,
    MODE_CYCLE,
    TASK_MODES,
    WORKFLOW_SEQUENCES,
    Mode,
    ModeType,
)

log = get_logger("modes")

T = TypeVar("T")


class ModeRegistry:
    """Registry for mode definitions.

    Starts with the four built-in modes. Custom modes can be added but a
    built-in mode can never be replaced.
    """

    def __init__(self, custom: Iterable[Mode] = ()) -> None:
        self._modes: dict[str, Mode] = dict(BUILT_IN_MODES)
        for mode in custom:
            self.register_mode(mode)

    @classmethod
    def from_config(cls, modes: Iterable[SessionModeConfig]) -> ModeRegistry:
        """Build a registry with the custom modes declared in config."""
        registry = cls()
        for entry in modes:
            try:
                mode_type = ModeType(entry.type)
            except ValueError:
                log.warning("Mode %s has unknown type %r, using custom", entry.name, entry.type)
                mode_type = ModeType.CUSTOM
            registry.register_mode(
                Mode(
                    name=entry.name,
                    description=entry.description,
                    type=mode_type,
                    tools=dict(entry.tools),
                    temperature=entry.temperature,
                    model=entry.model,
                    prompt=entry.prompt,
                )
            )
        return registry

    def get_mode(self, name: str) -> Mode | None:
        mode = self._modes.get(name)
        if mode is None:
            log.info("Mode %s not found", name)
        return mode

    def is_valid_mode(self, name: str) -> bool:
        return name in self._modes

    def list_modes(self) -> list[Mode]:
        return list(self._modes.values())

    def get_modes_by_type(self, mode_type: ModeType) -> list[Mode]:
        return [m for m in self._modes.values() if m.type is mode_type]

    def register_mode(self, mode: Mode) -> None:
        """Register a custom mode.

        Raises:
            ModeRegistrationError: if the name belongs to a built-in mode.
        """
        if mode.name in BUILT_IN_MODES:
            raise ModeRegistrationError(f"Cannot override built-in mode: {mode.name}")
        self._modes[mode.name] = mode
        log.debug("Registered mode %s", mode.name)

    def get_permitted_tools(self, name: str) -> set[str]:
        """Tools explicitly allowed in a mode; empty for unknown modes."""
        mode = self.get_mode(name)
        return mode.permitted_tools() if mode else set()

    def has_tool_permission(self, name: str, tool_name: str) -> bool:
        mode = self._modes.get(name)
        return mode is not None and mode.allows(tool_name)

    def filter_tools(self, name: str, available: Mapping[str, T]) -> dict[str, T]:
        """Restrict a tool mapping to what a mode allows.

        A tool survives only if the mode marks it allowed. The delegation tool
        is dropped for every non-primary mode regardless of the tool map.
        """
        mode = self.get_mode(name)
        if mode is None:
            return {}

        filtered = {tool: value for tool, value in available.items() if mode.allows(tool)}
        if mode.type is not ModeType.PRIMARY:
            filtered.pop(DELEGATION_TOOL, None)
        return filtered

    def get_next_mode(self, current: str) -> str:
        """Next mode in the primary -> collector -> planning -> execution cycle."""
        if current not in MODE_CYCLE:
            return "primary"
        return MODE_CYCLE[(MODE_CYCLE.index(current) + 1) % len(MODE_CYCLE)]

    def get_workflow_sequence(self, task_type: str) -> list[str]:
        return list(WORKFLOW_SEQUENCES.get(task_type, ["primary"]))

    def get_mode_for_task(self, task_type: str) -> str:
        return TASK_MODES.get(task_type, "primary")
