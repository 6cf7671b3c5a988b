"""Mode definitions.

A mode is a named operating posture for the agent: it decides which tools
the model may see and call, and can override sampling temperature, model and
the prompt text injected when the session enters it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ModeType(Enum):
    """Role a mode plays in the workflow."""

    PRIMARY = "primary"
    INFORMATION_COLLECTOR = "information-collector"
    PLANNING = "planning"
    EXECUTION = "execution"
    CUSTOM = "custom"


# Tool that delegates work to another mode; only primary modes keep it
DELEGATION_TOOL = "task"


@dataclass(frozen=True)
class Mode:
    """A mode definition.

    Attributes:
        name: Unique identifier, restricted to [A-Za-z0-9_-]
        description: One-line summary shown to the model on entry
        type: Workflow role
        tools: Tool name -> allowed. Tools not listed are denied.
        built_in: Built-in modes cannot be replaced
        temperature: Sampling temperature override
        model: Model id override
        prompt: Extra instructions injected on entry
    """

    name: str
    description: str
    type: ModeType
    tools: dict[str, bool] = field(default_factory=dict)
    built_in: bool = False
    temperature: float | None = None
    model: str | None = None
    prompt: str | None = None

    def allows(self, tool_name: str) -> bool:
        return self.tools.get(tool_name) is True

    def permitted_tools(self) -> set[str]:
        return {name for name, allowed in self.tools.items() if allowed}

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "type": self.type.value,
            "tools": dict(self.tools),
            "built_in": self.built_in,
            "temperature": self.temperature,
            "model": self.model,
        }


_READ_TOOLS = {
    "getCurrentTime": True,
    "getTasks": True,
    "listCalendarEvents": True,
    "mentalModelRead": True,
}

_MUTATION_TOOLS = (
    "createTask",
    "updateTask",
    "deleteTask",
    "createBatchTasks",
    "updateBatchTasks",
    "deleteBatchTasks",
    "completeBatchTasks",
    "createProjectWithTasks",
    "createCalendarEvent",
    "updateCalendarEvent",
    "deleteCalendarEvent",
)


def _deny(names: tuple[str, ...]) -> dict[str, bool]:
    return dict.fromkeys(names, False)


BUILT_IN_MODES: dict[str, Mode] = {
    "primary": Mode(
        name="primary",
        description="Orchestrates the conversation and delegates to specialised modes",
        type=ModeType.PRIMARY,
        built_in=True,
        temperature=0.3,
        tools={
            DELEGATION_TOOL: True,
            "switchMode": True,
            "internalTodoWrite": True,
            "internalTodoRead": True,
            "mentalModelEdit": True,
            **_READ_TOOLS,
            **_deny(_MUTATION_TOOLS),
        },
    ),
    "information-collector": Mode(
        name="information-collector",
        description="Gathers the facts a plan needs by reading data and asking the user",
        type=ModeType.INFORMATION_COLLECTOR,
        built_in=True,
        temperature=0.4,
        prompt=(
            "Collect missing information before anything is planned. "
            "Track open questions with the internal todo list."
        ),
        tools={
            DELEGATION_TOOL: False,
            "switchMode": True,
            "internalTodoWrite": True,
            "internalTodoRead": True,
            "mentalModelEdit": True,
            **_READ_TOOLS,
            **_deny(_MUTATION_TOOLS),
        },
    ),
    "planning": Mode(
        name="planning",
        description="Turns collected information into a concrete plan without changing data",
        type=ModeType.PLANNING,
        built_in=True,
        temperature=0.4,
        prompt="Produce a step-by-step plan. Do not create or modify tasks or events.",
        tools={
            DELEGATION_TOOL: False,
            "switchMode": True,
            "internalTodoWrite": False,
            "internalTodoRead": False,
            **_READ_TOOLS,
            **_deny(_MUTATION_TOOLS),
        },
    ),
    "execution": Mode(
        name="execution",
        description="Carries out task and calendar changes; the only mode that mutates data",
        type=ModeType.EXECUTION,
        built_in=True,
        temperature=0.2,
        prompt="Apply the agreed changes precisely. Prefer batch tools for several tasks.",
        tools={
            DELEGATION_TOOL: False,
            "switchMode": True,
            "internalTodoWrite": True,
            "internalTodoRead": True,
            **_READ_TOOLS,
            **dict.fromkeys(_MUTATION_TOOLS, True),
        },
    ),
}

# primary -> information-collector -> planning -> execution -> primary
MODE_CYCLE = ("primary", "information-collector", "planning", "execution")

WORKFLOW_SEQUENCES: dict[str, list[str]] = {
    "complex-planning": ["primary", "information-collector", "planning", "execution"],
    "simple-execution": ["primary", "execution"],
    "information-gathering": ["primary", "information-collector"],
    "strategic-planning": ["primary", "information-collector", "planning"],
}

TASK_MODES: dict[str, str] = {
    "gather-information": "information-collector",
    "create-plan": "planning",
    "execute-task": "execution",
}
