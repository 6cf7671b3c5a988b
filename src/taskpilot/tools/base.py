"""Pure tool layer.

A pure tool computes a result from its validated arguments and never touches
storage or external services itself. Anything that must change (or read)
state is described as a SideEffect for the orchestrator to carry out.
"""

from __future__ import annotations

import uuid
from abc import ABC, abstractmethod
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict, ValidationError

from taskpilot.errors import client_error_message
from taskpilot.logging import get_logger
from taskpilot.session.model import utc_now

log = get_logger("tools")


class SideEffectKind(Enum):
    MUTATION = "mutation"
    QUERY = "query"
    EXTERNAL_CALL = "external_call"


class Priority(Enum):
    HIGH = "high"
    NORMAL = "normal"
    LOW = "low"


@dataclass(frozen=True)
class SideEffect:
    """A state change or read a tool asks the orchestrator to perform.

    depends_on lists ids of other side effects; it is recorded but ordering
    only follows priority and kind.
    """

    kind: SideEffectKind
    operation: str
    args: dict[str, Any] = field(default_factory=dict)
    priority: Priority = Priority.NORMAL
    depends_on: tuple[str, ...] = ()
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:8])


@dataclass
class ToolResult:
    """What a pure tool hands back."""

    success: bool
    data: Any = None
    metadata: dict[str, Any] = field(default_factory=dict)
    side_effects: list[SideEffect] = field(default_factory=list)
    error: str | None = None

    @classmethod
    def fail(cls, error: str, **metadata: Any) -> ToolResult:
        return cls(success=False, error=error, metadata=metadata)


@dataclass(frozen=True)
class ToolContext:
    """Identifies the call a tool runs for. Tools get no store or service handles."""

    session_id: str
    request_id: str
    call_id: str
    mode: str
    now: datetime = field(default_factory=utc_now)


class ToolInput(BaseModel):
    """Base for tool argument models; accepts field names and camelCase aliases."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class EmptyInput(ToolInput):
    pass


class PureTool(ABC):
    """A side-effect-free tool."""

    id: ClassVar[str]
    description: ClassVar[str]
    input_model: ClassVar[type[ToolInput]] = EmptyInput

    @abstractmethod
    async def run(self, args: Any, ctx: ToolContext) -> ToolResult:
        """Compute the tool result from validated args."""

    def definition(self) -> dict[str, Any]:
        """Function-tool schema in the format litellm accepts."""
        schema = self.input_model.model_json_schema(by_alias=True)
        schema.pop("title", None)
        return {
            "type": "function",
            "function": {
                "name": self.id,
                "description": self.description,
                "parameters": schema,
            },
        }


def _format_validation_error(error: ValidationError) -> str:
    parts = []
    for issue in error.errors():
        location = ".".join(str(p) for p in issue.get("loc", ())) or "arguments"
        parts.append(f"{location}: {issue.get('msg', 'invalid')}")
    return "; ".join(parts)


class ToolRegistry:
    """Holds pure tools and runs them with validation."""

    def __init__(self, tools: Iterable[PureTool] = ()) -> None:
        self._tools: dict[str, PureTool] = {}
        for tool in tools:
            self.register(tool)

    def register(self, tool: PureTool) -> None:
        self._tools[tool.id] = tool

    def get(self, tool_id: str) -> PureTool | None:
        return self._tools.get(tool_id)

    def names(self) -> list[str]:
        return list(self._tools)

    def tools(self) -> dict[str, PureTool]:
        return dict(self._tools)

    def definitions(self, names: Iterable[str] | None = None) -> list[dict[str, Any]]:
        selected = self._tools.keys() if names is None else names
        return [self._tools[n].definition() for n in selected if n in self._tools]

    async def execute(self, tool_id: str, args: dict[str, Any] | None, ctx: ToolContext) -> ToolResult:
        """Validate arguments and run a tool.

        Never raises for tool problems: unknown tools, invalid arguments and
        exceptions inside tool logic all come back as failed results.
        """
        tool = self._tools.get(tool_id)
        if tool is None:
            return ToolResult.fail(f"Unknown tool: {tool_id}")

        try:
            parsed = tool.input_model.model_validate(args or {})
        except ValidationError as e:
            log.info("Invalid arguments for %s: %s", tool_id, e)
            return ToolResult.fail(f"Invalid arguments for {tool_id}: {_format_validation_error(e)}")

        try:
            return await tool.run(parsed, ctx)
        except Exception as e:
            log.exception("Tool %s failed", tool_id)
            return ToolResult.fail(f"{tool_id} failed: {client_error_message(e)}")
