"""LLM provider protocol and base types."""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol, runtime_checkable


class Role(Enum):
    """Message role in a conversation."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


@dataclass(frozen=True, slots=True)
class ToolCallRequest:
    """A function call requested by the model."""

    id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class Message:
    """A message in an LLM conversation.

    Attributes:
        role: The role (system, user, assistant, tool)
        content: Text content; may be None for assistant messages that only call tools
        tool_calls: Calls requested by an assistant message
        tool_call_id: For tool messages, the call this message answers
        name: For tool messages, the tool name
    """

    role: Role
    content: str | None = None
    tool_calls: tuple[ToolCallRequest, ...] = ()
    tool_call_id: str | None = None
    name: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Render in the OpenAI chat format litellm accepts."""
        data: dict[str, Any] = {"role": self.role.value, "content": self.content}
        if self.tool_calls:
            data["tool_calls"] = [
                {
                    "id": call.id,
                    "type": "function",
                    "function": {"name": call.name, "arguments": json.dumps(call.arguments)},
                }
                for call in self.tool_calls
            ]
        if self.tool_call_id is not None:
            data["tool_call_id"] = self.tool_call_id
        if self.name is not None and self.role is Role.TOOL:
            data["name"] = self.name
        return data


class FrameType(Enum):
    """Kinds of frames a provider stream yields."""

    TEXT_DELTA = "text-delta"
    TOOL_CALL = "tool-call"
    FINISH = "finish"


@dataclass(slots=True)
class StreamFrame:
    """One frame from a streaming completion.

    A stream yields any number of TEXT_DELTA frames, one TOOL_CALL frame per
    completed tool call, then exactly one FINISH frame carrying the aggregated
    tool calls and token usage.
    """

    type: FrameType
    text: str = ""
    tool_call: ToolCallRequest | None = None
    tool_calls: list[ToolCallRequest] = field(default_factory=list)
    finish_reason: str | None = None
    usage: dict[str, int] = field(default_factory=dict)


@runtime_checkable
class LLMProvider(Protocol):
    """Protocol for streaming LLM providers."""

    @property
    def model(self) -> str:
        """The model identifier being used."""
        ...

    async def stream(
        self,
        messages: list[Message],
        *,
        tools: list[dict[str, Any]] | None = None,
        temperature: float | None = None,
        max_tokens: int = 4096,
    ) -> AsyncIterator[StreamFrame]:
        """Open a streaming completion.

        Awaiting this opens the connection, so transport and auth errors
        surface here rather than on the first frame.

        Returns:
            An async iterator of StreamFrame objects
        """
        ...
