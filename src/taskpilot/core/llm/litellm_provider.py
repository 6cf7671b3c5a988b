"""LiteLLM provider implementation.

Supports many LLM providers through litellm:
- OpenAI: "openai/gpt-4o-mini", "gpt-4o"
- Anthropic: "anthropic/claude-sonnet-4-20250514"
- OpenRouter: "openrouter/openai/gpt-4o-mini"
- Local: "ollama/llama3.1"

See https://docs.litellm.ai/docs/providers for full list.
"""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from typing import Any

import litellm

from taskpilot.core.llm.provider import (
    FrameType,
    Message,
    StreamFrame,
    ToolCallRequest,
)
from taskpilot.logging import get_logger

log = get_logger("llm")


def parse_arguments(raw: Any) -> dict[str, Any]:
    """Decode a tool-call argument payload into a dict.

    Providers send arguments as a JSON string; malformed or non-object
    payloads decode to an empty dict.
    """
    if isinstance(raw, dict):
        return raw
    if not raw:
        return {}
    try:
        value = json.loads(raw)
    except (TypeError, ValueError):
        log.warning("Discarding malformed tool arguments: %r", raw)
        return {}
    return value if isinstance(value, dict) else {}


class LiteLLMProvider:
    """LLM provider using litellm for multi-provider support.

    Usage:
        provider = LiteLLMProvider("openai/gpt-4o-mini", api_key="sk-...")

        # With custom base URL
        provider = LiteLLMProvider("gpt-4", api_base="http://localhost:8000/v1")
    """

    def __init__(
        self,
        model: str,
        *,
        api_key: str | None = None,
        api_base: str | None = None,
        **kwargs: Any,
    ) -> None:
        self._model = model
        self._api_key = api_key
        self._api_base = api_base
        self._kwargs = kwargs

    @property
    def model(self) -> str:
        return self._model

    def _build_kwargs(
        self,
        messages: list[Message],
        *,
        tools: list[dict[str, Any]] | None,
        temperature: float | None,
        max_tokens: int,
    ) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "model": self._model,
            "messages": [m.to_dict() for m in messages],
            "max_tokens": max_tokens,
            "stream": True,
            "stream_options": {"include_usage": True},
            **self._kwargs,
        }
        if tools:
            kwargs["tools"] = tools
        if temperature is not None:
            kwargs["temperature"] = temperature
        if self._api_key:
            kwargs["api_key"] = self._api_key
        if self._api_base:
            kwargs["api_base"] = self._api_base
        return kwargs

    async def stream(
        self,
        messages: list[Message],
        *,
        tools: list[dict[str, Any]] | None = None,
        temperature: float | None = None,
        max_tokens: int = 4096,
    ) -> AsyncIterator[StreamFrame]:
        """Open a streaming completion.

        Raises the raw litellm exception if the request cannot be opened;
        callers classify it.
        """
        kwargs = self._build_kwargs(
            messages, tools=tools, temperature=temperature, max_tokens=max_tokens
        )
        response = await litellm.acompletion(**kwargs)
        return self._frames(response)

    async def _frames(self, response: Any) -> AsyncIterator[StreamFrame]:
        # Tool calls arrive as fragments keyed by index
        partial: dict[int, dict[str, Any]] = {}
        finish_reason: str | None = None
        usage: dict[str, int] = {}

        async for chunk in response:
            chunk_usage = getattr(chunk, "usage", None)
            if chunk_usage:
                usage = {
                    "prompt_tokens": getattr(chunk_usage, "prompt_tokens", 0) or 0,
                    "completion_tokens": getattr(chunk_usage, "completion_tokens", 0) or 0,
                    "total_tokens": getattr(chunk_usage, "total_tokens", 0) or 0,
                }

            if not chunk.choices:
                continue
            choice = chunk.choices[0]
            delta = choice.delta

            if delta is not None:
                if delta.content:
                    yield StreamFrame(type=FrameType.TEXT_DELTA, text=delta.content)
                for fragment in getattr(delta, "tool_calls", None) or []:
                    slot = partial.setdefault(
                        fragment.index or 0, {"id": None, "name": "", "arguments": ""}
                    )
                    if fragment.id:
                        slot["id"] = fragment.id
                    function = fragment.function
                    if function is not None:
                        if function.name:
                            slot["name"] += function.name
                        if function.arguments:
                            slot["arguments"] += function.arguments

            if choice.finish_reason:
                finish_reason = choice.finish_reason

        calls = [
            ToolCallRequest(
                id=slot["id"] or f"call_{index}",
                name=slot["name"],
                arguments=parse_arguments(slot["arguments"]),
            )
            for index, slot in sorted(partial.items())
            if slot["name"]
        ]
        for call in calls:
            yield StreamFrame(type=FrameType.TOOL_CALL, tool_call=call)

        yield StreamFrame(
            type=FrameType.FINISH,
            tool_calls=calls,
            finish_reason=finish_reason or ("tool_calls" if calls else "stop"),
            usage=usage,
        )


def create_provider(model: str, **kwargs: Any) -> LiteLLMProvider:
    """Create a litellm-backed provider for a model."""
    return LiteLLMProvider(model, **kwargs)
