"""Shared test utilities for taskpilot tests."""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import AsyncIterator
from typing import Any

from taskpilot.config.schema import Config, LLMConfig
from taskpilot.core.llm.provider import FrameType, Message, StreamFrame, ToolCallRequest
from taskpilot.session.coordinator import SessionCoordinator
from taskpilot.session.stream import StreamDecoder


class FakeClock:
    """Controllable epoch-seconds clock for lock expiry tests."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def tool_call(name: str, args: dict[str, Any] | None = None, call_id: str | None = None) -> ToolCallRequest:
    return ToolCallRequest(id=call_id or f"call_{uuid.uuid4().hex[:6]}", name=name, arguments=args or {})


def text_step(*chunks: str, usage: dict[str, int] | None = None) -> list[StreamFrame]:
    """A model step that only produces text."""
    frames = [StreamFrame(type=FrameType.TEXT_DELTA, text=c) for c in chunks]
    frames.append(
        StreamFrame(
            type=FrameType.FINISH,
            finish_reason="stop",
            usage=usage or {"prompt_tokens": 10, "completion_tokens": 5, "total_tokens": 15},
        )
    )
    return frames


def tool_step(*calls: ToolCallRequest, text: str = "") -> list[StreamFrame]:
    """A model step that calls tools."""
    frames: list[StreamFrame] = []
    if text:
        frames.append(StreamFrame(type=FrameType.TEXT_DELTA, text=text))
    frames.extend(StreamFrame(type=FrameType.TOOL_CALL, tool_call=c) for c in calls)
    frames.append(
        StreamFrame(
            type=FrameType.FINISH,
            tool_calls=list(calls),
            finish_reason="tool_calls",
            usage={"prompt_tokens": 10, "completion_tokens": 5, "total_tokens": 15},
        )
    )
    return frames


class ScriptedProvider:
    """LLMProvider that replays scripted steps, one per stream() call.

    open_errors are raised by successive stream() calls before any step is
    consumed. A BaseException inside a step is raised mid-stream.
    """

    def __init__(
        self,
        steps: list[list[StreamFrame | BaseException]] | None = None,
        *,
        open_errors: list[BaseException] | None = None,
        model: str = "openai/gpt-4o-mini",
    ) -> None:
        self.steps = list(steps or [])
        self.open_errors = list(open_errors or [])
        self._model = model
        self.calls: list[dict[str, Any]] = []

    @property
    def model(self) -> str:
        return self._model

    async def stream(
        self,
        messages: list[Message],
        *,
        tools: list[dict[str, Any]] | None = None,
        temperature: float | None = None,
        max_tokens: int = 4096,
    ) -> AsyncIterator[StreamFrame]:
        self.calls.append(
            {"messages": list(messages), "tools": tools, "temperature": temperature, "max_tokens": max_tokens}
        )
        if self.open_errors:
            raise self.open_errors.pop(0)
        frames = self.steps.pop(0) if self.steps else text_step("ok")
        return _replay(frames)

    def tool_names(self, call_index: int) -> set[str]:
        tools = self.calls[call_index]["tools"] or []
        return {t["function"]["name"] for t in tools}


async def _replay(frames: list[StreamFrame | BaseException]) -> AsyncIterator[StreamFrame]:
    for frame in frames:
        await asyncio.sleep(0)
        if isinstance(frame, BaseException):
            raise frame
        yield frame


class RecordingService:
    """WorkspaceService that records calls and returns canned responses."""

    def __init__(self, responses: dict[str, Any] | None = None) -> None:
        self.responses = dict(responses or {})
        self.calls: list[tuple[str, dict[str, Any]]] = []

    async def execute(self, operation: str, args: dict[str, Any]) -> dict[str, Any]:
        self.calls.append((operation, args))
        response = self.responses.get(operation, {"ok": True})
        if isinstance(response, BaseException):
            raise response
        if callable(response):
            return response(args)
        return response

    def operations(self) -> list[str]:
        return [op for op, _ in self.calls]


async def no_sleep(delay: float) -> None:
    return None


def make_config(**llm: Any) -> Config:
    settings: dict[str, Any] = {"model": "openai/gpt-4o-mini", "max_retries": 2, "retry_base_delay": 0.0}
    settings.update(llm)
    return Config(llm=LLMConfig(**settings))


def make_coordinator(
    provider: ScriptedProvider,
    store: Any,
    *,
    config: Config | None = None,
    service: Any = None,
) -> SessionCoordinator:
    return SessionCoordinator(
        config or make_config(),
        store,
        service=service or RecordingService(),
        provider_factory=lambda settings: provider,
        secret_lookup=lambda name: "test-key",
        sleep=no_sleep,
    )


def decode_sse(body: bytes) -> list[dict[str, Any]]:
    decoder = StreamDecoder()
    frames = decoder.feed(body)
    frames.extend(decoder.flush())
    return frames


def frame_types(frames: list[dict[str, Any]]) -> list[str]:
    return [f["type"] for f in frames]
