"""Streaming session coordinator.

Drives one chat request from validation to a persisted assistant turn:

    IDLE -> LOCK_ACQUIRED -> HISTORY_APPENDED -> STREAMING -> FINISHING -> RELEASED

open() does everything that can be refused with an HTTP status (validation,
model configuration, the session lock, the version-checked user append).
ChatTurn.stream() then runs the model/tool loop and yields SSE-encoded bytes.
Each encoded frame is also decoded back into a TurnAccumulator, and the
persisted turn is rebuilt from that decoded view so it matches exactly what
the client received.
"""

from __future__ import annotations

import asyncio
import json
import uuid
from collections.abc import AsyncIterator, Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from taskpilot.batch.pipeline import BatchPipeline
from taskpilot.config.schema import Config
from taskpilot.config.secrets import fetch_secret
from taskpilot.core.llm.litellm_provider import create_provider
from taskpilot.core.llm.provider import FrameType, LLMProvider, Role, ToolCallRequest
from taskpilot.core.llm.provider import Message as LLMMessage
from taskpilot.core.llm.providers import provider_for_model
from taskpilot.core.llm.retry import ExponentialBackoff, with_retry
from taskpilot.errors import (
    ConfigurationError,
    HistoryConflictError,
    RequestValidationError,
    SessionLockedError,
    TaskpilotError,
    classify_provider_error,
)
from taskpilot.logging import get_logger
from taskpilot.modes.controller import ModeController
from taskpilot.modes.registry import ModeRegistry
from taskpilot.modes.schema import Mode
from taskpilot.orchestration.events import LoggingEventSink
from taskpilot.orchestration.orchestrator import OrchestrationContext, StateOrchestrator
from taskpilot.services.base import WorkspaceService
from taskpilot.services.local import LocalWorkspaceService
from taskpilot.session.locks import LockLease
from taskpilot.session.model import Message, MessageRole, ToolCallRecord, ToolResultRecord
from taskpilot.session.protocols import ConversationStore
from taskpilot.session.reconstruction import (
    build_assistant_message,
    collect_tool_records,
    history_to_llm_messages,
)
from taskpilot.session.storage import SESSION_ID_RE
from taskpilot.session.stream import DONE, TurnAccumulator, encode_frame
from taskpilot.tools.base import ToolContext, ToolRegistry, ToolResult
from taskpilot.tools.builtin import create_default_registry
from taskpilot.tools.repetition import ToolRepetitionGuard

log = get_logger("session")

DEFAULT_MAX_TOKENS = 4096


class TurnState(Enum):
    IDLE = "idle"
    LOCK_ACQUIRED = "lock_acquired"
    HISTORY_APPENDED = "history_appended"
    STREAMING = "streaming"
    FINISHING = "finishing"
    RELEASED = "released"


@dataclass
class ChatRequest:
    """A chat request as the coordinator sees it."""

    request_id: str
    session_id: str | None = None
    messages: list[dict[str, Any]] = field(default_factory=list)
    latest_user_message: str | None = None
    history_version: int | None = None

    def user_text(self) -> str:
        """Text of the user message to answer; empty if there is none."""
        if self.latest_user_message and self.latest_user_message.strip():
            return self.latest_user_message.strip()
        for message in reversed(self.messages):
            if message.get("role") == "user":
                return _message_text(message).strip()
        return ""


def _message_text(message: Mapping[str, Any]) -> str:
    content = message.get("content")
    if isinstance(content, str):
        return content
    parts = content if isinstance(content, list) else message.get("parts")
    if isinstance(parts, list):
        return "".join(
            p.get("text", "") for p in parts if isinstance(p, Mapping) and p.get("type") == "text"
        )
    text = message.get("text")
    return text if isinstance(text, str) else ""


@dataclass(frozen=True)
class ModelSettings:
    model: str
    api_key: str | None = None
    api_base: str | None = None
    provider: str | None = None


ProviderFactory = Callable[[ModelSettings], LLMProvider]


def default_provider_factory(settings: ModelSettings) -> LLMProvider:
    return create_provider(settings.model, api_key=settings.api_key, api_base=settings.api_base)


def resolve_model_settings(
    config: Config,
    mode: Mode | None = None,
    *,
    secret_lookup: Callable[[str], str | None] = fetch_secret,
) -> ModelSettings:
    """Pick the model and credential for a turn.

    Raises:
        ConfigurationError: no model is configured, the configured provider is
            unknown, or the provider's API key is not available.
    """
    model = (mode.model if mode is not None and mode.model else None) or config.llm.model
    if not model:
        raise ConfigurationError("No model configured")

    provider = provider_for_model(model, config.llm.provider)
    if config.llm.provider and provider is None:
        raise ConfigurationError(f"Unknown provider: {config.llm.provider}")

    api_key = None
    if provider is not None and provider.env_var is not None:
        api_key = secret_lookup(provider.env_var)
        if not api_key:
            raise ConfigurationError(f"{provider.env_var} is not set for model {model}")

    return ModelSettings(
        model=model,
        api_key=api_key,
        api_base=config.llm.api_base,
        provider=provider.name if provider else None,
    )


def mode_system_message(mode: Mode) -> LLMMessage:
    text = (
        "You are a task and calendar assistant. "
        f"Current mode: {mode.name} ({mode.description})."
    )
    if mode.prompt:
        text = f"{text}\n{mode.prompt}"
    return LLMMessage(role=Role.SYSTEM, content=text)


def _error_frame(error: TaskpilotError) -> dict[str, Any]:
    return {
        "type": "error",
        "error": error.kind.value,
        "message": error.user_message,
        "retryable": error.retryable,
    }


def _add_usage(total: dict[str, int], usage: Mapping[str, int]) -> None:
    for key, value in usage.items():
        total[key] = total.get(key, 0) + int(value or 0)


@dataclass
class TurnOutcome:
    """Summary of a finished (or aborted) turn."""

    session_id: str
    request_id: str
    text: str = ""
    tool_calls: list[ToolCallRecord] = field(default_factory=list)
    tool_results: list[ToolResultRecord] = field(default_factory=list)
    finish_reason: str | None = None
    steps: int = 0
    usage: dict[str, int] = field(default_factory=dict)
    persisted: bool = False
    version: int | None = None
    error: dict[str, Any] | None = None


class SessionCoordinator:
    """Entry point for chat requests against a conversation store."""

    def __init__(
        self,
        config: Config,
        store: ConversationStore,
        *,
        modes: ModeRegistry | None = None,
        tools: ToolRegistry | None = None,
        service: WorkspaceService | None = None,
        provider_factory: ProviderFactory = default_provider_factory,
        secret_lookup: Callable[[str], str | None] = fetch_secret,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.config = config
        self.store = store
        self.modes = modes or ModeRegistry.from_config(config.session.modes)
        self.tools = tools or create_default_registry()
        self.controller = ModeController(
            self.modes, store, default_mode=config.session.default_mode
        )
        self.service = service or LocalWorkspaceService()
        self.pipeline = BatchPipeline(self.service, max_commands=config.tools.batch_max_commands)
        self.orchestrator = StateOrchestrator(
            store=store,
            controller=self.controller,
            service=self.service,
            pipeline=self.pipeline,
            sink=LoggingEventSink(),
        )
        self.backoff = ExponentialBackoff(
            max_retries=config.llm.max_retries, base_delay=config.llm.retry_base_delay
        )
        self._provider_factory = provider_factory
        self._secret_lookup = secret_lookup
        self.sleep = sleep

    async def open(self, request: ChatRequest) -> ChatTurn:
        """Validate a request, take the session lock and append the user message.

        Raises:
            RequestValidationError: missing request id or user text, bad session id.
            ConfigurationError: no usable model or credential.
            SessionLockedError: another request holds the session.
            HistoryConflictError: the caller's history version is stale.
        """
        request_id = (request.request_id or "").strip()
        if not request_id:
            raise RequestValidationError("requestId is required")
        text = request.user_text()
        if not text:
            raise RequestValidationError("No user message in request")
        if request.session_id and not SESSION_ID_RE.fullmatch(request.session_id):
            raise RequestValidationError(f"Invalid session id: {request.session_id!r}")

        session_id = request.session_id
        mode_name = (
            await self.controller.resolve_mode(session_id)
            if session_id
            else self.controller.default_mode
        )
        settings = resolve_model_settings(
            self.config, self.modes.get_mode(mode_name), secret_lookup=self._secret_lookup
        )
        provider = self._provider_factory(settings)

        lease: LockLease | None = None
        if session_id:
            lock = await self.store.acquire_lock(session_id, request_id, self.config.session.lock_ttl)
            if not lock.acquired:
                log.info(
                    "Session %s busy: held by %s until %.0f",
                    session_id,
                    lock.owner_request_id,
                    lock.expires_at,
                )
                raise SessionLockedError(lock.owner_request_id, lock.expires_at)
            lease = LockLease(self.store, session_id, request_id)
            log.debug("Lock %s on %s for %s", lock.status.value, session_id, request_id)
        else:
            session_id = uuid.uuid4().hex
            log.debug("New session %s for %s", session_id, request_id)

        try:
            appended = await self.store.append_user_message(
                session_id,
                Message(role=MessageRole.USER, text=text, metadata={"requestId": request_id}),
                request.history_version,
                default_mode=self.controller.default_mode,
            )
        except BaseException:
            if lease is not None:
                await lease.release()
            raise
        if not appended.ok:
            if lease is not None:
                await lease.release()
            raise HistoryConflictError(appended.version)

        return ChatTurn(
            self,
            request_id=request_id,
            session_id=session_id,
            provider=provider,
            lease=lease,
            version=appended.version,
        )

    async def handle(self, request: ChatRequest) -> TurnOutcome:
        """Run a whole turn without a client attached."""
        turn = await self.open(request)
        async for _ in turn.stream():
            pass
        return turn.outcome


class ChatTurn:
    """One in-flight assistant turn. The session lock is released exactly once."""

    def __init__(
        self,
        coordinator: SessionCoordinator,
        *,
        request_id: str,
        session_id: str,
        provider: LLMProvider,
        lease: LockLease | None,
        version: int,
    ) -> None:
        self._coordinator = coordinator
        self.request_id = request_id
        self.session_id = session_id
        self._provider = provider
        self._lease = lease
        self._closed = False
        self.state = TurnState.HISTORY_APPENDED
        self.accumulator = TurnAccumulator()
        self.outcome = TurnOutcome(session_id=session_id, request_id=request_id, version=version)

    @property
    def closed(self) -> bool:
        return self._closed

    def _emit(self, frame: dict[str, Any]) -> bytes:
        chunk = encode_frame(frame)
        self.accumulator.feed(chunk)
        return chunk

    async def stream(self) -> AsyncIterator[bytes]:
        """Yield the turn as SSE bytes, ending with the [DONE] marker."""
        try:
            try:
                async for frame in self._run():
                    yield self._emit(frame)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                log.exception("Turn %s on %s failed", self.request_id, self.session_id)
                error = e if isinstance(e, TaskpilotError) else TaskpilotError(str(e))
                self.outcome.error = error.to_payload()
                yield self._emit(_error_frame(error))
            self.accumulator.feed(DONE)
            self.accumulator.close()
            yield DONE
        finally:
            await self.close()

    async def close(self) -> None:
        """Release the session lock. Safe to call any number of times."""
        if self._closed:
            return
        self._closed = True
        if self._lease is not None:
            await self._lease.release()
        self.state = TurnState.RELEASED

    async def _run(self) -> AsyncIterator[dict[str, Any]]:
        c = self._coordinator
        store = c.store
        self.state = TurnState.STREAMING

        base_version = await store.begin_assistant_turn(self.session_id, self.request_id)
        yield {
            "type": "start",
            "sessionId": self.session_id,
            "requestId": self.request_id,
            "version": base_version,
        }

        mode_name = await c.controller.resolve_mode(self.session_id)
        history, _ = await store.get_history(self.session_id)
        conversation = history_to_llm_messages(history, window=c.config.session.history_window)
        guard = ToolRepetitionGuard(c.config.tools.repetition_limit)
        max_tokens = c.config.llm.max_tokens or DEFAULT_MAX_TOKENS
        steps: list[dict[str, Any]] = []
        usage: dict[str, int] = {}
        finish_reason: str | None = None

        for step_index in range(max(1, c.config.llm.max_steps)):
            mode = c.modes.get_mode(mode_name)
            assert mode is not None  # resolve_mode only returns registered modes
            allowed = c.modes.filter_tools(mode_name, c.tools.tools())
            transition = await c.controller.take_transition_message(self.session_id)
            if transition is not None:
                conversation.append(transition)

            messages = [mode_system_message(mode), *conversation]
            definitions = c.tools.definitions(allowed)
            step_text: list[str] = []
            streamed_calls: list[ToolCallRequest] = []
            calls: list[ToolCallRequest] = []
            try:
                frames = await with_retry(
                    lambda: self._provider.stream(
                        messages,
                        tools=definitions or None,
                        temperature=mode.temperature,
                        max_tokens=max_tokens,
                    ),
                    c.backoff,
                    sleep=c.sleep,
                )
                async for frame in frames:
                    if frame.type is FrameType.TEXT_DELTA and frame.text:
                        step_text.append(frame.text)
                        yield {"type": "text-delta", "delta": frame.text}
                    elif frame.type is FrameType.TOOL_CALL and frame.tool_call is not None:
                        streamed_calls.append(frame.tool_call)
                    elif frame.type is FrameType.FINISH:
                        calls = list(frame.tool_calls) or streamed_calls
                        finish_reason = frame.finish_reason
                        _add_usage(usage, frame.usage)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                error = e if isinstance(e, TaskpilotError) else classify_provider_error(e)
                log.warning("Provider failed for %s: %s", self.request_id, e)
                self.outcome.error = error.to_payload()
                self.outcome.steps = len(steps)
                await self._discard_draft()
                yield _error_frame(error)
                return

            calls = calls or streamed_calls
            text = "".join(step_text)
            conversation.append(
                LLMMessage(role=Role.ASSISTANT, content=text or None, tool_calls=tuple(calls))
            )
            step = {"stepIndex": step_index, "text": text, "toolCalls": [], "toolResults": []}
            steps.append(step)
            if not calls:
                break

            async for frame in self._run_tools(calls, mode_name, allowed, guard, conversation, step):
                yield frame

            new_mode = await c.controller.resolve_mode(self.session_id)
            if new_mode != mode_name:
                yield {"type": "mode-switch", "from": mode_name, "to": new_mode}
                mode_name = new_mode
            await self._checkpoint()
        else:
            log.info("Turn %s hit the step limit (%d)", self.request_id, len(steps))
            finish_reason = "max_steps"

        self.state = TurnState.FINISHING
        yield {
            "type": "finish",
            "finishReason": finish_reason or "stop",
            "toolCalls": [call for s in steps for call in s["toolCalls"]],
            "toolResults": [result for s in steps for result in s["toolResults"]],
            "steps": steps,
            "usage": usage,
        }

        self.outcome.finish_reason = finish_reason or "stop"
        self.outcome.steps = len(steps)
        self.outcome.usage = usage
        async for frame in self._persist(base_version, mode_name):
            yield frame

    async def _run_tools(
        self,
        calls: list[ToolCallRequest],
        mode_name: str,
        allowed: Mapping[str, Any],
        guard: ToolRepetitionGuard,
        conversation: list[LLMMessage],
        step: dict[str, Any],
    ) -> AsyncIterator[dict[str, Any]]:
        c = self._coordinator
        outputs: dict[int, dict[str, Any]] = {}
        executed: list[tuple[int, ToolResult]] = []

        for index, call in enumerate(calls):
            yield {
                "type": "tool-call",
                "toolCallId": call.id,
                "toolName": call.name,
                "input": call.arguments,
            }
            step["toolCalls"].append(
                {"toolCallId": call.id, "toolName": call.name, "args": call.arguments}
            )

            check = guard.check(call.name, call.arguments)
            if not check.allow_execution:
                log.warning("Repeated tool call denied: %s", call.name)
                outputs[index] = {"success": False, "error": check.message}
                continue
            if call.name not in allowed:
                log.info("Tool %s not permitted in %s mode", call.name, mode_name)
                outputs[index] = {
                    "success": False,
                    "error": f"Tool '{call.name}' is not available in {mode_name} mode.",
                }
                continue

            ctx = ToolContext(
                session_id=self.session_id,
                request_id=self.request_id,
                call_id=call.id,
                mode=mode_name,
            )
            executed.append((index, await c.tools.execute(call.name, call.arguments, ctx)))

        if executed:
            orchestration = await c.orchestrator.orchestrate(
                [result for _, result in executed],
                OrchestrationContext(session_id=self.session_id, request_id=self.request_id),
                tool_names=[calls[index].name for index, _ in executed],
            )
            for position, (index, _) in enumerate(executed):
                outputs[index] = orchestration.tool_output(position)

        for index, call in enumerate(calls):
            output = outputs[index]
            yield {
                "type": "tool-result",
                "toolCallId": call.id,
                "toolName": call.name,
                "output": output,
            }
            step["toolResults"].append(
                {"toolCallId": call.id, "toolName": call.name, "output": output}
            )
            conversation.append(
                LLMMessage(
                    role=Role.TOOL,
                    content=json.dumps(output, ensure_ascii=False, default=str),
                    tool_call_id=call.id,
                    name=call.name,
                )
            )

    def _assistant_message(self, mode_name: str) -> Message:
        acc = self.accumulator
        calls, results = collect_tool_records(acc.finish or {})
        return build_assistant_message(
            acc.text,
            [*acc.tool_calls, *calls],
            [*acc.tool_results, *results],
            metadata={"mode": mode_name, "requestId": self.request_id},
        )

    async def _checkpoint(self) -> None:
        """Save the draft turn so far; a failure only costs the draft."""
        draft = self._assistant_message("")
        try:
            await self._coordinator.store.update_assistant_turn(
                self.session_id,
                self.request_id,
                text=self.accumulator.text,
                tool_calls=draft.tool_calls,
                tool_results=draft.tool_results,
                tool_states=draft.metadata.get("toolStates"),
            )
        except TaskpilotError as e:
            log.warning("Could not save draft turn for %s: %s", self.request_id, e)

    async def _discard_draft(self) -> None:
        try:
            await self._coordinator.store.discard_assistant_turn(self.session_id, self.request_id)
        except TaskpilotError as e:
            log.warning("Could not discard draft turn for %s: %s", self.request_id, e)

    async def _persist(self, base_version: int, mode_name: str) -> AsyncIterator[dict[str, Any]]:
        message = self._assistant_message(mode_name)
        self.outcome.text = message.text or ""
        self.outcome.tool_calls = message.tool_calls
        self.outcome.tool_results = message.tool_results

        try:
            result = await self._coordinator.store.finish_assistant_turn(
                self.session_id, self.request_id, message, base_version
            )
        except TaskpilotError as e:
            log.error("Failed to persist turn %s on %s: %s", self.request_id, self.session_id, e)
            yield {"type": "persistence", "status": "unpersisted", "reason": "error"}
            return

        self.outcome.version = result.version
        if result.ok:
            self.outcome.persisted = True
            yield {"type": "persistence", "status": "persisted", "version": result.version}
        else:
            log.warning(
                "History conflict finishing %s on %s: expected %d, current %d",
                self.request_id,
                self.session_id,
                base_version,
                result.version,
            )
            yield {
                "type": "persistence",
                "status": "unpersisted",
                "reason": "history_conflict",
                "version": result.version,
            }
