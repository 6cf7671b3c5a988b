"""Rebuild a finished assistant turn and replay history to the model.

Tool calls and results can be reported in several places of a turn (the
top-level arrays, each step, and message content parts) and under several
key spellings. Everything is normalised to ToolCallRecord/ToolResultRecord
and deduplicated by call id before the turn is persisted.
"""

from __future__ import annotations

import json
from collections.abc import Iterable, Mapping
from typing import Any

from taskpilot.core.llm.litellm_provider import parse_arguments
from taskpilot.core.llm.provider import Message as LLMMessage
from taskpilot.core.llm.provider import Role, ToolCallRequest
from taskpilot.logging import get_logger
from taskpilot.session.model import Message, MessageRole, ToolCallRecord, ToolResultRecord

log = get_logger("reconstruction")

FALLBACK_TEXT = (
    "I wasn't able to put together a response this time. "
    "Please try rephrasing your request."
)

_NAME_KEYS = ("toolName", "name")
_ID_KEYS = ("toolCallId", "id", "callId")
_ARG_KEYS = ("args", "input", "arguments")
_RESULT_KEYS = ("output", "result", "content")


def _first(data: Mapping[str, Any], keys: Iterable[str]) -> Any:
    for key in keys:
        value = data.get(key)
        if value is not None:
            return value
    return None


def has_meaningful_args(args: Mapping[str, Any] | None) -> bool:
    """True when at least one argument carries a value."""
    if not args:
        return False
    return any(v not in (None, "", [], {}) for v in args.values())


def normalize_tool_call(raw: Mapping[str, Any]) -> ToolCallRecord | None:
    """Normalise one tool-call record; None if it has no call id or name."""
    function = raw.get("function") if isinstance(raw.get("function"), Mapping) else {}
    name = _first(raw, _NAME_KEYS) or function.get("name")
    call_id = _first(raw, _ID_KEYS)
    if not name or not call_id:
        return None
    args = _first(raw, _ARG_KEYS)
    if args is None:
        args = function.get("arguments")
    return ToolCallRecord(tool_call_id=str(call_id), tool_name=str(name), args=parse_arguments(args))


def normalize_tool_result(raw: Mapping[str, Any]) -> ToolResultRecord | None:
    call_id = _first(raw, _ID_KEYS)
    if not call_id:
        return None
    return ToolResultRecord(
        tool_call_id=str(call_id),
        tool_name=str(_first(raw, _NAME_KEYS) or ""),
        result=_first(raw, _RESULT_KEYS),
    )


def collect_tool_records(
    turn: Mapping[str, Any],
) -> tuple[list[dict[str, Any]], list[dict[str, Any]]]:
    """Gather raw tool calls and results from every surface of a turn payload."""
    calls: list[dict[str, Any]] = []
    results: list[dict[str, Any]] = []

    def take(source: Mapping[str, Any]) -> None:
        calls.extend(c for c in source.get("toolCalls") or [] if isinstance(c, Mapping))
        results.extend(r for r in source.get("toolResults") or [] if isinstance(r, Mapping))

    take(turn)
    for step in turn.get("steps") or []:
        if isinstance(step, Mapping):
            take(step)

    response = turn.get("response")
    if isinstance(response, Mapping):
        for message in response.get("messages") or []:
            content = message.get("content") if isinstance(message, Mapping) else None
            if not isinstance(content, list):
                continue
            for part in content:
                if not isinstance(part, Mapping):
                    continue
                if part.get("type") == "tool-call":
                    calls.append(part)
                elif part.get("type") == "tool-result":
                    results.append(part)
    return calls, results


def dedupe_tool_calls(raw_calls: Iterable[Mapping[str, Any]]) -> list[ToolCallRecord]:
    """One record per call id, in first-seen order.

    A later record only fills in an earlier one whose args are empty.
    """
    merged: dict[str, ToolCallRecord] = {}
    for raw in raw_calls:
        call = normalize_tool_call(raw)
        if call is None:
            log.debug("Dropping tool call without id or name: %r", raw)
            continue
        existing = merged.get(call.tool_call_id)
        if existing is None:
            merged[call.tool_call_id] = call
        elif not has_meaningful_args(existing.args) and has_meaningful_args(call.args):
            existing.args = call.args
    return list(merged.values())


def dedupe_tool_results(raw_results: Iterable[Mapping[str, Any]]) -> list[ToolResultRecord]:
    merged: dict[str, ToolResultRecord] = {}
    for raw in raw_results:
        result = normalize_tool_result(raw)
        if result is None:
            continue
        existing = merged.get(result.tool_call_id)
        if existing is None:
            merged[result.tool_call_id] = result
            continue
        if existing.result is None and result.result is not None:
            existing.result = result.result
        if not existing.tool_name and result.tool_name:
            existing.tool_name = result.tool_name
    return list(merged.values())


def _describe_result(result: Any) -> str:
    if isinstance(result, Mapping):
        if result.get("success") is False or result.get("error"):
            return f"failed ({result.get('error') or 'unknown error'})"
        inner = result.get("result")
        if isinstance(inner, Mapping) and isinstance(inner.get("message"), str):
            return inner["message"]
        if isinstance(result.get("message"), str):
            return result["message"]
    return "done"


def summarize_tool_results(results: Iterable[ToolResultRecord]) -> str:
    """Readable summary for a turn that produced tool results but no text."""
    lines = [f"- {r.tool_name or 'tool'}: {_describe_result(r.result)}" for r in results]
    if not lines:
        return ""
    return "Here's what I did:\n" + "\n".join(lines)


def tool_states(
    calls: Iterable[ToolCallRecord], results: Iterable[ToolResultRecord]
) -> dict[str, str]:
    """Map each call id to `completed` when a result answers it, else `running`."""
    answered = {r.tool_call_id for r in results}
    return {
        c.tool_call_id: "completed" if c.tool_call_id in answered else "running" for c in calls
    }


def build_assistant_message(
    text: str,
    raw_calls: Iterable[Mapping[str, Any]],
    raw_results: Iterable[Mapping[str, Any]],
    *,
    metadata: Mapping[str, Any] | None = None,
) -> Message:
    """Assemble the assistant message persisted at the end of a turn."""
    calls = dedupe_tool_calls(raw_calls)
    results = dedupe_tool_results(raw_results)
    final_text = text.strip()
    if not final_text:
        final_text = summarize_tool_results(results) or FALLBACK_TEXT
    meta = dict(metadata or {})
    if calls:
        meta["toolStates"] = tool_states(calls, results)
    return Message(
        role=MessageRole.ASSISTANT,
        text=final_text,
        tool_calls=calls,
        tool_results=results,
        metadata=meta,
    )


def _result_content(result: Any) -> str:
    if isinstance(result, str):
        return result
    return json.dumps(result, ensure_ascii=False, default=str)


def history_to_llm_messages(messages: Iterable[Message], *, window: int | None = None) -> list[LLMMessage]:
    """Replay stored history in chat-completion form.

    Tool calls without a matching result are dropped, as are the results of
    calls that are no longer present.
    """
    history = list(messages)
    if window is not None and window > 0:
        history = history[-window:]

    replay: list[LLMMessage] = []
    for message in history:
        if message.role is MessageRole.USER:
            replay.append(LLMMessage(role=Role.USER, content=message.text or ""))
        elif message.role is MessageRole.SYSTEM:
            replay.append(LLMMessage(role=Role.SYSTEM, content=message.text or ""))
        elif message.role is MessageRole.ASSISTANT:
            replay.extend(_replay_assistant(message))
        # Standalone tool messages only make sense next to their call
    return replay


def _replay_assistant(message: Message) -> list[LLMMessage]:
    results = {r.tool_call_id: r for r in message.tool_results}
    paired = [c for c in message.tool_calls if c.tool_call_id in results]
    dropped = len(message.tool_calls) - len(paired)
    if dropped:
        log.debug("Dropping %d unpaired tool call(s) from replay", dropped)

    replay: list[LLMMessage] = []
    if paired:
        replay.append(
            LLMMessage(
                role=Role.ASSISTANT,
                tool_calls=tuple(
                    ToolCallRequest(id=c.tool_call_id, name=c.tool_name, arguments=c.args)
                    for c in paired
                ),
            )
        )
        for call in paired:
            replay.append(
                LLMMessage(
                    role=Role.TOOL,
                    content=_result_content(results[call.tool_call_id].result),
                    tool_call_id=call.tool_call_id,
                    name=call.tool_name,
                )
            )
    if message.text:
        replay.append(LLMMessage(role=Role.ASSISTANT, content=message.text))
    return replay
