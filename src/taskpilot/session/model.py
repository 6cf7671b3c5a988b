"""Conversation data model.

A session owns an append-only message history guarded by a version counter,
the name of its current mode, an optional TTL lock and the agent's scratch
state (internal todos and mental model). Everything here serializes to plain
dicts so stores can write it as YAML.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class MessageRole(Enum):
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"
    SYSTEM = "system"


@dataclass
class ToolCallRecord:
    """A tool invocation requested by the model."""

    tool_call_id: str
    tool_name: str
    args: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"toolCallId": self.tool_call_id, "toolName": self.tool_name, "args": self.args}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ToolCallRecord:
        return cls(
            tool_call_id=data["toolCallId"],
            tool_name=data["toolName"],
            args=data.get("args") or {},
        )


@dataclass
class ToolResultRecord:
    """The outcome of one tool call, keyed by the call id it answers."""

    tool_call_id: str
    tool_name: str
    result: Any = None

    def to_dict(self) -> dict[str, Any]:
        return {"toolCallId": self.tool_call_id, "toolName": self.tool_name, "result": self.result}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ToolResultRecord:
        return cls(
            tool_call_id=data["toolCallId"],
            tool_name=data.get("toolName", ""),
            result=data.get("result"),
        )


@dataclass
class Message:
    """One entry in a conversation history.

    Assistant turns are stored as a single message holding the text, the
    ordered tool calls and their results. Metadata is opaque to the store
    (mode name, tool states).
    """

    role: MessageRole
    text: str | None = None
    tool_calls: list[ToolCallRecord] = field(default_factory=list)
    tool_results: list[ToolResultRecord] = field(default_factory=list)
    timestamp: datetime = field(default_factory=utc_now)
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "role": self.role.value,
            "text": self.text,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.tool_calls:
            data["toolCalls"] = [c.to_dict() for c in self.tool_calls]
        if self.tool_results:
            data["toolResults"] = [r.to_dict() for r in self.tool_results]
        if self.metadata:
            data["metadata"] = self.metadata
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Message:
        return cls(
            role=MessageRole(data["role"]),
            text=data.get("text"),
            tool_calls=[ToolCallRecord.from_dict(c) for c in data.get("toolCalls") or []],
            tool_results=[ToolResultRecord.from_dict(r) for r in data.get("toolResults") or []],
            timestamp=datetime.fromisoformat(data["timestamp"]) if data.get("timestamp") else utc_now(),
            metadata=data.get("metadata") or {},
        )


@dataclass
class SessionLock:
    """Exclusive claim on a session by one request, valid until expires_at (epoch seconds)."""

    request_id: str
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return self.expires_at <= now

    def to_dict(self) -> dict[str, Any]:
        return {"request_id": self.request_id, "expires_at": self.expires_at}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SessionLock:
        return cls(request_id=data["request_id"], expires_at=float(data["expires_at"]))


@dataclass
class PendingTurn:
    """Draft of an assistant turn that has started streaming but is not yet persisted."""

    request_id: str
    base_version: int
    started_at: datetime = field(default_factory=utc_now)
    text: str = ""
    tool_calls: list[ToolCallRecord] = field(default_factory=list)
    tool_results: list[ToolResultRecord] = field(default_factory=list)
    tool_states: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "request_id": self.request_id,
            "base_version": self.base_version,
            "started_at": self.started_at.isoformat(),
            "text": self.text,
            "toolCalls": [c.to_dict() for c in self.tool_calls],
            "toolResults": [r.to_dict() for r in self.tool_results],
            "toolStates": dict(self.tool_states),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PendingTurn:
        return cls(
            request_id=data["request_id"],
            base_version=int(data["base_version"]),
            started_at=datetime.fromisoformat(data["started_at"]),
            text=data.get("text") or "",
            tool_calls=[ToolCallRecord.from_dict(c) for c in data.get("toolCalls") or []],
            tool_results=[ToolResultRecord.from_dict(r) for r in data.get("toolResults") or []],
            tool_states=dict(data.get("toolStates") or {}),
        )


@dataclass
class Session:
    """Persistent state of one conversation."""

    session_id: str
    mode: str = "primary"
    version: int = 0
    messages: list[Message] = field(default_factory=list)
    lock: SessionLock | None = None
    mode_notice: str | None = None  # Mode entered but not yet announced to the model
    pending_turn: PendingTurn | None = None
    internal_todos: list[dict[str, Any]] = field(default_factory=list)
    mental_model: str = ""
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "mode": self.mode,
            "mode_notice": self.mode_notice,
            "version": self.version,
            "lock": self.lock.to_dict() if self.lock else None,
            "pending_turn": self.pending_turn.to_dict() if self.pending_turn else None,
            "internal_todos": self.internal_todos,
            "mental_model": self.mental_model,
            "messages": [m.to_dict() for m in self.messages],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Session:
        return cls(
            session_id=data["session_id"],
            mode=data.get("mode") or "primary",
            version=int(data.get("version", 0)),
            messages=[Message.from_dict(m) for m in data.get("messages") or []],
            lock=SessionLock.from_dict(data["lock"]) if data.get("lock") else None,
            mode_notice=data.get("mode_notice"),
            pending_turn=(
                PendingTurn.from_dict(data["pending_turn"]) if data.get("pending_turn") else None
            ),
            internal_todos=data.get("internal_todos") or [],
            mental_model=data.get("mental_model") or "",
            created_at=datetime.fromisoformat(data["created_at"]) if data.get("created_at") else utc_now(),
            updated_at=datetime.fromisoformat(data["updated_at"]) if data.get("updated_at") else utc_now(),
        )
