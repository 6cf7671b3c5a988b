"""Conversation store contract.

The coordinator, the mode controller and the orchestrator only talk to
persistence through this protocol. Every method is atomic with respect to
other callers of the same session.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

from taskpilot.session.locks import LockResult, ReleaseStatus
from taskpilot.session.model import Message, Session, ToolCallRecord, ToolResultRecord


@dataclass(frozen=True)
class AppendResult:
    """Outcome of a version-checked append.

    On conflict `ok` is False and `version` is the authoritative version the
    caller should have presented.
    """

    ok: bool
    version: int


@runtime_checkable
class ConversationStore(Protocol):
    """Persistent conversation storage."""

    async def get_session(self, session_id: str) -> Session | None: ...

    async def get_history(self, session_id: str) -> tuple[list[Message], int]:
        """Messages and current version; an unknown session is ([], 0)."""
        ...

    async def append_user_message(
        self,
        session_id: str,
        message: Message,
        expected_version: int | None,
        *,
        default_mode: str = "primary",
    ) -> AppendResult:
        """Append a message, creating the session on first use.

        expected_version None skips the version check.
        """
        ...

    async def begin_assistant_turn(self, session_id: str, request_id: str) -> int:
        """Open a draft turn; returns the base version it must finish against."""
        ...

    async def update_assistant_turn(
        self,
        session_id: str,
        request_id: str,
        *,
        text: str,
        tool_calls: list[ToolCallRecord],
        tool_results: list[ToolResultRecord],
        tool_states: dict[str, str] | None = None,
    ) -> None: ...

    async def finish_assistant_turn(
        self,
        session_id: str,
        request_id: str,
        message: Message,
        expected_version: int,
    ) -> AppendResult: ...

    async def discard_assistant_turn(self, session_id: str, request_id: str) -> bool:
        """Drop an unfinished draft; False when the draft belongs to another request."""
        ...

    async def get_session_mode(self, session_id: str) -> str | None: ...

    async def set_session_mode(
        self, session_id: str, mode: str, *, notice: str | None = None
    ) -> None: ...

    async def pop_mode_notice(self, session_id: str) -> str | None: ...

    async def acquire_lock(self, session_id: str, request_id: str, ttl: float) -> LockResult: ...

    async def release_lock(self, session_id: str, request_id: str) -> ReleaseStatus: ...

    async def get_internal_todos(self, session_id: str) -> list[dict[str, Any]]: ...

    async def set_internal_todos(self, session_id: str, todos: list[dict[str, Any]]) -> None: ...

    async def get_mental_model(self, session_id: str) -> str: ...

    async def set_mental_model(self, session_id: str, content: str) -> None: ...
