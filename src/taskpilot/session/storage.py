"""Session persistence.

Two stores implement the ConversationStore contract:

- FileConversationStore keeps one YAML file per session in
  <data_dir>/sessions/<session-id>.yaml and serializes every
  read-modify-write with a per-session file lock, so several server
  processes can share a data directory.
- MemoryConversationStore keeps sessions in process memory.

Both share the version, lock and draft-turn rules in BaseConversationStore.
"""

from __future__ import annotations

import asyncio
import copy
import os
import re
import time
from collections.abc import Callable
from pathlib import Path
from typing import Any, TypeVar

import yaml
from filelock import FileLock

from taskpilot.errors import PersistenceError
from taskpilot.logging import get_logger
from taskpilot.session.locks import (
    LockResult,
    ReleaseStatus,
    decide_acquire,
    decide_release,
)
from taskpilot.session.model import (
    Message,
    PendingTurn,
    Session,
    ToolCallRecord,
    ToolResultRecord,
    utc_now,
)
from taskpilot.session.protocols import AppendResult

log = get_logger("storage")

R = TypeVar("R")

SESSION_ID_RE = re.compile(r"[A-Za-z0-9_-]{1,128}")

# Modifier: receives the current session (or None) and returns the session to
# save (None = leave storage untouched) plus a result for the caller.
Modifier = Callable[[Session | None], tuple[Session | None, R]]


class BaseConversationStore:
    """Store semantics over two primitives: _read and _mutate."""

    def __init__(
        self, *, clock: Callable[[], float] = time.time, default_mode: str = "primary"
    ) -> None:
        self._clock = clock
        self._default_mode = default_mode

    async def _read(self, session_id: str) -> Session | None:
        raise NotImplementedError

    async def _mutate(self, session_id: str, modifier: Modifier[R]) -> R:
        raise NotImplementedError

    def _touch(self, session: Session | None, session_id: str) -> Session:
        if session is None:
            session = Session(session_id=session_id, mode=self._default_mode)
        session.updated_at = utc_now()
        return session

    # -- reads -----------------------------------------------------------

    async def get_session(self, session_id: str) -> Session | None:
        return await self._read(session_id)

    async def get_history(self, session_id: str) -> tuple[list[Message], int]:
        session = await self._read(session_id)
        if session is None:
            return [], 0
        return session.messages, session.version

    async def get_session_mode(self, session_id: str) -> str | None:
        session = await self._read(session_id)
        return session.mode if session else None

    async def get_internal_todos(self, session_id: str) -> list[dict[str, Any]]:
        session = await self._read(session_id)
        return session.internal_todos if session else []

    async def get_mental_model(self, session_id: str) -> str:
        session = await self._read(session_id)
        return session.mental_model if session else ""

    # -- history ---------------------------------------------------------

    async def append_user_message(
        self,
        session_id: str,
        message: Message,
        expected_version: int | None,
        *,
        default_mode: str = "primary",
    ) -> AppendResult:
        def modifier(session: Session | None) -> tuple[Session | None, AppendResult]:
            if session is None:
                session = Session(session_id=session_id, mode=default_mode)
            if expected_version is not None and expected_version != session.version:
                return None, AppendResult(ok=False, version=session.version)
            session = self._touch(session, session_id)
            session.messages.append(message)
            session.version += 1
            return session, AppendResult(ok=True, version=session.version)

        result = await self._mutate(session_id, modifier)
        if not result.ok:
            log.info(
                "History conflict on %s: expected %s, current %d",
                session_id,
                expected_version,
                result.version,
            )
        return result

    async def begin_assistant_turn(self, session_id: str, request_id: str) -> int:
        def modifier(session: Session | None) -> tuple[Session | None, int]:
            session = self._touch(session, session_id)
            session.pending_turn = PendingTurn(request_id=request_id, base_version=session.version)
            return session, session.version

        return await self._mutate(session_id, modifier)

    async def update_assistant_turn(
        self,
        session_id: str,
        request_id: str,
        *,
        text: str,
        tool_calls: list[ToolCallRecord],
        tool_results: list[ToolResultRecord],
        tool_states: dict[str, str] | None = None,
    ) -> None:
        def modifier(session: Session | None) -> tuple[Session | None, None]:
            if session is None or session.pending_turn is None:
                return None, None
            if session.pending_turn.request_id != request_id:
                return None, None
            session.pending_turn.text = text
            session.pending_turn.tool_calls = list(tool_calls)
            session.pending_turn.tool_results = list(tool_results)
            session.pending_turn.tool_states = dict(tool_states or {})
            return self._touch(session, session_id), None

        await self._mutate(session_id, modifier)

    async def finish_assistant_turn(
        self,
        session_id: str,
        request_id: str,
        message: Message,
        expected_version: int,
    ) -> AppendResult:
        def modifier(session: Session | None) -> tuple[Session | None, AppendResult]:
            session = self._touch(session, session_id)
            if session.pending_turn and session.pending_turn.request_id == request_id:
                session.pending_turn = None
            if session.version != expected_version:
                # Still save so the stale draft is cleared
                return session, AppendResult(ok=False, version=session.version)
            session.messages.append(message)
            session.version += 1
            return session, AppendResult(ok=True, version=session.version)

        return await self._mutate(session_id, modifier)

    async def discard_assistant_turn(self, session_id: str, request_id: str) -> bool:
        """Drop the draft left by a turn that ended without persisting."""

        def modifier(session: Session | None) -> tuple[Session | None, bool]:
            if session is None or session.pending_turn is None:
                return None, False
            if session.pending_turn.request_id != request_id:
                return None, False
            session.pending_turn = None
            return self._touch(session, session_id), True

        return await self._mutate(session_id, modifier)

    # -- mode ------------------------------------------------------------

    async def set_session_mode(
        self, session_id: str, mode: str, *, notice: str | None = None
    ) -> None:
        def modifier(session: Session | None) -> tuple[Session | None, None]:
            session = self._touch(session, session_id)
            session.mode = mode
            session.mode_notice = notice
            return session, None

        await self._mutate(session_id, modifier)

    async def pop_mode_notice(self, session_id: str) -> str | None:
        def modifier(session: Session | None) -> tuple[Session | None, str | None]:
            if session is None or session.mode_notice is None:
                return None, None
            notice = session.mode_notice
            session.mode_notice = None
            return session, notice

        return await self._mutate(session_id, modifier)

    # -- locks -----------------------------------------------------------

    async def acquire_lock(self, session_id: str, request_id: str, ttl: float) -> LockResult:
        def modifier(session: Session | None) -> tuple[Session | None, LockResult]:
            session = self._touch(session, session_id)
            result, lock = decide_acquire(session.lock, request_id, ttl, self._clock())
            if not result.acquired:
                return None, result
            session.lock = lock
            return session, result

        result = await self._mutate(session_id, modifier)
        log.debug("Lock %s on %s for %s", result.status.value, session_id, request_id)
        return result

    async def release_lock(self, session_id: str, request_id: str) -> ReleaseStatus:
        def modifier(session: Session | None) -> tuple[Session | None, ReleaseStatus]:
            if session is None:
                return None, ReleaseStatus.MISSING
            status, lock = decide_release(session.lock, request_id, self._clock())
            if status in (ReleaseStatus.MISSING, ReleaseStatus.NOT_OWNER):
                return None, status
            session.lock = lock
            return session, status

        return await self._mutate(session_id, modifier)

    # -- agent scratch state ---------------------------------------------

    async def set_internal_todos(self, session_id: str, todos: list[dict[str, Any]]) -> None:
        def modifier(session: Session | None) -> tuple[Session | None, None]:
            session = self._touch(session, session_id)
            session.internal_todos = list(todos)
            return session, None

        await self._mutate(session_id, modifier)

    async def set_mental_model(self, session_id: str, content: str) -> None:
        def modifier(session: Session | None) -> tuple[Session | None, None]:
            session = self._touch(session, session_id)
            session.mental_model = content
            return session, None

        await self._mutate(session_id, modifier)


class MemoryConversationStore(BaseConversationStore):
    """In-process store. Sessions are copied on read and write."""

    def __init__(
        self, *, clock: Callable[[], float] = time.time, default_mode: str = "primary"
    ) -> None:
        super().__init__(clock=clock, default_mode=default_mode)
        self._sessions: dict[str, Session] = {}
        self._lock = asyncio.Lock()

    async def _read(self, session_id: str) -> Session | None:
        session = self._sessions.get(session_id)
        return copy.deepcopy(session) if session else None

    async def _mutate(self, session_id: str, modifier: Modifier[R]) -> R:
        async with self._lock:
            current = self._sessions.get(session_id)
            updated, result = modifier(copy.deepcopy(current) if current else None)
            if updated is not None:
                self._sessions[session_id] = updated
            return result


def get_sessions_dir(data_dir: str | Path) -> Path:
    return Path(data_dir) / "sessions"


class FileConversationStore(BaseConversationStore):
    """YAML-file store safe across processes sharing a data directory."""

    def __init__(
        self,
        data_dir: str | Path,
        *,
        clock: Callable[[], float] = time.time,
        default_mode: str = "primary",
        lock_timeout: float = 10.0,
    ) -> None:
        super().__init__(clock=clock, default_mode=default_mode)
        self._dir = get_sessions_dir(Path(data_dir).expanduser())
        self._lock_timeout = lock_timeout

    def session_path(self, session_id: str) -> Path:
        if not SESSION_ID_RE.fullmatch(session_id):
            raise PersistenceError(f"Invalid session id: {session_id!r}")
        return self._dir / f"{session_id}.yaml"

    def _load(self, path: Path) -> Session | None:
        if not path.exists():
            return None
        try:
            with open(path, encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            raise PersistenceError(f"Failed to read session file {path}: {e}") from e
        if not isinstance(data, dict):
            log.warning("Ignoring malformed session file %s", path)
            return None
        return Session.from_dict(data)

    def _save(self, path: Path, session: Session) -> None:
        """Atomic write through a temp file."""
        temp_path = path.with_suffix(".yaml.tmp")
        try:
            with open(temp_path, "w", encoding="utf-8") as f:
                yaml.safe_dump(
                    session.to_dict(), f, default_flow_style=False, allow_unicode=True, sort_keys=False
                )
            os.replace(temp_path, path)
        except (OSError, yaml.YAMLError) as e:
            if temp_path.exists():
                temp_path.unlink()
            raise PersistenceError(f"Failed to save session {session.session_id}: {e}") from e

    def _mutate_sync(self, session_id: str, modifier: Modifier[R]) -> R:
        self._dir.mkdir(parents=True, exist_ok=True)
        path = self.session_path(session_id)
        with FileLock(path.with_suffix(".lock"), timeout=self._lock_timeout):
            updated, result = modifier(self._load(path))
            if updated is not None:
                self._save(path, updated)
            return result

    async def _read(self, session_id: str) -> Session | None:
        return await asyncio.to_thread(self._load, self.session_path(session_id))

    async def _mutate(self, session_id: str, modifier: Modifier[R]) -> R:
        return await asyncio.to_thread(self._mutate_sync, session_id, modifier)
