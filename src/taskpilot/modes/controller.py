"""Mode controller: resolves and switches the active mode of a session.

The store is the source of truth for a session's mode. The controller keeps an
in-process history of the modes it saw for recently active sessions,
but every resolve re-reads the store, so the cache is only advisory.
"""

from __future__ import annotations

import re
from collections import OrderedDict, deque
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from taskpilot.core.llm.provider import Message, Role
from taskpilot.logging import get_logger
from taskpilot.modes.registry import ModeRegistry
from taskpilot.modes.schema import Mode
from taskpilot.session.protocols import ConversationStore

log = get_logger("modes.controller")

MODE_HISTORY_LIMIT = 10
MAX_TRACKED_SESSIONS = 1024

_INVALID_MODE_CHARS = re.compile(r"[^a-zA-Z0-9_-]")


@dataclass(frozen=True)
class ModeSwitchResult:
    """Outcome of a switch request.

    A failed switch (unknown mode) is reported here rather than raised; the
    session stays in `mode`.
    """

    success: bool
    changed: bool
    mode: str
    previous_mode: str
    message: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "changed": self.changed,
            "mode": self.mode,
            "previousMode": self.previous_mode,
            "message": self.message,
        }


def sanitize_mode_name(name: str) -> str:
    return _INVALID_MODE_CHARS.sub("", name)


def transition_text(mode: Mode) -> str:
    """System text announcing entry into a mode."""
    text = f"[Mode switch] You are now in {mode.name} mode. {mode.description}."
    if mode.prompt:
        text = f"{text}\n{mode.prompt}"
    allowed = sorted(mode.permitted_tools())
    if allowed:
        text = f"{text}\nAvailable tools: {', '.join(allowed)}."
    return text


class ModeController:
    """Resolves the current mode of a session and performs switches."""

    def __init__(
        self,
        registry: ModeRegistry,
        store: ConversationStore,
        *,
        default_mode: str = "primary",
        max_sessions: int = MAX_TRACKED_SESSIONS,
    ) -> None:
        self._registry = registry
        self._store = store
        self._default_mode = default_mode if registry.is_valid_mode(default_mode) else "primary"
        self._max_sessions = max(1, max_sessions)
        # Least recently resolved session first
        self._history: OrderedDict[str, deque[str]] = OrderedDict()

    @property
    def registry(self) -> ModeRegistry:
        return self._registry

    @property
    def default_mode(self) -> str:
        return self._default_mode

    def _remember(self, session_id: str, mode: str) -> None:
        history = self._history.get(session_id)
        if history is None:
            history = self._history[session_id] = deque(maxlen=MODE_HISTORY_LIMIT)
            while len(self._history) > self._max_sessions:
                self._history.popitem(last=False)
        else:
            self._history.move_to_end(session_id)
        if not history or history[-1] != mode:
            history.append(mode)

    def cached_mode(self, session_id: str) -> str | None:
        history = self._history.get(session_id)
        return history[-1] if history else None

    def get_mode_history(self, session_id: str) -> list[str]:
        return list(self._history.get(session_id, ()))

    async def resolve_mode(self, session_id: str) -> str:
        """Read the authoritative mode from the store.

        Unknown or missing persisted modes resolve to the default mode.
        """
        stored = await self._store.get_session_mode(session_id)
        if stored is None or not self._registry.is_valid_mode(stored):
            if stored is not None:
                log.warning(
                    "Session %s has unknown mode %r, using %s",
                    session_id,
                    stored,
                    self._default_mode,
                )
            mode = self._default_mode
        else:
            mode = stored
        self._remember(session_id, mode)
        return mode

    async def handle_mode_switch(
        self,
        session_id: str,
        target_mode: str,
        context: Mapping[str, Any] | None = None,
    ) -> ModeSwitchResult:
        """Switch a session to another mode.

        The new mode and a pending transition notice are persisted together;
        the notice is consumed by take_transition_message before the next
        model call.
        """
        current = await self.resolve_mode(session_id)

        sanitized = sanitize_mode_name(target_mode or "")
        if sanitized != target_mode:
            log.warning("Mode name sanitized: %r -> %r", target_mode, sanitized)

        mode = self._registry.get_mode(sanitized) if sanitized else None
        if mode is None:
            return ModeSwitchResult(
                success=False,
                changed=False,
                mode=current,
                previous_mode=current,
                message=f"Unknown mode '{sanitized or target_mode}'. Staying in {current} mode.",
            )

        if mode.name == current:
            return ModeSwitchResult(
                success=True,
                changed=False,
                mode=current,
                previous_mode=current,
                message=f"Already in {current} mode.",
            )

        await self._store.set_session_mode(session_id, mode.name, notice=mode.name)
        self._remember(session_id, mode.name)
        reason = (context or {}).get("reason")
        log.info(
            "Session %s switched mode %s -> %s%s",
            session_id,
            current,
            mode.name,
            f" ({reason})" if reason else "",
        )
        return ModeSwitchResult(
            success=True,
            changed=True,
            mode=mode.name,
            previous_mode=current,
            message=f"Switched from {current} to {mode.name} mode.",
        )

    async def take_transition_message(self, session_id: str) -> Message | None:
        """Pop the pending transition notice, if any, as a system message."""
        notice = await self._store.pop_mode_notice(session_id)
        if notice is None:
            return None
        mode = self._registry.get_mode(notice)
        if mode is None:
            return None
        return Message(role=Role.SYSTEM, content=transition_text(mode))

    async def switch_to_next_mode(self, session_id: str) -> ModeSwitchResult:
        current = await self.resolve_mode(session_id)
        return await self.handle_mode_switch(
            session_id, self._registry.get_next_mode(current), {"reason": "next in cycle"}
        )

    async def switch_for_task(self, session_id: str, task_type: str) -> ModeSwitchResult:
        return await self.handle_mode_switch(
            session_id, self._registry.get_mode_for_task(task_type), {"reason": task_type}
        )
