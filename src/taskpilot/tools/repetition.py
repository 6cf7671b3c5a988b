"""Guard against a model repeating the same tool call in a loop."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

DEFAULT_REPETITION_LIMIT = 3


@dataclass(frozen=True)
class RepetitionCheck:
    allow_execution: bool
    message: str | None = None


def canonical_call(tool_name: str, args: dict[str, Any] | None) -> str:
    """Tool name plus arguments with keys sorted alphabetically."""
    return json.dumps({"name": tool_name, "args": args or {}}, sort_keys=True, default=str)


class ToolRepetitionGuard:
    """Counts consecutive identical tool calls.

    The call that brings the run to `limit` is denied; the counter then
    resets so the model can recover by doing something else. A limit of 0
    disables the guard.
    """

    def __init__(self, limit: int = DEFAULT_REPETITION_LIMIT) -> None:
        self.limit = limit
        self._previous: str | None = None
        self._count = 0

    def check(self, tool_name: str, args: dict[str, Any] | None = None) -> RepetitionCheck:
        current = canonical_call(tool_name, args)
        if current == self._previous:
            self._count += 1
        else:
            self._previous = current
            self._count = 1

        if self.limit > 0 and self._count >= self.limit:
            self._previous = None
            self._count = 0
            return RepetitionCheck(
                allow_execution=False,
                message=(
                    f"Detected {self.limit} consecutive identical tool calls. "
                    "This may indicate the AI is stuck in a loop. "
                    "Please try a different approach or provide more specific guidance."
                ),
            )

        return RepetitionCheck(allow_execution=True)

    def reset(self) -> None:
        self._previous = None
        self._count = 0
