"""Orchestration events and sinks.

The orchestrator reports progress as events. A sink may forward them to a
client stream, a log or nowhere; publish failures never affect execution.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from taskpilot.logging import get_logger
from taskpilot.session.model import utc_now

log = get_logger("orchestrator.events")


@dataclass(frozen=True)
class OrchestratorEvent:
    type: str  # "tool-call", "tool-result", "error"
    payload: dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    timestamp: datetime = field(default_factory=utc_now)


@runtime_checkable
class EventSink(Protocol):
    async def publish(self, event: OrchestratorEvent) -> None: ...


class NullEventSink:
    async def publish(self, event: OrchestratorEvent) -> None:
        return None


class CollectingEventSink:
    """Keeps every event in order."""

    def __init__(self) -> None:
        self.events: list[OrchestratorEvent] = []

    async def publish(self, event: OrchestratorEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type: str) -> list[OrchestratorEvent]:
        return [e for e in self.events if e.type == event_type]


class LoggingEventSink:
    """Writes events to the orchestrator log at debug level."""

    async def publish(self, event: OrchestratorEvent) -> None:
        log.debug("%s %s", event.type, event.payload)
