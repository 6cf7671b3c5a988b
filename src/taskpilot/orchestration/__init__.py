"""Side-effect orchestration for pure tool results."""

from taskpilot.orchestration.events import (
    CollectingEventSink,
    EventSink,
    LoggingEventSink,
    NullEventSink,
    OrchestratorEvent,
)
from taskpilot.orchestration.orchestrator import (
    OrchestrationContext,
    OrchestrationResult,
    SideEffectResult,
    StateOrchestrator,
    order_side_effects,
)

__all__ = [
    "CollectingEventSink",
    "EventSink",
    "LoggingEventSink",
    "NullEventSink",
    "OrchestrationContext",
    "OrchestrationResult",
    "OrchestratorEvent",
    "SideEffectResult",
    "StateOrchestrator",
    "order_side_effects",
]
