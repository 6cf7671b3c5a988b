"""Tests for side-effect ordering and the state orchestrator."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from taskpilot.errors import USER_MESSAGES, ErrorKind, ServiceOperationError
from taskpilot.modes import ModeController, ModeRegistry
from taskpilot.orchestration import (
    CollectingEventSink,
    OrchestrationContext,
    StateOrchestrator,
    order_side_effects,
)
from taskpilot.session.storage import MemoryConversationStore
from taskpilot.tools.base import Priority, SideEffect, SideEffectKind, ToolResult
from tests.utils import RecordingService

CTX = OrchestrationContext(session_id="s1", request_id="r1")


def effect(
    operation: str,
    kind: SideEffectKind = SideEffectKind.EXTERNAL_CALL,
    priority: Priority = Priority.NORMAL,
    **args,
) -> SideEffect:
    return SideEffect(kind=kind, operation=operation, args=args, priority=priority)


def tool(*effects: SideEffect, data=None) -> ToolResult:
    return ToolResult(success=True, data=data, side_effects=list(effects))


@pytest.fixture
def sink() -> CollectingEventSink:
    return CollectingEventSink()


@pytest.fixture
def service() -> RecordingService:
    return RecordingService()


@pytest.fixture
def orchestrator(
    store: MemoryConversationStore, service: RecordingService, sink: CollectingEventSink
) -> StateOrchestrator:
    return StateOrchestrator(
        store=store,
        controller=ModeController(ModeRegistry(), store),
        service=service,
        sink=sink,
    )


class TestOrdering:
    """Tests for the execution order of side effects."""

    def test_priority_then_kind_then_input_order(self) -> None:
        pairs = [
            (0, effect("ext-normal")),
            (0, effect("query-normal", SideEffectKind.QUERY)),
            (1, effect("ext-high", priority=Priority.HIGH)),
            (1, effect("mut-low", SideEffectKind.MUTATION, Priority.LOW)),
            (2, effect("mut-normal-a", SideEffectKind.MUTATION)),
            (2, effect("mut-normal-b", SideEffectKind.MUTATION)),
        ]
        ordered = [e.operation for _, e in order_side_effects(pairs)]
        assert ordered == [
            "ext-high",
            "mut-normal-a",
            "mut-normal-b",
            "query-normal",
            "ext-normal",
            "mut-low",
        ]

    def test_mutation_before_query_at_same_priority(self) -> None:
        pairs = [
            (0, effect("read", SideEffectKind.QUERY, Priority.HIGH)),
            (1, effect("write", SideEffectKind.MUTATION, Priority.HIGH)),
        ]
        assert [e.operation for _, e in order_side_effects(pairs)] == ["write", "read"]


class TestStateOrchestrator:
    """Tests for dispatch, aggregation and events."""

    @pytest.mark.asyncio
    async def test_effects_run_in_order(
        self, orchestrator: StateOrchestrator, service: RecordingService
    ) -> None:
        results = [
            tool(effect("tasks.list"), effect("tasks.create", content="A")),
            tool(effect("calendar.list_events", priority=Priority.HIGH)),
        ]
        outcome = await orchestrator.orchestrate(results, CTX)

        assert outcome.success
        assert service.operations() == ["calendar.list_events", "tasks.list", "tasks.create"]
        assert outcome.summary["totalSideEffects"] == 3
        assert outcome.summary["failedSideEffects"] == 0

    @pytest.mark.asyncio
    async def test_store_operations(
        self, orchestrator: StateOrchestrator, store: MemoryConversationStore
    ) -> None:
        todos = [{"id": "1", "content": "Ask", "status": "pending", "priority": "high"}]
        write = tool(effect("internal_todos.update", SideEffectKind.MUTATION, Priority.HIGH, todos=todos))
        read = tool(effect("internal_todos.get", SideEffectKind.QUERY))
        edit = tool(effect("mental_model.edit", SideEffectKind.MUTATION, content="Early riser"))
        recall = tool(effect("mental_model.get", SideEffectKind.QUERY))

        outcome = await orchestrator.orchestrate([write, read, edit, recall], CTX)

        assert outcome.tool_output(0)["result"] == {"saved": 1}
        assert outcome.tool_output(1)["result"] == {"todos": todos}
        assert "result" not in outcome.tool_output(2)
        assert outcome.tool_output(3)["result"] == {"content": "Early riser"}
        assert await store.get_internal_todos("s1") == todos

    @pytest.mark.asyncio
    async def test_switch_mode_effect(
        self, orchestrator: StateOrchestrator, store: MemoryConversationStore
    ) -> None:
        switch = tool(
            effect("session.switch_mode", SideEffectKind.MUTATION, Priority.HIGH, mode="planning", reason="plan"),
            data={"requestedMode": "planning"},
        )
        outcome = await orchestrator.orchestrate([switch], CTX)

        output = outcome.tool_output(0)
        assert output["success"]
        assert output["data"] == {"requestedMode": "planning"}
        assert output["result"]["previousMode"] == "primary"
        assert await store.get_session_mode("s1") == "planning"

    @pytest.mark.asyncio
    async def test_switch_to_unknown_mode_fails_effect(self, orchestrator: StateOrchestrator) -> None:
        switch = tool(effect("session.switch_mode", SideEffectKind.MUTATION, mode="wizard"))
        outcome = await orchestrator.orchestrate([switch], CTX)

        assert not outcome.success
        assert "Unknown mode 'wizard'" in outcome.tool_output(0)["error"]

    @pytest.mark.asyncio
    async def test_batch_effect_uses_pipeline(
        self, orchestrator: StateOrchestrator, service: RecordingService
    ) -> None:
        command = {"type": "item_complete", "uuid": "u1", "args": {"id": "t1"}}
        service.responses["sync"] = {"sync_status": {"u1": "ok"}, "temp_id_mapping": {}}

        outcome = await orchestrator.orchestrate([tool(effect("tasks.batch", commands=[command]))], CTX)

        result = outcome.tool_output(0)["result"]
        assert result["summary"] == {"total": 1, "succeeded": 1, "failed": 0}
        assert service.calls[0] == ("sync", {"commands": [command]})

    @pytest.mark.asyncio
    async def test_failures_are_per_effect(
        self, orchestrator: StateOrchestrator, service: RecordingService
    ) -> None:
        service.responses["tasks.delete"] = ServiceOperationError("Task not found: t1")
        results = [
            tool(effect("tasks.delete", task_id="t1")),
            tool(effect("tasks.list")),
            tool(effect("tasks.teleport")),
        ]
        outcome = await orchestrator.orchestrate(results, CTX)

        assert not outcome.success
        assert outcome.tool_output(0) == {"success": False, "error": "Task not found: t1"}
        assert outcome.tool_output(1) == {"success": True, "result": {"ok": True}}
        assert outcome.tool_output(2)["error"] == "Unknown external_call operation: tasks.teleport"
        assert outcome.summary["failedSideEffects"] == 2
        assert outcome.final_data["summary"]["overallSuccess"] is False

    @pytest.mark.asyncio
    async def test_internal_failure_text_is_not_exposed(
        self, orchestrator: StateOrchestrator, service: RecordingService, sink: CollectingEventSink
    ) -> None:
        service.responses["calendar.delete_event"] = RuntimeError("pg://admin:hunter2@db internal failure")
        outcome = await orchestrator.orchestrate(
            [tool(effect("calendar.delete_event", priority=Priority.HIGH, event_id="e1"))], CTX
        )

        assert outcome.tool_output(0) == {"success": False, "error": USER_MESSAGES[ErrorKind.TOOL]}
        assert "hunter2" not in repr([e.payload for e in sink.events])

    @pytest.mark.asyncio
    async def test_failed_tool_output(self, orchestrator: StateOrchestrator) -> None:
        outcome = await orchestrator.orchestrate([ToolResult.fail("bad input")], CTX)
        assert outcome.tool_output(0) == {"success": False, "error": "bad input"}
        assert not outcome.success

    @pytest.mark.asyncio
    async def test_multiple_effect_results_are_listed(self, orchestrator: StateOrchestrator) -> None:
        outcome = await orchestrator.orchestrate([tool(effect("tasks.list"), effect("tasks.create"))], CTX)
        assert outcome.tool_output(0)["result"] == [{"ok": True}, {"ok": True}]

    @pytest.mark.asyncio
    async def test_events(self, orchestrator: StateOrchestrator, sink: CollectingEventSink) -> None:
        results = [
            tool(effect("internal_todos.update", SideEffectKind.MUTATION, todos=[])),
            tool(effect("tasks.list")),
            tool(effect("calendar.list_events", priority=Priority.HIGH)),
        ]
        outcome = await orchestrator.orchestrate(
            results, CTX, tool_names=["internalTodoWrite", "getTasks", "listCalendarEvents"]
        )

        assert [e.type for e in sink.events] == ["tool-call", "tool-result", "tool-result", "tool-result"]
        assert sink.events[0].payload["tools"] == ["internalTodoWrite", "getTasks", "listCalendarEvents"]
        assert [e.payload.get("operation") for e in sink.of_type("tool-result")[:2]] == [
            "calendar.list_events",
            "internal_todos.update",
        ]
        assert sink.events[-1].payload["successfulOperations"] == 3
        assert outcome.events == [e.id for e in sink.events]

    @pytest.mark.asyncio
    async def test_sink_failure_does_not_stop_execution(self, service: RecordingService) -> None:
        sink = AsyncMock()
        sink.publish.side_effect = RuntimeError("sink down")
        orchestrator = StateOrchestrator(service=service, sink=sink)

        outcome = await orchestrator.orchestrate([tool(effect("tasks.list"))], CTX)

        assert outcome.success
        assert service.operations() == ["tasks.list"]

    @pytest.mark.asyncio
    async def test_unexpected_failure_emits_error_event(self, sink: CollectingEventSink) -> None:
        # An unranked priority breaks ordering before anything runs
        broken = SideEffect(kind=SideEffectKind.QUERY, operation="x", priority="urgent")  # type: ignore[arg-type]
        orchestrator = StateOrchestrator(sink=sink)

        outcome = await orchestrator.orchestrate([tool(broken)], CTX)

        assert not outcome.success
        assert outcome.error
        assert sink.of_type("error")[0].payload["context"] == "tool-execution"

    def test_custom_operation_registration(self) -> None:
        orchestrator = StateOrchestrator()
        assert not orchestrator.has_operation(SideEffectKind.EXTERNAL_CALL, "tasks.list")

        async def handler(args, ctx):
            return args

        orchestrator.register_operation(SideEffectKind.QUERY, "weather.get", handler)
        assert orchestrator.has_operation(SideEffectKind.QUERY, "weather.get")
