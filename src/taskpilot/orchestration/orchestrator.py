"""State orchestrator.

Takes the results of pure tools, runs the side effects they requested and
reports what happened. Side effects run one at a time in a fixed order:
priority first (high, normal, low), then mutations before queries before
external calls, otherwise in the order the tools produced them.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from taskpilot.batch.pipeline import BatchCommand, BatchPipeline
from taskpilot.errors import ToolExecutionError, client_error_message
from taskpilot.logging import get_logger
from taskpilot.orchestration.events import EventSink, NullEventSink, OrchestratorEvent
from taskpilot.services.base import CALENDAR_OPERATIONS, TASK_OPERATIONS, WorkspaceService
from taskpilot.tools.base import Priority, SideEffect, SideEffectKind, ToolResult

if TYPE_CHECKING:
    from taskpilot.modes.controller import ModeController
    from taskpilot.session.protocols import ConversationStore

log = get_logger("orchestrator")

_PRIORITY_RANK = {Priority.HIGH: 0, Priority.NORMAL: 1, Priority.LOW: 2}
_KIND_RANK = {SideEffectKind.MUTATION: 0, SideEffectKind.QUERY: 1, SideEffectKind.EXTERNAL_CALL: 2}


@dataclass(frozen=True)
class OrchestrationContext:
    session_id: str
    request_id: str


Handler = Callable[[dict[str, Any], OrchestrationContext], Awaitable[Any]]


@dataclass
class SideEffectResult:
    effect: SideEffect
    tool_index: int
    success: bool
    data: Any = None
    error: str | None = None
    duration_ms: float = 0.0


@dataclass
class OrchestrationResult:
    success: bool
    tool_results: list[ToolResult]
    side_effect_results: list[SideEffectResult] = field(default_factory=list)
    events: list[str] = field(default_factory=list)
    summary: dict[str, Any] = field(default_factory=dict)
    final_data: dict[str, Any] | None = None
    error: str | None = None

    def tool_output(self, index: int) -> dict[str, Any]:
        """Model-facing output of one tool: its own data plus what its side effects returned."""
        tool = self.tool_results[index]
        if not tool.success:
            return {"success": False, "error": tool.error or "Tool failed"}

        effects = [r for r in self.side_effect_results if r.tool_index == index]
        errors = [r.error or "Side effect failed" for r in effects if not r.success]
        output: dict[str, Any] = {"success": not errors}
        if tool.data is not None:
            output["data"] = tool.data
        effect_data = [r.data for r in effects if r.success and r.data is not None]
        if len(effect_data) == 1:
            output["result"] = effect_data[0]
        elif effect_data:
            output["result"] = effect_data
        if errors:
            output["error"] = "; ".join(errors)
        if self.error and not effects:
            output["success"] = False
            output["error"] = self.error
        return output


def order_side_effects(
    effects: Sequence[tuple[int, SideEffect]],
) -> list[tuple[int, SideEffect]]:
    """Sort (tool_index, effect) pairs by priority then kind; stable otherwise."""
    return sorted(
        effects,
        key=lambda pair: (_PRIORITY_RANK[pair[1].priority], _KIND_RANK[pair[1].kind]),
    )


class StateOrchestrator:
    """Runs side effects through a dispatch table keyed by (kind, operation)."""

    def __init__(
        self,
        *,
        store: ConversationStore | None = None,
        controller: ModeController | None = None,
        service: WorkspaceService | None = None,
        pipeline: BatchPipeline | None = None,
        sink: EventSink | None = None,
    ) -> None:
        self._handlers: dict[tuple[SideEffectKind, str], Handler] = {}
        self._sink: EventSink = sink or NullEventSink()
        if store is not None:
            self._register_store_operations(store)
        if controller is not None:
            self.register_operation(SideEffectKind.MUTATION, "session.switch_mode", self._switch_mode_handler(controller))
        if service is not None:
            self._register_service_operations(service)
            pipeline = pipeline or BatchPipeline(service)
        if pipeline is not None:
            self.register_operation(SideEffectKind.EXTERNAL_CALL, "tasks.batch", self._batch_handler(pipeline))

    # -- dispatch table ----------------------------------------------------

    def register_operation(self, kind: SideEffectKind, operation: str, handler: Handler) -> None:
        self._handlers[(kind, operation)] = handler

    def has_operation(self, kind: SideEffectKind, operation: str) -> bool:
        return (kind, operation) in self._handlers

    def _register_store_operations(self, store: ConversationStore) -> None:
        async def update_todos(args: dict[str, Any], ctx: OrchestrationContext) -> Any:
            todos = list(args.get("todos") or [])
            await store.set_internal_todos(ctx.session_id, todos)
            return {"saved": len(todos)}

        async def get_todos(args: dict[str, Any], ctx: OrchestrationContext) -> Any:
            return {"todos": await store.get_internal_todos(ctx.session_id)}

        async def edit_mental_model(args: dict[str, Any], ctx: OrchestrationContext) -> Any:
            await store.set_mental_model(ctx.session_id, str(args.get("content", "")))
            return None

        async def get_mental_model(args: dict[str, Any], ctx: OrchestrationContext) -> Any:
            return {"content": await store.get_mental_model(ctx.session_id)}

        self.register_operation(SideEffectKind.MUTATION, "internal_todos.update", update_todos)
        self.register_operation(SideEffectKind.QUERY, "internal_todos.get", get_todos)
        self.register_operation(SideEffectKind.MUTATION, "mental_model.edit", edit_mental_model)
        self.register_operation(SideEffectKind.QUERY, "mental_model.get", get_mental_model)

    def _register_service_operations(self, service: WorkspaceService) -> None:
        for operation in (*TASK_OPERATIONS, *CALENDAR_OPERATIONS):

            async def call(args: dict[str, Any], ctx: OrchestrationContext, _op: str = operation) -> Any:
                return await service.execute(_op, args)

            self.register_operation(SideEffectKind.EXTERNAL_CALL, operation, call)

    @staticmethod
    def _switch_mode_handler(controller: ModeController) -> Handler:
        async def switch(args: dict[str, Any], ctx: OrchestrationContext) -> Any:
            result = await controller.handle_mode_switch(
                ctx.session_id, str(args.get("mode", "")), {"reason": args.get("reason")}
            )
            if not result.success:
                raise ToolExecutionError(result.message)
            return result.to_dict()

        return switch

    @staticmethod
    def _batch_handler(pipeline: BatchPipeline) -> Handler:
        async def batch(args: dict[str, Any], ctx: OrchestrationContext) -> Any:
            commands = [BatchCommand.from_dict(c) for c in args.get("commands") or []]
            result = await pipeline.execute_batch(commands)
            return result.to_dict()

        return batch

    # -- execution -----------------------------------------------------------

    async def _publish(self, sink: EventSink, event_type: str, payload: dict[str, Any]) -> str:
        event = OrchestratorEvent(type=event_type, payload=payload)
        try:
            await sink.publish(event)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            log.warning("Failed to publish %s event: %s", event_type, e)
        return event.id

    async def _execute(
        self, tool_index: int, effect: SideEffect, ctx: OrchestrationContext
    ) -> SideEffectResult:
        started = time.perf_counter()
        handler = self._handlers.get((effect.kind, effect.operation))
        try:
            if handler is None:
                raise ToolExecutionError(f"Unknown {effect.kind.value} operation: {effect.operation}")
            data = await handler(dict(effect.args), ctx)
            success, error = True, None
        except asyncio.CancelledError:
            raise
        except Exception as e:
            log.warning("Side effect %s failed: %s", effect.operation, e)
            data, success, error = None, False, client_error_message(e)
        return SideEffectResult(
            effect=effect,
            tool_index=tool_index,
            success=success,
            data=data,
            error=error,
            duration_ms=(time.perf_counter() - started) * 1000,
        )

    async def orchestrate(
        self,
        tool_results: Sequence[ToolResult],
        ctx: OrchestrationContext,
        *,
        tool_names: Sequence[str] | None = None,
        sink: EventSink | None = None,
    ) -> OrchestrationResult:
        """Execute every side effect of the given tool results."""
        sink = sink or self._sink
        results = list(tool_results)
        effect_results: list[SideEffectResult] = []
        events: list[str] = []
        started = time.perf_counter()

        try:
            pending = [(i, effect) for i, tr in enumerate(results) for effect in tr.side_effects]
            ordered = order_side_effects(pending)

            events.append(
                await self._publish(
                    sink,
                    "tool-call",
                    {
                        "tools": list(tool_names) if tool_names else [f"tool-{i}" for i in range(len(results))],
                        "totalSideEffects": len(ordered),
                    },
                )
            )

            for tool_index, effect in ordered:
                result = await self._execute(tool_index, effect, ctx)
                effect_results.append(result)
                if effect.kind is SideEffectKind.MUTATION or effect.priority is Priority.HIGH:
                    events.append(
                        await self._publish(
                            sink,
                            "tool-result",
                            {
                                "operation": effect.operation,
                                "success": result.success,
                                "error": result.error,
                                "durationMs": round(result.duration_ms, 2),
                            },
                        )
                    )

            final_data = self._aggregate(results, effect_results)
            succeeded = sum(1 for r in effect_results if r.success)
            events.append(
                await self._publish(
                    sink,
                    "tool-result",
                    {
                        "summary": "All tool operations completed",
                        "totalOperations": len(effect_results),
                        "successfulOperations": succeeded,
                    },
                )
            )
            return OrchestrationResult(
                success=final_data["summary"]["overallSuccess"],
                tool_results=results,
                side_effect_results=effect_results,
                events=events,
                summary={
                    "totalSideEffects": len(effect_results),
                    "successfulSideEffects": succeeded,
                    "failedSideEffects": len(effect_results) - succeeded,
                    "totalDurationMs": (time.perf_counter() - started) * 1000,
                },
                final_data=final_data,
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            log.exception("Orchestration failed")
            events.append(
                await self._publish(
                    sink, "error", {"error": client_error_message(e), "context": "tool-execution"}
                )
            )
            return OrchestrationResult(
                success=False,
                tool_results=results,
                side_effect_results=effect_results,
                events=events,
                summary={
                    "totalSideEffects": len(effect_results),
                    "successfulSideEffects": sum(1 for r in effect_results if r.success),
                    "failedSideEffects": sum(1 for r in effect_results if not r.success),
                    "totalDurationMs": (time.perf_counter() - started) * 1000,
                },
                error=client_error_message(e),
            )

    @staticmethod
    def _aggregate(
        tool_results: list[ToolResult], effect_results: list[SideEffectResult]
    ) -> dict[str, Any]:
        return {
            "tools": {
                f"tool-{i}": {
                    "success": tr.success,
                    "data": tr.data,
                    "metadata": tr.metadata,
                    "error": tr.error,
                }
                for i, tr in enumerate(tool_results)
            },
            "effects": {
                f"effect-{i}": {
                    "operation": r.effect.operation,
                    "success": r.success,
                    "data": r.data,
                    "error": r.error,
                }
                for i, r in enumerate(effect_results)
            },
            "summary": {
                "toolsExecuted": len(tool_results),
                "sideEffectsExecuted": len(effect_results),
                "overallSuccess": all(tr.success for tr in tool_results)
                and all(r.success for r in effect_results),
            },
        }
