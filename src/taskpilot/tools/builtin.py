"""Built-in pure tools.

Each tool validates its input with a pydantic model and returns side effects
instead of doing I/O. Operation names are the keys of the orchestrator's
dispatch table.
"""

from __future__ import annotations

from typing import Any, Literal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field

from taskpilot.batch.pipeline import (
    BatchCommand,
    ProjectDraft,
    TaskChange,
    TaskDraft,
    build_complete_commands,
    build_create_commands,
    build_delete_commands,
    build_project_with_tasks,
    build_update_commands,
)
from taskpilot.tools.base import (
    EmptyInput,
    Priority,
    PureTool,
    SideEffect,
    SideEffectKind,
    ToolContext,
    ToolInput,
    ToolRegistry,
    ToolResult,
)

# -- internal workflow -----------------------------------------------------


class TodoItem(ToolInput):
    id: str = Field(description="Unique identifier for the todo item")
    content: str = Field(description="Brief description of the step")
    status: Literal["pending", "in_progress", "completed", "cancelled"] = "pending"
    priority: Literal["high", "medium", "low"] = "medium"


class TodoWriteInput(ToolInput):
    todos: list[TodoItem] = Field(description="The full updated todo list")


class InternalTodoWrite(PureTool):
    id = "internalTodoWrite"
    description = (
        "Replace the assistant's internal todo list used to coordinate multi-step work. "
        "Not for user tasks; use task tools for those."
    )
    input_model = TodoWriteInput

    async def run(self, args: TodoWriteInput, ctx: ToolContext) -> ToolResult:
        todos = [t.model_dump() for t in args.todos]
        counts = {s: sum(1 for t in todos if t["status"] == s) for s in ("pending", "in_progress", "completed")}
        summary = {
            "total": len(todos),
            "pending": counts["pending"],
            "inProgress": counts["in_progress"],
            "completed": counts["completed"],
            "remaining": counts["pending"] + counts["in_progress"],
        }
        return ToolResult(
            success=True,
            data={"todos": todos, "summary": summary},
            metadata={
                "title": "Workflow todos updated",
                "description": (
                    f"{len(todos)} todos ({counts['pending']} pending, "
                    f"{counts['in_progress']} in progress, {counts['completed']} completed)"
                ),
            },
            side_effects=[
                SideEffect(
                    kind=SideEffectKind.MUTATION,
                    operation="internal_todos.update",
                    args={"todos": todos},
                    priority=Priority.HIGH,
                )
            ],
        )


class InternalTodoRead(PureTool):
    id = "internalTodoRead"
    description = "Read the assistant's internal todo list."
    input_model = EmptyInput

    async def run(self, args: EmptyInput, ctx: ToolContext) -> ToolResult:
        return ToolResult(
            success=True,
            metadata={"title": "Reading workflow todos"},
            side_effects=[SideEffect(kind=SideEffectKind.QUERY, operation="internal_todos.get")],
        )


class MentalModelRead(PureTool):
    id = "mentalModelRead"
    description = "Read the notes the assistant keeps about the user's preferences and habits."
    input_model = EmptyInput

    async def run(self, args: EmptyInput, ctx: ToolContext) -> ToolResult:
        return ToolResult(
            success=True,
            metadata={"title": "Reading mental model"},
            side_effects=[SideEffect(kind=SideEffectKind.QUERY, operation="mental_model.get")],
        )


class MentalModelEditInput(ToolInput):
    content: str = Field(description="Complete new content of the notes")


class MentalModelEdit(PureTool):
    id = "mentalModelEdit"
    description = "Rewrite the notes about the user's preferences and habits."
    input_model = MentalModelEditInput

    async def run(self, args: MentalModelEditInput, ctx: ToolContext) -> ToolResult:
        return ToolResult(
            success=True,
            data={"length": len(args.content)},
            metadata={"title": "Mental model updated"},
            side_effects=[
                SideEffect(
                    kind=SideEffectKind.MUTATION,
                    operation="mental_model.edit",
                    args={"content": args.content},
                )
            ],
        )


class CurrentTimeInput(ToolInput):
    timezone: str | None = Field(default=None, description="IANA zone, e.g. 'Europe/Berlin'; default UTC")


class GetCurrentTime(PureTool):
    id = "getCurrentTime"
    description = "Get the current date and time."
    input_model = CurrentTimeInput

    async def run(self, args: CurrentTimeInput, ctx: ToolContext) -> ToolResult:
        zone_name = args.timezone or "UTC"
        try:
            zone = ZoneInfo(zone_name)
        except (ZoneInfoNotFoundError, ValueError):
            return ToolResult.fail(f"Unknown timezone: {zone_name}")
        local = ctx.now.astimezone(zone)
        return ToolResult(
            success=True,
            data={
                "iso": local.isoformat(timespec="seconds"),
                "date": local.date().isoformat(),
                "weekday": local.strftime("%A"),
                "timezone": zone_name,
            },
        )


# -- mode control ------------------------------------------------------------


class SwitchModeInput(ToolInput):
    mode_name: str = Field(alias="modeName", description="Mode to switch to, e.g. 'planning'")
    reason: str = Field(default="", description="Why this mode fits the next step")


class SwitchMode(PureTool):
    id = "switchMode"
    description = (
        "Switch the conversation to another mode when the current one lacks the tools "
        "for the next step. Modes: primary, information-collector, planning, execution."
    )
    input_model = SwitchModeInput

    async def run(self, args: SwitchModeInput, ctx: ToolContext) -> ToolResult:
        return ToolResult(
            success=True,
            data={"requestedMode": args.mode_name, "reason": args.reason},
            side_effects=[
                SideEffect(
                    kind=SideEffectKind.MUTATION,
                    operation="session.switch_mode",
                    args={"mode": args.mode_name, "reason": args.reason},
                    priority=Priority.HIGH,
                )
            ],
        )


class DelegateInput(ToolInput):
    mode_type: Literal["information-collector", "planning", "execution"] = Field(alias="modeType")
    prompt: str = Field(description="Detailed description of the delegated work")
    description: str | None = Field(default=None, description="Short 3-5 word label")


class DelegateTask(PureTool):
    id = "task"
    description = (
        "Hand the next part of the work to a specialised mode: information-collector to gather "
        "facts, planning to build a plan, execution to change tasks or calendar events."
    )
    input_model = DelegateInput

    async def run(self, args: DelegateInput, ctx: ToolContext) -> ToolResult:
        label = args.description or f"{args.mode_type} task"
        return ToolResult(
            success=True,
            data={"delegatedTo": args.mode_type, "task": label, "instructions": args.prompt},
            metadata={"title": f"Delegating to {args.mode_type} mode"},
            side_effects=[
                SideEffect(
                    kind=SideEffectKind.MUTATION,
                    operation="session.switch_mode",
                    args={"mode": args.mode_type, "reason": label},
                    priority=Priority.HIGH,
                )
            ],
        )


# -- tasks ---------------------------------------------------------------------


def _external(operation: str, args: dict[str, Any], priority: Priority = Priority.NORMAL) -> SideEffect:
    return SideEffect(kind=SideEffectKind.EXTERNAL_CALL, operation=operation, args=args, priority=priority)


def _batch(commands: list[BatchCommand], title: str) -> ToolResult:
    if not commands:
        return ToolResult.fail("No changes to apply")
    return ToolResult(
        success=True,
        metadata={"title": title, "commandCount": len(commands)},
        side_effects=[_external("tasks.batch", {"commands": [c.to_dict() for c in commands]})],
    )


class GetTasksInput(ToolInput):
    project_id: str | None = Field(default=None, alias="projectId")
    include_completed: bool = Field(default=False, alias="includeCompleted")


class GetTasks(PureTool):
    id = "getTasks"
    description = "List the user's tasks and projects."
    input_model = GetTasksInput

    async def run(self, args: GetTasksInput, ctx: ToolContext) -> ToolResult:
        return ToolResult(
            success=True,
            side_effects=[
                _external(
                    "tasks.list",
                    {"project_id": args.project_id, "include_completed": args.include_completed},
                )
            ],
        )


class CreateTask(PureTool):
    id = "createTask"
    description = "Create one task."
    input_model = TaskDraft

    async def run(self, args: TaskDraft, ctx: ToolContext) -> ToolResult:
        payload = args.model_dump(exclude={"project_temp_id"}, exclude_none=True)
        return ToolResult(
            success=True,
            metadata={"title": f"Creating task: {args.content}"},
            side_effects=[_external("tasks.create", payload)],
        )


class UpdateTaskInput(TaskChange):
    pass


class UpdateTask(PureTool):
    id = "updateTask"
    description = "Change fields of one task or mark it complete."
    input_model = UpdateTaskInput

    async def run(self, args: UpdateTaskInput, ctx: ToolContext) -> ToolResult:
        fields = args.model_dump(exclude={"task_id", "completed"}, exclude_none=True)
        effects: list[SideEffect] = []
        if fields:
            effects.append(_external("tasks.update", {"task_id": args.task_id, **fields}))
        if args.completed:
            effects.append(_external("tasks.complete", {"task_id": args.task_id}))
        if not effects:
            return ToolResult.fail("No changes to apply")
        return ToolResult(success=True, side_effects=effects)


class TaskIdInput(ToolInput):
    task_id: str = Field(alias="taskId")


class DeleteTask(PureTool):
    id = "deleteTask"
    description = "Delete one task."
    input_model = TaskIdInput

    async def run(self, args: TaskIdInput, ctx: ToolContext) -> ToolResult:
        return ToolResult(success=True, side_effects=[_external("tasks.delete", {"task_id": args.task_id})])


class CreateBatchInput(ToolInput):
    tasks: list[TaskDraft] = Field(min_length=1)


class CreateBatchTasks(PureTool):
    id = "createBatchTasks"
    description = "Create several tasks in one request."
    input_model = CreateBatchInput

    async def run(self, args: CreateBatchInput, ctx: ToolContext) -> ToolResult:
        return _batch(build_create_commands(args.tasks), f"Creating {len(args.tasks)} tasks")


class UpdateBatchInput(ToolInput):
    updates: list[TaskChange] = Field(min_length=1)


class UpdateBatchTasks(PureTool):
    id = "updateBatchTasks"
    description = "Update several tasks in one request; 'completed' completes or reopens a task."
    input_model = UpdateBatchInput

    async def run(self, args: UpdateBatchInput, ctx: ToolContext) -> ToolResult:
        return _batch(build_update_commands(args.updates), f"Updating {len(args.updates)} tasks")


class TaskIdsInput(ToolInput):
    task_ids: list[str] = Field(alias="taskIds", min_length=1)


class DeleteBatchTasks(PureTool):
    id = "deleteBatchTasks"
    description = "Delete several tasks in one request."
    input_model = TaskIdsInput

    async def run(self, args: TaskIdsInput, ctx: ToolContext) -> ToolResult:
        return _batch(build_delete_commands(args.task_ids), f"Deleting {len(args.task_ids)} tasks")


class CompleteBatchTasks(PureTool):
    id = "completeBatchTasks"
    description = "Complete several tasks in one request."
    input_model = TaskIdsInput

    async def run(self, args: TaskIdsInput, ctx: ToolContext) -> ToolResult:
        return _batch(build_complete_commands(args.task_ids), f"Completing {len(args.task_ids)} tasks")


class ProjectWithTasksInput(ToolInput):
    project: ProjectDraft
    tasks: list[TaskDraft] = Field(default_factory=list)


class CreateProjectWithTasks(PureTool):
    id = "createProjectWithTasks"
    description = "Create a project and its tasks in one request."
    input_model = ProjectWithTasksInput

    async def run(self, args: ProjectWithTasksInput, ctx: ToolContext) -> ToolResult:
        commands = build_project_with_tasks(args.project, args.tasks)
        return _batch(commands, f"Creating project {args.project.name} with {len(args.tasks)} tasks")


# -- calendar ------------------------------------------------------------------


class ListEventsInput(ToolInput):
    start: str | None = Field(default=None, description="ISO 8601 lower bound")
    end: str | None = Field(default=None, description="ISO 8601 upper bound")


class ListCalendarEvents(PureTool):
    id = "listCalendarEvents"
    description = "List calendar events in a time range."
    input_model = ListEventsInput

    async def run(self, args: ListEventsInput, ctx: ToolContext) -> ToolResult:
        return ToolResult(
            success=True,
            side_effects=[_external("calendar.list_events", args.model_dump(exclude_none=True))],
        )


class EventInput(ToolInput):
    summary: str
    start: str = Field(description="ISO 8601 start")
    end: str = Field(description="ISO 8601 end")
    description: str | None = None
    location: str | None = None


class CreateCalendarEvent(PureTool):
    id = "createCalendarEvent"
    description = "Create a calendar event."
    input_model = EventInput

    async def run(self, args: EventInput, ctx: ToolContext) -> ToolResult:
        if args.end < args.start:
            return ToolResult.fail("Event end must not be before its start")
        return ToolResult(
            success=True,
            side_effects=[_external("calendar.create_event", args.model_dump(exclude_none=True))],
        )


class EventChangeInput(ToolInput):
    event_id: str = Field(alias="eventId")
    summary: str | None = None
    start: str | None = None
    end: str | None = None
    description: str | None = None
    location: str | None = None


class UpdateCalendarEvent(PureTool):
    id = "updateCalendarEvent"
    description = "Change fields of a calendar event."
    input_model = EventChangeInput

    async def run(self, args: EventChangeInput, ctx: ToolContext) -> ToolResult:
        payload = args.model_dump(exclude_none=True)
        if len(payload) == 1:
            return ToolResult.fail("No changes to apply")
        return ToolResult(success=True, side_effects=[_external("calendar.update_event", payload)])


class EventIdInput(ToolInput):
    event_id: str = Field(alias="eventId")


class DeleteCalendarEvent(PureTool):
    id = "deleteCalendarEvent"
    description = "Delete a calendar event."
    input_model = EventIdInput

    async def run(self, args: EventIdInput, ctx: ToolContext) -> ToolResult:
        return ToolResult(
            success=True,
            side_effects=[_external("calendar.delete_event", {"event_id": args.event_id})],
        )


BUILTIN_TOOLS: tuple[type[PureTool], ...] = (
    InternalTodoWrite,
    InternalTodoRead,
    MentalModelRead,
    MentalModelEdit,
    GetCurrentTime,
    SwitchMode,
    DelegateTask,
    GetTasks,
    CreateTask,
    UpdateTask,
    DeleteTask,
    CreateBatchTasks,
    UpdateBatchTasks,
    DeleteBatchTasks,
    CompleteBatchTasks,
    CreateProjectWithTasks,
    ListCalendarEvents,
    CreateCalendarEvent,
    UpdateCalendarEvent,
    DeleteCalendarEvent,
)


def create_default_registry() -> ToolRegistry:
    """Registry holding every built-in tool."""
    return ToolRegistry(tool() for tool in BUILTIN_TOOLS)
