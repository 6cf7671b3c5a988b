"""Batch command pipeline.

Turns bulk task edits into sync commands, submits them in one service call
and maps the per-command statuses back onto what was submitted.
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from pydantic import Field

from taskpilot.errors import BatchTooLargeError
from taskpilot.logging import get_logger
from taskpilot.services.base import SYNC_OPERATION, WorkspaceService
from taskpilot.tools.base import ToolInput

log = get_logger("batch")

MAX_BATCH_COMMANDS = 100


class TaskDraft(ToolInput):
    """A task to create."""

    content: str = Field(description="Task title")
    description: str | None = None
    project_id: str | None = Field(default=None, alias="projectId")
    project_temp_id: str | None = Field(
        default=None, alias="projectTempId", description="Temp id of a project created in the same batch"
    )
    priority: int | None = Field(default=None, ge=1, le=4)
    due_string: str | None = Field(default=None, alias="dueString", description="e.g. 'tomorrow' or '2026-05-01'")
    labels: list[str] = Field(default_factory=list)


class TaskChange(ToolInput):
    """Changes to an existing task; unset fields are left alone."""

    task_id: str = Field(alias="taskId")
    content: str | None = None
    description: str | None = None
    project_id: str | None = Field(default=None, alias="projectId")
    priority: int | None = Field(default=None, ge=1, le=4)
    due_string: str | None = Field(default=None, alias="dueString")
    labels: list[str] | None = None
    completed: bool | None = None


class ProjectDraft(ToolInput):
    name: str
    color: str | None = None
    parent_id: str | None = Field(default=None, alias="parentId")
    description: str | None = None


@dataclass
class BatchCommand:
    type: str
    args: dict[str, Any]
    uuid: str = field(default_factory=lambda: str(uuid.uuid4()))
    temp_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"type": self.type, "uuid": self.uuid, "args": self.args}
        if self.temp_id:
            data["temp_id"] = self.temp_id
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BatchCommand:
        return cls(
            type=data["type"],
            args=dict(data.get("args") or {}),
            uuid=data["uuid"],
            temp_id=data.get("temp_id"),
        )


@dataclass
class CommandOutcome:
    uuid: str
    type: str
    temp_id: str | None = None
    real_id: str | None = None
    error: str | None = None
    details: Any = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"uuid": self.uuid, "type": self.type}
        if self.temp_id:
            data["tempId"] = self.temp_id
        if self.real_id:
            data["realId"] = self.real_id
        if self.error:
            data["error"] = self.error
        return data


@dataclass
class BatchResult:
    successful: list[CommandOutcome] = field(default_factory=list)
    failed: list[CommandOutcome] = field(default_factory=list)
    temp_id_mapping: dict[str, str] = field(default_factory=dict)
    sync_token: str | None = None

    @property
    def success(self) -> bool:
        return not self.failed

    def to_dict(self) -> dict[str, Any]:
        return {
            "successful": [o.to_dict() for o in self.successful],
            "failed": [o.to_dict() for o in self.failed],
            "tempIdMapping": dict(self.temp_id_mapping),
            "syncToken": self.sync_token,
            "summary": {
                "total": len(self.successful) + len(self.failed),
                "succeeded": len(self.successful),
                "failed": len(self.failed),
            },
        }


def new_temp_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


def _task_args(draft: TaskDraft) -> dict[str, Any]:
    args: dict[str, Any] = {"content": draft.content}
    if draft.description:
        args["description"] = draft.description
    if draft.project_temp_id:
        args["project_id"] = draft.project_temp_id
    elif draft.project_id:
        args["project_id"] = draft.project_id
    if draft.priority:
        args["priority"] = draft.priority
    if draft.due_string:
        args["due_string"] = draft.due_string
    if draft.labels:
        args["labels"] = list(draft.labels)
    return args


def build_create_commands(items: Iterable[TaskDraft]) -> list[BatchCommand]:
    """One item_add per draft, each with its own temp id."""
    return [
        BatchCommand(type="item_add", args=_task_args(draft), temp_id=new_temp_id("task"))
        for draft in items
    ]


def build_update_commands(items: Iterable[TaskChange]) -> list[BatchCommand]:
    """item_update for field changes plus item_complete/item_uncomplete for flags.

    A change with neither produces no command.
    """
    commands: list[BatchCommand] = []
    for change in items:
        args: dict[str, Any] = {"id": change.task_id}
        if change.content:
            args["content"] = change.content
        if change.description is not None:
            args["description"] = change.description
        if change.project_id:
            args["project_id"] = change.project_id
        if change.priority:
            args["priority"] = change.priority
        if change.due_string:
            args["due_string"] = change.due_string
        if change.labels is not None:
            args["labels"] = list(change.labels)

        if len(args) > 1:
            commands.append(BatchCommand(type="item_update", args=args))
        if change.completed is True:
            commands.append(BatchCommand(type="item_complete", args={"id": change.task_id}))
        elif change.completed is False:
            commands.append(BatchCommand(type="item_uncomplete", args={"id": change.task_id}))
    return commands


def build_delete_commands(task_ids: Iterable[str]) -> list[BatchCommand]:
    return [BatchCommand(type="item_delete", args={"id": task_id}) for task_id in task_ids]


def build_complete_commands(task_ids: Iterable[str]) -> list[BatchCommand]:
    return [BatchCommand(type="item_complete", args={"id": task_id}) for task_id in task_ids]


def _project_command(project: ProjectDraft, temp_id: str) -> BatchCommand:
    args: dict[str, Any] = {"name": project.name}
    if project.color:
        args["color"] = project.color
    if project.parent_id:
        args["parent_id"] = project.parent_id
    if project.description:
        args["description"] = project.description
    return BatchCommand(type="project_add", args=args, temp_id=temp_id)


def build_project_create_commands(projects: Iterable[ProjectDraft]) -> list[BatchCommand]:
    return [_project_command(p, new_temp_id("project")) for p in projects]


def build_project_with_tasks(
    project: ProjectDraft, tasks: Iterable[TaskDraft]
) -> list[BatchCommand]:
    """A project_add followed by item_adds that reference the project's temp id."""
    project_temp_id = new_temp_id("project")
    linked = [
        t.model_copy(update={"project_temp_id": project_temp_id, "project_id": None}) for t in tasks
    ]
    return [_project_command(project, project_temp_id), *build_create_commands(linked)]


class BatchPipeline:
    """Submits sync batches to a workspace service."""

    def __init__(self, service: WorkspaceService, *, max_commands: int = MAX_BATCH_COMMANDS) -> None:
        self._service = service
        self.max_commands = max_commands

    async def execute_batch(self, commands: list[BatchCommand]) -> BatchResult:
        """Run a batch.

        Every submitted command ends up in exactly one of successful/failed.

        Raises:
            BatchTooLargeError: more than max_commands commands; nothing is sent.
        """
        if not commands:
            return BatchResult()
        if len(commands) > self.max_commands:
            raise BatchTooLargeError(len(commands), self.max_commands)

        try:
            response = await self._service.execute(
                SYNC_OPERATION, {"commands": [c.to_dict() for c in commands]}
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            log.warning("Batch of %d commands failed: %s", len(commands), e)
            return BatchResult(
                failed=[
                    CommandOutcome(
                        uuid=c.uuid, type=c.type, temp_id=c.temp_id, error=str(e) or "Batch execution failed"
                    )
                    for c in commands
                ]
            )

        return self._join(response or {}, commands)

    @staticmethod
    def _join(response: dict[str, Any], commands: list[BatchCommand]) -> BatchResult:
        statuses: dict[str, Any] = response.get("sync_status") or {}
        mapping: dict[str, str] = dict(response.get("temp_id_mapping") or {})
        result = BatchResult(temp_id_mapping=mapping, sync_token=response.get("sync_token"))

        for command in commands:
            status = statuses.get(command.uuid)
            if status == "ok":
                result.successful.append(
                    CommandOutcome(
                        uuid=command.uuid,
                        type=command.type,
                        temp_id=command.temp_id,
                        real_id=mapping.get(command.temp_id) if command.temp_id else None,
                    )
                )
                continue

            if status is None:
                error, details = "no status returned", None
            elif isinstance(status, dict):
                error, details = str(status.get("error") or "Command failed"), status
            else:
                error, details = str(status), status
            result.failed.append(
                CommandOutcome(
                    uuid=command.uuid,
                    type=command.type,
                    temp_id=command.temp_id,
                    error=error,
                    details=details,
                )
            )

        if result.failed:
            log.info(
                "Batch finished with %d/%d failed commands", len(result.failed), len(commands)
            )
        return result
