"""Local workspace service.

Keeps tasks, projects and calendar events in memory, optionally mirrored to
a YAML file, and implements the same operation names (including `sync`
batches with temp-id resolution) a hosted task/calendar backend exposes.
Used for development, tests and single-user deployments.
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any

import yaml
from filelock import FileLock

from taskpilot.errors import ServiceOperationError
from taskpilot.logging import get_logger
from taskpilot.session.model import utc_now

log = get_logger("services.local")

Handler = Callable[[dict[str, Any]], Awaitable[dict[str, Any]]]

_TASK_FIELDS = ("content", "description", "project_id", "priority", "due_string", "labels")
_EVENT_FIELDS = ("summary", "start", "end", "description", "location")


def _new_id() -> str:
    return uuid.uuid4().hex[:16]


def _require(args: dict[str, Any], key: str) -> Any:
    value = args.get(key)
    if value in (None, ""):
        raise ServiceOperationError(f"Missing required argument: {key}")
    return value


class LocalWorkspaceService:
    """In-memory task/calendar backend."""

    def __init__(self, path: str | Path | None = None) -> None:
        self._path = Path(path).expanduser() if path else None
        self._tasks: dict[str, dict[str, Any]] = {}
        self._projects: dict[str, dict[str, Any]] = {}
        self._events: dict[str, dict[str, Any]] = {}
        self._lock = asyncio.Lock()
        self._handlers: dict[str, Handler] = {
            "tasks.list": self._list_tasks,
            "tasks.create": self._create_task,
            "tasks.update": self._update_task,
            "tasks.delete": self._delete_task,
            "tasks.complete": self._complete_task,
            "calendar.list_events": self._list_events,
            "calendar.create_event": self._create_event,
            "calendar.update_event": self._update_event,
            "calendar.delete_event": self._delete_event,
            "sync": self._sync,
        }
        if self._path is not None:
            self._load()

    # -- persistence -----------------------------------------------------

    def _load(self) -> None:
        assert self._path is not None
        if not self._path.exists():
            return
        with open(self._path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        self._tasks = data.get("tasks") or {}
        self._projects = data.get("projects") or {}
        self._events = data.get("events") or {}

    def _save_sync(self, snapshot: dict[str, Any]) -> None:
        assert self._path is not None
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with FileLock(self._path.with_suffix(".lock"), timeout=10):
            with open(self._path, "w", encoding="utf-8") as f:
                yaml.safe_dump(snapshot, f, default_flow_style=False, allow_unicode=True)

    async def _save(self) -> None:
        if self._path is None:
            return
        snapshot = {"tasks": self._tasks, "projects": self._projects, "events": self._events}
        await asyncio.to_thread(self._save_sync, snapshot)

    # -- entry point -----------------------------------------------------

    async def execute(self, operation: str, args: dict[str, Any]) -> dict[str, Any]:
        handler = self._handlers.get(operation)
        if handler is None:
            raise ServiceOperationError(f"Unsupported operation: {operation}")
        async with self._lock:
            result = await handler(dict(args or {}))
            if operation not in ("tasks.list", "calendar.list_events"):
                await self._save()
        log.debug("Executed %s", operation)
        return result

    # -- tasks -----------------------------------------------------------

    def _get_task(self, task_id: str) -> dict[str, Any]:
        task = self._tasks.get(task_id)
        if task is None:
            raise ServiceOperationError(f"Task not found: {task_id}")
        return task

    def _add_task(self, args: dict[str, Any]) -> dict[str, Any]:
        content = _require(args, "content")
        project_id = args.get("project_id")
        if project_id and project_id not in self._projects:
            raise ServiceOperationError(f"Project not found: {project_id}")
        task = {
            "id": _new_id(),
            "content": content,
            "description": args.get("description") or "",
            "project_id": project_id,
            "priority": args.get("priority") or 1,
            "due_string": args.get("due_string"),
            "labels": list(args.get("labels") or []),
            "completed": False,
            "created_at": utc_now().isoformat(),
        }
        self._tasks[task["id"]] = task
        return task

    def _apply_task_update(self, args: dict[str, Any]) -> dict[str, Any]:
        task = self._get_task(_require(args, "id"))
        for key in _TASK_FIELDS:
            if args.get(key) is not None:
                task[key] = args[key]
        return task

    async def _list_tasks(self, args: dict[str, Any]) -> dict[str, Any]:
        project_id = args.get("project_id")
        include_completed = bool(args.get("include_completed"))
        tasks = [
            dict(t)
            for t in self._tasks.values()
            if (project_id is None or t.get("project_id") == project_id)
            and (include_completed or not t.get("completed"))
        ]
        return {"tasks": tasks, "projects": [dict(p) for p in self._projects.values()]}

    async def _create_task(self, args: dict[str, Any]) -> dict[str, Any]:
        return {"task": dict(self._add_task(args))}

    async def _update_task(self, args: dict[str, Any]) -> dict[str, Any]:
        args = {**args, "id": args.get("task_id") or args.get("id")}
        return {"task": dict(self._apply_task_update(args))}

    async def _delete_task(self, args: dict[str, Any]) -> dict[str, Any]:
        task_id = _require(args, "task_id")
        self._get_task(task_id)
        del self._tasks[task_id]
        return {"deleted": task_id}

    async def _complete_task(self, args: dict[str, Any]) -> dict[str, Any]:
        task = self._get_task(_require(args, "task_id"))
        task["completed"] = True
        return {"task": dict(task)}

    # -- calendar --------------------------------------------------------

    def _get_event(self, event_id: str) -> dict[str, Any]:
        event = self._events.get(event_id)
        if event is None:
            raise ServiceOperationError(f"Event not found: {event_id}")
        return event

    async def _list_events(self, args: dict[str, Any]) -> dict[str, Any]:
        start = args.get("start")
        end = args.get("end")
        events = [
            dict(e)
            for e in sorted(self._events.values(), key=lambda e: e["start"])
            if (start is None or e["end"] >= start) and (end is None or e["start"] <= end)
        ]
        return {"events": events}

    async def _create_event(self, args: dict[str, Any]) -> dict[str, Any]:
        start = _require(args, "start")
        end = _require(args, "end")
        if end < start:
            raise ServiceOperationError("Event end is before its start")
        event = {
            "id": _new_id(),
            "summary": _require(args, "summary"),
            "start": start,
            "end": end,
            "description": args.get("description") or "",
            "location": args.get("location") or "",
        }
        self._events[event["id"]] = event
        return {"event": dict(event)}

    async def _update_event(self, args: dict[str, Any]) -> dict[str, Any]:
        event = self._get_event(_require(args, "event_id"))
        for key in _EVENT_FIELDS:
            if args.get(key) is not None:
                event[key] = args[key]
        return {"event": dict(event)}

    async def _delete_event(self, args: dict[str, Any]) -> dict[str, Any]:
        event_id = _require(args, "event_id")
        self._get_event(event_id)
        del self._events[event_id]
        return {"deleted": event_id}

    # -- sync batches ----------------------------------------------------

    async def _sync(self, args: dict[str, Any]) -> dict[str, Any]:
        """Apply commands in order; a failing command does not stop the rest."""
        statuses: dict[str, Any] = {}
        mapping: dict[str, str] = {}

        def resolve(value: Any) -> Any:
            return mapping.get(value, value) if isinstance(value, str) else value

        for command in args.get("commands") or []:
            command_uuid = command.get("uuid") or _new_id()
            command_args = {k: resolve(v) for k, v in (command.get("args") or {}).items()}
            try:
                real_id = self._apply_command(command.get("type", ""), command_args)
            except ServiceOperationError as e:
                statuses[command_uuid] = {"error": str(e), "error_code": 400}
                continue
            if command.get("temp_id") and real_id:
                mapping[command["temp_id"]] = real_id
            statuses[command_uuid] = "ok"

        return {
            "sync_status": statuses,
            "temp_id_mapping": mapping,
            "sync_token": uuid.uuid4().hex,
        }

    def _apply_command(self, command_type: str, args: dict[str, Any]) -> str | None:
        if command_type == "item_add":
            return self._add_task(args)["id"]
        if command_type == "item_update":
            return self._apply_task_update(args)["id"]
        if command_type in ("item_complete", "item_uncomplete"):
            task = self._get_task(_require(args, "id"))
            task["completed"] = command_type == "item_complete"
            return task["id"]
        if command_type == "item_delete":
            task_id = _require(args, "id")
            self._get_task(task_id)
            del self._tasks[task_id]
            return task_id
        if command_type == "project_add":
            project = {
                "id": _new_id(),
                "name": _require(args, "name"),
                "color": args.get("color"),
                "parent_id": args.get("parent_id"),
                "description": args.get("description") or "",
            }
            self._projects[project["id"]] = project
            return project["id"]
        raise ServiceOperationError(f"Unknown command type: {command_type}")
