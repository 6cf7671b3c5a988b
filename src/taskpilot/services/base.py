"""Task and calendar service contract.

Services are addressed by operation name with a dict of arguments, which
keeps the orchestrator's dispatch table independent of any one backend.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

# Operation names a workspace service understands
TASK_OPERATIONS = (
    "tasks.list",
    "tasks.create",
    "tasks.update",
    "tasks.delete",
    "tasks.complete",
)
CALENDAR_OPERATIONS = (
    "calendar.list_events",
    "calendar.create_event",
    "calendar.update_event",
    "calendar.delete_event",
)
SYNC_OPERATION = "sync"


@runtime_checkable
class WorkspaceService(Protocol):
    """Executes named task/calendar operations.

    `sync` takes {"commands": [...]} and returns
    {"sync_status": {uuid: "ok" | {...error}}, "temp_id_mapping": {...}, "sync_token": str}.

    Raises ServiceOperationError for rejected operations.
    """

    async def execute(self, operation: str, args: dict[str, Any]) -> dict[str, Any]: ...
