"""Task and calendar services."""

from taskpilot.services.base import (
    CALENDAR_OPERATIONS,
    SYNC_OPERATION,
    TASK_OPERATIONS,
    WorkspaceService,
)
from taskpilot.services.local import LocalWorkspaceService

__all__ = [
    "CALENDAR_OPERATIONS",
    "LocalWorkspaceService",
    "SYNC_OPERATION",
    "TASK_OPERATIONS",
    "WorkspaceService",
]
