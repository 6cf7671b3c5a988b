"""Bulk task operations over the workspace sync endpoint."""

from taskpilot.batch.pipeline import (
    MAX_BATCH_COMMANDS,
    BatchCommand,
    BatchPipeline,
    BatchResult,
    CommandOutcome,
    ProjectDraft,
    TaskChange,
    TaskDraft,
    build_complete_commands,
    build_create_commands,
    build_delete_commands,
    build_project_create_commands,
    build_project_with_tasks,
    build_update_commands,
)

__all__ = [
    "MAX_BATCH_COMMANDS",
    "BatchCommand",
    "BatchPipeline",
    "BatchResult",
    "CommandOutcome",
    "ProjectDraft",
    "TaskChange",
    "TaskDraft",
    "build_complete_commands",
    "build_create_commands",
    "build_delete_commands",
    "build_project_create_commands",
    "build_project_with_tasks",
    "build_update_commands",
]
