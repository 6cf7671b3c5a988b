"""Conversation sessions: data model, store contract, stores and locks.

The coordinator lives in taskpilot.session.coordinator and is imported from
there directly.
"""

from taskpilot.session.locks import (
    DEFAULT_LOCK_TTL,
    MIN_LOCK_TTL,
    AcquireStatus,
    LockLease,
    LockResult,
    ReleaseStatus,
    decide_acquire,
    decide_release,
)
from taskpilot.session.model import (
    Message,
    MessageRole,
    PendingTurn,
    Session,
    SessionLock,
    ToolCallRecord,
    ToolResultRecord,
    utc_now,
)
from taskpilot.session.protocols import AppendResult, ConversationStore
from taskpilot.session.storage import (
    BaseConversationStore,
    FileConversationStore,
    MemoryConversationStore,
    get_sessions_dir,
)

__all__ = [
    "AcquireStatus",
    "AppendResult",
    "BaseConversationStore",
    "ConversationStore",
    "DEFAULT_LOCK_TTL",
    "FileConversationStore",
    "LockLease",
    "LockResult",
    "MIN_LOCK_TTL",
    "MemoryConversationStore",
    "Message",
    "MessageRole",
    "PendingTurn",
    "ReleaseStatus",
    "Session",
    "SessionLock",
    "ToolCallRecord",
    "ToolResultRecord",
    "decide_acquire",
    "decide_release",
    "get_sessions_dir",
    "utc_now",
]
