"""Session lock semantics.

A session lock is a TTL lease held by one request id. The decision functions
here are pure: a store calls them inside its own atomic read-modify-write so
the check-and-set cannot interleave with another writer.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from taskpilot.logging import get_logger
from taskpilot.session.model import SessionLock

if TYPE_CHECKING:
    from taskpilot.session.protocols import ConversationStore

log = get_logger("locks")

DEFAULT_LOCK_TTL = 15.0
MIN_LOCK_TTL = 1.0


class AcquireStatus(Enum):
    ACQUIRED = "acquired"
    RENEWED = "renewed"  # Same request already held it
    ACQUIRED_EXPIRED = "acquired_expired"  # Took over an expired lease
    BUSY = "busy"


class ReleaseStatus(Enum):
    RELEASED = "released"
    MISSING = "missing"  # No lock present
    EXPIRED = "expired"  # Someone else's lease had lapsed; cleared
    NOT_OWNER = "not_owner"


@dataclass(frozen=True)
class LockResult:
    status: AcquireStatus
    owner_request_id: str
    expires_at: float

    @property
    def acquired(self) -> bool:
        return self.status is not AcquireStatus.BUSY


def decide_acquire(
    current: SessionLock | None,
    request_id: str,
    ttl: float,
    now: float,
) -> tuple[LockResult, SessionLock | None]:
    """Decide an acquisition attempt.

    Returns the result and the lock that should be stored afterwards.
    """
    ttl = max(ttl, MIN_LOCK_TTL)
    expires_at = now + ttl

    if current is None:
        lock = SessionLock(request_id, expires_at)
        return LockResult(AcquireStatus.ACQUIRED, request_id, expires_at), lock

    if current.request_id == request_id:
        lock = SessionLock(request_id, expires_at)
        return LockResult(AcquireStatus.RENEWED, request_id, expires_at), lock

    if current.is_expired(now):
        lock = SessionLock(request_id, expires_at)
        return LockResult(AcquireStatus.ACQUIRED_EXPIRED, request_id, expires_at), lock

    busy = LockResult(AcquireStatus.BUSY, current.request_id, current.expires_at)
    return busy, current


def decide_release(
    current: SessionLock | None,
    request_id: str,
    now: float,
) -> tuple[ReleaseStatus, SessionLock | None]:
    """Decide a release attempt; returns the status and the lock to keep."""
    if current is None:
        return ReleaseStatus.MISSING, None
    if current.request_id == request_id:
        return ReleaseStatus.RELEASED, None
    if current.is_expired(now):
        return ReleaseStatus.EXPIRED, None
    return ReleaseStatus.NOT_OWNER, current


class LockLease:
    """A held session lock that is released at most once.

    release() is idempotent and shielded from cancellation so that a client
    disconnect mid-release still clears the lease.
    """

    def __init__(self, store: ConversationStore, session_id: str, request_id: str) -> None:
        self._store = store
        self.session_id = session_id
        self.request_id = request_id
        self._released = False

    @property
    def released(self) -> bool:
        return self._released

    async def release(self) -> ReleaseStatus | None:
        if self._released:
            return None
        self._released = True
        status = await asyncio.shield(self._store.release_lock(self.session_id, self.request_id))
        log.debug(
            "Released lock on %s for %s: %s", self.session_id, self.request_id, status.value
        )
        return status
