"""Tests for session locks and the conversation stores."""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from taskpilot.errors import PersistenceError
from taskpilot.session.locks import (
    AcquireStatus,
    LockLease,
    ReleaseStatus,
    decide_acquire,
    decide_release,
)
from taskpilot.session.model import (
    Message,
    MessageRole,
    SessionLock,
    ToolCallRecord,
    ToolResultRecord,
)
from taskpilot.session.storage import (
    BaseConversationStore,
    FileConversationStore,
    MemoryConversationStore,
)
from tests.utils import FakeClock


def user(text: str) -> Message:
    return Message(role=MessageRole.USER, text=text)


def assistant(text: str) -> Message:
    return Message(role=MessageRole.ASSISTANT, text=text)


@pytest.fixture(params=["memory", "file"])
def any_store(request: pytest.FixtureRequest, tmp_path: Path, clock: FakeClock) -> BaseConversationStore:
    if request.param == "memory":
        return MemoryConversationStore(clock=clock)
    return FileConversationStore(tmp_path, clock=clock)


class TestLockDecisions:
    """Tests for the pure acquire/release decisions."""

    def test_acquire_free(self) -> None:
        result, lock = decide_acquire(None, "r1", 15, now=100)
        assert result.status is AcquireStatus.ACQUIRED
        assert lock == SessionLock("r1", 115)

    def test_same_request_renews(self) -> None:
        result, lock = decide_acquire(SessionLock("r1", 110), "r1", 15, now=105)
        assert result.status is AcquireStatus.RENEWED
        assert lock.expires_at == 120

    def test_busy_reports_owner(self) -> None:
        current = SessionLock("r1", 110)
        result, lock = decide_acquire(current, "r2", 15, now=105)
        assert result.status is AcquireStatus.BUSY
        assert not result.acquired
        assert result.owner_request_id == "r1"
        assert result.expires_at == 110
        assert lock is current

    def test_expired_lock_taken_over(self) -> None:
        result, lock = decide_acquire(SessionLock("r1", 110), "r2", 15, now=110)
        assert result.status is AcquireStatus.ACQUIRED_EXPIRED
        assert lock.request_id == "r2"

    def test_ttl_has_floor(self) -> None:
        _, lock = decide_acquire(None, "r1", 0, now=100)
        assert lock.expires_at > 100

    def test_release_decisions(self) -> None:
        assert decide_release(None, "r1", 100)[0] is ReleaseStatus.MISSING
        assert decide_release(SessionLock("r1", 110), "r1", 100) == (ReleaseStatus.RELEASED, None)
        assert decide_release(SessionLock("r1", 110), "r2", 120) == (ReleaseStatus.EXPIRED, None)
        status, lock = decide_release(SessionLock("r1", 110), "r2", 100)
        assert status is ReleaseStatus.NOT_OWNER
        assert lock.request_id == "r1"


class TestStoreLocks:
    """Lock behaviour shared by both stores."""

    @pytest.mark.asyncio
    async def test_second_request_is_busy(self, any_store: BaseConversationStore) -> None:
        assert (await any_store.acquire_lock("s1", "r1", 15)).acquired
        busy = await any_store.acquire_lock("s1", "r2", 15)
        assert busy.status is AcquireStatus.BUSY
        assert busy.owner_request_id == "r1"

    @pytest.mark.asyncio
    async def test_expired_lock_can_be_taken(
        self, any_store: BaseConversationStore, clock: FakeClock
    ) -> None:
        await any_store.acquire_lock("s1", "r1", 15)
        clock.advance(16)
        result = await any_store.acquire_lock("s1", "r2", 15)
        assert result.status is AcquireStatus.ACQUIRED_EXPIRED

    @pytest.mark.asyncio
    async def test_release_then_acquire(self, any_store: BaseConversationStore) -> None:
        await any_store.acquire_lock("s1", "r1", 15)
        assert await any_store.release_lock("s1", "r2") is ReleaseStatus.NOT_OWNER
        assert await any_store.release_lock("s1", "r1") is ReleaseStatus.RELEASED
        assert (await any_store.acquire_lock("s1", "r2", 15)).acquired

    @pytest.mark.asyncio
    async def test_release_unknown_session(self, any_store: BaseConversationStore) -> None:
        assert await any_store.release_lock("nobody", "r1") is ReleaseStatus.MISSING

    @pytest.mark.asyncio
    async def test_concurrent_acquire_has_one_winner(self, any_store: BaseConversationStore) -> None:
        results = await asyncio.gather(
            *(any_store.acquire_lock("s1", f"r{i}", 15) for i in range(5))
        )
        assert sum(r.acquired for r in results) == 1

    @pytest.mark.asyncio
    async def test_lease_releases_once(self, store: MemoryConversationStore) -> None:
        await store.acquire_lock("s1", "r1", 15)
        lease = LockLease(store, "s1", "r1")
        assert await lease.release() is ReleaseStatus.RELEASED
        assert lease.released
        assert await lease.release() is None


class TestStoreHistory:
    """Versioned history shared by both stores."""

    @pytest.mark.asyncio
    async def test_unknown_session_is_empty(self, any_store: BaseConversationStore) -> None:
        assert await any_store.get_history("s1") == ([], 0)
        assert await any_store.get_session("s1") is None

    @pytest.mark.asyncio
    async def test_append_increments_version(self, any_store: BaseConversationStore) -> None:
        first = await any_store.append_user_message("s1", user("hi"), 0)
        second = await any_store.append_user_message("s1", user("again"), None)
        assert (first.ok, first.version) == (True, 1)
        assert (second.ok, second.version) == (True, 2)

        messages, version = await any_store.get_history("s1")
        assert version == 2
        assert [m.text for m in messages] == ["hi", "again"]

    @pytest.mark.asyncio
    async def test_stale_append_rejected(self, any_store: BaseConversationStore) -> None:
        await any_store.append_user_message("s1", user("one"), None)
        await any_store.append_user_message("s1", user("two"), None)

        result = await any_store.append_user_message("s1", user("late"), 1)
        assert not result.ok
        assert result.version == 2
        messages, version = await any_store.get_history("s1")
        assert version == 2
        assert len(messages) == 2

    @pytest.mark.asyncio
    async def test_concurrent_appends_at_same_version(self, any_store: BaseConversationStore) -> None:
        for i in range(5):
            await any_store.append_user_message("s1", user(f"m{i}"), None)

        results = await asyncio.gather(
            any_store.append_user_message("s1", user("a"), 5),
            any_store.append_user_message("s1", user("b"), 5),
        )
        winners = [r for r in results if r.ok]
        losers = [r for r in results if not r.ok]
        assert len(winners) == 1 and winners[0].version == 6
        assert len(losers) == 1 and losers[0].version == 6

    @pytest.mark.asyncio
    async def test_assistant_turn_lifecycle(self, any_store: BaseConversationStore) -> None:
        await any_store.append_user_message("s1", user("hi"), None)
        base = await any_store.begin_assistant_turn("s1", "r1")
        assert base == 1

        await any_store.update_assistant_turn(
            "s1",
            "r1",
            text="partial",
            tool_calls=[ToolCallRecord("c1", "getTasks", {})],
            tool_results=[],
            tool_states={"c1": "running"},
        )
        draft = (await any_store.get_session("s1")).pending_turn
        assert draft.text == "partial"
        assert draft.tool_calls[0].tool_name == "getTasks"
        assert draft.tool_states == {"c1": "running"}

        result = await any_store.finish_assistant_turn("s1", "r1", assistant("done"), base)
        assert result.ok and result.version == 2
        session = await any_store.get_session("s1")
        assert session.pending_turn is None
        assert session.messages[-1].text == "done"

    @pytest.mark.asyncio
    async def test_finish_after_interleaved_write_conflicts(self, any_store: BaseConversationStore) -> None:
        await any_store.append_user_message("s1", user("hi"), None)
        base = await any_store.begin_assistant_turn("s1", "r1")
        await any_store.append_user_message("s1", user("sneaky"), None)

        result = await any_store.finish_assistant_turn("s1", "r1", assistant("done"), base)
        assert not result.ok
        assert result.version == 2
        session = await any_store.get_session("s1")
        assert session.pending_turn is None
        assert [m.text for m in session.messages] == ["hi", "sneaky"]

    @pytest.mark.asyncio
    async def test_update_ignores_other_request(self, any_store: BaseConversationStore) -> None:
        await any_store.begin_assistant_turn("s1", "r1")
        await any_store.update_assistant_turn("s1", "r2", text="x", tool_calls=[], tool_results=[])
        assert (await any_store.get_session("s1")).pending_turn.text == ""

    @pytest.mark.asyncio
    async def test_discard_draft(self, any_store: BaseConversationStore) -> None:
        await any_store.append_user_message("s1", user("hi"), None)
        await any_store.begin_assistant_turn("s1", "r1")

        assert not await any_store.discard_assistant_turn("s1", "r2")
        assert (await any_store.get_session("s1")).pending_turn is not None

        assert await any_store.discard_assistant_turn("s1", "r1")
        session = await any_store.get_session("s1")
        assert session.pending_turn is None
        assert session.version == 1
        assert not await any_store.discard_assistant_turn("missing", "r1")


class TestStoreSessionState:
    """Mode, notice and scratch state."""

    @pytest.mark.asyncio
    async def test_mode_notice_pops_once(self, any_store: BaseConversationStore) -> None:
        await any_store.set_session_mode("s1", "planning", notice="planning")
        assert await any_store.get_session_mode("s1") == "planning"
        assert await any_store.pop_mode_notice("s1") == "planning"
        assert await any_store.pop_mode_notice("s1") is None

    @pytest.mark.asyncio
    async def test_store_default_mode(self, clock: FakeClock) -> None:
        store = MemoryConversationStore(clock=clock, default_mode="planning")
        await store.acquire_lock("s1", "r1", 15)
        assert await store.get_session_mode("s1") == "planning"

    @pytest.mark.asyncio
    async def test_todos_and_mental_model(self, any_store: BaseConversationStore) -> None:
        assert await any_store.get_internal_todos("s1") == []
        assert await any_store.get_mental_model("s1") == ""

        await any_store.set_internal_todos("s1", [{"id": "1", "content": "ask", "status": "pending"}])
        await any_store.set_mental_model("s1", "User prefers mornings")

        assert (await any_store.get_internal_todos("s1"))[0]["content"] == "ask"
        assert await any_store.get_mental_model("s1") == "User prefers mornings"


class TestFileConversationStore:
    """File-specific behaviour."""

    @pytest.mark.asyncio
    async def test_round_trip_across_instances(self, tmp_path: Path, clock: FakeClock) -> None:
        first = FileConversationStore(tmp_path, clock=clock)
        message = Message(
            role=MessageRole.ASSISTANT,
            text="Created it",
            tool_calls=[ToolCallRecord("c1", "createTask", {"content": "Buy milk"})],
            tool_results=[ToolResultRecord("c1", "createTask", {"success": True})],
            metadata={"mode": "execution"},
        )
        await first.append_user_message("s1", message, None)
        await first.set_session_mode("s1", "execution")

        second = FileConversationStore(tmp_path, clock=clock)
        session = await second.get_session("s1")
        assert session.mode == "execution"
        assert session.version == 1
        loaded = session.messages[0]
        assert loaded.tool_calls[0].args == {"content": "Buy milk"}
        assert loaded.tool_results[0].result == {"success": True}
        assert loaded.metadata == {"mode": "execution"}

    @pytest.mark.asyncio
    async def test_writes_yaml_per_session(self, tmp_path: Path) -> None:
        store = FileConversationStore(tmp_path)
        await store.append_user_message("s1", user("hi"), None)
        path = tmp_path / "sessions" / "s1.yaml"
        assert path.exists()
        assert not path.with_suffix(".yaml.tmp").exists()

    @pytest.mark.asyncio
    async def test_invalid_session_id(self, tmp_path: Path) -> None:
        store = FileConversationStore(tmp_path)
        with pytest.raises(PersistenceError):
            await store.get_session("../escape")

    @pytest.mark.asyncio
    async def test_malformed_file_is_ignored(self, tmp_path: Path) -> None:
        store = FileConversationStore(tmp_path)
        (tmp_path / "sessions").mkdir()
        (tmp_path / "sessions" / "s1.yaml").write_text("- just\n- a list\n")
        assert await store.get_session("s1") is None

    @pytest.mark.asyncio
    async def test_corrupt_yaml_raises(self, tmp_path: Path) -> None:
        store = FileConversationStore(tmp_path)
        (tmp_path / "sessions").mkdir()
        (tmp_path / "sessions" / "s1.yaml").write_text("key: [unclosed\n")
        with pytest.raises(PersistenceError):
            await store.get_session("s1")
