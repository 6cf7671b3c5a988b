"""Tests for the mode registry and mode controller."""

from __future__ import annotations

import pytest

from taskpilot.config.schema import SessionModeConfig
from taskpilot.core.llm.provider import Role
from taskpilot.errors import ModeRegistrationError
from taskpilot.modes import DELEGATION_TOOL, Mode, ModeController, ModeRegistry, ModeType
from taskpilot.modes.controller import sanitize_mode_name, transition_text
from taskpilot.session.storage import MemoryConversationStore
from taskpilot.tools.builtin import create_default_registry


@pytest.fixture
def registry() -> ModeRegistry:
    return ModeRegistry()


@pytest.fixture
def controller(registry: ModeRegistry, store: MemoryConversationStore) -> ModeController:
    return ModeController(registry, store)


class TestModeRegistry:
    """Tests for built-in modes and tool filtering."""

    def test_built_in_modes(self, registry: ModeRegistry) -> None:
        names = {m.name for m in registry.list_modes()}
        assert names == {"primary", "information-collector", "planning", "execution"}
        assert all(m.built_in for m in registry.list_modes())

    def test_unknown_mode_is_none(self, registry: ModeRegistry) -> None:
        assert registry.get_mode("nope") is None
        assert not registry.is_valid_mode("nope")

    def test_information_collector_excludes_delegation(self, registry: ModeRegistry) -> None:
        available = create_default_registry().tools()
        filtered = registry.filter_tools("information-collector", available)
        assert DELEGATION_TOOL not in filtered
        assert "getTasks" in filtered
        assert "internalTodoWrite" in filtered

    def test_primary_keeps_delegation(self, registry: ModeRegistry) -> None:
        filtered = registry.filter_tools("primary", create_default_registry().tools())
        assert DELEGATION_TOOL in filtered
        assert "createTask" not in filtered

    def test_only_execution_mutates(self, registry: ModeRegistry) -> None:
        for mode in ("primary", "information-collector", "planning"):
            assert not registry.has_tool_permission(mode, "createTask")
            assert not registry.has_tool_permission(mode, "deleteCalendarEvent")
        assert registry.has_tool_permission("execution", "createTask")
        assert registry.has_tool_permission("execution", "createBatchTasks")

    def test_filter_drops_unlisted_tools(self, registry: ModeRegistry) -> None:
        filtered = registry.filter_tools("planning", {"getTasks": 1, "somethingNew": 2})
        assert filtered == {"getTasks": 1}

    def test_filter_unknown_mode_is_empty(self, registry: ModeRegistry) -> None:
        assert registry.filter_tools("ghost", {"getTasks": 1}) == {}

    def test_delegation_dropped_for_custom_mode_even_if_allowed(self, registry: ModeRegistry) -> None:
        registry.register_mode(
            Mode(name="helper", description="d", type=ModeType.CUSTOM, tools={DELEGATION_TOOL: True})
        )
        assert registry.filter_tools("helper", {DELEGATION_TOOL: 1}) == {}
        assert registry.get_permitted_tools("helper") == {DELEGATION_TOOL}

    def test_cannot_override_built_in(self, registry: ModeRegistry) -> None:
        with pytest.raises(ModeRegistrationError):
            registry.register_mode(Mode(name="primary", description="x", type=ModeType.CUSTOM))

    def test_from_config(self) -> None:
        registry = ModeRegistry.from_config(
            [
                SessionModeConfig(name="reviewer", tools={"getTasks": True}, temperature=0.1),
                SessionModeConfig(name="odd", type="not-a-type"),
            ]
        )
        reviewer = registry.get_mode("reviewer")
        assert reviewer is not None
        assert reviewer.type is ModeType.CUSTOM
        assert reviewer.temperature == 0.1
        assert registry.get_mode("odd").type is ModeType.CUSTOM
        assert [m.name for m in registry.get_modes_by_type(ModeType.CUSTOM)] == ["reviewer", "odd"]

    def test_mode_cycle(self, registry: ModeRegistry) -> None:
        assert registry.get_next_mode("primary") == "information-collector"
        assert registry.get_next_mode("information-collector") == "planning"
        assert registry.get_next_mode("planning") == "execution"
        assert registry.get_next_mode("execution") == "primary"
        assert registry.get_next_mode("ghost") == "primary"

    def test_workflows(self, registry: ModeRegistry) -> None:
        assert registry.get_workflow_sequence("simple-execution") == ["primary", "execution"]
        assert registry.get_workflow_sequence("whatever") == ["primary"]
        assert registry.get_mode_for_task("create-plan") == "planning"
        assert registry.get_mode_for_task("whatever") == "primary"


class TestSanitize:
    def test_strips_invalid_characters(self) -> None:
        assert sanitize_mode_name("plan ning!") == "planning"
        assert sanitize_mode_name("information-collector") == "information-collector"


class TestModeController:
    """Tests for store-backed mode resolution and switching."""

    @pytest.mark.asyncio
    async def test_new_session_uses_default(self, controller: ModeController) -> None:
        assert await controller.resolve_mode("s1") == "primary"

    @pytest.mark.asyncio
    async def test_resolve_reads_store_every_time(
        self, controller: ModeController, store: MemoryConversationStore
    ) -> None:
        assert await controller.resolve_mode("s1") == "primary"
        # Another process changes the mode behind the cache
        await store.set_session_mode("s1", "planning")
        assert await controller.resolve_mode("s1") == "planning"
        assert controller.cached_mode("s1") == "planning"

    @pytest.mark.asyncio
    async def test_unknown_persisted_mode_falls_back(
        self, controller: ModeController, store: MemoryConversationStore
    ) -> None:
        await store.set_session_mode("s1", "deleted-mode")
        assert await controller.resolve_mode("s1") == "primary"

    @pytest.mark.asyncio
    async def test_configured_default_mode(self, registry: ModeRegistry, store: MemoryConversationStore) -> None:
        controller = ModeController(registry, store, default_mode="planning")
        assert await controller.resolve_mode("fresh") == "planning"
        assert ModeController(registry, store, default_mode="ghost").default_mode == "primary"

    @pytest.mark.asyncio
    async def test_switch_persists_mode_and_notice(
        self, controller: ModeController, store: MemoryConversationStore
    ) -> None:
        result = await controller.handle_mode_switch("s1", "execution", {"reason": "apply plan"})

        assert result.success and result.changed
        assert result.mode == "execution"
        assert result.previous_mode == "primary"
        session = await store.get_session("s1")
        assert session.mode == "execution"
        assert session.mode_notice == "execution"

    @pytest.mark.asyncio
    async def test_switch_to_current_mode_is_noop(
        self, controller: ModeController, store: MemoryConversationStore
    ) -> None:
        result = await controller.handle_mode_switch("s1", "primary")
        assert result.success
        assert not result.changed
        assert await controller.take_transition_message("s1") is None

    @pytest.mark.asyncio
    async def test_unknown_mode_is_reported_not_raised(self, controller: ModeController) -> None:
        result = await controller.handle_mode_switch("s1", "wizard")
        assert not result.success
        assert result.mode == "primary"
        assert "wizard" in result.message
        assert await controller.resolve_mode("s1") == "primary"

    @pytest.mark.asyncio
    async def test_transition_message_popped_once(self, controller: ModeController) -> None:
        await controller.handle_mode_switch("s1", "planning")

        message = await controller.take_transition_message("s1")
        assert message is not None
        assert message.role is Role.SYSTEM
        assert "planning" in message.content
        assert await controller.take_transition_message("s1") is None

    @pytest.mark.asyncio
    async def test_transition_visible_to_other_controller(
        self, registry: ModeRegistry, store: MemoryConversationStore
    ) -> None:
        first = ModeController(registry, store)
        second = ModeController(registry, store)
        await first.handle_mode_switch("s1", "execution")

        assert await second.take_transition_message("s1") is not None
        assert await first.take_transition_message("s1") is None

    @pytest.mark.asyncio
    async def test_mode_history(self, controller: ModeController) -> None:
        await controller.handle_mode_switch("s1", "planning")
        await controller.handle_mode_switch("s1", "execution")
        assert controller.get_mode_history("s1") == ["primary", "planning", "execution"]

    @pytest.mark.asyncio
    async def test_tracked_sessions_are_bounded(
        self, registry: ModeRegistry, store: MemoryConversationStore
    ) -> None:
        controller = ModeController(registry, store, max_sessions=2)
        await controller.resolve_mode("s1")
        await controller.resolve_mode("s2")
        await controller.resolve_mode("s1")
        await controller.resolve_mode("s3")

        assert controller.cached_mode("s2") is None
        assert controller.get_mode_history("s2") == []
        assert controller.cached_mode("s1") == "primary"
        assert controller.cached_mode("s3") == "primary"

        await store.set_session_mode("s2", "planning")
        assert await controller.resolve_mode("s2") == "planning"

    @pytest.mark.asyncio
    async def test_switch_to_next_and_for_task(self, controller: ModeController) -> None:
        result = await controller.switch_to_next_mode("s1")
        assert result.mode == "information-collector"
        result = await controller.switch_for_task("s1", "execute-task")
        assert result.mode == "execution"


def test_transition_text_lists_tools() -> None:
    text = transition_text(ModeRegistry().get_mode("planning"))
    assert "planning" in text
    assert "getTasks" in text
    assert "createTask" not in text
