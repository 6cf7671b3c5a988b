"""Root pytest configuration for all tests."""

from __future__ import annotations

import pytest

from taskpilot.config import reset_config
from taskpilot.config.secrets import clear_secret_cache
from taskpilot.session.storage import MemoryConversationStore
from tests.utils import FakeClock

# Configure pytest-asyncio to use auto mode
# This is redundant with pyproject.toml but ensures it's set
pytest_plugins = ("pytest_asyncio",)


@pytest.fixture(scope="session")
def anyio_backend():
    """Set anyio backend to asyncio."""
    return "asyncio"


@pytest.fixture(autouse=True)
def _isolated_config(monkeypatch: pytest.MonkeyPatch):
    """Keep the environment and cached config from leaking between tests."""
    for var in ("TASKPILOT_LOG", "TASKPILOT_MODEL", "TASKPILOT_DATA_DIR", "TASKPILOT_AUTH_TOKEN"):
        monkeypatch.delenv(var, raising=False)
    reset_config()
    clear_secret_cache()
    yield
    reset_config()
    clear_secret_cache()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock: FakeClock) -> MemoryConversationStore:
    return MemoryConversationStore(clock=clock)
