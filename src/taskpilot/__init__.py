"""taskpilot: session orchestration and streaming tool execution for a task assistant."""

__version__ = "0.1.0"

# Public API
from taskpilot.config import Config, get_config, load_config
from taskpilot.core.llm import LiteLLMProvider, LLMProvider, StreamFrame
from taskpilot.modes import ModeController, ModeRegistry
from taskpilot.orchestration import StateOrchestrator
from taskpilot.session import FileConversationStore, MemoryConversationStore
from taskpilot.session.coordinator import ChatRequest, SessionCoordinator, TurnOutcome

__all__ = [
    "__version__",
    "ChatRequest",
    "Config",
    "FileConversationStore",
    "LLMProvider",
    "LiteLLMProvider",
    "MemoryConversationStore",
    "ModeController",
    "ModeRegistry",
    "SessionCoordinator",
    "StateOrchestrator",
    "StreamFrame",
    "TurnOutcome",
    "get_config",
    "load_config",
]
