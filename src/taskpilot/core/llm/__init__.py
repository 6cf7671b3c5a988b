"""LLM provider abstraction."""

from taskpilot.core.llm.litellm_provider import LiteLLMProvider, create_provider
from taskpilot.core.llm.provider import (
    FrameType,
    LLMProvider,
    Message,
    Role,
    StreamFrame,
    ToolCallRequest,
)
from taskpilot.core.llm.providers import PROVIDER_CONFIGS, ProviderConfig, provider_for_model
from taskpilot.core.llm.retry import ExponentialBackoff, with_retry

__all__ = [
    "ExponentialBackoff",
    "FrameType",
    "LLMProvider",
    "LiteLLMProvider",
    "Message",
    "PROVIDER_CONFIGS",
    "ProviderConfig",
    "Role",
    "StreamFrame",
    "ToolCallRequest",
    "create_provider",
    "provider_for_model",
    "with_retry",
]
