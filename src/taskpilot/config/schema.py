"""Configuration schema dataclasses for taskpilot.

Defines the structure of configuration at all levels (system, user, project).
All fields are optional to support partial configs that merge together.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class LLMConfig:
    """LLM provider configuration."""

    model: str | None = None  # litellm model id, e.g. "openai/gpt-4o-mini"
    provider: str | None = None  # Explicit provider; inferred from model prefix if unset
    api_base: str | None = None  # Custom endpoint
    max_tokens: int | None = None  # Default: 4096
    max_retries: int = 3  # Retries for transient errors while opening a stream
    retry_base_delay: float = 0.5  # Seconds, doubled per attempt
    max_steps: int = 5  # Model/tool round trips per turn


@dataclass
class SessionModeConfig:
    """A custom mode declared in config.

    Example config.yaml:
        session:
          modes:
            - name: reviewer
              type: custom
              description: Reviews plans without changing anything
              temperature: 0.1
              tools:
                getTasks: true
                readFile: true
    """

    name: str
    type: str = "custom"
    description: str = ""
    tools: dict[str, bool] = field(default_factory=dict)
    temperature: float | None = None
    model: str | None = None
    prompt: str | None = None


@dataclass
class SessionConfig:
    """Session defaults configuration."""

    data_dir: str | None = None  # Default: ~/.taskpilot/data
    lock_ttl: float = 15.0  # Seconds a session lock lives without renewal
    default_mode: str = "primary"
    history_window: int = 50  # Messages replayed to the model per turn
    modes: list[SessionModeConfig] = field(default_factory=list)


@dataclass
class ToolsConfig:
    """Tool execution limits."""

    repetition_limit: int = 3  # 0 disables the repetition guard
    batch_max_commands: int = 100


@dataclass
class ServerConfig:
    """HTTP server binding."""

    host: str = "127.0.0.1"
    port: int = 8400


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str | None = None  # DEBUG, INFO, WARNING, ERROR
    verbose: int | None = None  # 0-4, overrides level
    file: str | None = None  # Log file path


@dataclass
class Config:
    """Root configuration object.

    Aggregates all configuration sections. All fields use default factories
    to ensure partial configs work correctly with deep merging.
    """

    llm: LLMConfig = field(default_factory=LLMConfig)
    session: SessionConfig = field(default_factory=SessionConfig)
    tools: ToolsConfig = field(default_factory=ToolsConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    # Extension point for future config sections
    extra: dict[str, Any] = field(default_factory=dict)
