"""Configuration file loading and caching.

Handles:
- YAML file parsing
- Environment variable overrides
- Config caching
- Conversion from dict to typed Config dataclass
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

import yaml

from taskpilot.config.merge import merge_configs
from taskpilot.config.paths import get_config_paths
from taskpilot.config.schema import (
    Config,
    LLMConfig,
    LoggingConfig,
    ServerConfig,
    SessionConfig,
    SessionModeConfig,
    ToolsConfig,
)

# Module logger (may not be configured yet at import time)
_log = logging.getLogger("taskpilot.config")

_cached_config: Config | None = None

_KNOWN_KEYS = {"llm", "session", "tools", "server", "logging"}


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a YAML file, returning empty dict if not found or invalid."""
    if not path.exists():
        return {}

    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
            return data if isinstance(data, dict) else {}
    except yaml.YAMLError as e:
        _log.warning("Invalid YAML in %s: %s", path, e)
        return {}
    except PermissionError:
        _log.debug("Permission denied reading %s", path)
        return {}
    except OSError as e:
        _log.warning("Error reading %s: %s", path, e)
        return {}


def env_overrides() -> dict[str, Any]:
    """Build config dict from environment variables.

    Note: API keys are NOT loaded here - use fetch_secret() for secrets.
    """
    overrides: dict[str, Any] = {}

    log_path = os.environ.get("TASKPILOT_LOG")
    if log_path:
        overrides.setdefault("logging", {})["file"] = log_path

    model = os.environ.get("TASKPILOT_MODEL")
    if model:
        overrides.setdefault("llm", {})["model"] = model

    data_dir = os.environ.get("TASKPILOT_DATA_DIR")
    if data_dir:
        overrides.setdefault("session", {})["data_dir"] = data_dir

    return overrides


def _section(data: dict[str, Any], key: str) -> dict[str, Any]:
    value = data.get(key)
    return value if isinstance(value, dict) else {}


def dict_to_config(data: dict[str, Any]) -> Config:
    """Convert merged dict to typed Config dataclass.

    Unset keys fall back to the dataclass defaults.
    """
    llm_data = _section(data, "llm")
    llm_defaults = LLMConfig()
    llm = LLMConfig(
        model=llm_data.get("model"),
        provider=llm_data.get("provider"),
        api_base=llm_data.get("api_base"),
        max_tokens=llm_data.get("max_tokens"),
        max_retries=int(llm_data.get("max_retries", llm_defaults.max_retries)),
        retry_base_delay=float(llm_data.get("retry_base_delay", llm_defaults.retry_base_delay)),
        max_steps=int(llm_data.get("max_steps", llm_defaults.max_steps)),
    )

    session_data = _section(data, "session")
    session_defaults = SessionConfig()
    modes = [
        SessionModeConfig(
            name=m["name"],
            type=m.get("type", "custom"),
            description=m.get("description", ""),
            tools={str(k): bool(v) for k, v in (m.get("tools") or {}).items()},
            temperature=m.get("temperature"),
            model=m.get("model"),
            prompt=m.get("prompt"),
        )
        for m in session_data.get("modes") or []
        if isinstance(m, dict) and m.get("name")
    ]
    session = SessionConfig(
        data_dir=session_data.get("data_dir"),
        lock_ttl=float(session_data.get("lock_ttl", session_defaults.lock_ttl)),
        default_mode=session_data.get("default_mode") or session_defaults.default_mode,
        history_window=int(session_data.get("history_window", session_defaults.history_window)),
        modes=modes,
    )

    tools_data = _section(data, "tools")
    tools_defaults = ToolsConfig()
    tools = ToolsConfig(
        repetition_limit=int(tools_data.get("repetition_limit", tools_defaults.repetition_limit)),
        batch_max_commands=int(
            tools_data.get("batch_max_commands", tools_defaults.batch_max_commands)
        ),
    )

    server_data = _section(data, "server")
    server_defaults = ServerConfig()
    server = ServerConfig(
        host=server_data.get("host", server_defaults.host),
        port=int(server_data.get("port", server_defaults.port)),
    )

    log_data = _section(data, "logging")
    logging_config = LoggingConfig(
        level=log_data.get("level"),
        verbose=log_data.get("verbose"),
        file=log_data.get("file"),
    )

    extra = {k: v for k, v in data.items() if k not in _KNOWN_KEYS}

    return Config(
        llm=llm,
        session=session,
        tools=tools,
        server=server,
        logging=logging_config,
        extra=extra,
    )


def load_config(project_root: str | None = None) -> Config:
    """Load and merge config from all sources.

    Priority order (highest to lowest):
    1. Environment variables
    2. Project config (<project_root>/.taskpilot/config.yaml)
    3. User config
    4. System config

    Only the global config (no project_root) is cached.
    """
    global _cached_config

    if _cached_config is not None and project_root is None:
        return _cached_config

    configs: list[dict[str, Any]] = []

    for path in get_config_paths(project_root):
        config_data = load_yaml_file(path)
        if config_data:
            _log.debug("Loaded config from %s", path)
            configs.append(config_data)

    env_config = env_overrides()
    if env_config:
        configs.append(env_config)

    config = dict_to_config(merge_configs(*configs))

    if project_root is None:
        _cached_config = config

    return config


def get_config() -> Config:
    """Get the cached global config, loading it on first use."""
    if _cached_config is None:
        return load_config()
    return _cached_config


def reset_config() -> None:
    """Reset cached config. Useful for tests."""
    global _cached_config
    _cached_config = None
