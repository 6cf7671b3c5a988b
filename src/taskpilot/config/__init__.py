"""Configuration management for taskpilot.

Provides hierarchical YAML-based configuration with:
- System-level config (/etc/taskpilot/ or %PROGRAMDATA%)
- User-level config (~/.config/taskpilot/, ~/.taskpilot/ or %APPDATA%)
- Project-level config (<root>/.taskpilot/)
- Environment variable overrides (highest priority)

Example usage:
    from taskpilot.config import load_config, get_config

    config = load_config(project_root="/path/to/project")
    print(config.llm.model)
    print(config.session.lock_ttl)
"""

from taskpilot.config.loader import (
    get_config,
    load_config,
    reset_config,
)
from taskpilot.config.paths import (
    get_config_paths,
    get_default_data_dir,
    get_project_config_path,
    get_system_config_path,
    get_user_config_path,
)
from taskpilot.config.schema import (
    Config,
    LLMConfig,
    LoggingConfig,
    ServerConfig,
    SessionConfig,
    SessionModeConfig,
    ToolsConfig,
)
from taskpilot.config.secrets import (
    AUTH_TOKEN_VAR,
    clear_secret_cache,
    fetch_secret,
)

__all__ = [
    # Main API
    "Config",
    "load_config",
    "get_config",
    "reset_config",
    # Schema types
    "LLMConfig",
    "SessionConfig",
    "SessionModeConfig",
    "ToolsConfig",
    "ServerConfig",
    "LoggingConfig",
    # Secret management
    "AUTH_TOKEN_VAR",
    "fetch_secret",
    "clear_secret_cache",
    # Path utilities
    "get_config_paths",
    "get_default_data_dir",
    "get_system_config_path",
    "get_user_config_path",
    "get_project_config_path",
]
