"""Configuration and data path resolution.

Config locations, lowest priority first:
- System: /etc/taskpilot/config.yaml (%PROGRAMDATA% on Windows)
- User: $XDG_CONFIG_HOME/taskpilot, ~/.config/taskpilot or ~/.taskpilot (%APPDATA% on Windows)
- Project: <root>/.taskpilot/config.yaml
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

CONFIG_FILENAME = "config.yaml"
APP_NAME = "taskpilot"
SHORT_NAME = ".taskpilot"


def get_system_config_path() -> Path | None:
    if sys.platform == "win32":
        program_data = os.environ.get("PROGRAMDATA")
        if program_data:
            return Path(program_data) / APP_NAME / CONFIG_FILENAME
        return None
    return Path("/etc") / APP_NAME / CONFIG_FILENAME


def get_user_config_path() -> Path | None:
    if sys.platform == "win32":
        app_data = os.environ.get("APPDATA")
        if app_data:
            return Path(app_data) / APP_NAME / CONFIG_FILENAME
        return None

    xdg_config = os.environ.get("XDG_CONFIG_HOME")
    if xdg_config:
        return Path(xdg_config) / APP_NAME / CONFIG_FILENAME

    home = Path.home()
    xdg_default = home / ".config"
    if xdg_default.exists():
        return xdg_default / APP_NAME / CONFIG_FILENAME

    return home / SHORT_NAME / CONFIG_FILENAME


def get_project_config_path(project_root: str) -> Path:
    return Path(project_root) / SHORT_NAME / CONFIG_FILENAME


def get_config_paths(project_root: str | None = None) -> list[Path]:
    """Get all config paths in priority order (lowest to highest).

    The files may not exist; the loader skips missing ones.
    """
    paths: list[Path] = []

    system_path = get_system_config_path()
    if system_path:
        paths.append(system_path)

    user_path = get_user_config_path()
    if user_path:
        paths.append(user_path)

    if project_root:
        paths.append(get_project_config_path(project_root))

    return paths


def get_default_data_dir() -> Path:
    """Directory holding session files when session.data_dir is unset."""
    return Path.home() / SHORT_NAME / "data"
