"""Tests for the configuration module."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

from taskpilot.config import (
    Config,
    get_config,
    load_config,
    reset_config,
)
from taskpilot.config.merge import deep_merge, merge_configs
from taskpilot.config.paths import (
    get_config_paths,
    get_default_data_dir,
    get_project_config_path,
    get_system_config_path,
    get_user_config_path,
)
from taskpilot.config.secrets import AUTH_TOKEN_VAR, clear_secret_cache, fetch_secret


class TestDeepMerge:
    """Test the deep merge algorithm."""

    def test_simple_override(self) -> None:
        """Test that override values replace base values."""
        result = deep_merge({"a": 1, "b": 2}, {"b": 3, "c": 4})
        assert result == {"a": 1, "b": 3, "c": 4}

    def test_nested_merge(self) -> None:
        """Test that nested dicts are recursively merged."""
        base = {"llm": {"model": "gpt-4o", "max_retries": 3}}
        result = deep_merge(base, {"llm": {"max_retries": 1}})
        assert result["llm"] == {"model": "gpt-4o", "max_retries": 1}

    def test_none_does_not_override(self) -> None:
        """Test that None values in override don't replace base values."""
        assert deep_merge({"a": 1}, {"a": None}) == {"a": 1}

    def test_list_replaced_not_merged(self) -> None:
        """Test that lists are replaced, not concatenated."""
        assert deep_merge({"items": [1, 2, 3]}, {"items": [4, 5]}) == {"items": [4, 5]}

    def test_inputs_not_mutated(self) -> None:
        base = {"a": {"b": 1}}
        deep_merge(base, {"a": {"b": 2}})
        assert base == {"a": {"b": 1}}

    def test_merge_configs_multiple(self) -> None:
        """Test merging multiple configs in order."""
        assert merge_configs({"a": 1, "b": 2}, {"b": 3}, {"c": 4}) == {"a": 1, "b": 3, "c": 4}


class TestConfigPaths:
    """Test platform-aware path resolution."""

    def test_windows_system_path(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(sys, "platform", "win32")
        monkeypatch.setenv("PROGRAMDATA", "C:\\ProgramData")

        path = get_system_config_path()
        assert path is not None
        assert "ProgramData" in str(path)
        assert "taskpilot" in str(path)

    def test_unix_system_path(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(sys, "platform", "linux")
        assert get_system_config_path() == Path("/etc/taskpilot/config.yaml")

    def test_unix_user_path_xdg(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test user config path respects XDG_CONFIG_HOME."""
        monkeypatch.setattr(sys, "platform", "linux")
        monkeypatch.setenv("XDG_CONFIG_HOME", "/home/test/.config-custom")

        path = get_user_config_path()
        assert path == Path("/home/test/.config-custom/taskpilot/config.yaml")

    def test_project_config_path(self) -> None:
        path = get_project_config_path("/home/user/myproject")
        assert path == Path("/home/user/myproject/.taskpilot/config.yaml")

    def test_get_config_paths_order(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test that config paths are in correct order."""
        monkeypatch.setattr(sys, "platform", "linux")
        monkeypatch.setenv("XDG_CONFIG_HOME", "/xdg")

        paths = get_config_paths("/project")
        assert len(paths) == 3
        assert "etc" in paths[0].parts
        assert paths[1] == Path("/xdg/taskpilot/config.yaml")
        assert "project" in paths[2].parts

    def test_default_data_dir(self) -> None:
        assert get_default_data_dir() == Path.home() / ".taskpilot" / "data"


class TestConfigLoading:
    """Test configuration loading."""

    @pytest.fixture(autouse=True)
    def isolated_user_config(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg"))

    @pytest.fixture
    def temp_config_dir(self, tmp_path: Path) -> Path:
        """Create a temporary project config directory."""
        config_dir = tmp_path / "project" / ".taskpilot"
        config_dir.mkdir(parents=True)
        return config_dir

    def test_load_yaml_config(self, temp_config_dir: Path) -> None:
        (temp_config_dir / "config.yaml").write_text(
            """
llm:
  model: anthropic/claude-sonnet-4-20250514
  max_steps: 8
session:
  lock_ttl: 30
  history_window: 20
tools:
  repetition_limit: 0
server:
  port: 9001
"""
        )
        config = load_config(project_root=str(temp_config_dir.parent))
        assert config.llm.model == "anthropic/claude-sonnet-4-20250514"
        assert config.llm.max_steps == 8
        assert config.llm.max_retries == 3
        assert config.session.lock_ttl == 30.0
        assert config.session.history_window == 20
        assert config.tools.repetition_limit == 0
        assert config.tools.batch_max_commands == 100
        assert config.server.port == 9001
        assert config.server.host == "127.0.0.1"

    def test_env_overrides_config(self, temp_config_dir: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """Environment variables win over config files."""
        (temp_config_dir / "config.yaml").write_text("llm:\n  model: openai/gpt-4o\n")
        monkeypatch.setenv("TASKPILOT_MODEL", "ollama/llama3.1")
        monkeypatch.setenv("TASKPILOT_DATA_DIR", "/srv/taskpilot")
        monkeypatch.setenv("TASKPILOT_LOG", "/tmp/taskpilot.log")

        config = load_config(project_root=str(temp_config_dir.parent))
        assert config.llm.model == "ollama/llama3.1"
        assert config.session.data_dir == "/srv/taskpilot"
        assert config.logging.file == "/tmp/taskpilot.log"

    def test_invalid_yaml_uses_defaults(self, temp_config_dir: Path) -> None:
        (temp_config_dir / "config.yaml").write_text("invalid: yaml: :")

        config = load_config(project_root=str(temp_config_dir.parent))
        assert config.llm.model is None
        assert config.session.default_mode == "primary"

    def test_missing_file_uses_defaults(self, tmp_path: Path) -> None:
        config = load_config(project_root=str(tmp_path))
        assert isinstance(config, Config)
        assert config.llm.model is None
        assert config.session.lock_ttl == 15.0

    def test_custom_modes_from_config(self, temp_config_dir: Path) -> None:
        (temp_config_dir / "config.yaml").write_text(
            """
session:
  default_mode: reviewer
  modes:
    - name: reviewer
      description: Reviews plans
      temperature: 0.1
      tools:
        getTasks: true
        createTask: false
    - description: entry without a name is skipped
"""
        )
        config = load_config(project_root=str(temp_config_dir.parent))
        assert config.session.default_mode == "reviewer"
        assert len(config.session.modes) == 1
        reviewer = config.session.modes[0]
        assert reviewer.name == "reviewer"
        assert reviewer.type == "custom"
        assert reviewer.temperature == 0.1
        assert reviewer.tools == {"getTasks": True, "createTask": False}

    def test_extra_fields_preserved(self, temp_config_dir: Path) -> None:
        """Test that unknown config fields are preserved in extra."""
        (temp_config_dir / "config.yaml").write_text("custom_field: custom_value\nnested:\n  field: value\n")
        config = load_config(project_root=str(temp_config_dir.parent))
        assert config.extra["custom_field"] == "custom_value"
        assert config.extra["nested"]["field"] == "value"


class TestConfigCaching:
    """Test config caching behavior."""

    def test_get_config_caches(self) -> None:
        assert get_config() is get_config()

    def test_reset_clears_cache(self) -> None:
        config1 = get_config()
        reset_config()
        assert get_config() is not config1

    def test_project_config_not_cached(self, tmp_path: Path) -> None:
        project_config = load_config(project_root=str(tmp_path))
        assert project_config is not get_config()


class TestSecrets:
    """Test secret lookup."""

    def test_environment_wins(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("OPENAI_API_KEY", "env-key")
        assert fetch_secret("OPENAI_API_KEY") == "env-key"

    def test_secrets_file(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv(AUTH_TOKEN_VAR, raising=False)
        secrets = tmp_path / ".env.secrets"
        secrets.write_text(f"{AUTH_TOKEN_VAR}=file-token\n")
        clear_secret_cache()
        assert fetch_secret(AUTH_TOKEN_VAR, secrets_path=secrets) == "file-token"

    def test_default_when_missing(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("GEMINI_API_KEY", raising=False)
        missing = tmp_path / "absent.env"
        assert fetch_secret("GEMINI_API_KEY", default="fallback", secrets_path=missing) == "fallback"
