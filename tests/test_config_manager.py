"""
Unit tests for ConfigManager class.

Tests configuration file loading, precedence, saving
and reload notifications.
"""

import json
import os
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
import yaml

from e2e_platform.core import config_manager as config_manager_module
from e2e_platform.core.config import Config
from e2e_platform.core.config_manager import ConfigManager, get_config_manager


@pytest.fixture
def yaml_file(tmp_path):
    path = tmp_path / "e2e-platform.yaml"
    path.write_text(
        yaml.safe_dump(
            {
                "execution_timeout": 120,
                "max_concurrent_jobs": 3,
                "jobs_dir": str(tmp_path / "runs"),
                "runner_command": ["node", "runner.js"],
                "unknown_setting": "ignored",
            }
        )
    )
    return path


class TestConfigManager:
    """Test cases for ConfigManager class."""

    def test_missing_file_uses_defaults(self, tmp_path):
        manager = ConfigManager(tmp_path / "absent.yaml")

        config = manager.get_config()

        assert isinstance(config, Config)
        assert config.execution_timeout == 300

    def test_yaml_file_overrides_defaults(self, yaml_file, tmp_path):
        config = ConfigManager(yaml_file).get_config()

        assert config.execution_timeout == 120
        assert config.max_concurrent_jobs == 3
        assert config.jobs_dir == tmp_path / "runs"
        assert isinstance(config.jobs_dir, Path)
        assert config.runner_command == ["node", "runner.js"]
        assert not hasattr(config, "unknown_setting")

    def test_json_file(self, tmp_path):
        path = tmp_path / "e2e-platform.json"
        path.write_text(json.dumps({"retention_hours": 72, "log_level": "debug"}))

        config = ConfigManager(path).get_config()

        assert config.retention_hours == 72
        assert config.log_level == "DEBUG"

    @patch.dict(os.environ, {"E2E_PLATFORM_EXECUTION_TIMEOUT": "45"})
    def test_environment_wins_over_file(self, yaml_file):
        config = ConfigManager(yaml_file).get_config()

        assert config.execution_timeout == 45
        assert config.max_concurrent_jobs == 3

    def test_invalid_file_falls_back_to_environment(self, tmp_path):
        path = tmp_path / "e2e-platform.yaml"
        path.write_text("execution_timeout: [unclosed\n")

        config = ConfigManager(path).get_config()

        assert config.execution_timeout == 300

    def test_non_mapping_file_is_ignored(self, tmp_path):
        path = tmp_path / "e2e-platform.yaml"
        path.write_text("- just\n- a list\n")

        assert ConfigManager(path).get_config().execution_timeout == 300

    def test_config_is_cached(self, yaml_file):
        manager = ConfigManager(yaml_file)
        assert manager.get_config() is manager.get_config()

    def test_reload_notifies_callbacks(self, yaml_file):
        manager = ConfigManager(yaml_file)
        manager.get_config()
        callback = MagicMock()
        manager.add_reload_callback(callback)

        yaml_file.write_text(yaml.safe_dump({"execution_timeout": 10}))
        config = manager.reload_config()

        assert config.execution_timeout == 10
        callback.assert_called_once_with(config)

    def test_failing_callback_does_not_break_reload(self, yaml_file):
        manager = ConfigManager(yaml_file)
        manager.add_reload_callback(MagicMock(side_effect=RuntimeError("listener broke")))
        healthy = MagicMock()
        manager.add_reload_callback(healthy)

        manager.reload_config()

        healthy.assert_called_once()

    def test_remove_reload_callback(self, yaml_file):
        manager = ConfigManager(yaml_file)
        callback = MagicMock()
        manager.add_reload_callback(callback)
        manager.remove_reload_callback(callback)

        manager.reload_config()

        callback.assert_not_called()

    @pytest.mark.parametrize("filename", ["saved.yaml", "saved.json"])
    def test_save_and_reload(self, tmp_path, filename):
        config = Config(
            execution_timeout=77,
            jobs_dir=tmp_path / "runs",
            runner_command=["npx", "playwright", "test"],
        )
        manager = ConfigManager(tmp_path / "unused.yaml")

        target = manager.save_config(config, tmp_path / filename)
        reloaded = ConfigManager(target).get_config()

        assert target.exists()
        assert reloaded.execution_timeout == 77
        assert reloaded.jobs_dir == tmp_path / "runs"
        assert reloaded.runner_command == ["npx", "playwright", "test"]

    def test_validate_config(self, tmp_path):
        manager = ConfigManager(tmp_path / "absent.yaml")

        assert manager.validate_config() == []
        errors = manager.validate_config(Config(max_concurrent_jobs=0))
        assert errors == ["max_concurrent_jobs must be at least 1"]

    def test_discovers_file_in_working_directory(self, yaml_file, tmp_path):
        with patch("pathlib.Path.cwd", return_value=tmp_path):
            manager = ConfigManager()

        assert manager.config_file_path == yaml_file


class TestGetConfigManager:
    """Test the process-wide manager accessor."""

    def test_returns_same_instance(self, tmp_path):
        first = get_config_manager(tmp_path / "a.yaml")
        assert get_config_manager() is first

    def test_explicit_path_replaces_instance(self, tmp_path):
        first = get_config_manager(tmp_path / "a.yaml")
        second = get_config_manager(tmp_path / "b.yaml")

        assert second is not first
        assert config_manager_module._config_manager is second
