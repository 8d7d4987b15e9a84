"""
Unit tests for Config class.

Tests configuration defaults, environment variable handling,
and validation for the job orchestration components.
"""

import os
from pathlib import Path
from unittest.mock import patch

import pytest

from e2e_platform.core.config import Config, DEFAULT_RUNNER_COMMAND
from e2e_platform.core.exceptions import ValidationError


class TestConfig:
    """Test cases for Config class."""

    def test_default_config_creation(self):
        """Test creating config with default values."""
        config = Config()

        assert config.ci_mode is False
        assert config.log_level == "INFO"
        assert config.log_format == "text"
        assert config.execution_timeout == 300
        assert config.max_concurrent_jobs == 2
        assert config.retention_hours == 24
        assert config.runner_command == DEFAULT_RUNNER_COMMAND
        assert config.jobs_dir == Path.cwd() / "test-runs"

    def test_runner_command_default_is_not_shared(self):
        """Test each config gets its own runner command list."""
        first = Config()
        first.runner_command.append("--debug")

        assert Config().runner_command == DEFAULT_RUNNER_COMMAND

    @patch.dict(os.environ, {"CI": "true"})
    def test_ci_mode_detection(self):
        """Test CI mode detection from environment variable."""
        config = Config()

        assert config.ci_mode is True
        assert config.log_format == "json"

    @patch.dict(
        os.environ,
        {
            "E2E_PLATFORM_LOG_LEVEL": "debug",
            "E2E_PLATFORM_JOBS_DIR": "/srv/e2e/runs",
            "E2E_PLATFORM_BUNDLES_DIR": "/srv/e2e/zips",
            "E2E_PLATFORM_EXECUTION_TIMEOUT": "90",
            "E2E_PLATFORM_MAX_CONCURRENT_JOBS": "4",
            "E2E_PLATFORM_RETENTION_HOURS": "48",
            "E2E_PLATFORM_RUNNER_COMMAND": "node ./node_modules/.bin/playwright test",
            "NODE_PATH": "/srv/e2e/node_modules",
        },
    )
    def test_environment_variable_override(self):
        """Test all environment variable overrides."""
        config = Config()

        assert config.log_level == "DEBUG"
        assert config.jobs_dir == Path("/srv/e2e/runs")
        assert config.bundles_dir == Path("/srv/e2e/zips")
        assert config.execution_timeout == 90
        assert config.max_concurrent_jobs == 4
        assert config.retention_seconds == 48 * 3600
        assert config.runner_command == ["node", "./node_modules/.bin/playwright", "test"]
        assert config.node_path == "/srv/e2e/node_modules"

    @patch.dict(os.environ, {"E2E_PLATFORM_EXECUTION_TIMEOUT": "soon"})
    def test_unparseable_integer_keeps_default(self):
        assert Config().execution_timeout == 300

    @pytest.mark.parametrize(
        "raw,expected",
        [("warn", "WARNING"), ("Error", "ERROR"), ("verbose", "INFO")],
    )
    def test_log_level_normalisation(self, raw, expected):
        with patch.dict(os.environ, {"E2E_PLATFORM_LOG_LEVEL": raw}):
            assert Config().log_level == expected

    def test_runner_command_string_is_split(self):
        config = Config(runner_command="npx playwright test --reporter=line")
        assert config.runner_command == ["npx", "playwright", "test", "--reporter=line"]

    def test_from_env_class_method(self):
        """Test creating config from environment using class method."""
        with patch.dict(os.environ, {"CI": "true", "E2E_PLATFORM_LOG_LEVEL": "ERROR"}):
            config = Config.from_env()

            assert config.ci_mode is True
            assert config.log_level == "ERROR"
            assert config.log_format == "json"

    def test_validate_valid_config(self):
        """Test validation of valid configuration."""
        Config().validate()

    def test_validate_collects_every_violation(self):
        """Test validation reports all invalid settings at once."""
        config = Config(
            execution_timeout=0,
            max_concurrent_jobs=0,
            retention_hours=0,
            kill_grace_period=-1,
            runner_command=[],
        )

        with pytest.raises(ValidationError) as exc_info:
            config.validate()

        violations = exc_info.value.violations
        assert exc_info.value.validation_type == "config"
        assert len(violations) == 5
        assert any("execution_timeout" in v for v in violations)
        assert any("runner_command" in v for v in violations)

    def test_validate_log_format(self):
        config = Config()
        config.log_format = "xml"

        with pytest.raises(ValidationError, match="Invalid log format"):
            config.validate()

    def test_ensure_directories(self, tmp_path):
        config = Config(
            jobs_dir=tmp_path / "runs",
            bundles_dir=tmp_path / "reports" / "zips",
            logs_dir=tmp_path / "logs",
        )

        config.ensure_directories()

        assert (tmp_path / "runs").is_dir()
        assert (tmp_path / "reports" / "zips").is_dir()
        assert (tmp_path / "logs").is_dir()

    def test_log_file_paths(self, tmp_path):
        config = Config(logs_dir=tmp_path)

        assert config.get_log_file_path() == tmp_path / "e2e-platform.log"
        assert config.get_error_log_file_path() == tmp_path / "error.log"

    def test_to_dict(self):
        """Test converting config to dictionary."""
        config_dict = Config(log_level="DEBUG").to_dict()

        assert config_dict["log_level"] == "DEBUG"
        assert config_dict["runner_command"] == DEFAULT_RUNNER_COMMAND
        assert isinstance(config_dict["jobs_dir"], str)
        assert "retention_hours" in config_dict

    def test_debug_enabled(self):
        assert Config(log_level="DEBUG").debug_enabled
        assert not Config().debug_enabled
