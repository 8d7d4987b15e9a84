"""
Configuration management for the E2E platform.

Handles environment variables, defaults, and configuration validation
for the job orchestration components.
"""

import os
import shlex
from typing import Optional, Dict, Any, List
from dataclasses import dataclass, field
from pathlib import Path


VALID_LOG_LEVELS = ["DEBUG", "INFO", "WARN", "WARNING", "ERROR"]
VALID_LOG_FORMATS = ["text", "json"]
DEFAULT_RUNNER_COMMAND = ["npx", "playwright", "test"]


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


@dataclass
class Config:
    """Configuration class for the E2E platform with environment variable support."""

    # Environment detection
    ci_mode: bool = field(default=False)

    # Logging configuration
    log_level: str = field(default="INFO")
    log_format: str = field(default="text")

    # Execution settings
    execution_timeout: int = field(default=300)
    kill_grace_period: float = field(default=5.0)
    max_concurrent_jobs: int = field(default=2)
    runner_command: List[str] = field(default_factory=lambda: list(DEFAULT_RUNNER_COMMAND))
    node_path: Optional[str] = field(default=None)

    # Retention policy
    retention_hours: int = field(default=24)
    cleanup_interval_hours: int = field(default=6)

    # Completion callbacks
    callback_timeout: int = field(default=30)

    # Directory paths
    project_root: Path = field(default_factory=lambda: Path.cwd())
    jobs_dir: Path = field(default_factory=lambda: Path.cwd() / "test-runs")
    bundles_dir: Path = field(default_factory=lambda: Path.cwd() / "reports" / "zips")
    logs_dir: Path = field(default_factory=lambda: Path.cwd() / "logs")

    def __post_init__(self):
        """Post-initialization normalisation and setup."""
        # CI mode
        if os.getenv("CI", "").lower() == "true" and self.ci_mode is False:
            self.ci_mode = True

        log_env = os.getenv("E2E_PLATFORM_LOG_LEVEL")
        if log_env:
            self.log_level = log_env
        self.log_level = self.log_level.upper()
        if self.log_level not in VALID_LOG_LEVELS:
            self.log_level = "INFO"
        if self.log_level == "WARN":
            self.log_level = "WARNING"

        # JSON logs in CI unless explicitly set otherwise
        if self.ci_mode and self.log_format == "text":
            self.log_format = "json"

        jobs_env = os.getenv("E2E_PLATFORM_JOBS_DIR")
        if jobs_env:
            self.jobs_dir = Path(jobs_env)
        bundles_env = os.getenv("E2E_PLATFORM_BUNDLES_DIR")
        if bundles_env:
            self.bundles_dir = Path(bundles_env)
        logs_env = os.getenv("E2E_PLATFORM_LOGS_DIR")
        if logs_env:
            self.logs_dir = Path(logs_env)

        self.execution_timeout = _env_int(
            "E2E_PLATFORM_EXECUTION_TIMEOUT", self.execution_timeout
        )
        self.max_concurrent_jobs = _env_int(
            "E2E_PLATFORM_MAX_CONCURRENT_JOBS", self.max_concurrent_jobs
        )
        self.retention_hours = _env_int("E2E_PLATFORM_RETENTION_HOURS", self.retention_hours)
        self.cleanup_interval_hours = _env_int(
            "E2E_PLATFORM_CLEANUP_INTERVAL_HOURS", self.cleanup_interval_hours
        )

        runner_env = os.getenv("E2E_PLATFORM_RUNNER_COMMAND")
        if runner_env:
            self.runner_command = shlex.split(runner_env)
        elif isinstance(self.runner_command, str):
            self.runner_command = shlex.split(self.runner_command)

        if self.node_path is None and os.getenv("NODE_PATH"):
            self.node_path = os.getenv("NODE_PATH")

        self.jobs_dir = Path(self.jobs_dir)
        self.bundles_dir = Path(self.bundles_dir)
        self.logs_dir = Path(self.logs_dir)
        self.project_root = Path(self.project_root)

    @property
    def is_ci_mode(self) -> bool:
        """Check if running in CI environment."""
        return self.ci_mode

    @property
    def debug_enabled(self) -> bool:
        """Check if debug logging is enabled."""
        return self.log_level == "DEBUG"

    @property
    def retention_seconds(self) -> int:
        return self.retention_hours * 3600

    def ensure_directories(self) -> None:
        """Create the jobs, bundles and logs directories."""
        for directory in (self.jobs_dir, self.bundles_dir, self.logs_dir):
            directory.mkdir(parents=True, exist_ok=True)

    def get_log_file_path(self) -> Path:
        """Get the main log file path."""
        return self.logs_dir / "e2e-platform.log"

    def get_error_log_file_path(self) -> Path:
        """Get the error-only log file path."""
        return self.logs_dir / "error.log"

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary for logging."""
        return {
            "ci_mode": self.ci_mode,
            "log_level": self.log_level,
            "log_format": self.log_format,
            "execution_timeout": self.execution_timeout,
            "kill_grace_period": self.kill_grace_period,
            "max_concurrent_jobs": self.max_concurrent_jobs,
            "runner_command": list(self.runner_command),
            "node_path": self.node_path,
            "retention_hours": self.retention_hours,
            "cleanup_interval_hours": self.cleanup_interval_hours,
            "callback_timeout": self.callback_timeout,
            "project_root": str(self.project_root),
            "jobs_dir": str(self.jobs_dir),
            "bundles_dir": str(self.bundles_dir),
            "logs_dir": str(self.logs_dir),
        }

    @classmethod
    def from_env(cls) -> "Config":
        """Create configuration from environment variables."""
        ci = os.getenv("CI", "").lower() == "true"
        return cls(
            ci_mode=ci,
            log_level=os.getenv("E2E_PLATFORM_LOG_LEVEL", "INFO").upper(),
            log_format="json" if ci else "text",
        )

    def validate(self) -> None:
        """Validate configuration and raise ValidationError if invalid."""
        from .exceptions import ValidationError

        errors = []

        if self.log_level not in VALID_LOG_LEVELS:
            errors.append(
                f"Invalid log level: {self.log_level}. Must be one of {VALID_LOG_LEVELS}"
            )

        if self.log_format not in VALID_LOG_FORMATS:
            errors.append(
                f"Invalid log format: {self.log_format}. Must be one of {VALID_LOG_FORMATS}"
            )

        if self.execution_timeout <= 0:
            errors.append("execution_timeout must be a positive number of seconds")

        if self.kill_grace_period < 0:
            errors.append("kill_grace_period cannot be negative")

        if self.max_concurrent_jobs < 1:
            errors.append("max_concurrent_jobs must be at least 1")

        if self.retention_hours < 1:
            errors.append("retention_hours must be at least 1")

        if self.cleanup_interval_hours < 1:
            errors.append("cleanup_interval_hours must be at least 1")

        if self.callback_timeout <= 0:
            errors.append("callback_timeout must be positive")

        if not self.runner_command:
            errors.append("runner_command cannot be empty")

        if errors:
            message = "Configuration validation failed: " + "; ".join(errors)
            raise ValidationError(
                message,
                validation_type="config",
                violations=errors,
            )
