"""
Configuration file management for the E2E platform.

Layers an optional YAML or JSON configuration file over the
environment-derived configuration and notifies listeners on reload.
"""

import json
import threading
from dataclasses import asdict, fields
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import yaml

from .config import Config
from .exceptions import ValidationError
from .logging_config import get_logger


DEFAULT_CONFIG_FILENAMES = ["e2e-platform.yaml", "e2e-platform.yml", "e2e-platform.json"]

logger = get_logger(__name__)


class ConfigManager:
    """
    Loads, validates, reloads and saves platform configuration.

    Precedence, lowest first: dataclass defaults, configuration file,
    environment variables.
    """

    def __init__(self, config_file_path: Optional[Path] = None):
        self.config_file_path = (
            Path(config_file_path) if config_file_path else self._discover_config_file()
        )
        self._config: Optional[Config] = None
        self._reload_callbacks: List[Callable[[Config], None]] = []
        self._lock = threading.RLock()

    @staticmethod
    def _discover_config_file() -> Path:
        for name in DEFAULT_CONFIG_FILENAMES:
            candidate = Path.cwd() / name
            if candidate.exists():
                return candidate
        return Path.cwd() / DEFAULT_CONFIG_FILENAMES[0]

    def get_config(self) -> Config:
        """Get current configuration, loading if necessary."""
        with self._lock:
            if self._config is None:
                self._config = self._load_config()
            return self._config

    def reload_config(self) -> Config:
        """Force reload configuration from files."""
        with self._lock:
            self._config = self._load_config()
            self._notify_reload_callbacks()
            return self._config

    def validate_config(self, config: Optional[Config] = None) -> List[str]:
        """
        Validate configuration and return list of validation errors.

        Args:
            config: Configuration to validate. If None, uses current config.

        Returns:
            List of validation error messages. Empty list if valid.
        """
        if config is None:
            config = self.get_config()

        try:
            config.validate()
        except ValidationError as e:
            return list(e.violations) or [e.message]
        return []

    def save_config(self, config: Config, path: Optional[Path] = None) -> Path:
        """Save configuration to a YAML or JSON file, chosen by suffix."""
        target = Path(path) if path else self.config_file_path
        config_dict = asdict(config)

        for key, value in config_dict.items():
            if isinstance(value, Path):
                config_dict[key] = str(value)

        target.parent.mkdir(parents=True, exist_ok=True)
        with open(target, "w", encoding="utf-8") as f:
            if target.suffix == ".json":
                json.dump(config_dict, f, indent=2, default=str)
            else:
                yaml.safe_dump(config_dict, f, default_flow_style=False, sort_keys=True)

        logger.info(f"Saved configuration to {target}")
        return target

    def add_reload_callback(self, callback: Callable[[Config], None]) -> None:
        """Add callback to be called when configuration is reloaded."""
        self._reload_callbacks.append(callback)

    def remove_reload_callback(self, callback: Callable[[Config], None]) -> None:
        """Remove reload callback."""
        if callback in self._reload_callbacks:
            self._reload_callbacks.remove(callback)

    def _read_config_file(self) -> Dict[str, Any]:
        with open(self.config_file_path, "r", encoding="utf-8") as f:
            if self.config_file_path.suffix == ".json":
                data = json.load(f)
            else:
                data = yaml.safe_load(f)
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ValueError("configuration file must contain a mapping")
        return data

    def _load_config(self) -> Config:
        """Load configuration from environment and file."""
        config = Config.from_env()

        if not self.config_file_path.exists():
            return config

        try:
            file_config = self._read_config_file()
        except (yaml.YAMLError, json.JSONDecodeError, ValueError, OSError) as e:
            logger.warning(f"Could not load config file {self.config_file_path}: {e}")
            return config

        known = {f.name for f in fields(Config)}
        overrides = {}
        for key, value in file_config.items():
            if key not in known:
                logger.warning(f"Ignoring unknown configuration key: {key}")
                continue
            if key.endswith("_dir") or key.endswith("_root"):
                value = Path(value)
            overrides[key] = value

        merged = asdict(config)
        merged.update(overrides)
        return Config(**merged)

    def _notify_reload_callbacks(self) -> None:
        for callback in list(self._reload_callbacks):
            try:
                callback(self._config)
            except Exception as e:
                logger.error(f"Configuration reload callback failed: {e}")


_config_manager: Optional[ConfigManager] = None


def get_config_manager(config_file_path: Optional[Path] = None) -> ConfigManager:
    """Return the process-wide configuration manager, creating it on first use."""
    global _config_manager
    if _config_manager is None or config_file_path is not None:
        _config_manager = ConfigManager(config_file_path)
    return _config_manager
