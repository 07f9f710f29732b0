"""
Unified configuration management for the suggestion tracker.

Provides centralized configuration with:
- JSON file loading with defaults
- Environment variable overrides
- Dot-notation access
- Feature enable/disable flags
"""

import copy
import json
import os
from pathlib import Path
from typing import Any, Optional


TRUE_VALUES = ("true", "1", "yes")


class TrackerConfig:
    """
    Singleton configuration manager for telemetry and tracker settings.

    Usage:
        from metrics.config import config

        if config.is_enabled('telemetry'):
            # ... telemetry code

        interval = config.get('tracker.check_interval_sec')
    """

    _instance = None
    _config = None
    _config_loaded = False

    def __new__(cls):
        """Singleton pattern."""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def load(self, config_path: Optional[Path] = None):
        """
        Load configuration from file.

        Args:
            config_path: Path to tracker_config.json (optional)
        """
        if self._config_loaded:
            return

        if config_path is None:
            config_path = Path(__file__).parent.parent.parent / "config" / "tracker_config.json"

        self._config = self._get_defaults()
        if config_path.exists():
            try:
                with open(config_path) as f:
                    self._merge(self._config, json.load(f))
            except Exception as e:
                print(f"Warning: Failed to load config from {config_path}: {e}")

        self._apply_env_overrides()

        self._config_loaded = True

    def _get_defaults(self) -> dict:
        """
        Get default configuration.

        Returns:
            Dictionary with default settings
        """
        return {
            "version": "1.0.0",
            "extension_version": "1.0.0",
            "product_name": "Suggestion Tracker",
            "telemetry": {
                "enabled": True,
                "log_path": "~/.suggestion-tracker/telemetry.jsonl",
                "batch_size": 10,
                "batch_flush_interval_sec": 5.0,
                "raise_on_activation_error": False
            },
            "tracker": {
                "maturity_minutes": 5,
                "check_interval_sec": 60,
                "auto_start_timer": True
            },
            "state": {
                "path": "~/.suggestion-tracker/global_state.json"
            }
        }

    def _merge(self, target: dict, source: dict):
        """Merge a loaded file over the defaults, keeping unspecified keys."""
        for key, value in source.items():
            if isinstance(value, dict) and isinstance(target.get(key), dict):
                self._merge(target[key], value)
            else:
                target[key] = value

    def _apply_env_overrides(self):
        """Apply environment variable overrides to configuration."""
        # SUGGESTION_TELEMETRY_ENABLED=false
        if "SUGGESTION_TELEMETRY_ENABLED" in os.environ:
            value = os.environ["SUGGESTION_TELEMETRY_ENABLED"].lower()
            self._config["telemetry"]["enabled"] = value in TRUE_VALUES

        if "SUGGESTION_TELEMETRY_LOG_PATH" in os.environ:
            self._config["telemetry"]["log_path"] = os.environ["SUGGESTION_TELEMETRY_LOG_PATH"]

        numeric_overrides = {
            "SUGGESTION_TRACKER_CHECK_INTERVAL_SEC": "check_interval_sec",
            "SUGGESTION_TRACKER_MATURITY_MINUTES": "maturity_minutes",
        }
        for env_name, key in numeric_overrides.items():
            if env_name not in os.environ:
                continue
            try:
                self._config["tracker"][key] = float(os.environ[env_name])
            except ValueError:
                print(f"Warning: Ignoring non-numeric {env_name}={os.environ[env_name]!r}")

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get configuration value with dot notation.

        Args:
            key: Configuration key (e.g., "telemetry.enabled")
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        if not self._config_loaded:
            self.load()

        value = self._config
        for k in key.split('.'):
            if isinstance(value, dict):
                value = value.get(k)
            else:
                return default

        return value if value is not None else default

    def get_path(self, key: str, default: Optional[str] = None) -> Optional[Path]:
        """Get a path-valued setting with ``~`` expanded."""
        value = self.get(key, default)
        if value is None:
            return None
        return Path(value).expanduser()

    def set(self, key: str, value: Any):
        """
        Set configuration value (runtime only, not persisted).

        Args:
            key: Configuration key (dot notation)
            value: Value to set
        """
        if not self._config_loaded:
            self.load()

        keys = key.split('.')
        config = self._config

        for k in keys[:-1]:
            if k not in config:
                config[k] = {}
            config = config[k]

        config[keys[-1]] = value

    def is_enabled(self, feature: str) -> bool:
        """
        Check if a feature is enabled.

        Args:
            feature: Feature name (e.g., "telemetry")

        Returns:
            True if enabled, False otherwise
        """
        return bool(self.get(f"{feature}.enabled", False))

    def reload(self):
        """Force reload configuration from file."""
        self._config_loaded = False
        self.load()

    def get_all(self) -> dict:
        """
        Get entire configuration dictionary.

        Returns:
            Deep copy of the full configuration
        """
        if not self._config_loaded:
            self.load()
        return copy.deepcopy(self._config)


# Singleton instance for import
config = TrackerConfig()

# Auto-load on import
config.load()
