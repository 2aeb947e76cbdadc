"""
Configuration management with YAML and environment variable support.

Environment variables take precedence over YAML configuration.
Keys use dot notation; "scheduler.interval_seconds" maps to the
environment variable SMARTCAT_SCHEDULER_INTERVAL_SECONDS.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml
from dotenv import load_dotenv

from smartcat.core.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

ENV_PREFIX = "SMARTCAT_"

# Default configuration paths
DEFAULT_CONFIG_PATHS = [
    Path("smartcat.yaml"),
    Path("smartcat.yml"),
    Path("config/smartcat.yaml"),
    Path.home() / ".smartcat" / "config.yaml",
]

DEFAULT_DB_PATH = Path("data") / "smartcat.db"
DEFAULT_TICK_INTERVAL = 3600
DEFAULT_TICK_TIMEOUT = 300
DEFAULT_TIMEZONE = "UTC"


class Config:
    """
    YAML + environment variable integrated configuration management.

    Usage:
        config = Config()
        interval = config.tick_interval_seconds
        tz = config.get("scheduler.timezone", default="UTC")
    """

    def __init__(
        self,
        config_path: Path | str | None = None,
        env_file: Path | str | None = None,
        overrides: dict[str, Any] | None = None,
    ):
        """
        Initialize configuration.

        Args:
            config_path: Path to YAML config file. If None, searches default locations.
            env_file: Path to .env file. If None, searches current directory.
            overrides: Values that win over both env and YAML (CLI flags, tests)
        """
        env_path = Path(env_file) if env_file else None
        load_dotenv(dotenv_path=env_path, override=False)

        self._config: dict[str, Any] = {}
        self._config_path: Path | None = None
        self._overrides: dict[str, Any] = dict(overrides or {})

        self._load_yaml(config_path)

        logger.debug("Configuration initialized from: %s", self._config_path or "defaults only")

    def _load_yaml(self, config_path: Path | str | None = None) -> None:
        """Load YAML configuration file."""
        if config_path:
            path = Path(config_path)
            if not path.exists():
                raise ConfigurationError(f"Configuration file not found: {path}")
            self._config_path = path
        else:
            for default_path in DEFAULT_CONFIG_PATHS:
                if default_path.exists():
                    self._config_path = default_path
                    break

        if self._config_path:
            try:
                with self._config_path.open("r", encoding="utf-8") as f:
                    loaded = yaml.safe_load(f)
                    if loaded:
                        if not isinstance(loaded, dict):
                            raise ConfigurationError(
                                f"Top level of {self._config_path} must be a mapping"
                            )
                        self._config = loaded
                logger.info("Loaded configuration from: %s", self._config_path)
            except yaml.YAMLError as e:
                raise ConfigurationError(f"Invalid YAML in {self._config_path}: {e}") from e
            except OSError as e:
                raise ConfigurationError(f"Failed to read {self._config_path}: {e}") from e

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get configuration value.

        Lookup order: overrides, environment variable, YAML, default.

        Args:
            key: Configuration key (dot notation supported)
            default: Default value if key not found

        Returns:
            Configuration value
        """
        if key in self._overrides and self._overrides[key] is not None:
            return self._overrides[key]

        env_key = f"{ENV_PREFIX}{key.upper().replace('.', '_')}"
        env_value = os.getenv(env_key)
        if env_value is not None:
            value = self._parse_env_value(env_value)
            logger.debug("Config %s from env: %s", key, value)
            return value

        value = self._get_nested(key)
        if value is not None:
            logger.debug("Config %s from yaml: %s", key, value)
            return value

        return default

    def set(self, key: str, value: Any) -> None:
        """Override a value for the lifetime of this object."""
        self._overrides[key] = value

    def _get_nested(self, key: str) -> Any:
        """Get nested value from config dict using dot notation."""
        value: Any = self._config
        for part in key.split("."):
            if not isinstance(value, dict):
                return None
            value = value.get(part)
            if value is None:
                return None
        return value

    @staticmethod
    def _parse_env_value(value: str) -> Any:
        """Parse environment variable string to appropriate type."""
        if value.lower() in ("true", "yes", "on"):
            return True
        if value.lower() in ("false", "no", "off"):
            return False

        try:
            return int(value)
        except ValueError:
            pass

        try:
            return float(value)
        except ValueError:
            pass

        return value

    def _positive_number(self, key: str, default: float) -> float:
        value = self.get(key, default)
        try:
            number = float(value)
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"{key} must be a number, got {value!r}") from e
        if number <= 0:
            raise ConfigurationError(f"{key} must be positive, got {value!r}")
        return number

    @property
    def db_path(self) -> Path:
        """SQLite database file holding categories and the transition log."""
        return Path(self.get("store.db_path", DEFAULT_DB_PATH))

    @property
    def tick_interval_seconds(self) -> float:
        """Seconds between scheduled ticks."""
        return self._positive_number("scheduler.interval_seconds", DEFAULT_TICK_INTERVAL)

    @property
    def tick_timeout_seconds(self) -> float:
        """Upper bound for a single tick before it is cancelled."""
        return self._positive_number("scheduler.timeout_seconds", DEFAULT_TICK_TIMEOUT)

    @property
    def skip_until_next_check(self) -> bool:
        """Whether ticks may skip categories between window boundaries."""
        return bool(self.get("scheduler.skip_until_next_check", True))

    @property
    def timezone(self) -> ZoneInfo:
        """Canonical time zone used to turn "now" into a calendar date."""
        name = self.get("scheduler.timezone", DEFAULT_TIMEZONE)
        try:
            return ZoneInfo(str(name))
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ConfigurationError(f"Unknown time zone: {name}") from e

    def __repr__(self) -> str:
        return f"Config(path={self._config_path})"
