"""Configuration management with environment variable integration and validation."""

import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from .types import MongotestConfig
from .errors import ConfigurationError

ENV_PREFIX = "MONGOTEST_"


def load_env_overrides(prefix: str = ENV_PREFIX) -> Dict[str, Any]:
    """Load environment variables with the given prefix and convert to appropriate types."""
    overrides: Dict[str, Any] = {}

    for key, value in os.environ.items():
        if not key.startswith(prefix):
            continue
        field_name = key[len(prefix) :].lower()

        # Nested configuration, e.g. MONGOTEST_TIMEOUTS__SERVER_STOP
        if "__" in field_name:
            parts = field_name.split("__")
            if len(parts) == 2:
                section, sub_field = parts
                overrides.setdefault(section, {})[sub_field] = _convert_env_value(value)
            continue

        overrides[field_name] = _convert_env_value(value)

    return overrides


def _convert_env_value(value: str) -> Any:
    """Convert string environment value to appropriate Python type."""
    if not value:
        return None

    try:
        return int(value)
    except ValueError:
        pass

    try:
        return float(value)
    except ValueError:
        pass

    if value.lower() in ("true", "yes", "on"):
        return True
    if value.lower() in ("false", "no", "off"):
        return False

    return value


def _merge(base: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    """Merge overrides into base, descending into nested sections."""
    merged = dict(base)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


class ConfigManager:
    """Central configuration management."""

    def __init__(self) -> None:
        self._config: Optional[MongotestConfig] = None

    def load_config(
        self, config_file: Optional[Path] = None, **overrides: Any
    ) -> MongotestConfig:
        """Load configuration from file and environment with explicit overrides.

        Precedence, highest first: keyword overrides, environment variables,
        config file, model defaults.
        """
        config_data: Dict[str, Any] = {}

        if config_file and Path(config_file).exists():
            config_data = _merge(config_data, self._load_from_file(Path(config_file)))

        config_data = _merge(config_data, load_env_overrides())
        config_data = _merge(config_data, overrides)

        self._config = MongotestConfig(**config_data)
        return self._config

    def get_config(self) -> MongotestConfig:
        """Get current configuration, loading defaults and environment on first use."""
        if self._config is None:
            self._config = self.load_config()
        return self._config

    def reset(self) -> None:
        """Forget the loaded configuration."""
        self._config = None

    def _load_from_file(self, config_file: Path) -> Dict[str, Any]:
        """Load configuration from YAML file."""
        if config_file.suffix.lower() not in (".yml", ".yaml"):
            raise ConfigurationError(
                f"Unsupported config file format: {config_file.suffix}"
            )
        try:
            with open(config_file, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(
                f"Failed to load config file {config_file}: {e}"
            ) from e
        if not isinstance(data, dict):
            raise ConfigurationError(
                f"Config file {config_file} must contain a mapping"
            )
        return data


_config_manager = ConfigManager()


def load_config(**kwargs: Any) -> MongotestConfig:
    """Load global configuration."""
    return _config_manager.load_config(**kwargs)


def get_config() -> MongotestConfig:
    """Get current global configuration."""
    return _config_manager.get_config()


def reset_config() -> None:
    """Reset global configuration so the next access reloads it."""
    _config_manager.reset()
