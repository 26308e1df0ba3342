"""
Configuration management for SoundStage.

Reads configuration from a .env file and SOUNDSTAGE_* environment variables
with sensible defaults.
"""

import logging
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Mapping, Optional

from dotenv import load_dotenv

from soundstage.errors import ConfigError

# Default .env file location
DEFAULT_ENV_FILE = Path("/etc/soundstage/soundstage.env")

ENV_PREFIX = "SOUNDSTAGE_"

_TRUE_VALUES = ("1", "true", "yes", "on")
_FALSE_VALUES = ("0", "false", "no", "off", "")

logger = logging.getLogger(__name__)


def _load_env_file() -> None:
    """Load environment variables from .env file if it exists."""
    env_path = Path(os.getenv("SOUNDSTAGE_ENV_FILE", str(DEFAULT_ENV_FILE)))
    if env_path.exists():
        load_dotenv(env_path, override=False)  # Don't override existing env vars


def _parse_bool(name: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE_VALUES:
        return True
    if text in _FALSE_VALUES:
        return False
    raise ConfigError(f"Invalid {name}: {value} (must be a boolean)")


def _parse_float(name: str, value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ConfigError(f"Invalid {name}: {value} (must be a number)")


def _parse_int(name: str, value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"Invalid {name}: {value} (must be an integer)")


def _optional_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


@dataclass
class EngineConfig:
    """SoundStage engine configuration."""

    # Volume
    default_volume: float = 1.0

    # Crossfade
    crossfade_duration: float = 2.0
    crossfade_enabled: bool = True

    # Playlist
    looping: bool = True
    max_history: int = 20

    # Speakers (device ids that take the stereo roles when they attach)
    left_speaker: Optional[str] = None
    right_speaker: Optional[str] = None
    balance_left: float = 1.0
    balance_right: float = 1.0

    # Scheduling
    use_scheduler: bool = False

    # Events
    surface_handler_errors: bool = True

    # HTTP speakers
    http_timeout: float = 2.0

    # Logging
    log_level: str = "INFO"
    log_file: Optional[str] = None

    @classmethod
    def load_config(cls) -> "EngineConfig":
        """
        Load configuration from environment variables.

        Returns:
            EngineConfig instance with loaded values

        Raises:
            ConfigError: If configuration is invalid
        """
        # Load .env file first (if it exists)
        _load_env_file()

        values = {}
        for f in fields(cls):
            raw = os.getenv(ENV_PREFIX + f.name.upper())
            if raw is not None:
                values[f.name] = raw
        return cls.from_mapping(values)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "EngineConfig":
        """
        Build a validated config from plain data (strings are parsed).

        Raises:
            ConfigError: On unknown keys or invalid values
        """
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ConfigError(f"Unknown configuration keys: {', '.join(sorted(unknown))}")

        config = cls()
        for name, value in data.items():
            setattr(config, name, value)
        config._coerce()
        config.validate()
        return config

    def _coerce(self) -> None:
        for name in ("default_volume", "crossfade_duration", "balance_left", "balance_right", "http_timeout"):
            setattr(self, name, _parse_float(name, getattr(self, name)))
        for name in ("crossfade_enabled", "looping", "use_scheduler", "surface_handler_errors"):
            setattr(self, name, _parse_bool(name, getattr(self, name)))
        self.max_history = _parse_int("max_history", self.max_history)
        self.left_speaker = _optional_str(self.left_speaker)
        self.right_speaker = _optional_str(self.right_speaker)
        self.log_file = _optional_str(self.log_file)
        self.log_level = str(self.log_level).upper()

    def validate(self) -> None:
        """
        Validate configuration values.

        Raises:
            ConfigError: If configuration is invalid
        """
        for name in ("default_volume", "balance_left", "balance_right"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ConfigError(f"Invalid {name}: {value} (must be 0.0-1.0)")

        if self.crossfade_duration < 0:
            raise ConfigError(f"Invalid crossfade duration: {self.crossfade_duration} (must be >= 0)")

        if self.max_history < 1:
            raise ConfigError(f"Invalid max history: {self.max_history} (must be >= 1)")

        if self.http_timeout <= 0:
            raise ConfigError(f"Invalid HTTP timeout: {self.http_timeout} (must be > 0)")

        if self.left_speaker and self.left_speaker == self.right_speaker:
            raise ConfigError(f"Left and right speaker must differ (both {self.left_speaker})")

        valid_log_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if self.log_level.upper() not in valid_log_levels:
            raise ConfigError(
                f"Invalid log level: {self.log_level} "
                f"(must be one of: {', '.join(valid_log_levels)})"
            )


def load_config() -> EngineConfig:
    """
    Load and validate SoundStage configuration from environment variables.

    Returns:
        EngineConfig instance with loaded and validated values

    Raises:
        ConfigError: If configuration is invalid
    """
    try:
        return EngineConfig.load_config()
    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
        raise
