"""Configuration management for timetable_lite."""

from __future__ import annotations

import logging
import os
from pathlib import Path

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

TRUTHY_VALUES = ("1", "true", "yes", "on")
FALSY_VALUES = ("0", "false", "no", "off")


def parse_env_file(path: Path) -> dict[str, str]:
    """Parse a .env file and return key-value pairs.

    Args:
        path: Path to .env file

    Returns:
        Dictionary of key-value pairs from the .env file.
        Empty dict if file doesn't exist or cannot be read.

    Note:
        - Skips empty lines and comments (lines starting with #)
        - Strips quotes (both single and double) from values
        - Handles KEY=VALUE format with optional whitespace
    """
    if not path.exists():
        return {}

    result: dict[str, str] = {}

    try:
        content = path.read_text(encoding="utf-8")
    except OSError:
        logger.debug("Failed to read .env file (continuing): %s", str(path), exc_info=True)
        return result

    for raw_line in content.splitlines():
        line = raw_line.strip()

        # Skip empty lines and comments
        if not line or line.startswith("#"):
            continue

        if "=" not in line:
            continue

        key, val = line.split("=", 1)
        key = key.strip()
        val = val.strip().strip('"').strip("'")

        if key:
            result[key] = val

    return result


class TimetableSettings(BaseModel):
    """Runtime settings for the timetable engine."""

    database_path: Path = Field(default=Path("timetable.db"), description="SQLite database file")
    cache_ttl_seconds: float = Field(default=300.0, gt=0, description="Window cache TTL")
    cache_max_entries: int = Field(default=64, ge=1, description="Maximum cached windows")
    prefetch_enabled: bool = Field(default=True, description="Prefetch adjacent weeks after a miss")
    holiday_timeout_seconds: float = Field(
        default=3.0, gt=0, description="Bounded wait for the holiday provider"
    )
    log_level: str | None = Field(default=None, description="Root log level override")
    debug: bool = False


class ConfigManager:
    """Manages timetable configuration from environment variables and .env files."""

    def __init__(self, env_file_path: Path | None = None):
        """Initialize configuration manager.

        Args:
            env_file_path: Optional path to .env file (defaults to .env in current directory)
        """
        self.env_file_path = env_file_path or Path.cwd() / ".env"

    def load_env_file(self) -> list[str]:
        """Load .env file and set environment variables.

        Only sets variables that are not already in the environment to avoid
        surprising overrides of user's environment.

        Returns:
            List of environment variable keys that were loaded from .env file
        """
        if not self.env_file_path.exists():
            logger.debug("No .env file found at %s", self.env_file_path)
            return []

        parsed = parse_env_file(self.env_file_path)

        set_keys = []
        for key, val in parsed.items():
            if key not in os.environ:
                os.environ[key] = val
                set_keys.append(key)

        if set_keys:
            logger.debug("Loaded .env defaults for keys: %s", ", ".join(set_keys))

        return set_keys

    def build_settings_from_env(self) -> TimetableSettings:
        """Build settings from environment variables.

        Recognizes:
        - TIMETABLE_DATABASE_PATH -> 'database_path'
        - TIMETABLE_CACHE_TTL_SECONDS -> 'cache_ttl_seconds' (float > 0)
        - TIMETABLE_CACHE_MAX_ENTRIES -> 'cache_max_entries' (int >= 1)
        - TIMETABLE_PREFETCH_ENABLED -> 'prefetch_enabled' (bool)
        - TIMETABLE_HOLIDAY_TIMEOUT_SECONDS -> 'holiday_timeout_seconds' (float > 0)
        - TIMETABLE_LOG_LEVEL -> 'log_level'
        - TIMETABLE_DEBUG -> 'debug' (bool)

        Invalid values are logged and ignored, keeping the defaults.

        Returns:
            TimetableSettings instance
        """
        cfg: dict[str, object] = {}

        db_path = os.environ.get("TIMETABLE_DATABASE_PATH")
        if db_path:
            cfg["database_path"] = Path(db_path).expanduser()

        ttl = os.environ.get("TIMETABLE_CACHE_TTL_SECONDS")
        if ttl:
            try:
                value = float(ttl)
                if value <= 0:
                    raise ValueError(ttl)
                cfg["cache_ttl_seconds"] = value
            except ValueError:
                logger.warning("Invalid TIMETABLE_CACHE_TTL_SECONDS=%r; ignoring", ttl)

        max_entries = os.environ.get("TIMETABLE_CACHE_MAX_ENTRIES")
        if max_entries:
            try:
                value = int(max_entries)
                if value < 1:
                    raise ValueError(max_entries)
                cfg["cache_max_entries"] = value
            except ValueError:
                logger.warning("Invalid TIMETABLE_CACHE_MAX_ENTRIES=%r; ignoring", max_entries)

        prefetch = os.environ.get("TIMETABLE_PREFETCH_ENABLED")
        if prefetch:
            flag = prefetch.strip().lower()
            if flag in TRUTHY_VALUES:
                cfg["prefetch_enabled"] = True
            elif flag in FALSY_VALUES:
                cfg["prefetch_enabled"] = False
            else:
                logger.warning("Invalid TIMETABLE_PREFETCH_ENABLED=%r; ignoring", prefetch)

        holiday_timeout = os.environ.get("TIMETABLE_HOLIDAY_TIMEOUT_SECONDS")
        if holiday_timeout:
            try:
                value = float(holiday_timeout)
                if value <= 0:
                    raise ValueError(holiday_timeout)
                cfg["holiday_timeout_seconds"] = value
            except ValueError:
                logger.warning(
                    "Invalid TIMETABLE_HOLIDAY_TIMEOUT_SECONDS=%r; ignoring", holiday_timeout
                )

        log_level = os.environ.get("TIMETABLE_LOG_LEVEL", "").strip().upper()
        if log_level:
            if log_level in ("DEBUG", "INFO", "WARNING", "ERROR"):
                cfg["log_level"] = log_level
            else:
                logger.warning("Invalid TIMETABLE_LOG_LEVEL=%r; ignoring", log_level)

        cfg["debug"] = os.environ.get("TIMETABLE_DEBUG", "").strip().lower() in TRUTHY_VALUES

        return TimetableSettings(**cfg)

    def load_settings(self) -> TimetableSettings:
        """Load .env file and build settings from environment.

        This is the main entry point for loading configuration.
        """
        self.load_env_file()
        return self.build_settings_from_env()
