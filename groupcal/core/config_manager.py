"""Configuration management for groupcal."""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Optional
from zoneinfo import ZoneInfoNotFoundError

from pydantic import BaseModel, Field, field_validator

from .date_keys import DEFAULT_TIMEZONE, get_zone

logger = logging.getLogger(__name__)

DEFAULT_CALENDAR_ID = "oakschurch.org_fuaufb5j000u9ib6as6d6smt0c@group.calendar.google.com"


def parse_env_file(path: Path) -> dict[str, str]:
    """Parse a .env file and return key-value pairs.

    Args:
        path: Path to .env file

    Returns:
        Dictionary of key-value pairs. Empty dict if the file doesn't exist
        or cannot be read.

    Note:
        - Skips empty lines and comments (lines starting with #)
        - Strips quotes (both single and double) from values
    """
    if not path.exists():
        return {}

    result: dict[str, str] = {}
    try:
        content = path.read_text(encoding="utf-8")
    except OSError:
        logger.debug("Failed to read .env file (continuing): %s", str(path), exc_info=True)
        return {}

    for raw_line in content.splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, val = line.split("=", 1)
        key = key.strip()
        if key.startswith("export "):
            key = key[len("export ") :].strip()
        val = val.strip().strip('"').strip("'")
        if key:
            result[key] = val

    return result


class FeedSettings(BaseModel):
    """Settings for the calendar window service and its HTTP surface."""

    calendar_id: str = Field(default=DEFAULT_CALENDAR_ID, description="Calendar ID or feed URL")
    timezone: str = Field(default=DEFAULT_TIMEZONE, description="Zone for all date keys")
    window_past_days: int = Field(default=0, ge=0)
    window_future_days: int = Field(default=14, ge=0)
    cache_ttl_seconds: float = Field(default=30.0, gt=0)
    cache_max_entries: int = Field(default=128, ge=1)
    boundary_buffer_days: int = Field(default=1, ge=0)

    # HTTP fetcher
    request_timeout: float = Field(default=10.0, gt=0)
    max_retries: int = Field(default=1, ge=0)
    retry_backoff_factor: float = Field(default=0.5, ge=0)
    fetch_deadline_seconds: float = Field(default=30.0, gt=0)

    # RRULE expansion
    max_occurrences_per_rule: int = Field(default=500, ge=1)

    # Server
    server_bind: str = "0.0.0.0"  # nosec B104 - default bind for dev; override via env
    server_port: int = 8080
    debug_logging: bool = False

    @field_validator("calendar_id")
    @classmethod
    def _strip_calendar_id(cls, value: str) -> str:
        value = value.strip()
        return value or DEFAULT_CALENDAR_ID

    @field_validator("timezone")
    @classmethod
    def _known_timezone(cls, value: str) -> str:
        try:
            get_zone(value)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone: {value}") from e
        return value


# (environment variable, setting name, converter)
_ENV_SETTINGS: list[tuple[str, str, Any]] = [
    ("GROUPCAL_TIMEZONE", "timezone", str),
    ("GROUPCAL_WINDOW_PAST_DAYS", "window_past_days", int),
    ("GROUPCAL_WINDOW_FUTURE_DAYS", "window_future_days", int),
    ("GROUPCAL_CACHE_TTL_SECONDS", "cache_ttl_seconds", float),
    ("GROUPCAL_CACHE_MAX_ENTRIES", "cache_max_entries", int),
    ("GROUPCAL_BOUNDARY_BUFFER_DAYS", "boundary_buffer_days", int),
    ("GROUPCAL_REQUEST_TIMEOUT", "request_timeout", float),
    ("GROUPCAL_MAX_RETRIES", "max_retries", int),
    ("GROUPCAL_RETRY_BACKOFF_FACTOR", "retry_backoff_factor", float),
    ("GROUPCAL_FETCH_DEADLINE_SECONDS", "fetch_deadline_seconds", float),
    ("GROUPCAL_MAX_OCCURRENCES_PER_RULE", "max_occurrences_per_rule", int),
    ("GROUPCAL_WEB_HOST", "server_bind", str),
    ("GROUPCAL_WEB_PORT", "server_port", int),
]

_TRUTHY = ("1", "true", "yes", "on")


def _env_value(env: Mapping[str, str], name: str) -> Optional[str]:
    value = env.get(name)
    if value is None or not value.strip():
        return None
    return value.strip()


class ConfigManager:
    """Builds FeedSettings from environment variables and an optional .env file."""

    def __init__(self, env_file_path: Path | None = None):
        """Initialize configuration manager.

        Args:
            env_file_path: Optional path to .env file (defaults to .env in current directory)
        """
        self.env_file_path = env_file_path or Path.cwd() / ".env"

    def load_env_file(self) -> list[str]:
        """Load .env file into the process environment.

        Only sets variables that are not already present.

        Returns:
            Keys that were loaded from the file
        """
        parsed = parse_env_file(self.env_file_path)
        set_keys = []
        for key, val in parsed.items():
            if key not in os.environ:
                os.environ[key] = val
                set_keys.append(key)
        if set_keys:
            logger.debug("Loaded .env defaults for keys: %s", ", ".join(set_keys))
        return set_keys

    def build_config_from_env(self, env: Mapping[str, str] | None = None) -> dict[str, Any]:
        """Build a settings dictionary from environment variables.

        Blank values are treated as unset; unparsable values are logged and
        ignored so the default applies.
        """
        env = os.environ if env is None else env
        cfg: dict[str, Any] = {}

        calendar_id = _env_value(env, "GOOGLE_EVENTS_CALENDAR_ID") or _env_value(
            env, "GOOGLE_CALENDAR_ID"
        )
        if calendar_id:
            cfg["calendar_id"] = calendar_id

        for env_name, key, convert in _ENV_SETTINGS:
            raw = _env_value(env, env_name)
            if raw is None:
                continue
            try:
                cfg[key] = convert(raw)
            except ValueError:
                logger.warning("Invalid %s=%r; ignoring", env_name, raw)

        debug = _env_value(env, "GROUPCAL_DEBUG")
        if debug is not None:
            cfg["debug_logging"] = debug.lower() in _TRUTHY

        return cfg

    def load_settings(self, overrides: Mapping[str, Any] | None = None) -> FeedSettings:
        """Load .env defaults, read the environment and build FeedSettings.

        Values that fail validation (unknown zone, negative TTL) are logged
        and dropped, so this never raises for bad configuration.
        """
        self.load_env_file()
        cfg = self.build_config_from_env()
        if overrides:
            cfg.update({k: v for k, v in overrides.items() if v is not None})

        defaults = FeedSettings()
        for key in list(cfg):
            try:
                FeedSettings(**{key: cfg[key]})
            except ValueError as e:
                logger.warning(
                    "Invalid setting %s=%r; using default %r (%s)",
                    key,
                    cfg[key],
                    getattr(defaults, key),
                    e,
                )
                del cfg[key]
        return FeedSettings(**cfg)
