"""Unit tests for groupcal.core.config_manager."""

import os
from pathlib import Path
from typing import Any

import pytest
from pydantic import ValidationError

from groupcal.core.config_manager import (
    DEFAULT_CALENDAR_ID,
    ConfigManager,
    FeedSettings,
    parse_env_file,
)

pytestmark = [pytest.mark.unit, pytest.mark.fast]

_MANAGED_PREFIXES = ("GROUPCAL_", "GOOGLE_")


@pytest.fixture(autouse=True)
def clean_config_environment(monkeypatch: Any) -> None:
    """Remove groupcal-related variables so the host environment cannot leak in."""
    for key in list(os.environ):
        if key.startswith(_MANAGED_PREFIXES):
            monkeypatch.delenv(key, raising=False)


class TestParseEnvFile:
    """Tests for .env parsing."""

    def test_parse_env_file_when_missing_then_empty(self, tmp_path: Path) -> None:
        assert parse_env_file(tmp_path / ".env") == {}

    def test_parse_env_file_when_comments_quotes_and_export_then_parsed(
        self, tmp_path: Path
    ) -> None:
        env_file = tmp_path / ".env"
        env_file.write_text(
            "# comment\n"
            "\n"
            'GOOGLE_CALENDAR_ID="team@group.calendar.google.com"\n'
            "export GROUPCAL_WEB_PORT=9000\n"
            "GROUPCAL_TIMEZONE='UTC'\n"
            "not a setting\n",
            encoding="utf-8",
        )

        assert parse_env_file(env_file) == {
            "GOOGLE_CALENDAR_ID": "team@group.calendar.google.com",
            "GROUPCAL_WEB_PORT": "9000",
            "GROUPCAL_TIMEZONE": "UTC",
        }


class TestBuildConfigFromEnv:
    """Tests for environment variable mapping."""

    def test_build_config_when_events_calendar_id_then_preferred(self) -> None:
        cfg = ConfigManager().build_config_from_env(
            {"GOOGLE_EVENTS_CALENDAR_ID": "events@x", "GOOGLE_CALENDAR_ID": "general@x"}
        )

        assert cfg["calendar_id"] == "events@x"

    def test_build_config_when_events_calendar_id_blank_then_falls_back(self) -> None:
        cfg = ConfigManager().build_config_from_env(
            {"GOOGLE_EVENTS_CALENDAR_ID": "   ", "GOOGLE_CALENDAR_ID": "general@x"}
        )

        assert cfg["calendar_id"] == "general@x"

    def test_build_config_when_numeric_values_then_converted(self) -> None:
        cfg = ConfigManager().build_config_from_env(
            {
                "GROUPCAL_WINDOW_FUTURE_DAYS": "21",
                "GROUPCAL_CACHE_TTL_SECONDS": "12.5",
                "GROUPCAL_FETCH_DEADLINE_SECONDS": "45",
                "GROUPCAL_DEBUG": "yes",
            }
        )

        assert cfg == {
            "window_future_days": 21,
            "cache_ttl_seconds": 12.5,
            "fetch_deadline_seconds": 45.0,
            "debug_logging": True,
        }

    def test_build_config_when_invalid_number_then_ignored(
        self, caplog: pytest.LogCaptureFixture
    ) -> None:
        cfg = ConfigManager().build_config_from_env({"GROUPCAL_WEB_PORT": "eighty"})

        assert "server_port" not in cfg
        assert "Invalid GROUPCAL_WEB_PORT" in caplog.text


class TestLoadSettings:
    """Tests for the full .env + environment + overrides pipeline."""

    def test_load_settings_when_nothing_configured_then_defaults(self, tmp_path: Path) -> None:
        settings = ConfigManager(tmp_path / ".env").load_settings()

        assert settings.calendar_id == DEFAULT_CALENDAR_ID
        assert settings.timezone == "America/Indiana/Indianapolis"
        assert settings.window_past_days == 0
        assert settings.window_future_days == 14
        assert settings.cache_ttl_seconds == 30.0
        assert settings.boundary_buffer_days == 1
        assert settings.server_port == 8080

    def test_load_settings_when_env_file_then_values_applied(
        self, tmp_path: Path, monkeypatch: Any
    ) -> None:
        env_file = tmp_path / ".env"
        env_file.write_text("GROUPCAL_WINDOW_FUTURE_DAYS=7\n", encoding="utf-8")
        # Registers the variable with monkeypatch so teardown removes it again
        monkeypatch.setenv("GROUPCAL_WINDOW_FUTURE_DAYS", "placeholder")
        monkeypatch.delenv("GROUPCAL_WINDOW_FUTURE_DAYS")

        settings = ConfigManager(env_file).load_settings()

        assert settings.window_future_days == 7

    def test_load_settings_when_env_already_set_then_env_file_does_not_override(
        self, tmp_path: Path, monkeypatch: Any
    ) -> None:
        env_file = tmp_path / ".env"
        env_file.write_text("GROUPCAL_WEB_PORT=9000\n", encoding="utf-8")
        monkeypatch.setenv("GROUPCAL_WEB_PORT", "9100")

        manager = ConfigManager(env_file)

        assert manager.load_env_file() == []
        assert manager.load_settings().server_port == 9100

    def test_load_settings_when_invalid_values_then_defaults_kept(
        self, tmp_path: Path, monkeypatch: Any, caplog: pytest.LogCaptureFixture
    ) -> None:
        monkeypatch.setenv("GROUPCAL_TIMEZONE", "Mars/Olympus_Mons")
        monkeypatch.setenv("GROUPCAL_CACHE_TTL_SECONDS", "-5")
        monkeypatch.setenv("GROUPCAL_WINDOW_FUTURE_DAYS", "10")

        settings = ConfigManager(tmp_path / ".env").load_settings()

        assert settings.timezone == "America/Indiana/Indianapolis"
        assert settings.cache_ttl_seconds == 30.0
        assert settings.window_future_days == 10
        assert "Invalid setting timezone" in caplog.text

    def test_load_settings_when_overrides_then_applied_over_env(
        self, tmp_path: Path, monkeypatch: Any
    ) -> None:
        monkeypatch.setenv("GROUPCAL_WEB_PORT", "9100")

        settings = ConfigManager(tmp_path / ".env").load_settings(
            {"server_port": 3000, "debug_logging": True, "timezone": None}
        )

        assert settings.server_port == 3000
        assert settings.debug_logging is True


class TestFeedSettings:
    """Tests for FeedSettings validation."""

    def test_feed_settings_when_blank_calendar_id_then_default(self) -> None:
        assert FeedSettings(calendar_id="  ").calendar_id == DEFAULT_CALENDAR_ID

    def test_feed_settings_when_unknown_timezone_then_validation_error(self) -> None:
        with pytest.raises(ValidationError):
            FeedSettings(timezone="Not/A_Zone")

    def test_feed_settings_when_negative_window_then_validation_error(self) -> None:
        with pytest.raises(ValidationError):
            FeedSettings(window_future_days=-1)

    def test_feed_settings_when_zero_fetch_deadline_then_validation_error(self) -> None:
        with pytest.raises(ValidationError):
            FeedSettings(fetch_deadline_seconds=0)
