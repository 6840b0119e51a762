from pathlib import Path

import pytest
from pydantic import ValidationError

from transaction_capture.config import (
    Environment,
    LogLevel,
    Settings,
    default_queue_path,
    get_settings,
    resolve_local_timezone,
)


class TestSettings:
    def test_defaults(self):
        settings = Settings()

        assert settings.environment == Environment.DEVELOPMENT
        assert settings.log_level == LogLevel.INFO
        assert settings.log_format == "console"
        assert settings.queue_path == default_queue_path()
        assert settings.remote_timeout_seconds == 10.0
        assert settings.drain_interval_seconds == 30.0
        assert settings.stats_time_window == "30d"
        assert settings.assume_online is True

    def test_environment_variables(self, monkeypatch, tmp_path):
        monkeypatch.setenv("TXC_QUEUE_PATH", str(tmp_path / "queue.db"))
        monkeypatch.setenv("TXC_REMOTE_BASE_URL", "https://api.example.com")
        monkeypatch.setenv("TXC_DRAIN_INTERVAL_SECONDS", "5")
        monkeypatch.setenv("TXC_LOG_LEVEL", "DEBUG")

        settings = Settings()

        assert settings.queue_path == tmp_path / "queue.db"
        assert settings.remote_base_url == "https://api.example.com"
        assert settings.drain_interval_seconds == 5.0
        assert settings.log_level == LogLevel.DEBUG

    def test_production_defaults_to_json_logs(self, monkeypatch):
        monkeypatch.setenv("TXC_ENVIRONMENT", "production")

        settings = Settings()

        assert settings.log_format == "json"
        assert settings.is_production

    def test_explicit_log_format_wins(self, monkeypatch):
        monkeypatch.setenv("TXC_ENVIRONMENT", "production")
        monkeypatch.setenv("TXC_LOG_FORMAT", "console")

        assert Settings().log_format == "console"

    def test_rejects_unknown_timezone(self):
        with pytest.raises(ValidationError):
            Settings(timezone="Mars/Olympus_Mons")

    def test_explicit_timezone_is_effective(self):
        assert Settings(timezone="UTC").effective_timezone == "UTC"

    def test_rejects_non_positive_interval(self):
        with pytest.raises(ValidationError):
            Settings(drain_interval_seconds=0)

    def test_stats_url_falls_back_to_remote(self):
        settings = Settings(remote_base_url="https://api.example.com")

        assert settings.effective_stats_base_url == "https://api.example.com"
        assert (
            Settings(stats_base_url="https://stats.example.com").effective_stats_base_url
            == "https://stats.example.com"
        )

    def test_get_settings_is_cached(self):
        assert get_settings() is get_settings()


class TestResolveLocalTimezone:
    def test_uses_tz_variable(self, monkeypatch):
        monkeypatch.setenv("TZ", "UTC")

        assert resolve_local_timezone() == "UTC"

    def test_ignores_unknown_tz_variable(self, monkeypatch):
        monkeypatch.setenv("TZ", "Nowhere/Special")

        assert resolve_local_timezone() != "Nowhere/Special"

    def test_default_queue_path_is_under_home(self):
        assert default_queue_path().parent == Path.home() / ".transaction_capture"
