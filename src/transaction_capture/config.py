"""Runtime settings for the capture pipeline.

Every field reads from a ``TXC_``-prefixed environment variable (or ``.env``).
The CLI layers its own flags on top with ``Settings.model_copy``.
"""

import os
from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Literal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    """Application environment."""

    DEVELOPMENT = "development"
    TESTING = "testing"
    STAGING = "staging"
    PRODUCTION = "production"


class LogLevel(str, Enum):
    """Log level options."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


def default_queue_path() -> Path:
    """Default location of the local queue database in the user's home."""
    return Path.home() / ".transaction_capture" / "queue.db"


def resolve_local_timezone() -> str:
    """Best-effort IANA name of the host's local zone.

    Checks ``TZ`` first, then the ``/etc/localtime`` symlink, then gives up
    and returns ``UTC``.
    """
    tz_env = os.environ.get("TZ", "").lstrip(":")
    if tz_env:
        try:
            ZoneInfo(tz_env)
            return tz_env
        except (ZoneInfoNotFoundError, ValueError):
            pass

    localtime = Path("/etc/localtime")
    if localtime.is_symlink():
        target = str(localtime.resolve())
        if "zoneinfo/" in target:
            name = target.split("zoneinfo/", 1)[1]
            try:
                ZoneInfo(name)
                return name
            except (ZoneInfoNotFoundError, ValueError):
                pass

    return "UTC"


class Settings(BaseSettings):
    """Queue, remote endpoint, scheduling and logging configuration.

    For example:
        TXC_QUEUE_PATH=/var/lib/txc/queue.db
        TXC_REMOTE_BASE_URL=https://api.example.com
        TXC_LOG_LEVEL=DEBUG
        TXC_TIMEZONE=America/New_York
    """

    model_config = SettingsConfigDict(
        env_prefix="TXC_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "Transaction Capture"
    app_version: str = "0.1.0"
    environment: Environment = Environment.DEVELOPMENT

    # Logging
    log_level: LogLevel = LogLevel.INFO
    log_format: Literal["json", "console"] | None = Field(
        default=None,
        validate_default=True,
        description="Log output format: 'json' for production, 'console' for development",
    )
    log_file: Path | None = Field(default=None, description="Optional log file path")

    # Local durable queue
    queue_path: Path = Field(
        default_factory=default_queue_path,
        description="SQLite file backing the local queue (':memory:' for tests)",
    )

    # Remote store
    remote_base_url: str = Field(
        default="http://localhost:8000",
        description="Base URL of the remote transaction API",
    )
    remote_api_key: str | None = Field(
        default=None, description="Bearer token sent to the remote API"
    )
    remote_timeout_seconds: float = Field(default=10.0, gt=0)

    # Rolling statistics
    stats_base_url: str | None = Field(
        default=None,
        description="Base URL of the statistics API. Defaults to remote_base_url.",
    )
    stats_time_window: str = "30d"

    # Alerts
    alert_webhook_url: str | None = Field(
        default=None,
        description="Webhook receiving fraud/cashflow alerts. Alerts are only logged when unset.",
    )

    # Sync scheduling
    drain_interval_seconds: float = Field(default=30.0, gt=0)

    # Connectivity
    connectivity_probe_url: str | None = None
    connectivity_probe_interval_seconds: float = Field(default=15.0, gt=0)
    assume_online: bool = True

    # Records are annotated with this zone. Resolved from the host when unset.
    timezone: str | None = None

    @field_validator("log_format", mode="after")
    @classmethod
    def set_log_format_from_environment(cls, v: str | None, info) -> str:
        """Production logs are JSON unless a format is set explicitly."""
        if v is None:
            env = info.data.get("environment")
            if env == Environment.PRODUCTION:
                return "json"
        return v or "console"

    @field_validator("timezone", mode="after")
    @classmethod
    def validate_timezone(cls, v: str | None) -> str | None:
        """Reject zone names the tz database does not know."""
        if v is None:
            return v
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"Unknown IANA timezone: {v}") from exc
        return v

    @property
    def effective_timezone(self) -> str:
        """Zone used to annotate newly captured transactions."""
        return self.timezone or resolve_local_timezone()

    @property
    def effective_stats_base_url(self) -> str:
        return self.stats_base_url or self.remote_base_url

    @property
    def is_production(self) -> bool:
        return self.environment == Environment.PRODUCTION


@lru_cache
def get_settings() -> Settings:
    """Process-wide settings, read from the environment on first call.

    Tests call ``get_settings.cache_clear()`` after changing the environment.
    """
    return Settings()
