"""Configuration management service with Pydantic Settings.

This module provides centralized configuration management for the
Pioneer Tracker application, loading and validating environment
variables at startup.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Literal

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_ENV_FILE = ".env"
_ENV_FILE_ENCODING = "utf-8"


class DatabaseSettings(BaseSettings):
    """Database connection settings."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    url: str = Field(
        default="sqlite+aiosqlite:///./pioneer_tracker.db",
        alias="DATABASE_URL",
        description="PostgreSQL or SQLite connection string",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate database URL format."""
        if not v.startswith(("postgresql://", "postgresql+asyncpg://", "sqlite+aiosqlite://")):
            raise ValueError("DATABASE_URL must be a PostgreSQL or sqlite+aiosqlite connection string")
        return v


class RedisSettings(BaseSettings):
    """Redis connection settings."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    url: str | None = Field(
        default=None,
        alias="REDIS_URL",
        description="Redis connection string used for signal de-duplication",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str | None) -> str | None:
        """Validate Redis URL format."""
        if v is None:
            return v
        if not v.startswith(("redis://", "rediss://")):
            raise ValueError("REDIS_URL must start with redis:// or rediss://")
        return v


class ChainSettings(BaseSettings):
    """EVM chain RPC settings."""

    model_config = SettingsConfigDict(env_prefix="CHAIN_", extra="ignore")

    rpc_url: str = Field(
        default="https://ethereum-rpc.publicnode.com",
        alias="CHAIN_RPC_URL",
        description="Primary JSON-RPC endpoint",
    )
    fallback_rpc_url: str | None = Field(
        default=None,
        alias="CHAIN_FALLBACK_RPC_URL",
        description="Fallback JSON-RPC endpoint",
    )
    chain_id: int = Field(
        default=1,
        alias="CHAIN_ID",
        ge=1,
        description="Chain ID recorded on signals and chain activity",
    )
    poll_interval_seconds: float = Field(
        default=4.0,
        alias="CHAIN_POLL_INTERVAL_SECONDS",
        ge=0.5,
        le=300.0,
        description="How often the watcher polls for new blocks",
    )
    explorer_url: str = Field(
        default="https://etherscan.io",
        alias="CHAIN_EXPLORER_URL",
        description="Block explorer base URL used in notification links",
    )

    @field_validator("rpc_url", "fallback_rpc_url", "explorer_url")
    @classmethod
    def validate_url(cls, v: str | None) -> str | None:
        """Validate RPC URL format."""
        if v is None:
            return v
        if not v.startswith(("http://", "https://")):
            raise ValueError("URL must be an HTTP(S) endpoint")
        return v.rstrip("/")


class MatcherSettings(BaseSettings):
    """Sliding-window pattern matcher configuration."""

    model_config = SettingsConfigDict(env_prefix="MATCHER_", extra="ignore")

    window_hours: float = Field(
        default=24.0,
        alias="MATCHER_WINDOW_HOURS",
        gt=0.0,
        le=24.0 * 30,
        description="Trailing window of per-wallet history kept for pattern matching",
    )


class AggregatorSettings(BaseSettings):
    """Pioneer metrics aggregation thresholds."""

    model_config = SettingsConfigDict(env_prefix="AGGREGATOR_", extra="ignore")

    early_adoption_days: int = Field(
        default=7,
        alias="AGGREGATOR_EARLY_ADOPTION_DAYS",
        ge=1,
        le=365,
        description="Discoveries newer than this are not counted as proven early adoptions",
    )
    min_success_rate: float = Field(
        default=0.65,
        alias="AGGREGATOR_MIN_SUCCESS_RATE",
        ge=0.0,
        le=1.0,
        description="Score threshold for success-rate style categories",
    )
    yield_outperform_threshold: float = Field(
        default=0.15,
        alias="AGGREGATOR_YIELD_OUTPERFORM_THRESHOLD",
        description="Average ROI threshold for the Yield_Opportunist category",
    )
    history_limit: int = Field(
        default=500,
        alias="AGGREGATOR_HISTORY_LIMIT",
        ge=1,
        le=100_000,
        description="Most recent entries kept per pioneer history list",
    )


class SignalSettings(BaseSettings):
    """Signal emission settings."""

    model_config = SettingsConfigDict(env_prefix="SIGNAL_", extra="ignore")

    notify_min_confidence: float = Field(
        default=0.8,
        alias="SIGNAL_NOTIFY_MIN_CONFIDENCE",
        ge=0.0,
        le=1.0,
        description="Minimum pattern confidence for pioneer signals to be pushed",
    )
    dedup_window_seconds: int = Field(
        default=24 * 3600,
        alias="SIGNAL_DEDUP_WINDOW_SECONDS",
        ge=60,
        le=30 * 24 * 3600,
        description="Redis TTL for signal de-duplication keys",
    )


class IOSettings(BaseSettings):
    """Timeouts and retries at the I/O boundary."""

    model_config = SettingsConfigDict(env_prefix="IO_", extra="ignore")

    timeout_seconds: float = Field(
        default=5.0,
        alias="IO_TIMEOUT_SECONDS",
        gt=0.0,
        le=120.0,
        description="Timeout applied to every persistence and dispatch call",
    )
    max_retries: int = Field(
        default=3,
        alias="IO_MAX_RETRIES",
        ge=1,
        le=3,
        description="Attempts for transient persistence failures",
    )
    retry_delay_seconds: float = Field(
        default=0.25,
        alias="IO_RETRY_DELAY_SECONDS",
        ge=0.0,
        le=10.0,
        description="Initial backoff between attempts (doubles each retry)",
    )
    lock_timeout_seconds: float = Field(
        default=10.0,
        alias="IO_LOCK_TIMEOUT_SECONDS",
        gt=0.0,
        le=300.0,
        description="Maximum wait for a per-wallet or per-protocol lock",
    )


class TelegramSettings(BaseSettings):
    """Telegram notification settings."""

    model_config = SettingsConfigDict(env_prefix="TELEGRAM_", extra="ignore")

    bot_token: SecretStr | None = Field(
        default=None,
        alias="TELEGRAM_BOT_TOKEN",
        description="Telegram bot token",
    )
    chat_id: str | None = Field(
        default=None,
        alias="TELEGRAM_CHAT_ID",
        description="Telegram chat ID for alerts",
    )

    @property
    def enabled(self) -> bool:
        """Check if Telegram notifications are enabled."""
        return self.bot_token is not None and self.chat_id is not None


class Settings(BaseSettings):
    """Main application settings.

    Loads configuration from environment variables with support for
    .env files via python-dotenv.

    Example:
        ```python
        from pioneer_tracker.config import get_settings

        settings = get_settings()
        print(settings.database.url)
        print(settings.log_level)
        ```
    """

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE,
        env_file_encoding=_ENV_FILE_ENCODING,
        extra="ignore",
    )

    # Each nested BaseSettings must be given the same env_file, otherwise it
    # will only read from the process environment.
    database: DatabaseSettings = Field(
        default_factory=lambda: DatabaseSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    redis: RedisSettings = Field(
        default_factory=lambda: RedisSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    chain: ChainSettings = Field(
        default_factory=lambda: ChainSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    matcher: MatcherSettings = Field(
        default_factory=lambda: MatcherSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    aggregator: AggregatorSettings = Field(
        default_factory=lambda: AggregatorSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    signal: SignalSettings = Field(
        default_factory=lambda: SignalSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    io: IOSettings = Field(
        default_factory=lambda: IOSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    telegram: TelegramSettings = Field(
        default_factory=lambda: TelegramSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )

    # Application settings
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        alias="LOG_LEVEL",
        description="Logging level",
    )
    dry_run: bool = Field(
        default=False,
        alias="DRY_RUN",
        description="Run without dispatching notifications",
    )

    def get_logging_level(self) -> int:
        """Get the numeric logging level."""
        level: int = getattr(logging, self.log_level)
        return level

    def redacted_summary(self) -> dict[str, str | dict[str, str]]:
        """Get a summary of settings with secrets redacted.

        Returns:
            Dictionary of settings with sensitive values masked.
        """
        return {
            "database_url": self._redact_url(self.database.url),
            "redis_url": self._redact_url(self.redis.url) if self.redis.url else "(not set)",
            "chain": {
                "rpc_url": self.chain.rpc_url,
                "fallback_rpc_url": self.chain.fallback_rpc_url or "(not set)",
                "chain_id": str(self.chain.chain_id),
                "poll_interval_seconds": str(self.chain.poll_interval_seconds),
            },
            "matcher": {
                "window_hours": str(self.matcher.window_hours),
            },
            "aggregator": {
                "early_adoption_days": str(self.aggregator.early_adoption_days),
                "min_success_rate": str(self.aggregator.min_success_rate),
                "yield_outperform_threshold": str(self.aggregator.yield_outperform_threshold),
                "history_limit": str(self.aggregator.history_limit),
            },
            "signal": {
                "notify_min_confidence": str(self.signal.notify_min_confidence),
            },
            "io": {
                "timeout_seconds": str(self.io.timeout_seconds),
                "max_retries": str(self.io.max_retries),
                "lock_timeout_seconds": str(self.io.lock_timeout_seconds),
            },
            "telegram_enabled": str(self.telegram.enabled),
            "log_level": self.log_level,
            "dry_run": str(self.dry_run),
        }

    @staticmethod
    def _redact_url(url: str) -> str:
        """Redact password from URL if present."""
        if "@" in url and "://" in url:
            protocol_end = url.index("://") + 3
            at_pos = url.index("@")
            creds_part = url[protocol_end:at_pos]
            if ":" in creds_part:
                username = creds_part.split(":")[0]
                return f"{url[:protocol_end]}{username}:***@{url[at_pos + 1 :]}"
        return url


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get the application settings singleton.

    Uses LRU cache to ensure settings are loaded only once and
    reused across the application.

    Returns:
        The Settings instance.

    Raises:
        ValidationError: If environment variables have invalid values.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache.

    Useful for testing when you need to reload settings with
    different environment variables.
    """
    get_settings.cache_clear()
