"""Configuration management service with Pydantic Settings.

This module provides centralized configuration management for the
OctaneShift monitor, loading and validating environment variables at
startup.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from functools import lru_cache
from typing import Literal

from pydantic import BaseModel, Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from octaneshift_monitor.chains import Chain

logger = logging.getLogger(__name__)


class RedisSettings(BaseSettings):
    """Redis connection settings."""

    model_config = SettingsConfigDict(env_prefix="")

    url: str = Field(
        default="redis://localhost:6379",
        alias="REDIS_URL",
        description="Redis connection string",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate Redis URL format."""
        if not v.startswith(("redis://", "rediss://")):
            raise ValueError("REDIS_URL must start with redis:// or rediss://")
        return v


class ChainSettings(BaseSettings):
    """Per-chain JSON-RPC endpoints."""

    model_config = SettingsConfigDict(env_prefix="")

    rpc_urls: dict[str, str] = Field(
        default_factory=dict,
        alias="PROVIDER_RPC_URLS_JSON",
        description="JSON object mapping chain alias to RPC URL",
    )
    fallback_rpc_urls: dict[str, str] = Field(
        default_factory=dict,
        alias="FALLBACK_RPC_URLS_JSON",
        description="JSON object mapping chain alias to fallback RPC URL",
    )

    @field_validator("rpc_urls", "fallback_rpc_urls")
    @classmethod
    def validate_rpc_urls(cls, v: dict[str, str]) -> dict[str, str]:
        """Validate chain aliases and RPC URL formats."""
        known = {c.value for c in Chain}
        for alias, url in v.items():
            if alias not in known:
                raise ValueError(f"Unknown chain alias in RPC config: {alias}")
            if not url.startswith(("http://", "https://")):
                raise ValueError("RPC URL must be an HTTP(S) endpoint")
        return v


class DiscordSettings(BaseSettings):
    """Discord notification settings."""

    model_config = SettingsConfigDict(env_prefix="DISCORD_")

    webhook_url: SecretStr | None = Field(
        default=None,
        alias="DISCORD_WEBHOOK_URL",
        description="Discord webhook URL for alerts",
    )

    @property
    def enabled(self) -> bool:
        """Check if Discord notifications are enabled."""
        return self.webhook_url is not None


class TelegramSettings(BaseSettings):
    """Telegram notification settings."""

    model_config = SettingsConfigDict(env_prefix="TELEGRAM_")

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


class FrontendSettings(BaseSettings):
    """Deep link destination settings."""

    model_config = SettingsConfigDict(env_prefix="")

    origin: str = Field(
        default="http://localhost:5173",
        alias="FRONTEND_ORIGIN",
        description="Origin of the frontend that consumes deep links",
    )
    signing_secret: SecretStr | None = Field(
        default=None,
        alias="DEEPLINK_SIGNING_SECRET",
        description="Optional HMAC secret for signing deep links",
    )

    @field_validator("origin")
    @classmethod
    def validate_origin(cls, v: str) -> str:
        """Validate frontend origin format."""
        if not v.startswith(("http://", "https://")):
            raise ValueError("FRONTEND_ORIGIN must be an HTTP(S) origin")
        return v.rstrip("/")


class ThresholdPolicyConfig(BaseModel):
    """Threshold policy for one chain, as read from configuration."""

    min_balance: Decimal = Field(ge=0)
    suggested_top_up: Decimal = Field(gt=0)


class MonitorSettings(BaseSettings):
    """Watchlist scheduler settings."""

    model_config = SettingsConfigDict(env_prefix="MONITOR_")

    poll_interval_seconds: float = Field(
        default=60.0,
        alias="MONITOR_POLL_INTERVAL_SECONDS",
        description="Seconds between watchlist passes",
        gt=0,
    )
    cooldown_seconds: float = Field(
        default=3600.0,
        alias="MONITOR_COOLDOWN_SECONDS",
        description="Minimum seconds between alerts for one entry",
        gt=0,
    )
    read_timeout_seconds: float = Field(
        default=10.0,
        alias="MONITOR_READ_TIMEOUT_SECONDS",
        description="Timeout for a single balance read",
        gt=0,
    )
    pass_deadline_seconds: float = Field(
        default=45.0,
        alias="MONITOR_PASS_DEADLINE_SECONDS",
        description="Deadline for a whole pass before entries are deferred",
        gt=0,
    )
    max_concurrency: int = Field(
        default=10,
        alias="MONITOR_MAX_CONCURRENCY",
        description="Maximum entries evaluated concurrently",
        ge=1,
    )
    retention_days: int = Field(
        default=7,
        alias="MONITOR_RETENTION_DAYS",
        description="Days an alert state is kept in Redis without activity",
        ge=1,
    )
    history_retention_days: int = Field(
        default=30,
        alias="MONITOR_HISTORY_RETENTION_DAYS",
        description="Days dispatched alerts are kept in the alert history",
        ge=1,
    )
    include_qr: bool = Field(
        default=False,
        alias="MONITOR_INCLUDE_QR",
        description="Attach a QR code of the top-up link to Telegram and Discord alerts",
    )
    thresholds: dict[str, ThresholdPolicyConfig] | None = Field(
        default=None,
        alias="MONITOR_THRESHOLDS_JSON",
        description="JSON object mapping chain alias to threshold policy",
    )
    watchlist_file: str | None = Field(
        default=None,
        alias="MONITOR_WATCHLIST_FILE",
        description="JSON file of watch entries, loaded at startup and rewritten on API changes",
    )

    @field_validator("thresholds")
    @classmethod
    def validate_threshold_chains(
        cls, v: dict[str, ThresholdPolicyConfig] | None
    ) -> dict[str, ThresholdPolicyConfig] | None:
        """Validate chain aliases in the threshold table."""
        if v is None:
            return v
        known = {c.value for c in Chain}
        normalized = {alias.strip().lower(): policy for alias, policy in v.items()}
        for alias in normalized:
            if alias not in known:
                raise ValueError(f"Unknown chain alias in threshold config: {alias}")
        return normalized

    @model_validator(mode="after")
    def warn_on_short_cooldown(self) -> MonitorSettings:
        """Warn when the cool-down would allow a re-alert every pass."""
        if self.cooldown_seconds <= self.poll_interval_seconds:
            logger.warning(
                "Cool-down (%ss) should be greater than the poll interval (%ss)",
                self.cooldown_seconds,
                self.poll_interval_seconds,
            )
        return self


class Settings(BaseSettings):
    """Main application settings.

    Loads configuration from environment variables with support for
    .env files via python-dotenv.

    Example:
        ```python
        from octaneshift_monitor.config import get_settings

        settings = get_settings()
        print(settings.monitor.cooldown_seconds)
        print(settings.log_level)
        ```
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Nested configuration groups
    redis: RedisSettings = Field(default_factory=RedisSettings)
    chains: ChainSettings = Field(default_factory=ChainSettings)
    discord: DiscordSettings = Field(default_factory=DiscordSettings)
    telegram: TelegramSettings = Field(default_factory=TelegramSettings)
    frontend: FrontendSettings = Field(default_factory=FrontendSettings)
    monitor: MonitorSettings = Field(default_factory=MonitorSettings)

    # Application settings
    alert_store: Literal["memory", "redis"] = Field(
        default="memory",
        alias="ALERT_STORE",
        description="Backend for alert state (memory or redis)",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        alias="LOG_LEVEL",
        description="Logging level",
    )
    health_port: int = Field(
        default=8080,
        alias="HEALTH_PORT",
        description="HTTP port for health and API endpoints",
        ge=1,
        le=65535,
    )
    dry_run: bool = Field(
        default=False,
        alias="DRY_RUN",
        description="Log alerts instead of sending them",
    )

    def get_logging_level(self) -> int:
        """Get the numeric logging level."""
        level: int = getattr(logging, self.log_level)
        return level

    def chain_sources(self) -> dict[str, str]:
        """Return whether each chain uses a custom or the public RPC endpoint."""
        return {
            c.value: ("custom" if c.value in self.chains.rpc_urls else "public") for c in Chain
        }

    def redacted_summary(self) -> dict[str, str | dict[str, str]]:
        """Get a summary of settings with secrets redacted.

        Returns:
            Dictionary of settings with sensitive values masked.
        """
        return {
            "redis_url": self._redact_url(self.redis.url),
            "alert_store": self.alert_store,
            "chains": self.chain_sources(),
            "frontend_origin": self.frontend.origin,
            "deeplink_signing": "(set)" if self.frontend.signing_secret else "(not set)",
            "poll_interval_seconds": str(self.monitor.poll_interval_seconds),
            "cooldown_seconds": str(self.monitor.cooldown_seconds),
            "include_qr": str(self.monitor.include_qr),
            "discord_enabled": str(self.discord.enabled),
            "telegram_enabled": str(self.telegram.enabled),
            "log_level": self.log_level,
            "health_port": str(self.health_port),
            "dry_run": str(self.dry_run),
        }

    @staticmethod
    def _redact_url(url: str) -> str:
        """Redact password from URL if present."""
        if "@" in url and "://" in url:
            # URL has credentials - redact the password
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
