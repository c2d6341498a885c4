"""
Settings Module for PingMaster

Configuration management using Pydantic Settings.
Supports environment variables, .env files, and runtime configuration.
Each concern (database, monitoring, notifications, webhooks, email,
logging) lives in its own section with its own environment prefix.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Any, List, Optional
from enum import Enum

from pydantic import (
    Field,
    SecretStr,
    field_validator,
    model_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    """Application environment enumeration."""
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"
    TESTING = "testing"


class LogLevel(str, Enum):
    """Logging level enumeration."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class BaseSettingsConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        validate_default=True
    )


class DatabaseSettings(BaseSettingsConfig):
    """
    Database Configuration Settings

    SQLite via aiosqlite for development, PostgreSQL via asyncpg in
    production. Any async SQLAlchemy URL is accepted.
    """

    model_config = SettingsConfigDict(
        env_prefix="DB_",
        env_file=".env",
        extra="ignore"
    )

    url: str = Field(
        default="sqlite+aiosqlite:///data/pingmaster.db",
        description="Async SQLAlchemy database URL"
    )
    echo: bool = Field(
        default=False,
        description="Echo SQL queries (debug mode)"
    )
    pool_size: int = Field(
        default=10,
        ge=1,
        le=100,
        description="Connection pool size (ignored for SQLite)"
    )
    max_overflow: int = Field(
        default=20,
        ge=0,
        le=100,
        description="Maximum overflow connections"
    )
    pool_recycle: int = Field(
        default=1800,
        ge=60,
        le=7200,
        description="Connection recycle time in seconds"
    )

    @property
    def is_sqlite(self) -> bool:
        return self.url.startswith("sqlite")

    @field_validator("url")
    @classmethod
    def validate_async_driver(cls, v: str) -> str:
        """The engine is async-only, so the URL must name an async driver."""
        if v.startswith("sqlite:") or v.startswith("postgresql:"):
            raise ValueError(
                "Database URL must use an async driver "
                "(sqlite+aiosqlite:// or postgresql+asyncpg://)"
            )
        return v


class MonitoringSettings(BaseSettingsConfig):
    """
    Monitoring Engine Configuration Settings

    Controls probe defaults, TLS warning thresholds and scheduler
    shutdown behaviour.
    """

    model_config = SettingsConfigDict(
        env_prefix="MONITOR_",
        env_file=".env",
        extra="ignore"
    )

    max_interval: int = Field(
        default=86400,
        ge=1,
        le=604800,
        description="Maximum allowed check interval in seconds"
    )
    default_timeout: float = Field(
        default=30.0,
        gt=0,
        le=300,
        description="Default probe timeout in seconds"
    )
    user_agent: str = Field(
        default="PingMaster-Monitor/1.0 (+https://pingmaster.app)",
        description="User agent string sent with every probe"
    )
    tls_warning_days: int = Field(
        default=30,
        ge=1,
        le=365,
        description="Warn when a certificate expires in fewer days than this"
    )
    confirm_retry_delay: float = Field(
        default=1.0,
        ge=0,
        le=60,
        description="Delay between confirmation re-probes of a down monitor"
    )
    shutdown_grace: float = Field(
        default=10.0,
        ge=0,
        le=300,
        description="Seconds in-flight probes get to finish on shutdown"
    )


class NotificationSettings(BaseSettingsConfig):
    """
    Notification Dispatcher Settings
    """

    model_config = SettingsConfigDict(
        env_prefix="NOTIFY_",
        env_file=".env",
        extra="ignore"
    )

    throttle_window: float = Field(
        default=900.0,  # 15 minutes
        ge=0,
        le=86400,
        description="Minimum seconds between notifications for the same monitor+state"
    )
    default_channels: List[str] = Field(
        default_factory=lambda: ["push", "webhook"],
        description="Channels enabled for monitors that do not specify any"
    )

    @field_validator("default_channels", mode="before")
    @classmethod
    def parse_channels(cls, v: Any) -> List[str]:
        """Parse channel list from a comma separated string."""
        if isinstance(v, str):
            return [x.strip().lower() for x in v.split(",") if x.strip()]
        return v


class WebhookSettings(BaseSettingsConfig):
    """
    Webhook Delivery Settings

    Retry delay for attempt n is ``base_delay * 2 ** (n - 1) + jitter``,
    capped at ``max_delay``.
    """

    model_config = SettingsConfigDict(
        env_prefix="WEBHOOK_",
        env_file=".env",
        extra="ignore"
    )

    max_attempts: int = Field(
        default=5,
        ge=1,
        le=20,
        description="Attempt ceiling per delivery"
    )
    base_delay: float = Field(
        default=5.0,
        gt=0,
        le=600,
        description="Base retry delay in seconds"
    )
    max_delay: float = Field(
        default=3600.0,
        gt=0,
        le=86400,
        description="Upper bound for a single retry delay in seconds"
    )
    jitter: float = Field(
        default=1.0,
        ge=0,
        le=60,
        description="Maximum random jitter added to each retry delay"
    )
    sweep_interval: float = Field(
        default=60.0,
        gt=0,
        le=3600,
        description="How often persisted due retries are swept from storage"
    )
    request_timeout: float = Field(
        default=10.0,
        gt=0,
        le=120,
        description="HTTP timeout for a single delivery attempt"
    )

    @model_validator(mode="after")
    def validate_delays(self) -> "WebhookSettings":
        if self.base_delay > self.max_delay:
            raise ValueError("base_delay cannot be greater than max_delay")
        return self


class EmailSettings(BaseSettingsConfig):
    """
    SMTP / Email Delivery Settings
    """

    model_config = SettingsConfigDict(
        env_prefix="SMTP_",
        env_file=".env",
        extra="ignore"
    )

    enabled: bool = Field(
        default=False,
        description="Enable the email channel"
    )
    host: str = Field(
        default="localhost",
        description="SMTP server host"
    )
    port: int = Field(
        default=587,
        ge=1,
        le=65535,
        description="SMTP server port"
    )
    username: Optional[str] = Field(
        default=None,
        description="SMTP username"
    )
    password: SecretStr = Field(
        default=SecretStr(""),
        description="SMTP password"
    )
    use_tls: bool = Field(
        default=True,
        description="Issue STARTTLS after connecting"
    )
    from_address: str = Field(
        default='"PingMaster" <noreply@pingmaster.app>',
        description="From header for outgoing mail"
    )
    timeout: float = Field(
        default=30.0,
        gt=0,
        le=300,
        description="SMTP socket timeout in seconds"
    )
    max_retries: int = Field(
        default=3,
        ge=0,
        le=10,
        description="Retries per message after the first failed send"
    )
    retry_delay: float = Field(
        default=5.0,
        ge=0,
        le=600,
        description="Fixed delay between send attempts in seconds"
    )
    dashboard_url: str = Field(
        default="http://localhost:3000/dashboard",
        description="Link rendered into email templates"
    )


class LoggingSettings(BaseSettingsConfig):
    """
    Logging Configuration Settings
    """

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        env_file=".env",
        extra="ignore"
    )

    level: LogLevel = Field(
        default=LogLevel.INFO,
        description="Minimum logging level"
    )
    console_enabled: bool = Field(
        default=True,
        description="Enable console logging"
    )
    console_colored: bool = Field(
        default=True,
        description="Enable colored console output"
    )
    file_enabled: bool = Field(
        default=False,
        description="Enable file logging"
    )
    file_path: Path = Field(
        default=Path("logs/pingmaster.log"),
        description="Log file path"
    )
    file_rotation: str = Field(
        default="10 MB",
        description="Log rotation size (e.g., '10 MB', '1 day')"
    )
    file_retention: str = Field(
        default="30 days",
        description="Log retention period"
    )
    error_file_enabled: bool = Field(
        default=False,
        description="Enable separate error log file"
    )
    error_file_path: Path = Field(
        default=Path("logs/errors.log"),
        description="Error log file path"
    )
    json_enabled: bool = Field(
        default=False,
        description="Serialize file logs as JSON"
    )


class Settings(BaseSettingsConfig):
    """
    Main Settings Class

    Aggregates all settings sections and provides the main
    configuration interface for the application.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Environment
    environment: Environment = Field(
        default=Environment.DEVELOPMENT,
        description="Application environment"
    )
    debug: bool = Field(
        default=False,
        description="Enable debug mode"
    )

    # Application info
    app_name: str = Field(
        default="PingMaster",
        description="Application name"
    )
    app_version: str = Field(
        default="1.0.0",
        description="Application version"
    )

    # Web server (SSE stream + health)
    web_host: str = Field(
        default="0.0.0.0",
        description="Web server host"
    )
    web_port: int = Field(
        default=8080,
        ge=1,
        le=65535,
        description="Web server port"
    )

    # Nested settings
    database: DatabaseSettings = Field(
        default_factory=DatabaseSettings
    )
    monitoring: MonitoringSettings = Field(
        default_factory=MonitoringSettings
    )
    notifications: NotificationSettings = Field(
        default_factory=NotificationSettings
    )
    webhooks: WebhookSettings = Field(
        default_factory=WebhookSettings
    )
    email: EmailSettings = Field(
        default_factory=EmailSettings
    )
    logging: LoggingSettings = Field(
        default_factory=LoggingSettings
    )

    @model_validator(mode="after")
    def configure_for_environment(self) -> "Settings":
        """Apply environment-specific configuration."""
        if self.environment == Environment.PRODUCTION:
            self.debug = False
            self.database.echo = False
        elif self.environment == Environment.DEVELOPMENT and self.debug:
            self.logging.level = LogLevel.DEBUG
        return self


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Returns:
        Settings: Application settings instance
    """
    return Settings()

