"""
Configuration Package for PingMaster

This package contains all configuration-related modules including:
- Settings management with environment variable support
- Constants and enums used throughout the engine
"""

from config.settings import (
    Settings,
    DatabaseSettings,
    MonitoringSettings,
    NotificationSettings,
    WebhookSettings,
    EmailSettings,
    LoggingSettings,
    get_settings,
)

from config.constants import (
    HealthState,
    Severity,
    EventKind,
    ErrorKind,
    ChannelType,
    DeliveryStatus,
    EventTypes,
    PushActions,
    WebhookHeaders,
    Limits,
)

__all__ = [
    # Settings
    "Settings",
    "DatabaseSettings",
    "MonitoringSettings",
    "NotificationSettings",
    "WebhookSettings",
    "EmailSettings",
    "LoggingSettings",
    "get_settings",

    # Constants
    "HealthState",
    "Severity",
    "EventKind",
    "ErrorKind",
    "ChannelType",
    "DeliveryStatus",
    "EventTypes",
    "PushActions",
    "WebhookHeaders",
    "Limits",
]
