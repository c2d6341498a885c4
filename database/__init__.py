"""
Database Package for PingMaster

Provides the ORM models, the async engine manager and the repository
through which the engine persists monitors, history, notifications
and webhook deliveries.
"""

from database.manager import DatabaseManager

from database.models import (
    Base,
    User,
    Monitor,
    CheckResult,
    Notification,
    WebhookConfig,
    WebhookDelivery,
)

from database.repository import (
    Repository,
    SqlRepository,
    event_matches,
)

__all__ = [
    # Manager
    "DatabaseManager",

    # Models
    "Base",
    "User",
    "Monitor",
    "CheckResult",
    "Notification",
    "WebhookConfig",
    "WebhookDelivery",

    # Repository
    "Repository",
    "SqlRepository",
    "event_matches",
]
