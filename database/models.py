"""
============================================================================
PINGMASTER - DATABASE MODELS
============================================================================
SQLAlchemy ORM models for monitors, their check history, notifications
and webhook deliveries.

Models double as the engine's domain objects: the scheduler and the
channels work with detached instances loaded with
``expire_on_commit=False``. Each model's ``__init__`` applies the
column defaults eagerly so unsaved instances behave the same as
persisted ones.

Deleting a monitor is the only path that removes its check history
and notifications (ON DELETE CASCADE).

Author: PingMaster Team
Version: 1.0.0
License: MIT
============================================================================
"""

import uuid
from typing import Any, Dict, List

from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime, Text,
    Float, JSON, Enum, ForeignKey, Index,
)
from sqlalchemy.orm import relationship, declarative_base

from config.constants import DeliveryStatus, HealthState, Severity
from utils.helpers import TimeHelper


# ============================================================================
# BASE MODEL CONFIGURATION
# ============================================================================

Base = declarative_base()


class TimestampMixin:
    """
    Mixin to add a created_at timestamp to models.
    """
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=TimeHelper.utc_now,
        index=True
    )


def _new_delivery_id() -> str:
    return str(uuid.uuid4())


# ============================================================================
# USER MODEL
# ============================================================================

class User(Base, TimestampMixin):
    """
    Owner of monitors, notifications and webhooks.

    Managed by the authentication layer; the engine only reads the
    email address when sending notification mail.
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(320), nullable=True)
    name = Column(String(255), nullable=True)

    monitors = relationship(
        "Monitor",
        back_populates="user",
        cascade="all, delete-orphan",
        passive_deletes=True
    )

    def __init__(self, **kwargs: Any) -> None:
        kwargs.setdefault("created_at", TimeHelper.utc_now())
        super().__init__(**kwargs)

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email={self.email!r})>"


# ============================================================================
# MONITOR MODEL
# ============================================================================

class Monitor(Base, TimestampMixin):
    """
    A user-registered endpoint that is probed on a fixed interval.
    """
    __tablename__ = "monitors"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    # Target
    name = Column(String(255), nullable=False)
    url = Column(Text, nullable=False)

    # Schedule configuration
    check_interval = Column(Integer, nullable=False, default=60)
    timeout = Column(Float, nullable=False, default=30.0)
    retries = Column(Integer, nullable=False, default=0)
    channels = Column(JSON, nullable=False, default=lambda: ["push", "webhook"])
    is_active = Column(Boolean, nullable=False, default=True, index=True)

    # Latest health
    state = Column(
        Enum(HealthState, native_enum=False, length=16),
        nullable=False,
        default=HealthState.PENDING
    )
    last_checked = Column(DateTime(timezone=True), nullable=True)
    response_time = Column(Float, nullable=True)

    # Relationships
    user = relationship("User", back_populates="monitors")
    check_results = relationship(
        "CheckResult",
        back_populates="monitor",
        cascade="all, delete-orphan",
        passive_deletes=True
    )
    notifications = relationship(
        "Notification",
        back_populates="monitor",
        cascade="all, delete-orphan",
        passive_deletes=True
    )

    __table_args__ = (
        Index("idx_monitor_user_active", "user_id", "is_active"),
    )

    def __init__(self, **kwargs: Any) -> None:
        kwargs.setdefault("check_interval", 60)
        kwargs.setdefault("timeout", 30.0)
        kwargs.setdefault("retries", 0)
        kwargs.setdefault("channels", ["push", "webhook"])
        kwargs.setdefault("is_active", True)
        kwargs.setdefault("state", HealthState.PENDING)
        kwargs.setdefault("created_at", TimeHelper.utc_now())
        super().__init__(**kwargs)

    @property
    def display_name(self) -> str:
        """Get display name for the monitor"""
        return self.name or self.url[:50]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "name": self.name,
            "url": self.url,
            "check_interval": self.check_interval,
            "timeout": self.timeout,
            "retries": self.retries,
            "channels": list(self.channels or []),
            "is_active": self.is_active,
            "state": HealthState(self.state).value,
            "last_checked": TimeHelper.to_iso(self.last_checked),
            "response_time": self.response_time,
        }

    def __repr__(self) -> str:
        return f"<Monitor(id={self.id}, url={self.url!r}, state={self.state})>"


# ============================================================================
# CHECK RESULT MODEL
# ============================================================================

class CheckResult(Base):
    """
    Append-only history record: one row per completed probe cycle.
    """
    __tablename__ = "check_results"

    id = Column(Integer, primary_key=True, index=True)
    monitor_id = Column(
        Integer,
        ForeignKey("monitors.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    checked_at = Column(DateTime(timezone=True), nullable=False, default=TimeHelper.utc_now)
    state = Column(Enum(HealthState, native_enum=False, length=16), nullable=False)
    latency_ms = Column(Float, nullable=True)
    status_code = Column(Integer, nullable=True)
    error = Column(Text, nullable=True)
    error_kind = Column(String(64), nullable=True)
    tls_days_remaining = Column(Integer, nullable=True)

    monitor = relationship("Monitor", back_populates="check_results")

    __table_args__ = (
        Index("idx_check_monitor_time", "monitor_id", "checked_at"),
    )

    def __init__(self, **kwargs: Any) -> None:
        kwargs.setdefault("checked_at", TimeHelper.utc_now())
        super().__init__(**kwargs)

    @property
    def is_success(self) -> bool:
        return self.state == HealthState.UP

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "monitor_id": self.monitor_id,
            "checked_at": TimeHelper.to_iso(self.checked_at),
            "state": HealthState(self.state).value,
            "latency_ms": self.latency_ms,
            "status_code": self.status_code,
            "error": self.error,
            "error_kind": self.error_kind,
            "tls_days_remaining": self.tls_days_remaining,
        }

    def __repr__(self) -> str:
        return f"<CheckResult(monitor_id={self.monitor_id}, state={self.state})>"


# ============================================================================
# NOTIFICATION MODEL
# ============================================================================

class Notification(Base, TimestampMixin):
    """
    User-facing record of an accepted transition event.

    Only ``read`` is ever mutated; rows are deleted by explicit user
    action or when the monitor is deleted.
    """
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    monitor_id = Column(
        Integer,
        ForeignKey("monitors.id", ondelete="CASCADE"),
        nullable=True,
        index=True
    )

    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    type = Column(
        Enum(Severity, native_enum=False, length=16),
        nullable=False,
        default=Severity.INFO
    )
    read = Column(Boolean, nullable=False, default=False, index=True)

    monitor = relationship("Monitor", back_populates="notifications")

    def __init__(self, **kwargs: Any) -> None:
        kwargs.setdefault("type", Severity.INFO)
        kwargs.setdefault("read", False)
        kwargs.setdefault("created_at", TimeHelper.utc_now())
        super().__init__(**kwargs)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "userId": self.user_id,
            "monitorId": self.monitor_id,
            "title": self.title,
            "message": self.message,
            "type": Severity(self.type).value,
            "read": self.read,
            "createdAt": TimeHelper.to_iso(self.created_at),
        }

    def __repr__(self) -> str:
        return f"<Notification(id={self.id}, type={self.type}, title={self.title!r})>"


# ============================================================================
# WEBHOOK MODELS
# ============================================================================

class WebhookConfig(Base, TimestampMixin):
    """
    A user's webhook endpoint and the event patterns it subscribes to.

    ``events`` holds shell-style patterns; ``*`` matches everything.
    """
    __tablename__ = "webhooks"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    name = Column(String(255), nullable=False, default="Webhook")
    url = Column(Text, nullable=False)
    secret = Column(String(255), nullable=True)
    events = Column(JSON, nullable=False, default=lambda: ["*"])
    is_active = Column(Boolean, nullable=False, default=True)

    deliveries = relationship(
        "WebhookDelivery",
        back_populates="webhook",
        cascade="all, delete-orphan",
        passive_deletes=True
    )

    def __init__(self, **kwargs: Any) -> None:
        kwargs.setdefault("name", "Webhook")
        kwargs.setdefault("events", ["*"])
        kwargs.setdefault("is_active", True)
        kwargs.setdefault("created_at", TimeHelper.utc_now())
        super().__init__(**kwargs)

    def __repr__(self) -> str:
        return f"<WebhookConfig(id={self.id}, url={self.url!r}, active={self.is_active})>"


class WebhookDelivery(Base, TimestampMixin):
    """
    One event sent to one webhook, with its retry bookkeeping.

    The id is a UUID string and doubles as the consumer's
    deduplication key (``X-Delivery-Id``).
    """
    __tablename__ = "webhook_deliveries"

    id = Column(String(36), primary_key=True, default=_new_delivery_id)
    webhook_id = Column(
        Integer,
        ForeignKey("webhooks.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    event_type = Column(String(64), nullable=False)
    payload = Column(JSON, nullable=False)
    attempts = Column(Integer, nullable=False, default=0)
    response_status = Column(Integer, nullable=True)
    response_body = Column(Text, nullable=True)
    error = Column(Text, nullable=True)
    next_retry = Column(DateTime(timezone=True), nullable=True, index=True)
    status = Column(
        Enum(DeliveryStatus, native_enum=False, length=16),
        nullable=False,
        default=DeliveryStatus.PENDING,
        index=True
    )

    webhook = relationship("WebhookConfig", back_populates="deliveries")

    __table_args__ = (
        Index("idx_delivery_retry", "status", "next_retry"),
    )

    def __init__(self, **kwargs: Any) -> None:
        kwargs.setdefault("id", _new_delivery_id())
        kwargs.setdefault("attempts", 0)
        kwargs.setdefault("status", DeliveryStatus.PENDING)
        kwargs.setdefault("created_at", TimeHelper.utc_now())
        super().__init__(**kwargs)

    @property
    def is_terminal(self) -> bool:
        return self.status == DeliveryStatus.SUCCESS

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "webhook_id": self.webhook_id,
            "event_type": self.event_type,
            "attempts": self.attempts,
            "status": DeliveryStatus(self.status).value,
            "response_status": self.response_status,
            "error": self.error,
            "next_retry": TimeHelper.to_iso(self.next_retry),
            "created_at": TimeHelper.to_iso(self.created_at),
        }

    def __repr__(self) -> str:
        return (
            f"<WebhookDelivery(id={self.id}, status={self.status}, "
            f"attempts={self.attempts})>"
        )


__all__: List[str] = [
    "Base",
    "User",
    "Monitor",
    "CheckResult",
    "Notification",
    "WebhookConfig",
    "WebhookDelivery",
]
