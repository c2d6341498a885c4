"""
Constants Module for PingMaster

Contains the enumerations, header names, event types and static
limits shared by the monitoring engine and the delivery channels.
"""

from __future__ import annotations

from enum import Enum
from typing import Final, FrozenSet


class HealthState(str, Enum):
    """
    Monitor Health State Enumeration

    ``pending`` is the initial value of every monitor and is never
    re-entered once a first check has completed.
    """

    PENDING = "pending"
    UP = "up"
    DOWN = "down"
    ERROR = "error"


class Severity(str, Enum):
    """
    Notification Severity Enumeration

    Stored as the notification ``type`` and forwarded verbatim in
    webhook payloads.
    """

    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    SUCCESS = "success"


class EventKind(str, Enum):
    """Kinds of transition event the classifier can emit."""

    STATE_CHANGE = "state_change"
    TLS_EXPIRING = "tls_expiring"


class ErrorKind(str, Enum):
    """
    Probe Error Kind Enumeration

    Used as the prefix of the stored ``"<kind>: <detail>"`` error string.
    """

    DNS_RESOLUTION_FAILED = "dns_resolution_failed"
    TLS = "tls"
    HTTP_STATUS = "http_status"
    TIMEOUT = "timeout"
    CONNECTION_ERROR = "connection_error"
    INTERNAL = "internal"


class ChannelType(str, Enum):
    """
    Delivery Channel Enumeration

    The closed set of channels a monitor can enable.
    """

    PUSH = "push"
    WEBHOOK = "webhook"
    EMAIL = "email"

    @classmethod
    def values(cls) -> FrozenSet[str]:
        return frozenset(member.value for member in cls)


class DeliveryStatus(str, Enum):
    """Webhook delivery status."""

    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


class EventTypes:
    """Event types published to webhook and push subscribers."""

    NOTIFICATION_CREATED: Final[str] = "notification.created"
    NOTIFICATION_UPDATED: Final[str] = "notification.updated"
    NOTIFICATION_DELETED: Final[str] = "notification.deleted"

    WILDCARD: Final[str] = "*"


class PushActions:
    """``action`` field of push notification frames."""

    CREATED: Final[str] = "created"
    UPDATED: Final[str] = "updated"
    DELETED: Final[str] = "deleted"


class WebhookHeaders:
    """HTTP headers attached to every webhook delivery."""

    CONTENT_TYPE: Final[str] = "Content-Type"
    EVENT: Final[str] = "X-Event-Type"
    DELIVERY: Final[str] = "X-Delivery-Id"
    TIMESTAMP: Final[str] = "X-Timestamp"
    SIGNATURE: Final[str] = "X-Signature"


class Limits:
    """Application limits."""

    MIN_CHECK_INTERVAL: Final[int] = 1
    MAX_URL_LENGTH: Final[int] = 2048
    MAX_RESPONSE_BODY: Final[int] = 1000
    MAX_ERROR_LENGTH: Final[int] = 500
    PUSH_QUEUE_SIZE: Final[int] = 100
