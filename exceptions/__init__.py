"""
Exceptions Package for PingMaster

Provides the exception hierarchy used across the monitoring engine:
configuration, probe, persistence and delivery failures.
"""

from exceptions.base import (
    PingMasterException,
    ConfigurationError,
    InitializationError,
)

from exceptions.database import (
    PersistenceFailure,
    DatabaseConnectionError,
    DatabaseQueryError,
)

from exceptions.validation import (
    ValidationException,
    InvalidURLError,
    InvalidIntervalError,
    InvalidTimeoutError,
    InvalidChannelError,
)

from exceptions.monitoring import (
    ProbeFailure,
    DNSResolutionError,
    TLSInspectionError,
    HTTPCheckError,
    ProbeTimeoutError,
    ProbeConnectionError,
)

from exceptions.delivery import (
    DeliveryFailure,
    PushDeliveryError,
    WebhookDeliveryError,
    EmailDeliveryError,
)

__all__ = [
    # Base exceptions
    "PingMasterException",
    "ConfigurationError",
    "InitializationError",

    # Persistence exceptions
    "PersistenceFailure",
    "DatabaseConnectionError",
    "DatabaseQueryError",

    # Validation exceptions
    "ValidationException",
    "InvalidURLError",
    "InvalidIntervalError",
    "InvalidTimeoutError",
    "InvalidChannelError",

    # Probe exceptions
    "ProbeFailure",
    "DNSResolutionError",
    "TLSInspectionError",
    "HTTPCheckError",
    "ProbeTimeoutError",
    "ProbeConnectionError",

    # Delivery exceptions
    "DeliveryFailure",
    "PushDeliveryError",
    "WebhookDeliveryError",
    "EmailDeliveryError",
]
