"""
Base Exception Classes for PingMaster

Every error the engine raises on purpose derives from
``PingMasterException`` and carries a numeric code, a details dict
and, when it wraps another error, the original cause.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class PingMasterException(Exception):
    """
    Base Exception Class

    Attributes:
        message: Human-readable error message
        error_code: Numeric code; the thousands digit names the family
        details: Structured context for logs
        cause: The underlying exception, if any
    """

    default_error_code: int = 1000

    def __init__(
        self,
        message: str = "An error occurred",
        error_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[BaseException] = None,
    ) -> None:
        super().__init__(message)

        self.message = message
        self.error_code = error_code or self.default_error_code
        self.details = details or {}
        self.cause = cause

    def log_format(self) -> str:
        """One-line form used by the components' error logs."""
        parts = [
            f"{self.__class__.__name__} [{self.error_code}]",
            self.message,
        ]

        if self.details:
            parts.append(f"details={self.details}")

        if self.cause:
            parts.append(f"cause={self.cause!r}")

        return " | ".join(parts)

    def __str__(self) -> str:
        return f"[{self.error_code}] {self.message}"


class ConfigurationError(PingMasterException):
    """
    Configuration Error

    Raised when application settings or a monitor's configuration is
    unusable. A monitor whose registration raises this is never
    scheduled.
    """

    default_error_code = 1100


class InitializationError(PingMasterException):
    """
    Initialization Error

    Raised when a component (database, channels, scheduler, web
    server) fails to start.
    """

    default_error_code = 1200

    def __init__(
        self,
        message: str,
        component: Optional[str] = None,
        **kwargs: Any
    ) -> None:
        super().__init__(message, **kwargs)

        if component:
            self.details["component"] = component
