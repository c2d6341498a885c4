"""
Validation Exception Classes for PingMaster

Raised when a monitor's configuration is rejected at registration:
bad URL, out-of-range interval or timeout, unknown delivery channel.
"""

from __future__ import annotations

from typing import Any, List, Optional

from exceptions.base import ConfigurationError


class ValidationException(ConfigurationError):
    """
    Base Validation Exception

    Parent class for all monitor configuration validation errors.
    """

    default_error_code = 3000

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        **kwargs: Any
    ) -> None:
        """
        Initialize validation exception.

        Args:
            message: Error message
            field: The field that failed validation
            value: The invalid value (sanitized)
            **kwargs: Additional arguments
        """
        super().__init__(message, **kwargs)

        if field:
            self.details["field"] = field

        if value is not None:
            self.details["value"] = self._sanitize_value(value)

    @staticmethod
    def _sanitize_value(value: Any) -> str:
        str_value = str(value)

        if len(str_value) > 100:
            str_value = str_value[:100] + "..."

        return str_value


class InvalidURLError(ValidationException):
    """
    Invalid URL Error

    Raised when a monitor URL is not an absolute http(s) URL.
    """

    default_error_code = 3001

    def __init__(
        self,
        message: str = "Invalid URL format",
        url: Optional[str] = None,
        reason: Optional[str] = None,
        **kwargs: Any
    ) -> None:
        """
        Initialize invalid URL error.

        Args:
            message: Error message
            url: The invalid URL
            reason: Specific reason for invalidity
            **kwargs: Additional arguments
        """
        super().__init__(message, field="url", value=url, **kwargs)

        if reason:
            self.details["reason"] = reason


class InvalidIntervalError(ValidationException):
    """
    Invalid Interval Error

    Raised when a check interval is below one second or above the
    configured maximum.
    """

    default_error_code = 3002

    def __init__(
        self,
        message: str = "Invalid interval",
        interval: Optional[Any] = None,
        min_interval: Optional[int] = None,
        max_interval: Optional[int] = None,
        **kwargs: Any
    ) -> None:
        super().__init__(message, field="check_interval", value=interval, **kwargs)

        if min_interval is not None:
            self.details["min_interval"] = min_interval

        if max_interval is not None:
            self.details["max_interval"] = max_interval


class InvalidTimeoutError(ValidationException):
    """
    Invalid Timeout Error

    Raised when a probe timeout is not a positive number of seconds.
    """

    default_error_code = 3003

    def __init__(
        self,
        message: str = "Invalid timeout",
        timeout: Optional[Any] = None,
        **kwargs: Any
    ) -> None:
        super().__init__(message, field="timeout", value=timeout, **kwargs)


class InvalidChannelError(ValidationException):
    """
    Invalid Channel Error

    Raised when a monitor enables a delivery channel that does not exist.
    """

    default_error_code = 3004

    def __init__(
        self,
        message: str = "Unknown delivery channel",
        channels: Optional[List[str]] = None,
        allowed: Optional[List[str]] = None,
        **kwargs: Any
    ) -> None:
        super().__init__(message, field="channels", value=channels, **kwargs)

        if allowed:
            self.details["allowed"] = allowed
