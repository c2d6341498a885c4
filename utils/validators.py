"""
============================================================================
PINGMASTER - VALIDATORS UTILITY
============================================================================
Validation of monitor configuration before a monitor is scheduled.
Every failure raises a ``ConfigurationError`` subclass so the scheduler
can refuse the monitor without arming a timer.

Author: PingMaster Team
Version: 1.0.0
License: MIT
============================================================================
"""

import ipaddress
from typing import Any, Iterable, Optional
from urllib.parse import urlparse

import validators as external_validators

from config.constants import ChannelType, Limits
from exceptions import (
    InvalidChannelError,
    InvalidIntervalError,
    InvalidTimeoutError,
    InvalidURLError,
)
from utils.logger import get_logger


logger = get_logger("Validators")


# ============================================================================
# URL VALIDATORS
# ============================================================================

class URLValidator:
    """
    URL validation and parsing for monitor targets.
    """

    ALLOWED_SCHEMES = ("http", "https")

    @staticmethod
    def is_valid_ip(host: str) -> bool:
        """
        Check if host is an IP literal.

        Args:
            host: Host name or address

        Returns:
            True if it parses as IPv4/IPv6, False otherwise
        """
        try:
            ipaddress.ip_address(host)
            return True
        except ValueError:
            return False

    @staticmethod
    def validate(url: Any) -> str:
        """
        Validate an absolute http(s) URL.

        Args:
            url: URL to validate

        Returns:
            The URL, stripped of surrounding whitespace

        Raises:
            InvalidURLError: With a ``reason`` detail describing the problem
        """
        if not isinstance(url, str) or not url.strip():
            raise InvalidURLError("URL is empty", url=url, reason="empty")

        url = url.strip()

        if len(url) > Limits.MAX_URL_LENGTH:
            raise InvalidURLError("URL is too long", url=url, reason="too_long")

        try:
            parsed = urlparse(url)
            # Accessing .port raises for out-of-range or non-numeric ports
            parsed.port
        except ValueError as e:
            raise InvalidURLError(f"URL cannot be parsed: {e}", url=url, cause=e)

        if not parsed.scheme:
            raise InvalidURLError("URL has no scheme", url=url, reason="no_scheme")

        if parsed.scheme.lower() not in URLValidator.ALLOWED_SCHEMES:
            raise InvalidURLError(
                f"Unsupported scheme '{parsed.scheme}'",
                url=url,
                reason="invalid_scheme",
            )

        if not parsed.hostname:
            raise InvalidURLError("URL has no host", url=url, reason="invalid_domain")

        # Single-label hosts such as "localhost" are valid monitor targets
        result = external_validators.url(url, simple_host=True)
        if result is not True:
            logger.debug(f"[Validators] Rejected URL {url!r}: {result}")
            raise InvalidURLError("URL is malformed", url=url, reason="invalid_domain")

        return url

    @staticmethod
    def hostname(url: str) -> Optional[str]:
        """Extract the host name from a URL."""
        return urlparse(url).hostname


# ============================================================================
# MONITOR VALIDATORS
# ============================================================================

def validate_interval(interval: Any, max_interval: Optional[int] = None) -> int:
    """Check interval in seconds, within MIN_CHECK_INTERVAL and ``max_interval``."""
    if isinstance(interval, bool) or not isinstance(interval, (int, float)):
        raise InvalidIntervalError(
            "Check interval must be a number of seconds",
            interval=interval,
            min_interval=Limits.MIN_CHECK_INTERVAL,
            max_interval=max_interval,
        )

    if interval < Limits.MIN_CHECK_INTERVAL or (
        max_interval is not None and interval > max_interval
    ):
        raise InvalidIntervalError(
            f"Check interval {interval}s is out of range",
            interval=interval,
            min_interval=Limits.MIN_CHECK_INTERVAL,
            max_interval=max_interval,
        )

    return int(interval)


def validate_timeout(timeout: Any) -> float:
    if isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout <= 0:
        raise InvalidTimeoutError(
            "Timeout must be a positive number of seconds",
            timeout=timeout,
        )
    return float(timeout)


def validate_channels(channels: Optional[Iterable[str]]) -> list:
    """Every enabled channel must be one of push, webhook, email."""
    channels = list(channels or [])
    allowed = ChannelType.values()
    unknown = [c for c in channels if c not in allowed]
    if unknown:
        raise InvalidChannelError(
            f"Unknown delivery channel(s): {', '.join(map(str, unknown))}",
            channels=channels,
            allowed=sorted(allowed),
        )
    return channels


def validate_monitor(monitor: Any, max_interval: Optional[int] = None) -> None:
    """
    Validate a monitor's configuration before it is scheduled.

    Args:
        monitor: Object exposing url, check_interval, timeout and channels
        max_interval: Optional upper bound for the check interval

    Raises:
        ConfigurationError: One of its validation subclasses
    """
    URLValidator.validate(monitor.url)
    validate_interval(monitor.check_interval, max_interval)
    validate_timeout(monitor.timeout)
    validate_channels(monitor.channels)
