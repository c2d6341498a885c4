"""
Probe Exception Classes for PingMaster

Raised inside the probe for each failure step. They never leave the
scheduler: every one is converted into a ``down`` or ``error``
check result.
"""

from __future__ import annotations

from typing import Any, Optional

from config.constants import ErrorKind
from exceptions.base import PingMasterException


class ProbeFailure(PingMasterException):
    """
    Base Probe Exception

    Carries the error kind used as the prefix of the stored
    ``"<kind>: <detail>"`` error string.
    """

    default_error_code = 4000
    kind: ErrorKind = ErrorKind.CONNECTION_ERROR

    def __init__(
        self,
        message: str,
        url: Optional[str] = None,
        **kwargs: Any
    ) -> None:
        super().__init__(message, **kwargs)

        if url:
            self.details["url"] = url

    @property
    def error_string(self) -> str:
        """Error text as stored on the check result."""
        return f"{self.kind.value}: {self.message}"


class DNSResolutionError(ProbeFailure):
    """Hostname did not resolve. Terminal for the probe."""

    default_error_code = 4001
    kind = ErrorKind.DNS_RESOLUTION_FAILED

    def __init__(
        self,
        message: str = "Hostname could not be resolved",
        hostname: Optional[str] = None,
        **kwargs: Any
    ) -> None:
        super().__init__(message, **kwargs)

        if hostname:
            self.details["hostname"] = hostname


class TLSInspectionError(ProbeFailure):
    """
    TLS handshake or certificate read failed.

    Non-fatal: the probe logs it and continues without TLS info.
    """

    default_error_code = 4002
    kind = ErrorKind.TLS


class HTTPCheckError(ProbeFailure):
    """Endpoint answered with a status outside 2xx/3xx."""

    default_error_code = 4003
    kind = ErrorKind.HTTP_STATUS

    def __init__(
        self,
        message: str = "Unexpected HTTP status",
        status_code: Optional[int] = None,
        **kwargs: Any
    ) -> None:
        super().__init__(message, **kwargs)

        self.status_code = status_code
        if status_code is not None:
            self.details["status_code"] = status_code


class ProbeTimeoutError(ProbeFailure):
    """The probe exceeded the monitor timeout."""

    default_error_code = 4004
    kind = ErrorKind.TIMEOUT

    def __init__(
        self,
        message: str = "Request timed out",
        timeout: Optional[float] = None,
        **kwargs: Any
    ) -> None:
        super().__init__(message, **kwargs)

        if timeout is not None:
            self.details["timeout"] = timeout


class ProbeConnectionError(ProbeFailure):
    """Transport-level failure: refused, reset, TLS verification, etc."""

    default_error_code = 4005
    kind = ErrorKind.CONNECTION_ERROR
