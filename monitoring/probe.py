"""
============================================================================
PINGMASTER - PROBE
============================================================================
Performs one health check against a monitor's URL and reports what it
saw. The probe never retries and never raises for endpoint failures:
every failure becomes a ``down`` ProbeResult with an error string of
the form ``"<kind>: <detail>"``. The only exception it lets out is
``InvalidURLError`` for a URL that cannot be parsed.

Architecture
------------
Probe.probe(monitor)        ← bounded by the monitor timeout (wait_for)
├── DNSChecker.resolve()    ← dnspython async resolver; failure is terminal
├── TLSInspector.inspect()  ← https only; failure is logged and ignored
└── HTTPChecker.fetch()     ← httpx GET; 2xx/3xx is up, anything else down

Author: PingMaster Team
Version: 1.0.0
License: MIT
============================================================================
"""

import asyncio
import ssl
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

import dns.asyncresolver
import dns.exception
import dns.resolver
import httpx

from config.constants import ErrorKind, HealthState, Limits
from config.settings import MonitoringSettings, get_settings
from exceptions import (
    DNSResolutionError,
    HTTPCheckError,
    ProbeConnectionError,
    ProbeFailure,
    ProbeTimeoutError,
    TLSInspectionError,
)
from utils.helpers import StringHelper
from utils.logger import get_logger
from utils.validators import URLValidator


logger = get_logger("Probe")


# ============================================================================
# RESULT VALUE OBJECTS
# ============================================================================

class TlsInfo:
    """
    Peer certificate facts gathered during the TLS step.
    """
    __slots__ = ("expires_at", "days_until_expiry", "issuer")

    def __init__(
        self,
        expires_at: datetime,
        days_until_expiry: int,
        issuer: Optional[str] = None,
    ):
        self.expires_at = expires_at
        self.days_until_expiry = days_until_expiry
        self.issuer = issuer

    def to_dict(self) -> Dict[str, Any]:
        return {
            "expires_at": self.expires_at.isoformat(),
            "days_until_expiry": self.days_until_expiry,
            "issuer": self.issuer,
        }

    def __repr__(self) -> str:
        return f"TlsInfo(days_until_expiry={self.days_until_expiry}, issuer={self.issuer!r})"


class ProbeResult:
    """
    Value object carrying everything a single probe observed back to
    the scheduler.
    """
    __slots__ = (
        "state", "latency_ms", "error", "error_kind", "status_code", "tls",
    )

    def __init__(
        self,
        state: HealthState,
        latency_ms: Optional[float] = None,
        error: Optional[str] = None,
        error_kind: Optional[ErrorKind] = None,
        status_code: Optional[int] = None,
        tls: Optional[TlsInfo] = None,
    ):
        self.state = state
        self.latency_ms = latency_ms
        self.error = error
        self.error_kind = error_kind
        self.status_code = status_code
        self.tls = tls

    @property
    def success(self) -> bool:
        return self.state == HealthState.UP

    @classmethod
    def failed(
        cls,
        failure: ProbeFailure,
        latency_ms: Optional[float],
        tls: Optional[TlsInfo] = None,
    ) -> "ProbeResult":
        """Build a ``down`` result from a probe step failure."""
        return cls(
            state=HealthState.DOWN,
            latency_ms=latency_ms,
            error=StringHelper.truncate(failure.error_string, Limits.MAX_ERROR_LENGTH),
            error_kind=failure.kind,
            status_code=getattr(failure, "status_code", None),
            tls=tls,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "latency_ms": self.latency_ms,
            "error": self.error,
            "error_kind": self.error_kind.value if self.error_kind else None,
            "status_code": self.status_code,
            "tls": self.tls.to_dict() if self.tls else None,
        }

    def __repr__(self) -> str:
        return (
            f"ProbeResult(state={self.state.value}, latency_ms={self.latency_ms}, "
            f"error={self.error!r})"
        )


# ============================================================================
# DNS CHECKER
# ============================================================================

class DNSChecker:
    """
    Resolves a host name with the dnspython async resolver.

    IP literals and ``localhost`` skip resolution. An A lookup with no
    answer falls back to AAAA before the host is declared unresolvable.
    """

    LOCAL_NAMES = ("localhost",)

    async def resolve(self, hostname: str, timeout: float) -> List[str]:
        if URLValidator.is_valid_ip(hostname) or hostname.lower() in self.LOCAL_NAMES:
            return [hostname]

        resolver = dns.asyncresolver.Resolver()
        resolver.lifetime = timeout

        try:
            try:
                answers = await resolver.resolve(hostname, "A")
            except dns.resolver.NoAnswer:
                answers = await resolver.resolve(hostname, "AAAA")
        except dns.resolver.NXDOMAIN as e:
            raise DNSResolutionError(
                f"{hostname} does not exist (NXDOMAIN)", hostname=hostname, cause=e
            ) from e
        except dns.exception.Timeout as e:
            raise DNSResolutionError(
                f"DNS resolution for {hostname} timed out", hostname=hostname, cause=e
            ) from e
        except dns.exception.DNSException as e:
            raise DNSResolutionError(
                f"{hostname} could not be resolved: {e.__class__.__name__}",
                hostname=hostname,
                cause=e,
            ) from e

        addresses = [str(answer) for answer in answers]
        logger.debug(f"[Probe] DNS {hostname} → {addresses}")
        return addresses


# ============================================================================
# TLS INSPECTOR
# ============================================================================

class TLSInspector:
    """
    Opens a verified TLS connection and reads the peer certificate.
    """

    def __init__(self, context: Optional[ssl.SSLContext] = None):
        self.context = context or ssl.create_default_context()

    @staticmethod
    def _issuer_name(cert: Dict[str, Any]) -> Optional[str]:
        for rdn in cert.get("issuer", ()):
            for key, value in rdn:
                if key in ("organizationName", "commonName"):
                    return value
        return None

    async def inspect(self, hostname: str, port: int, timeout: float) -> TlsInfo:
        writer = None
        try:
            _, writer = await asyncio.wait_for(
                asyncio.open_connection(
                    hostname, port, ssl=self.context, server_hostname=hostname
                ),
                timeout=timeout,
            )
            cert = writer.get_extra_info("peercert")
        except (OSError, ssl.SSLError, asyncio.TimeoutError) as e:
            raise TLSInspectionError(
                f"TLS handshake with {hostname}:{port} failed: {e}", cause=e
            ) from e
        finally:
            if writer is not None:
                writer.close()

        if not cert or "notAfter" not in cert:
            raise TLSInspectionError(f"{hostname} did not present a certificate")

        expires_ts = ssl.cert_time_to_seconds(cert["notAfter"])
        expires_at = datetime.fromtimestamp(expires_ts, tz=timezone.utc)
        days = int((expires_ts - time.time()) // 86400)

        info = TlsInfo(expires_at, days, self._issuer_name(cert))
        logger.debug(f"[Probe] TLS {hostname} → {info}")
        return info


# ============================================================================
# HTTP CHECKER
# ============================================================================

class HTTPChecker:
    """
    Performs the HTTP GET using a shared httpx async client.
    """

    def __init__(self, client: httpx.AsyncClient, user_agent: str):
        self.client = client
        self.user_agent = user_agent

    async def fetch(self, url: str, timeout: float) -> int:
        """
        GET *url* and return the final status code.

        Raises:
            HTTPCheckError: Status outside 2xx/3xx
            ProbeTimeoutError: httpx timed out
            ProbeConnectionError: Any other transport failure
        """
        try:
            response = await self.client.get(
                url,
                headers={"User-Agent": self.user_agent},
                timeout=timeout,
                follow_redirects=True,
            )
        except httpx.TimeoutException as e:
            raise ProbeTimeoutError(
                f"Request timed out after {timeout}s", timeout=timeout, url=url, cause=e
            ) from e
        except httpx.HTTPError as e:
            detail = str(e) or e.__class__.__name__
            raise ProbeConnectionError(detail, url=url, cause=e) from e

        if not 200 <= response.status_code < 400:
            raise HTTPCheckError(
                f"HTTP error! status: {response.status_code}",
                status_code=response.status_code,
                url=url,
            )

        return response.status_code


# ============================================================================
# PROBE
# ============================================================================

class Probe:
    """
    Runs the DNS → TLS → HTTP steps for one monitor.
    """

    def __init__(
        self,
        settings: Optional[MonitoringSettings] = None,
        client: Optional[httpx.AsyncClient] = None,
        dns_checker: Optional[DNSChecker] = None,
        tls_inspector: Optional[TLSInspector] = None,
    ):
        self.settings = settings or get_settings().monitoring
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            limits=httpx.Limits(max_connections=100, max_keepalive_connections=20),
        )
        self.dns = dns_checker or DNSChecker()
        self.tls = tls_inspector or TLSInspector()
        self.http = HTTPChecker(self.client, self.settings.user_agent)

    async def close(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def probe(self, monitor: Any) -> ProbeResult:
        """
        Probe *monitor* once.

        Raises:
            InvalidURLError: The monitor URL cannot be parsed
        """
        url = URLValidator.validate(monitor.url)
        parsed = urlparse(url)
        timeout = float(monitor.timeout or self.settings.default_timeout)

        start = time.perf_counter()
        try:
            return await asyncio.wait_for(
                self._run_steps(url, parsed.hostname, parsed.scheme.lower(), parsed.port, timeout, start),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            failure = ProbeTimeoutError(
                f"Probe exceeded {timeout}s", timeout=timeout, url=url
            )
            logger.debug(f"[Probe] {url} ✗ {failure.error_string}")
            return ProbeResult.failed(failure, self._elapsed_ms(start))

    @staticmethod
    def _elapsed_ms(start: float) -> float:
        return round((time.perf_counter() - start) * 1000, 2)

    async def _run_steps(
        self,
        url: str,
        hostname: str,
        scheme: str,
        port: Optional[int],
        timeout: float,
        start: float,
    ) -> ProbeResult:
        # --- 1. DNS (terminal on failure) ---
        try:
            await self.dns.resolve(hostname, timeout)
        except DNSResolutionError as e:
            logger.debug(f"[Probe] {url} ✗ {e.error_string}")
            return ProbeResult.failed(e, self._elapsed_ms(start))

        # --- 2. TLS (non-fatal) ---
        tls: Optional[TlsInfo] = None
        if scheme == "https":
            try:
                tls = await self.tls.inspect(hostname, port or 443, timeout)
            except TLSInspectionError as e:
                logger.warning(f"[Probe] {url} TLS inspection skipped: {e.message}")

        # --- 3. HTTP ---
        try:
            status_code = await self.http.fetch(url, timeout)
        except ProbeFailure as e:
            logger.debug(f"[Probe] {url} ✗ {e.error_string}")
            return ProbeResult.failed(e, self._elapsed_ms(start), tls=tls)

        latency = self._elapsed_ms(start)
        logger.debug(f"[Probe] {url} ✓ {status_code} in {latency}ms")
        return ProbeResult(
            state=HealthState.UP,
            latency_ms=latency,
            status_code=status_code,
            tls=tls,
        )
