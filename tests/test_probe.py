import asyncio
from datetime import timedelta

import dns.asyncresolver
import dns.resolver
import httpx
import pytest

from config.constants import ErrorKind, HealthState
from config.settings import MonitoringSettings
from exceptions import DNSResolutionError, InvalidURLError, TLSInspectionError
from monitoring.probe import DNSChecker, Probe, TlsInfo
from tests.factories import make_monitor
from utils.helpers import TimeHelper


class FakeDNS:
    def __init__(self, error=None, delay: float = 0.0):
        self.error = error
        self.delay = delay
        self.lookups = []

    async def resolve(self, hostname, timeout):
        self.lookups.append(hostname)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return ["93.184.216.34"]


class FakeTLS:
    def __init__(self, days: int = 90, error=None):
        self.days = days
        self.error = error
        self.calls = 0

    async def inspect(self, hostname, port, timeout):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return TlsInfo(TimeHelper.utc_now() + timedelta(days=self.days), self.days, "Test CA")


def make_probe(handler, dns=None, tls=None):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    probe = Probe(
        MonitoringSettings(user_agent="PingMaster-Test/1.0"),
        client=client,
        dns_checker=dns or FakeDNS(),
        tls_inspector=tls or FakeTLS(),
    )
    return probe, client


def ok(request):
    return httpx.Response(200, text="hello")


# ============================================================================
# PROBE
# ============================================================================

@pytest.mark.asyncio
async def test_healthy_https_endpoint_is_up_with_tls_info():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200)

    tls = FakeTLS(days=45)
    probe, client = make_probe(handler, tls=tls)
    async with client:
        result = await probe.probe(make_monitor())

    assert result.state == HealthState.UP
    assert result.success
    assert result.status_code == 200
    assert result.latency_ms >= 0
    assert result.tls.days_until_expiry == 45
    assert tls.calls == 1
    assert seen[0].headers["User-Agent"] == "PingMaster-Test/1.0"


@pytest.mark.asyncio
async def test_plain_http_skips_tls_inspection():
    tls = FakeTLS()
    probe, client = make_probe(ok, tls=tls)
    async with client:
        result = await probe.probe(make_monitor(url="http://example.com/status"))

    assert result.state == HealthState.UP
    assert result.tls is None
    assert tls.calls == 0


@pytest.mark.asyncio
async def test_dns_failure_is_terminal():
    requests = []
    dns = FakeDNS(error=DNSResolutionError("example.invalid does not exist (NXDOMAIN)"))
    probe, client = make_probe(lambda r: requests.append(r) or httpx.Response(200), dns=dns)
    async with client:
        result = await probe.probe(make_monitor(url="https://example.invalid"))

    assert result.state == HealthState.DOWN
    assert result.error_kind == ErrorKind.DNS_RESOLUTION_FAILED
    assert result.error == "dns_resolution_failed: example.invalid does not exist (NXDOMAIN)"
    assert requests == []


@pytest.mark.asyncio
async def test_tls_failure_is_not_fatal():
    tls = FakeTLS(error=TLSInspectionError("handshake failed"))
    probe, client = make_probe(ok, tls=tls)
    async with client:
        result = await probe.probe(make_monitor())

    assert result.state == HealthState.UP
    assert result.tls is None


@pytest.mark.asyncio
async def test_server_error_status_is_down():
    probe, client = make_probe(lambda r: httpx.Response(503))
    async with client:
        result = await probe.probe(make_monitor())

    assert result.state == HealthState.DOWN
    assert result.status_code == 503
    assert result.error_kind == ErrorKind.HTTP_STATUS
    assert result.error == "http_status: HTTP error! status: 503"


@pytest.mark.asyncio
async def test_redirects_are_followed():
    def handler(request):
        if request.url.path == "/old":
            return httpx.Response(301, headers={"Location": "https://example.com/new"})
        return httpx.Response(200)

    probe, client = make_probe(handler)
    async with client:
        result = await probe.probe(make_monitor(url="https://example.com/old"))

    assert result.state == HealthState.UP
    assert result.status_code == 200


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "exc, kind",
    [
        (httpx.ConnectError("connection refused"), ErrorKind.CONNECTION_ERROR),
        (httpx.ReadTimeout("read timed out"), ErrorKind.TIMEOUT),
    ],
)
async def test_transport_errors_are_classified(exc, kind):
    def handler(request):
        raise exc

    probe, client = make_probe(handler)
    async with client:
        result = await probe.probe(make_monitor())

    assert result.state == HealthState.DOWN
    assert result.error_kind == kind
    assert result.error.startswith(f"{kind.value}: ")


@pytest.mark.asyncio
async def test_whole_probe_is_bounded_by_monitor_timeout():
    probe, client = make_probe(ok, dns=FakeDNS(delay=1.0))
    async with client:
        result = await probe.probe(make_monitor(timeout=0.05))

    assert result.state == HealthState.DOWN
    assert result.error_kind == ErrorKind.TIMEOUT
    assert result.latency_ms < 1000


@pytest.mark.asyncio
async def test_unparseable_url_raises():
    probe, client = make_probe(ok)
    async with client:
        with pytest.raises(InvalidURLError):
            await probe.probe(make_monitor(url="example.com"))


# ============================================================================
# DNS CHECKER
# ============================================================================

class FakeResolver:
    answers = {}

    def __init__(self):
        self.lifetime = None

    async def resolve(self, qname, rdtype):
        outcome = self.answers[(qname, rdtype)]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


@pytest.mark.asyncio
@pytest.mark.parametrize("host", ["127.0.0.1", "::1", "localhost"])
async def test_ip_literals_and_localhost_skip_resolution(host, monkeypatch):
    monkeypatch.setattr(dns.asyncresolver, "Resolver", None)

    assert await DNSChecker().resolve(host, 1.0) == [host]


@pytest.mark.asyncio
async def test_aaaa_fallback_when_no_a_record(monkeypatch):
    monkeypatch.setattr(FakeResolver, "answers", {
        ("v6.example.com", "A"): dns.resolver.NoAnswer(),
        ("v6.example.com", "AAAA"): ["2001:db8::1"],
    })
    monkeypatch.setattr(dns.asyncresolver, "Resolver", FakeResolver)

    assert await DNSChecker().resolve("v6.example.com", 1.0) == ["2001:db8::1"]


@pytest.mark.asyncio
async def test_nxdomain_maps_to_dns_resolution_error(monkeypatch):
    monkeypatch.setattr(FakeResolver, "answers", {
        ("nope.example.com", "A"): dns.resolver.NXDOMAIN(),
    })
    monkeypatch.setattr(dns.asyncresolver, "Resolver", FakeResolver)

    with pytest.raises(DNSResolutionError) as info:
        await DNSChecker().resolve("nope.example.com", 1.0)

    assert info.value.error_string.startswith("dns_resolution_failed: ")
    assert "NXDOMAIN" in info.value.error_string
