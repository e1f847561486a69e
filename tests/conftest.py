# ─────────────────────────────────────────────────────────────────────────────
# Test Fixtures: shared across all tests
# ─────────────────────────────────────────────────────────────────────────────
# Everything is in-process and offline: a hand-advanced clock drives the
# token buckets, and the geo databases and DNS resolver are small fakes
# with the same call shapes as geoip2 readers and dnspython's resolver.
# ─────────────────────────────────────────────────────────────────────────────

import asyncio
from types import SimpleNamespace
from typing import Any

import dns.resolver
import dns.reversename
import geoip2.errors
import pytest
from fastapi.testclient import TestClient

from ipscope.config import Settings
from ipscope.lookup.geo import GeoEnricher
from ipscope.lookup.rdns import ReverseDNSResolver
from ipscope.main import create_app
from ipscope.services.admission import AdmissionController
from ipscope.services.identity import IdentityResolver

# ── Fakes ────────────────────────────────────────────────────────────────────


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def city_record(
    city: str = "", country: str = "", iso_code: str = "", subdivisions: tuple[str, ...] = ()
) -> SimpleNamespace:
    """Shape of geoip2.models.City as far as GeoEnricher reads it."""
    return SimpleNamespace(
        city=SimpleNamespace(names={"en": city} if city else {}),
        country=SimpleNamespace(names={"en": country} if country else {}, iso_code=iso_code or None),
        subdivisions=[SimpleNamespace(iso_code=code) for code in subdivisions],
    )


class FakeCityReader:
    def __init__(self, records: dict[str, SimpleNamespace]) -> None:
        self.records = records
        self.closed = False

    def city(self, ip: Any) -> SimpleNamespace:
        try:
            return self.records[str(ip)]
        except KeyError:
            raise geoip2.errors.AddressNotFoundError(f"{ip} not in database") from None

    def close(self) -> None:
        self.closed = True


class FakeOrgReader:
    def __init__(self, isps: dict[str, str]) -> None:
        self.isps = isps
        self.closed = False

    def enterprise(self, ip: Any) -> SimpleNamespace:
        try:
            return SimpleNamespace(traits=SimpleNamespace(isp=self.isps[str(ip)]))
        except KeyError:
            raise geoip2.errors.AddressNotFoundError(f"{ip} not in database") from None

    def close(self) -> None:
        self.closed = True


class FakePTR:
    def __init__(self, name: str) -> None:
        self.name = name

    def to_text(self) -> str:
        return self.name


class FakeDNSResolver:
    """Answers PTR queries from a dict keyed by address; NXDOMAIN otherwise."""

    def __init__(self, names: dict[str, list[str]], delay: float = 0.0) -> None:
        self.names = names
        self.delay = delay
        self.queries: list[str] = []
        self.cancelled = 0

    async def resolve(self, qname: Any, rdtype: str, lifetime: float | None = None) -> list[FakePTR]:
        self.queries.append(str(qname))
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
        except asyncio.CancelledError:
            self.cancelled += 1
            raise
        address = dns.reversename.to_address(qname)
        if address not in self.names:
            raise dns.resolver.NXDOMAIN()
        return [FakePTR(name) for name in self.names[address]]


# ── Fixtures ─────────────────────────────────────────────────────────────────

PARIS = "203.0.113.5"
BERLIN = "198.51.100.7"
UNLISTED = "192.0.2.44"


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def admission(clock: FakeClock) -> AdmissionController:
    """Default 1/s, burst 10 controller on the fake clock."""
    return AdmissionController(clock=clock)


@pytest.fixture
def city_reader() -> FakeCityReader:
    return FakeCityReader(
        {
            PARIS: city_record("Paris", "France", "FR", ("IDF",)),
            BERLIN: city_record("", "Germany", "DE"),
        }
    )


@pytest.fixture
def org_reader() -> FakeOrgReader:
    return FakeOrgReader({PARIS: "Example Telecom"})


@pytest.fixture
def geo(city_reader: FakeCityReader, org_reader: FakeOrgReader) -> GeoEnricher:
    return GeoEnricher(city_reader=city_reader, org_reader=org_reader)


@pytest.fixture
def fake_dns() -> FakeDNSResolver:
    return FakeDNSResolver({PARIS: ["host.example.net."], "2001:db8::1": ["v6.example.net."]})


@pytest.fixture
def rdns(fake_dns: FakeDNSResolver) -> ReverseDNSResolver:
    return ReverseDNSResolver(timeout_seconds=0.5, resolver=fake_dns)


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    """Settings for testing: no databases, no static dir, console logs."""
    return Settings(
        geoip_dir=str(tmp_path / "geoip"),
        static_dir=str(tmp_path / "static"),
        log_json=False,
        log_level="DEBUG",
    )


@pytest.fixture
def app(test_settings: Settings, admission: AdmissionController, geo: GeoEnricher, rdns: ReverseDNSResolver):
    """App with lifespan state wired by hand (TestClient without `with`
    does not run the lifespan)."""
    app = create_app(settings=test_settings, admission=admission)
    app.state.geo = geo
    app.state.identity_resolver = IdentityResolver(geo, rdns, metrics=app.state.metrics)
    return app


@pytest.fixture
def client(app) -> TestClient:
    return TestClient(app)
