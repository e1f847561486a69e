# Identity resolution: caller address → (geo ∥ reverse DNS) → IdentityRecord.
# Geo hits a memory-mapped database synchronously, so it goes to the default
# executor while the PTR query runs on the event loop.

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass

import structlog
from opentelemetry import trace
from starlette.requests import HTTPConnection

from ipscope.lookup.client import client_address
from ipscope.lookup.geo import UNKNOWN_COUNTRY_CODE, GeoEnricher, GeoLocation
from ipscope.lookup.rdns import ReverseDNSResolver
from ipscope.services.metrics import ServiceMetrics

logger = structlog.get_logger(__name__)
tracer = trace.get_tracer(__name__)


@dataclass(frozen=True)
class IdentityRecord:
    """Everything known about one caller, built fresh per request."""

    is_ipv6: bool
    address: str
    hostname: str
    geo_details: str
    isp: str
    country_code: str
    city: str
    country: str

    @classmethod
    def build(cls, address: str, hostname: str, geo: GeoLocation) -> IdentityRecord:
        return cls(
            # IPv4 text never contains a colon; IPv6 text always does.
            is_ipv6=":" in address,
            address=address,
            hostname=hostname or address,
            geo_details=geo.details,
            isp=geo.org,
            country_code=geo.country_code,
            city=geo.city,
            country=geo.country,
        )


class IdentityResolver:
    """Composes address extraction, geo enrichment and reverse DNS."""

    def __init__(
        self,
        geo: GeoEnricher,
        rdns: ReverseDNSResolver,
        metrics: ServiceMetrics | None = None,
    ) -> None:
        self._geo = geo
        self._rdns = rdns
        self._metrics = metrics

    async def resolve(self, conn: HTTPConnection) -> IdentityRecord:
        """Resolve the caller behind a request. Never fails on lookup misses."""
        with tracer.start_as_current_span("resolve_identity") as span:
            start = time.perf_counter()
            address = client_address(conn)
            span.set_attribute("client.address", address)

            geo, hostname = await asyncio.gather(
                self._lookup_geo(address),
                self._lookup_hostname(address),
            )
            record = IdentityRecord.build(address, hostname, geo)

            elapsed_ms = (time.perf_counter() - start) * 1000
            span.set_attribute("identity.ipv6", record.is_ipv6)
            span.set_attribute("latency_ms", round(elapsed_ms, 1))
            logger.debug(
                "identity_resolved",
                address=address,
                hostname=record.hostname,
                country_code=record.country_code,
                time_ms=round(elapsed_ms, 1),
            )
            if self._metrics is not None:
                self._metrics.record_resolution(
                    elapsed_ms,
                    rdns_fallback=record.hostname == address,
                    geo_resolved=record.country_code != UNKNOWN_COUNTRY_CODE,
                )
            return record

    async def _lookup_geo(self, address: str) -> GeoLocation:
        with tracer.start_as_current_span("geo_lookup"):
            loop = asyncio.get_running_loop()
            return await loop.run_in_executor(None, self._geo.lookup, address)

    async def _lookup_hostname(self, address: str) -> str:
        with tracer.start_as_current_span("reverse_dns") as span:
            span.set_attribute("timeout_s", self._rdns.timeout_seconds)
            return await self._rdns.lookup(address)
