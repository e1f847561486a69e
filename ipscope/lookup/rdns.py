# Reverse DNS (PTR) lookup with a hard deadline.
# Runs on dnspython's asyncio resolver, so hitting the deadline cancels the
# socket wait itself; no thread is left blocked in getaddrinfo.

from __future__ import annotations

import asyncio
from typing import Any

import dns.asyncresolver
import dns.exception
import dns.resolver
import dns.reversename
import structlog

logger = structlog.get_logger(__name__)

DEFAULT_TIMEOUT_SECONDS = 2.0


def build_system_resolver() -> dns.asyncresolver.Resolver:
    """Resolver configured from the host (resolv.conf / registry).

    Falls back to an unconfigured resolver when the host has none; every
    lookup through it then fails fast with NoNameservers.
    """
    try:
        return dns.asyncresolver.Resolver()
    except dns.resolver.NoResolverConfiguration:
        logger.warning("dns_resolver_unconfigured", hint="reverse DNS will echo addresses")
        return dns.asyncresolver.Resolver(configure=False)


class ReverseDNSResolver:
    """address -> hostname, falling back to the address on any miss."""

    def __init__(
        self,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        resolver: Any = None,
    ) -> None:
        self._timeout = timeout_seconds
        self._resolver = resolver if resolver is not None else build_system_resolver()

    @property
    def timeout_seconds(self) -> float:
        return self._timeout

    async def lookup(self, address: str) -> str:
        """First PTR name without the trailing root dot, else the address."""
        try:
            query_name = dns.reversename.from_address(address)
        except (dns.exception.DNSException, ValueError):
            return address

        try:
            answer = await asyncio.wait_for(
                self._resolver.resolve(query_name, "PTR", lifetime=self._timeout),
                timeout=self._timeout,
            )
        except TimeoutError:
            logger.debug("reverse_dns_timeout", address=address, timeout_s=self._timeout)
            return address
        except dns.exception.DNSException as e:
            logger.debug("reverse_dns_failed", address=address, error_type=type(e).__name__)
            return address

        names = [rdata.to_text() for rdata in answer]
        if not names:
            return address
        return names[0].removesuffix(".")
