# Geo/ISP enrichment over two optional MaxMind-format databases.
# Readers are opened once at startup and only read afterwards; the C
# extension reader is safe for concurrent lookups from the thread pool.

from __future__ import annotations

import ipaddress
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import geoip2.database
import geoip2.errors
import maxminddb
import structlog

from ipscope.exceptions import DatabaseOpenError

logger = structlog.get_logger(__name__)

UNKNOWN_DETAILS = "Unknown"
UNKNOWN_COUNTRY_CODE = "XX"
_DETAILS_SEPARATOR = ", "

# Not found, wrong database type for the query, a malformed address, or a
# corrupt data section. Any of these drops that database's contribution.
_LOOKUP_MISSES = (
    geoip2.errors.GeoIP2Error,
    maxminddb.InvalidDatabaseError,
    TypeError,
    ValueError,
)


@dataclass(frozen=True)
class CityMatch:
    """What the city database knows about an address."""

    city: str = ""
    country: str = ""
    country_code: str = ""
    state: str = ""


@dataclass(frozen=True)
class OrgMatch:
    """What the organization database knows about an address."""

    isp: str = ""


def join_details(city: str, state: str, country: str) -> str:
    """Human-readable "City, ST, Country" from whichever parts are set."""
    parts = [p for p in (city, state, country) if p]
    return _DETAILS_SEPARATOR.join(parts) if parts else UNKNOWN_DETAILS


@dataclass(frozen=True)
class GeoLocation:
    """Merged enrichment for one address. Sentinels mark missing data."""

    org: str = ""
    details: str = UNKNOWN_DETAILS
    country_code: str = UNKNOWN_COUNTRY_CODE
    city: str = ""
    country: str = ""
    state: str = ""

    @classmethod
    def from_matches(cls, city: CityMatch | None, org: OrgMatch | None) -> GeoLocation:
        """Combine per-database results, defaulting whatever is missing."""
        org_name = org.isp if org is not None else ""
        if city is None:
            return cls(org=org_name)
        return cls(
            org=org_name,
            details=join_details(city.city, city.state, city.country),
            country_code=city.country_code or UNKNOWN_COUNTRY_CODE,
            city=city.city,
            country=city.country,
            state=city.state,
        )


def open_reader(path: Path, kind: str) -> geoip2.database.Reader | None:
    """Open a database if the file exists.

    Returns None when the file is absent (a supported configuration).
    Raises DatabaseOpenError when it exists but is unreadable.
    """
    if not path.exists():
        logger.warning(
            "database_not_found",
            kind=kind,
            path=str(path),
            hint="GeoIP features limited",
        )
        return None
    try:
        reader = geoip2.database.Reader(str(path))
    except (OSError, ValueError, RuntimeError) as e:
        raise DatabaseOpenError(str(path), str(e)) from e
    logger.info("database_opened", kind=kind, path=str(path), type=reader.metadata().database_type)
    return reader


class GeoEnricher:
    """City + organization lookups. Either reader may be None."""

    def __init__(self, city_reader: Any = None, org_reader: Any = None) -> None:
        self._city_reader = city_reader
        self._org_reader = org_reader

    @classmethod
    def from_paths(cls, city_path: Path, org_path: Path) -> GeoEnricher:
        """Open both databases, skipping any that are missing or unreadable."""
        readers: list[Any] = []
        for path, kind in ((city_path, "city"), (org_path, "org")):
            try:
                readers.append(open_reader(path, kind))
            except DatabaseOpenError as e:
                logger.warning("database_open_failed", kind=kind, error=e.message)
                readers.append(None)
        return cls(city_reader=readers[0], org_reader=readers[1])

    @property
    def loaded(self) -> dict[str, bool]:
        return {"city": self._city_reader is not None, "org": self._org_reader is not None}

    def close(self) -> None:
        for reader in (self._city_reader, self._org_reader):
            if reader is not None:
                reader.close()

    def lookup(self, address: str) -> GeoLocation:
        """Enrich an address. Unparseable input gets sentinels only."""
        try:
            ip = ipaddress.ip_address(address)
        except ValueError:
            return GeoLocation()

        return GeoLocation.from_matches(self._lookup_city(ip), self._lookup_org(ip))

    def _lookup_city(self, ip: ipaddress.IPv4Address | ipaddress.IPv6Address) -> CityMatch | None:
        if self._city_reader is None:
            return None
        try:
            record = self._city_reader.city(ip)
        except _LOOKUP_MISSES:
            return None

        state = ""
        if record.subdivisions:
            state = record.subdivisions[0].iso_code or ""
        return CityMatch(
            city=record.city.names.get("en", ""),
            country=record.country.names.get("en", ""),
            country_code=record.country.iso_code or "",
            state=state,
        )

    def _lookup_org(self, ip: ipaddress.IPv4Address | ipaddress.IPv6Address) -> OrgMatch | None:
        if self._org_reader is None:
            return None
        try:
            record = self._org_reader.enterprise(ip)
        except _LOOKUP_MISSES:
            return None
        return OrgMatch(isp=record.traits.isp or "")
