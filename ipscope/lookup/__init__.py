"""Lookups: caller address, geo/ISP enrichment, reverse DNS."""

from ipscope.lookup.client import client_address, resolve_client_address
from ipscope.lookup.geo import GeoEnricher, GeoLocation
from ipscope.lookup.rdns import ReverseDNSResolver

__all__ = [
    "GeoEnricher",
    "GeoLocation",
    "ReverseDNSResolver",
    "client_address",
    "resolve_client_address",
]
