"""ipscope: caller address, location and hostname echo service."""

__version__ = "0.1.0"
