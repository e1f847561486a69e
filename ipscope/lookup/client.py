# ─────────────────────────────────────────────────────────────────────────────
# Client Address Resolution: X-Forwarded-For first, then the socket peer
# ─────────────────────────────────────────────────────────────────────────────
# Trust boundary: X-Forwarded-For is taken at face value. Any caller can set
# it, so behind no proxy (or an untrusted one) the address is spoofable.
# There is no allow-list of upstream proxies.
# ─────────────────────────────────────────────────────────────────────────────

from collections.abc import Mapping

from starlette.requests import HTTPConnection

FORWARDED_FOR_HEADER = "x-forwarded-for"
UNKNOWN_ADDRESS = "unknown"


def split_host_port(hostport: str) -> tuple[str, str]:
    """Split "host:port" or "[v6host]:port". Raises ValueError otherwise.

    A bare IPv6 address ("::1") has too many colons and is rejected, as is
    anything without a port separator.
    """
    if hostport.startswith("["):
        end = hostport.find("]")
        if end < 0 or hostport[end + 1 : end + 2] != ":":
            raise ValueError(f"missing port in address: {hostport!r}")
        return hostport[1:end], hostport[end + 2 :]

    host, sep, port = hostport.rpartition(":")
    if not sep:
        raise ValueError(f"missing port in address: {hostport!r}")
    if ":" in host:
        raise ValueError(f"too many colons in address: {hostport!r}")
    return host, port


def resolve_client_address(headers: Mapping[str, str], peer: str) -> str:
    """Best-effort caller address. Never raises.

    1. First entry of X-Forwarded-For, trimmed, if non-empty.
    2. Host part of the peer address.
    3. The peer address unchanged when it has no port (unix socket, junk).
    """
    forwarded = headers.get(FORWARDED_FOR_HEADER, "")
    if forwarded:
        first = forwarded.split(",", 1)[0].strip()
        if first:
            return first

    try:
        host, _ = split_host_port(peer)
    except ValueError:
        return peer or UNKNOWN_ADDRESS
    return host or peer


def peer_address(conn: HTTPConnection) -> str:
    """Format the ASGI client tuple back into a "host:port" peer string."""
    if conn.client is None:
        return ""
    host, port = conn.client
    if ":" in host:
        return f"[{host}]:{port}"
    return f"{host}:{port}"


def client_address(conn: HTTPConnection) -> str:
    """resolve_client_address() for a Starlette request or websocket."""
    return resolve_client_address(conn.headers, peer_address(conn))
