"""Trusted client IP resolution for inbound web requests.

Walks a fixed list of headers and server variables in trust order and
returns the first candidate that parses as an IP address, is not in the
caller's ignore list and, optionally, is not in a private/reserved IPv4
range. Falls back to the connection-level remote address.

Based on http://www.grantburton.com/2008/11/30/fix-for-incorrect-ip-addresses-in-wordpress-comments/
"""

from __future__ import annotations

import ipaddress
import logging
from collections.abc import Callable, Collection, Mapping
from dataclasses import dataclass, field
from typing import NamedTuple

from fastapi import Request

logger = logging.getLogger(__name__)


class HeaderRule(NamedTuple):
    """A header (or server variable) that may carry the client address."""

    name: str
    comma_delimited: bool
    server_variable: bool


# Trust order, most trusted first
HEADER_RULES: tuple[HeaderRule, ...] = (
    HeaderRule("X-Client-IP", False, False),
    HeaderRule("HTTP_CLIENT_IP", False, True),
    HeaderRule("X-Forwarded-For", True, False),
    HeaderRule("HTTP_X_FORWARDED_FOR", True, True),
    HeaderRule("HTTP_X_FORWARDED", False, True),
    HeaderRule("HTTP_X_CLUSTER_CLIENT_IP", False, True),
    HeaderRule("HTTP_FORWARDED_FOR", False, True),
    HeaderRule("HTTP_FORWARDED", False, True),
    HeaderRule("HTTP_VIA", False, True),
    HeaderRule("REMOTE_ADDR", False, True),
)


def addr_to_int(addr: ipaddress.IPv4Address | ipaddress.IPv6Address) -> int:
    """Pack an address big-endian, one byte per octet."""
    value = 0
    for octet in addr.packed:
        value = (value << 8) + octet
    return value


@dataclass(frozen=True)
class IPRange:
    """Closed interval [start, end] of packed addresses."""

    start: int
    end: int

    @classmethod
    def parse(cls, start: str, end: str) -> IPRange:
        return cls(
            addr_to_int(ipaddress.ip_address(start)),
            addr_to_int(ipaddress.ip_address(end)),
        )

    def encompasses(self, value: int) -> bool:
        return self.start <= value <= self.end


PRIVATE_RANGES: tuple[IPRange, ...] = (
    IPRange.parse("0.0.0.0", "0.255.255.255"),
    IPRange.parse("10.0.0.0", "10.255.255.255"),
    IPRange.parse("127.0.0.0", "127.255.255.255"),
    IPRange.parse("169.254.0.0", "169.254.255.255"),
    IPRange.parse("172.16.0.0", "172.31.255.255"),
    IPRange.parse("192.0.2.0", "192.0.2.255"),
    IPRange.parse("192.168.0.0", "192.168.255.255"),
    IPRange.parse("255.255.255.0", "255.255.255.255"),
)


def is_private(addr: ipaddress.IPv4Address | ipaddress.IPv6Address) -> bool:
    """True if an IPv4 address falls in a private/reserved range.

    IPv6 addresses are never considered private.
    """
    if addr.version != 4:
        return False
    value = addr_to_int(addr)
    return any(r.encompasses(value) for r in PRIVATE_RANGES)


def valid_ip(candidate: str | None, skip_private: bool = False) -> bool:
    """True if the candidate parses as an IP and, optionally, is public."""
    candidate = (candidate or "").strip()
    if not candidate:
        return False
    try:
        addr = ipaddress.ip_address(candidate)
    except ValueError:
        return False
    if skip_private and is_private(addr):
        return False
    return True


def _lookup(values: Mapping[str, str], key: str) -> str | None:
    value = values.get(key)
    if value is not None:
        return value
    lowered = key.lower()
    for k, v in values.items():
        if k.lower() == lowered:
            return v
    return None


@dataclass
class InboundRequest:
    """The parts of an inbound web request the resolver reads.

    ``headers`` are looked up case-insensitively. ``server_variables`` use
    CGI names (``HTTP_X_FORWARDED_FOR``, ``REMOTE_ADDR``). ``remote_addr``
    is the connection-level peer address.
    """

    headers: Mapping[str, str] = field(default_factory=dict)
    server_variables: Mapping[str, str] = field(default_factory=dict)
    remote_addr: str | None = None

    @classmethod
    def from_starlette(cls, request: Request) -> InboundRequest:
        """Adapt a FastAPI/Starlette request, deriving CGI-style server variables."""
        remote_addr = request.client.host if request.client else None
        server_variables = {
            "HTTP_" + name.upper().replace("-", "_"): value
            for name, value in request.headers.items()
        }
        if remote_addr:
            server_variables["REMOTE_ADDR"] = remote_addr
        return cls(
            headers=request.headers,
            server_variables=server_variables,
            remote_addr=remote_addr,
        )

    def value(self, rule: HeaderRule) -> str | None:
        source = self.server_variables if rule.server_variable else self.headers
        return _lookup(source, rule.name)

    @property
    def user_host_address(self) -> str | None:
        if self.remote_addr:
            return self.remote_addr
        return _lookup(self.server_variables, "REMOTE_ADDR")


def client_ip_from_request(
    request: InboundRequest,
    skip_private: bool = False,
    ignore_addresses: Collection[str] = (),
) -> str | None:
    """Return the most trustworthy client IP for a request.

    Args:
        request: Inbound request headers and server variables.
        skip_private: Skip IPv4 addresses in private/reserved ranges.
        ignore_addresses: Exact addresses to skip, e.g. your own proxies.

    Returns:
        The first accepted candidate in trust order, otherwise the raw
        connection-level remote address (unvalidated, may be None).
    """
    for rule in HEADER_RULES:
        raw = request.value(rule)
        if not raw:
            continue

        candidates = raw.split(",") if rule.comma_delimited else [raw]
        for candidate in candidates:
            candidate = candidate.strip()
            if valid_ip(candidate, skip_private) and candidate not in ignore_addresses:
                logger.debug("Client IP %s from %s", candidate, rule.name)
                return candidate

    return request.user_host_address


def client_ip_dependency(
    skip_private: bool = True,
    ignore_addresses: Collection[str] = (),
) -> Callable[[Request], str | None]:
    """Build a FastAPI dependency that resolves the client IP.

    Usage::

        @router.post("/login")
        async def login(ip: str | None = Depends(client_ip_dependency())):
            provider.for_remote_ip(ip)
    """
    ignored = frozenset(ignore_addresses)

    def _dependency(request: Request) -> str | None:
        return client_ip_from_request(
            InboundRequest.from_starlette(request),
            skip_private=skip_private,
            ignore_addresses=ignored,
        )

    return _dependency
