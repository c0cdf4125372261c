"""SSRF gate for submitted URLs.

:class:`UrlSafetyValidator` decides whether a URL may be fetched by the
service.  It never sends HTTP traffic; it only parses the URL and resolves the
host name.  Rules, applied in order:

1. the URL must be absolute, with a host, using ``http`` or ``https``;
2. the host must not be a cloud metadata name
   (``metadata.google.internal``, ``metadata``);
3. the host must resolve to at least one address;
4. every resolved address must be public: loopback, link-local, private,
   unique-local, multicast, unspecified, reserved and metadata addresses are
   refused, including their IPv4-mapped IPv6 forms.

Checking every address (not only the first) defends against a DNS answer that
mixes a public and an internal address.  The resolved addresses are returned
on the :class:`SafeUrl` so fetchers can connect to exactly the address that
was checked (see :meth:`SafeUrl.pinned_request`).
"""

from __future__ import annotations

import asyncio
import ipaddress
import logging
import socket
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any, Optional, Union
from urllib.parse import urlsplit, urlunsplit

from read_later.core.exceptions import RejectionReason, UnsafeUrlError
from read_later.scraper.config import METADATA_ADDRESSES, METADATA_HOSTNAMES
from read_later.scraper.urls import check_boundary

logger = logging.getLogger(__name__)

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]

#: ``resolver(host, port)`` returning ``socket.getaddrinfo``-shaped tuples.
Resolver = Callable[[str, int], Iterable[tuple[Any, ...]]]

_DEFAULT_PORTS = {"http": 80, "https": 443}


def default_resolver(host: str, port: int) -> list[tuple[Any, ...]]:
    """Resolve ``host`` with the system resolver (blocking)."""
    return socket.getaddrinfo(host, port, proto=socket.IPPROTO_TCP)


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PinnedRequest:
    """Connection details that bind a request to a validated address.

    Attributes:
        url: The URL with its host replaced by the validated IP literal.
        host_header: Value for the ``Host`` header (original host and port).
        sni_hostname: Host name to present for TLS SNI and certificate
            verification, or ``None`` when the original host is an IP literal.
    """

    url: str
    host_header: str
    sni_hostname: Optional[str]


@dataclass(frozen=True)
class SafeUrl:
    """A URL that passed the safety gate, with the addresses it resolved to.

    Attributes:
        url: The validated URL (as submitted, whitespace stripped).
        scheme: Lower-cased scheme.
        hostname: Lower-cased host name without a trailing dot.
        port: Explicit or default port.
        addresses: Every address the host resolved to, all of them safe.
    """

    url: str
    scheme: str
    hostname: str
    port: int
    addresses: tuple[str, ...]

    @property
    def is_ip_literal(self) -> bool:
        return _parse_ip(self.hostname) is not None

    def pinned_request(self, address: Optional[str] = None) -> PinnedRequest:
        """Return the request details for connecting to a validated address.

        Args:
            address: One of :attr:`addresses`.  Defaults to the first.
        """
        chosen = address or self.addresses[0]
        if chosen not in self.addresses:
            raise ValueError(f"{chosen} is not a validated address for {self.hostname}")

        parts = urlsplit(self.url)
        default_port = _DEFAULT_PORTS[self.scheme]
        ip_host = f"[{chosen}]" if ":" in chosen else chosen
        original_host = f"[{self.hostname}]" if ":" in self.hostname else self.hostname
        if self.port != default_port:
            netloc = f"{ip_host}:{self.port}"
            host_header = f"{original_host}:{self.port}"
        else:
            netloc = ip_host
            host_header = original_host

        pinned_url = urlunsplit((self.scheme, netloc, parts.path or "/", parts.query, ""))
        return PinnedRequest(
            url=pinned_url,
            host_header=host_header,
            sni_hostname=None if self.is_ip_literal else self.hostname,
        )


# ---------------------------------------------------------------------------
# Address policy
# ---------------------------------------------------------------------------


def _parse_ip(value: str) -> Optional[IPAddress]:
    try:
        return ipaddress.ip_address(value.split("%", 1)[0])
    except ValueError:
        return None


def classify_address(ip: IPAddress) -> Optional[RejectionReason]:
    """Return why ``ip`` may not be contacted, or ``None`` when it is public."""
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        return classify_address(ip.ipv4_mapped)
    if str(ip) in METADATA_ADDRESSES:
        return RejectionReason.METADATA_HOST
    if (
        ip.is_loopback
        or ip.is_link_local
        or ip.is_private
        or ip.is_multicast
        or ip.is_unspecified
        or ip.is_reserved
        or not ip.is_global
    ):
        return RejectionReason.PRIVATE_ADDRESS
    return None


# ---------------------------------------------------------------------------
# Validator
# ---------------------------------------------------------------------------


class UrlSafetyValidator:
    """Decide whether a URL is safe for the service to fetch.

    Args:
        resolver: Name resolution function.  Defaults to
            :func:`socket.getaddrinfo`; tests inject a deterministic fake.
    """

    def __init__(self, resolver: Resolver = default_resolver) -> None:
        self._resolver = resolver

    def validate(self, raw_url: str) -> SafeUrl:
        """Validate ``raw_url`` and return it with its resolved addresses.

        Blocking: performs DNS resolution.  Use :meth:`validate_async` from
        async code.

        Raises:
            UnsafeUrlError: With the :class:`RejectionReason` of the first
                rule the URL breaks.
        """
        url = check_boundary(raw_url)
        parts = urlsplit(url)
        scheme = parts.scheme.lower()
        hostname = (parts.hostname or "").lower().rstrip(".")
        port = parts.port or _DEFAULT_PORTS[scheme]

        if not hostname:
            raise UnsafeUrlError(RejectionReason.INVALID_URL, url=url, detail="missing host")
        if hostname in METADATA_HOSTNAMES or hostname in METADATA_ADDRESSES:
            logger.warning("scraper: refusing metadata host %s", hostname)
            raise UnsafeUrlError(RejectionReason.METADATA_HOST, url=url, detail=hostname)

        addresses = self._resolve(url, hostname, port)
        for address in addresses:
            ip = _parse_ip(address)
            reason = (
                RejectionReason.UNRESOLVABLE_HOST if ip is None else classify_address(ip)
            )
            if reason is not None:
                logger.warning(
                    "scraper: refusing %s, %s resolves to %s (%s)",
                    url,
                    hostname,
                    address,
                    reason.value,
                )
                raise UnsafeUrlError(reason, url=url, detail=address)

        return SafeUrl(
            url=url,
            scheme=scheme,
            hostname=hostname,
            port=port,
            addresses=addresses,
        )

    async def validate_async(self, raw_url: str) -> SafeUrl:
        """Run :meth:`validate` in a worker thread."""
        return await asyncio.to_thread(self.validate, raw_url)

    def _resolve(self, url: str, hostname: str, port: int) -> tuple[str, ...]:
        literal = _parse_ip(hostname)
        if literal is not None:
            return (str(literal),)

        try:
            infos = list(self._resolver(hostname, port))
        except (socket.gaierror, UnicodeError, OSError) as exc:
            logger.info("scraper: cannot resolve %s: %s", hostname, exc)
            raise UnsafeUrlError(
                RejectionReason.UNRESOLVABLE_HOST, url=url, detail=hostname
            ) from exc

        addresses: list[str] = []
        for info in infos:
            sockaddr = info[4]
            address = str(sockaddr[0]).split("%", 1)[0]
            if address not in addresses:
                addresses.append(address)

        if not addresses:
            raise UnsafeUrlError(RejectionReason.UNRESOLVABLE_HOST, url=url, detail=hostname)
        return tuple(addresses)
