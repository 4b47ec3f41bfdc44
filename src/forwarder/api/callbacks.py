"""Callback URI validation."""

import asyncio
import ipaddress
import logging
import socket
from typing import Optional, Union

import httpx

from forwarder.errors import InvalidCallbackURIError

logger = logging.getLogger(__name__)

ALLOWED_SCHEMES = ("http", "https")

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]


def parse_ip(host: str) -> Optional[IPAddress]:
    """Parse a host as an IP address, including shorthand IPv4 forms.

    Resolvers accept ``127.1``, ``2130706433`` and ``0x7f000001`` as
    ``127.0.0.1``, so numeric hosts are canonicalized the same way.
    """
    try:
        ip = ipaddress.ip_address(host)
    except ValueError:
        try:
            ip = ipaddress.IPv4Address(socket.inet_aton(host))
        except (OSError, ValueError):
            return None
    if ip.version == 6 and ip.ipv4_mapped is not None:
        return ip.ipv4_mapped
    return ip


def is_local_host(host: str) -> bool:
    """True for localhost names and loopback, unspecified or link-local IPs."""
    host = host.strip("[]").rstrip(".").lower()
    if host == "localhost" or host.endswith(".localhost"):
        return True
    ip = parse_ip(host)
    if ip is None:
        return False
    return ip.is_loopback or ip.is_unspecified or ip.is_link_local


async def resolve_host(host: str, port: int) -> list[str]:
    """Resolve a host to the IP addresses it points at."""
    loop = asyncio.get_running_loop()
    infos = await loop.getaddrinfo(host, port, type=socket.SOCK_STREAM)
    return sorted({info[4][0] for info in infos})


async def normalize_callback_uri(
    uri: str, allow_local: bool = False, dns_check: bool = False
) -> str:
    """Validate a callback URI and return it in canonical form.

    A URI without a scheme is assumed to be https.

    Raises:
        InvalidCallbackURIError: If the URI has no host or points at a local host
    """
    uri = uri.strip()
    if not uri:
        raise InvalidCallbackURIError("Callback URI is empty")
    if "://" not in uri:
        uri = f"https://{uri}"

    try:
        url = httpx.URL(uri)
    except httpx.InvalidURL as e:
        raise InvalidCallbackURIError(f"Callback URI {uri!r} is invalid: {e}") from e

    if url.scheme not in ALLOWED_SCHEMES:
        raise InvalidCallbackURIError(f"Callback scheme {url.scheme!r} is not allowed")
    if not url.host:
        raise InvalidCallbackURIError(f"Callback URI {uri!r} has no host")

    if allow_local:
        return str(url)

    if is_local_host(url.host):
        raise InvalidCallbackURIError(f"Callback host {url.host} is local")

    if dns_check:
        port = url.port or (443 if url.scheme == "https" else 80)
        try:
            addresses = await resolve_host(url.host, port)
        except (socket.gaierror, UnicodeError) as e:
            raise InvalidCallbackURIError(f"Callback host {url.host} does not resolve: {e}") from e
        for address in addresses:
            if is_local_host(address):
                logger.warning(f"Callback host {url.host} resolves to local address {address}")
                raise InvalidCallbackURIError(f"Callback host {url.host} resolves to {address}")

    return str(url)
