"""Outbound URL guard: keeps checks away from internal addresses and ports."""
import asyncio
import ipaddress
import logging
import socket
from typing import Awaitable, Callable, Iterable
from urllib.parse import urlsplit

from sitewatch.errors import BlockedURLError

logger = logging.getLogger("sitewatch.security")

ALLOWED_PORTS = frozenset({80, 443, 8080, 8443})

# Private, loopback, link-local and reserved ranges
BLOCKED_NETWORKS = [
    ipaddress.ip_network("0.0.0.0/8"),
    ipaddress.ip_network("10.0.0.0/8"),
    ipaddress.ip_network("127.0.0.0/8"),
    ipaddress.ip_network("169.254.0.0/16"),  # Cloud metadata (AWS, etc.)
    ipaddress.ip_network("172.16.0.0/12"),
    ipaddress.ip_network("192.168.0.0/16"),
    ipaddress.ip_network("224.0.0.0/4"),
    ipaddress.ip_network("240.0.0.0/4"),
    ipaddress.ip_network("::/128"),
    ipaddress.ip_network("::1/128"),
    ipaddress.ip_network("fc00::/7"),
    ipaddress.ip_network("fe80::/10"),
]

METADATA_ADDRESSES = {
    ipaddress.ip_address("169.254.169.254"),
    ipaddress.ip_address("169.254.170.2"),  # AWS ECS
    ipaddress.ip_address("100.100.100.200"),  # Alibaba Cloud
}

LOCALHOST_NAMES = {
    "localhost",
    "localhost.localdomain",
    "ip6-localhost",
    "ip6-loopback",
}

Resolver = Callable[[str, int], Awaitable[Iterable[str]]]


async def resolve_host(host: str, port: int) -> list[str]:
    infos = await asyncio.get_running_loop().getaddrinfo(host, port, type=socket.SOCK_STREAM)
    return [info[4][0] for info in infos]


def is_blocked_address(address: str) -> bool:
    ip = ipaddress.ip_address(address)
    if ip.version == 6 and ip.ipv4_mapped:
        ip = ip.ipv4_mapped
    if ip in METADATA_ADDRESSES or ip.is_multicast or ip.is_reserved:
        return True
    return any(ip.version == net.version and ip in net for net in BLOCKED_NETWORKS)


class UrlGuard:
    """
    Rejects URLs whose port is not allowed or whose host is, or resolves
    to, a private address.

    A host that does not resolve is let through; the request itself then
    fails as a normal ``down`` check.
    """

    def __init__(
        self,
        allowed_ports: Iterable[int] = ALLOWED_PORTS,
        allow_private: bool = False,
        resolver: Resolver = resolve_host,
    ):
        self.allowed_ports = frozenset(allowed_ports)
        self.allow_private = allow_private
        self._resolver = resolver

    async def check(self, url: str) -> None:
        parts = urlsplit(url)
        try:
            port = parts.port or (443 if parts.scheme == "https" else 80)
        except ValueError as e:
            raise BlockedURLError(url, f"Invalid port: {e}") from e
        if port not in self.allowed_ports:
            raise BlockedURLError(url, f"Port {port} is not allowed")

        host = (parts.hostname or "").rstrip(".").lower()
        if not host:
            raise BlockedURLError(url, "URL has no host")
        if host in LOCALHOST_NAMES:
            raise BlockedURLError(url, f"Localhost access not allowed: {host}")
        if self.allow_private:
            return

        try:
            addresses = [str(ipaddress.ip_address(host))]
        except ValueError:
            try:
                addresses = list(await self._resolver(host, port))
            except OSError as e:
                logger.debug(f"Could not resolve {host}: {e}")
                return

        for address in addresses:
            if is_blocked_address(address):
                raise BlockedURLError(url, f"{host} resolves to blocked address {address}")
