"""Network utility functions for the relay server."""

import socket

import psutil
from loguru import logger

from .types import ServerEndpoint

WILDCARD_HOSTS = ("", "0.0.0.0", "*")
VIRTUAL_INTERFACE_PREFIXES = (
    "bridge",
    "docker",
    "veth",
    "vmnet",
    "vboxnet",
    "virbr",
    "tun",
    "tap",
    "utun",
)


def resolve_endpoint(host: str, port: int) -> ServerEndpoint:
    """
    Resolve the listening address once at startup.

    A failed lookup is logged but not raised: the caller goes on to open the
    listening socket with the unresolved host and lets the bind decide.

    Example:
        >>> resolve_endpoint("0.0.0.0", 22297)
        ServerEndpoint(host='0.0.0.0', port=22297, resolved_ip='0.0.0.0')
    """
    lookup_host = None if host in WILDCARD_HOSTS else host
    try:
        infos = socket.getaddrinfo(
            lookup_host,
            port,
            socket.AF_INET,
            socket.SOCK_STREAM,
            0,
            socket.AI_PASSIVE,
        )
    except (socket.gaierror, UnicodeError) as e:
        logger.error(f"Failed to resolve the server host '{host}': {e}")
        return ServerEndpoint(host=host, port=port)

    resolved_ip = infos[0][4][0]
    logger.info(f"Successfully resolved server host to IP: {resolved_ip} port {port}")
    return ServerEndpoint(host=host, port=port, resolved_ip=resolved_ip)


def _reachable(ip: str) -> bool:
    return ip != "127.0.0.1" and not ip.startswith("169.254.")


def get_local_ip_addresses() -> list[str]:
    """IPv4 addresses for the startup banner, skipping virtual and loopback interfaces."""
    try:
        interfaces = psutil.net_if_addrs()
    except (OSError, psutil.Error) as e:
        logger.warning(f"Failed to get local IP addresses: {e}")
        return []

    return [
        address.address
        for name, addresses in interfaces.items()
        if not name.lower().startswith(VIRTUAL_INTERFACE_PREFIXES)
        for address in addresses
        if address.family == socket.AF_INET and _reachable(address.address)
    ]
