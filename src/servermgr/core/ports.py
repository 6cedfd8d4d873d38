"""Point-in-time TCP port occupancy check."""
from __future__ import annotations

import asyncio
import errno
import logging
import socket
from contextlib import suppress

logger = logging.getLogger(__name__)

DEFAULT_PROBE_TIMEOUT = 1.0


async def _accepts_connection(family: int, address: tuple, timeout: float) -> bool:
    host, port = address[0], address[1]
    try:
        _, writer = await asyncio.wait_for(
            asyncio.open_connection(host, port, family=family),
            timeout=timeout,
        )
    except (OSError, asyncio.TimeoutError):
        return False
    writer.close()
    with suppress(OSError):
        await writer.wait_closed()
    return True


def _bind_conflicts(family: int, address: tuple) -> bool:
    sock = socket.socket(family, socket.SOCK_STREAM)
    try:
        if hasattr(socket, "SO_REUSEADDR"):
            # Matches what servers do, so lingering TIME_WAIT sockets do not count as taken.
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind(address)
    except OSError as exc:
        if exc.errno == errno.EADDRINUSE:
            return True
        logger.debug(f"Bind probe on {address} failed: {exc}")
        return False
    finally:
        sock.close()
    return False


async def is_port_occupied(host: str, port: int, timeout: float = DEFAULT_PROBE_TIMEOUT) -> bool:
    """Return True if something accepts connections on, or holds the bind of, ``host:port``.

    A single attempt bounded by ``timeout`` seconds per address; this is a
    snapshot, not a wait.
    """
    loop = asyncio.get_running_loop()
    try:
        infos = await loop.getaddrinfo(host, port, type=socket.SOCK_STREAM)
    except socket.gaierror as exc:
        logger.debug(f"Cannot resolve {host}: {exc}")
        return False

    addresses = list(dict.fromkeys((family, sockaddr) for family, _, _, _, sockaddr in infos))
    for family, sockaddr in addresses:
        if await _accepts_connection(family, sockaddr, timeout):
            return True
    return any(_bind_conflicts(family, sockaddr) for family, sockaddr in addresses)


__all__ = ["DEFAULT_PROBE_TIMEOUT", "is_port_occupied"]
