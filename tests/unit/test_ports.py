from __future__ import annotations

import asyncio
import socket

from servermgr.core.ports import is_port_occupied


def test_free_port_is_not_occupied(port: int) -> None:
    assert asyncio.run(is_port_occupied("127.0.0.1", port, 0.5)) is False


def test_listening_port_is_occupied() -> None:
    async def scenario() -> bool:
        server = await asyncio.start_server(lambda r, w: w.close(), "127.0.0.1", 0)
        port = server.sockets[0].getsockname()[1]
        async with server:
            return await is_port_occupied("127.0.0.1", port, 0.5)

    assert asyncio.run(scenario()) is True


def test_bound_but_not_listening_port_is_occupied() -> None:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        port = sock.getsockname()[1]
        assert asyncio.run(is_port_occupied("127.0.0.1", port, 0.5)) is True


def test_foreign_listener_is_detected(occupant, port: int) -> None:
    assert asyncio.run(is_port_occupied("127.0.0.1", port, 0.5)) is True


def test_unresolvable_host_is_not_occupied(port: int) -> None:
    assert asyncio.run(is_port_occupied("no-such-host.invalid", port, 0.5)) is False
