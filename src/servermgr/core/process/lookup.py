"""Find the processes that hold a TCP port."""
from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass

import psutil

from .tree import DEFAULT_GRACE_SECONDS, terminate_tree

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PortOwner:
    pid: int
    name: str
    port: int


def _process_name(pid: int) -> str:
    try:
        return psutil.Process(pid).name()
    except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
        return "<unknown>"


def find_processes_by_port(port: int) -> list[PortOwner]:
    """Return the processes listening on (or bound to) ``port``.

    The calling process is never reported. On some platforms psutil needs
    elevated privileges to see sockets of other users; those are skipped.
    """
    try:
        connections = psutil.net_connections(kind="tcp")
    except psutil.AccessDenied:
        logger.warning("Not allowed to list sockets; run with elevated privileges to find the port owner")
        return []

    own_pid = os.getpid()
    owners: dict[int, PortOwner] = {}
    for conn in connections:
        if not conn.laddr or conn.laddr.port != port or conn.pid is None:
            continue
        if conn.status not in (psutil.CONN_LISTEN, psutil.CONN_NONE):
            continue
        if conn.pid == own_pid or conn.pid in owners:
            continue
        owners[conn.pid] = PortOwner(pid=conn.pid, name=_process_name(conn.pid), port=port)
    return sorted(owners.values(), key=lambda owner: owner.pid)


async def find_processes_by_port_async(port: int) -> list[PortOwner]:
    return await asyncio.to_thread(find_processes_by_port, port)


async def kill_owner(owner: PortOwner, *, grace_seconds: float = DEFAULT_GRACE_SECONDS) -> bool:
    """Terminate a port owner (and its descendants), returning True once it is gone."""
    logger.info(f"Killing process {owner.name} (pid {owner.pid})...")
    try:
        gone = await asyncio.to_thread(terminate_tree, owner.pid, grace_seconds=grace_seconds)
    except psutil.NoSuchProcess:
        gone = True
    except psutil.Error as exc:
        logger.warning(f"Could not kill process {owner.name} (pid {owner.pid}): {exc}")
        return False
    if gone:
        logger.info(f"Successfully killed process {owner.name}")
    else:
        logger.warning(f"Process {owner.name} (pid {owner.pid}) survived termination")
    return gone


async def kill_port_owners(port: int, *, grace_seconds: float = DEFAULT_GRACE_SECONDS) -> list[PortOwner]:
    """Find and kill every process bound to ``port``; returns the owners that were found."""
    owners = await find_processes_by_port_async(port)
    for owner in owners:
        logger.info(f'Detecting a process "{owner.name}" running on port "{port}"')
        await kill_owner(owner, grace_seconds=grace_seconds)
    return owners


__all__ = [
    "PortOwner",
    "find_processes_by_port",
    "find_processes_by_port_async",
    "kill_owner",
    "kill_port_owners",
]
