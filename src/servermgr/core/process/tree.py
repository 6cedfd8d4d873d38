"""Process tree termination.

A spawned server usually runs below a shell, and frameworks happily fork
workers of their own, so stopping only the root pid leaves orphans behind.
Descendants are collected with psutil *before* the root is signalled, since
they get re-parented once it dies.
"""
from __future__ import annotations

import asyncio
import logging
import os
import signal

import psutil

logger = logging.getLogger(__name__)

DEFAULT_GRACE_SECONDS = 3.0


def _collect_tree(pid: int) -> list[psutil.Process]:
    root = psutil.Process(pid)
    try:
        children = root.children(recursive=True)
    except (psutil.NoSuchProcess, psutil.AccessDenied):
        children = []
    return [root, *children]


def kill_process_group(pgid: int, sig: int = signal.SIGTERM) -> bool:
    """Signal a process group; returns False when there was nothing to signal."""
    if os.name != "posix" or pgid <= 0:
        return False
    try:
        os.killpg(pgid, sig)
    except (ProcessLookupError, PermissionError):
        return False
    return True


def terminate_tree(pid: int, *, grace_seconds: float = DEFAULT_GRACE_SECONDS) -> bool:
    """Terminate ``pid`` and every descendant; SIGKILL whatever outlives the grace period.

    Returns True when no member of the tree is left alive. Raises
    ``psutil.NoSuchProcess`` when the root is already gone.
    """
    try:
        procs = _collect_tree(pid)
    except psutil.NoSuchProcess:
        # The root is gone but its session may still hold detached descendants.
        kill_process_group(pid)
        raise

    # Spawned servers are session leaders, so the group reaches detached grandchildren too.
    kill_process_group(pid)
    for proc in procs:
        try:
            proc.terminate()
        except psutil.NoSuchProcess:
            pass

    _, alive = psutil.wait_procs(procs, timeout=max(0.1, float(grace_seconds)))
    for proc in alive:
        logger.debug(f"Process {proc.pid} ignored SIGTERM, sending SIGKILL")
        try:
            proc.kill()
        except psutil.NoSuchProcess:
            pass
    if alive:
        _, alive = psutil.wait_procs(alive, timeout=1.0)
    return not alive


async def terminate_tree_async(pid: int, *, grace_seconds: float = DEFAULT_GRACE_SECONDS) -> bool:
    return await asyncio.to_thread(terminate_tree, pid, grace_seconds=grace_seconds)


__all__ = ["DEFAULT_GRACE_SECONDS", "kill_process_group", "terminate_tree", "terminate_tree_async"]
