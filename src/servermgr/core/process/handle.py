from __future__ import annotations

import asyncio
import logging
import os
import subprocess
import sys
from contextlib import suppress
from typing import IO, Any

import psutil

from ..exceptions import NoCommandError, SpawnError
from ..models import ServerConfig
from . import exit_hooks
from .tree import DEFAULT_GRACE_SECONDS, kill_process_group, terminate_tree, terminate_tree_async

logger = logging.getLogger(__name__)

DEFAULT_OUTPUT_PREFIX = "[servermgr] "

# Debug output relays read whole lines; allow long ones.
_STREAM_LIMIT = 1024 * 1024


def _popen_kwargs() -> dict[str, Any]:
    if os.name == "posix":
        return {"start_new_session": True}
    if os.name == "nt":
        creationflags = getattr(subprocess, "CREATE_NEW_PROCESS_GROUP", None)
        if isinstance(creationflags, int):
            return {"creationflags": creationflags}
    return {}


def build_env(overrides: dict[str, str] | None) -> dict[str, str]:
    env = dict(os.environ)
    env.update(overrides or {})
    return env


async def relay_output(stream: asyncio.StreamReader, *, prefix: str, sink: IO[str] | None = None) -> None:
    """Copy a child's output line by line onto ``sink`` (stdout by default), prefixed."""
    out = sink if sink is not None else sys.stdout
    while True:
        line = await stream.readline()
        if not line:
            return
        out.write(prefix + line.decode(errors="replace"))
        out.flush()


class ManagedProcess:
    """A spawned server process and the guarantee that its whole tree dies with it.

    Two subscriptions tear the tree down: a watcher on the child's own exit
    (which cleans up leftover descendants) and an exit hook on the controlling
    process. ``stop()`` removes both before killing, so a self-triggered kill
    never re-enters the cleanup path.
    """

    def __init__(
        self,
        index: int,
        process: asyncio.subprocess.Process,
        config: ServerConfig,
        *,
        grace_seconds: float = DEFAULT_GRACE_SECONDS,
        output_prefix: str = DEFAULT_OUTPUT_PREFIX,
    ) -> None:
        self.index = index
        self.process = process
        self.config = config
        self._grace_seconds = grace_seconds
        self._stopping = False
        self._stop_task: asyncio.Task[None] | None = None
        self._relay: asyncio.Task[None] | None = None

        if config.debug and process.stdout is not None:
            logger.info(f"Server {index} output:")
            self._relay = asyncio.create_task(relay_output(process.stdout, prefix=output_prefix))

        self._remove_exit_hook = exit_hooks.on_exit(self._on_controller_exit)
        self._watcher: asyncio.Task[None] = asyncio.create_task(self._watch_exit())

    def __repr__(self) -> str:
        return f"<ManagedProcess index={self.index} pid={self.pid} returncode={self.returncode}>"

    @property
    def pid(self) -> int:
        return self.process.pid

    @property
    def returncode(self) -> int | None:
        return self.process.returncode

    @property
    def stopped(self) -> bool:
        return self._stopping

    def is_running(self) -> bool:
        return self.process.returncode is None

    def _on_controller_exit(self, code: int | None) -> None:
        # Runs synchronously from atexit or a signal handler: no event loop available.
        if self._stopping:
            return
        self._stopping = True
        try:
            terminate_tree(self.pid, grace_seconds=min(self._grace_seconds, 1.0))
        except psutil.Error:
            pass

    async def _watch_exit(self) -> None:
        code = await self.process.wait()
        if self._stopping:
            return
        self._remove_exit_hook()
        # The shell (or server) died on its own; take down whatever it left behind.
        kill_process_group(self.pid)
        logger.warning(f"Server {self.index} (`{self.config.command}`) exited with code {code}")

    async def stop(self) -> None:
        """Stop the process tree. Safe to call any number of times."""
        if self._stop_task is None:
            self._stop_task = asyncio.ensure_future(self._stop())
        await asyncio.shield(self._stop_task)

    async def _stop(self) -> None:
        self._stopping = True
        self._remove_exit_hook()
        self._watcher.cancel()
        with suppress(asyncio.CancelledError):
            await self._watcher

        if self.process.returncode is None:
            try:
                await terminate_tree_async(self.pid, grace_seconds=self._grace_seconds)
            except psutil.NoSuchProcess:
                pass
            except Exception as exc:  # noqa: BLE001 - termination is best-effort
                logger.warning(f"Failed to terminate server {self.index} (pid {self.pid}): {exc}")
            with suppress(asyncio.TimeoutError):
                await asyncio.wait_for(self.process.wait(), timeout=2.0)
        else:
            kill_process_group(self.pid)

        if self._relay is not None:
            self._relay.cancel()
            with suppress(asyncio.CancelledError):
                await self._relay


async def spawn_process(
    config: ServerConfig,
    index: int,
    *,
    grace_seconds: float = DEFAULT_GRACE_SECONDS,
    output_prefix: str = DEFAULT_OUTPUT_PREFIX,
) -> ManagedProcess:
    """Start ``config.command`` through the shell as the leader of a new session.

    stderr is inherited from the caller; stdout is relayed with a prefix in
    debug mode and discarded otherwise.
    """
    if not config.command or not config.command.strip():
        raise NoCommandError(index=index)

    cwd = config.cwd or os.getcwd()
    try:
        process = await asyncio.create_subprocess_shell(  # noqa: S604
            config.command,
            cwd=cwd,
            env=build_env(config.env),
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE if config.debug else subprocess.DEVNULL,
            stderr=None,
            limit=_STREAM_LIMIT,
            **_popen_kwargs(),
        )
    except OSError as exc:
        raise SpawnError(config.command, str(exc)) from exc

    logger.debug(f"Spawned server {index} (pid {process.pid}): {config.command}")
    return ManagedProcess(
        index,
        process,
        config,
        grace_seconds=grace_seconds,
        output_prefix=output_prefix,
    )


__all__ = ["DEFAULT_OUTPUT_PREFIX", "ManagedProcess", "build_env", "relay_output", "spawn_process"]
