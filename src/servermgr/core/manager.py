"""Start, await and stop the servers of one test session.

Every configured entry runs through the same state machine, concurrently
with its siblings::

    PENDING → CONFLICT_CHECK → SKIPPED | SPAWNING → WAITING_READY → READY
                                   (any state) → FAILED

``CONFLICT_CHECK`` and ``WAITING_READY`` only happen when a port is
configured; without one a server counts as ready as soon as it is spawned.
"""
from __future__ import annotations

import asyncio
import functools
import logging
from collections.abc import Mapping, Sequence
from types import MappingProxyType, TracebackType
from typing import Any

from .config import build_configs, load_defaults
from .conflicts import ConflictAction, ConflictResolver
from .exceptions import NoCommandError
from .models import ServerConfig, ServerState
from .ports import is_port_occupied
from .process.handle import DEFAULT_OUTPUT_PREFIX, ManagedProcess, spawn_process
from .process.lookup import kill_port_owners
from .readiness import LaunchCleanup, wait_until_ready

logger = logging.getLogger(__name__)

ConfigInput = ServerConfig | Mapping[str, Any] | Sequence[ServerConfig | Mapping[str, Any]]


class ServerManager:
    """Owns the managed processes of one test session.

    Use one instance per session; nothing is shared between instances.
    """

    def __init__(
        self,
        *,
        resolver: ConflictResolver | None = None,
        probe_timeout: float | None = None,
        grace_seconds: float | None = None,
        launch_cleanup: LaunchCleanup | None = kill_port_owners,
        defaults: Mapping[str, Any] | None = None,
    ) -> None:
        settings = load_defaults()
        self._server_defaults = dict(defaults) if defaults is not None else dict(settings.get("server") or {})
        self._resolver = resolver or ConflictResolver()
        self._probe_timeout = (
            float(probe_timeout)
            if probe_timeout is not None
            else float((settings.get("probe") or {}).get("timeout", 1000)) / 1000.0
        )
        self._grace_seconds = (
            float(grace_seconds)
            if grace_seconds is not None
            else float((settings.get("shutdown") or {}).get("grace_seconds", 3.0))
        )
        self._output_prefix = str((settings.get("output") or {}).get("prefix") or DEFAULT_OUTPUT_PREFIX)
        if launch_cleanup is kill_port_owners:
            launch_cleanup = functools.partial(kill_port_owners, grace_seconds=self._grace_seconds)
        self._launch_cleanup = launch_cleanup
        self._registry: dict[int, ManagedProcess] = {}
        self._states: dict[int, ServerState] = {}
        self._next_index = 0

    async def __aenter__(self) -> ServerManager:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.teardown()

    def get_managed_processes(self) -> Mapping[int, ManagedProcess]:
        """Read-only snapshot of the processes spawned since the last teardown."""
        return MappingProxyType(dict(self._registry))

    def get_states(self) -> Mapping[int, ServerState]:
        return MappingProxyType(dict(self._states))

    async def setup(self, configs: ConfigInput) -> None:
        """Start every configured server and wait until each one is ready.

        Entries run concurrently and are never cancelled because a sibling
        failed; once all of them finished, the first failure is raised.
        """
        entries = build_configs(configs, defaults=self._server_defaults)
        base = self._next_index
        self._next_index += len(entries)

        tasks = [
            asyncio.create_task(self._setup_one(config, base + offset), name=f"servermgr-setup-{base + offset}")
            for offset, config in enumerate(entries)
        ]
        first_error: Exception | None = None
        for next_done in asyncio.as_completed(tasks):
            try:
                await next_done
            except Exception as exc:  # noqa: BLE001 - collected, re-raised below
                if first_error is None:
                    first_error = exc
                else:
                    logger.debug(f"Additional setup failure: {exc}")
        if first_error is not None:
            raise first_error

    def _transition(self, index: int, state: ServerState) -> None:
        self._states[index] = state
        logger.debug(f"Server {index}: {state.value}")

    async def _spawn(self, config: ServerConfig, index: int) -> ManagedProcess:
        self._transition(index, ServerState.SPAWNING)
        handle = await spawn_process(
            config,
            index,
            grace_seconds=self._grace_seconds,
            output_prefix=self._output_prefix,
        )
        self._registry[index] = handle
        return handle

    async def _setup_one(self, config: ServerConfig, index: int) -> None:
        self._transition(index, ServerState.PENDING)
        try:
            if not config.command or not config.command.strip():
                raise NoCommandError(index=index)

            if config.port is None:
                await self._spawn(config, index)
                self._transition(index, ServerState.READY)
                logger.info(f"Server {index} started (no port configured, assuming ready)")
                return

            self._transition(index, ServerState.CONFLICT_CHECK)
            action = ConflictAction.PROCEED_SPAWN
            if await is_port_occupied(config.host, config.port, self._probe_timeout):
                action = await self._resolver.resolve(config.conflict_policy, config.host, config.port)

            handle: ManagedProcess | None = None
            if action is ConflictAction.PROCEED_SKIP_SPAWN:
                self._transition(index, ServerState.SKIPPED)
            else:
                handle = await self._spawn(config, index)

            self._transition(index, ServerState.WAITING_READY)
            try:
                resource = await wait_until_ready(config, cleanup=self._launch_cleanup)
            except Exception:
                if handle is not None:
                    await handle.stop()
                raise
            self._transition(index, ServerState.READY)
            logger.info(f"Server {index} is ready at {resource}")
        except BaseException:
            self._transition(index, ServerState.FAILED)
            raise

    async def teardown(self, command: str | None = None) -> None:
        """Stop every managed process, then run the optional post-teardown ``command``.

        Never raises for termination or post-command failures; those are logged.
        """
        handles = list(self._registry.values())
        self._registry.clear()
        self._states.clear()

        if handles:
            results = await asyncio.gather(*(h.stop() for h in handles), return_exceptions=True)
            for handle, result in zip(handles, results):
                if isinstance(result, Exception):
                    logger.warning(f"Failed to stop server {handle.index} (pid {handle.pid}): {result}")

        if command:
            await run_post_command(command)


async def run_post_command(command: str) -> int | None:
    """Run a cleanup command through the shell, logging (not raising) failures."""
    logger.info(f"Running post-teardown command: {command}")
    try:
        proc = await asyncio.create_subprocess_shell(command)  # noqa: S604
        code = await proc.wait()
    except OSError as exc:
        logger.error(f"Post-teardown command `{command}` could not be started: {exc}")
        return None
    if code != 0:
        logger.error(f"Post-teardown command `{command}` exited with code {code}")
    return code


__all__ = ["ConfigInput", "ServerManager", "run_post_command"]
