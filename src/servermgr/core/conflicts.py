from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from enum import Enum

from .exceptions import InvalidPolicyError, OperatorDeclined, PortInUseError
from .models import ConflictPolicy
from .process.lookup import PortOwner, kill_port_owners
from .prompt import Confirm, confirm

logger = logging.getLogger(__name__)

KillPortOwners = Callable[[int], Awaitable[list[PortOwner]]]


class ConflictAction(str, Enum):
    """Outcome of a conflict. ABORT is carried by the exception raised from resolve()."""

    PROCEED_SPAWN = "proceed_spawn"
    PROCEED_SKIP_SPAWN = "proceed_skip_spawn"
    ABORT = "abort"


class ConflictResolver:
    """Decide what happens when a configured port is already taken.

    Detection lives in :mod:`servermgr.core.ports`; finding and killing the
    occupant is delegated to ``kill_owners`` so ``error``/``ignore`` never pay
    for a process lookup.
    """

    def __init__(
        self,
        *,
        confirm: Confirm | None = None,
        kill_owners: KillPortOwners | None = None,
    ) -> None:
        self._confirm = confirm or _default_confirm
        self._kill_owners = kill_owners or kill_port_owners

    async def resolve(self, policy: ConflictPolicy | str, host: str, port: int) -> ConflictAction:
        """Apply ``policy`` to the busy ``host:port``.

        Never returns ``ConflictAction.ABORT``: aborting is the exception.
        PortInUseError is raised for ``error`` and InvalidPolicyError for
        unknown policies. OperatorDeclined is raised when the operator
        refuses under ``ask``.
        """
        match ConflictPolicy.parse(policy):
            case ConflictPolicy.ERROR:
                raise PortInUseError(port, host=host)
            case ConflictPolicy.IGNORE:
                logger.info(f"Port {port} is already taken. Assuming server is already running.")
                return ConflictAction.PROCEED_SKIP_SPAWN
            case ConflictPolicy.KILL:
                logger.info(
                    f"Killing process listening to {port}. On linux, this may require elevated privileges."
                )
                await self._kill(port)
                return ConflictAction.PROCEED_SPAWN
            case ConflictPolicy.ASK:
                question = (
                    f"Another process is listening on {port}. Should I kill it for you? "
                    "On linux, this may require elevated privileges."
                )
                if not await self._confirm(question):
                    logger.error(f"Port {port} is in use and the operator declined to free it")
                    raise OperatorDeclined(port)
                await self._kill(port)
                return ConflictAction.PROCEED_SPAWN
            case other:
                raise InvalidPolicyError(other, [p.value for p in ConflictPolicy])

    async def _kill(self, port: int) -> None:
        owners = await self._kill_owners(port)
        if not owners:
            logger.warning(f"No process found bound to port {port}; it may have exited already")


async def _default_confirm(message: str) -> bool:
    return await confirm(message, default=True)


__all__ = ["ConflictAction", "ConflictResolver"]
