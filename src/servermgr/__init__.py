"""
servermgr - server process lifecycle around test runs

Starts the servers a test suite depends on, waits until they are reachable,
resolves port conflicts, and tears the whole process trees down afterwards.
"""

from servermgr.core.config import load_server_configs
from servermgr.core.exceptions import (
    ERROR_CONFIG,
    ERROR_INVALID_POLICY,
    ERROR_NO_COMMAND,
    ERROR_PORT_USED,
    ERROR_SPAWN,
    ERROR_TIMEOUT,
    ConfigError,
    InvalidPolicyError,
    LaunchTimeoutError,
    NoCommandError,
    OperatorDeclined,
    PortInUseError,
    ServerManagerError,
    SpawnError,
)
from servermgr.core.manager import ServerManager
from servermgr.core.models import ConflictPolicy, ServerConfig, ServerState, WaitOptions

__version__ = "1.0.0"
__all__ = [
    "__version__",
    "ERROR_CONFIG",
    "ERROR_INVALID_POLICY",
    "ERROR_NO_COMMAND",
    "ERROR_PORT_USED",
    "ERROR_SPAWN",
    "ERROR_TIMEOUT",
    "ConfigError",
    "ConflictPolicy",
    "InvalidPolicyError",
    "LaunchTimeoutError",
    "NoCommandError",
    "OperatorDeclined",
    "PortInUseError",
    "ServerConfig",
    "ServerManager",
    "ServerManagerError",
    "ServerState",
    "SpawnError",
    "WaitOptions",
    "load_server_configs",
]
