"""Process-lifecycle and readiness-polling engine."""

from .conflicts import ConflictAction, ConflictResolver
from .manager import ServerManager
from .models import ConflictPolicy, ServerConfig, ServerState, WaitOptions
from .ports import is_port_occupied
from .readiness import build_resource_url, wait_for_resources, wait_until_ready

__all__ = [
    "ConflictAction",
    "ConflictPolicy",
    "ConflictResolver",
    "ServerConfig",
    "ServerManager",
    "ServerState",
    "WaitOptions",
    "build_resource_url",
    "is_port_occupied",
    "wait_for_resources",
    "wait_until_ready",
]
