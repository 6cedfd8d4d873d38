"""Spawning, tracking and terminating server process trees."""

from .handle import ManagedProcess, spawn_process
from .lookup import PortOwner, find_processes_by_port, kill_port_owners
from .tree import kill_process_group, terminate_tree

__all__ = [
    "ManagedProcess",
    "spawn_process",
    "PortOwner",
    "find_processes_by_port",
    "kill_port_owners",
    "kill_process_group",
    "terminate_tree",
]
