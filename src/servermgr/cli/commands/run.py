"""
servermgr run command.

SUMMARY: Start servers from a config file and keep them up until interrupted
"""

from __future__ import annotations

import argparse
import asyncio
import signal
import sys
from pathlib import Path

from servermgr.core.config import load_server_configs
from servermgr.core.exceptions import ServerManagerError
from servermgr.core.manager import ServerManager
from servermgr.core.models import ServerConfig

SUMMARY = "Start servers from a config file and keep them up until interrupted"


def register_args(parser: argparse.ArgumentParser) -> None:
    """Register command-specific arguments."""
    parser.add_argument(
        "config",
        type=Path,
        help="YAML/JSON file with one server entry, a list, or a `servers:` list",
    )
    parser.add_argument(
        "--post-command",
        default=None,
        help="Shell command to run after all servers were stopped",
    )


def _install_stop_handlers(stop: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, getattr(signal, "SIGTERM", None)):
        if sig is None:
            continue
        try:
            loop.add_signal_handler(sig, stop.set)
        except (NotImplementedError, RuntimeError):
            # Windows event loops; Ctrl-C still raises KeyboardInterrupt.
            pass


async def serve(configs: list[ServerConfig], *, post_command: str | None = None, stop: asyncio.Event | None = None) -> int:
    """Set the servers up, wait for ``stop`` (or a signal), then tear them down."""
    stop_event = stop or asyncio.Event()
    if stop is None:
        _install_stop_handlers(stop_event)

    manager = ServerManager()
    try:
        try:
            await manager.setup(configs)
        except ServerManagerError as exc:
            print(f"error: {exc}", file=sys.stderr)
            return 1
        count = len(manager.get_managed_processes())
        print(f"{len(configs)} server(s) ready ({count} started); press Ctrl-C to stop", flush=True)
        await stop_event.wait()
        return 0
    finally:
        await manager.teardown(post_command)


def main(args: argparse.Namespace) -> int:
    """Run the configured servers in the foreground."""
    try:
        configs = load_server_configs(args.config)
    except ServerManagerError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1

    try:
        return asyncio.run(serve(configs, post_command=args.post_command))
    except KeyboardInterrupt:
        return 130
