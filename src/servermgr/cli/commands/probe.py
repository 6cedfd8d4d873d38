"""
servermgr probe command.

SUMMARY: Report whether a TCP port is occupied and which processes hold it
"""

from __future__ import annotations

import argparse
import asyncio
import json

from servermgr.core.ports import DEFAULT_PROBE_TIMEOUT, is_port_occupied
from servermgr.core.process.lookup import find_processes_by_port

SUMMARY = "Report whether a TCP port is occupied and which processes hold it"


def register_args(parser: argparse.ArgumentParser) -> None:
    """Register command-specific arguments."""
    parser.add_argument("port", type=int, help="TCP port to check")
    parser.add_argument("--host", default="localhost", help="Host to probe (default: localhost)")
    parser.add_argument(
        "--timeout",
        type=float,
        default=DEFAULT_PROBE_TIMEOUT,
        help=f"Probe timeout in seconds (default: {DEFAULT_PROBE_TIMEOUT})",
    )
    parser.add_argument("--json", action="store_true", help="Output as JSON")


def main(args: argparse.Namespace) -> int:
    """Exit 0 when the port is free, 1 when it is occupied."""
    occupied = asyncio.run(is_port_occupied(args.host, args.port, args.timeout))
    owners = find_processes_by_port(args.port) if occupied else []

    if args.json:
        payload = {
            "host": args.host,
            "port": args.port,
            "occupied": occupied,
            "owners": [{"pid": o.pid, "name": o.name} for o in owners],
        }
        print(json.dumps(payload, indent=2, sort_keys=True))
    elif not occupied:
        print(f"{args.host}:{args.port} is free")
    else:
        print(f"{args.host}:{args.port} is occupied")
        for owner in owners:
            print(f"  {owner.pid}\t{owner.name}")

    return 1 if occupied else 0
