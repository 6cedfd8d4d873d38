"""
Command dispatcher for the ``servermgr`` program.

Every public module in ``servermgr/cli/commands`` becomes a subcommand:
its ``SUMMARY`` is the help line, ``register_args(parser)`` adds its
arguments and ``main(args) -> int`` runs it.
"""

from __future__ import annotations

import argparse
import importlib
import pkgutil
import sys
from functools import lru_cache
from types import ModuleType

from servermgr import __version__
from servermgr.core.log import configure_logging


@lru_cache(maxsize=1)
def discover_commands() -> dict[str, ModuleType]:
    """Import the command modules, keyed by module name."""
    from servermgr.cli import commands as commands_pkg

    found: dict[str, ModuleType] = {}
    for info in pkgutil.iter_modules(commands_pkg.__path__):
        if info.name.startswith("_"):
            continue
        try:
            found[info.name] = importlib.import_module(f"{commands_pkg.__name__}.{info.name}")
        except ImportError as e:
            print(f"Warning: skipping command {info.name}: {e}", file=sys.stderr)
    return found


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="servermgr",
        description="Start, await and stop the servers a test suite depends on",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--log-level",
        default=None,
        help="Logging level (default: $SERVERMGR_LOG_LEVEL or INFO)",
    )

    subparsers = parser.add_subparsers(dest="command", title="commands", metavar="<command>")
    for name, module in sorted(discover_commands().items()):
        sub = subparsers.add_parser(name.replace("_", "-"), help=getattr(module, "SUMMARY", name))
        register = getattr(module, "register_args", None)
        if register is not None:
            register(sub)
        sub.set_defaults(_func=module.main)
    return parser


def main(argv: list[str] | None = None) -> int:
    """Entry point of the ``servermgr`` console script; returns the exit status."""
    parser = build_parser()
    args = parser.parse_args(sys.argv[1:] if argv is None else argv)

    func = getattr(args, "_func", None)
    if func is None:
        parser.print_help()
        return 0

    configure_logging(level=args.log_level)
    return int(func(args) or 0)


__all__ = ["build_parser", "discover_commands", "main"]
