"""
servermgr CLI package.

Commands live in ``servermgr/cli/commands/``; each module exposes
``SUMMARY``, ``register_args(parser)`` and ``main(args) -> int`` and is
registered automatically by the dispatcher.
"""
from ._dispatcher import build_parser, main

__all__ = ["build_parser", "main"]
