"""Operator confirmation on the controlling terminal.

Only one prompt may own stdin at a time: concurrent server entries that all
hit a busy port are asked one after another. While a prompt runs, the
terminal attributes are saved and restored afterwards on every exit path,
since the test runner may keep the terminal in raw mode.
"""
from __future__ import annotations

import asyncio
import logging
import os
import sys
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from typing import Any

logger = logging.getLogger(__name__)

ASSUME_YES_ENV = "SERVERMGR_ASSUME_YES"

Confirm = Callable[[str], Awaitable[bool]]

_stdin_lock: asyncio.Lock | None = None
_stdin_lock_loop: asyncio.AbstractEventLoop | None = None


def _lock_for_loop() -> asyncio.Lock:
    global _stdin_lock, _stdin_lock_loop
    loop = asyncio.get_running_loop()
    if _stdin_lock is None or _stdin_lock_loop is not loop:
        _stdin_lock = asyncio.Lock()
        _stdin_lock_loop = loop
    return _stdin_lock


def _save_terminal(stream: Any) -> Any | None:
    try:
        import termios

        if stream.isatty():
            return termios.tcgetattr(stream.fileno())
    except (ImportError, OSError, ValueError, AttributeError):
        pass
    return None


def _restore_terminal(stream: Any, attrs: Any) -> None:
    if attrs is None:
        return
    try:
        import termios

        termios.tcsetattr(stream.fileno(), termios.TCSADRAIN, attrs)
    except (ImportError, OSError, ValueError) as exc:
        logger.debug(f"Could not restore terminal mode: {exc}")


def _cooked_mode(stream: Any) -> None:
    """Enable canonical mode and echo so input() behaves while prompting."""
    try:
        import termios

        attrs = termios.tcgetattr(stream.fileno())
        attrs[3] |= termios.ICANON | termios.ECHO
        termios.tcsetattr(stream.fileno(), termios.TCSADRAIN, attrs)
    except (ImportError, OSError, ValueError):
        pass


@asynccontextmanager
async def exclusive_stdin(stream: Any | None = None) -> AsyncIterator[Any]:
    """Hold stdin exclusively for the duration of the block."""
    stdin = stream if stream is not None else sys.stdin
    async with _lock_for_loop():
        saved = _save_terminal(stdin)
        if saved is not None:
            _cooked_mode(stdin)
        try:
            yield stdin
        finally:
            _restore_terminal(stdin, saved)


def _ask(message: str, default: bool) -> bool:
    prompt_suffix = "[Y/n]" if default else "[y/N]"
    try:
        resp = input(f"{message} {prompt_suffix} ").strip().lower()
    except EOFError:
        resp = ""

    if resp in ("y", "yes"):
        return True
    if resp in ("n", "no"):
        return False
    return default


async def confirm(message: str, *, default: bool = True) -> bool:
    """Ask a yes/no question on the terminal; ``SERVERMGR_ASSUME_YES`` answers yes."""
    if os.environ.get(ASSUME_YES_ENV):
        logger.info(message)
        return True
    async with exclusive_stdin():
        return await asyncio.to_thread(_ask, message, default)


__all__ = ["ASSUME_YES_ENV", "Confirm", "confirm", "exclusive_stdin"]
