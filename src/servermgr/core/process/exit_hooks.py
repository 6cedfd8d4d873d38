"""Run callbacks when the controlling process exits.

Covers a normal interpreter exit (``atexit``, which also runs after an
unhandled ``KeyboardInterrupt``) and termination by ``SIGTERM``/``SIGHUP``.
For signals the previously installed handler is chained; when there was none
(default disposition) the default is restored and the signal re-delivered so
the process still dies with the status the signal implies.

Every registration returns a zero-argument callable that removes it again.
"""
from __future__ import annotations

import atexit
import logging
import os
import signal
import threading
from collections.abc import Callable
from types import FrameType
from typing import Any

logger = logging.getLogger(__name__)

ExitCallback = Callable[[int | None], None]

_HOOK_SIGNALS = tuple(
    sig for sig in (getattr(signal, "SIGTERM", None), getattr(signal, "SIGHUP", None)) if sig is not None
)

_lock = threading.Lock()
_callbacks: dict[int, ExitCallback] = {}
_next_id = 0
_installed = False
_previous_handlers: dict[int, Any] = {}


def _run_callbacks(code: int | None) -> None:
    with _lock:
        pending = list(_callbacks.values())
        _callbacks.clear()
    for callback in pending:
        try:
            callback(code)
        except Exception as exc:  # noqa: BLE001 - exit hooks must not stop each other
            logger.warning(f"Exit hook failed: {exc}")


def _on_atexit() -> None:
    _run_callbacks(None)


def _on_signal(signum: int, frame: FrameType | None) -> None:
    _run_callbacks(128 + signum)
    previous = _previous_handlers.get(signum, signal.SIG_DFL)
    if callable(previous):
        previous(signum, frame)
        return
    if previous == signal.SIG_IGN:
        return
    signal.signal(signum, signal.SIG_DFL)
    os.kill(os.getpid(), signum)


def _install() -> None:
    global _installed
    if _installed:
        return
    atexit.register(_on_atexit)
    # signal.signal() only works from the main thread of the main interpreter.
    if threading.current_thread() is threading.main_thread():
        for sig in _HOOK_SIGNALS:
            try:
                _previous_handlers[sig] = signal.getsignal(sig)
                signal.signal(sig, _on_signal)
            except (OSError, ValueError) as exc:
                logger.debug(f"Cannot hook signal {sig}: {exc}")
    _installed = True


def on_exit(callback: ExitCallback) -> Callable[[], None]:
    """Register ``callback(code)`` to run when the controlling process exits.

    ``code`` is None for a regular interpreter exit and ``128 + signum`` for
    a signal-induced one.
    """
    global _next_id
    with _lock:
        _install()
        token = _next_id
        _next_id += 1
        _callbacks[token] = callback

    def remove() -> None:
        with _lock:
            _callbacks.pop(token, None)

    return remove


def registered_count() -> int:
    with _lock:
        return len(_callbacks)


__all__ = ["ExitCallback", "on_exit", "registered_count"]
