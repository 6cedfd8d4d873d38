from __future__ import annotations

import logging
import os
import sys
from pathlib import Path

LOG_LEVEL_ENV = "SERVERMGR_LOG_LEVEL"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

_STREAM_HANDLER: logging.Handler | None = None
_FILE_HANDLER: logging.Handler | None = None
_CONFIGURED_LOG_PATH: str | None = None


def _level_from_name(name: str) -> int:
    try:
        return int(getattr(logging, name.upper()))
    except Exception:
        return logging.INFO


def configure_logging(*, level: str | None = None, log_path: Path | None = None) -> None:
    """Configure the ``servermgr`` logger hierarchy.

    Installs a stderr handler once and, when ``log_path`` is given, a file
    handler for that path (replacing a previously installed one). Idempotent
    per-process.
    """
    global _STREAM_HANDLER, _FILE_HANDLER, _CONFIGURED_LOG_PATH

    resolved_level = _level_from_name(level or os.environ.get(LOG_LEVEL_ENV) or "INFO")
    logger = logging.getLogger("servermgr")
    logger.setLevel(resolved_level)

    fmt = logging.Formatter(LOG_FORMAT)
    if _STREAM_HANDLER is None:
        _STREAM_HANDLER = logging.StreamHandler(sys.stderr)
        _STREAM_HANDLER.setFormatter(fmt)
        logger.addHandler(_STREAM_HANDLER)
    _STREAM_HANDLER.setLevel(resolved_level)

    if log_path is None:
        return

    resolved = str(Path(log_path).resolve())
    if _CONFIGURED_LOG_PATH == resolved and _FILE_HANDLER is not None:
        return

    # Replace the previously installed file handler when switching paths.
    if _FILE_HANDLER is not None:
        logger.removeHandler(_FILE_HANDLER)
        _FILE_HANDLER.close()
        _FILE_HANDLER = None

    Path(resolved).parent.mkdir(parents=True, exist_ok=True)
    fh = logging.FileHandler(resolved, encoding="utf-8")
    fh.setLevel(resolved_level)
    fh.setFormatter(fmt)
    logger.addHandler(fh)

    _FILE_HANDLER = fh
    _CONFIGURED_LOG_PATH = resolved


def reset_logging_for_tests() -> None:
    """Test-only: remove the handlers installed by configure_logging()."""
    global _STREAM_HANDLER, _FILE_HANDLER, _CONFIGURED_LOG_PATH
    logger = logging.getLogger("servermgr")
    for h in (_STREAM_HANDLER, _FILE_HANDLER):
        if h is None:
            continue
        logger.removeHandler(h)
        try:
            h.close()
        except Exception:
            pass
    _STREAM_HANDLER = None
    _FILE_HANDLER = None
    _CONFIGURED_LOG_PATH = None
    logger.setLevel(logging.NOTSET)


__all__ = ["LOG_LEVEL_ENV", "LOG_FORMAT", "configure_logging", "reset_logging_for_tests"]
