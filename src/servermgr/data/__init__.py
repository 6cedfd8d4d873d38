"""Bundled data files: server defaults (``config/``) and the entry schema (``schemas/``)."""

from __future__ import annotations

from functools import lru_cache
from importlib import resources
from pathlib import Path
from typing import Any

import yaml


def get_data_path(subpackage: str, filename: str = "") -> Path:
    """Absolute path of ``servermgr/data/<subpackage>[/<filename>]``.

    >>> get_data_path("config", "defaults.yaml").name
    'defaults.yaml'
    """
    root = Path(str(resources.files("servermgr.data").joinpath(subpackage)))
    return root / filename if filename else root


@lru_cache(maxsize=8)
def read_yaml(subpackage: str, filename: str) -> Any:
    """Parsed contents of a bundled YAML file; cached, so never mutate the result."""
    text = get_data_path(subpackage, filename).read_text(encoding="utf-8")
    return yaml.safe_load(text)


__all__ = ["get_data_path", "read_yaml"]
