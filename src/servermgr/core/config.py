"""Configuration loading for server entries.

Resolution order (highest priority → lowest):
1) Values given on the server entry itself
2) ``SERVERMGR_<KEY>`` environment overrides (e.g. ``SERVERMGR_LAUNCH_TIMEOUT``)
3) Bundled defaults: ``servermgr/data/config/defaults.yaml``

Raw entries are validated against the bundled JSON Schema
(``servermgr/data/schemas/server-config.schema.yaml``) before they are turned
into :class:`~servermgr.core.models.ServerConfig` objects.
"""
from __future__ import annotations

import copy
import os
from pathlib import Path
from typing import Any, Iterable, Mapping, Sequence

import yaml
from jsonschema import Draft202012Validator

from servermgr.data import read_yaml

from .exceptions import ConfigError
from .models import ServerConfig

ENV_PREFIX = "SERVERMGR_"

# Scalar keys of the ``server`` defaults section that may be overridden from the environment.
_ENV_OVERRIDABLE: dict[str, type] = {
    "debug": bool,
    "launch_timeout": int,
    "host": str,
    "protocol": str,
    "conflict_policy": str,
}

_TRUTHY = {"1", "true", "yes", "on"}


def _coerce(raw: str, kind: type) -> Any:
    if kind is bool:
        return raw.strip().lower() in _TRUTHY
    if kind is int:
        try:
            return int(raw)
        except ValueError:
            raise ConfigError(f"Expected an integer, got {raw!r}", context={"value": raw}) from None
    return raw


def load_defaults(env: Mapping[str, str] | None = None) -> dict[str, Any]:
    """Return the full defaults document with environment overrides applied."""
    environ = os.environ if env is None else env
    data = copy.deepcopy(read_yaml("config", "defaults.yaml") or {})
    server = data.setdefault("server", {})
    for key, kind in _ENV_OVERRIDABLE.items():
        value = environ.get(f"{ENV_PREFIX}{key.upper()}")
        if value is not None and value.strip():
            server[key] = _coerce(value.strip(), kind)
    return data


def server_defaults(env: Mapping[str, str] | None = None) -> dict[str, Any]:
    return dict(load_defaults(env).get("server") or {})


def _validator() -> Draft202012Validator:
    schema = read_yaml("schemas", "server-config.schema.yaml")
    return Draft202012Validator(schema)


def validate_raw(raw: Any, *, index: int | None = None) -> None:
    """Validate one raw server entry, raising ConfigError on schema violations."""
    if not isinstance(raw, Mapping):
        raise ConfigError(
            f"Server entry must be a mapping, got {type(raw).__name__}",
            context={"index": index},
        )
    errors = sorted(_validator().iter_errors(dict(raw)), key=lambda e: list(e.path))
    if not errors:
        return
    details = []
    for err in errors:
        path = ".".join(str(p) for p in err.path) or "<root>"
        details.append(f"{path}: {err.message}")
    where = f"server[{index}]" if index is not None else "server"
    raise ConfigError(
        f"Invalid {where} configuration: " + "; ".join(details),
        context={"index": index, "errors": details},
    )


def build_configs(
    raw: ServerConfig | Mapping[str, Any] | Sequence[ServerConfig | Mapping[str, Any]],
    *,
    defaults: Mapping[str, Any] | None = None,
) -> list[ServerConfig]:
    """Normalise one or many raw entries (or ready ServerConfig objects) into a list."""
    items: Iterable[Any]
    if isinstance(raw, (ServerConfig, Mapping)):
        items = [raw]
    else:
        items = list(raw)

    base = server_defaults() if defaults is None else dict(defaults)
    configs: list[ServerConfig] = []
    for idx, item in enumerate(items):
        if isinstance(item, ServerConfig):
            configs.append(item)
            continue
        validate_raw(item, index=idx)
        configs.append(ServerConfig.from_raw(item, defaults=base))
    return configs


def load_server_configs(path: Path | str) -> list[ServerConfig]:
    """Load server entries from a YAML (or JSON) file.

    Accepted layouts:
    - a single server mapping
    - a list of server mappings
    - a mapping with a ``servers`` list
    """
    file_path = Path(path).expanduser()
    try:
        text = file_path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"Cannot read config file {file_path}: {exc}", context={"path": str(file_path)}) from exc
    try:
        doc = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ConfigError(f"Cannot parse config file {file_path}: {exc}", context={"path": str(file_path)}) from exc

    if isinstance(doc, Mapping) and "servers" in doc:
        doc = doc.get("servers")
    if doc is None:
        raise ConfigError(f"No servers defined in {file_path}", context={"path": str(file_path)})
    if not isinstance(doc, (Mapping, list)):
        raise ConfigError(
            f"Expected a mapping or list of servers in {file_path}",
            context={"path": str(file_path)},
        )
    return build_configs(doc)


__all__ = [
    "ENV_PREFIX",
    "load_defaults",
    "server_defaults",
    "validate_raw",
    "build_configs",
    "load_server_configs",
]
