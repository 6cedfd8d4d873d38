from __future__ import annotations

import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal, Mapping, get_args

from .exceptions import ConfigError, InvalidPolicyError

Protocol = Literal["tcp", "socket", "http", "https", "http-get", "https-get"]

SOCKET_PROTOCOLS = frozenset({"tcp", "socket"})
HTTP_PROTOCOLS = frozenset({"http", "https", "http-get", "https-get"})


class ConflictPolicy(str, Enum):
    """What to do when a configured port is already occupied at setup time."""

    ASK = "ask"
    ERROR = "error"
    IGNORE = "ignore"
    KILL = "kill"

    @classmethod
    def parse(cls, value: Any) -> ConflictPolicy:
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise InvalidPolicyError(value, [p.value for p in cls]) from None


class ServerState(str, Enum):
    """Lifecycle state of one configured server entry during setup."""

    PENDING = "pending"
    CONFLICT_CHECK = "conflict_check"
    SKIPPED = "skipped"
    SPAWNING = "spawning"
    WAITING_READY = "waiting_ready"
    READY = "ready"
    FAILED = "failed"


@dataclass(frozen=True)
class WaitOptions:
    """Readiness polling knobs; all durations are milliseconds."""

    delay: float = 0
    interval: float = 250
    timeout: float | None = None
    window: float = 750
    tcp_timeout: float = 300
    http_timeout: float | None = None
    verbose: bool = False

    @classmethod
    def from_raw(cls, raw: Any, *, defaults: Mapping[str, Any] | None = None) -> WaitOptions:
        merged: dict[str, Any] = dict(defaults or {})
        if isinstance(raw, Mapping):
            for key, value in raw.items():
                merged[_snake(key)] = value

        def _opt_float(key: str) -> float | None:
            value = merged.get(key)
            return float(value) if value is not None else None

        return cls(
            delay=float(merged.get("delay") or 0),
            interval=float(merged.get("interval") or 250),
            timeout=_opt_float("timeout"),
            window=float(merged.get("window") if merged.get("window") is not None else 750),
            tcp_timeout=float(merged.get("tcp_timeout") or 300),
            http_timeout=_opt_float("http_timeout"),
            verbose=bool(merged.get("verbose", False)),
        )


@dataclass(frozen=True)
class ServerConfig:
    """One logical server to start (or adopt) around a test run."""

    command: str
    cwd: str | None = None
    host: str = "localhost"
    port: int | None = None
    protocol: Protocol = "tcp"
    base_path: str | None = None
    launch_timeout: int = 5000
    debug: bool = False
    env: dict[str, str] = field(default_factory=dict)
    conflict_policy: ConflictPolicy = ConflictPolicy.ASK
    wait: WaitOptions = field(default_factory=WaitOptions)

    def __post_init__(self) -> None:
        # Direct construction gets the same checks as from_raw().
        if self.port is not None and (isinstance(self.port, bool) or not 0 < self.port < 65536):
            raise ConfigError(f"Invalid port {self.port!r}", context={"port": self.port})
        if self.protocol not in get_args(Protocol):
            raise ConfigError(
                f"Invalid protocol {self.protocol!r}, expected one of {', '.join(get_args(Protocol))}",
                context={"protocol": self.protocol},
            )
        object.__setattr__(self, "conflict_policy", ConflictPolicy.parse(self.conflict_policy))

    @classmethod
    def from_raw(cls, raw: Mapping[str, Any], *, defaults: Mapping[str, Any] | None = None) -> ServerConfig:
        """Build a config from a raw mapping using the camelCase or snake_case keys.

        Recognised keys: ``command``, ``cwd``, ``debug``, ``launchTimeout``,
        ``host``, ``protocol``, ``port``, ``basePath``,
        ``usedPortAction``/``conflictPolicy``, ``waitOnScheme``/``wait``,
        ``env`` and ``options`` (``options.env`` / ``options.cwd``).
        """
        base: dict[str, Any] = dict(defaults or {})
        data: dict[str, Any] = {}
        for key, value in raw.items():
            data[_RAW_ALIASES.get(key, _snake(key))] = value

        options = data.pop("options", None) or {}
        env: dict[str, str] = {}
        env_raw = options.get("env") if isinstance(options, Mapping) else None
        for source in (env_raw, data.get("env")):
            if isinstance(source, Mapping):
                env.update({str(k): os.path.expandvars(str(v)) for k, v in source.items()})

        cwd_raw = data.get("cwd")
        if cwd_raw is None and isinstance(options, Mapping):
            cwd_raw = options.get("cwd")
        cwd = os.path.expandvars(str(cwd_raw).strip()) if cwd_raw is not None else None

        command = os.path.expandvars(str(data.get("command") or "").strip())

        def _pick(key: str, fallback: Any) -> Any:
            value = data.get(key)
            if value is None:
                value = base.get(key, fallback)
            return fallback if value is None else value

        port_raw = data.get("port")
        try:
            port = int(port_raw) if port_raw is not None else None
        except (TypeError, ValueError):
            raise ConfigError(f"Invalid port {port_raw!r}", context={"port": port_raw}) from None
        protocol = str(_pick("protocol", "tcp")).strip().lower()

        return cls(
            command=command,
            cwd=cwd or None,
            host=str(_pick("host", "localhost")),
            port=port,
            protocol=protocol,  # type: ignore[arg-type]
            base_path=data.get("base_path") or None,
            launch_timeout=int(_pick("launch_timeout", 5000)),
            debug=bool(_pick("debug", False)),
            env=env,
            conflict_policy=ConflictPolicy.parse(_pick("conflict_policy", ConflictPolicy.ASK.value)),
            wait=WaitOptions.from_raw(data.get("wait"), defaults=base.get("wait")),
        )

    @property
    def effective_timeout(self) -> float:
        """Overall readiness deadline in milliseconds."""
        if self.wait.timeout is not None:
            return float(self.wait.timeout)
        return float(self.launch_timeout)


# camelCase surface keys that do not map by simple case conversion.
_RAW_ALIASES: dict[str, str] = {
    "usedPortAction": "conflict_policy",
    "used_port_action": "conflict_policy",
    "waitOnScheme": "wait",
    "wait_on_scheme": "wait",
}


def _snake(key: str) -> str:
    out: list[str] = []
    for ch in str(key):
        if ch.isupper():
            out.append("_")
            out.append(ch.lower())
        else:
            out.append(ch)
    return "".join(out).lstrip("_")


__all__ = [
    "Protocol",
    "SOCKET_PROTOCOLS",
    "HTTP_PROTOCOLS",
    "ConflictPolicy",
    "ServerState",
    "WaitOptions",
    "ServerConfig",
]
