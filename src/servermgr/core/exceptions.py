from __future__ import annotations

from typing import Any, Dict, Iterable, Mapping

ERROR_TIMEOUT = "ERROR_TIMEOUT"
ERROR_PORT_USED = "ERROR_PORT_USED"
ERROR_NO_COMMAND = "ERROR_NO_COMMAND"
ERROR_INVALID_POLICY = "ERROR_INVALID_POLICY"
ERROR_SPAWN = "ERROR_SPAWN"
ERROR_CONFIG = "ERROR_CONFIG"


class ServerManagerError(Exception):
    """Base exception for server lifecycle failures."""

    code: str | None = None
    context: Dict[str, Any]

    def __init__(
        self,
        message: str = "",
        *,
        code: str | None = None,
        context: Mapping[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        if code is not None:
            self.code = code
        # Store a shallow copy to avoid accidental mutation.
        self.context = dict(context) if context is not None else {}

    def to_json_error(self) -> Dict[str, Any]:
        """Return a JSON-serializable error payload."""
        return {
            "message": str(self),
            "code": self.code or self.__class__.__name__,
            "context": self.context,
        }


class NoCommandError(ServerManagerError):
    """Raised when a server entry has no command to run."""

    code = ERROR_NO_COMMAND

    def __init__(self, *, index: int | None = None) -> None:
        ctx = {"index": index} if index is not None else {}
        super().__init__("You must define a `command`", context=ctx)


class PortInUseError(ServerManagerError):
    """Raised when the configured port is taken and the policy is ``error``."""

    code = ERROR_PORT_USED

    def __init__(self, port: int, *, host: str | None = None) -> None:
        ctx: Dict[str, Any] = {"port": port}
        if host:
            ctx["host"] = host
        super().__init__(f"Port {port} is in use", context=ctx)
        self.port = port


class LaunchTimeoutError(ServerManagerError):
    """Raised when a server is not reachable within its launch timeout."""

    code = ERROR_TIMEOUT

    def __init__(self, timeout_ms: int, *, resource: str | None = None, command: str | None = None) -> None:
        ctx: Dict[str, Any] = {"timeout_ms": timeout_ms}
        if resource:
            ctx["resource"] = resource
        if command:
            ctx["command"] = command
        super().__init__(f"Server has taken more than {timeout_ms}ms to start.", context=ctx)
        self.timeout_ms = timeout_ms


class SpawnError(ServerManagerError):
    """Raised when the operating system refuses to start a server command."""

    code = ERROR_SPAWN

    def __init__(self, command: str, reason: str) -> None:
        super().__init__(
            f"Failed to start `{command}`: {reason}",
            context={"command": command, "reason": reason},
        )


class ConfigError(ServerManagerError, ValueError):
    """Raised when a server configuration cannot be parsed or validated."""

    code = ERROR_CONFIG

    def __init__(self, message: str = "", *, context: Mapping[str, Any] | None = None) -> None:
        ServerManagerError.__init__(self, message, context=context)
        ValueError.__init__(self, message)


class InvalidPolicyError(ConfigError):
    """Raised for an unrecognized conflict policy value."""

    code = ERROR_INVALID_POLICY

    def __init__(self, value: Any, valid: Iterable[str]) -> None:
        names = [str(v) for v in valid]
        available = ", ".join(f"`{name}`" for name in names)
        super().__init__(
            f"Invalid `usedPortAction` {value!r}, only {available} are possible",
            context={"value": value, "valid": names},
        )


class OperatorDeclined(SystemExit):
    """Terminal exit raised when the operator refuses to free a busy port.

    Subclasses ``SystemExit`` so that it aborts the whole run instead of being
    reported as an ordinary setup failure.
    """

    def __init__(self, port: int) -> None:
        super().__init__(1)
        self.port = port

    def __str__(self) -> str:
        return f"Operator declined to free port {self.port}"


__all__ = [
    "ERROR_TIMEOUT",
    "ERROR_PORT_USED",
    "ERROR_NO_COMMAND",
    "ERROR_INVALID_POLICY",
    "ERROR_SPAWN",
    "ERROR_CONFIG",
    "ServerManagerError",
    "NoCommandError",
    "PortInUseError",
    "LaunchTimeoutError",
    "SpawnError",
    "ConfigError",
    "InvalidPolicyError",
    "OperatorDeclined",
]
