"""Readiness polling for TCP, Unix-socket and HTTP(S) resources.

Resources are URL-like strings:

- ``tcp:localhost:3000`` / ``socket:localhost:3000`` (TCP connect)
- ``socket:/run/app.sock`` (Unix domain socket connect)
- ``http://localhost:3000/health`` / ``https://…`` (HEAD request)
- ``http-get://localhost:3000/health`` / ``https-get://…`` (GET request)

A resource counts as ready once it has answered continuously for the
stabilisation ``window``.
"""
from __future__ import annotations

import asyncio
import logging
import ssl
import time
from collections.abc import Awaitable, Callable, Sequence
from contextlib import suppress
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from .exceptions import LaunchTimeoutError
from .models import HTTP_PROTOCOLS, SOCKET_PROTOCOLS, ServerConfig, WaitOptions
from .process.lookup import kill_port_owners

logger = logging.getLogger(__name__)


def base_path_suffix(base_path: str | None) -> str:
    if not base_path:
        return ""
    return base_path if base_path.startswith("/") else f"/{base_path}"


def build_resource_url(protocol: str, host: str, port: int, base_path: str | None = None) -> str:
    suffix = base_path_suffix(base_path)
    if protocol in SOCKET_PROTOCOLS:
        return f"{protocol}:{host}:{port}{suffix}"
    if protocol in HTTP_PROTOCOLS:
        return f"{protocol}://{host}:{port}{suffix}"
    raise ValueError(f"Unsupported protocol: {protocol}")


def _split_host_port(target: str) -> tuple[str, int] | None:
    hostport = target.split("/", 1)[0]
    host, sep, port = hostport.rpartition(":")
    if not sep or not port.isdigit():
        return None
    return host.strip("[]") or "localhost", int(port)


async def _probe_stream(resource: str, timeout: float) -> bool:
    scheme, _, target = resource.partition(":")
    try:
        if scheme == "socket" and target.startswith("/") and _split_host_port(target) is None:
            connect = asyncio.open_unix_connection(target)
        else:
            parsed = _split_host_port(target)
            if parsed is None:
                logger.debug(f"Malformed resource {resource!r}")
                return False
            connect = asyncio.open_connection(*parsed)
        _, writer = await asyncio.wait_for(connect, timeout=timeout)
    except (OSError, asyncio.TimeoutError):
        return False
    writer.close()
    with suppress(OSError):
        await writer.wait_closed()
    return True


def _insecure_context() -> ssl.SSLContext:
    ctx = ssl.create_default_context()
    ctx.check_hostname = False
    ctx.verify_mode = ssl.CERT_NONE
    return ctx


def _http_ok(resource: str, timeout: float) -> bool:
    scheme, rest = resource.split("://", 1)
    method = "GET" if scheme.endswith("-get") else "HEAD"
    base_scheme = scheme.removesuffix("-get")
    url = f"{base_scheme}://{rest}"
    context = _insecure_context() if base_scheme == "https" else None
    try:
        with urlopen(Request(url, method=method), timeout=timeout, context=context) as resp:  # noqa: S310
            return 200 <= resp.status < 400
    except HTTPError as exc:
        return 200 <= exc.code < 400
    except (URLError, OSError, ValueError):
        return False


async def probe_resource(resource: str, options: WaitOptions, *, remaining: float) -> bool:
    """Single availability check for one resource; ``remaining`` is seconds left overall."""
    if "://" in resource:
        http_timeout = options.http_timeout / 1000.0 if options.http_timeout else remaining
        timeout = max(0.05, min(http_timeout, remaining))
        return await asyncio.to_thread(_http_ok, resource, timeout)
    return await _probe_stream(resource, max(0.05, min(options.tcp_timeout / 1000.0, remaining)))


async def wait_for_resources(
    resources: Sequence[str],
    options: WaitOptions,
    *,
    timeout_ms: float,
) -> None:
    """Resolve once every resource has been available for ``options.window`` ms.

    Raises ``asyncio.TimeoutError`` when ``timeout_ms`` elapses first.
    """
    started = time.monotonic()
    deadline = started + max(0.0, timeout_ms) / 1000.0
    window = options.window / 1000.0
    interval = max(0.001, options.interval / 1000.0)
    log = logger.info if options.verbose else logger.debug

    if options.delay:
        await asyncio.sleep(min(options.delay / 1000.0, max(0.0, deadline - time.monotonic())))

    available_since: dict[str, float | None] = {r: None for r in resources}
    while True:
        now = time.monotonic()
        remaining = deadline - now
        if remaining <= 0:
            pending = [r for r, since in available_since.items() if since is None]
            log(f"Timed out waiting for: {', '.join(pending) or ', '.join(resources)}")
            raise asyncio.TimeoutError()

        results = await asyncio.gather(
            *(probe_resource(r, options, remaining=remaining) for r in resources)
        )
        now = time.monotonic()
        for resource, ok in zip(resources, results):
            if not ok:
                available_since[resource] = None
                log(f"Waiting for {resource}")
            elif available_since[resource] is None:
                available_since[resource] = now
                log(f"{resource} is available")

        if all(
            since is not None and now - since >= window
            for since in available_since.values()
        ):
            return

        await asyncio.sleep(max(0.0, min(interval, deadline - time.monotonic())))


LaunchCleanup = Callable[[int], Awaitable[object]]


async def wait_until_ready(config: ServerConfig, *, cleanup: LaunchCleanup | None = kill_port_owners) -> str:
    """Wait for a configured server to become reachable, returning its resource URL.

    On timeout, whatever is still bound to the port is killed (best effort)
    before ``LaunchTimeoutError`` surfaces, so a half-started server does not
    outlive the failed launch.
    """
    if config.port is None:
        raise ValueError("wait_until_ready() requires a port")

    resource = build_resource_url(config.protocol, config.host, config.port, config.base_path)
    timeout_ms = config.effective_timeout
    try:
        await wait_for_resources([resource], config.wait, timeout_ms=timeout_ms)
    except asyncio.TimeoutError:
        if cleanup is not None:
            try:
                await cleanup(config.port)
            except Exception as exc:  # noqa: BLE001 - cleanup must not mask the timeout
                logger.warning(f"Cleanup of port {config.port} after launch timeout failed: {exc}")
        raise LaunchTimeoutError(int(timeout_ms), resource=resource, command=config.command) from None
    return resource


__all__ = [
    "base_path_suffix",
    "build_resource_url",
    "probe_resource",
    "wait_for_resources",
    "wait_until_ready",
]
