"""pytest integration: start servers before the session, stop them after it.

Enable explicitly and point it at a server config file::

    pytest -p servermgr.pytest_plugin --servers-config servers.yaml

or set ``servers_config`` (and optionally ``servers_post_command``) in the
ini file. A setup failure aborts the session with exit status 1.
"""
from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from servermgr.core.config import load_server_configs
from servermgr.core.exceptions import ServerManagerError
from servermgr.core.manager import ServerManager


class ServerSession:
    """The session's manager plus the event loop its processes are bound to."""

    def __init__(self) -> None:
        self.loop = asyncio.new_event_loop()
        self.manager = ServerManager()

    def run(self, coro):  # type: ignore[no-untyped-def]
        return self.loop.run_until_complete(coro)

    def close(self) -> None:
        pending = asyncio.all_tasks(self.loop)
        for task in pending:
            task.cancel()
        if pending:
            self.loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))
        self.loop.run_until_complete(self.loop.shutdown_asyncgens())
        self.loop.close()


_SESSION_KEY = pytest.StashKey[ServerSession]()


def pytest_addoption(parser: pytest.Parser) -> None:
    group = parser.getgroup("servermgr", "server lifecycle around the test session")
    group.addoption(
        "--servers-config",
        default=None,
        help="YAML/JSON file describing the servers to start for this session",
    )
    group.addoption(
        "--servers-post-command",
        default=None,
        help="Shell command to run after the servers were stopped",
    )
    parser.addini("servers_config", "Server config file (relative to the rootdir)", default="")
    parser.addini("servers_post_command", "Shell command to run after teardown", default="")


def _config_path(config: pytest.Config) -> Path | None:
    cli_value = config.getoption("servers_config")
    if cli_value:
        return Path(cli_value).expanduser()
    ini_value = str(config.getini("servers_config") or "").strip()
    if ini_value:
        path = Path(ini_value).expanduser()
        return path if path.is_absolute() else Path(config.rootpath) / path
    return None


def _post_command(config: pytest.Config) -> str | None:
    value = config.getoption("servers_post_command") or str(config.getini("servers_post_command") or "")
    return value.strip() or None


def pytest_sessionstart(session: pytest.Session) -> None:
    path = _config_path(session.config)
    if path is None:
        return

    state = ServerSession()
    session.config.stash[_SESSION_KEY] = state
    try:
        state.run(state.manager.setup(load_server_configs(path)))
    except ServerManagerError as exc:
        # pytest skips sessionfinish when sessionstart fails, so stop what did start.
        _shutdown(session.config)
        pytest.exit(f"servermgr setup failed: {exc}", returncode=1)
    except BaseException:
        _shutdown(session.config)
        raise


def pytest_sessionfinish(session: pytest.Session, exitstatus: int) -> None:
    _shutdown(session.config)


def _shutdown(config: pytest.Config) -> None:
    state = config.stash.get(_SESSION_KEY, None)
    if state is None:
        return
    del config.stash[_SESSION_KEY]
    try:
        state.run(state.manager.teardown(_post_command(config)))
    finally:
        state.close()


@pytest.fixture(scope="session")
def server_manager(request: pytest.FixtureRequest) -> ServerManager:
    """The ServerManager holding this session's servers."""
    state = request.config.stash.get(_SESSION_KEY, None)
    if state is None:
        pytest.skip("no servers configured (use --servers-config or the servers_config ini option)")
    return state.manager
