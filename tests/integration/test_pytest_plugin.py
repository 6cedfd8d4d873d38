"""
The pytest plugin wraps a whole test session in setup/teardown.

Sessions run in a subprocess so their servers, signal handlers and exit
hooks never touch this test process.
"""
from __future__ import annotations

import json
import os
from pathlib import Path

import pytest

from helpers.processes import SRC_ROOT, listener_command, port_accepts, wait_for_death

pytestmark = pytest.mark.skipif(os.name != "posix", reason="process groups are POSIX-only")


@pytest.fixture
def inner_env(monkeypatch: pytest.MonkeyPatch) -> None:
    existing = os.environ.get("PYTHONPATH")
    monkeypatch.setenv("PYTHONPATH", os.pathsep.join(p for p in (str(SRC_ROOT), existing) if p))


def _write_config(path: Path, body: str) -> Path:
    path.write_text(body, encoding="utf-8")
    return path


def test_servers_live_for_the_session(pytester: pytest.Pytester, inner_env: None, port: int) -> None:
    pid_file = pytester.path / "server.pid"
    server = {
        "command": f"echo $$ > {pid_file} && exec {listener_command(port)}",
        "host": "127.0.0.1",
        "port": port,
        "waitOnScheme": {"window": 0},
    }
    config = _write_config(pytester.path / "servers.json", json.dumps({"servers": [server]}))
    pytester.makepyfile(
        f"""
        import socket

        def test_server_is_up(server_manager):
            procs = server_manager.get_managed_processes()
            assert len(procs) == 1
            assert all(p.is_running() for p in procs.values())
            socket.create_connection(("127.0.0.1", {port}), timeout=1).close()
        """
    )

    result = pytester.runpytest_subprocess("-p", "servermgr.pytest_plugin", f"--servers-config={config}")

    result.assert_outcomes(passed=1)
    assert wait_for_death(int(pid_file.read_text(encoding="utf-8").strip()))
    assert not port_accepts(port)


def test_ini_option_and_post_command(pytester: pytest.Pytester, inner_env: None) -> None:
    marker = pytester.path / "post.done"
    _write_config(pytester.path / "servers.yaml", "command: sleep 30\n")
    pytester.makeini(
        f"""
        [pytest]
        servers_config = servers.yaml
        servers_post_command = touch {marker}
        """
    )
    pytester.makepyfile(
        """
        def test_one(server_manager):
            assert len(server_manager.get_managed_processes()) == 1
        """
    )

    result = pytester.runpytest_subprocess("-p", "servermgr.pytest_plugin")

    result.assert_outcomes(passed=1)
    assert marker.exists()


def test_setup_failure_aborts_the_session(pytester: pytest.Pytester, inner_env: None) -> None:
    config = _write_config(pytester.path / "servers.yaml", "servers:\n  - port: 3000\n")
    pytester.makepyfile(
        """
        def test_never_runs():
            pass
        """
    )

    result = pytester.runpytest_subprocess("-p", "servermgr.pytest_plugin", f"--servers-config={config}")

    assert result.ret == 1
    result.stderr.fnmatch_lines(["*servermgr setup failed: You must define a `command`*"])
    result.stdout.no_fnmatch_line("*test_never_runs*PASSED*")


def test_fixture_skips_without_configuration(pytester: pytest.Pytester, inner_env: None) -> None:
    pytester.makepyfile(
        """
        def test_needs_servers(server_manager):
            pass
        """
    )

    result = pytester.runpytest_subprocess("-p", "servermgr.pytest_plugin")

    result.assert_outcomes(skipped=1)
