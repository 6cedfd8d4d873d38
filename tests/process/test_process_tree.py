"""
Tests for process tree termination and port-owner lookup.

IMPORTANT: These tests use REAL processes and psutil calls (NO MOCKS).
"""
from __future__ import annotations

import asyncio
import os
import subprocess
import sys
from pathlib import Path

import psutil
import pytest

from helpers.processes import listener_argv, pid_alive, wait_for_death, wait_for_file, wait_for_port
from servermgr.core.process.lookup import find_processes_by_port, kill_port_owners
from servermgr.core.process.tree import kill_process_group, terminate_tree

pytestmark = pytest.mark.skipif(os.name != "posix", reason="process groups are POSIX-only")


class TestTerminateTree:
    def test_kills_root_and_grandchild(self, tmp_path: Path, port: int) -> None:
        pid_file = tmp_path / "child.pid"
        proc = subprocess.Popen(listener_argv(port, child_pid_file=pid_file), start_new_session=True)
        grandchild = int(wait_for_file(pid_file))
        assert pid_alive(grandchild)

        assert terminate_tree(proc.pid, grace_seconds=2.0) is True
        proc.wait(timeout=5)

        assert wait_for_death(grandchild)

    def test_escalates_to_sigkill(self) -> None:
        code = "import signal, time; signal.signal(signal.SIGTERM, signal.SIG_IGN); print('up', flush=True); time.sleep(60)"
        proc = subprocess.Popen([sys.executable, "-c", code], stdout=subprocess.PIPE, start_new_session=True)
        assert proc.stdout is not None
        proc.stdout.readline()

        assert terminate_tree(proc.pid, grace_seconds=0.2) is True
        proc.wait(timeout=5)
        proc.stdout.close()
        assert not pid_alive(proc.pid)

    def test_missing_root_raises_no_such_process(self) -> None:
        proc = subprocess.Popen([sys.executable, "-c", "pass"])
        proc.wait(timeout=5)
        with pytest.raises(psutil.NoSuchProcess):
            terminate_tree(proc.pid)


class TestKillProcessGroup:
    def test_unknown_group(self) -> None:
        proc = subprocess.Popen([sys.executable, "-c", "pass"], start_new_session=True)
        proc.wait(timeout=5)
        assert kill_process_group(proc.pid) is False

    def test_rejects_non_positive_ids(self) -> None:
        assert kill_process_group(0) is False
        assert kill_process_group(-1) is False


class TestPortLookup:
    def test_finds_the_listener(self, occupant: subprocess.Popen, port: int) -> None:
        owners = find_processes_by_port(port)
        assert [o.pid for o in owners] == [occupant.pid]
        assert owners[0].port == port
        assert owners[0].name

    def test_free_port_has_no_owner(self, port: int) -> None:
        assert find_processes_by_port(port) == []

    def test_own_process_is_never_reported(self) -> None:
        import socket

        with socket.socket() as sock:
            sock.bind(("127.0.0.1", 0))
            sock.listen(1)
            assert find_processes_by_port(sock.getsockname()[1]) == []

    def test_kill_port_owners_frees_the_port(
        self, occupant: subprocess.Popen, port: int, caplog: pytest.LogCaptureFixture
    ) -> None:
        with caplog.at_level("INFO", logger="servermgr"):
            owners = asyncio.run(kill_port_owners(port, grace_seconds=2.0))

        assert [o.pid for o in owners] == [occupant.pid]
        assert occupant.wait(timeout=5) is not None
        assert f'running on port "{port}"' in caplog.text
        assert "Successfully killed process" in caplog.text

    def test_kill_port_owners_on_free_port(self, port: int) -> None:
        assert asyncio.run(kill_port_owners(port)) == []


def test_listener_helper_comes_up(occupant: subprocess.Popen, port: int) -> None:
    assert wait_for_port(port, timeout=0.5)
