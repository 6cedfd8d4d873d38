import os
import subprocess
import sys
from pathlib import Path

import pytest

# Keep the repository free of Python bytecode and __pycache__ artifacts during tests.
sys.dont_write_bytecode = True

TESTS_ROOT = Path(__file__).resolve().parent
REPO_ROOT = TESTS_ROOT.parent
SRC_ROOT = REPO_ROOT / "src"

# Make src/ importable as 'servermgr' and tests/ importable for 'helpers'
for p in (SRC_ROOT, TESTS_ROOT):
    if str(p) not in sys.path:
        sys.path.insert(0, str(p))

from helpers.processes import free_port, listener_argv, stop_process, wait_for_port  # noqa: E402
from servermgr.core.log import reset_logging_for_tests  # noqa: E402

pytest_plugins = ["pytester"]


@pytest.fixture(autouse=True)
def _clean_servermgr_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Settings from the developer's shell must not leak into tests."""
    for key in list(os.environ):
        if key.startswith("SERVERMGR_"):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture(autouse=True)
def _reset_logging():
    yield
    reset_logging_for_tests()


@pytest.fixture
def port() -> int:
    """A TCP port on 127.0.0.1 that was free a moment ago."""
    return free_port()


@pytest.fixture
def occupant(port: int):
    """A foreign process (not this test process) listening on ``port``."""
    proc = subprocess.Popen(listener_argv(port), start_new_session=True)
    try:
        if not wait_for_port(port):
            pytest.fail(f"listener did not come up on port {port}")
        yield proc
    finally:
        stop_process(proc)
