from __future__ import annotations

import asyncio

import pytest

from servermgr.core.conflicts import ConflictAction, ConflictResolver
from servermgr.core.exceptions import InvalidPolicyError, OperatorDeclined, PortInUseError
from servermgr.core.models import ConflictPolicy
from servermgr.core.process.lookup import PortOwner


class Recorder:
    """Stands in for the operator and the port-owner killer, recording calls."""

    def __init__(self, answer: bool = True, owners: list[PortOwner] | None = None) -> None:
        self.answer = answer
        self.owners = owners if owners is not None else [PortOwner(pid=4242, name="node", port=3000)]
        self.questions: list[str] = []
        self.killed: list[int] = []

    async def confirm(self, message: str) -> bool:
        self.questions.append(message)
        return self.answer

    async def kill_owners(self, port: int) -> list[PortOwner]:
        self.killed.append(port)
        return self.owners

    def resolver(self) -> ConflictResolver:
        return ConflictResolver(confirm=self.confirm, kill_owners=self.kill_owners)


def resolve(recorder: Recorder, policy) -> ConflictAction:
    return asyncio.run(recorder.resolver().resolve(policy, "localhost", 3000))


def test_error_policy_raises_port_in_use() -> None:
    rec = Recorder()
    with pytest.raises(PortInUseError) as exc_info:
        resolve(rec, "error")
    assert exc_info.value.port == 3000
    assert rec.killed == []
    assert rec.questions == []


def test_ignore_policy_skips_spawn(caplog: pytest.LogCaptureFixture) -> None:
    rec = Recorder()
    with caplog.at_level("INFO", logger="servermgr"):
        assert resolve(rec, ConflictPolicy.IGNORE) is ConflictAction.PROCEED_SKIP_SPAWN
    assert rec.killed == []
    assert "Assuming server is already running" in caplog.text


def test_kill_policy_kills_without_asking() -> None:
    rec = Recorder()
    assert resolve(rec, "kill") is ConflictAction.PROCEED_SPAWN
    assert rec.killed == [3000]
    assert rec.questions == []


def test_kill_policy_warns_when_nobody_owns_the_port(caplog: pytest.LogCaptureFixture) -> None:
    rec = Recorder(owners=[])
    with caplog.at_level("WARNING", logger="servermgr"):
        assert resolve(rec, "kill") is ConflictAction.PROCEED_SPAWN
    assert "No process found bound to port 3000" in caplog.text


def test_ask_policy_yes_kills_and_spawns() -> None:
    rec = Recorder(answer=True)
    assert resolve(rec, "ask") is ConflictAction.PROCEED_SPAWN
    assert rec.killed == [3000]
    assert len(rec.questions) == 1
    assert "3000" in rec.questions[0]


def test_ask_policy_no_is_a_terminal_exit() -> None:
    rec = Recorder(answer=False)
    with pytest.raises(SystemExit) as exc_info:
        resolve(rec, "ask")
    assert isinstance(exc_info.value, OperatorDeclined)
    assert exc_info.value.code == 1
    assert rec.killed == []


def test_unknown_policy_is_rejected() -> None:
    rec = Recorder()
    with pytest.raises(InvalidPolicyError):
        resolve(rec, "explode")
    assert rec.killed == []


def test_assume_yes_environment_answers_the_default_prompt(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SERVERMGR_ASSUME_YES", "1")
    rec = Recorder()
    resolver = ConflictResolver(kill_owners=rec.kill_owners)
    assert asyncio.run(resolver.resolve("ask", "localhost", 3000)) is ConflictAction.PROCEED_SPAWN
    assert rec.killed == [3000]
