"""Shared pytest configuration and fixtures."""

from __future__ import annotations

import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterator, List

import pytest

from tinyci.definition import parse
from tinyci.environment import CommandResult, Environment, Provisioner
from tinyci.errors import EnvironmentProvisionError
from tinyci.model import Definition, Job
from tinyci.ui.console import Console, set_console

EXAMPLES = Path(__file__).resolve().parent.parent / "examples"


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers."""
    config.addinivalue_line("markers", "integration: marks tests that spawn real processes (git, sh)")


@dataclass
class Call:
    command: str
    cwd: str | None
    env: Dict[str, str]
    timeout: float | None


class FakeEnvironment(Environment):
    """Records commands; exit codes are scripted per exact command."""

    def __init__(self, exit_codes: Dict[str, int]):
        self.workspace = "/fake/workspace"
        self.exit_codes = exit_codes
        self.calls: List[Call] = []

    @property
    def commands(self) -> List[str]:
        return [c.command for c in self.calls]

    def execute(self, command, *, cwd=None, env=None, timeout=None) -> CommandResult:
        self.calls.append(Call(command=command, cwd=cwd, env=dict(env or {}), timeout=timeout))
        code = self.exit_codes.get(command, 0)
        return CommandResult(exit_code=code, output=f"ran: {command}\n", duration=0.01)


@dataclass
class FakeProvisioner(Provisioner):
    exit_codes: Dict[str, int] = field(default_factory=dict)
    unavailable: tuple = ()
    provisioned: List[str] = field(default_factory=list)
    torn_down: List[str] = field(default_factory=list)
    environments: Dict[str, FakeEnvironment] = field(default_factory=dict)

    def __post_init__(self):
        self._lock = threading.Lock()

    @contextmanager
    def provision(self, job: Job) -> Iterator[FakeEnvironment]:
        if job.runs_on in self.unavailable:
            raise EnvironmentProvisionError(job.name, job.runs_on, "no runner with that label has capacity")
        env = FakeEnvironment(self.exit_codes)
        with self._lock:
            self.provisioned.append(job.name)
            self.environments[job.name] = env
        try:
            yield env
        finally:
            with self._lock:
                self.torn_down.append(job.name)


@pytest.fixture(autouse=True)
def quiet_console() -> Console:
    """Fresh global console per test."""
    console = Console(debug=False)
    set_console(console)
    return console


@pytest.fixture
def cargo_workflow_text() -> str:
    return (EXAMPLES / "cargo_workflow.yml").read_text()


@pytest.fixture
def cargo_definition(cargo_workflow_text) -> Definition:
    return parse(cargo_workflow_text, default_name="cargo_workflow")


@pytest.fixture
def fake_provisioner() -> FakeProvisioner:
    return FakeProvisioner()


@pytest.fixture
def make_fake_provisioner():
    """Factory: make_fake_provisioner(exit_codes={...}, unavailable=(...))."""
    return FakeProvisioner


@pytest.fixture
def fake_environment() -> FakeEnvironment:
    return FakeEnvironment({})
