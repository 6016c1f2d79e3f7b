# environment.py
# Execution environments. A provisioner turns a job's `runs-on` descriptor into
# an Environment; provisioning is a context manager so teardown always runs.
from __future__ import annotations

import os
import shutil
import signal
import subprocess
import sys
import tempfile
import time
import uuid
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import ContextManager, Dict, Iterable, Iterator, List, Optional

from .errors import EnvironmentProvisionError
from .model import Job


TOOL_HINTS = {
    "docker": "Install Docker and ensure the daemon is running.",
    "git": "Install Git or fix PATH.",
    "cargo": "Install Rust via rustup (https://rustup.rs).",
    "rustup": "Install rustup (https://rustup.rs).",
}

# Keep the tail of very chatty steps only.
MAX_OUTPUT_CHARS = 200_000
TIMEOUT_EXIT_CODE = 124


@dataclass
class CommandResult:
    exit_code: int
    output: str
    duration: float = 0.0
    timed_out: bool = False


def _decode(out: bytes | str | None) -> str:
    if out is None:
        return ""
    if isinstance(out, bytes):
        out = out.decode("utf-8", errors="replace")
    return out[-MAX_OUTPUT_CHARS:]


def run_command(
    args: str | List[str],
    *,
    shell: bool,
    cwd: str | None = None,
    env: Dict[str, str] | None = None,
    timeout: float | None = None,
) -> CommandResult:
    """
    Run a command, capturing stdout+stderr together.

    The command gets its own process group so a timeout kills the whole tree,
    not just the shell.
    """
    start = time.monotonic()
    proc = subprocess.Popen(
        args,
        shell=shell,
        cwd=cwd,
        env=env,
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT,
        stdin=subprocess.DEVNULL,
        start_new_session=True,
    )
    try:
        out, _ = proc.communicate(timeout=timeout)
    except subprocess.TimeoutExpired:
        try:
            os.killpg(proc.pid, signal.SIGKILL)
        except ProcessLookupError:
            pass
        out, _ = proc.communicate()
        return CommandResult(
            exit_code=TIMEOUT_EXIT_CODE,
            output=_decode(out) + f"\n[tinyci] command timed out after {timeout}s\n",
            duration=time.monotonic() - start,
            timed_out=True,
        )

    return CommandResult(
        exit_code=proc.returncode,
        output=_decode(out),
        duration=time.monotonic() - start,
    )


# ---------------------------------------------------------------------
# Contracts
# ---------------------------------------------------------------------

class Environment(ABC):
    """A provisioned place to run a job's steps."""

    # Path of the job workspace as seen by the commands.
    workspace: str

    @abstractmethod
    def execute(
        self,
        command: str,
        *,
        cwd: str | None = None,
        env: Dict[str, str] | None = None,
        timeout: float | None = None,
    ) -> CommandResult:
        raise NotImplementedError


class Provisioner(ABC):
    """
    Base contract for anything that can provision environments.
    Injected into the runner; never looked up globally.
    """

    @abstractmethod
    def provision(self, job: Job) -> ContextManager[Environment]:
        """
        Context manager yielding an Environment for `job`.
        Raises EnvironmentProvisionError if `job.runs_on` cannot be satisfied.
        """
        raise NotImplementedError


def _make_workspace(work_root: Path, job: Job) -> Path:
    """Fresh workspace directory for `job`; failures are provisioning errors."""
    try:
        work_root.mkdir(parents=True, exist_ok=True)
        return Path(tempfile.mkdtemp(prefix=f"{job.name}-", dir=work_root))
    except OSError as e:
        raise EnvironmentProvisionError(
            job.name, job.runs_on, f"could not create workspace under {work_root}: {e}"
        ) from e


# ---------------------------------------------------------------------
# Local (host) environments
# ---------------------------------------------------------------------

def default_local_labels() -> frozenset[str]:
    if sys.platform.startswith("linux"):
        return frozenset({"ubuntu-latest", "ubuntu-24.04", "ubuntu-22.04", "linux", "self-hosted", "local"})
    return frozenset({"self-hosted", "local"})


class LocalEnvironment(Environment):
    def __init__(self, workspace: Path):
        self.root = workspace
        self.workspace = str(workspace)

    def execute(
        self,
        command: str,
        *,
        cwd: str | None = None,
        env: Dict[str, str] | None = None,
        timeout: float | None = None,
    ) -> CommandResult:
        run_dir = (self.root / (cwd or ".")).resolve()
        if not run_dir.is_dir():
            return CommandResult(exit_code=1, output=f"working directory not found: {run_dir}\n")

        full_env = os.environ.copy()
        full_env.update(env or {})
        return run_command(command, shell=True, cwd=str(run_dir), env=full_env, timeout=timeout)


class LocalProvisioner(Provisioner):
    """Runs steps on this machine, in a throwaway workspace per job."""

    def __init__(self, labels: Optional[Iterable[str]] = None, work_root: str | Path = ".tinyci/work"):
        self.labels = frozenset(labels) if labels is not None else default_local_labels()
        self.work_root = Path(work_root).expanduser().resolve()

    @contextmanager
    def provision(self, job: Job) -> Iterator[LocalEnvironment]:
        if job.runs_on not in self.labels:
            raise EnvironmentProvisionError(
                job.name,
                job.runs_on,
                f"no local runner matches {job.runs_on!r}",
                hint=f"Local runner labels: {sorted(self.labels)}",
            )
        workspace = _make_workspace(self.work_root, job)
        try:
            yield LocalEnvironment(workspace)
        finally:
            shutil.rmtree(workspace, ignore_errors=True)


# ---------------------------------------------------------------------
# Docker environments
# ---------------------------------------------------------------------

DEFAULT_IMAGES = {
    "ubuntu-latest": "ubuntu:latest",
    "ubuntu-24.04": "ubuntu:24.04",
    "ubuntu-22.04": "ubuntu:22.04",
    "linux": "ubuntu:latest",
}
CONTAINER_WORKDIR = "/workspace"


def _check_docker_available(job: Job) -> None:
    try:
        subprocess.run(["docker", "--version"], capture_output=True, check=True)
    except (subprocess.CalledProcessError, FileNotFoundError) as e:
        raise EnvironmentProvisionError(
            job.name, job.runs_on, "Docker is not available", hint=TOOL_HINTS["docker"]
        ) from e


class DockerEnvironment(Environment):
    def __init__(self, container: str):
        self.container = container
        self.workspace = CONTAINER_WORKDIR

    def execute(
        self,
        command: str,
        *,
        cwd: str | None = None,
        env: Dict[str, str] | None = None,
        timeout: float | None = None,
    ) -> CommandResult:
        container_cwd = f"{CONTAINER_WORKDIR}/{cwd or '.'}".replace("//", "/")
        cmd = ["docker", "exec", "-w", container_cwd]
        for key, value in (env or {}).items():
            cmd.extend(["-e", f"{key}={value}"])
        cmd.extend([self.container, "sh", "-c", command])
        return run_command(cmd, shell=False, timeout=timeout)


class DockerProvisioner(Provisioner):
    """
    One long-lived container per job; steps run via `docker exec`.
    The job workspace is a host directory mounted at /workspace.
    """

    def __init__(self, images: Optional[Dict[str, str]] = None, work_root: str | Path = ".tinyci/work"):
        self.images = dict(DEFAULT_IMAGES if images is None else images)
        self.work_root = Path(work_root).expanduser().resolve()

    @contextmanager
    def provision(self, job: Job) -> Iterator[DockerEnvironment]:
        image = self.images.get(job.runs_on)
        if image is None:
            raise EnvironmentProvisionError(
                job.name,
                job.runs_on,
                f"no image configured for {job.runs_on!r}",
                hint=f"Known labels: {sorted(self.images)}",
            )
        _check_docker_available(job)

        workspace = _make_workspace(self.work_root, job)
        container = f"tinyci-{job.name}-{uuid.uuid4().hex[:8]}".lower()
        try:
            proc = subprocess.run(
                [
                    "docker", "run", "-d", "--rm",
                    "--name", container,
                    "-v", f"{workspace}:{CONTAINER_WORKDIR}",
                    "-w", CONTAINER_WORKDIR,
                    image, "sleep", "infinity",
                ],
                capture_output=True,
                text=True,
            )
            if proc.returncode != 0:
                raise EnvironmentProvisionError(
                    job.name,
                    job.runs_on,
                    f"could not start container from {image}: {proc.stderr.strip()}",
                )

            yield DockerEnvironment(container)
        finally:
            subprocess.run(["docker", "rm", "-f", container], capture_output=True)
            shutil.rmtree(workspace, ignore_errors=True)


PROVISIONERS = {
    "local": LocalProvisioner,
    "docker": DockerProvisioner,
}


def make_provisioner(kind: str, work_root: str | Path = ".tinyci/work") -> Provisioner:
    try:
        cls = PROVISIONERS[kind]
    except KeyError:
        raise ValueError(f"Unknown runner {kind!r} (choose from {sorted(PROVISIONERS)})") from None
    return cls(work_root=work_root)
