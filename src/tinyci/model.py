# model.py
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional, Tuple, Union


# ---------------------------------------------------------------------
# Definition (immutable, externally supplied)
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class PushTrigger:
    """Fires on every push, optionally filtered by branch / changed path globs."""
    branches: Optional[Tuple[str, ...]] = None
    paths: Optional[Tuple[str, ...]] = None

    def describe(self) -> str:
        filters = []
        if self.branches is not None:
            filters.append(f"branches: {', '.join(self.branches)}")
        if self.paths is not None:
            filters.append(f"paths: {', '.join(self.paths)}")
        return f"push ({'; '.join(filters)})" if filters else "push"


@dataclass(frozen=True)
class ScheduleTrigger:
    """Fires when a scheduler tick satisfies the cron expression."""
    cron: str

    def describe(self) -> str:
        return f"schedule: {self.cron}"


Trigger = Union[PushTrigger, ScheduleTrigger]


@dataclass(frozen=True)
class Step:
    """A single action or command inside a CI job. Exactly one of `uses` / `run` is set."""
    name: str
    uses: str | None = None
    inputs: Dict[str, str] = field(default_factory=dict)  # `with:` in YAML
    run: str | None = None
    env: Dict[str, str] = field(default_factory=dict)
    cwd: str | None = None  # `working-directory:` in YAML
    timeout_minutes: float | None = None

    @property
    def action(self) -> str | None:
        """`owner/name` part of `uses`, without the version."""
        if self.uses is None:
            return None
        return self.uses.split("@", 1)[0]

    @property
    def action_version(self) -> str | None:
        if self.uses is None or "@" not in self.uses:
            return None
        return self.uses.split("@", 1)[1]


@dataclass(frozen=True)
class Job:
    """A CI job: an environment descriptor plus ordered steps."""
    name: str
    runs_on: str
    steps: Tuple[Step, ...]
    env: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class Definition:
    name: str
    triggers: Tuple[Trigger, ...]
    jobs: Dict[str, Job]  # declaration order preserved

    @property
    def schedules(self) -> List[ScheduleTrigger]:
        return [t for t in self.triggers if isinstance(t, ScheduleTrigger)]

    @property
    def has_push(self) -> bool:
        return any(isinstance(t, PushTrigger) for t in self.triggers)


# ---------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class PushEvent:
    repository: str
    ref: str = "refs/heads/main"
    sha: str | None = None
    changed_files: Tuple[str, ...] = ()

    kind = "push"

    @property
    def branch(self) -> str:
        prefix = "refs/heads/"
        return self.ref[len(prefix):] if self.ref.startswith(prefix) else self.ref


@dataclass(frozen=True)
class ScheduleEvent:
    """A scheduler tick."""
    at: datetime
    repository: str = "."
    ref: str = "HEAD"
    sha: str | None = None

    kind = "schedule"


Event = Union[PushEvent, ScheduleEvent]


@dataclass(frozen=True)
class TriggeredJobs:
    """Result of a successful trigger evaluation."""
    trigger: Trigger
    jobs: Tuple[Job, ...]


# ---------------------------------------------------------------------
# Run state
# ---------------------------------------------------------------------

class RunStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class JobStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class StepStatus(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class StepResult:
    name: str
    status: StepStatus
    exit_code: int
    output: str = ""
    duration: float = 0.0
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.status is StepStatus.SUCCESS


@dataclass
class JobResult:
    name: str
    status: JobStatus
    steps: List[StepResult] = field(default_factory=list)
    error_kind: str | None = None  # "step_failure" | "environment_error"
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status is JobStatus.SUCCEEDED


@dataclass
class Run:
    """
    One execution of a pipeline. Owns its job results exclusively.

    Pending -> Running -> {Succeeded | Failed}
    """
    event: Event
    job_names: List[str]
    workflow: str = ""
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    status: RunStatus = RunStatus.PENDING
    jobs: Dict[str, JobResult] = field(default_factory=dict)
    created_at: datetime = field(default_factory=now_utc)
    started_at: datetime | None = None
    finished_at: datetime | None = None

    @property
    def terminal(self) -> bool:
        return self.status in (RunStatus.SUCCEEDED, RunStatus.FAILED)

    def start(self) -> None:
        if self.status is not RunStatus.PENDING:
            raise RuntimeError(f"Run {self.id} cannot start from status {self.status.value}")
        self.status = RunStatus.RUNNING
        self.started_at = now_utc()

    def record(self, result: JobResult) -> None:
        if self.status is not RunStatus.RUNNING:
            raise RuntimeError(f"Run {self.id} is not running (status={self.status.value})")
        self.jobs[result.name] = result

    def finish(self) -> None:
        if self.status is not RunStatus.RUNNING:
            raise RuntimeError(f"Run {self.id} cannot finish from status {self.status.value}")
        all_ok = all(
            name in self.jobs and self.jobs[name].ok for name in self.job_names
        )
        self.status = RunStatus.SUCCEEDED if all_ok else RunStatus.FAILED
        self.finished_at = now_utc()
