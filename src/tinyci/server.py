from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import BackgroundTasks, FastAPI, HTTPException, Response
from pydantic import BaseModel, Field

from . import settings
from .definition import find_workflow_files, load_definition
from .environment import Provisioner, make_provisioner
from .model import Definition, JobResult, PushEvent, Run, StepResult
from .runner import create_run, execute_run
from .store import RunStore

# -------------------- Schemas --------------------

class PushRequest(BaseModel):
    repository: str
    ref: str = "refs/heads/main"
    sha: Optional[str] = None
    changed_files: list[str] = Field(default_factory=list)

class TriggerResponse(BaseModel):
    triggered: bool
    run_id: Optional[str] = None

class StepResponse(BaseModel):
    name: str
    status: str
    exit_code: int
    output: str
    duration: float
    timed_out: bool

    @classmethod
    def from_result(cls, r: StepResult) -> "StepResponse":
        return cls(
            name=r.name,
            status=r.status.value,
            exit_code=r.exit_code,
            output=r.output,
            duration=r.duration,
            timed_out=r.timed_out,
        )

class JobResponse(BaseModel):
    name: str
    status: str
    error_kind: Optional[str] = None
    error: Optional[str] = None
    steps: list[StepResponse]

    @classmethod
    def from_result(cls, r: JobResult) -> "JobResponse":
        return cls(
            name=r.name,
            status=r.status.value,
            error_kind=r.error_kind,
            error=r.error,
            steps=[StepResponse.from_result(s) for s in r.steps],
        )

class RunResponse(BaseModel):
    id: str
    workflow: str
    event: str
    ref: str
    status: str
    job_names: list[str]
    jobs: list[JobResponse]
    created_at: datetime
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    @classmethod
    def from_run(cls, run: Run) -> "RunResponse":
        # execute_run may still be recording results on a worker thread.
        jobs = list(run.jobs.values())
        return cls(
            id=run.id,
            workflow=run.workflow,
            event=run.event.kind,
            ref=run.event.ref,
            status=run.status.value,
            job_names=list(run.job_names),
            jobs=[JobResponse.from_result(j) for j in jobs],
            created_at=run.created_at,
            started_at=run.started_at,
            finished_at=run.finished_at,
        )

# -------------------- App --------------------

def _default_definition() -> Definition:
    if settings.WORKFLOW:
        return load_definition(settings.WORKFLOW)
    found = find_workflow_files(".")
    if len(found) != 1:
        raise RuntimeError(
            "Set TINYCI_WORKFLOW: expected exactly one workflow file in the current "
            f"directory, found {[str(p) for p in found]}"
        )
    return load_definition(found[0])


def create_app(
    definition: Optional[Definition] = None,
    provisioner: Optional[Provisioner] = None,
    store: Optional[RunStore] = None,
    *,
    max_workers: Optional[int] = None,
    step_timeout: Optional[float] = None,
) -> FastAPI:
    """
    Push-webhook receiver + run browser.

    With no arguments everything comes from tinyci.settings, so this works as
    an ASGI factory: `uvicorn --factory tinyci.server:create_app`.
    """
    if definition is None:
        definition = _default_definition()
    if max_workers is None:
        max_workers = settings.MAX_WORKERS
    if step_timeout is None:
        step_timeout = settings.STEP_TIMEOUT
    if provisioner is None:
        provisioner = make_provisioner(settings.RUNNER, settings.WORK_DIR)
    if store is None:
        store = RunStore(max_runs=settings.MAX_RUNS)

    app = FastAPI(title="tinyci")
    app.state.definition = definition
    app.state.store = store

    def _execute(run: Run) -> None:
        try:
            execute_run(run, definition, provisioner, max_workers=max_workers, step_timeout=step_timeout)
        finally:
            store.finished(run)

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    @app.post("/events/push", response_model=TriggerResponse)
    async def push(req: PushRequest, background: BackgroundTasks, response: Response):
        event = PushEvent(
            repository=req.repository,
            ref=req.ref,
            sha=req.sha,
            changed_files=tuple(req.changed_files),
        )
        run = create_run(definition, event)
        if run is None:
            return TriggerResponse(triggered=False)

        store.add(run)
        background.add_task(_execute, run)
        response.status_code = 202
        return TriggerResponse(triggered=True, run_id=run.id)

    @app.get("/runs", response_model=list[RunResponse])
    async def list_runs():
        return [RunResponse.from_run(r) for r in store.list()]

    @app.get("/runs/{run_id}", response_model=RunResponse)
    async def get_run(run_id: str):
        run = store.get(run_id)
        if run is None:
            raise HTTPException(status_code=404, detail="Run not found")
        return RunResponse.from_run(run)

    return app
