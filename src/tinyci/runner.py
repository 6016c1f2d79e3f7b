# runner.py
from __future__ import annotations

import os
import shlex
from concurrent.futures import ThreadPoolExecutor, as_completed
from fnmatch import fnmatch
from typing import Dict, List, Optional

from .actions import compile_step
from .environment import TOOL_HINTS, Environment, Provisioner
from .errors import EnvironmentProvisionError, StepFailure
from .model import (
    Definition,
    Event,
    Job,
    JobResult,
    JobStatus,
    PushEvent,
    PushTrigger,
    Run,
    ScheduleEvent,
    ScheduleTrigger,
    Step,
    StepResult,
    StepStatus,
    TriggeredJobs,
)
from .cron import matches as cron_matches
from .ui.console import Console, get_console

# event ---> evaluate ---> Run(pending) ---> jobs (parallel) ---> steps (sequential, fail-fast)

DEFAULT_STEP_TIMEOUT = 3600.0


# ----------------------------------------------------------------------
# Trigger evaluation
# ----------------------------------------------------------------------

def _matches_any(value: str, patterns: tuple[str, ...]) -> bool:
    return any(fnmatch(value, p) for p in patterns)


def _push_matches(trigger: PushTrigger, event: PushEvent) -> bool:
    if trigger.branches is not None and not _matches_any(event.branch, trigger.branches):
        return False
    if trigger.paths is not None:
        return any(_matches_any(f, trigger.paths) for f in event.changed_files)
    return True


def trigger_matches(trigger, event: Event) -> bool:
    if isinstance(trigger, PushTrigger) and isinstance(event, PushEvent):
        return _push_matches(trigger, event)
    if isinstance(trigger, ScheduleTrigger) and isinstance(event, ScheduleEvent):
        return cron_matches(trigger.cron, event.at)
    return False


def evaluate(definition: Definition, event: Event) -> Optional[TriggeredJobs]:
    """
    Returns the jobs to run if `event` matches any trigger, else None.
    Several matching triggers still yield a single set of jobs.
    """
    for trigger in definition.triggers:
        if trigger_matches(trigger, event):
            return TriggeredJobs(trigger=trigger, jobs=tuple(definition.jobs.values()))
    return None


def create_run(definition: Definition, event: Event) -> Optional[Run]:
    """A fresh Pending run for a matching event; None on trigger mismatch."""
    triggered = evaluate(definition, event)
    if triggered is None:
        return None
    return Run(
        event=event,
        job_names=[j.name for j in triggered.jobs],
        workflow=definition.name,
    )


# ----------------------------------------------------------------------
# Execution primitives
# ----------------------------------------------------------------------

def step_variables(job: Job, step: Step, event: Event, workspace: str) -> Dict[str, str]:
    """Runner-provided variables, then job env, then step env."""
    repository = event.repository
    if os.path.isdir(repository):
        repository = os.path.abspath(repository)

    variables = {
        "CI": "true",
        "TINYCI": "true",
        "TINYCI_JOB": job.name,
        "TINYCI_EVENT": event.kind,
        "TINYCI_REPOSITORY": repository,
        "TINYCI_REF": event.ref,
        "TINYCI_SHA": event.sha or "",
        "TINYCI_WORKSPACE": workspace,
    }
    variables.update(job.env)
    variables.update(step.env)
    return variables


def _hint_for(step: Step, exit_code: int) -> str | None:
    # 127: command not found
    if exit_code != 127:
        return None
    try:
        tokens = shlex.split(compile_step(step))
    except (KeyError, ValueError):
        return None
    return next((TOOL_HINTS[t] for t in tokens if t in TOOL_HINTS), None)


def execute_step(
    step: Step,
    env: Environment,
    *,
    variables: Dict[str, str] | None = None,
    timeout: float | None = DEFAULT_STEP_TIMEOUT,
) -> StepResult:
    """Run one step inside `env`; never raises for a failing command."""
    try:
        command = compile_step(step)
    except KeyError as e:
        return StepResult(name=step.name, status=StepStatus.FAILURE, exit_code=1, output=f"{e.args[0]}\n")

    if step.timeout_minutes is not None:
        timeout = step.timeout_minutes * 60

    get_console().print_debug(f"{step.name}: $ {command} (timeout={timeout})")
    res = env.execute(command, cwd=step.cwd, env=variables, timeout=timeout)
    return StepResult(
        name=step.name,
        status=StepStatus.SUCCESS if res.exit_code == 0 else StepStatus.FAILURE,
        exit_code=res.exit_code,
        output=res.output,
        duration=res.duration,
        timed_out=res.timed_out,
    )


def execute_job(
    job: Job,
    provisioner: Provisioner,
    *,
    event: Event,
    step_timeout: float | None = DEFAULT_STEP_TIMEOUT,
    console: Console | None = None,
) -> JobResult:
    """
    Provision an environment for `job` and run its steps in order.
    Stops at the first failing step. No retries.
    """
    console = console or get_console()
    console.print_job_start(job.name, job.runs_on)
    results: List[StepResult] = []

    try:
        with provisioner.provision(job) as env:
            for step in job.steps:
                console.print_step(job.name, step.name)
                variables = step_variables(job, step, event, env.workspace)
                res = execute_step(step, env, variables=variables, timeout=step_timeout)
                results.append(res)
                if not res.ok:
                    raise StepFailure(job.name, step.name, res.exit_code, res.output, timed_out=res.timed_out)
    except EnvironmentProvisionError as e:
        console.print_failure(job.name, e.message, hint=e.hint, is_job=True)
        return JobResult(
            name=job.name,
            status=JobStatus.FAILED,
            steps=results,
            error_kind=e.kind,
            error=e.message,
        )
    except StepFailure as e:
        failed_step = job.steps[len(results) - 1]
        console.print_failure(
            f"{job.name} / {e.step}",
            e.output,
            exit_code=e.exit_code,
            hint=_hint_for(failed_step, e.exit_code),
        )
        return JobResult(
            name=job.name,
            status=JobStatus.FAILED,
            steps=results,
            error_kind=e.kind,
            error=e.message,
        )

    console.print_success(job.name)
    return JobResult(name=job.name, status=JobStatus.SUCCEEDED, steps=results)


# ----------------------------------------------------------------------
# Public API
# ----------------------------------------------------------------------

def execute_run(
    run: Run,
    definition: Definition,
    provisioner: Provisioner,
    *,
    max_workers: int | None = None,
    step_timeout: float | None = DEFAULT_STEP_TIMEOUT,
    console: Console | None = None,
) -> Run:
    """
    Drive a Pending run to a terminal status.

    Jobs are independent: they run on a thread pool and one job's failure
    never stops a sibling.
    """
    console = console or get_console()
    if max_workers is None:
        c = os.cpu_count() or 2
        max_workers = max(1, c - 1)

    run.start()
    console.print_run_started(run)

    outcomes: Dict[str, JobResult] = {}
    with ThreadPoolExecutor(max_workers=max_workers) as pool:
        futures = {
            pool.submit(
                execute_job,
                definition.jobs[name],
                provisioner,
                event=run.event,
                step_timeout=step_timeout,
                console=console,
            ): name
            for name in run.job_names
        }
        for future in as_completed(futures):
            name = futures[future]
            try:
                outcomes[name] = future.result()
            except Exception as e:
                # Provisioner / environment bugs: recorded against the job, not lost.
                console.print_exception(e)
                outcomes[name] = JobResult(
                    name=name,
                    status=JobStatus.FAILED,
                    error_kind="internal_error",
                    error=f"{type(e).__name__}: {e}",
                )

    for name in run.job_names:
        run.record(outcomes[name])
    run.finish()
    console.print_results(run)
    return run


def run_pipeline(
    definition: Definition,
    event: Event,
    provisioner: Provisioner,
    **kwargs,
) -> Optional[Run]:
    """Evaluate + execute. Returns None when the event triggers nothing."""
    run = create_run(definition, event)
    if run is None:
        return None
    return execute_run(run, definition, provisioner, **kwargs)
