# cli.py
from __future__ import annotations

import subprocess
import sys
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from pathlib import Path

import click

from tinyci import settings
from tinyci.definition import find_workflow_files, load_definition
from tinyci.environment import make_provisioner
from tinyci.errors import DefinitionError
from tinyci.git_facts.git import current_ref, head_sha, pushed_files, repo_root
from tinyci.model import Definition, PushEvent, RunStatus, ScheduleEvent
from tinyci.runner import create_run, execute_run
from tinyci.scheduler import Scheduler
from tinyci.ui.console import Console, get_console, set_console


def discover_workflow(workflow_arg: str | None) -> Path:
    """
    Discover workflow file from argument, TINYCI_WORKFLOW, or the current directory.

    Raises:
        SystemExit: If workflow cannot be found or multiple workflows exist
    """
    console = get_console()
    workflow_arg = workflow_arg or settings.WORKFLOW

    if workflow_arg:
        workflow_path = Path(workflow_arg)
        if not workflow_path.exists() and workflow_path.suffix not in (".yml", ".yaml"):
            workflow_path = Path(str(workflow_path) + ".yml")
        if not workflow_path.exists():
            console.print_error(
                "Workflow file not found",
                f"Could not find workflow file: {workflow_arg}",
                suggestion="Create a workflow file or specify a different path:\n  tinyci run --workflow my_workflow.yml",
            )
            sys.exit(1)
        return workflow_path

    workflow_files = find_workflow_files(".")

    if len(workflow_files) == 0:
        console.print_error(
            "No workflow file found",
            "Could not find any workflow files.",
            details=[
                "Looked for:",
                "  tinyci_workflow.yml",
                "  *_workflow.yml",
            ],
            suggestion="Create a workflow file:\n  tinyci_workflow.yml\n\nOr specify a workflow explicitly:\n  tinyci run --workflow my_workflow.yml",
        )
        sys.exit(1)

    if len(workflow_files) > 1:
        console.print_error(
            "Multiple workflow files found",
            "Found multiple workflow files. Please specify which one to use:",
            details=[str(f) for f in workflow_files],
            suggestion="Specify a workflow explicitly:\n  tinyci run --workflow tinyci_workflow.yml",
        )
        sys.exit(1)

    return workflow_files[0]


def load_or_exit(workflow_arg: str | None) -> Definition:
    console = get_console()
    workflow_path = discover_workflow(workflow_arg)
    try:
        return load_definition(workflow_path)
    except DefinitionError as e:
        details = [f"at {e.location}"] if e.location else None
        console.print_error("Invalid workflow", f"{workflow_path}: {e.message}", details=details)
        sys.exit(1)
    except ValueError as e:
        console.print_error("Invalid workflow", str(e))
        sys.exit(1)


def local_push_event(repo: str | None, ref: str | None, sha: str | None) -> PushEvent:
    """Describe the local checkout (or the given overrides) as a push."""
    console = get_console()
    try:
        root = str(repo_root(repo or "."))
    except (subprocess.CalledProcessError, OSError):
        if repo is None:
            console.print_error(
                "Not a git repository",
                "Could not describe the current directory as a push.",
                suggestion="Run inside a git checkout or pass --repo <path-or-url>.",
            )
            sys.exit(1)
        # A remote URL: take the overrides as given.
        return PushEvent(repository=repo, ref=ref or "refs/heads/main", sha=sha)

    event = PushEvent(
        repository=root,
        ref=ref or current_ref(root),
        sha=sha or head_sha(root),
        changed_files=tuple(pushed_files(cwd=root)),
    )
    console.print_debug(f"push {event.ref}@{event.sha}: {len(event.changed_files)} changed files")
    return event


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show stack traces and full step output)",
)
@click.pass_context
def cli(ctx, debug):
    """tinyci: run push / scheduled build-and-verify pipelines."""
    console = Console(debug=debug)
    set_console(console)
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


@cli.command()
@click.option("--workflow", default=None, help="Workflow file path (defaults to tinyci_workflow.yml if present)")
def validate(workflow):
    """Parse a workflow and print what it declares."""
    definition = load_or_exit(workflow)
    get_console().print_definition(definition)


def _runner_options(fn):
    fn = click.option("--runner", type=click.Choice(["local", "docker"]), default=settings.RUNNER, show_default=True, help="Where jobs run")(fn)
    fn = click.option("--workers", default=settings.MAX_WORKERS, type=int, help="Number of jobs run in parallel")(fn)
    fn = click.option("--step-timeout", default=settings.STEP_TIMEOUT, type=float, show_default=True, help="Per-step timeout in seconds")(fn)
    fn = click.option("--work-dir", default=settings.WORK_DIR, show_default=True, help="Where job workspaces are created")(fn)
    return fn


@cli.command()
@click.option("--workflow", default=None, help="Workflow file path (defaults to tinyci_workflow.yml if present)")
@click.option("--event", "event_kind", type=click.Choice(["push", "schedule"]), default="push", show_default=True, help="Event to simulate")
@click.option("--at", "at", default=None, help="Tick time for --event schedule (ISO 8601, UTC if no offset; default now)")
@click.option("--repo", default=None, help="Repository path or URL (defaults to the current git checkout)")
@click.option("--ref", default=None, help="Git ref (defaults to the current branch)")
@click.option("--sha", default=None, help="Commit SHA (defaults to HEAD)")
@_runner_options
def run(workflow, event_kind, at, repo, ref, sha, runner, workers, step_timeout, work_dir):
    """Evaluate an event against a workflow and run it if it triggers."""
    console = get_console()
    definition = load_or_exit(workflow)

    if event_kind == "push":
        event = local_push_event(repo, ref, sha)
    else:
        try:
            tick = datetime.fromisoformat(at) if at else datetime.now(timezone.utc)
        except ValueError:
            console.print_error("Invalid --at", f"Not an ISO 8601 timestamp: {at}")
            sys.exit(1)
        event = ScheduleEvent(at=tick, repository=repo or settings.REPOSITORY, ref=ref or settings.REF, sha=sha)

    run_ = create_run(definition, event)
    if run_ is None:
        console.print_no_trigger(event)
        return

    try:
        provisioner = make_provisioner(runner, work_dir)
        execute_run(run_, definition, provisioner, max_workers=workers, step_timeout=step_timeout)
    except KeyboardInterrupt:
        console.print_info("\nInterrupted by user")
        sys.exit(130)
    except Exception as e:
        console.print_exception(e)
        sys.exit(1)

    if run_.status is RunStatus.FAILED:
        sys.exit(1)


@cli.command()
@click.option("--workflow", default=None, help="Workflow file path (defaults to tinyci_workflow.yml if present)")
@click.option("--repo", default=settings.REPOSITORY, show_default=True, help="Repository path or URL checked out by scheduled runs")
@click.option("--ref", default=settings.REF, show_default=True, help="Git ref checked out by scheduled runs")
@click.option("--max-runs", default=1, type=int, show_default=True, help="Scheduled runs allowed in flight at once")
@_runner_options
def schedule(workflow, repo, ref, max_runs, runner, workers, step_timeout, work_dir):
    """Run the scheduler loop: fire the workflow's cron triggers as they come due."""
    console = get_console()
    definition = load_or_exit(workflow)
    provisioner = make_provisioner(runner, work_dir)

    def report(future) -> None:
        exc = future.exception()
        if exc is not None:
            console.print_exception(exc)

    with ThreadPoolExecutor(max_workers=max_runs) as pool:
        def on_event(event: ScheduleEvent) -> None:
            run_ = create_run(definition, event)
            if run_ is not None:
                future = pool.submit(
                    execute_run, run_, definition, provisioner, max_workers=workers, step_timeout=step_timeout
                )
                future.add_done_callback(report)

        try:
            scheduler = Scheduler(definition, on_event, repository=repo, ref=ref)
        except ValueError as e:
            console.print_error("Nothing to schedule", str(e), suggestion="Add an `on: schedule: - cron: ...` trigger.")
            sys.exit(1)
        scheduler.run()
        console.print_info("Waiting for in-flight runs...")


if __name__ == "__main__":
    cli()
