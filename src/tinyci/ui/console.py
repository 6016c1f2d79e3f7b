"""Console output formatting utilities for tinyci."""

from __future__ import annotations

import sys
import threading
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from tinyci.model import Definition, Event, Run


# Lines of step output shown on failure outside debug mode.
OUTPUT_TAIL_LINES = 20


class Console:
    """Centralized console output formatting."""

    def __init__(self, debug: bool = False):
        """
        Initialize console formatter.

        Args:
            debug: If True, show detailed output including stack traces
                   and full step output
        """
        self.debug = debug
        # Jobs run on threads; keep multi-line blocks together.
        self._lock = threading.Lock()

    def _emit(self, *lines: str, err: bool = False) -> None:
        stream = sys.stderr if err else sys.stdout
        with self._lock:
            for line in lines:
                print(line, file=stream)

    def print_run_started(self, run: "Run") -> None:
        """Print run start information."""
        self._emit(
            "\nRUN STARTED",
            f"Run ID: {run.id}",
            f"Workflow: {run.workflow}",
            f"Event: {run.event.kind} ({run.event.ref})",
            f"Jobs: {len(run.job_names)}",
            "",
        )

    def print_no_trigger(self, event: "Event") -> None:
        """Print that an event matched no trigger."""
        self._emit(f"No trigger matched {event.kind} event; nothing to run.")

    def print_job_start(self, name: str, runs_on: str) -> None:
        """Print job start message."""
        self._emit(f"\nJOB STARTED: {name} (runs-on: {runs_on})")

    def print_step(self, job: str, name: str) -> None:
        """Print step start message."""
        self._emit(f"[{job}] STEP: {name}")

    def print_success(self, name: str) -> None:
        """Print job success message."""
        self._emit(f"[{name}] STATUS: success")

    def print_failure(
        self,
        name: str,
        reason: str,
        exit_code: Optional[int] = None,
        hint: Optional[str] = None,
        is_job: bool = False,
    ) -> None:
        """
        Print failure message.

        Args:
            name: Job or step name
            reason: Failure reason or captured step output
            exit_code: Optional exit code
            hint: Optional hint for user
            is_job: If True, print "JOB FAILED", otherwise "STEP FAILED"
        """
        prefix = "JOB FAILED" if is_job else "STEP FAILED"
        lines = [f"{prefix}: {name}"]
        if exit_code is not None:
            lines.append(f"Exit code: {exit_code}")
        if hint:
            lines.append(f"Hint: {hint}")
        if reason:
            body = reason.rstrip("\n").splitlines()
            if not self.debug and len(body) > OUTPUT_TAIL_LINES:
                lines.append(f"Output (last {OUTPUT_TAIL_LINES} lines):")
                body = body[-OUTPUT_TAIL_LINES:]
            else:
                lines.append("Output:")
            lines.extend(f"  {line}" for line in body)
        self._emit(*lines)

    def print_results(self, run: "Run") -> None:
        """Print final results summary."""
        lines = ["\n" + "=" * 40, "RESULTS", "=" * 40]
        for name, result in run.jobs.items():
            lines.append(f"  {name}: {result.status.value.upper()}")
            for step in result.steps:
                mark = "ok" if step.ok else f"exit {step.exit_code}"
                lines.append(f"    - {step.name} ({mark}, {step.duration:.1f}s)")
            if result.error:
                lines.append(f"    {result.error_kind}: {result.error}")
        lines.append(f"RUN: {run.status.value.upper()}")
        self._emit(*lines)

    def print_definition(self, definition: "Definition") -> None:
        """Print a validated workflow summary."""
        lines = [f"Workflow: {definition.name}", "Triggers:"]
        for trigger in definition.triggers:
            lines.append(f"  {trigger.describe()}")
        lines.append("Jobs:")
        for job in definition.jobs.values():
            lines.append(f"  {job.name} (runs-on: {job.runs_on}, {len(job.steps)} steps)")
            for step in job.steps:
                lines.append(f"    - {step.name}")
        self._emit(*lines)

    def print_error(
        self,
        title: str,
        message: str,
        details: Optional[list[str]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        """
        Print structured error message.

        Args:
            title: Error title
            message: Main error message
            details: Optional list of detail lines
            suggestion: Optional suggestion for user
        """
        lines = [f"\nERROR: {title}", message]
        if details:
            lines.extend(f"  {detail}" for detail in details)
        if suggestion:
            lines.append(f"\n{suggestion}")
        self._emit(*lines, err=True)

    def print_exception(self, exc: BaseException) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            import traceback
            with self._lock:
                traceback.print_exception(type(exc), exc, exc.__traceback__)
        else:
            self._emit(f"Error: {exc}", err=True)

    def print_scheduler_started(self, workflow: str, crons: list[str]) -> None:
        """Print scheduler start information."""
        self._emit("\nSCHEDULER STARTED", f"Workflow: {workflow}", f"Schedules: {', '.join(crons)}", "")

    def print_info(self, message: str) -> None:
        """Print informational message."""
        self._emit(message)

    def print_debug(self, message: str) -> None:
        """Print debug message (only if debug mode enabled)."""
        if self.debug:
            self._emit(f"[DEBUG] {message}", err=True)


# Global console instance (will be initialized by CLI)
_console: Optional[Console] = None


def get_console() -> Console:
    """Get the global console instance."""
    global _console
    if _console is None:
        _console = Console()
    return _console


def set_console(console: Console) -> None:
    """Set the global console instance."""
    global _console
    _console = console
