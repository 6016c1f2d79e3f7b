# errors.py
from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(eq=False)
class CIError(Exception):
    """
    Structured CI error with enough context for:
      - clean CLI output
      - run records / API responses
      - debugging without full tracebacks
    """
    kind: str
    message: str
    job: str | None = None
    step: str | None = None
    details: dict = field(default_factory=dict)

    def __str__(self) -> str:
        lines = [f"{self.kind}: {self.message}"]
        if self.job:
            lines.append(f"job={self.job}")
        if self.step:
            lines.append(f"step={self.step}")
        for k, v in self.details.items():
            lines.append(f"{k}={v}")
        return "\n".join(lines)


class DefinitionError(CIError):
    """The workflow definition is malformed. Raised before any evaluation."""

    def __init__(self, message: str, *, location: str | None = None):
        details = {"location": location} if location else {}
        super().__init__(kind="definition_error", message=message, details=details)
        self.location = location


class EnvironmentProvisionError(CIError):
    """The execution environment described by `runs-on` could not be provisioned."""

    def __init__(self, job: str, runs_on: str, message: str, *, hint: str | None = None):
        details = {"runs_on": runs_on}
        if hint:
            details["hint"] = hint
        super().__init__(kind="environment_error", message=message, job=job, details=details)
        self.runs_on = runs_on
        self.hint = hint


class StepFailure(CIError):
    def __init__(self, job: str, step: str, exit_code: int, output: str = "", *, timed_out: bool = False):
        message = (
            f"step '{step}' timed out" if timed_out
            else f"step '{step}' failed (exit={exit_code})"
        )
        super().__init__(
            kind="step_failure",
            message=message,
            job=job,
            step=step,
            details={"exit_code": exit_code},
        )
        self.exit_code = exit_code
        self.output = output
        self.timed_out = timed_out
