# definition.py
# Pure parsing of workflow files: bytes in, Definition (or DefinitionError) out.
# Only the loaders at the bottom of the module touch the filesystem.
from __future__ import annotations

import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from .actions import check_inputs, get_action, known_actions
from .cron import CronError, parse_cron
from .errors import DefinitionError
from .model import Definition, Job, PushTrigger, ScheduleTrigger, Step, Trigger


JOB_ID_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_-]*$")
SUPPORTED_EVENTS = ("push", "schedule")


def _stringify(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float, str)):
        return str(value)
    raise ValueError(f"expected a scalar value, got {type(value).__name__}")


def _string_map(value: Any) -> Dict[str, str]:
    """`with:` / `env:` mappings: null -> {}, scalars coerced to str."""
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValueError("expected a mapping")
    return {str(k): _stringify(v) for k, v in value.items()}


def _string_list(value: Any) -> Optional[List[str]]:
    if value is None:
        return None
    if isinstance(value, str):
        return [value]
    return value


# ---------------------------------------------------------------------
# Raw schema (mirrors the YAML shape, including its dashed keys)
# ---------------------------------------------------------------------

class _StepSpec(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    name: Optional[str] = None
    uses: Optional[str] = None
    with_: Dict[str, str] = Field(default_factory=dict, alias="with")
    run: Optional[str] = None
    env: Dict[str, str] = Field(default_factory=dict)
    working_directory: Optional[str] = Field(default=None, alias="working-directory")
    timeout_minutes: Optional[float] = Field(default=None, alias="timeout-minutes", gt=0)

    @field_validator("with_", "env", mode="before")
    @classmethod
    def coerce_maps(cls, v: Any) -> Dict[str, str]:
        return _string_map(v)

    @model_validator(mode="after")
    def check_uses_or_run(self) -> "_StepSpec":
        if (self.uses is None) == (self.run is None):
            raise ValueError("a step must define exactly one of 'uses' or 'run'")
        if self.run is not None and not self.run.strip():
            raise ValueError("'run' must not be empty")
        if self.with_ and self.uses is None:
            raise ValueError("'with' is only valid together with 'uses'")
        return self


class _JobSpec(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    name: Optional[str] = None
    runs_on: str = Field(alias="runs-on", min_length=1)
    env: Dict[str, str] = Field(default_factory=dict)
    steps: List[_StepSpec] = Field(min_length=1)

    @field_validator("env", mode="before")
    @classmethod
    def coerce_env(cls, v: Any) -> Dict[str, str]:
        return _string_map(v)


class _PushSpec(BaseModel):
    model_config = ConfigDict(extra="forbid")

    branches: Optional[List[str]] = None
    paths: Optional[List[str]] = None

    @field_validator("branches", "paths", mode="before")
    @classmethod
    def coerce_lists(cls, v: Any) -> Optional[List[str]]:
        return _string_list(v)


class _ScheduleSpec(BaseModel):
    model_config = ConfigDict(extra="forbid")

    cron: str

    @field_validator("cron")
    @classmethod
    def check_cron(cls, v: str) -> str:
        try:
            parse_cron(v)
        except CronError as e:
            raise ValueError(f"invalid cron expression: {e}") from e
        return v


class _OnSpec(BaseModel):
    model_config = ConfigDict(extra="forbid")

    push: Optional[_PushSpec] = None
    schedule: Optional[List[_ScheduleSpec]] = None

    @model_validator(mode="before")
    @classmethod
    def normalize_events(cls, value: Any) -> Any:
        # on: push  |  on: [push]  |  on: {push: ..., schedule: [...]}
        if isinstance(value, str):
            value = [value]
        if isinstance(value, list):
            if not all(isinstance(v, str) for v in value):
                raise ValueError("event list must contain event names")
            value = {v: None for v in value}
        if not isinstance(value, dict) or not value:
            raise ValueError("at least one trigger is required")
        unsupported = sorted(str(k) for k in value if k not in SUPPORTED_EVENTS)
        if unsupported:
            raise ValueError(f"unsupported events {unsupported} (supported: {list(SUPPORTED_EVENTS)})")
        if "schedule" in value and not value["schedule"]:
            raise ValueError("'schedule' needs at least one cron entry")
        return value


class _WorkflowSpec(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = None
    on: _OnSpec
    jobs: Dict[str, _JobSpec] = Field(min_length=1)


# ---------------------------------------------------------------------
# Conversion to the immutable model
# ---------------------------------------------------------------------

def _format_loc(loc: tuple) -> str:
    return ".".join(str(p) for p in loc)


def _triggers(spec: _OnSpec) -> tuple[Trigger, ...]:
    triggers: list[Trigger] = []
    if "push" in spec.model_fields_set:
        push = spec.push or _PushSpec()
        triggers.append(
            PushTrigger(
                branches=tuple(push.branches) if push.branches is not None else None,
                paths=tuple(push.paths) if push.paths is not None else None,
            )
        )
    for entry in spec.schedule or []:
        triggers.append(ScheduleTrigger(cron=entry.cron))
    return tuple(triggers)


def _step(job_id: str, idx: int, spec: _StepSpec) -> Step:
    loc = f"jobs.{job_id}.steps.{idx}"

    if spec.uses is not None:
        name = spec.name or f"Run {spec.uses}"
        action = get_action(spec.uses.split("@", 1)[0])
        if action is None:
            raise DefinitionError(
                f"unknown action {spec.uses!r} (known: {known_actions()})",
                location=f"{loc}.uses",
            )
        problems = check_inputs(action, spec.with_)
        if problems:
            raise DefinitionError("; ".join(problems), location=f"{loc}.with")
    else:
        name = spec.name or spec.run.strip().splitlines()[0]

    return Step(
        name=name,
        uses=spec.uses,
        inputs=dict(spec.with_),
        run=spec.run,
        env=dict(spec.env),
        cwd=spec.working_directory,
        timeout_minutes=spec.timeout_minutes,
    )


def parse(data: Union[bytes, str], *, default_name: str = "workflow") -> Definition:
    """
    Parse a workflow definition.

    Raises DefinitionError for anything malformed: bad YAML, wrong shape,
    unknown keys, invalid cron, unknown actions, bad job ids.
    """
    try:
        raw = yaml.safe_load(data)
    except yaml.YAMLError as e:
        mark = getattr(e, "problem_mark", None)
        location = f"line {mark.line + 1}, column {mark.column + 1}" if mark else None
        raise DefinitionError(f"invalid YAML: {getattr(e, 'problem', None) or e}", location=location) from e

    if not isinstance(raw, dict):
        raise DefinitionError("workflow must be a mapping at the top level")

    # YAML 1.1 reads a bare `on:` key as boolean True.
    if True in raw:
        if "on" in raw:
            raise DefinitionError("both 'on' and a boolean 'on' key are present", location="on")
        raw = {("on" if k is True else k): v for k, v in raw.items()}

    try:
        spec = _WorkflowSpec.model_validate(raw)
    except ValidationError as e:
        err = e.errors()[0]
        msg = err["msg"]
        if msg.startswith("Value error, "):
            msg = msg[len("Value error, "):]
        raise DefinitionError(msg, location=_format_loc(err["loc"]) or None) from e

    jobs: Dict[str, Job] = {}
    for job_id, job_spec in spec.jobs.items():
        if not JOB_ID_RE.match(job_id):
            raise DefinitionError(
                f"invalid job id {job_id!r}: use letters, digits, '_' and '-', starting with a letter or '_'",
                location=f"jobs.{job_id}",
            )
        jobs[job_id] = Job(
            name=job_id,
            runs_on=job_spec.runs_on,
            steps=tuple(_step(job_id, i, s) for i, s in enumerate(job_spec.steps)),
            env=dict(job_spec.env),
        )

    return Definition(
        name=spec.name or default_name,
        triggers=_triggers(spec.on),
        jobs=jobs,
    )


def load_definition(path: str | Path) -> Definition:
    """
    Load and parse a workflow file (.yml / .yaml).
    """
    wf_path = Path(path).expanduser().resolve()
    if not wf_path.exists():
        raise FileNotFoundError(f"Workflow file not found: {wf_path}")
    if wf_path.suffix not in (".yml", ".yaml"):
        raise ValueError(f"Workflow must be a .yml or .yaml file, got: {wf_path.name}")

    return parse(wf_path.read_bytes(), default_name=wf_path.stem)


DEFAULT_WORKFLOW_NAMES = ("tinyci_workflow.yml", "tinyci_workflow.yaml")


def find_workflow_files(directory: str | Path = ".") -> list[Path]:
    """
    Workflow files in `directory`: tinyci_workflow.yml / .yaml first,
    then any other *_workflow.yml / *_workflow.yaml.
    """
    root = Path(directory)
    defaults = [root / n for n in DEFAULT_WORKFLOW_NAMES if (root / n).exists()]
    others = sorted(
        p for pattern in ("*_workflow.yml", "*_workflow.yaml")
        for p in root.glob(pattern)
        if p.name not in DEFAULT_WORKFLOW_NAMES
    )
    return defaults + others
