from .definition import parse, load_definition
from .runner import evaluate, create_run, execute_job, execute_step, execute_run, run_pipeline
from .model import Definition, Job, Step, Run, PushEvent, ScheduleEvent

__all__ = [
    "parse",
    "load_definition",
    "evaluate",
    "create_run",
    "execute_job",
    "execute_step",
    "execute_run",
    "run_pipeline",
    "Definition",
    "Job",
    "Step",
    "Run",
    "PushEvent",
    "ScheduleEvent",
]
