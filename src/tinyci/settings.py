from __future__ import annotations
import os

WORKFLOW = os.environ.get("TINYCI_WORKFLOW")  # None -> discover in cwd
WORK_DIR = os.environ.get("TINYCI_WORK_DIR", ".tinyci/work")
STEP_TIMEOUT = float(os.environ.get("TINYCI_STEP_TIMEOUT", "3600"))
MAX_WORKERS = int(os.environ["TINYCI_MAX_WORKERS"]) if os.environ.get("TINYCI_MAX_WORKERS") else None
RUNNER = os.environ.get("TINYCI_RUNNER", "local")  # local | docker
REPOSITORY = os.environ.get("TINYCI_REPOSITORY", ".")
REF = os.environ.get("TINYCI_REF", "HEAD")
MAX_RUNS = int(os.environ.get("TINYCI_MAX_RUNS", "100"))
