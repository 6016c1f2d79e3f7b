"""HTTP API tests using FastAPI's TestClient."""

import threading

import pytest
from fastapi.testclient import TestClient

from tinyci.definition import parse
from tinyci.model import JobResult, JobStatus, PushEvent, Run
from tinyci.server import RunResponse, create_app
from tinyci.store import RunStore

BRANCH_FILTERED = """
on:
  push:
    branches: [main]
jobs:
  build:
    runs-on: linux
    steps:
      - run: make
"""


@pytest.fixture
def store() -> RunStore:
    return RunStore(max_runs=10)


@pytest.fixture
def client(cargo_definition, make_fake_provisioner, store):
    provisioner = make_fake_provisioner(exit_codes={"cargo run --example try_insert": 1})
    app = create_app(cargo_definition, provisioner, store, max_workers=1, step_timeout=5)
    return TestClient(app)


def test_health(client) -> None:
    assert client.get("/health").json() == {"status": "ok"}


def test_push_creates_and_executes_a_run(client) -> None:
    r = client.post(
        "/events/push",
        json={"repository": "https://example.com/acme/widget.git", "ref": "refs/heads/main", "sha": "abc123"},
    )
    assert r.status_code == 202
    body = r.json()
    assert body["triggered"] is True
    run_id = body["run_id"]

    # background tasks complete before TestClient returns
    run = client.get(f"/runs/{run_id}").json()
    assert run["workflow"] == "test"
    assert run["event"] == "push"
    assert run["status"] == "failed"
    [job] = run["jobs"]
    assert job["name"] == "run_tests"
    assert job["error_kind"] == "step_failure"
    assert len(job["steps"]) == 6
    assert [s["status"] for s in job["steps"]] == ["success"] * 5 + ["failure"]


def test_runs_are_listed_newest_first(client) -> None:
    ids = [
        client.post("/events/push", json={"repository": "r", "sha": sha}).json()["run_id"]
        for sha in ("a", "b")
    ]
    listed = [r["id"] for r in client.get("/runs").json()]
    assert listed == list(reversed(ids))


def test_push_that_matches_no_trigger(make_fake_provisioner, store) -> None:
    provisioner = make_fake_provisioner()
    client = TestClient(create_app(parse(BRANCH_FILTERED), provisioner, store))

    r = client.post("/events/push", json={"repository": "r", "ref": "refs/heads/feature"})
    assert r.status_code == 200
    assert r.json() == {"triggered": False, "run_id": None}
    assert len(store) == 0
    assert provisioner.provisioned == []


def test_unknown_run_is_404(client) -> None:
    assert client.get("/runs/does-not-exist").status_code == 404


def test_push_payload_is_validated(client) -> None:
    assert client.post("/events/push", json={"ref": "refs/heads/main"}).status_code == 422


def test_run_response_while_jobs_are_being_recorded() -> None:
    names = [f"job{i}" for i in range(2000)]
    run = Run(event=PushEvent(repository="r"), job_names=names)
    run.start()

    def record_all():
        for name in names:
            run.record(JobResult(name=name, status=JobStatus.SUCCEEDED))

    recorder = threading.Thread(target=record_all)
    recorder.start()
    while recorder.is_alive():
        body = RunResponse.from_run(run)
        assert len(body.jobs) <= len(names)
    recorder.join()

    assert len(RunResponse.from_run(run).jobs) == len(names)
