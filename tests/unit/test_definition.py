"""Unit tests for workflow definition parsing."""

import textwrap

import pytest

from tinyci.definition import find_workflow_files, load_definition, parse
from tinyci.errors import DefinitionError
from tinyci.model import PushTrigger, ScheduleTrigger


def _wf(text: str) -> str:
    return textwrap.dedent(text).lstrip()


MINIMAL_JOBS = """
jobs:
  build:
    runs-on: ubuntu-latest
    steps:
      - run: make
"""


def test_parses_the_cargo_workflow(cargo_definition) -> None:
    d = cargo_definition
    assert d.name == "test"
    assert set(d.triggers) == {PushTrigger(), ScheduleTrigger(cron="0 6 * * 6")}
    assert list(d.jobs) == ["run_tests"]

    job = d.jobs["run_tests"]
    assert job.runs_on == "ubuntu-latest"
    assert [s.name for s in job.steps] == [
        "code checkout",
        "install stable",
        "test",
        "test --all-features",
        "run --example static_strs",
        "run --example try_insert",
    ]
    toolchain = job.steps[1]
    assert toolchain.action == "actions-rs/toolchain"
    assert toolchain.action_version == "v1"
    # YAML booleans in `with:` become strings
    assert toolchain.inputs == {"profile": "minimal", "toolchain": "stable", "override": "true"}
    assert job.steps[3].inputs == {"command": "test", "args": "--all-features"}


def test_accepts_bytes(cargo_workflow_text) -> None:
    d = parse(cargo_workflow_text.encode("utf-8"))
    assert "run_tests" in d.jobs


@pytest.mark.parametrize(
    "on_block",
    [
        "on: push",
        "on: [push]",
        "on:\n  push:",
        '"on":\n  push: {}',
    ],
)
def test_push_trigger_forms(on_block: str) -> None:
    d = parse(on_block + "\n" + _wf(MINIMAL_JOBS))
    assert d.triggers == (PushTrigger(),)


def test_push_filters_are_parsed() -> None:
    d = parse(_wf("""
        on:
          push:
            branches: main
            paths: ["src/**", "Cargo.toml"]
    """) + _wf(MINIMAL_JOBS))
    assert d.triggers == (PushTrigger(branches=("main",), paths=("src/**", "Cargo.toml")),)


def test_name_defaults_to_given_default() -> None:
    d = parse("on: push\n" + _wf(MINIMAL_JOBS), default_name="ci")
    assert d.name == "ci"


def test_step_names_default_from_command_or_action() -> None:
    d = parse(_wf("""
        on: push
        jobs:
          build:
            runs-on: ubuntu-latest
            steps:
              - uses: actions/checkout@v4
              - run: |
                  cargo build
                  cargo test
    """))
    steps = d.jobs["build"].steps
    assert steps[0].name == "Run actions/checkout@v4"
    assert steps[1].name == "cargo build"


def test_step_options_are_parsed() -> None:
    d = parse(_wf("""
        on: push
        jobs:
          build:
            runs-on: ubuntu-latest
            env:
              RUST_BACKTRACE: 1
            steps:
              - name: test
                run: cargo test
                working-directory: crates/core
                timeout-minutes: 5
                env:
                  VERBOSE: true
    """))
    job = d.jobs["build"]
    assert job.env == {"RUST_BACKTRACE": "1"}
    step = job.steps[0]
    assert step.cwd == "crates/core"
    assert step.timeout_minutes == 5
    assert step.env == {"VERBOSE": "true"}


def test_jobs_keep_declaration_order() -> None:
    d = parse(_wf("""
        on: push
        jobs:
          zeta:
            runs-on: linux
            steps: [{run: "true"}]
          alpha:
            runs-on: linux
            steps: [{run: "true"}]
    """))
    assert list(d.jobs) == ["zeta", "alpha"]


@pytest.mark.parametrize(
    "text, location",
    [
        ("jobs: {}\n", "on"),
        ("on: push\n", "jobs"),
        ("on: push\njobs: {}\n", "jobs"),
        ("on: {}\n" + MINIMAL_JOBS, "on"),
        ("on: pull_request\n" + MINIMAL_JOBS, "on"),
        ("on:\n  schedule:\n" + MINIMAL_JOBS, "on"),
        ("on:\n  schedule:\n    - cron: '0 25 * * *'\n" + MINIMAL_JOBS, "on.schedule.0.cron"),
        ("on: push\njobs:\n  build:\n    steps:\n      - run: make\n", "jobs.build.runs-on"),
        ("on: push\njobs:\n  build:\n    runs-on: linux\n    steps: []\n", "jobs.build.steps"),
        ("on: push\njobs:\n  build:\n    runs-on: linux\n    steps:\n      - name: x\n", "jobs.build.steps.0"),
        (
            "on: push\njobs:\n  build:\n    runs-on: linux\n    steps:\n      - run: make\n        uses: actions/checkout@v4\n",
            "jobs.build.steps.0",
        ),
        ("on: push\njobs:\n  build:\n    runs-on: linux\n    if: always()\n    steps:\n      - run: make\n", "jobs.build.if"),
        (
            "on: push\njobs:\n  build:\n    runs-on: linux\n    steps:\n      - uses: someone/unknown@v1\n",
            "jobs.build.steps.0.uses",
        ),
        (
            "on: push\njobs:\n  build:\n    runs-on: linux\n    steps:\n      - uses: actions-rs/cargo@v1\n",
            "jobs.build.steps.0.with",
        ),
        (
            "on: push\njobs:\n  build:\n    runs-on: linux\n    steps:\n      - uses: actions-rs/cargo@v1\n        with:\n          command: test\n          bogus: 1\n",
            "jobs.build.steps.0.with",
        ),
        ("on: push\njobs:\n  build job:\n    runs-on: linux\n    steps:\n      - run: make\n", "jobs.build job"),
    ],
)
def test_malformed_definitions_raise_with_location(text: str, location: str) -> None:
    with pytest.raises(DefinitionError) as exc:
        parse(text)
    assert exc.value.location == location
    assert exc.value.kind == "definition_error"


def test_invalid_yaml_reports_line() -> None:
    with pytest.raises(DefinitionError) as exc:
        parse("on: push\njobs: [unclosed\n")
    assert exc.value.location.startswith("line ")


def test_non_mapping_document_is_rejected() -> None:
    with pytest.raises(DefinitionError):
        parse("- just\n- a list\n")


def test_load_definition_uses_file_stem_as_default_name(tmp_path) -> None:
    path = tmp_path / "nightly_workflow.yml"
    path.write_text("on: push\n" + _wf(MINIMAL_JOBS))
    assert load_definition(path).name == "nightly_workflow"


def test_load_definition_missing_file(tmp_path) -> None:
    with pytest.raises(FileNotFoundError):
        load_definition(tmp_path / "nope.yml")


def test_load_definition_rejects_other_suffixes(tmp_path) -> None:
    path = tmp_path / "wf.json"
    path.write_text("{}")
    with pytest.raises(ValueError):
        load_definition(path)


def test_find_workflow_files_prefers_default_name(tmp_path) -> None:
    (tmp_path / "b_workflow.yml").write_text("")
    (tmp_path / "tinyci_workflow.yml").write_text("")
    (tmp_path / "a_workflow.yaml").write_text("")
    (tmp_path / "unrelated.yml").write_text("")
    names = [p.name for p in find_workflow_files(tmp_path)]
    assert names == ["tinyci_workflow.yml", "a_workflow.yaml", "b_workflow.yml"]


def test_triggers_describe_themselves(cargo_definition) -> None:
    assert [t.describe() for t in cargo_definition.triggers] == ["push", "schedule: 0 6 * * 6"]
    filtered = PushTrigger(branches=("main", "release/*"), paths=("src/**",))
    assert filtered.describe() == "push (branches: main, release/*; paths: src/**)"
