# actions.py
# `uses:` steps are compiled into shell commands before they reach an
# environment. Environments only ever run shell.
from __future__ import annotations

import re
import shlex
from dataclasses import dataclass
from typing import Callable, Dict, Mapping, Tuple

from .model import Step


@dataclass(frozen=True)
class Action:
    """A compilable action: required inputs + a command builder."""
    name: str
    compile: Callable[[Mapping[str, str]], str]
    required: Tuple[str, ...] = ()
    optional: Tuple[str, ...] = ()


_REGISTRY: Dict[str, Action] = {}


def register_action(
    name: str,
    *,
    required: Tuple[str, ...] = (),
    optional: Tuple[str, ...] = (),
) -> Callable[[Callable[[Mapping[str, str]], str]], Callable[[Mapping[str, str]], str]]:
    """
    Register an action under its `owner/name` reference.

        @register_action("acme/lint", required=("target",))
        def _lint(inputs):
            return f"acme-lint {inputs['target']}"
    """
    def deco(fn: Callable[[Mapping[str, str]], str]) -> Callable[[Mapping[str, str]], str]:
        _REGISTRY[name] = Action(name=name, compile=fn, required=required, optional=optional)
        return fn

    return deco


def get_action(name: str) -> Action | None:
    return _REGISTRY.get(name)


def known_actions() -> list[str]:
    return sorted(_REGISTRY)


def check_inputs(action: Action, inputs: Mapping[str, str]) -> list[str]:
    """Return human readable problems with a step's `with:` inputs."""
    problems = [f"missing required input {k!r}" for k in action.required if k not in inputs]
    allowed = set(action.required) | set(action.optional)
    problems.extend(
        f"unknown input {k!r} (allowed: {sorted(allowed)})"
        for k in sorted(inputs) if k not in allowed
    )
    return problems


def _truthy(value: str | None) -> bool:
    return (value or "").strip().lower() in ("true", "1", "yes", "on")


def compile_step(step: Step) -> str:
    """
    Turn a step into a shell command.
    `run` steps pass through; `uses` steps are compiled by their action.
    """
    if step.run is not None:
        return step.run

    action = get_action(step.action or "")
    if action is None:
        raise KeyError(f"Unknown action: {step.uses!r}. Known actions: {known_actions()}")
    return action.compile(step.inputs)


# ---------------------------------------------------------------------
# Built-in actions
# ---------------------------------------------------------------------

_SHA_RE = re.compile(r"[0-9a-f]{7,40}")


def _checkout_by_name(repo: str, ref: str, depth: int) -> str:
    # A fresh clone only has remote-tracking branches, so fetch the ref itself.
    shallow = f" --no-local --depth {depth}" if depth else ""
    fetch = f" --depth {depth}" if depth else ""
    return f"git clone -q{shallow} {repo} . && git fetch -q{fetch} origin {ref} && git checkout -q FETCH_HEAD"


def _checkout_by_sha(repo: str, sha: str) -> str:
    # Full history: the commit need not be a branch tip.
    return f"git clone -q {repo} . && git checkout -q {sha}"


@register_action("actions/checkout", optional=("ref", "repository", "fetch-depth"))
def _checkout(inputs: Mapping[str, str]) -> str:
    repo = shlex.quote(inputs["repository"]) if "repository" in inputs else '"$TINYCI_REPOSITORY"'
    raw_depth = inputs.get("fetch-depth", "")
    depth = int(raw_depth) if raw_depth.isdigit() else 0

    if "ref" in inputs:
        ref = inputs["ref"]
        if _SHA_RE.fullmatch(ref):
            return _checkout_by_sha(repo, shlex.quote(ref))
        return _checkout_by_name(repo, shlex.quote(ref), depth)

    by_sha = _checkout_by_sha(repo, '"$TINYCI_SHA"')
    by_ref = _checkout_by_name(repo, '"$TINYCI_REF"', depth)
    return f'if [ -n "$TINYCI_SHA" ]; then {by_sha}; else {by_ref}; fi'


@register_action("actions-rs/toolchain", required=("toolchain",), optional=("profile", "override", "components"))
def _rust_toolchain(inputs: Mapping[str, str]) -> str:
    toolchain = shlex.quote(inputs["toolchain"])
    cmd = f"rustup toolchain install {toolchain}"
    if inputs.get("profile"):
        cmd += f" --profile {shlex.quote(inputs['profile'])}"
    components = [c.strip() for c in inputs.get("components", "").split(",") if c.strip()]
    for c in components:
        cmd += f" --component {shlex.quote(c)}"
    if _truthy(inputs.get("override")):
        cmd += f" && rustup override set {toolchain}"
    return cmd


@register_action("actions-rs/cargo", required=("command",), optional=("args", "toolchain"))
def _cargo(inputs: Mapping[str, str]) -> str:
    cmd = "cargo"
    if inputs.get("toolchain"):
        cmd += f" +{shlex.quote(inputs['toolchain'])}"
    cmd += f" {shlex.quote(inputs['command'])}"
    args = inputs.get("args", "").strip()
    if args:
        cmd += f" {args}"
    return cmd
