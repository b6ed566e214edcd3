# dsl.py
"""
Programmatic workflow definition.

A `.py` workflow file defines either `workflow() -> Workflow` or `WORKFLOW`:

    from relayci import wf, job, sh, uses

    def workflow():
        return wf(
            "ci",
            job("lint", uses("ruff", "lint", tool="ruff", args="check")),
            job("test", sh("unit", "pytest -q"), retry=2),
            job("deploy", uses("ship", "deploy", url="https://deploy.example/api", environment="prod"),
                needs=["lint", "test"]),
        )
"""
from __future__ import annotations

import itertools
import runpy
from dataclasses import replace
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Union

from .errors import ParseError
from .model import Job, RetryPolicy, Step, Trigger, Workflow
from .parser import validate_workflow


# ---------------------------------------------------------------------
# Step helpers
# ---------------------------------------------------------------------

def sh(
    name: str,
    cmd: str,
    *,
    cwd: str | None = None,
    env: Optional[Dict[str, str]] = None,
    timeout: Optional[float] = None,
    condition: Optional[str] = None,
) -> Step:
    """Create a shell step. `timeout` is in seconds."""
    return Step(name=name, run=cmd, cwd=cwd, env=dict(env or {}), timeout=timeout, condition=condition)


def uses(name: str, action: str, *, condition: Optional[str] = None, timeout: Optional[float] = None, **params: Any) -> Step:
    """Create an action step; keyword arguments become its `with` parameters."""
    return Step(name=name, uses=action, with_=dict(params), condition=condition, timeout=timeout)


def _retry(value: Union[int, RetryPolicy, None]) -> RetryPolicy:
    if value is None:
        return RetryPolicy()
    if isinstance(value, RetryPolicy):
        return value
    return RetryPolicy(max_retries=int(value))


# ---------------------------------------------------------------------
# Functional Job helper
# ---------------------------------------------------------------------

def job(
    name: str,
    *steps: Step,  # allow: job("x", sh(...), sh(...))
    steps_list: Optional[List[Step]] = None,  # allow: job("x", steps_list=[...])
    needs: Optional[Sequence[str]] = None,
    runs_on: str = "local",
    condition: Optional[str] = None,
    env: Optional[Dict[str, Any]] = None,
    timeout: Optional[float] = None,
    optional: bool = False,
    retry: Union[int, RetryPolicy, None] = None,
    on_failure: Optional[List[Step]] = None,
    container: Optional[str] = None,
    cwd: str | None = None,  # default cwd applied to steps missing cwd
    display_name: str = "",
) -> Job:
    steps_final: List[Step] = []
    if steps_list:
        steps_final.extend(list(steps_list))
    steps_final.extend(list(steps))

    if not steps_final:
        raise ParseError(message=f"job({name!r}) must have at least one step", location=f"jobs.{name}.steps")

    if cwd is not None:
        steps_final = [s if s.cwd is not None else replace(s, cwd=cwd) for s in steps_final]

    return Job(
        id=name,
        name=display_name,
        steps=tuple(steps_final),
        runs_on=runs_on,
        needs=tuple(needs or ()),
        condition=condition,
        # force values to str for env compatibility
        env={k: str(v) for k, v in (env or {}).items()},
        timeout=timeout,
        optional=optional,
        retry=_retry(retry),
        on_failure=tuple(on_failure or ()),
        container=container,
    )


# ---------------------------------------------------------------------
# Builder API
# ---------------------------------------------------------------------

class JobBuilder:
    def __init__(self, name: str):
        self.name = name
        self._needs: list[str] = []
        self._steps: list[Step] = []
        self._on_failure: list[Step] = []
        self._env: dict[str, str] = {}
        self._runs_on = "local"
        self._condition: Optional[str] = None
        self._timeout: Optional[float] = None
        self._optional = False
        self._retry = RetryPolicy()

    def depends_on(self, *job_names: str):
        self._needs.extend(job_names)
        return self

    def runs_on(self, label: str):
        self._runs_on = label
        return self

    def when(self, condition: str):
        self._condition = condition
        return self

    def define_step(self, name: str, run: str, cwd: str | None = None):
        self._steps.append(Step(name=name, run=run, cwd=cwd))
        return self

    def use(self, name: str, action: str, **params: Any):
        self._steps.append(uses(name, action, **params))
        return self

    def rollback(self, name: str, run: str):
        self._on_failure.append(Step(name=name, run=run))
        return self

    def with_env(self, **env):
        self._env.update({k: str(v) for k, v in env.items()})
        return self

    def with_timeout(self, seconds: float):
        self._timeout = seconds
        return self

    def with_retry(self, retries: int, *, backoff: float = 0.0, multiplier: float = 2.0, max_backoff: float = 300.0):
        self._retry = RetryPolicy(max_retries=retries, backoff=backoff, multiplier=multiplier, max_backoff=max_backoff)
        return self

    def allow_failure(self, allowed: bool = True):
        self._optional = allowed
        return self

    def build(self) -> Job:
        if not self._steps:
            raise ParseError(message=f"Job '{self.name}' has no steps", location=f"jobs.{self.name}.steps")
        return Job(
            id=self.name,
            steps=tuple(self._steps),
            runs_on=self._runs_on,
            needs=tuple(self._needs),
            condition=self._condition,
            env=dict(self._env),
            timeout=self._timeout,
            optional=self._optional,
            retry=self._retry,
            on_failure=tuple(self._on_failure),
        )


def build(name: str) -> JobBuilder:
    """Convenience: build('test').define_step(...).build()"""
    return JobBuilder(name)


# ---------------------------------------------------------------------
# Matrix
# ---------------------------------------------------------------------

class Matrix:
    """
    Matrix expander: one job per combination of values.

    Example:
        matrix(py=["3.11", "3.12"]).jobs(
            lambda m: job(f"test ({m['py']})", sh("unit", f"tox -e py{m['py']}"))
        )
    """
    def __init__(self, axes: Dict[str, Iterable[Any]]):
        self.axes = {k: list(v) for k, v in axes.items()}

    def combinations(self) -> List[Dict[str, Any]]:
        keys = list(self.axes)
        return [dict(zip(keys, combo)) for combo in itertools.product(*(self.axes[k] for k in keys))]

    def jobs(self, builder: Callable[[Dict[str, Any]], Job]) -> List[Job]:
        return [replace(builder(combo), matrix=combo) for combo in self.combinations()]


def matrix(**axes: Iterable[Any]) -> Matrix:
    return Matrix(axes)


# ---------------------------------------------------------------------
# Workflow helper
# ---------------------------------------------------------------------

def wf(
    name: str,
    *jobs: Union[Job, Iterable[Job]],
    on: Sequence[str] = (),
    env: Optional[Dict[str, Any]] = None,
    concurrency: Optional[int] = None,
    notify: Sequence[str] = (),
) -> Workflow:
    """
    Workflow definition helper. Matrix results (lists of jobs) are flattened.

        def workflow():
            return wf("ci", job(...), job(...))
    """
    flat: List[Job] = []
    for item in jobs:
        if isinstance(item, Job):
            flat.append(item)
        else:
            flat.extend(item)
    return validate_workflow(
        Workflow(
            name=name,
            jobs=tuple(flat),
            triggers=tuple(Trigger(event=e) for e in on),
            env={k: str(v) for k, v in (env or {}).items()},
            concurrency=concurrency,
            notify=tuple(notify),
        )
    )


def load_python_workflow(path: str | Path) -> Workflow:
    """
    Execute a python workflow file. It must define either:
      - workflow() -> Workflow
      - WORKFLOW = Workflow(...)
    """
    wf_path = Path(path).expanduser().resolve()
    module_name = f"relayci_workflow_{wf_path.stem}"
    globals_dict = runpy.run_path(str(wf_path), run_name=module_name)

    result = None
    if "workflow" in globals_dict and callable(globals_dict["workflow"]):
        result = globals_dict["workflow"]()
    elif "WORKFLOW" in globals_dict:
        result = globals_dict["WORKFLOW"]

    if not isinstance(result, Workflow):
        raise ParseError(
            message="Workflow file must define workflow() -> Workflow or WORKFLOW = wf(...)",
            location=str(wf_path),
        )
    return replace(validate_workflow(result), source=str(wf_path))
