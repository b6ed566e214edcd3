# parser.py
"""
Workflow definition parser for YAML files.

Turns declarative text into an immutable Workflow, or raises ParseError with
the location of the first problem (e.g. ``jobs.test.steps[1]``).
"""
from __future__ import annotations

import itertools
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

from .errors import ExpressionError, ParseError
from .expressions import compile_expression, interpolate
from .model import Job, RetryPolicy, Step, Trigger, Workflow

logger = logging.getLogger(__name__)

WORKFLOW_FIELDS = {"name", "on", "env", "concurrency", "notify", "jobs"}
JOB_FIELDS = {
    "name",
    "runs-on",
    "needs",
    "if",
    "env",
    "steps",
    "timeout-minutes",
    "continue-on-error",
    "retry",
    "on-failure",
    "strategy",
    "container",
}
STEP_FIELDS = {"name", "run", "uses", "with", "env", "if", "working-directory", "timeout-minutes"}
TRIGGER_FIELDS = {"branches", "paths", "cron"}
RETRY_FIELDS = {"max-retries", "backoff", "multiplier", "max-backoff"}
STRATEGY_FIELDS = {"matrix"}

DEFAULT_RUNS_ON = "local"

_MERGE_TAG = "tag:yaml.org,2002:merge"


class _UniqueKeyLoader(yaml.SafeLoader):
    """SafeLoader that rejects duplicate mapping keys instead of overwriting."""

    def construct_mapping(self, node, deep=False):
        seen = set()
        for key_node, _value_node in node.value:
            if key_node.tag == _MERGE_TAG:
                continue
            key = self.construct_object(key_node, deep=deep)
            try:
                duplicate = key in seen
            except TypeError:
                continue  # unhashable: let SafeLoader report it
            if duplicate:
                raise ParseError(
                    message=f"duplicate key {key!r}",
                    line=key_node.start_mark.line + 1,
                )
            seen.add(key)
        return super().construct_mapping(node, deep=deep)


# ----------------------------------------------------------------------
# Small validation helpers
# ----------------------------------------------------------------------

def _type_name(types) -> str:
    if isinstance(types, tuple):
        return " or ".join(t.__name__ for t in types)
    return types.__name__


def _expect(value: Any, types, location: str) -> Any:
    if isinstance(value, bool) and bool not in (types if isinstance(types, tuple) else (types,)):
        raise ParseError(message=f"expected {_type_name(types)}, got bool", location=location)
    if not isinstance(value, types):
        raise ParseError(
            message=f"expected {_type_name(types)}, got {type(value).__name__}",
            location=location,
        )
    return value


def _check_fields(body: Dict[str, Any], allowed: set, location: str) -> None:
    unknown = sorted(str(k) for k in body if k not in allowed)
    if unknown:
        raise ParseError(
            message=f"unknown field(s) {unknown}; allowed: {sorted(allowed)}",
            location=location,
        )


def _string_list(value: Any, location: str) -> Tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,)
    _expect(value, list, location)
    out = []
    for i, item in enumerate(value):
        out.append(str(_expect(item, (str, int, float), f"{location}[{i}]")))
    return tuple(out)


def _env_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _env(value: Any, location: str) -> Dict[str, str]:
    if value is None:
        return {}
    _expect(value, dict, location)
    return {str(k): _env_value(v) for k, v in value.items()}


def _timeout(value: Any, location: str) -> Optional[float]:
    if value is None:
        return None
    _expect(value, (int, float), location)
    if value <= 0:
        raise ParseError(message="timeout-minutes must be positive", location=location)
    return float(value) * 60.0


def _condition(value: Any, location: str) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    text = str(_expect(value, (str, int, float), location))
    try:
        compile_expression(text)
    except ExpressionError as e:
        raise ParseError(message=f"invalid expression {text!r}: {e.message}", location=location) from e
    return text


# ----------------------------------------------------------------------
# Sections
# ----------------------------------------------------------------------

def _parse_triggers(value: Any) -> Tuple[Trigger, ...]:
    location = "on"
    if value is None:
        return ()
    if isinstance(value, str):
        return (Trigger(event=value),)
    if isinstance(value, list):
        return tuple(Trigger(event=str(_expect(v, str, f"{location}[{i}]"))) for i, v in enumerate(value))
    _expect(value, dict, location)

    triggers = []
    for event, body in value.items():
        where = f"{location}.{event}"
        if body is None:
            triggers.append(Trigger(event=str(event)))
            continue
        if event == "schedule" and isinstance(body, list):
            crons = []
            for i, entry in enumerate(body):
                _expect(entry, dict, f"{where}[{i}]")
                _check_fields(entry, {"cron"}, f"{where}[{i}]")
                crons.append(str(entry.get("cron", "")))
            triggers.append(Trigger(event="schedule", cron=tuple(crons)))
            continue
        _expect(body, dict, where)
        _check_fields(body, TRIGGER_FIELDS, where)
        triggers.append(
            Trigger(
                event=str(event),
                branches=_string_list(body.get("branches"), f"{where}.branches"),
                paths=_string_list(body.get("paths"), f"{where}.paths"),
                cron=_string_list(body.get("cron"), f"{where}.cron"),
            )
        )
    return tuple(triggers)


def _parse_retry(value: Any, location: str) -> RetryPolicy:
    if value is None:
        return RetryPolicy()
    if isinstance(value, int) and not isinstance(value, bool):
        if value < 0:
            raise ParseError(message="retry count must be >= 0", location=location)
        return RetryPolicy(max_retries=value)
    _expect(value, dict, location)
    _check_fields(value, RETRY_FIELDS, location)

    def number(key: str, default: float) -> float:
        v = value.get(key, default)
        _expect(v, (int, float), f"{location}.{key}")
        if v < 0:
            raise ParseError(message=f"{key} must be >= 0", location=f"{location}.{key}")
        return v

    return RetryPolicy(
        max_retries=int(number("max-retries", 0)),
        backoff=float(number("backoff", 0.0)),
        multiplier=float(number("multiplier", 2.0)),
        max_backoff=float(number("max-backoff", 300.0)),
    )


def _default_step_name(body: Dict[str, Any]) -> str:
    if body.get("uses") is not None:
        return f"Run {body['uses']}"
    first_line = str(body.get("run", "")).strip().splitlines()
    text = first_line[0] if first_line else "step"
    return text if len(text) <= 60 else text[:57] + "..."


def _parse_step(body: Any, location: str) -> Step:
    _expect(body, dict, location)
    _check_fields(body, STEP_FIELDS, location)

    has_run = body.get("run") is not None
    has_uses = body.get("uses") is not None
    if has_run == has_uses:
        raise ParseError(message="a step needs exactly one of 'run' or 'uses'", location=location)

    run = None
    if has_run:
        raw = body["run"]
        # YAML reads `run: true` as a boolean; keep the shell command text
        run = _env_value(raw) if isinstance(raw, bool) else str(_expect(raw, (str, int, float), f"{location}.run"))
    uses = str(_expect(body["uses"], str, f"{location}.uses")) if has_uses else None
    params = body.get("with") or {}
    _expect(params, dict, f"{location}.with")
    if has_run and body.get("with"):
        raise ParseError(message="'with' is only valid together with 'uses'", location=location)

    cwd = body.get("working-directory")
    if cwd is not None:
        cwd = str(_expect(cwd, str, f"{location}.working-directory"))

    return Step(
        name=str(body.get("name") or _default_step_name(body)),
        run=run,
        uses=uses,
        with_=dict(params),
        env=_env(body.get("env"), f"{location}.env"),
        cwd=cwd,
        timeout=_timeout(body.get("timeout-minutes"), f"{location}.timeout-minutes"),
        condition=_condition(body.get("if"), f"{location}.if"),
    )


def _parse_steps(value: Any, location: str, *, required: bool = True) -> Tuple[Step, ...]:
    if value is None and not required:
        return ()
    if value is None:
        raise ParseError(message="missing required field 'steps'", location=location)
    _expect(value, list, location)
    if required and not value:
        raise ParseError(message="a job must have at least one step", location=location)
    return tuple(_parse_step(s, f"{location}[{i}]") for i, s in enumerate(value))


def _matrix_combinations(strategy: Any, location: str) -> List[Dict[str, Any]]:
    if strategy is None:
        return []
    _expect(strategy, dict, location)
    _check_fields(strategy, STRATEGY_FIELDS, location)
    matrix = strategy.get("matrix")
    if matrix is None:
        return []
    _expect(matrix, dict, f"{location}.matrix")
    if not matrix:
        raise ParseError(message="matrix must define at least one key", location=f"{location}.matrix")

    keys = list(matrix)
    axes = []
    for key in keys:
        values = matrix[key]
        if not isinstance(values, list):
            values = [values]
        if not values:
            raise ParseError(message=f"matrix axis {key!r} is empty", location=f"{location}.matrix.{key}")
        axes.append(values)
    return [dict(zip(keys, combo)) for combo in itertools.product(*axes)]


def _matrix_job_id(base: str, combo: Dict[str, Any]) -> str:
    return f"{base} ({', '.join(str(v) for v in combo.values())})"


def _job_bodies(value: Any) -> List[Tuple[str, Dict[str, Any], str]]:
    """Normalize `jobs` (mapping or list) to (id, body, location) triples."""
    if value is None:
        raise ParseError(message="missing required field 'jobs'", location="jobs")
    out = []
    if isinstance(value, dict):
        if not value:
            raise ParseError(message="a workflow must define at least one job", location="jobs")
        for job_id, body in value.items():
            where = f"jobs.{job_id}"
            _expect(body, dict, where)
            out.append((str(job_id), body, where))
        return out

    _expect(value, list, "jobs")
    if not value:
        raise ParseError(message="a workflow must define at least one job", location="jobs")
    seen = set()
    for i, body in enumerate(value):
        where = f"jobs[{i}]"
        _expect(body, dict, where)
        if not body.get("name"):
            raise ParseError(message="jobs given as a list need a 'name'", location=where)
        job_id = str(body["name"])
        if job_id in seen:
            raise ParseError(message=f"duplicate job name {job_id!r}", location=where)
        seen.add(job_id)
        out.append((job_id, body, where))
    return out


def _parse_jobs(value: Any) -> Tuple[Job, ...]:
    bodies = _job_bodies(value)

    # First pass: matrix expansion, so `needs` can refer to a base id.
    variants: Dict[str, List[str]] = {}
    staged: List[Tuple[str, Dict[str, Any], str, Dict[str, Any]]] = []
    for job_id, body, where in bodies:
        _check_fields(body, JOB_FIELDS, where)
        combos = _matrix_combinations(body.get("strategy"), f"{where}.strategy")
        if combos:
            ids = []
            for combo in combos:
                vid = _matrix_job_id(job_id, combo)
                ids.append(vid)
                staged.append((vid, body, where, combo))
            variants[job_id] = ids
        else:
            variants[job_id] = [job_id]
            staged.append((job_id, body, where, {}))

    known = set()
    for vid, _body, where, _combo in staged:
        if vid in known:
            raise ParseError(message=f"duplicate job name {vid!r}", location=where)
        known.add(vid)

    jobs = []
    for job_id, body, where, combo in staged:
        needs: List[str] = []
        for need in _string_list(body.get("needs"), f"{where}.needs"):
            if need in variants:
                needs.extend(v for v in variants[need] if v not in needs)
            elif need in known:
                if need not in needs:
                    needs.append(need)
            else:
                raise ParseError(
                    message=f"needs unknown job {need!r}; known jobs: {sorted(variants)}",
                    location=f"{where}.needs",
                )

        runs_on = body.get("runs-on", DEFAULT_RUNS_ON)
        _expect(runs_on, str, f"{where}.runs-on")

        optional = body.get("continue-on-error", False)
        _expect(optional, bool, f"{where}.continue-on-error")

        container = body.get("container")
        if container is not None:
            _expect(container, str, f"{where}.container")

        name = body.get("name")
        if name is not None and combo:
            name = interpolate(str(name), {"matrix": combo})

        jobs.append(
            Job(
                id=job_id,
                name=str(name) if name is not None else "",
                steps=_parse_steps(body.get("steps"), f"{where}.steps"),
                runs_on=runs_on,
                needs=tuple(needs),
                condition=_condition(body.get("if"), f"{where}.if"),
                env=_env(body.get("env"), f"{where}.env"),
                timeout=_timeout(body.get("timeout-minutes"), f"{where}.timeout-minutes"),
                optional=optional,
                retry=_parse_retry(body.get("retry"), f"{where}.retry"),
                on_failure=_parse_steps(body.get("on-failure"), f"{where}.on-failure", required=False),
                container=container,
                matrix=dict(combo),
            )
        )
    return tuple(jobs)


# ----------------------------------------------------------------------
# Public API
# ----------------------------------------------------------------------

def parse_workflow(text: str, *, source: Optional[str] = None) -> Workflow:
    """
    Parse workflow YAML text into a validated Workflow.

    Raises:
        ParseError: malformed syntax, unknown field, duplicate job name, ...
    """
    try:
        doc = yaml.load(text, Loader=_UniqueKeyLoader)
    except ParseError:
        raise
    except yaml.YAMLError as e:
        mark = getattr(e, "problem_mark", None)
        raise ParseError(
            message=f"malformed YAML: {getattr(e, 'problem', None) or e}",
            line=mark.line + 1 if mark is not None else None,
        ) from e

    if not isinstance(doc, dict):
        raise ParseError(message="workflow must be a mapping at the top level")

    # YAML 1.1 reads a bare `on:` key as boolean true
    if True in doc:
        if "on" in doc:
            raise ParseError(message="duplicate key 'on'", location="on")
        doc["on"] = doc.pop(True)
    _check_fields(doc, WORKFLOW_FIELDS, "<workflow>")

    name = doc.get("name")
    if name is None:
        name = Path(source).stem if source else "workflow"

    concurrency = doc.get("concurrency")
    if concurrency is not None:
        _expect(concurrency, int, "concurrency")
        if concurrency < 1:
            raise ParseError(message="concurrency must be >= 1", location="concurrency")

    workflow = Workflow(
        name=str(name),
        jobs=_parse_jobs(doc.get("jobs")),
        triggers=_parse_triggers(doc.get("on")),
        env=_env(doc.get("env"), "env"),
        concurrency=concurrency,
        notify=_string_list(doc.get("notify"), "notify"),
        source=source,
    )
    logger.debug("parsed workflow %r with %d job(s)", workflow.name, len(workflow.jobs))
    return workflow


def validate_workflow(workflow: Workflow) -> Workflow:
    """
    Structural checks for workflows built in Python (the YAML path checks these
    while parsing): unique job ids, known `needs`, steps present, valid `if`.
    """
    ids = [j.id for j in workflow.jobs]
    if not ids:
        raise ParseError(message="a workflow must define at least one job", location="jobs")
    dupes = sorted({n for n in ids if ids.count(n) > 1})
    if dupes:
        raise ParseError(message=f"duplicate job names: {dupes}", location="jobs")

    known = set(ids)
    for job in workflow.jobs:
        where = f"jobs.{job.id}"
        if not job.steps:
            raise ParseError(message="a job must have at least one step", location=f"{where}.steps")
        for need in job.needs:
            if need not in known:
                raise ParseError(
                    message=f"needs unknown job {need!r}; known jobs: {sorted(known)}",
                    location=f"{where}.needs",
                )
        _condition(job.condition, f"{where}.if")
        for i, step in enumerate(job.steps + job.on_failure):
            if (step.run is None) == (step.uses is None):
                raise ParseError(
                    message="a step needs exactly one of 'run' or 'uses'",
                    location=f"{where}.steps[{i}]",
                )
            _condition(step.condition, f"{where}.steps[{i}].if")
    return workflow


def load_workflow(path: str | Path) -> Workflow:
    """
    Load a workflow from a file.

    `.yml`/`.yaml` files are parsed as declarative definitions; `.py` files are
    executed and must define `workflow()` or `WORKFLOW` (see relayci.dsl).
    """
    wf_path = Path(path).expanduser().resolve()
    if not wf_path.exists():
        raise FileNotFoundError(f"Workflow file not found: {wf_path}")

    if wf_path.suffix == ".py":
        from .dsl import load_python_workflow

        return load_python_workflow(wf_path)

    if wf_path.suffix not in (".yml", ".yaml"):
        raise ValueError(f"Workflow must be a .yml, .yaml or .py file, got: {wf_path.name}")

    return parse_workflow(wf_path.read_text(encoding="utf-8"), source=str(wf_path))
