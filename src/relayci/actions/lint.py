# actions/lint.py
from __future__ import annotations

import shlex
from typing import Any, Dict, List

from ..errors import TOOL_HINTS, ActionError
from ..model import Step
from .base import Action


def tool_guard(tool: str) -> str:
    """Shell prefix failing with a hint (exit 127) when `tool` is not on PATH."""
    hint = TOOL_HINTS.get(tool, f"Install {tool} or fix PATH.")
    return (
        f"command -v {shlex.quote(tool)} >/dev/null 2>&1 || "
        f"{{ echo {shlex.quote(f'{tool} is not available. {hint}')} >&2; exit 127; }}"
    )


def compile_lint(step: Step, params: Dict[str, Any]) -> List[Step]:
    """
    with:
      tool:  linter executable (required)
      args:  argument string, e.g. "check --fix"
      files: list of paths (defaults to the step's working directory)
    """
    tool = params.get("tool")
    if not tool:
        raise ActionError(message="action 'lint' requires 'with.tool'", step=step.name)

    parts = [shlex.quote(str(tool))]
    args = params.get("args")
    if args:
        parts.extend(shlex.quote(a) for a in shlex.split(str(args)))

    files = params.get("files")
    if isinstance(files, str):
        files = [files]
    if files:
        parts.extend(shlex.quote(str(f)) for f in files)
    else:
        parts.append(".")

    cmd = f"{tool_guard(str(tool))}\n{' '.join(parts)}"
    return [Step(name=step.name, run=cmd, cwd=step.cwd, env=step.env, timeout=step.timeout)]


ACTIONS = [Action(name="lint", compile=compile_lint, description="Run a linter over files")]
