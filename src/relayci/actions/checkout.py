# actions/checkout.py
from __future__ import annotations

import shlex
from typing import Any, Dict, List

from ..model import Step
from .base import Action
from .lint import tool_guard


def compile_checkout(step: Step, params: Dict[str, Any]) -> List[Step]:
    """
    Source-control checkout, run on the job's runner.

    with:
      repository: URL to clone (omit to use the workspace's existing clone)
      ref:        branch, tag or sha to check out
      path:       clone destination inside the workspace (default ".")
    """
    repository = params.get("repository")
    ref = params.get("ref")
    path = str(params.get("path") or ".")

    lines = [tool_guard("git")]
    if repository:
        lines.append(f"git clone --quiet {shlex.quote(str(repository))} {shlex.quote(path)}")
    if ref:
        lines.append(f"git -C {shlex.quote(path)} checkout --quiet {shlex.quote(str(ref))}")
    lines.append(f"git -C {shlex.quote(path)} rev-parse HEAD")

    return [Step(name=step.name, run="\n".join(["set -e", *lines]), cwd=step.cwd, env=step.env, timeout=step.timeout)]


ACTIONS = [Action(name="checkout", compile=compile_checkout, description="Clone and/or check out a git ref")]
