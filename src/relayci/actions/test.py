# actions/test.py
from __future__ import annotations

from typing import Any, Dict, List

from ..errors import ActionError
from ..model import Step
from .base import Action
from .lint import tool_guard

FRAMEWORKS = {
    "pytest": ("python -m pip install -r requirements.txt", "pytest"),
    "npm": ("npm ci", "npm test"),
}


def compile_test(step: Step, params: Dict[str, Any]) -> List[Step]:
    """
    Turn a typed test step into runnable shell steps.

    with:
      framework: pytest | npm
      args:      extra arguments for the test command
      install:   run the dependency install first (default true)
    """
    framework = params.get("framework")
    if framework not in FRAMEWORKS:
        raise ActionError(
            message=f"unknown test framework {framework!r}; expected one of {sorted(FRAMEWORKS)}",
            step=step.name,
        )
    install_cmd, test_cmd = FRAMEWORKS[framework]
    args = str(params.get("args") or "").strip()
    install = params.get("install", True)
    if isinstance(install, str):
        install = install.lower() not in ("false", "0", "no")

    tool = test_cmd.split()[0]
    out: List[Step] = []
    if install:
        out.append(Step(name=f"{step.name} (install)", run=install_cmd, cwd=step.cwd, env=step.env, timeout=step.timeout))
    out.append(
        Step(
            name=step.name,
            run=f"{tool_guard(tool)}\n{test_cmd} {args}".strip(),
            cwd=step.cwd,
            env=step.env,
            timeout=step.timeout,
        )
    )
    return out


ACTIONS = [Action(name="test", compile=compile_test, description="Install dependencies and run a test framework")]
