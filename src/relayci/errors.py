# errors.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple


@dataclass(eq=False)
class CIError(Exception):
    """
    Structured CI error with enough context for:
      - clean CLI output
      - run records
      - debugging without full tracebacks
    """
    kind: str = "ci_error"
    message: str = ""
    job: Optional[str] = None
    step: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        lines = [f"{self.kind}: {self.message}"]
        if self.job:
            lines.append(f"job={self.job}")
        if self.step:
            lines.append(f"step={self.step}")
        for k, v in self.details.items():
            lines.append(f"{k}={v}")
        return "\n".join(lines)

    def summary(self) -> str:
        """One-line form used in run records and result tables."""
        return f"{self.kind}: {self.message}"


@dataclass(eq=False)
class ParseError(CIError):
    """Malformed workflow definition (syntax, unknown field, duplicate job...)."""
    kind: str = "parse_error"
    location: Optional[str] = None
    line: Optional[int] = None

    def __str__(self) -> str:
        where = self.location or "<workflow>"
        if self.line is not None:
            where = f"{where} (line {self.line})"
        return f"{self.kind}: {where}: {self.message}"


@dataclass(eq=False)
class ExpressionError(CIError):
    kind: str = "expression_error"
    expression: str = ""


@dataclass(eq=False)
class CycleDetected(CIError):
    kind: str = "cycle_detected"
    members: Tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if not self.message:
            path = " -> ".join(self.members + self.members[:1])
            self.message = f"dependency cycle between jobs: {path}"


@dataclass(eq=False)
class StepExecutionError(CIError):
    """A step exited with a non-zero status."""
    kind: str = "step_failed"
    exit_code: Optional[int] = None
    output: str = ""


@dataclass(eq=False)
class StepTimeout(CIError):
    """A step exceeded its timeout and was forcibly terminated."""
    kind: str = "timeout"
    timeout: Optional[float] = None


@dataclass(eq=False)
class RunnerUnavailable(CIError):
    """No runner capacity for a label (or the remote agent cannot take work)."""
    kind: str = "runner_unavailable"
    label: Optional[str] = None


@dataclass(eq=False)
class RunnerError(CIError):
    """The runner backend is missing or misconfigured; waiting will not help."""
    kind: str = "runner_error"
    label: Optional[str] = None


@dataclass(eq=False)
class ActionError(CIError):
    """Unknown action or invalid `with` parameters."""
    kind: str = "action_error"


@dataclass(eq=False)
class RunTimeout(CIError):
    kind: str = "run_timeout"
    timeout: Optional[float] = None


TOOL_HINTS = {
    "npm": "Install Node.js (includes npm) or fix PATH.",
    "node": "Install Node.js or fix PATH.",
    "pytest": "Install pytest (e.g., pip install pytest).",
    "ruff": "Install ruff (e.g., pip install ruff).",
    "docker": "Install Docker and ensure the daemon is running.",
    "git": "Install Git or fix PATH.",
}
