# runners/base.py
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, Optional

from ..model import Job, Step, StepResult

OUTPUT_TAIL = 4000

OutputCallback = Callable[[str], None]


@dataclass
class StepContext:
    """Everything a runner needs besides the step itself."""
    job: Job
    workspace: Path
    env: Dict[str, str] = field(default_factory=dict)
    timeout: Optional[float] = None  # seconds
    on_output: Optional[OutputCallback] = None


def tail(text: str, limit: int = OUTPUT_TAIL) -> str:
    return text[-limit:]


class Runner(ABC):
    """
    Isolated execution environment for one job's steps.

    A runner is single-tenant: the pool hands a fresh instance to each job and
    drops it on release, so `cancel()` is permanent for that instance.
    """

    kind = "runner"

    @abstractmethod
    def execute(self, step: Step, ctx: StepContext) -> StepResult:
        """
        Run `step.run` and return its exit status and captured output.

        On timeout the execution is forcibly terminated and the result has
        `timed_out=True` (distinct from a non-zero exit).

        Raises:
            RunnerUnavailable: the backend cannot take the work right now.
        """

    @abstractmethod
    def cancel(self) -> None:
        """Terminate the current execution (if any) and refuse new ones."""
