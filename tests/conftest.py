import textwrap
import threading
from typing import Dict, List, Tuple

import pytest

from relayci.errors import RunnerUnavailable
from relayci.model import Step, StepResult
from relayci.parser import parse_workflow
from relayci.runners.base import Runner, StepContext
from relayci.runners.pool import RunnerPool
from relayci.scheduler import Scheduler
from relayci.ui.console import Console, set_console

# Outcomes a Script can hand out for one step execution
TIMEOUT = "timeout"
BLOCK = "block"
UNAVAILABLE = "unavailable"


class Script:
    """
    Shared, thread-safe script of step outcomes.

    Keyed by (job id, step name). Each execution pops the next outcome; when
    the list runs dry the last outcome repeats. Unscripted steps exit 0.
    """

    def __init__(self):
        self._outcomes: Dict[Tuple[str, str], List] = {}
        self._lock = threading.Lock()
        self.calls: List[Tuple[str, str]] = []
        self.envs: Dict[Tuple[str, str], Dict[str, str]] = {}
        self.commands: Dict[Tuple[str, str], str] = {}
        self.running = threading.Event()

    def set(self, job: str, step: str, *outcomes) -> "Script":
        self._outcomes[(job, step)] = list(outcomes)
        return self

    def next(self, job: str, step: Step, ctx: StepContext):
        key = (job, step.name)
        with self._lock:
            self.calls.append(key)
            self.envs[key] = dict(ctx.env)
            self.commands[key] = step.run or ""
            outcomes = self._outcomes.get(key)
            if not outcomes:
                return 0
            return outcomes.pop(0) if len(outcomes) > 1 else outcomes[0]

    def count(self, job: str, step: str) -> int:
        return sum(1 for c in self.calls if c == (job, step))

    def jobs_called(self) -> List[str]:
        seen: List[str] = []
        for job, _ in self.calls:
            if job not in seen:
                seen.append(job)
        return seen


class ScriptedRunner(Runner):
    kind = "scripted"

    def __init__(self, script: Script):
        self.script = script
        self._cancelled = threading.Event()

    def execute(self, step: Step, ctx: StepContext) -> StepResult:
        if self._cancelled.is_set():
            return StepResult(step=step.name, cancelled=True)
        outcome = self.script.next(ctx.job.id, step, ctx)
        if outcome == UNAVAILABLE:
            raise RunnerUnavailable(message="scripted runner busy", label=ctx.job.runs_on)
        if outcome == TIMEOUT:
            return StepResult(step=step.name, timed_out=True)
        if outcome == BLOCK:
            self.script.running.set()
            self._cancelled.wait(timeout=10)
            return StepResult(step=step.name, cancelled=self._cancelled.is_set(), exit_code=None)
        if ctx.on_output is not None:
            ctx.on_output(f"exit {outcome}")
        return StepResult(step=step.name, exit_code=int(outcome), output=f"exit {outcome}\n")

    def cancel(self) -> None:
        self._cancelled.set()


@pytest.fixture(autouse=True)
def quiet_console():
    console = Console(show_output=False)
    set_console(console)
    return console


@pytest.fixture
def script():
    return Script()


@pytest.fixture
def pool(script):
    pool = RunnerPool()
    pool.register("local", lambda: ScriptedRunner(script), capacity=4)
    return pool


@pytest.fixture
def run_yaml(pool, tmp_path):
    """Parse workflow text and run it on the scripted pool."""

    def _run(text: str, **kwargs):
        kwargs.setdefault("max_workers", 4)
        kwargs.setdefault("requeue_delay", 0.01)
        kwargs.setdefault("poll_interval", 0.01)
        kwargs.setdefault("workspace", tmp_path)
        scheduler = Scheduler(parse_workflow(textwrap.dedent(text)), pool=kwargs.pop("pool", pool), **kwargs)
        return scheduler.run()

    return _run
