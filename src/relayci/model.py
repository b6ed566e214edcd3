# model.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from fnmatch import fnmatch
from typing import Any, Dict, List, Optional, Tuple


class JobStatus(str, Enum):
    PENDING = "pending"
    BLOCKED = "blocked"
    READY = "ready"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"

    @property
    def terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {JobStatus.SUCCEEDED, JobStatus.FAILED, JobStatus.SKIPPED, JobStatus.CANCELLED}
)


class RunStatus(str, Enum):
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class RetryPolicy:
    """
    Whole-job retry policy.

    Backoff: backoff * multiplier^(attempt-1), capped at max_backoff seconds.
    """
    max_retries: int = 0
    backoff: float = 0.0
    multiplier: float = 2.0
    max_backoff: float = 300.0

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def delay(self, attempt: int) -> float:
        """Seconds to wait after failed attempt number `attempt` (1-based)."""
        if self.backoff <= 0:
            return 0.0
        return min(self.backoff * (self.multiplier ** (attempt - 1)), self.max_backoff)


@dataclass(frozen=True)
class Step:
    """A single command or action reference inside a job."""
    name: str
    run: Optional[str] = None
    uses: Optional[str] = None
    with_: Dict[str, Any] = field(default_factory=dict)
    env: Dict[str, str] = field(default_factory=dict)
    cwd: Optional[str] = None
    timeout: Optional[float] = None  # seconds
    condition: Optional[str] = None

    @property
    def is_action(self) -> bool:
        return self.uses is not None


@dataclass(frozen=True)
class Job:
    """
    A node in the workflow graph: ordered steps + dependencies + execution policy.

    Jobs reference each other only by id (`needs`); the resolver maps ids to
    arena indices, so there are no object links between jobs.
    """
    id: str
    steps: Tuple[Step, ...]
    name: str = ""
    runs_on: str = "local"
    needs: Tuple[str, ...] = ()
    condition: Optional[str] = None
    env: Dict[str, str] = field(default_factory=dict)
    timeout: Optional[float] = None  # default step timeout, seconds
    optional: bool = False  # continue-on-error
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    on_failure: Tuple[Step, ...] = ()
    container: Optional[str] = None
    matrix: Dict[str, Any] = field(default_factory=dict)

    @property
    def display_name(self) -> str:
        return self.name or self.id


@dataclass(frozen=True)
class Event:
    """The event that triggers a run (push, pull_request, schedule, ...)."""
    name: str = "push"
    ref: str = ""
    sha: str = ""
    payload: Dict[str, Any] = field(default_factory=dict)
    # None means "unknown": path filters are not applied
    changed_files: Optional[Tuple[str, ...]] = None

    @property
    def branch(self) -> Optional[str]:
        if self.ref.startswith("refs/heads/"):
            return self.ref[len("refs/heads/"):]
        if self.ref.startswith("refs/"):
            return None
        return self.ref or None


@dataclass(frozen=True)
class Trigger:
    event: str
    branches: Tuple[str, ...] = ()
    paths: Tuple[str, ...] = ()
    cron: Tuple[str, ...] = ()

    def matches(self, event: Event) -> bool:
        if event.name != self.event:
            return False
        if self.branches:
            branch = event.branch
            if branch is None or not any(fnmatch(branch, p) for p in self.branches):
                return False
        if self.paths and event.changed_files is not None:
            return any(fnmatch(f, p) for f in event.changed_files for p in self.paths)
        return True


@dataclass(frozen=True)
class Workflow:
    """Parsed workflow definition. Immutable for the lifetime of a run."""
    name: str
    jobs: Tuple[Job, ...]
    triggers: Tuple[Trigger, ...] = ()
    env: Dict[str, str] = field(default_factory=dict)
    concurrency: Optional[int] = None
    notify: Tuple[str, ...] = ()
    source: Optional[str] = None

    def job(self, job_id: str) -> Job:
        for j in self.jobs:
            if j.id == job_id:
                return j
        raise KeyError(job_id)

    def index(self) -> Dict[str, int]:
        return {j.id: i for i, j in enumerate(self.jobs)}

    def accepts(self, event: Event) -> bool:
        """Workflows without triggers accept any event."""
        if not self.triggers:
            return True
        return any(t.matches(event) for t in self.triggers)


# ----------------------------------------------------------------------
# Run state
# ----------------------------------------------------------------------

@dataclass
class StepResult:
    step: str
    exit_code: Optional[int] = None
    output: str = ""
    duration: float = 0.0
    timed_out: bool = False
    cancelled: bool = False
    skipped: bool = False
    attempt: int = 1

    @property
    def ok(self) -> bool:
        if self.skipped:
            return True
        return self.exit_code == 0 and not self.timed_out and not self.cancelled

    def to_dict(self) -> Dict[str, Any]:
        return {
            "step": self.step,
            "exit_code": self.exit_code,
            "output": self.output,
            "duration": round(self.duration, 3),
            "timed_out": self.timed_out,
            "cancelled": self.cancelled,
            "skipped": self.skipped,
            "attempt": self.attempt,
        }


@dataclass
class JobState:
    """One row of the scheduler's state table."""
    job_id: str
    status: JobStatus = JobStatus.PENDING
    attempts: int = 0
    steps: List[StepResult] = field(default_factory=list)
    error: Optional[str] = None
    reason: Optional[str] = None  # why a job was skipped/cancelled
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None


@dataclass
class RunResult:
    run_id: str
    workflow: str
    event: Event
    status: RunStatus
    jobs: Dict[str, JobState]
    started_at: datetime
    finished_at: Optional[datetime] = None
    error: Optional[str] = None

    def statuses(self) -> Dict[str, JobStatus]:
        return {job_id: state.status for job_id, state in self.jobs.items()}

    @property
    def ok(self) -> bool:
        return self.status == RunStatus.SUCCEEDED
