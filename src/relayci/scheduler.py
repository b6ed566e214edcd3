# scheduler.py
"""
Run scheduler.

Owns the per-run state table and is its only writer. Jobs move through

    Pending -> Blocked -> Ready -> Running -> Succeeded | Failed | Cancelled
                      \\-> Skipped

Ready jobs are dispatched in declaration order to runner slots, at most
`max_workers` at a time. Workers report back through futures; every
completion re-evaluates the jobs that were waiting on it.
"""
from __future__ import annotations

import logging
import threading
import time
import uuid
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Optional, Tuple

from . import settings
from .collaborators import Notifier
from .errors import CIError, RunnerUnavailable, RunTimeout
from .executor import JobExecutor, JobOutcome
from .model import Event, Job, JobState, JobStatus, RunResult, RunStatus, Workflow
from .policy import decide, needs_context, needs_terminal, run_status
from .resolver import resolve
from .runners.pool import RunnerPool, RunnerSlot
from .ui.console import Console, get_console

logger = logging.getLogger(__name__)

WAITING = (JobStatus.PENDING, JobStatus.BLOCKED)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def new_run_id() -> str:
    return uuid.uuid4().hex[:12]


class Scheduler:
    """
    Executes one Run of a workflow.

    Raises at construction:
        CycleDetected / ParseError: the job graph cannot be resolved.
    """

    def __init__(
        self,
        workflow: Workflow,
        *,
        pool: RunnerPool,
        event: Optional[Event] = None,
        max_workers: Optional[int] = None,
        run_timeout: Optional[float] = None,
        workspace: Optional[Path] = None,
        console: Optional[Console] = None,
        store=None,
        notifier: Optional[Notifier] = None,
        requeue_delay: float = 2.0,
        poll_interval: float = 0.1,
        run_id: Optional[str] = None,
    ):
        self.workflow = workflow
        self.plan = resolve(workflow)
        self.pool = pool
        self.event = event or Event()
        self.max_workers = max(1, max_workers or workflow.concurrency or settings.default_max_workers())
        self.run_timeout = run_timeout
        self.workspace = Path(workspace) if workspace is not None else Path.cwd()
        self.console = console or get_console()
        self.store = store
        if notifier is None and workflow.notify:
            notifier = Notifier(workflow.notify)
        self.notifier = notifier
        self.requeue_delay = requeue_delay
        self.poll_interval = poll_interval
        self.run_id = run_id or new_run_id()

        self.states: Dict[str, JobState] = {j.id: JobState(job_id=j.id) for j in workflow.jobs}
        self._jobs: Dict[str, Job] = {j.id: j for j in workflow.jobs}
        self._cancel = threading.Event()
        self._cancel_requested = False
        self._runners_cancelled = False
        # only touched by the thread running run()
        self._running: Dict[Future, Tuple[str, RunnerSlot]] = {}
        self._not_before: Dict[str, float] = {}
        self._timed_out = False

        self.executor = JobExecutor(
            workflow,
            self.event,
            run_id=self.run_id,
            workspace=self.workspace,
            cancel_event=self._cancel,
            console=self.console,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def cancelled(self) -> bool:
        return self._cancel_requested or self._cancel.is_set()

    def cancel(self) -> None:
        """
        Cancel the run. Safe to call from any thread or from a signal handler
        interrupting run(): it only sets a flag and takes no locks.

        Within one poll interval the scheduler thread sets the cancel event
        the workers watch, cancels the runners of running jobs and marks
        every non-terminal job Cancelled.
        """
        self._cancel_requested = True

    def run(self) -> RunResult:
        started = _now()
        self.console.print_run_started(self.run_id, self.workflow.name, self.event.name, len(self.workflow.jobs))
        deadline = time.monotonic() + self.run_timeout if self.run_timeout else None

        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="relayci-job") as pool:
            self._evaluate()
            while True:
                if self._cancel_requested:
                    self._cancel.set()
                if self._cancel.is_set():
                    self._cancel_runners()
                    self._cancel_waiting("run cancelled" if not self._timed_out else "run timed out")
                else:
                    self._dispatch(pool)

                running = list(self._running)

                if not running:
                    if self._finished():
                        break
                    # requeued jobs, or every slot for a label is busy elsewhere
                    self._cancel.wait(self.poll_interval)
                else:
                    done, _ = wait(running, timeout=self.poll_interval, return_when=FIRST_COMPLETED)
                    for fut in done:
                        self._complete(fut)

                if deadline is not None and not self._timed_out and time.monotonic() >= deadline:
                    logger.warning("run %s: run timeout of %ss elapsed", self.run_id, self.run_timeout)
                    self._timed_out = True
                    self.cancel()

                if not self.cancelled:
                    self._evaluate()

        return self._finish(started)

    # ------------------------------------------------------------------
    # State table
    # ------------------------------------------------------------------

    def _finished(self) -> bool:
        return all(state.status.terminal for state in self.states.values())

    def _evaluate(self) -> None:
        """
        Move Pending/Blocked jobs on. Walking the topological order means a
        skip propagates through the whole downstream chain in one pass.
        """
        for job_id in self.plan.order:
            state = self.states[job_id]
            if state.status not in WAITING:
                continue
            job = self._jobs[job_id]
            if not needs_terminal(job, self.states):
                state.status = JobStatus.BLOCKED
                continue

            needs = needs_context(self.workflow, job, self.states)
            try:
                run_it, reason = decide(job, needs, self.executor.contexts(job, needs))
            except CIError as e:
                e.job = job_id
                self._mark_failed(state, e)
                continue

            if run_it:
                state.status = JobStatus.READY
            else:
                state.status = JobStatus.SKIPPED
                state.reason = reason
                state.finished_at = _now()
                self.console.print_job_skipped(job.display_name, reason or "")

    def _dispatch(self, pool: ThreadPoolExecutor) -> None:
        now = time.monotonic()
        for job in self.workflow.jobs:
            state = self.states[job.id]
            if state.status != JobStatus.READY:
                continue
            if len(self._running) >= self.max_workers:
                return
            if self._not_before.get(job.id, 0.0) > now:
                continue

            if not self.pool.supports(job.runs_on):
                self._mark_failed(
                    state,
                    RunnerUnavailable(
                        message=f"no runner registered for label {job.runs_on!r}; available: {self.pool.labels()}",
                        job=job.id,
                        label=job.runs_on,
                    ),
                )
                continue
            try:
                slot = self.pool.acquire(job.runs_on)
            except RunnerUnavailable as e:
                logger.debug("job %s waiting for a runner: %s", job.id, e.message)
                continue

            state.status = JobStatus.RUNNING
            if state.started_at is None:
                state.started_at = _now()
            needs = needs_context(self.workflow, job, self.states)
            fut = pool.submit(self.executor.run, job, slot, needs, prior_attempts=state.attempts)
            self._running[fut] = (job.id, slot)
            logger.debug("dispatched job %s to %s", job.id, slot.name)

    def _complete(self, fut: Future) -> None:
        job_id, slot = self._running.pop(fut)
        self.pool.release(slot)
        state = self.states[job_id]

        try:
            outcome: JobOutcome = fut.result()
        except Exception as e:
            logger.exception("job %s: worker crashed", job_id)
            outcome = JobOutcome(
                job_id,
                JobStatus.FAILED,
                attempts=state.attempts + 1,
                error=CIError(kind="internal_error", message=str(e), job=job_id),
            )

        state.steps.extend(outcome.steps)
        state.attempts = outcome.attempts

        if outcome.requeue and not self.cancelled:
            state.status = JobStatus.READY
            self._not_before[job_id] = time.monotonic() + self.requeue_delay
            reason = outcome.error.message if outcome.error else "runner unavailable"
            self.console.print_requeue(self._jobs[job_id].display_name, reason)
            return

        status = JobStatus.CANCELLED if outcome.requeue else outcome.status
        if status == JobStatus.FAILED:
            self._mark_failed(state, outcome.error)
            return

        state.status = status
        state.finished_at = _now()
        if status == JobStatus.CANCELLED:
            state.reason = "run timed out" if self._timed_out else "run cancelled"
            self.console.print_job_cancelled(self._jobs[job_id].display_name, state.reason)

    def _mark_failed(self, state: JobState, error: Optional[CIError]) -> None:
        state.status = JobStatus.FAILED
        state.finished_at = _now()
        if error is not None:
            state.error = error.summary()
        job = self._jobs[state.job_id]
        if state.attempts == 0 and error is not None:
            # failed before any attempt ran (unknown runner label, bad expression)
            self.console.print_failure(job.display_name, error.summary(), is_job=True)
        if self.notifier is not None:
            self.notifier.emit(
                "job_failed",
                {
                    "run_id": self.run_id,
                    "workflow": self.workflow.name,
                    "job": state.job_id,
                    "attempts": state.attempts,
                    "error": state.error,
                    "optional": job.optional,
                },
            )

    def _cancel_runners(self) -> None:
        """Cancel the runner of every running job, once per run."""
        if self._runners_cancelled:
            return
        self._runners_cancelled = True
        logger.info("run %s: cancellation requested", self.run_id)
        # nothing is dispatched once the cancel event is set
        for _, slot in self._running.values():
            try:
                slot.runner.cancel()
            except Exception:
                logger.exception("run %s: error cancelling runner %s", self.run_id, slot.name)

    def _cancel_waiting(self, reason: str) -> None:
        for job_id in self.plan.order:
            state = self.states[job_id]
            if state.status in (JobStatus.PENDING, JobStatus.BLOCKED, JobStatus.READY):
                state.status = JobStatus.CANCELLED
                state.reason = reason
                state.finished_at = _now()
                self.console.print_job_cancelled(self._jobs[job_id].display_name, reason)

    # ------------------------------------------------------------------
    # Result
    # ------------------------------------------------------------------

    def _finish(self, started: datetime) -> RunResult:
        status = run_status(
            self.workflow,
            self.states,
            cancelled=self.cancelled,
            timed_out=self._timed_out,
        )
        error = None
        if self._timed_out:
            error = RunTimeout(
                message=f"run exceeded its timeout of {self.run_timeout}s",
                timeout=self.run_timeout,
            ).summary()

        result = RunResult(
            run_id=self.run_id,
            workflow=self.workflow.name,
            event=self.event,
            status=status,
            jobs=dict(self.states),
            started_at=started,
            finished_at=_now(),
            error=error,
        )

        self.console.print_results({job_id: s.status.value for job_id, s in self.states.items()}, status.value)

        if self.store is not None:
            try:
                self.store.save(result)
            except Exception:
                logger.exception("run %s: could not save run record", self.run_id)

        if self.notifier is not None:
            self.notifier.emit(
                "run_completed",
                {
                    "run_id": self.run_id,
                    "workflow": self.workflow.name,
                    "status": status.value,
                    "jobs": {job_id: s.status.value for job_id, s in self.states.items()},
                },
            )

        if status == RunStatus.RUNNING:
            # every job is terminal when the loop exits
            logger.error("run %s ended with non-terminal jobs", self.run_id)
        return result


def run_workflow(workflow: Workflow, **kwargs) -> RunResult:
    """Resolve, schedule and execute one run of `workflow`."""
    return Scheduler(workflow, **kwargs).run()
