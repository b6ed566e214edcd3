# executor.py
"""
Job execution on a worker thread.

A JobExecutor runs one job's steps strictly in order on the runner of the slot
it was given, retries the whole job per its RetryPolicy, runs the rollback
(`on-failure`) steps after a final failure and hands a JobOutcome back to the
scheduler. It never touches the scheduler's state table.
"""
from __future__ import annotations

import dataclasses
import logging
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .actions import get_action
from .collaborators import DEFAULT_CALL_TIMEOUT
from .errors import CIError, RunnerUnavailable, StepExecutionError, StepTimeout
from .expressions import StatusCheck, evaluate_condition, interpolate, interpolate_value
from .model import Event, Job, JobStatus, Step, StepResult, Workflow
from .policy import backoff_for, should_retry
from .runners.base import StepContext, tail
from .runners.pool import RunnerSlot
from .ui.console import Console, get_console

logger = logging.getLogger(__name__)


@dataclass
class JobOutcome:
    """Completion event a worker returns through its future."""
    job_id: str
    status: JobStatus
    attempts: int = 0
    steps: List[StepResult] = field(default_factory=list)
    error: Optional[CIError] = None
    # RunnerUnavailable mid-job: put the job back, the attempt is not counted
    requeue: bool = False


class JobExecutor:
    def __init__(
        self,
        workflow: Workflow,
        event: Event,
        *,
        run_id: str,
        workspace: Path,
        cancel_event: threading.Event,
        console: Optional[Console] = None,
    ):
        self.workflow = workflow
        self.event = event
        self.run_id = run_id
        self.workspace = Path(workspace)
        self.cancel_event = cancel_event
        self.console = console or get_console()

    # ------------------------------------------------------------------
    # Contexts
    # ------------------------------------------------------------------

    def contexts(self, job: Job, needs: Dict[str, Dict[str, Any]], slot: Optional[RunnerSlot] = None) -> Dict[str, Any]:
        """Values visible to `${{ }}` and `if:` while the job runs."""
        github = {
            "event_name": self.event.name,
            "ref": self.event.ref,
            "ref_name": self.event.branch or "",
            "sha": self.event.sha,
            "event": self.event.payload,
            "run_id": self.run_id,
            "workflow": self.workflow.name,
            "job": job.id,
        }
        scope: Dict[str, Any] = {
            "github": github,
            "matrix": dict(job.matrix),
            "needs": needs,
            "runner": {"label": job.runs_on, "name": slot.name if slot else ""},
        }
        env: Dict[str, str] = {}
        for source in (self.workflow.env, job.env):
            for key, value in source.items():
                env[key] = interpolate(value, {**scope, "env": env})
        scope["env"] = env
        return scope

    def _step_env(self, job: Job, step: Step, contexts: Dict[str, Any], attempt: int) -> Dict[str, str]:
        env = dict(contexts["env"])
        for key, value in step.env.items():
            env[key] = interpolate(value, contexts)
        env.update(
            {
                "CI": "true",
                "RELAYCI": "true",
                "RELAYCI_RUN_ID": self.run_id,
                "RELAYCI_WORKFLOW": self.workflow.name,
                "RELAYCI_JOB": job.id,
                "RELAYCI_ATTEMPT": str(attempt),
                "RELAYCI_EVENT": self.event.name,
                "RELAYCI_REF": self.event.ref,
                "RELAYCI_SHA": self.event.sha,
                "RELAYCI_WORKSPACE": str(self.workspace),
            }
        )
        return env

    # ------------------------------------------------------------------
    # Job
    # ------------------------------------------------------------------

    def run(
        self,
        job: Job,
        slot: RunnerSlot,
        needs: Dict[str, Dict[str, Any]],
        *,
        prior_attempts: int = 0,
    ) -> JobOutcome:
        contexts = self.contexts(job, needs, slot)
        attempt = prior_attempts
        history: List[StepResult] = []

        while True:
            if self.cancel_event.is_set():
                return JobOutcome(job.id, JobStatus.CANCELLED, attempt, history)

            attempt += 1
            self.console.print_job_start(job.display_name, slot.name, attempt)
            try:
                results, error = self._run_steps(job, job.steps, slot, contexts, attempt)
            except RunnerUnavailable as e:
                e.job = job.id
                logger.info("job %s: runner unavailable, requeueing: %s", job.id, e.message)
                return JobOutcome(job.id, JobStatus.PENDING, attempt - 1, history, error=e, requeue=True)
            history.extend(results)

            if self.cancel_event.is_set():
                return JobOutcome(job.id, JobStatus.CANCELLED, attempt, history)

            if error is None:
                self.console.print_success(job.display_name)
                return JobOutcome(job.id, JobStatus.SUCCEEDED, attempt, history)

            hint = error.details.get("hint") if error.details else None
            self.console.print_failure(
                error.step or job.display_name,
                error.summary(),
                exit_code=getattr(error, "exit_code", None),
                hint=hint,
            )

            if should_retry(job, attempt, error):
                delay = backoff_for(job, attempt)
                self.console.print_retry(job.display_name, attempt, job.retry.max_attempts, delay)
                if self.cancel_event.wait(delay):
                    return JobOutcome(job.id, JobStatus.CANCELLED, attempt, history, error=error)
                continue

            self.console.print_failure(job.display_name, error.summary(), is_job=True)
            history.extend(self._rollback(job, slot, contexts, attempt))
            return JobOutcome(job.id, JobStatus.FAILED, attempt, history, error=error)

    def _rollback(self, job: Job, slot: RunnerSlot, contexts: Dict[str, Any], attempt: int) -> List[StepResult]:
        if not job.on_failure or self.cancel_event.is_set():
            return []
        self.console.print_rollback(job.display_name)
        try:
            results, error = self._run_steps(job, job.on_failure, slot, contexts, attempt)
        except RunnerUnavailable as e:
            logger.warning("job %s: rollback skipped, runner unavailable: %s", job.id, e.message)
            return []
        if error is not None:
            logger.warning("job %s: rollback step failed: %s", job.id, error.summary())
        return results

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _run_steps(
        self,
        job: Job,
        steps: Sequence[Step],
        slot: RunnerSlot,
        contexts: Dict[str, Any],
        attempt: int,
    ) -> Tuple[List[StepResult], Optional[CIError]]:
        """
        One pass over `steps`. Returns the step results and the first error.

        After a failure the remaining steps are skipped unless their own `if`
        opts in (e.g. `if: always()`).

        Raises:
            RunnerUnavailable: the runner backend cannot take the work.
        """
        results: List[StepResult] = []
        error: Optional[CIError] = None

        for step in steps:
            if self.cancel_event.is_set():
                break

            status = StatusCheck(success=error is None, failure=error is not None)
            try:
                run_it = evaluate_condition(step.condition, contexts, status)
            except CIError as e:
                e.job, e.step = job.id, step.name
                results.append(StepResult(step=step.name, output=e.message, attempt=attempt))
                error = error or e
                continue
            if not run_it:
                results.append(StepResult(step=step.name, skipped=True, attempt=attempt))
                continue

            self.console.print_step(job.display_name, step.name)
            try:
                step_results, step_error = self._run_step(job, step, slot, contexts, attempt)
            except RunnerUnavailable:
                raise
            except CIError as e:
                e.job = job.id
                e.step = e.step or step.name
                step_results = [StepResult(step=step.name, output=e.message, attempt=attempt)]
                step_error = e

            results.extend(step_results)
            if step_error is not None and error is None:
                error = step_error

        return results, error

    def _run_step(
        self,
        job: Job,
        step: Step,
        slot: RunnerSlot,
        contexts: Dict[str, Any],
        attempt: int,
    ) -> Tuple[List[StepResult], Optional[CIError]]:
        timeout = step.timeout if step.timeout is not None else job.timeout
        env = self._step_env(job, step, contexts, attempt)

        if step.is_action:
            action = get_action(step.uses or "")
            params = interpolate_value(dict(step.with_), {**contexts, "env": env})
            if action.call is not None:
                result = self._call_action(step, action.call, params, timeout, attempt)
                if result.ok:
                    return [result], None
                return [result], self._error_for(job, step, result, timeout or DEFAULT_CALL_TIMEOUT)
            commands = action.compile(step, params)
        else:
            commands = [dataclasses.replace(step, run=interpolate(step.run or "", {**contexts, "env": env}))]

        results: List[StepResult] = []
        for command in commands:
            cmd_timeout = command.timeout if command.timeout is not None else timeout
            ctx = StepContext(
                job=job,
                workspace=self.workspace,
                env={**env, **command.env},
                timeout=cmd_timeout,
                on_output=lambda line: self.console.print_output(job.display_name, line),
            )
            result = slot.runner.execute(command, ctx)
            result.attempt = attempt
            results.append(result)
            if not result.ok:
                if result.cancelled:
                    return results, None
                return results, self._error_for(job, command, result, cmd_timeout)
        return results, None

    def _call_action(self, step: Step, call, params: Dict[str, Any], timeout: Optional[float], attempt: int) -> StepResult:
        """External collaborator calls run in the worker, not on the runner."""
        start = time.monotonic()
        try:
            outcome = call(params, timeout or DEFAULT_CALL_TIMEOUT)
        except TimeoutError:
            return StepResult(
                step=step.name,
                output=f"{step.uses} did not answer within {timeout or DEFAULT_CALL_TIMEOUT}s",
                duration=time.monotonic() - start,
                timed_out=True,
                attempt=attempt,
            )
        return StepResult(
            step=step.name,
            exit_code=0 if outcome.ok else 1,
            output=tail(outcome.detail),
            duration=time.monotonic() - start,
            attempt=attempt,
        )

    def _error_for(self, job: Job, step: Step, result: StepResult, timeout: Optional[float]) -> CIError:
        if result.timed_out:
            return StepTimeout(
                message=f"step {step.name!r} exceeded its timeout of {timeout}s",
                job=job.id,
                step=step.name,
                timeout=timeout,
            )
        details: Dict[str, Any] = {}
        if result.exit_code == 127:
            details["hint"] = "command not found; check the tool is installed and on PATH"
        return StepExecutionError(
            message=f"step {step.name!r} exited with code {result.exit_code}",
            job=job.id,
            step=step.name,
            exit_code=result.exit_code,
            output=result.output,
            details=details,
        )
