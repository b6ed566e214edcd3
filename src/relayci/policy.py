# policy.py
"""
Failure & retry policy.

Decides, from the state table, whether a job whose needs are terminal runs or
is skipped, whether a failed attempt is retried, and the overall run status.
"""
from __future__ import annotations

from typing import Any, Dict, Mapping, Optional, Tuple

from .errors import CIError, StepExecutionError, StepTimeout
from .expressions import StatusCheck, compile_expression, evaluate_condition, uses_status_function
from .model import Job, JobState, JobStatus, RunStatus, Workflow

RETRYABLE_ERRORS = (StepExecutionError, StepTimeout)


def result_name(job: Job, state: JobState) -> str:
    """
    The `needs.<id>.result` value dependents see.

    An optional (continue-on-error) job that failed reports success, so its
    dependents still run.
    """
    if state.status == JobStatus.SUCCEEDED:
        return "success"
    if state.status == JobStatus.FAILED:
        return "success" if job.optional else "failure"
    if state.status == JobStatus.SKIPPED:
        return "skipped"
    if state.status == JobStatus.CANCELLED:
        return "cancelled"
    return state.status.value


def needs_context(workflow: Workflow, job: Job, states: Mapping[str, JobState]) -> Dict[str, Dict[str, Any]]:
    return {
        need: {"result": result_name(workflow.job(need), states[need])}
        for need in job.needs
    }


def needs_terminal(job: Job, states: Mapping[str, JobState]) -> bool:
    return all(states[need].status.terminal for need in job.needs)


def status_from_needs(needs: Mapping[str, Mapping[str, Any]]) -> StatusCheck:
    results = [n["result"] for n in needs.values()]
    return StatusCheck(
        success=all(r == "success" for r in results),
        failure=any(r == "failure" for r in results),
    )


def decide(job: Job, needs: Dict[str, Dict[str, Any]], contexts: Dict[str, Any]) -> Tuple[bool, Optional[str]]:
    """
    Evaluate a job whose needs are all terminal.

    Returns (run, skip_reason). Without an explicit status function in `if`,
    a job runs only when every need succeeded; `always()` and `failure()` let
    a dependent opt into running after an upstream failure.
    """
    status = status_from_needs(needs)
    scope = dict(contexts)
    scope["needs"] = needs

    if evaluate_condition(job.condition, scope, status):
        return True, None

    opted_in = job.condition is not None and uses_status_function(compile_expression(job.condition))
    if not status.success and not opted_in:
        blocking = sorted(n for n, v in needs.items() if v["result"] != "success")
        return False, f"dependency not successful: {', '.join(blocking)}"
    return False, "condition evaluated to false"


def should_retry(job: Job, attempt: int, error: Optional[CIError]) -> bool:
    """N retries means N+1 attempts; only step failures and timeouts are retried."""
    if not isinstance(error, RETRYABLE_ERRORS):
        return False
    return attempt < job.retry.max_attempts


def backoff_for(job: Job, attempt: int) -> float:
    return job.retry.delay(attempt)


def run_status(workflow: Workflow, states: Mapping[str, JobState], *, cancelled: bool, timed_out: bool) -> RunStatus:
    """
    Succeeded only if no required job failed and the run was not cancelled.

    Jobs skipped because their own condition was false are neutral.
    """
    if timed_out:
        return RunStatus.FAILED
    if cancelled:
        return RunStatus.CANCELLED
    for job in workflow.jobs:
        state = states[job.id]
        if state.status == JobStatus.FAILED and not job.optional:
            return RunStatus.FAILED
        if state.status == JobStatus.CANCELLED:
            return RunStatus.CANCELLED
        if not state.status.terminal:
            return RunStatus.RUNNING
    return RunStatus.SUCCEEDED
