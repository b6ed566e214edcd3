"""Tests for skip/retry decisions and overall run status."""

import pytest

from relayci.errors import ActionError, RunnerUnavailable, StepExecutionError, StepTimeout
from relayci.model import Job, JobState, JobStatus, RetryPolicy, RunStatus, Step, Workflow
from relayci.policy import decide, needs_context, result_name, run_status, should_retry

STEP = (Step(name="s", run="true"),)


def _job(job_id, **kw):
    return Job(id=job_id, steps=STEP, **kw)


def _states(**statuses):
    return {job_id: JobState(job_id=job_id, status=status) for job_id, status in statuses.items()}


class TestResultName:
    def test_optional_failed_job_reports_success(self):
        job = _job("lint", optional=True)
        assert result_name(job, JobState("lint", JobStatus.FAILED)) == "success"

    def test_required_failed_job_reports_failure(self):
        assert result_name(_job("lint"), JobState("lint", JobStatus.FAILED)) == "failure"

    def test_needs_context(self):
        wf = Workflow(name="w", jobs=(_job("a"), _job("b", needs=("a",))))
        ctx = needs_context(wf, wf.job("b"), _states(a=JobStatus.SKIPPED, b=JobStatus.PENDING))
        assert ctx == {"a": {"result": "skipped"}}


class TestDecide:
    def test_runs_when_all_needs_succeeded(self):
        assert decide(_job("b", needs=("a",)), {"a": {"result": "success"}}, {}) == (True, None)

    def test_skipped_when_a_need_failed(self):
        run, reason = decide(_job("b", needs=("a",)), {"a": {"result": "failure"}}, {})
        assert run is False
        assert reason == "dependency not successful: a"

    def test_skipped_need_also_blocks(self):
        run, _ = decide(_job("c", needs=("b",)), {"b": {"result": "skipped"}}, {})
        assert run is False

    @pytest.mark.parametrize("condition", ["always()", "failure()"])
    def test_status_functions_run_after_failure(self, condition):
        job = _job("cleanup", needs=("a",), condition=condition)
        assert decide(job, {"a": {"result": "failure"}}, {}) == (True, None)

    def test_false_condition(self):
        job = _job("deploy", condition="github.ref == 'refs/heads/main'")
        run, reason = decide(job, {}, {"github": {"ref": "refs/heads/dev"}})
        assert run is False
        assert reason == "condition evaluated to false"


class TestShouldRetry:
    def test_n_retries_allow_n_plus_one_attempts(self):
        job = _job("t", retry=RetryPolicy(max_retries=2))
        err = StepExecutionError(message="boom")
        assert should_retry(job, 1, err)
        assert should_retry(job, 2, err)
        assert not should_retry(job, 3, err)

    def test_timeouts_are_retried(self):
        job = _job("t", retry=RetryPolicy(max_retries=1))
        assert should_retry(job, 1, StepTimeout(message="slow"))

    @pytest.mark.parametrize("error", [ActionError(message="bad with"), RunnerUnavailable(message="busy"), None])
    def test_other_errors_are_not_retried(self, error):
        job = _job("t", retry=RetryPolicy(max_retries=5))
        assert not should_retry(job, 1, error)

    def test_backoff_is_capped(self):
        policy = RetryPolicy(max_retries=5, backoff=2, multiplier=10, max_backoff=30)
        assert [policy.delay(n) for n in (1, 2, 3)] == [2, 20, 30]
        assert RetryPolicy(max_retries=3).delay(2) == 0.0


class TestRunStatus:
    WF = Workflow(name="w", jobs=(_job("lint", optional=True), _job("test"), _job("deploy", needs=("test",))))

    def test_all_succeeded(self):
        states = _states(lint=JobStatus.SUCCEEDED, test=JobStatus.SUCCEEDED, deploy=JobStatus.SUCCEEDED)
        assert run_status(self.WF, states, cancelled=False, timed_out=False) == RunStatus.SUCCEEDED

    def test_optional_failure_does_not_fail_run(self):
        states = _states(lint=JobStatus.FAILED, test=JobStatus.SUCCEEDED, deploy=JobStatus.SUCCEEDED)
        assert run_status(self.WF, states, cancelled=False, timed_out=False) == RunStatus.SUCCEEDED

    def test_required_failure_fails_run(self):
        states = _states(lint=JobStatus.SUCCEEDED, test=JobStatus.FAILED, deploy=JobStatus.SKIPPED)
        assert run_status(self.WF, states, cancelled=False, timed_out=False) == RunStatus.FAILED

    def test_condition_skip_is_neutral(self):
        states = _states(lint=JobStatus.SUCCEEDED, test=JobStatus.SUCCEEDED, deploy=JobStatus.SKIPPED)
        assert run_status(self.WF, states, cancelled=False, timed_out=False) == RunStatus.SUCCEEDED

    def test_cancelled_and_timed_out(self):
        states = _states(lint=JobStatus.CANCELLED, test=JobStatus.CANCELLED, deploy=JobStatus.CANCELLED)
        assert run_status(self.WF, states, cancelled=True, timed_out=False) == RunStatus.CANCELLED
        assert run_status(self.WF, states, cancelled=True, timed_out=True) == RunStatus.FAILED
