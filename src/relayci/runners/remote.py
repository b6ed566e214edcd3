# runners/remote.py
from __future__ import annotations

import logging
import threading
import uuid
from typing import Optional

from ..agent.api_client import AgentClient, APIError
from ..agent.models import ExecutionRequest
from ..errors import RunnerUnavailable
from ..model import Step, StepResult
from .base import Runner, StepContext

logger = logging.getLogger(__name__)


class RemoteRunner(Runner):
    """Runs steps on a remote agent over HTTP (see relayci.agent.server)."""

    kind = "remote"

    def __init__(self, client: AgentClient):
        self.client = client
        self._lock = threading.Lock()
        self._current: Optional[str] = None
        self._cancelled = threading.Event()

    def execute(self, step: Step, ctx: StepContext) -> StepResult:
        if self._cancelled.is_set():
            return StepResult(step=step.name, cancelled=True)

        execution_id = uuid.uuid4().hex
        with self._lock:
            self._current = execution_id

        request = ExecutionRequest(
            execution_id=execution_id,
            job=ctx.job.id,
            step=step.name,
            command=step.run or "",
            env=dict(ctx.env),
            working_directory=step.cwd,
            timeout=ctx.timeout,
        )
        try:
            response = self.client.execute(request)
        except APIError as e:
            # busy (503) or unreachable: the scheduler requeues the job
            if e.status is None or e.status == 503:
                raise RunnerUnavailable(
                    message=str(e),
                    job=ctx.job.id,
                    step=step.name,
                    label=ctx.job.runs_on,
                    details={"agent": self.client.base_url},
                )
            return StepResult(step=step.name, exit_code=None, output=str(e))
        finally:
            with self._lock:
                self._current = None

        if ctx.on_output is not None:
            for line in response.output.splitlines():
                ctx.on_output(line)

        return StepResult(
            step=step.name,
            exit_code=response.exit_code,
            output=response.output,
            duration=response.duration,
            timed_out=response.timed_out,
            cancelled=response.cancelled or self._cancelled.is_set(),
        )

    def cancel(self) -> None:
        self._cancelled.set()
        with self._lock:
            current = self._current
        if current is None:
            return
        try:
            self.client.cancel(current)
        except APIError as e:
            logger.warning("could not cancel remote execution %s: %s", current, e)
