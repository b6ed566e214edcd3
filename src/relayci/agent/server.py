# agent/server.py
"""
Remote agent: an HTTP service that executes steps for RemoteRunner.

Each accepted execution runs on a LocalRunner inside the agent's workspace.
When every slot is busy the agent answers 503 and the scheduler requeues the
job instead of failing it.
"""
from __future__ import annotations

import logging
import socket
import threading
from pathlib import Path
from typing import Dict, Optional

from fastapi import FastAPI, HTTPException

from ..errors import StepExecutionError
from ..model import Job, Step
from ..runners.base import StepContext
from ..runners.local import LocalRunner
from .models import CancelResponse, ExecutionRequest, ExecutionResponse, HealthResponse

logger = logging.getLogger(__name__)


def create_app(workspace: str | Path, capacity: int = 2, agent_id: Optional[str] = None) -> FastAPI:
    app = FastAPI(title="relayci agent")

    root = Path(workspace).expanduser().resolve()
    root.mkdir(parents=True, exist_ok=True)
    ident = agent_id or socket.gethostname()

    slots = threading.BoundedSemaphore(capacity)
    active: Dict[str, LocalRunner] = {}
    lock = threading.Lock()

    @app.get("/health", response_model=HealthResponse)
    def health():
        with lock:
            busy = len(active)
        return HealthResponse(status="ok", agent_id=ident, capacity=capacity, active=busy)

    @app.post("/executions", response_model=ExecutionResponse)
    def execute(req: ExecutionRequest):
        if not slots.acquire(blocking=False):
            raise HTTPException(status_code=503, detail="Agent at capacity")

        try:
            runner = LocalRunner()
            with lock:
                if req.execution_id in active:
                    raise HTTPException(status_code=409, detail="Execution id already running")
                active[req.execution_id] = runner

            logger.info("execution %s: [%s] %s", req.execution_id, req.job, req.step)
            step = Step(name=req.step, run=req.command, cwd=req.working_directory)
            ctx = StepContext(
                job=Job(id=req.job, steps=()),
                workspace=root,
                env=dict(req.env),
                timeout=req.timeout,
            )
            try:
                result = runner.execute(step, ctx)
            except StepExecutionError as e:
                return ExecutionResponse(execution_id=req.execution_id, exit_code=1, output=e.message)
            finally:
                with lock:
                    active.pop(req.execution_id, None)
        finally:
            slots.release()

        return ExecutionResponse(
            execution_id=req.execution_id,
            exit_code=result.exit_code,
            output=result.output,
            duration=result.duration,
            timed_out=result.timed_out,
            cancelled=result.cancelled,
        )

    @app.post("/executions/{execution_id}/cancel", response_model=CancelResponse)
    def cancel(execution_id: str):
        with lock:
            runner = active.get(execution_id)
        if runner is None:
            raise HTTPException(status_code=404, detail="Execution not found")
        runner.cancel()
        return CancelResponse(execution_id=execution_id, cancelled=True)

    return app
