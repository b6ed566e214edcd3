# runners/local.py
from __future__ import annotations

import logging
import os
import signal
import subprocess
import threading
import time
from pathlib import Path
from typing import List, Optional

from ..errors import StepExecutionError
from ..model import Step, StepResult
from .base import Runner, StepContext, tail

logger = logging.getLogger(__name__)


class LocalRunner(Runner):
    """
    Runs steps as `sh -c <command>` in a new process group on this machine.

    Output (stdout + stderr) is streamed line by line to `ctx.on_output` and
    the tail is kept in the StepResult.
    """

    kind = "local"

    def __init__(self, shell: str = "/bin/sh"):
        self.shell = shell
        self._lock = threading.Lock()
        self._proc: Optional[subprocess.Popen] = None
        self._cancelled = threading.Event()

    # ---- hooks for subclasses ----

    def _argv(self, step: Step, ctx: StepContext) -> List[str]:
        return [self.shell, "-c", step.run or ""]

    def _cwd(self, step: Step, ctx: StepContext) -> Path:
        cwd = (ctx.workspace / (step.cwd or ".")).resolve()
        if not cwd.exists():
            raise StepExecutionError(
                message=f"working directory not found: {cwd}",
                job=ctx.job.id,
                step=step.name,
            )
        return cwd

    def _env(self, step: Step, ctx: StepContext) -> dict:
        env = os.environ.copy()
        env.update(ctx.env)
        return env

    def _terminate(self, proc: subprocess.Popen) -> None:
        try:
            os.killpg(proc.pid, signal.SIGKILL)
        except (ProcessLookupError, PermissionError):
            pass

    # ---- Runner API ----

    def execute(self, step: Step, ctx: StepContext) -> StepResult:
        if self._cancelled.is_set():
            return StepResult(step=step.name, cancelled=True)

        argv = self._argv(step, ctx)
        cwd = self._cwd(step, ctx)
        start = time.monotonic()

        proc = subprocess.Popen(
            argv,
            cwd=str(cwd),
            env=self._env(step, ctx),
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            stdin=subprocess.DEVNULL,
            text=True,
            errors="replace",
            start_new_session=True,
        )
        with self._lock:
            self._proc = proc
        if self._cancelled.is_set():
            self._terminate(proc)

        lines: List[str] = []

        def pump() -> None:
            assert proc.stdout is not None
            for line in proc.stdout:
                lines.append(line)
                if ctx.on_output is not None:
                    ctx.on_output(line.rstrip("\n"))

        reader = threading.Thread(target=pump, name=f"relayci-output-{proc.pid}", daemon=True)
        reader.start()

        timed_out = False
        try:
            proc.wait(timeout=ctx.timeout)
        except subprocess.TimeoutExpired:
            timed_out = True
            logger.debug("step %r timed out after %ss, killing pid %s", step.name, ctx.timeout, proc.pid)
            self._terminate(proc)
            proc.wait()
        finally:
            with self._lock:
                self._proc = None

        reader.join(timeout=5)
        if proc.stdout is not None:
            proc.stdout.close()

        cancelled = self._cancelled.is_set() and not timed_out
        return StepResult(
            step=step.name,
            exit_code=None if (timed_out or cancelled) else proc.returncode,
            output=tail("".join(lines)),
            duration=time.monotonic() - start,
            timed_out=timed_out,
            cancelled=cancelled,
        )

    def cancel(self) -> None:
        self._cancelled.set()
        with self._lock:
            proc = self._proc
        if proc is not None and proc.poll() is None:
            self._terminate(proc)
