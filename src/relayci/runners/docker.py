# runners/docker.py
from __future__ import annotations

import functools
import posixpath
import subprocess
import uuid
from pathlib import Path
from typing import List, Optional

from ..errors import TOOL_HINTS, RunnerError
from ..model import Step, StepResult
from .base import StepContext
from .local import LocalRunner

CONTAINER_WORKDIR = "/workspace"


@functools.lru_cache(maxsize=None)
def docker_available() -> bool:
    """Whether the docker CLI and daemon answer. Checked once per process."""
    try:
        subprocess.run(
            ["docker", "version", "--format", "{{.Server.Version}}"],
            capture_output=True,
            check=True,
        )
    except (subprocess.CalledProcessError, FileNotFoundError):
        return False
    return True


def _check_docker_available() -> None:
    """Raise RunnerError when the docker CLI or daemon is missing."""
    if not docker_available():
        raise RunnerError(
            message="Docker is not available",
            label="docker",
            details={"hint": TOOL_HINTS["docker"]},
        )


class DockerRunner(LocalRunner):
    """
    Runs each step in a throwaway container with the workspace mounted at
    /workspace. The image comes from the job's `container`, else the default.
    """

    kind = "docker"

    def __init__(self, image: str, *, volumes: Optional[List[str]] = None, user: Optional[str] = None):
        super().__init__()
        self.image = image
        self.volumes = list(volumes or [])
        self.user = user
        self._container: Optional[str] = None

    def _argv(self, step: Step, ctx: StepContext) -> List[str]:
        self._container = f"relayci-{uuid.uuid4().hex[:12]}"
        container_cwd = posixpath.normpath(posixpath.join(CONTAINER_WORKDIR, step.cwd or "."))

        cmd = ["docker", "run", "--rm", "--name", self._container]
        cmd.extend(["-v", f"{ctx.workspace.resolve()}:{CONTAINER_WORKDIR}"])
        for vol in self.volumes:
            cmd.extend(["-v", vol])
        cmd.extend(["-w", container_cwd])
        # only the workflow/job/step env crosses into the container
        for key, value in ctx.env.items():
            cmd.extend(["-e", f"{key}={value}"])
        if self.user:
            cmd.extend(["--user", self.user])

        cmd.append(ctx.job.container or self.image)
        cmd.extend(["sh", "-c", step.run or ""])
        return cmd

    def _cwd(self, step: Step, ctx: StepContext) -> Path:
        return ctx.workspace.resolve()

    def _terminate(self, proc: subprocess.Popen) -> None:
        if self._container:
            subprocess.run(["docker", "kill", self._container], capture_output=True, check=False)
        super()._terminate(proc)

    def execute(self, step: Step, ctx: StepContext) -> StepResult:
        _check_docker_available()
        return super().execute(step, ctx)
