from .base import Runner, StepContext
from .docker import DockerRunner
from .local import LocalRunner
from .pool import RunnerPool, RunnerSlot, default_pool
from .remote import RemoteRunner

__all__ = [
    "Runner",
    "StepContext",
    "LocalRunner",
    "DockerRunner",
    "RemoteRunner",
    "RunnerPool",
    "RunnerSlot",
    "default_pool",
]
