# runners/pool.py
from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from ..errors import RunnerUnavailable
from .base import Runner

RunnerFactory = Callable[[], Runner]


@dataclass
class RunnerSlot:
    """Transient execution context assigned to one job while it runs."""
    label: str
    index: int
    runner: Runner

    @property
    def name(self) -> str:
        return f"{self.label}-{self.index}"


@dataclass
class _Backend:
    factory: RunnerFactory
    capacity: int
    free: List[int] = field(default_factory=list)


class RunnerPool:
    """
    Runner slots grouped by `runs-on` label.

    Each label has a backend factory and a fixed number of slots. A slot gets a
    fresh runner instance on every acquire.
    """

    def __init__(self) -> None:
        self._backends: Dict[str, _Backend] = {}
        self._lock = threading.Lock()

    def register(self, label: str, factory: RunnerFactory, capacity: int = 1) -> None:
        if capacity < 1:
            raise ValueError(f"capacity for {label!r} must be >= 1")
        with self._lock:
            self._backends[label] = _Backend(factory=factory, capacity=capacity, free=list(range(capacity)))

    def labels(self) -> List[str]:
        return sorted(self._backends)

    def supports(self, label: str) -> bool:
        return label in self._backends

    def capacity(self, label: str) -> int:
        backend = self._backends.get(label)
        return backend.capacity if backend else 0

    def in_use(self, label: str) -> int:
        with self._lock:
            backend = self._backends.get(label)
            return backend.capacity - len(backend.free) if backend else 0

    def acquire(self, label: str) -> RunnerSlot:
        """
        Raises:
            RunnerUnavailable: unknown label or every slot for it is busy.
        """
        with self._lock:
            backend = self._backends.get(label)
            if backend is None:
                raise RunnerUnavailable(message=f"no runner registered for label {label!r}", label=label)
            if not backend.free:
                raise RunnerUnavailable(
                    message=f"all {backend.capacity} runner slot(s) for {label!r} are busy",
                    label=label,
                )
            index = backend.free.pop(0)

        try:
            runner = backend.factory()
        except Exception:
            with self._lock:
                backend.free.insert(0, index)
            raise
        return RunnerSlot(label=label, index=index, runner=runner)

    def release(self, slot: RunnerSlot) -> None:
        with self._lock:
            backend = self._backends.get(slot.label)
            if backend is not None and slot.index not in backend.free:
                backend.free.append(slot.index)
                backend.free.sort()


def default_pool(
    *,
    local_capacity: int,
    docker_image: Optional[str] = None,
    agent_url: Optional[str] = None,
    agent_capacity: int = 1,
) -> RunnerPool:
    """Pool with `local`, `docker` and (when an agent URL is set) `remote` labels."""
    from .docker import DockerRunner
    from .local import LocalRunner

    pool = RunnerPool()
    pool.register("local", LocalRunner, capacity=local_capacity)
    if docker_image:
        pool.register("docker", lambda: DockerRunner(docker_image), capacity=local_capacity)
    if agent_url:
        from ..agent.api_client import AgentClient
        from .remote import RemoteRunner

        pool.register("remote", lambda: RemoteRunner(AgentClient(agent_url)), capacity=agent_capacity)
    return pool
