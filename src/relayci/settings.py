from __future__ import annotations
import os
from pathlib import Path

RELAYCI_HOME = Path(os.environ.get("RELAYCI_HOME", "~/.relayci")).expanduser()
DATABASE_URL = os.environ.get("RELAYCI_DATABASE_URL", f"sqlite:///{RELAYCI_HOME / 'runs.db'}")
MAX_WORKERS = int(os.environ.get("RELAYCI_MAX_WORKERS", "0"))  # 0: cpu count - 1
RUN_TIMEOUT_MINUTES = float(os.environ.get("RELAYCI_RUN_TIMEOUT_MINUTES", "360"))
RETENTION_RUNS = int(os.environ.get("RELAYCI_RETENTION_RUNS", "50"))
REQUEUE_DELAY_SECONDS = float(os.environ.get("RELAYCI_REQUEUE_DELAY_SECONDS", "2"))
AGENT_URL = os.environ.get("RELAYCI_AGENT_URL") or None
AGENT_CAPACITY = int(os.environ.get("RELAYCI_AGENT_CAPACITY", "2"))
DOCKER_IMAGE = os.environ.get("RELAYCI_DOCKER_IMAGE", "python:3.12-slim")


def default_max_workers() -> int:
    if MAX_WORKERS > 0:
        return MAX_WORKERS
    return max(1, (os.cpu_count() or 2) - 1)
