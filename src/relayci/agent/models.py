# agent/models.py
from __future__ import annotations

from typing import Dict, Optional

from pydantic import BaseModel, Field


class ExecutionRequest(BaseModel):
    """One step handed to a remote agent."""
    execution_id: str
    job: str
    step: str
    command: str
    env: Dict[str, str] = Field(default_factory=dict)
    working_directory: Optional[str] = None
    timeout: Optional[float] = None  # seconds


class ExecutionResponse(BaseModel):
    execution_id: str
    exit_code: Optional[int] = None
    output: str = ""
    duration: float = 0.0
    timed_out: bool = False
    cancelled: bool = False


class CancelResponse(BaseModel):
    execution_id: str
    cancelled: bool


class HealthResponse(BaseModel):
    status: str
    agent_id: str
    capacity: int
    active: int
