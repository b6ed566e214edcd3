from .dsl import JobBuilder, build, job, matrix, sh, uses, wf
from .errors import CIError, CycleDetected, ParseError, RunnerError, RunnerUnavailable, StepExecutionError, StepTimeout
from .model import Event, Job, JobStatus, RetryPolicy, RunResult, RunStatus, Step, Workflow
from .parser import load_workflow, parse_workflow
from .resolver import resolve
from .scheduler import Scheduler, run_workflow

__all__ = [
    "job", "sh", "uses", "matrix", "wf", "JobBuilder", "build",
    "CIError", "CycleDetected", "ParseError", "RunnerError", "RunnerUnavailable", "StepExecutionError", "StepTimeout",
    "Event", "Job", "JobStatus", "RetryPolicy", "RunResult", "RunStatus", "Step", "Workflow",
    "load_workflow", "parse_workflow", "resolve", "Scheduler", "run_workflow",
]
