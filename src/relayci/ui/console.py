"""Console output formatting utilities for relayci."""

from __future__ import annotations

import sys
import threading
from typing import Dict, Iterable, Optional, Sequence


class Console:
    """Centralized console output formatting.

    Workers narrate concurrently, so every print goes through one lock.
    """

    def __init__(self, debug: bool = False, show_output: bool = True):
        """
        Initialize console formatter.

        Args:
            debug: If True, show detailed output including stack traces
            show_output: If True, echo step output lines as they arrive
        """
        self.debug = debug
        self.show_output = show_output
        self._lock = threading.Lock()

    def _print(self, *lines: str, err: bool = False) -> None:
        stream = sys.stderr if err else sys.stdout
        with self._lock:
            for line in lines:
                print(line, file=stream)

    def print_header(self, title: str) -> None:
        """Print a section header."""
        self._print(f"\n{title}", "-" * len(title))

    def print_run_started(self, run_id: str, workflow: str, event: str, job_count: int) -> None:
        """Print run start information."""
        self._print(
            "\nRUN STARTED",
            f"Run: {run_id}",
            f"Workflow: {workflow}",
            f"Event: {event}",
            f"Jobs: {job_count}",
            "",
        )

    def print_job_start(self, name: str, runner: str, attempt: int = 1) -> None:
        """Print job start message."""
        suffix = f" (attempt {attempt})" if attempt > 1 else ""
        self._print(f"\nJOB STARTED: {name} on {runner}{suffix}")

    def print_step(self, job: str, name: str) -> None:
        """Print step start message."""
        self._print(f"[{job}] STEP: {name}")

    def print_output(self, job: str, line: str) -> None:
        if self.show_output:
            self._print(f"[{job}] | {line}")

    def print_success(self, name: str) -> None:
        """Print success message."""
        self._print(f"JOB SUCCEEDED: {name}")

    def print_failure(
        self,
        name: str,
        reason: str,
        exit_code: Optional[int] = None,
        hint: Optional[str] = None,
        is_job: bool = False,
    ) -> None:
        """
        Print failure message.

        Args:
            name: Job or step name
            reason: Failure reason/error message
            exit_code: Optional exit code
            hint: Optional hint for user
            is_job: If True, print "JOB FAILED", otherwise "STEP FAILED"
        """
        prefix = "JOB FAILED" if is_job else "STEP FAILED"
        lines = [f"{prefix}: {name}"]
        if exit_code is not None:
            lines.append(f"Exit code: {exit_code}")
        if hint:
            lines.append(f"Hint: {hint}")
        if self.debug:
            lines.append(f"Error details: {reason}")
        else:
            # first line only outside debug mode
            error_line = reason.split("\n")[0] if reason else "Unknown error"
            lines.append(f"Error: {error_line}")
        self._print(*lines)

    def print_retry(self, name: str, attempt: int, max_attempts: int, delay: float) -> None:
        self._print(f"RETRY: {name} attempt {attempt + 1}/{max_attempts} in {delay:.1f}s")

    def print_requeue(self, name: str, reason: str) -> None:
        self._print(f"REQUEUED: {name} ({reason})")

    def print_job_skipped(self, name: str, reason: str) -> None:
        """Print job skipped message."""
        self._print(f"\nJOB SKIPPED: {name}", f"STATUS: skipped ({reason})")

    def print_job_cancelled(self, name: str, reason: str) -> None:
        self._print(f"JOB CANCELLED: {name} ({reason})")

    def print_rollback(self, name: str) -> None:
        self._print(f"[{name}] ROLLBACK: running on-failure steps")

    def print_plan(self, workflow: str, levels: Sequence[Sequence[str]]) -> None:
        """Print the resolved stages of a workflow."""
        self._print(f"\nPLAN: {workflow}")
        for idx, level in enumerate(levels, start=1):
            self._print(f"  Stage {idx}: {', '.join(level)}")

    def print_results(self, results: Dict[str, str], status: Optional[str] = None) -> None:
        """Print final results summary."""
        lines = ["\n" + "=" * 40, "RESULTS", "=" * 40]
        width = max((len(job) for job in results), default=0)
        for job, job_status in results.items():
            lines.append(f"  {job.ljust(width)}  {job_status.upper()}")
        if status is not None:
            lines.append("-" * 40)
            lines.append(f"  RUN: {status.upper()}")
        self._print(*lines)

    def print_runs(self, rows: Iterable[Dict[str, str]]) -> None:
        """Print stored run records, newest first."""
        rows = list(rows)
        if not rows:
            self._print("No runs recorded.")
            return
        for row in rows:
            self._print(f"{row['run_id']}  {row['status']:<10} {row['workflow']}  {row['started_at']}")

    def print_error(
        self,
        title: str,
        message: str,
        details: Optional[list[str]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        """
        Print structured error message.

        Args:
            title: Error title
            message: Main error message
            details: Optional list of detail lines
            suggestion: Optional suggestion for user
        """
        lines = [f"\nERROR: {title}", message]
        if details:
            lines.extend(f"  {detail}" for detail in details)
        if suggestion:
            lines.append(f"\n{suggestion}")
        self._print(*lines, err=True)

    def print_exception(self, exc: Exception) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            import traceback

            with self._lock:
                traceback.print_exception(type(exc), exc, exc.__traceback__)
        else:
            self._print(f"Error: {exc}", err=True)

    def print_agent_started(self, agent_id: str, host: str, port: int, capacity: int) -> None:
        """Print agent start information."""
        self._print(
            "\nAGENT STARTED",
            f"Agent ID: {agent_id}",
            f"Listening: http://{host}:{port}",
            f"Capacity: {capacity}",
            "",
        )

    def print_info(self, message: str) -> None:
        """Print informational message."""
        self._print(message)

    def print_debug(self, message: str) -> None:
        """Print debug message (only if debug mode enabled)."""
        if self.debug:
            self._print(f"[DEBUG] {message}", err=True)


# Global console instance (initialized by the CLI)
_console: Optional[Console] = None


def get_console() -> Console:
    """Get the global console instance."""
    global _console
    if _console is None:
        _console = Console()
    return _console


def set_console(console: Console) -> None:
    """Set the global console instance."""
    global _console
    _console = console
