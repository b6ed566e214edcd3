# cli.py
from __future__ import annotations

import json
import logging
import signal
import subprocess
import sys
from pathlib import Path
from typing import Optional

import click

from . import settings
from .errors import CIError, CycleDetected, ParseError
from .git_facts.git import changed_since, current_ref, head_sha
from .model import Event, RunStatus, Workflow
from .parser import load_workflow
from .resolver import resolve
from .runners.pool import default_pool
from .scheduler import Scheduler
from .store import RunStore
from .ui.console import Console, get_console, set_console

EXIT_OK = 0
EXIT_RUN_FAILED = 1
EXIT_INVALID = 2
EXIT_INTERRUPTED = 130

DEFAULT_WORKFLOW_FILES = ("relayci.yml", "relayci.yaml", "relayci_workflow.py")


def find_workflow_files() -> list[Path]:
    """
    Find all workflow files in the current directory.

    Returns:
        List of Path objects for workflow files
    """
    current_dir = Path(".")
    workflow_files = [current_dir / name for name in DEFAULT_WORKFLOW_FILES if (current_dir / name).exists()]

    # Also look in .relayci/ for *.yml workflows
    extra = current_dir / ".relayci"
    if extra.is_dir():
        workflow_files.extend(p for p in extra.glob("*.y*ml") if p.suffix in (".yml", ".yaml"))

    return sorted(workflow_files)


def discover_workflow(workflow_arg: str | None) -> Path:
    """
    Discover workflow file from argument or default.

    Raises:
        SystemExit(2): If workflow cannot be found or multiple workflows exist
    """
    console = get_console()

    if workflow_arg:
        workflow_path = Path(workflow_arg)
        if not workflow_path.exists():
            console.print_error(
                "Workflow file not found",
                f"Could not find workflow file: {workflow_arg}",
                suggestion="Create a workflow file or specify a different path:\n  relayci run --workflow relayci.yml",
            )
            sys.exit(EXIT_INVALID)
        return workflow_path

    workflow_files = find_workflow_files()

    if len(workflow_files) == 0:
        console.print_error(
            "No workflow file found",
            "Could not find any workflow files.",
            details=["Looked for:", *(f"  {name}" for name in DEFAULT_WORKFLOW_FILES), "  .relayci/*.yml"],
            suggestion="Create a workflow file:\n  relayci.yml\n\nOr specify a workflow explicitly:\n  relayci run --workflow ci.yml",
        )
        sys.exit(EXIT_INVALID)

    if len(workflow_files) > 1:
        file_list = "\n".join(f"  {f}" for f in workflow_files)
        console.print_error(
            "Multiple workflow files found",
            "Found multiple workflow files. Please specify which one to use:",
            details=[file_list],
            suggestion="Specify a workflow explicitly:\n  relayci run --workflow relayci.yml",
        )
        sys.exit(EXIT_INVALID)

    return workflow_files[0]


def _load_valid_workflow(workflow_arg: str | None) -> Workflow:
    """Load and resolve a workflow; invalid definitions exit with code 2."""
    console = get_console()
    workflow_path = discover_workflow(workflow_arg)
    try:
        workflow = load_workflow(workflow_path)
        resolve(workflow)
    except (ParseError, CycleDetected) as e:
        title = "Dependency cycle" if isinstance(e, CycleDetected) else "Invalid workflow"
        console.print_error(title, str(e), details=[f"file: {workflow_path}"])
        sys.exit(EXIT_INVALID)
    except (FileNotFoundError, ValueError) as e:
        console.print_error("Failed to load workflow", str(e))
        sys.exit(EXIT_INVALID)
    return workflow


def _build_event(event: str, ref: Optional[str], sha: Optional[str], compare_ref: Optional[str], payload: Optional[str]) -> Event:
    """Fill in ref/sha/changed files from the local git checkout when not given."""
    console = get_console()
    try:
        ref = ref or current_ref()
        sha = sha or head_sha()
    except (subprocess.CalledProcessError, FileNotFoundError):
        console.print_debug("not a git checkout; ref/sha left empty")
        ref, sha = ref or "", sha or ""

    changed = None
    if compare_ref:
        try:
            changed = tuple(changed_since(compare_ref))
        except (subprocess.CalledProcessError, FileNotFoundError):
            console.print_debug(f"could not diff against {compare_ref}; path filters disabled")

    data = {}
    if payload:
        data = json.loads(Path(payload).read_text(encoding="utf-8"))
    return Event(name=event, ref=ref, sha=sha, payload=data, changed_files=changed)


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show stack traces and detailed output)",
)
@click.pass_context
def cli(ctx, debug):
    """relayci: run CI/CD workflows as a dependency graph of jobs."""
    console = Console(debug=debug)
    set_console(console)
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


@cli.command()
@click.option("--workflow", default=None, help="Workflow file (defaults to relayci.yml if present)")
@click.option("--event", default="push", show_default=True, help="Triggering event name")
@click.option("--ref", default=None, help="Git ref (defaults to the current branch)")
@click.option("--sha", default=None, help="Commit sha (defaults to HEAD)")
@click.option("--payload", default=None, type=click.Path(exists=True, dir_okay=False), help="JSON file with the event payload")
@click.option("--compare-ref", default=None, help="Git ref to diff against for `paths` trigger filters")
@click.option("--workers", default=None, type=int, help="Max parallel jobs (overrides workflow concurrency)")
@click.option("--run-timeout", default=None, type=float, help="Run timeout in minutes")
@click.option("--workspace", default=".", type=click.Path(file_okay=False), show_default=True, help="Workspace directory")
@click.option("--agent-url", default=None, help="Remote agent URL for runs-on: remote")
@click.option("--store/--no-store", default=True, show_default=True, help="Record the run in the run store")
def run(workflow, event, ref, sha, payload, compare_ref, workers, run_timeout, workspace, agent_url, store):
    """Run a workflow."""
    console = get_console()
    wf = _load_valid_workflow(workflow)
    trigger = _build_event(event, ref, sha, compare_ref, payload)

    if not wf.accepts(trigger):
        console.print_info(f"Workflow {wf.name!r} is not triggered by {trigger.name} on {trigger.ref or '(no ref)'}")
        sys.exit(EXIT_OK)

    max_workers = workers or wf.concurrency or settings.default_max_workers()
    pool = default_pool(
        local_capacity=max_workers,
        docker_image=settings.DOCKER_IMAGE,
        agent_url=agent_url or settings.AGENT_URL,
        agent_capacity=settings.AGENT_CAPACITY,
    )
    run_store = RunStore(settings.DATABASE_URL) if store else None

    try:
        scheduler = Scheduler(
            wf,
            pool=pool,
            event=trigger,
            max_workers=max_workers,
            run_timeout=(run_timeout or settings.RUN_TIMEOUT_MINUTES) * 60,
            workspace=Path(workspace).resolve(),
            console=console,
            store=run_store,
            requeue_delay=settings.REQUEUE_DELAY_SECONDS,
        )
    except CIError as e:
        console.print_error("Invalid workflow", str(e))
        sys.exit(EXIT_INVALID)

    interrupted = []

    def on_sigint(signum, frame):
        # runs on the scheduler thread: no printing, no locks
        interrupted.append(signum)
        scheduler.cancel()

    previous = signal.signal(signal.SIGINT, on_sigint)
    try:
        result = scheduler.run()
    except Exception as e:
        console.print_exception(e)
        sys.exit(EXIT_RUN_FAILED)
    finally:
        signal.signal(signal.SIGINT, previous)

    if run_store is not None:
        run_store.prune(settings.RETENTION_RUNS)

    if result.error:
        console.print_error("Run failed", result.error)
    if interrupted:
        console.print_info("\nInterrupted by user, run cancelled")
        sys.exit(EXIT_INTERRUPTED)
    sys.exit(EXIT_OK if result.status == RunStatus.SUCCEEDED else EXIT_RUN_FAILED)


@cli.command()
@click.option("--workflow", default=None, help="Workflow file (defaults to relayci.yml if present)")
def validate(workflow):
    """Parse and resolve a workflow without running it."""
    wf = _load_valid_workflow(workflow)
    plan = resolve(wf)
    get_console().print_info(f"OK: {wf.name} ({len(wf.jobs)} job(s), {len(plan.levels)} stage(s))")


@cli.command()
@click.option("--workflow", default=None, help="Workflow file (defaults to relayci.yml if present)")
def plan(workflow):
    """Show the stages jobs will run in."""
    console = get_console()
    wf = _load_valid_workflow(workflow)
    execution_plan = resolve(wf)
    console.print_plan(wf.name, execution_plan.levels)
    for job in wf.jobs:
        extras = [f"runs-on: {job.runs_on}"]
        if job.needs:
            extras.append(f"needs: {', '.join(job.needs)}")
        if job.condition:
            extras.append(f"if: {job.condition}")
        if job.retry.max_retries:
            extras.append(f"retries: {job.retry.max_retries}")
        console.print_info(f"  {job.id} ({'; '.join(extras)})")


@cli.command()
@click.argument("run_id", required=False)
@click.option("--limit", default=20, show_default=True, help="Number of runs to list")
@click.option("--workflow", "workflow_name", default=None, help="Only runs of this workflow")
def runs(run_id, limit, workflow_name):
    """List recorded runs, or show one run's jobs."""
    console = get_console()
    store = RunStore(settings.DATABASE_URL)

    if run_id is None:
        console.print_runs(r.as_row() for r in store.list_runs(limit=limit, workflow=workflow_name))
        return

    record = store.get(run_id)
    if record is None:
        console.print_error("Run not found", f"No run recorded with id {run_id}")
        sys.exit(EXIT_RUN_FAILED)

    console.print_header(f"Run {record['run_id']}: {record['workflow']} ({record['status']})")
    if record["error"]:
        console.print_info(f"Error: {record['error']}")
    console.print_results({j["job"]: j["status"] for j in record["jobs"]})
    for j in record["jobs"]:
        if j["error"] or j["reason"]:
            console.print_info(f"  {j['job']}: {j['error'] or j['reason']} (attempts: {j['attempts']})")


@cli.command()
@click.option("--host", default="127.0.0.1", show_default=True, help="Interface to listen on")
@click.option("--port", default=8765, show_default=True, type=int, help="Port to listen on")
@click.option("--workspace", default=".", type=click.Path(file_okay=False), show_default=True, help="Directory steps run in")
@click.option("--capacity", default=None, type=int, help="Concurrent executions (default RELAYCI_AGENT_CAPACITY)")
@click.option("--agent-id", default=None, help="Unique agent identifier (defaults to hostname)")
@click.pass_context
def agent(ctx, host, port, workspace, capacity, agent_id):
    """Serve the remote execution agent API."""
    import socket

    import uvicorn

    from .agent.server import create_app

    console = get_console()
    capacity = capacity or settings.AGENT_CAPACITY
    agent_id = agent_id or socket.gethostname()

    console.print_agent_started(agent_id, host, port, capacity)
    try:
        uvicorn.run(
            create_app(workspace, capacity=capacity, agent_id=agent_id),
            host=host,
            port=port,
            log_level="debug" if ctx.obj.get("debug") else "info",
        )
    except KeyboardInterrupt:
        console.print_info("\nAgent stopped by user")


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
