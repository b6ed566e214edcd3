"""Tests for the relayci command line."""

import os
import signal
import textwrap
import threading
import time

import pytest
from click.testing import CliRunner

from relayci import settings
from relayci.cli import EXIT_INTERRUPTED, EXIT_INVALID, EXIT_OK, EXIT_RUN_FAILED, cli
from relayci.store import RunStore

GIT_ARGS = ["--ref", "refs/heads/main", "--sha", "0" * 40]

PASSING = """
name: ci
jobs:
  build:
    steps:
      - run: echo "built $RELAYCI_JOB"
  test:
    needs: build
    steps:
      - run: echo tested > result.txt
"""

FAILING = """
name: ci
jobs:
  build:
    steps:
      - run: exit 4
  deploy:
    needs: build
    steps:
      - run: echo deploying
"""


@pytest.fixture
def project(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(settings, "DATABASE_URL", f"sqlite:///{tmp_path / 'store' / 'runs.db'}")

    def write(text, name="relayci.yml"):
        path = tmp_path / name
        path.write_text(textwrap.dedent(text), encoding="utf-8")
        return path

    return write


def _invoke(*args):
    return CliRunner().invoke(cli, list(args))


class TestRun:
    def test_successful_run(self, project, tmp_path):
        project(PASSING)
        result = _invoke("run", "--no-store", *GIT_ARGS)
        assert result.exit_code == EXIT_OK, result.output
        assert "RUN: SUCCEEDED" in result.output
        assert (tmp_path / "result.txt").read_text().strip() == "tested"

    def test_failed_run(self, project):
        project(FAILING)
        result = _invoke("run", "--no-store", *GIT_ARGS)
        assert result.exit_code == EXIT_RUN_FAILED
        assert "JOB FAILED: build" in result.output
        assert "RUN: FAILED" in result.output

    def test_event_not_matching_triggers(self, project):
        project("on: pull_request\n" + PASSING)
        result = _invoke("run", "--no-store", "--event", "push", *GIT_ARGS)
        assert result.exit_code == EXIT_OK
        assert "is not triggered by push" in result.output

    def test_cycle_is_invalid(self, project):
        project(
            """
            jobs:
              a: {needs: b, steps: [{run: "true"}]}
              b: {needs: a, steps: [{run: "true"}]}
            """
        )
        assert _invoke("run", "--no-store", *GIT_ARGS).exit_code == EXIT_INVALID

    def test_missing_workflow_file(self, project):
        assert _invoke("run", "--workflow", "nope.yml", *GIT_ARGS).exit_code == EXIT_INVALID

    def test_no_workflow_in_directory(self, project):
        assert _invoke("run", *GIT_ARGS).exit_code == EXIT_INVALID

    def test_interrupt_cancels_run(self, project, tmp_path):
        project(
            """
            name: ci
            jobs:
              long:
                steps:
                  - run: touch started && sleep 30
              after:
                needs: long
                steps:
                  - run: echo never
            """
        )

        def interrupt_when_started():
            deadline = time.monotonic() + 10
            while not (tmp_path / "started").exists() and time.monotonic() < deadline:
                time.sleep(0.05)
            os.kill(os.getpid(), signal.SIGINT)

        threading.Thread(target=interrupt_when_started, daemon=True).start()
        started = time.monotonic()
        result = _invoke("run", *GIT_ARGS)

        assert result.exit_code == EXIT_INTERRUPTED, result.output
        assert time.monotonic() - started < 20
        assert "Interrupted by user" in result.output

        store = RunStore(settings.DATABASE_URL)
        (summary,) = store.list_runs()
        record = store.get(summary.run_id)
        assert record["status"] == "cancelled"
        assert {j["job"]: j["status"] for j in record["jobs"]} == {"long": "cancelled", "after": "cancelled"}

    def test_recorded_runs(self, project):
        project(PASSING)
        assert _invoke("run", *GIT_ARGS).exit_code == EXIT_OK

        listing = _invoke("runs")
        assert listing.exit_code == 0
        run_id = listing.output.split()[0]

        shown = _invoke("runs", run_id)
        assert shown.exit_code == 0
        assert f"Run {run_id}: ci (succeeded)" in shown.output

        assert _invoke("runs", "does-not-exist").exit_code == EXIT_RUN_FAILED


class TestValidateAndPlan:
    def test_validate(self, project):
        project(PASSING)
        result = _invoke("validate")
        assert result.exit_code == 0
        assert "OK: ci (2 job(s), 2 stage(s))" in result.output

    def test_validate_parse_error(self, project):
        project("jobs:\n  a:\n    stepz: []\n")
        result = _invoke("validate")
        assert result.exit_code == EXIT_INVALID
        assert "Invalid workflow" in result.output

    def test_validate_python_workflow(self, project):
        project(
            """
            from relayci import job, sh, wf

            def workflow():
                return wf("py", job("one", sh("hello", "echo hi")), job("two", sh("bye", "echo bye"), needs=["one"]))
            """,
            name="relayci_workflow.py",
        )
        result = _invoke("validate", "--workflow", "relayci_workflow.py")
        assert result.exit_code == 0, result.output
        assert "OK: py (2 job(s), 2 stage(s))" in result.output

    def test_plan(self, project):
        project(PASSING)
        result = _invoke("plan")
        assert result.exit_code == 0
        assert "Stage 1: build" in result.output
        assert "Stage 2: test" in result.output
        assert "test (runs-on: local; needs: build)" in result.output
