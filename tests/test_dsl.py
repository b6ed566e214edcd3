"""Tests for workflows defined in Python."""

import textwrap

import pytest

from relayci import JobBuilder, build, job, matrix, sh, uses, wf
from relayci.dsl import load_python_workflow
from relayci.errors import ParseError
from relayci.model import RetryPolicy
from relayci.parser import load_workflow


class TestJob:
    def test_job_helper(self):
        j = job(
            "test",
            sh("unit", "pytest -q", timeout=60),
            uses("report", "notify", url="https://alerts.invalid", message="done"),
            needs=["lint"],
            env={"RETRIES": 3},
            retry=2,
            cwd="app",
            optional=True,
        )
        assert j.id == "test"
        assert j.needs == ("lint",)
        assert j.env == {"RETRIES": "3"}
        assert j.retry == RetryPolicy(max_retries=2)
        assert j.optional
        assert [s.cwd for s in j.steps] == ["app", "app"]
        assert j.steps[1].with_ == {"url": "https://alerts.invalid", "message": "done"}

    def test_job_needs_steps(self):
        with pytest.raises(ParseError):
            job("empty")

    def test_builder(self):
        j = (
            build("deploy")
            .depends_on("test")
            .runs_on("remote")
            .when("github.ref == 'refs/heads/main'")
            .define_step("ship", "make deploy")
            .rollback("undo", "make rollback")
            .with_env(STAGE="prod")
            .with_retry(1, backoff=5)
            .with_timeout(120)
            .build()
        )
        assert j.needs == ("test",)
        assert j.runs_on == "remote"
        assert j.condition == "github.ref == 'refs/heads/main'"
        assert [s.name for s in j.on_failure] == ["undo"]
        assert j.retry.backoff == 5
        assert j.timeout == 120

    def test_builder_needs_steps(self):
        with pytest.raises(ParseError):
            JobBuilder("empty").build()


class TestMatrixAndWorkflow:
    def test_matrix_jobs(self):
        jobs = matrix(py=["3.11", "3.12"], os=["linux"]).jobs(
            lambda m: job(f"test-{m['py']}", sh("unit", f"tox -e py{m['py']}"))
        )
        assert [j.id for j in jobs] == ["test-3.11", "test-3.12"]
        assert jobs[0].matrix == {"py": "3.11", "os": "linux"}

    def test_wf_flattens_matrix_lists(self):
        w = wf(
            "ci",
            job("lint", sh("ruff", "ruff check .")),
            matrix(n=[1, 2]).jobs(lambda m: job(f"shard-{m['n']}", sh("t", "pytest"), needs=["lint"])),
            on=["push"],
            concurrency=2,
        )
        assert [j.id for j in w.jobs] == ["lint", "shard-1", "shard-2"]
        assert [t.event for t in w.triggers] == ["push"]
        assert w.concurrency == 2

    @pytest.mark.parametrize(
        "jobs",
        [
            [job("a", sh("s", "true")), job("a", sh("s", "true"))],
            [job("a", sh("s", "true"), needs=["ghost"])],
            [job("a", sh("s", "true"), condition="github.ref ==")],
            [],
        ],
    )
    def test_wf_validates(self, jobs):
        with pytest.raises(ParseError):
            wf("bad", *jobs)


class TestLoadPythonWorkflow:
    def test_workflow_function(self, tmp_path):
        path = tmp_path / "pipeline.py"
        path.write_text(
            textwrap.dedent(
                """
                from relayci import job, sh, wf

                def workflow():
                    return wf("from-py", job("only", sh("hi", "echo hi")))
                """
            )
        )
        w = load_workflow(path)
        assert w.name == "from-py"
        assert w.source == str(path.resolve())

    def test_workflow_constant(self, tmp_path):
        path = tmp_path / "pipeline.py"
        path.write_text('from relayci import job, sh, wf\nWORKFLOW = wf("const", job("x", sh("s", "true")))\n')
        assert load_python_workflow(path).name == "const"

    def test_missing_definition(self, tmp_path):
        path = tmp_path / "pipeline.py"
        path.write_text("X = 1\n")
        with pytest.raises(ParseError) as exc:
            load_python_workflow(path)
        assert "workflow()" in exc.value.message
