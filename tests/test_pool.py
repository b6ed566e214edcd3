"""Tests for runner slots grouped by label."""

import pytest

from relayci.errors import RunnerUnavailable
from relayci.runners.local import LocalRunner
from relayci.runners.pool import RunnerPool, default_pool


class TestRunnerPool:
    def test_acquire_and_release(self):
        pool = RunnerPool()
        pool.register("local", LocalRunner, capacity=2)

        a = pool.acquire("local")
        b = pool.acquire("local")
        assert {a.name, b.name} == {"local-0", "local-1"}
        assert pool.in_use("local") == 2

        with pytest.raises(RunnerUnavailable) as exc:
            pool.acquire("local")
        assert exc.value.label == "local"
        assert "busy" in exc.value.message

        pool.release(a)
        assert pool.in_use("local") == 1
        assert pool.acquire("local").index == a.index

    def test_release_twice_is_harmless(self):
        pool = RunnerPool()
        pool.register("local", LocalRunner)
        slot = pool.acquire("local")
        pool.release(slot)
        pool.release(slot)
        assert pool.in_use("local") == 0

    def test_fresh_runner_per_acquire(self):
        pool = RunnerPool()
        pool.register("local", LocalRunner)
        first = pool.acquire("local")
        first.runner.cancel()
        pool.release(first)
        second = pool.acquire("local")
        assert second.runner is not first.runner

    def test_unknown_label(self):
        pool = RunnerPool()
        pool.register("local", LocalRunner)
        assert not pool.supports("gpu")
        assert pool.capacity("gpu") == 0
        with pytest.raises(RunnerUnavailable) as exc:
            pool.acquire("gpu")
        assert "no runner registered" in exc.value.message

    def test_factory_error_returns_the_slot(self):
        def broken():
            raise OSError("no backend")

        pool = RunnerPool()
        pool.register("flaky", broken, capacity=1)
        with pytest.raises(OSError):
            pool.acquire("flaky")
        assert pool.in_use("flaky") == 0

    def test_capacity_must_be_positive(self):
        with pytest.raises(ValueError):
            RunnerPool().register("local", LocalRunner, capacity=0)


class TestDefaultPool:
    def test_labels(self):
        pool = default_pool(local_capacity=3, docker_image="python:3.12-slim")
        assert pool.labels() == ["docker", "local"]
        assert pool.capacity("local") == 3

    def test_remote_label_with_agent_url(self):
        pool = default_pool(local_capacity=1, agent_url="http://agent.invalid:8765", agent_capacity=2)
        assert pool.supports("remote")
        assert pool.capacity("remote") == 2
        assert pool.acquire("remote").runner.client.base_url == "http://agent.invalid:8765"
