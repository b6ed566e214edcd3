"""Tests for dependency resolution: ordering, stages and cycle detection."""

import itertools
import random

import pytest

from relayci.errors import CycleDetected, ParseError
from relayci.model import Job, Step, Workflow
from relayci.resolver import build_dag, resolve


def _wf(edges):
    """edges: {job_id: [needs...]} in declaration order."""
    return Workflow(
        name="t",
        jobs=tuple(Job(id=j, steps=(Step(name="s", run="true"),), needs=tuple(n)) for j, n in edges.items()),
    )


def _assert_topological(wf, order):
    position = {job_id: i for i, job_id in enumerate(order)}
    assert sorted(order) == sorted(j.id for j in wf.jobs)
    for job in wf.jobs:
        for need in job.needs:
            assert position[need] < position[job.id], f"{need} must come before {job.id}"


class TestResolve:
    def test_diamond(self):
        wf = _wf({"build": [], "lint": [], "test": ["build"], "deploy": ["test", "lint"]})
        plan = resolve(wf)
        assert plan.order == ("build", "lint", "test", "deploy")
        assert plan.levels == (("build", "lint"), ("test",), ("deploy",))
        assert plan.dependents["build"] == ("test",)

    def test_ties_follow_declaration_order(self):
        wf = _wf({"zeta": [], "alpha": [], "mid": []})
        assert resolve(wf).order == ("zeta", "alpha", "mid")

    def test_every_job_after_its_needs_random_dags(self):
        rng = random.Random(1234)
        for _ in range(50):
            n = rng.randint(1, 12)
            ids = [f"j{i}" for i in range(n)]
            edges = {}
            for i, job_id in enumerate(ids):
                # only earlier jobs can be needed, so the graph is acyclic
                edges[job_id] = rng.sample(ids[:i], k=rng.randint(0, i)) if i else []
            shuffled = dict(rng.sample(list(edges.items()), k=n))
            wf = _wf(shuffled)
            plan = resolve(wf)
            _assert_topological(wf, plan.order)
            for level_idx, level in enumerate(plan.levels):
                earlier = set(itertools.chain.from_iterable(plan.levels[:level_idx]))
                for job_id in level:
                    assert set(wf.job(job_id).needs) <= earlier

    def test_duplicate_need_counts_once(self):
        wf = _wf({"a": [], "b": ["a", "a"]})
        adj, indeg = build_dag(wf)
        assert adj[0] == [1]
        assert indeg == [0, 1]


class TestCycles:
    def test_self_cycle(self):
        with pytest.raises(CycleDetected) as exc:
            resolve(_wf({"a": ["a"]}))
        assert exc.value.members == ("a",)

    def test_names_cycle_members(self):
        wf = _wf({"setup": [], "a": ["setup", "c"], "b": ["a"], "c": ["b"], "after": ["c"]})
        with pytest.raises(CycleDetected) as exc:
            resolve(wf)
        assert set(exc.value.members) == {"a", "b", "c"}
        assert "setup" not in exc.value.members
        assert "after" not in exc.value.members
        assert "->" in exc.value.message

    def test_random_graphs_with_back_edge_always_detected(self):
        rng = random.Random(99)
        for _ in range(30):
            n = rng.randint(2, 8)
            ids = [f"j{i}" for i in range(n)]
            edges = {job_id: ([ids[i - 1]] if i else []) for i, job_id in enumerate(ids)}
            # close a loop from the first job back to a later one
            edges[ids[0]] = [ids[rng.randint(1, n - 1)]]
            with pytest.raises(CycleDetected) as exc:
                resolve(_wf(edges))
            assert exc.value.members

    def test_unknown_need_is_a_parse_error(self):
        with pytest.raises(ParseError):
            resolve(_wf({"a": ["ghost"]}))
