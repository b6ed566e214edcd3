# resolver.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional, Set, Tuple

from .errors import CycleDetected, ParseError
from .model import Workflow


@dataclass(frozen=True)
class ExecutionPlan:
    """
    Result of dependency resolution.

    order:      every job appears after all entries of its `needs`
    levels:     stages; each level depends only on earlier levels
    dependents: job id -> ids of jobs that directly need it
    """
    order: Tuple[str, ...]
    levels: Tuple[Tuple[str, ...], ...]
    dependents: Dict[str, Tuple[str, ...]]


def build_dag(workflow: Workflow) -> Tuple[List[List[int]], List[int]]:
    """
    Build the graph over arena indices (position of the job in the workflow).

    Returns (adj, indeg) where adj[i] lists the jobs that need job i.
    """
    index = workflow.index()
    n = len(workflow.jobs)
    adj: List[List[int]] = [[] for _ in range(n)]
    indeg: List[int] = [0] * n

    for i, job in enumerate(workflow.jobs):
        for need in job.needs:
            if need not in index:
                raise ParseError(
                    message=f"needs unknown job {need!r}",
                    location=f"jobs.{job.id}.needs",
                )
            j = index[need]
            if i not in adj[j]:
                adj[j].append(i)
                indeg[i] += 1

    return adj, indeg


def _find_cycle(workflow: Workflow, remaining: Set[int]) -> List[str]:
    """Walk `needs` edges among unresolved jobs until a job repeats."""
    index = workflow.index()
    jobs = workflow.jobs

    for start in sorted(remaining):
        path: List[int] = []
        on_path: Dict[int, int] = {}
        node: Optional[int] = start
        while node is not None and node not in on_path:
            on_path[node] = len(path)
            path.append(node)
            node = next(
                (index[d] for d in jobs[node].needs if index[d] in remaining),
                None,
            )
        if node is not None:
            cycle = path[on_path[node]:]
            # needs edges point backwards; report in execution direction
            return [jobs[i].id for i in reversed(cycle)]

    return [jobs[i].id for i in sorted(remaining)]


def resolve(workflow: Workflow) -> ExecutionPlan:
    """
    Topologically order the jobs (Kahn's algorithm).

    Ties are broken by declaration order so the plan is reproducible.

    Raises:
        CycleDetected: naming the jobs of one cycle.
    """
    adj, indeg = build_dag(workflow)
    indeg = list(indeg)
    jobs = workflow.jobs

    level = sorted(i for i, d in enumerate(indeg) if d == 0)
    levels: List[Tuple[str, ...]] = []
    processed: Set[int] = set()

    while level:
        levels.append(tuple(jobs[i].id for i in level))
        nxt: List[int] = []
        for node in level:
            processed.add(node)
            for child in adj[node]:
                indeg[child] -= 1
                if indeg[child] == 0:
                    nxt.append(child)
        level = sorted(nxt)

    if len(processed) != len(jobs):
        remaining = set(range(len(jobs))) - processed
        raise CycleDetected(members=tuple(_find_cycle(workflow, remaining)))

    dependents = {
        jobs[i].id: tuple(jobs[c].id for c in sorted(children))
        for i, children in enumerate(adj)
    }
    order = tuple(job_id for lvl in levels for job_id in lvl)
    return ExecutionPlan(order=order, levels=tuple(levels), dependents=dependents)
