"""
Topological sequencing of the dependency graph.

sequence() orders logical paths so that every dependency comes before
the schemas importing it. Nodes with no ordering constraint between them
come out in lexicographic order, so the same graph always yields the same
publish order.
"""

from __future__ import annotations

import heapq
import logging
from typing import Dict, List, Set

from ..errors import CyclicDependencyError
from .types import DependencyGraph

logger = logging.getLogger(__name__)


def sequence(graph: DependencyGraph) -> List[str]:
    """Return a deterministic publish order for the graph.

    Kahn's algorithm: each node tracks how many of its dependencies are
    still unsequenced and becomes eligible when that count reaches zero.
    Eligible nodes are taken smallest logical path first.

    Args:
        graph: Dependency graph (every edge target must be a node)

    Returns:
        Logical paths, dependencies before dependents

    Raises:
        CyclicDependencyError: If some nodes can never become eligible
    """
    remaining: Dict[str, int] = {
        path: len(set(graph.dependencies(path))) for path in graph
    }
    dependents = graph.dependents()

    eligible = [path for path, count in remaining.items() if count == 0]
    heapq.heapify(eligible)

    order: List[str] = []
    while eligible:
        path = heapq.heappop(eligible)
        order.append(path)
        for dependent in set(dependents.get(path, ())):
            remaining[dependent] -= 1
            if remaining[dependent] == 0:
                heapq.heappush(eligible, dependent)

    if len(order) != len(remaining):
        unsequenced = set(remaining) - set(order)
        cycle = find_cycle(graph, unsequenced)
        logger.error(f"Import cycle detected: {' -> '.join(cycle)}")
        raise CyclicDependencyError(cycle)

    logger.debug(f"Publish order: {order}")
    return order


def find_cycle(graph: DependencyGraph, candidates: Set[str]) -> List[str]:
    """Find one cycle among nodes that could not be sequenced.

    Every candidate has at least one dependency that is also a candidate,
    so walking dependencies from any candidate must revisit a node. The
    walk starts at the smallest path and follows the smallest candidate
    dependency at each step.

    Returns:
        The cycle as a path list ending with its first element
    """
    start = min(candidates)
    walk: List[str] = []
    position: Dict[str, int] = {}
    current = start

    while current not in position:
        position[current] = len(walk)
        walk.append(current)
        current = min(dep for dep in graph.dependencies(current) if dep in candidates)

    cycle = walk[position[current]:]
    cycle.append(current)
    return cycle
