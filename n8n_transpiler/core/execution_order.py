"""
execution_order.py
==================
Cycle-tolerant reverse topological sort over the workflow graph.

Nodes are emitted post-order while walking *incoming* edges backwards from
the exit points. A node that is re-entered while still in progress marks a
cycle; the walk simply does not descend into it again. Edges flagged as loop
back-edges are never followed, so a loop start always precedes its body.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Iterable, Iterator, Sequence

from .models import ExecutionGraph, GraphEdge

logger = logging.getLogger(__name__)


class VisitState(Enum):
    UNVISITED = 0
    IN_PROGRESS = 1
    DONE = 2


def resolve_order(node_names: Sequence[str], edges: Iterable[GraphEdge]) -> list[str]:
    """
    Return every name in *node_names* exactly once, predecessors first.

    Ties between independent predecessors are broken by declaration order,
    so the result is identical across runs on unchanged input.
    """
    position = {name: i for i, name in enumerate(node_names)}
    predecessors: dict[str, list[str]] = {name: [] for name in node_names}
    has_successor: set[str] = set()

    for edge in edges:
        if edge.is_back_edge:
            continue
        if edge.source not in position or edge.target not in position:
            continue
        predecessors[edge.target].append(edge.source)
        has_successor.add(edge.source)

    for name, preds in predecessors.items():
        predecessors[name] = sorted(set(preds), key=position.__getitem__)

    state: dict[str, VisitState] = {name: VisitState.UNVISITED for name in node_names}
    order: list[str] = []

    def visit(root: str) -> None:
        if state[root] is not VisitState.UNVISITED:
            return
        state[root] = VisitState.IN_PROGRESS
        stack: list[tuple[str, Iterator[str]]] = [(root, iter(predecessors[root]))]

        while stack:
            name, pending = stack[-1]
            for pred in pending:
                if state[pred] is VisitState.UNVISITED:
                    state[pred] = VisitState.IN_PROGRESS
                    stack.append((pred, iter(predecessors[pred])))
                    break
                if state[pred] is VisitState.IN_PROGRESS:
                    logger.debug("Cycle through '%s' short-circuited at '%s'.", name, pred)
            else:
                stack.pop()
                state[name] = VisitState.DONE
                order.append(name)

    exit_points = [name for name in node_names if name not in has_successor]
    for name in exit_points:
        visit(name)

    # Nodes only reachable through a cycle are picked up here.
    for name in node_names:
        visit(name)

    return order


def execution_order(graph: ExecutionGraph) -> list[str]:
    """Code emission order for *graph*: a permutation of all its node names."""
    order = resolve_order(list(graph.nodes), graph.edges)
    logger.debug("Execution order: %s", order)
    return order
