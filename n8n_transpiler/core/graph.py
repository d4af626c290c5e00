"""
graph.py
========
Assembles the `ExecutionGraph` from parsed nodes.

Edges are taken from the nodes' resolved outgoing connections, so a
connection the parser already rejected as dangling can never become an edge.
Loop detection runs first because its back-edges are excluded from depth
calculation and ordering.
"""

from __future__ import annotations

import logging
from typing import Sequence

from .diagnostics import Diagnostics
from .execution_order import resolve_order
from .models import ExecutionGraph, GraphEdge, GraphNode, ParsedNode
from .node_types import NodeCategory, is_conditional, is_merge
from .patterns import detect_branches, detect_loops

logger = logging.getLogger(__name__)


def _build_edges(nodes: Sequence[ParsedNode]) -> list[GraphEdge]:
    return [
        GraphEdge(
            source=node.name,
            target=conn.node_name,
            output_index=conn.output_index,
            input_index=conn.input_index,
            category=conn.category,
        )
        for node in nodes
        for conn in node.outgoing_connections
    ]


def _compute_depths(
    order: Sequence[str],
    edges: Sequence[GraphEdge],
    entry_points: Sequence[str],
) -> dict[str, int]:
    """Longest forward distance from any entry point, ignoring back-edges."""
    incoming: dict[str, list[str]] = {}
    for edge in edges:
        if not edge.is_back_edge:
            incoming.setdefault(edge.target, []).append(edge.source)

    entries = set(entry_points)
    depth: dict[str, int] = {}
    for name in order:
        candidates = [depth[src] + 1 for src in incoming.get(name, []) if src in depth]
        if name in entries:
            candidates.append(0)
        depth[name] = max(candidates, default=0)
    return depth


def build_execution_graph(
    nodes: Sequence[ParsedNode],
    diagnostics: Diagnostics,
) -> ExecutionGraph:
    edges = _build_edges(nodes)

    loops = detect_loops(nodes, edges, diagnostics)
    back_edges = {
        (end, loop.start_node_name) for loop in loops for end in loop.re_entry_nodes
    }
    if back_edges:
        edges = [
            edge.model_copy(update={"is_back_edge": True})
            if edge.is_data and (edge.source, edge.target) in back_edges
            else edge
            for edge in edges
        ]

    branches = detect_branches(nodes, edges, diagnostics)

    entry_points = [
        node.name
        for node in nodes
        if node.category == NodeCategory.TRIGGER or not node.data_inputs
    ]
    exit_points = [node.name for node in nodes if not node.outgoing_connections]

    order = resolve_order([node.name for node in nodes], edges)
    depths = _compute_depths(order, edges, entry_points)

    merge_points = {b.merge_point for b in branches if b.merge_point}
    loop_starts = {loop.start_node_name for loop in loops}
    loop_ends = {name for loop in loops for name in loop.re_entry_nodes}

    graph_nodes = {
        node.name: GraphNode(
            id=node.id,
            name=node.name,
            type=node.type,
            depth=depths.get(node.name, 0),
            is_conditional=is_conditional(node.type),
            is_merge_point=is_merge(node.type) or node.name in merge_points,
            is_loop_start=node.name in loop_starts,
            is_loop_end=node.name in loop_ends,
        )
        for node in nodes
    }

    logger.info(
        "Execution graph: %d nodes, %d edges, %d entry, %d exit, %d branch group(s), %d loop(s)",
        len(graph_nodes),
        len(edges),
        len(entry_points),
        len(exit_points),
        len(branches),
        len(loops),
    )
    return ExecutionGraph(
        nodes=graph_nodes,
        edges=edges,
        entry_points=entry_points,
        exit_points=exit_points,
        branches=branches,
        loops=loops,
    )
