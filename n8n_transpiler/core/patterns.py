"""
patterns.py
===========
Best-effort detection of conditional branches and loop regions.

Responsibilities:
    - Group the outputs of IF / Switch nodes into branches and find the node
      where they reconverge (the merge point).
    - Find the body of every splitInBatches loop and the node that returns
      to the loop start.

Neither detector raises. A missing merge point or loop end is returned as a
partial result and reported through the diagnostics channel.
"""

from __future__ import annotations

import logging
from collections import deque
from typing import Any, Iterable, Sequence

from .diagnostics import DiagnosticCode, Diagnostics
from .models import Branch, BranchInfo, GraphEdge, LoopInfo, ParsedNode
from .node_types import is_conditional, is_loop, loop_continue_output

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Adjacency helpers
# ---------------------------------------------------------------------------


def _successor_map(edges: Iterable[GraphEdge]) -> dict[str, list[GraphEdge]]:
    successors: dict[str, list[GraphEdge]] = {}
    for edge in edges:
        if edge.is_data:
            successors.setdefault(edge.source, []).append(edge)
    return successors


def _predecessor_map(edges: Iterable[GraphEdge]) -> dict[str, set[str]]:
    predecessors: dict[str, set[str]] = {}
    for edge in edges:
        if edge.is_data:
            predecessors.setdefault(edge.target, set()).add(edge.source)
    return predecessors


def _reachable(
    starts: Sequence[str],
    successors: dict[str, list[GraphEdge]],
    exclude: str,
) -> list[str]:
    """Breadth-first forward reachability; *exclude* is never entered."""
    visited: set[str] = set()
    result: list[str] = []
    queue = deque(starts)
    while queue:
        name = queue.popleft()
        if name in visited or name == exclude:
            continue
        visited.add(name)
        result.append(name)
        for edge in successors.get(name, []):
            if edge.target not in visited:
                queue.append(edge.target)
    return result


# ---------------------------------------------------------------------------
# Branch detection
# ---------------------------------------------------------------------------


def _branch_label(node: ParsedNode, output_index: int) -> str:
    if node.type == "n8n-nodes-base.if":
        return "true" if output_index == 0 else "false"

    rules: Any = node.parameters.get("rules")
    values = rules.get("values") if isinstance(rules, dict) else None
    if isinstance(values, list) and output_index < len(values):
        rule = values[output_index]
        if isinstance(rule, dict) and rule.get("outputKey"):
            return str(rule["outputKey"])
    return f"output {output_index}"


def _find_merge_point(
    ordered_candidates: Sequence[str],
    port_targets: dict[int, list[str]],
    members: dict[int, list[str]],
    predecessors: dict[str, set[str]],
) -> str | None:
    for candidate in ordered_candidates:
        sources = predecessors.get(candidate, set())
        if all(
            candidate in port_targets[index] or sources.intersection(members[index])
            for index in port_targets
        ):
            return candidate
    return None


def _detect_branch(
    node: ParsedNode,
    successors: dict[str, list[GraphEdge]],
    predecessors: dict[str, set[str]],
    diagnostics: Diagnostics,
) -> BranchInfo | None:
    outgoing = successors.get(node.name, [])
    if not outgoing:
        logger.info("Conditional '%s' has no connected outputs; no branches.", node.name)
        return None

    port_targets: dict[int, list[str]] = {}
    for edge in outgoing:
        targets = port_targets.setdefault(edge.output_index, [])
        if edge.target not in targets:
            targets.append(edge.target)
    port_targets = dict(sorted(port_targets.items()))

    reach = {
        index: _reachable(targets, successors, exclude=node.name)
        for index, targets in port_targets.items()
    }

    owners: dict[str, set[int]] = {}
    for index, names in reach.items():
        for name in names:
            owners.setdefault(name, set()).add(index)

    # Members are the nodes only one branch reaches; shared nodes are where
    # the branches have already reconverged.
    members = {
        index: [name for name in names if owners[name] == {index}]
        for index, names in reach.items()
    }

    merge_point: str | None = None
    if len(port_targets) > 1:
        first = next(iter(reach.values()))
        shared = [name for name in first if owners[name] == set(port_targets)]
        merge_point = _find_merge_point(shared, port_targets, members, predecessors)
        if merge_point is None:
            diagnostics.warn(
                DiagnosticCode.UNMERGED_BRANCH,
                f"Branches of '{node.name}' never reconverge; no merge point detected.",
                node=node.name,
            )

    branches = [
        Branch(
            index=index,
            condition=_branch_label(node, index),
            nodes=members[index],
            merge_point=merge_point,
        )
        for index in port_targets
    ]
    logger.info(
        "Branch '%s': %d branch(es), merge point=%s",
        node.name,
        len(branches),
        merge_point,
    )
    return BranchInfo(
        condition_node_id=node.id,
        condition_node_name=node.name,
        branches=branches,
        merge_point=merge_point,
    )


def detect_branches(
    nodes: Sequence[ParsedNode],
    edges: Sequence[GraphEdge],
    diagnostics: Diagnostics,
) -> list[BranchInfo]:
    successors = _successor_map(edges)
    predecessors = _predecessor_map(edges)
    found: list[BranchInfo] = []
    for node in nodes:
        if not is_conditional(node.type):
            continue
        info = _detect_branch(node, successors, predecessors, diagnostics)
        if info is not None:
            found.append(info)
    return found


# ---------------------------------------------------------------------------
# Loop detection
# ---------------------------------------------------------------------------


def _detect_loop(
    node: ParsedNode,
    successors: dict[str, list[GraphEdge]],
    diagnostics: Diagnostics,
) -> LoopInfo:
    continue_port = loop_continue_output(node.type_version)
    starts = [
        edge.target
        for edge in successors.get(node.name, [])
        if edge.output_index == continue_port
    ]
    if not starts:
        diagnostics.warn(
            DiagnosticCode.LOOP_BODY_EMPTY,
            f"Loop '{node.name}' has nothing connected to its loop output {continue_port}.",
            node=node.name,
        )
        return LoopInfo(start_node_id=node.id, start_node_name=node.name)

    loop_nodes = _reachable(starts, successors, exclude=node.name)
    re_entry = [
        name
        for name in loop_nodes
        if any(edge.target == node.name for edge in successors.get(name, []))
    ]

    end_node: str | None = None
    if len(re_entry) == 1:
        end_node = re_entry[0]
    elif not re_entry:
        diagnostics.warn(
            DiagnosticCode.LOOP_END_NOT_FOUND,
            f"No node in the body of loop '{node.name}' connects back to it.",
            node=node.name,
        )
    else:
        diagnostics.warn(
            DiagnosticCode.AMBIGUOUS_LOOP_END,
            f"Loop '{node.name}' is re-entered from several nodes {re_entry}; "
            "loop end left undetermined.",
            node=node.name,
        )

    logger.info(
        "Loop '%s': %d body node(s), end=%s", node.name, len(loop_nodes), end_node
    )
    return LoopInfo(
        start_node_id=node.id,
        start_node_name=node.name,
        loop_nodes=loop_nodes,
        end_node=end_node,
        re_entry_nodes=re_entry,
    )


def detect_loops(
    nodes: Sequence[ParsedNode],
    edges: Sequence[GraphEdge],
    diagnostics: Diagnostics,
) -> list[LoopInfo]:
    successors = _successor_map(edges)
    return [
        _detect_loop(node, successors, diagnostics)
        for node in nodes
        if is_loop(node.type)
    ]
