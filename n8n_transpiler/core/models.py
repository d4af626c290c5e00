"""
models.py
=========
Derived, read-only model of a parsed n8n workflow.

These objects are built once per conversion run by `workflow_parser` and
`graph`, then handed to emitters. They are frozen: downstream consumers
read them but never mutate them.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from .diagnostics import Diagnostic
from .node_types import DATA_CONNECTION, NodeCategory

_FROZEN = {"frozen": True, "arbitrary_types_allowed": True}


# ---------------------------------------------------------------------------
# Node-level models
# ---------------------------------------------------------------------------


class ConnectionInfo(BaseModel):
    """One end of a connection, as seen from the node that owns the list."""

    node_name: str
    node_id: str
    output_index: int = 0
    input_index: int = 0
    category: str = DATA_CONNECTION

    model_config = _FROZEN


class CredentialReference(BaseModel):
    node_id: str
    node_name: str
    credential_type: str
    credential_id: str | None = None
    credential_name: str | None = None

    model_config = _FROZEN


class ParsedNode(BaseModel):
    """A workflow node enriched with its category and resolved connections."""

    id: str
    name: str
    type: str
    type_version: float = 1
    category: NodeCategory = NodeCategory.ACTION
    parameters: dict[str, Any] = Field(default_factory=dict)
    credentials: list[CredentialReference] = Field(default_factory=list)
    disabled: bool = False
    position: tuple[float, float] = (0, 0)
    notes: str | None = None
    incoming_connections: list[ConnectionInfo] = Field(default_factory=list)
    outgoing_connections: list[ConnectionInfo] = Field(default_factory=list)

    model_config = _FROZEN

    @property
    def data_inputs(self) -> list[ConnectionInfo]:
        return [c for c in self.incoming_connections if c.category == DATA_CONNECTION]

    @property
    def data_outputs(self) -> list[ConnectionInfo]:
        return [c for c in self.outgoing_connections if c.category == DATA_CONNECTION]


# ---------------------------------------------------------------------------
# Graph models
# ---------------------------------------------------------------------------


class GraphNode(BaseModel):
    id: str
    name: str
    type: str
    depth: int = 0
    is_conditional: bool = False
    is_merge_point: bool = False
    is_loop_start: bool = False
    is_loop_end: bool = False

    model_config = _FROZEN


class GraphEdge(BaseModel):
    source: str
    target: str
    output_index: int = 0
    input_index: int = 0
    category: str = DATA_CONNECTION
    # Set on the edge that returns from a loop body to its loop start.
    is_back_edge: bool = False

    model_config = _FROZEN

    @property
    def is_data(self) -> bool:
        return self.category == DATA_CONNECTION


class Branch(BaseModel):
    index: int
    condition: str
    nodes: list[str] = Field(default_factory=list)
    merge_point: str | None = None

    model_config = _FROZEN


class BranchInfo(BaseModel):
    """
    Branch group of one conditional node.

    `merge_point` is None when the branches never reconverge; emitters must
    handle that case explicitly rather than assume a join.
    """

    condition_node_id: str
    condition_node_name: str
    branches: list[Branch] = Field(default_factory=list)
    merge_point: str | None = None

    model_config = _FROZEN


class LoopInfo(BaseModel):
    start_node_id: str
    start_node_name: str
    loop_nodes: list[str] = Field(default_factory=list)
    end_node: str | None = None
    re_entry_nodes: list[str] = Field(default_factory=list)

    model_config = _FROZEN


class ExecutionGraph(BaseModel):
    nodes: dict[str, GraphNode] = Field(default_factory=dict)
    edges: list[GraphEdge] = Field(default_factory=list)
    entry_points: list[str] = Field(default_factory=list)
    exit_points: list[str] = Field(default_factory=list)
    branches: list[BranchInfo] = Field(default_factory=list)
    loops: list[LoopInfo] = Field(default_factory=list)

    model_config = _FROZEN

    def incoming(self, name: str) -> list[GraphEdge]:
        return [e for e in self.edges if e.target == name]

    def outgoing(self, name: str) -> list[GraphEdge]:
        return [e for e in self.edges if e.source == name]


# ---------------------------------------------------------------------------
# Workflow envelope
# ---------------------------------------------------------------------------


class WorkflowSettings(BaseModel):
    error_workflow: str | None = Field(default=None, alias="errorWorkflow")
    timezone: str | None = Field(default=None)
    save_data_error_execution: str | None = Field(default=None, alias="saveDataErrorExecution")
    save_data_success_execution: str | None = Field(
        default=None, alias="saveDataSuccessExecution"
    )
    save_manual_executions: bool | str | None = Field(default=None, alias="saveManualExecutions")
    caller_policy: str | None = Field(default=None, alias="callerPolicy")
    execution_order: str | None = Field(default=None, alias="executionOrder")

    model_config = {"populate_by_name": True, "extra": "ignore"}


class NodeIndex:
    """
    Name-keyed lookup over parsed nodes.

    n8n addresses nodes by display name in both connections and expressions.
    Every lookup goes through `key_of` so moving to stable ids only touches
    this class.
    """

    def __init__(self, nodes: list[ParsedNode]) -> None:
        self._nodes: dict[str, ParsedNode] = {}
        for node in nodes:
            self._nodes.setdefault(self.key_of(node), node)

    @staticmethod
    def key_of(node: ParsedNode) -> str:
        return node.name

    def get(self, key: str) -> ParsedNode | None:
        return self._nodes.get(key)

    def __contains__(self, key: object) -> bool:
        return key in self._nodes

    def __iter__(self):
        return iter(self._nodes.values())

    def __len__(self) -> int:
        return len(self._nodes)

    def keys(self) -> list[str]:
        return list(self._nodes)


class ParsedWorkflow(BaseModel):
    """
    The contract object returned by `parse_workflow`.
    Emitters should depend on this interface, not on the raw models.
    """

    name: str
    id: str | None = None
    triggers: list[ParsedNode] = Field(default_factory=list)
    nodes: list[ParsedNode] = Field(default_factory=list)
    execution_graph: ExecutionGraph
    credentials: list[CredentialReference] = Field(default_factory=list)
    settings: WorkflowSettings = Field(default_factory=WorkflowSettings)
    diagnostics: list[Diagnostic] = Field(default_factory=list)

    model_config = {"arbitrary_types_allowed": True}

    @property
    def all_nodes(self) -> list[ParsedNode]:
        """Triggers and regular nodes in original declaration order."""
        declared = list(self.execution_graph.nodes)
        by_name = {n.name: n for n in [*self.triggers, *self.nodes]}
        return [by_name[name] for name in declared if name in by_name]

    def index(self) -> NodeIndex:
        return NodeIndex(self.all_nodes)

    @property
    def warnings(self) -> list[str]:
        return [str(d) for d in self.diagnostics]
