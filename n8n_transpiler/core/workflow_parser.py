"""
workflow_parser.py
==================
Deterministic ingestion and parsing engine for n8n workflow JSON exports.

Responsibilities:
    - Schema validation of the raw export via Pydantic v2 models.
    - Incoming / outgoing connection indexes keyed by node name.
    - Node categorisation, credential extraction, settings passthrough.
    - Assembly of the `ExecutionGraph` (see graph.py).

Only a root document that is not a workflow at all raises. Everything below
that level (a bad node, a dangling connection, a duplicate name) is recorded
as a diagnostic and skipped so the rest of the workflow still converts.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from pydantic import BaseModel, Field, ValidationError, field_validator

from .diagnostics import DiagnosticCode, Diagnostics
from .graph import build_execution_graph
from .models import (
    ConnectionInfo,
    CredentialReference,
    ParsedNode,
    ParsedWorkflow,
    WorkflowSettings,
)
from .node_types import DATA_CONNECTION, NodeCategory, get_node_category

logger = logging.getLogger(__name__)

DEFAULT_WORKFLOW_NAME = "converted-workflow"


class WorkflowParseError(ValueError):
    """Raised when the input is not a workflow document at all."""


# ---------------------------------------------------------------------------
# Raw export models
# ---------------------------------------------------------------------------


class NodeCredential(BaseModel):
    id: str | None = Field(default=None)
    name: str | None = Field(default=None)

    model_config = {"extra": "allow"}

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v: Any) -> Any:
        return str(v) if isinstance(v, int) else v


class WorkflowNode(BaseModel):
    """One entry of the export's `nodes` array."""

    id: str | None = Field(default=None)
    name: str = Field(..., min_length=1, description="Unique node name within the workflow.")
    type: str = Field(..., description="n8n node type tag, e.g. 'n8n-nodes-base.if'.")
    type_version: float = Field(default=1, alias="typeVersion")
    position: tuple[float, float] = Field(default=(0, 0))
    parameters: dict[str, Any] = Field(default_factory=dict)
    credentials: dict[str, NodeCredential] = Field(default_factory=dict)
    disabled: bool = Field(default=False)
    notes: str | None = Field(default=None)
    webhook_id: str | None = Field(default=None, alias="webhookId")

    model_config = {"populate_by_name": True, "extra": "allow"}

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v: Any) -> Any:
        return str(v) if isinstance(v, int) else v

    @field_validator("position", mode="before")
    @classmethod
    def position_or_origin(cls, v: Any) -> Any:
        if isinstance(v, (list, tuple)) and len(v) == 2 and all(
            isinstance(c, (int, float)) and not isinstance(c, bool) for c in v
        ):
            return v
        return (0, 0)

    @field_validator("name")
    @classmethod
    def name_must_not_be_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Node name must not be blank or whitespace.")
        return v

    @field_validator("parameters", "credentials", mode="before")
    @classmethod
    def null_as_empty(cls, v: Any) -> Any:
        return {} if v is None else v


class ConnectionTarget(BaseModel):
    node: str
    type: str = Field(default=DATA_CONNECTION)
    index: int = Field(default=0, ge=0)

    model_config = {"extra": "allow"}


class Workflow(BaseModel):
    """Top-level n8n workflow export document."""

    name: str | None = Field(default=None)
    id: str | None = Field(default=None)
    active: bool | None = Field(default=None)
    nodes: list[Any] = Field(..., description="Raw node entries; validated one by one.")
    connections: dict[str, Any] = Field(default_factory=dict)
    settings: Any = Field(default_factory=dict, description="Validated separately; never fails the root.")
    tags: list[Any] = Field(default_factory=list)
    meta: dict[str, Any] | None = Field(default=None)
    pin_data: dict[str, Any] | None = Field(default=None, alias="pinData")

    model_config = {"populate_by_name": True, "extra": "allow"}

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v: Any) -> Any:
        return str(v) if isinstance(v, int) else v

    @field_validator("settings", "connections", mode="before")
    @classmethod
    def null_as_empty(cls, v: Any) -> Any:
        return {} if v is None else v


# ---------------------------------------------------------------------------
# Phase helpers
# ---------------------------------------------------------------------------


def _load_root(raw: str | bytes | dict[str, Any]) -> dict[str, Any]:
    if isinstance(raw, dict):
        return raw
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        logger.error("JSON syntax error at line %d, col %d: %s", exc.lineno, exc.colno, exc.msg)
        raise WorkflowParseError(
            f"Malformed JSON input at line {exc.lineno}, col {exc.colno}: {exc.msg}"
        ) from exc
    except TypeError as exc:
        raise WorkflowParseError(f"Unsupported workflow input type: {type(raw).__name__}") from exc

    if not isinstance(data, dict):
        raise WorkflowParseError(
            "Top-level JSON value must be an object, not a primitive or array."
        )
    return data


def _validate_nodes(
    raw_nodes: list[Any], diagnostics: Diagnostics
) -> list[WorkflowNode]:
    nodes: list[WorkflowNode] = []
    seen: set[str] = set()

    for position, raw in enumerate(raw_nodes):
        label = raw.get("name", f"<node #{position}>") if isinstance(raw, dict) else f"<node #{position}>"
        try:
            node = WorkflowNode.model_validate(raw)
        except ValidationError as exc:
            logger.error("Failed to parse node %s: %s", label, exc)
            diagnostics.warn(
                DiagnosticCode.INVALID_NODE,
                f"Node {label} is not a valid node definition and was skipped.",
                node=label if isinstance(label, str) else None,
            )
            continue

        if node.name in seen:
            diagnostics.warn(
                DiagnosticCode.DUPLICATE_NODE_NAME,
                f"Duplicate node name '{node.name}'; only the first declaration is kept.",
                node=node.name,
            )
            continue
        seen.add(node.name)

        if node.id is None:
            node.id = node.name
        nodes.append(node)

    return nodes


def _iter_connections(connections: dict[str, Any], diagnostics: Diagnostics):
    """
    Yield (source, category, output_index, ConnectionTarget) for every
    well-formed connection entry, in map order.
    """
    for source, categories in connections.items():
        if not isinstance(categories, dict):
            continue
        for category, outputs in categories.items():
            if not isinstance(outputs, list):
                continue
            for output_index, targets in enumerate(outputs):
                if not targets:
                    continue
                if not isinstance(targets, list):
                    diagnostics.warn(
                        DiagnosticCode.DANGLING_CONNECTION,
                        f"Malformed output slot {output_index} on '{source}' ({category}); skipped.",
                        node=source,
                    )
                    continue
                for raw_target in targets:
                    try:
                        target = ConnectionTarget.model_validate(raw_target)
                    except ValidationError as exc:
                        diagnostics.warn(
                            DiagnosticCode.DANGLING_CONNECTION,
                            f"Malformed connection from '{source}' output {output_index}: {exc.errors()[0]['msg']}",
                            node=source,
                        )
                        continue
                    yield source, category, output_index, target


def _build_connection_indexes(
    connections: dict[str, Any],
    index: dict[str, WorkflowNode],
    diagnostics: Diagnostics,
) -> tuple[dict[str, list[ConnectionInfo]], dict[str, list[ConnectionInfo]]]:
    incoming: dict[str, list[ConnectionInfo]] = {name: [] for name in index}
    outgoing: dict[str, list[ConnectionInfo]] = {name: [] for name in index}

    for source, category, output_index, target in _iter_connections(connections, diagnostics):
        source_node = index.get(source)
        target_node = index.get(target.node)
        if source_node is None or target_node is None:
            missing = source if source_node is None else target.node
            diagnostics.warn(
                DiagnosticCode.DANGLING_CONNECTION,
                f"Connection '{source}' -> '{target.node}' references unknown node '{missing}'; skipped.",
                node=source,
            )
            continue

        outgoing[source].append(
            ConnectionInfo(
                node_name=target.node,
                node_id=target_node.id or target.node,
                output_index=output_index,
                input_index=target.index,
                category=category,
            )
        )
        incoming[target.node].append(
            ConnectionInfo(
                node_name=source,
                node_id=source_node.id or source,
                output_index=output_index,
                input_index=target.index,
                category=category,
            )
        )

    return incoming, outgoing


def _parse_settings(raw: Any, diagnostics: Diagnostics) -> WorkflowSettings:
    try:
        return WorkflowSettings.model_validate(raw)
    except ValidationError as exc:
        logger.error("Failed to parse workflow settings: %s", exc)
        diagnostics.warn(
            DiagnosticCode.INVALID_SETTINGS,
            "Workflow settings block is not valid and was replaced by defaults.",
        )
        return WorkflowSettings()


def _credential_refs(node: WorkflowNode) -> list[CredentialReference]:
    return [
        CredentialReference(
            node_id=node.id or node.name,
            node_name=node.name,
            credential_type=cred_type,
            credential_id=cred.id,
            credential_name=cred.name,
        )
        for cred_type, cred in node.credentials.items()
    ]


def _parse_node(
    node: WorkflowNode,
    incoming: list[ConnectionInfo],
    outgoing: list[ConnectionInfo],
) -> ParsedNode:
    category = get_node_category(node.type)
    logger.debug("Node '%s' (%s) -> %s", node.name, node.type, category.value)
    return ParsedNode(
        id=node.id or node.name,
        name=node.name,
        type=node.type,
        type_version=node.type_version,
        category=category,
        parameters=node.parameters,
        credentials=_credential_refs(node),
        disabled=node.disabled,
        position=node.position,
        notes=node.notes,
        incoming_connections=incoming,
        outgoing_connections=outgoing,
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def parse_workflow(raw: str | bytes | dict[str, Any]) -> ParsedWorkflow:
    """
    Ingest and validate an n8n workflow export.

    Parameters
    ----------
    raw:
        The export as a JSON string/bytes, or an already-decoded dict.

    Returns
    -------
    ParsedWorkflow
        Parsed nodes, triggers, execution graph, credentials, settings and
        the diagnostics collected along the way.

    Raises
    ------
    WorkflowParseError
        If the input is not valid JSON, or its root is not a workflow object.
    """
    logger.info("Beginning n8n workflow ingestion.")
    diagnostics = Diagnostics()

    # ---- Phase 1: JSON syntax ----
    data = _load_root(raw)

    # ---- Phase 2: root schema ----
    try:
        workflow = Workflow.model_validate(data)
    except ValidationError as exc:
        logger.error("Workflow schema validation failed: %s", exc)
        raise WorkflowParseError(f"n8n workflow schema validation failed: {exc}") from exc

    name = workflow.name or DEFAULT_WORKFLOW_NAME
    logger.info("Workflow '%s' passed schema validation.", name)
    settings = _parse_settings(workflow.settings, diagnostics)

    # ---- Phase 3: nodes and connection indexes ----
    raw_nodes = _validate_nodes(workflow.nodes, diagnostics)
    by_name = {node.name: node for node in raw_nodes}
    incoming, outgoing = _build_connection_indexes(workflow.connections, by_name, diagnostics)

    parsed_nodes = [
        _parse_node(node, incoming[node.name], outgoing[node.name]) for node in raw_nodes
    ]

    # ---- Phase 4: execution graph and structural patterns ----
    graph = build_execution_graph(parsed_nodes, diagnostics)

    triggers = [n for n in parsed_nodes if n.category == NodeCategory.TRIGGER]
    regular = [n for n in parsed_nodes if n.category != NodeCategory.TRIGGER]
    credentials = [ref for node in parsed_nodes for ref in node.credentials]

    logger.info(
        "Workflow '%s' resolved: %d trigger(s), %d node(s), %d credential ref(s), %d warning(s)",
        name,
        len(triggers),
        len(regular),
        len(credentials),
        len(diagnostics),
    )

    return ParsedWorkflow(
        name=name,
        id=workflow.id,
        triggers=triggers,
        nodes=regular,
        execution_graph=graph,
        credentials=credentials,
        settings=settings,
        diagnostics=list(diagnostics),
    )

