"""
transpiler.py
=============
Parameter translation pass over a parsed workflow.

Walks nodes in execution order and prepares everything a per-node-type
emitter needs:

- the node's variable name and step id (assigned in order, de-duplicated);
- every string in the node's parameter bag translated to JavaScript,
  keyed by JSON path;
- compiled condition expressions for IF / Filter / Switch nodes.

Expressions the rule table cannot translate are passed through and listed
as `pending_review` so the Ollama agent (or a human) can finish them.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable

from .conditions import conditions_from_parameters, translate_condition
from .diagnostics import Diagnostic
from .execution_order import execution_order
from .expressions import (
    ExpressionTranslator,
    TranslationContext,
    TranslationOptions,
    to_step_id,
)
from .models import ParsedNode, ParsedWorkflow
from .node_types import NodeCategory

logger = logging.getLogger(__name__)


def _extract_strings(obj: Any, path: str = "") -> list[tuple[str, str]]:
    """
    Recursively walk a dict/list and collect (json_path, value) pairs for
    every string found.
    """
    found: list[tuple[str, str]] = []
    if isinstance(obj, dict):
        for k, v in obj.items():
            found.extend(_extract_strings(v, f"{path}.{k}" if path else k))
    elif isinstance(obj, list):
        for i, v in enumerate(obj):
            found.extend(_extract_strings(v, f"{path}[{i}]"))
    elif isinstance(obj, str):
        found.append((path, obj))
    return found


# ---------------------------------------------------------------------------
# Result container
# ---------------------------------------------------------------------------


@dataclass
class NodeTranslation:
    """Translation result for a single node."""

    node_name: str
    node_type: str
    variable_name: str | None = None
    step_id: str | None = None
    parameters: dict[str, str] = field(default_factory=dict)
    conditions: dict[str, str] = field(default_factory=dict)
    # (json_path, untranslated inner expression)
    pending_review: list[tuple[str, str]] = field(default_factory=list)
    unresolved_references: list[str] = field(default_factory=list)
    skipped: bool = False
    error: str | None = None

    @property
    def is_deterministic(self) -> bool:
        return not self.pending_review and self.error is None


@dataclass
class TranslationReport:
    """Aggregate result for a full workflow."""

    workflow_name: str
    order: list[str] = field(default_factory=list)
    node_results: list[NodeTranslation] = field(default_factory=list)
    variable_map: dict[str, str] = field(default_factory=dict)
    diagnostics: list[Diagnostic] = field(default_factory=list)

    def result_for(self, node_name: str) -> NodeTranslation | None:
        return next((r for r in self.node_results if r.node_name == node_name), None)

    @property
    def has_pending_review(self) -> bool:
        return any(r.pending_review for r in self.node_results)

    @property
    def total_pending_review(self) -> int:
        return sum(len(r.pending_review) for r in self.node_results)

    @property
    def skipped_nodes(self) -> list[str]:
        return [r.node_name for r in self.node_results if r.skipped]


# ---------------------------------------------------------------------------
# Condition compilers
# ---------------------------------------------------------------------------

ConditionCompiler = Callable[[ParsedNode, TranslationContext, ExpressionTranslator], "dict[str, str]"]


def _compile_if(
    node: ParsedNode, context: TranslationContext, translator: ExpressionTranslator
) -> dict[str, str]:
    rules, combinator = conditions_from_parameters(node.parameters)
    return {"true": translate_condition(rules, combinator, context, translator)}


def _compile_switch(
    node: ParsedNode, context: TranslationContext, translator: ExpressionTranslator
) -> dict[str, str]:
    rules_block = node.parameters.get("rules")
    values = rules_block.get("values") if isinstance(rules_block, dict) else None
    if not isinstance(values, list):
        logger.debug("Switch '%s' has no rule list (expression mode?); nothing compiled.", node.name)
        return {}

    compiled: dict[str, str] = {}
    for index, rule in enumerate(values):
        if not isinstance(rule, dict):
            continue
        label = str(rule.get("outputKey") or f"output {index}")
        rules, combinator = conditions_from_parameters(rule)
        compiled[label] = translate_condition(rules, combinator, context, translator)
    return compiled


_SPECIFIC_HANDLERS: dict[str, ConditionCompiler] = {
    "n8n-nodes-base.if": _compile_if,
    "n8n-nodes-base.filter": _compile_if,
    "n8n-nodes-base.switch": _compile_switch,
}


# ---------------------------------------------------------------------------
# Main transpiler class
# ---------------------------------------------------------------------------


class WorkflowTranslator:
    """
    Orchestrates per-node parameter translation for a `ParsedWorkflow`.

    Usage
    -----
    ::

        parsed = parse_workflow(raw_json)
        report = WorkflowTranslator().translate(parsed)
        for result in report.node_results:
            print(result.variable_name, result.parameters)
    """

    def __init__(
        self,
        options: TranslationOptions | None = None,
        translator: ExpressionTranslator | None = None,
    ) -> None:
        self.options = options or TranslationOptions()
        self.translator = translator or ExpressionTranslator()

    def translate(self, parsed: ParsedWorkflow) -> TranslationReport:
        logger.info("Translating parameters of workflow '%s'.", parsed.name)

        context = TranslationContext(
            workflow_name=parsed.name,
            workflow_id=parsed.id,
            options=self.options,
        )
        index = parsed.index()
        order = execution_order(parsed.execution_graph)
        # Triggers first; stable, so everything else keeps its resolved order.
        order.sort(key=lambda name: index.get(name).category != NodeCategory.TRIGGER)

        report = TranslationReport(
            workflow_name=parsed.name,
            order=order,
            diagnostics=list(parsed.diagnostics),
        )

        for name in order:
            node = index.get(name)
            if node.disabled:
                logger.info("Node '%s' is disabled; skipped.", name)
                report.node_results.append(
                    NodeTranslation(node_name=name, node_type=node.type, skipped=True)
                )
                continue

            try:
                node_result = self._translate_node(node, context)
            except Exception as exc:
                logger.error("Translation failed for node '%s': %s", name, exc, exc_info=True)
                node_result = NodeTranslation(
                    node_name=name,
                    node_type=node.type,
                    variable_name=context.variable_map.get(name),
                    step_id=to_step_id(name),
                    error=str(exc),
                )
            report.node_results.append(node_result)

        report.variable_map = dict(context.variable_map)
        logger.info(
            "Translation complete. %d node(s), %d expression(s) pending review.",
            len(report.node_results),
            report.total_pending_review,
        )
        return report

    def _translate_node(self, node: ParsedNode, context: TranslationContext) -> NodeTranslation:
        logger.debug("Translating node '%s' [%s].", node.name, node.type)
        result = NodeTranslation(
            node_name=node.name,
            node_type=node.type,
            variable_name=context.assign_variable(node.name),
            step_id=to_step_id(node.name),
        )
        unresolved_before = len(context.unresolved_nodes)

        for path, raw in _extract_strings(node.parameters):
            flagged_before = len(context.flagged)
            result.parameters[path] = self.translator.translate(raw, context)
            result.pending_review.extend(
                (path, flagged.inner) for flagged in context.flagged[flagged_before:]
            )

        compiler = _SPECIFIC_HANDLERS.get(node.type)
        if compiler is not None:
            flagged_before = len(context.flagged)
            result.conditions = compiler(node, context, self.translator)
            for flagged in context.flagged[flagged_before:]:
                if ("conditions", flagged.inner) not in result.pending_review:
                    result.pending_review.append(("conditions", flagged.inner))

        result.unresolved_references = context.unresolved_nodes[unresolved_before:]
        return result
