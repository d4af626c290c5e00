"""core — deterministic graph resolution and expression translation engine."""
from .conditions import ConditionRule, conditions_from_parameters, translate_condition
from .diagnostics import Diagnostic, DiagnosticCode, Diagnostics, Severity
from .execution_order import execution_order
from .expressions import (
    ExpressionRule,
    ExpressionTranslator,
    FlaggedExpression,
    TranslationContext,
    TranslationOptions,
    to_step_id,
    to_variable_name,
    translate_expression,
    translate_plain_expression,
)
from .models import BranchInfo, ExecutionGraph, LoopInfo, ParsedNode, ParsedWorkflow
from .transpiler import NodeTranslation, TranslationReport, WorkflowTranslator
from .workflow_parser import WorkflowParseError, parse_workflow

__all__ = [
    "ConditionRule", "conditions_from_parameters", "translate_condition",
    "Diagnostic", "DiagnosticCode", "Diagnostics", "Severity",
    "execution_order",
    "ExpressionRule", "ExpressionTranslator", "FlaggedExpression", "TranslationContext",
    "TranslationOptions", "to_step_id", "to_variable_name",
    "translate_expression", "translate_plain_expression",
    "BranchInfo", "ExecutionGraph", "LoopInfo", "ParsedNode", "ParsedWorkflow",
    "NodeTranslation", "TranslationReport", "WorkflowTranslator",
    "WorkflowParseError", "parse_workflow",
]
