"""
conditions.py
=============
Compiles n8n IF / filter condition lists into one JavaScript boolean
expression.

Responsibilities:
    - Normalise IF node parameters (v2 filter shape and legacy v1 shape)
      into `ConditionRule` models.
    - Map n8n operators onto JS comparison operators or safe-navigation
      helper calls.
    - Join the compiled rules with the node's combinator.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Iterable, Mapping

from pydantic import BaseModel, Field, field_validator

from .expressions import (
    ExpressionTranslator,
    TranslationContext,
    coerce_context,
    js_literal,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------


class ConditionOperator(BaseModel):
    type: str = Field(default="string")
    operation: str = Field(default="equals")

    model_config = {"extra": "allow"}


class ConditionRule(BaseModel):
    """One `{leftValue, rightValue, operator}` entry of a condition list."""

    left_value: Any = Field(default="", alias="leftValue")
    right_value: Any = Field(default=None, alias="rightValue")
    operator: ConditionOperator = Field(default_factory=ConditionOperator)

    model_config = {"populate_by_name": True, "extra": "allow"}

    @field_validator("operator", mode="before")
    @classmethod
    def operation_shorthand(cls, v: Any) -> Any:
        if isinstance(v, str):
            return {"operation": v}
        return {} if v is None else v


# ---------------------------------------------------------------------------
# Operator tables
# ---------------------------------------------------------------------------

COMPARISON_OPERATORS: dict[str, str] = {
    "equals": "===",
    "equal": "===",
    "notEquals": "!==",
    "notEqual": "!==",
    "gt": ">",
    "larger": ">",
    "greaterThan": ">",
    "after": ">",
    "gte": ">=",
    "largerEqual": ">=",
    "greaterThanOrEqual": ">=",
    "afterOrEquals": ">=",
    "lt": "<",
    "smaller": "<",
    "lessThan": "<",
    "before": "<",
    "lte": "<=",
    "smallerEqual": "<=",
    "lessThanOrEqual": "<=",
    "beforeOrEquals": "<=",
}


def _exists(left: str, _right: str) -> str:
    return f"({left} !== undefined && {left} !== null)"


def _not_exists(left: str, _right: str) -> str:
    return f"({left} === undefined || {left} === null)"


def _empty(left: str, _right: str) -> str:
    return f"(!{left} || {left} === '' || (Array.isArray({left}) && {left}.length === 0))"


def _not_empty(left: str, _right: str) -> str:
    return f"(!!{left} && {left} !== '' && (!Array.isArray({left}) || {left}.length > 0))"


def _method(name: str, negate: bool = False) -> Callable[[str, str], str]:
    def emit(left: str, right: str) -> str:
        call = f"({left}?.{name}?.({right}) ?? false)"
        return f"!{call}" if negate else call

    return emit


def _regex(negate: bool) -> Callable[[str, str], str]:
    def emit(left: str, right: str) -> str:
        test = f"new RegExp({right}).test({left})"
        return f"!{test}" if negate else test

    return emit


SPECIAL_OPERATIONS: dict[str, Callable[[str, str], str]] = {
    "exists": _exists,
    "notExists": _not_exists,
    "empty": _empty,
    "isEmpty": _empty,
    "notEmpty": _not_empty,
    "isNotEmpty": _not_empty,
    "contains": _method("includes"),
    "notContains": _method("includes", negate=True),
    "startsWith": _method("startsWith"),
    "notStartsWith": _method("startsWith", negate=True),
    "endsWith": _method("endsWith"),
    "notEndsWith": _method("endsWith", negate=True),
    "regex": _regex(negate=False),
    "notRegex": _regex(negate=True),
    "true": lambda left, _right: f"{left} === true",
    "false": lambda left, _right: f"{left} === false",
}

COMBINATORS: dict[str, str] = {
    "and": " && ",
    "all": " && ",
    "or": " || ",
    "any": " || ",
}


# ---------------------------------------------------------------------------
# Translation
# ---------------------------------------------------------------------------

_TRANSLATOR = ExpressionTranslator()


def _operand(value: Any, context: TranslationContext, translator: ExpressionTranslator) -> str:
    if isinstance(value, str):
        return translator.translate_plain(value, context)
    return js_literal(value)


def _compile_rule(
    rule: ConditionRule, context: TranslationContext, translator: ExpressionTranslator
) -> str:
    left = _operand(rule.left_value, context, translator)
    right = _operand(rule.right_value, context, translator)
    operation = rule.operator.operation

    special = SPECIAL_OPERATIONS.get(operation)
    if special is not None:
        return special(left, right)

    js_operator = COMPARISON_OPERATORS.get(operation)
    if js_operator is None:
        logger.warning("Unknown condition operation '%s'; falling back to '==='.", operation)
        js_operator = "==="
    return f"{left} {js_operator} {right}"


def translate_condition(
    rules: Iterable[ConditionRule | Mapping[str, Any]],
    combinator: str = "and",
    context: TranslationContext | Mapping[str, str] | None = None,
    translator: ExpressionTranslator | None = None,
) -> str:
    """
    Compile a condition list into a single JavaScript boolean expression.

    Parameters
    ----------
    rules:
        `ConditionRule` models or their raw dict form.
    combinator:
        `and` / `or` (`all` / `any` accepted); anything else means `and`.
    context:
        Shared translation context; node references resolve through it.

    Returns
    -------
    str
        `true` for an empty list, otherwise every rule wrapped in
        parentheses and joined with `&&` or `||`.
    """
    ctx = coerce_context(context)
    translator = translator or _TRANSLATOR
    parsed = [r if isinstance(r, ConditionRule) else ConditionRule.model_validate(r) for r in rules]
    if not parsed:
        return "true"

    joiner = COMBINATORS.get(str(combinator).lower())
    if joiner is None:
        logger.warning("Unknown condition combinator '%s'; using 'and'.", combinator)
        joiner = COMBINATORS["and"]

    return joiner.join(f"({_compile_rule(rule, ctx, translator)})" for rule in parsed)


# ---------------------------------------------------------------------------
# IF node parameter shapes
# ---------------------------------------------------------------------------

_LEGACY_VALUE_TYPES = ("string", "number", "boolean", "dateTime")


def conditions_from_parameters(parameters: Mapping[str, Any]) -> tuple[list[ConditionRule], str]:
    """
    Extract the condition list and combinator from an IF node's parameters.

    Handles the v2 filter shape (`conditions.conditions` +
    `conditions.combinator`) and the v1 shape where rules are grouped by
    value type under `conditions.<type>` and combined by
    `combineOperation` (`all` / `any`).
    """
    block = parameters.get("conditions")
    if not isinstance(block, Mapping):
        return [], "and"

    if isinstance(block.get("conditions"), list):
        rules = [ConditionRule.model_validate(raw) for raw in block["conditions"] if isinstance(raw, Mapping)]
        return rules, str(block.get("combinator", "and"))

    rules: list[ConditionRule] = []
    for value_type in _LEGACY_VALUE_TYPES:
        for raw in block.get(value_type) or []:
            if not isinstance(raw, Mapping):
                continue
            rules.append(
                ConditionRule(
                    left_value=raw.get("value1", ""),
                    right_value=raw.get("value2"),
                    operator=ConditionOperator(
                        type=value_type, operation=raw.get("operation", "equal")
                    ),
                )
            )
    combine = str(parameters.get("combineOperation", "all"))
    return rules, "or" if combine == "any" else "and"
