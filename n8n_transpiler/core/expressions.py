"""
expressions.py
==============
Rewrites n8n reference expressions into JavaScript expression text.

n8n parameter values are either literals or expressions: a leading `=` and /
or `{{ … }}` segments containing a small reference language (`$json`,
`$('Node').item.json`, `$env`, `$now`, `$if(…)` …). Each `{{ … }}` body is
matched against an ordered table of `ExpressionRule`s; the first rule whose
pattern matches and whose rewrite accepts the match wins. Adding a form means
adding a rule, never reordering the existing ones.

Two output modes share the same table:
    - template (`translate_expression`): string-valued contexts; mixed
      literal / reference text becomes a JS template literal.
    - plain (`translate_plain_expression`): expression contexts such as
      conditions; the result is always a bare expression.

Forms no rule recognises are passed through verbatim and recorded on the
`TranslationContext` for manual review.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Sequence

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Naming helpers (shared with emitters)
# ---------------------------------------------------------------------------


def to_variable_name(node_name: str) -> str:
    """Slug a node name into a JS identifier: 'Fetch Data' -> 'fetch_data'."""
    name = re.sub(r"[^a-zA-Z0-9_]", "_", node_name)
    name = re.sub(r"_+", "_", name).strip("_").lower()
    if not name:
        return "node"
    if name[0].isdigit():
        name = f"_{name}"
    return name


def to_step_id(node_name: str) -> str:
    """Slug a node name into a step id: 'Fetch Data!' -> 'fetch-data'."""
    step_id = re.sub(r"[^a-zA-Z0-9\-_ ]", "", node_name)
    return re.sub(r"\s+", "-", step_id.strip()).lower()


def js_literal(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, default=str)


# ---------------------------------------------------------------------------
# Per-run context
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TranslationOptions:
    """Names of the target-side accessors the rewrites emit."""

    item_accessor: str = "data"
    items_accessor: str = "items"
    env_accessor: str = "process.env"
    event_accessor: str = "event.data"
    run_index_accessor: str = "index"
    item_index_accessor: str = "itemIndex"
    execution_mode: str = "production"


@dataclass(frozen=True)
class FlaggedExpression:
    raw: str
    inner: str
    reason: str


@dataclass
class TranslationContext:
    """
    State of one conversion run: the node name -> variable table and
    everything the translator flagged along the way.

    Emitters call `assign_variable` as they process nodes in execution
    order. A reference to a node not yet assigned reserves its variable
    on the spot, so the node receives that same name when it is emitted.
    """

    workflow_name: str = "converted-workflow"
    workflow_id: str | None = None
    variable_map: dict[str, str] = field(default_factory=dict)
    options: TranslationOptions = field(default_factory=TranslationOptions)
    flagged: list[FlaggedExpression] = field(default_factory=list)
    unresolved_nodes: list[str] = field(default_factory=list)

    def assign_variable(self, node_name: str) -> str:
        if node_name in self.variable_map:
            return self.variable_map[node_name]
        base = to_variable_name(node_name)
        taken = set(self.variable_map.values())
        candidate, suffix = base, 2
        while candidate in taken:
            candidate = f"{base}_{suffix}"
            suffix += 1
        self.variable_map[node_name] = candidate
        return candidate

    def resolve_node(self, node_name: str) -> str:
        variable = self.variable_map.get(node_name)
        if variable is not None:
            return variable
        self.unresolved_nodes.append(node_name)
        variable = self.assign_variable(node_name)
        logger.debug("Forward reference to '%s'; reserved variable '%s'.", node_name, variable)
        return variable

    def flag(self, raw: str, inner: str, reason: str) -> None:
        self.flagged.append(FlaggedExpression(raw=raw, inner=inner, reason=reason))
        logger.info("Expression flagged for review (%s): %s", reason, inner[:80])


def coerce_context(context: TranslationContext | Mapping[str, str] | None) -> TranslationContext:
    if context is None:
        return TranslationContext()
    if isinstance(context, TranslationContext):
        return context
    return TranslationContext(variable_map=dict(context))


# ---------------------------------------------------------------------------
# Rule table
# ---------------------------------------------------------------------------

# Rewrite signature: (translator, match, context) -> JS text, or None to decline.
Rewrite = Callable[["ExpressionTranslator", "re.Match[str]", TranslationContext], "str | None"]


@dataclass(frozen=True)
class ExpressionRule:
    name: str
    pattern: re.Pattern[str]
    rewrite: Rewrite
    # Token rules may also be substituted inside compound expressions.
    token: bool = True


_PATH = r"(?P<path>(?:\.[A-Za-z_$][\w$]*|\[(?:\d+|'[^']*'|\"[^\"]*\")\])*)"
_END = r"(?![\w$])"
# Luxon date values: a trailing member access falls through to the fallback.
_END_VALUE = r"(?![\w$.])"
_QUOTED_NAME = r"(?P<q>['\"])(?P<name>(?:(?!(?P=q)).)+)(?P=q)"


def _rule(name: str, pattern: str, rewrite: Rewrite, token: bool = True) -> ExpressionRule:
    return ExpressionRule(name, re.compile(pattern, re.DOTALL), rewrite, token)


def _current_item(_t, m, ctx):
    return f"{ctx.options.item_accessor}{m['path']}"


def _node_output(_t, m, ctx):
    return f"{ctx.resolve_node(m['name'])}{m['path'] or ''}"


def _node_all(_t, m, ctx):
    return ctx.resolve_node(m["name"])


def _input_all(_t, _m, ctx):
    return ctx.options.items_accessor


def _input_first(_t, m, ctx):
    return f"{ctx.options.items_accessor}[0]{m['path']}"


def _input_last(_t, m, ctx):
    items = ctx.options.items_accessor
    return f"{items}[{items}.length - 1]{m['path']}"


def _environment(_t, m, ctx):
    if m["key"]:
        return f"{ctx.options.env_accessor}.{m['key']}"
    return f"{ctx.options.env_accessor}[{js_literal(m['qkey'])}]"


def _now(_t, m, ctx):
    method = m["method"]
    if method in (None, ".toISO()", ".toISOString()"):
        return "new Date().toISOString()"
    if method == ".toMillis()":
        return "Date.now()"
    return None


def _today(_t, _m, ctx):
    return 'new Date().toISOString().split("T")[0]'


def _execution(_t, m, ctx):
    path = m["path"]
    if path == "id":
        return f'({ctx.options.event_accessor}.executionId ?? "unknown")'
    if path == "mode":
        return js_literal(ctx.options.execution_mode)
    return f"{ctx.options.event_accessor}.{path}"


def _workflow(_t, m, ctx):
    path = m["path"]
    if path == "id":
        return js_literal(ctx.workflow_id or ctx.workflow_name)
    if path == "name":
        return js_literal(ctx.workflow_name)
    return f"{ctx.options.event_accessor}.workflow.{path}"


def _run_index(_t, _m, ctx):
    return ctx.options.run_index_accessor


def _item_index(_t, _m, ctx):
    return ctx.options.item_index_accessor


def _ternary(translator, m, ctx):
    args = split_arguments(m["args"])
    if len(args) != 3:
        return None
    parts = [translator.translate_inner(arg, ctx) for arg in args]
    if any(part is None for part in parts):
        return None
    condition, when_true, when_false = parts
    return f"({condition} ? {when_true} : {when_false})"


def _arithmetic(translator, m, ctx):
    return translator.substitute_references(m.group(0), ctx)


DEFAULT_RULES: tuple[ExpressionRule, ...] = (
    _rule("current_item", r"\$json" + _PATH + _END, _current_item),
    _rule("input_item", r"\$input\.item\.json" + _PATH + _END, _current_item),
    _rule(
        "node_output",
        r"\$\(\s*" + _QUOTED_NAME + r"\s*\)(?:\.item|\.first\(\)|\.last\(\))?\.json" + _PATH + _END,
        _node_output,
    ),
    _rule("node_all", r"\$\(\s*" + _QUOTED_NAME + r"\s*\)\.all\(\)", _node_all),
    _rule(
        "node_output_legacy",
        r"\$node\[\s*" + _QUOTED_NAME + r"\s*\]\.json" + _PATH + _END,
        _node_output,
    ),
    _rule("input_all", r"\$input\.all\(\)", _input_all),
    _rule("input_first", r"\$input\.first\(\)(?:\.json)?" + _PATH + _END, _input_first),
    _rule("input_last", r"\$input\.last\(\)(?:\.json)?" + _PATH + _END, _input_last),
    _rule(
        "environment",
        r"\$env(?:\.(?P<key>[A-Za-z_]\w*)|\[\s*(?P<q>['\"])(?P<qkey>[^'\"]+)(?P=q)\s*\])" + _END,
        _environment,
    ),
    _rule("now", r"\$now(?P<method>\.\w+\(\))?" + _END_VALUE, _now),
    _rule("today", r"\$today" + _END_VALUE, _today),
    _rule("execution", r"\$execution\.(?P<path>\w+(?:\.\w+)*)" + _END, _execution),
    _rule("workflow", r"\$workflow\.(?P<path>\w+(?:\.\w+)*)" + _END, _workflow),
    _rule("run_index", r"\$runIndex" + _END, _run_index),
    _rule("item_index", r"\$itemIndex" + _END, _item_index),
    _rule("ternary", r"\$if\((?P<args>.*)\)", _ternary, token=False),
    _rule("arithmetic", r".+", _arithmetic, token=False),
)


# ---------------------------------------------------------------------------
# Compound expression support
# ---------------------------------------------------------------------------

_QUOTES = "'\"`"


def _find_close(text: str, start: int) -> int:
    """
    Index of the `}}` closing an expression opened just before *start*.

    Braces inside string literals are ignored and object literals nest, so
    `{{ JSON.stringify({a: {b: 1}}) }}` closes on the final pair. Falls back
    to the first `}}` when the body never balances, and -1 when there is none.
    """
    depth = 0
    quote: str | None = None
    i = start
    while i < len(text):
        ch = text[i]
        if quote is not None:
            if ch == "\\":
                i += 2
                continue
            if ch == quote:
                quote = None
        elif ch in _QUOTES:
            quote = ch
        elif ch == "{":
            depth += 1
        elif ch == "}":
            if depth == 0 and text.startswith("}}", i):
                return i
            depth = max(depth - 1, 0)
        i += 1
    return text.find("}}", start)


def _split_segments(body: str) -> list[tuple[bool, str]]:
    """Split template text into (is_expression, text) runs; empty `{{ }}` is dropped."""
    segments: list[tuple[bool, str]] = []

    def add_text(text: str) -> None:
        if not text:
            return
        if segments and not segments[-1][0]:
            segments[-1] = (False, segments[-1][1] + text)
        else:
            segments.append((False, text))

    pos = 0
    while True:
        opening = body.find("{{", pos)
        if opening == -1:
            break
        closing = _find_close(body, opening + 2)
        if closing == -1:
            break
        add_text(body[pos:opening])
        inner = body[opening + 2:closing].strip()
        if inner:
            segments.append((True, inner))
        pos = closing + 2
    add_text(body[pos:])
    return segments


_STRING_LITERAL_RE = re.compile(r"'(?:[^'\\]|\\.)*'|\"(?:[^\"\\]|\\.)*\"|`(?:[^`\\]|\\.)*`")
_PLACEHOLDER_RE = re.compile(r"\x00(\d+)\x00")
_SIMPLE_EXPR_RE = re.compile(r"[\w$.]+(?:\[[^\]]*\])*")

# Globals that exist unchanged in the target runtime.
_SAFE_GLOBALS = frozenset({
    "Math", "Number", "String", "Boolean", "JSON", "Array", "Object", "Date",
    "parseInt", "parseFloat", "isNaN", "encodeURIComponent", "decodeURIComponent",
    "true", "false", "null", "undefined",
})

_RESIDUE_TOKEN_RE = re.compile(
    r"\s+"
    r"|\x00\d+\x00"
    r"|\d+(?:\.\d+)?"
    r"|\.[A-Za-z_]\w*"
    r"|[-+*/%<>=!&|?:,()\[\]]"
    r"|(?P<ident>[A-Za-z_]\w*)"
)


def split_arguments(text: str) -> list[str]:
    """Split a call's argument list on top-level commas."""
    args: list[str] = []
    depth = 0
    quote: str | None = None
    current: list[str] = []
    escaped = False
    for char in text:
        if quote:
            current.append(char)
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == quote:
                quote = None
            continue
        if char in "'\"`":
            quote = char
        elif char in "([{":
            depth += 1
        elif char in ")]}":
            depth -= 1
        elif char == "," and depth == 0:
            args.append("".join(current).strip())
            current = []
            continue
        current.append(char)
    args.append("".join(current).strip())
    return args


def _escape_template_text(text: str) -> str:
    return text.replace("\\", "\\\\").replace("`", "\\`").replace("${", "\\${")


def _group(expression: str) -> str:
    return expression if _SIMPLE_EXPR_RE.fullmatch(expression) else f"({expression})"


# ---------------------------------------------------------------------------
# Translator
# ---------------------------------------------------------------------------


class ExpressionTranslator:
    """
    Table-driven translator for n8n expressions.

    Usage
    -----
    ::

        ctx = TranslationContext(variable_map={"Fetch Data": "fetch_data"})
        ExpressionTranslator().translate("{{ $('Fetch Data').json.id }}", ctx)
        # -> 'fetch_data.id'
    """

    def __init__(self, rules: Sequence[ExpressionRule] | None = None) -> None:
        self.rules: list[ExpressionRule] = list(DEFAULT_RULES if rules is None else rules)

    # ------------------------------------------------------------------
    # Inner expression matching
    # ------------------------------------------------------------------

    def match_rule(self, inner: str, context: TranslationContext) -> tuple[str, str] | None:
        """Return (rule name, JS text) for the first rule accepting *inner*."""
        inner = inner.strip()
        for rule in self.rules:
            m = rule.pattern.fullmatch(inner)
            if m is None:
                continue
            result = rule.rewrite(self, m, context)
            if result is not None:
                logger.debug("Rule '%s' matched: %s -> %s", rule.name, inner[:60], result[:60])
                return rule.name, result
        return None

    def translate_inner(self, inner: str, context: TranslationContext) -> str | None:
        matched = self.match_rule(inner, context)
        return matched[1] if matched else None

    def substitute_references(self, text: str, context: TranslationContext) -> str | None:
        """
        Rewrite every reference token inside a compound expression and pass
        operators, literals and whitelisted globals through unchanged.

        Returns None if anything unknown is left over.
        """
        literals: list[str] = []
        pieces: list[str] = []

        def _hold(value: str) -> None:
            literals.append(value)
            pieces.append(f"\x00{len(literals) - 1}\x00")

        pos = 0
        while pos < len(text):
            char = text[pos]
            if char in "'\"`":
                m = _STRING_LITERAL_RE.match(text, pos)
                if m is None:
                    return None
                _hold(m.group(0))
                pos = m.end()
                continue
            if char != "$":
                pieces.append(char)
                pos += 1
                continue
            for rule in self.rules:
                if not rule.token:
                    continue
                m = rule.pattern.match(text, pos)
                if m is None:
                    continue
                rewritten = rule.rewrite(self, m, context)
                if rewritten is not None:
                    break
            else:
                return None
            _hold(rewritten)
            pos = m.end()

        residue = "".join(pieces)
        pos = 0
        while pos < len(residue):
            token = _RESIDUE_TOKEN_RE.match(residue, pos)
            if token is None:
                return None
            ident = token.group("ident")
            if ident is not None and ident not in _SAFE_GLOBALS:
                return None
            pos = token.end()

        return _PLACEHOLDER_RE.sub(lambda m: literals[int(m.group(1))], residue).strip()

    # ------------------------------------------------------------------
    # Public entry points
    # ------------------------------------------------------------------

    def _segments(self, raw: Any) -> tuple[str | None, list[tuple[bool, str]]]:
        """
        Classify *raw*. Returns (literal, []) for non-expressions, otherwise
        (None, segments) where each segment is (is_expression, text).
        """
        if not isinstance(raw, str):
            return js_literal(raw), []
        if "{{" not in raw and not raw.startswith("="):
            return js_literal(raw), []

        body = raw[1:] if raw.startswith("=") else raw
        segments = _split_segments(body)
        if not any(is_expr for is_expr, _ in segments):
            return js_literal("".join(text for _, text in segments)), []
        return None, segments

    def _translate_segment(self, raw: str, inner: str, context: TranslationContext) -> str | None:
        result = self.translate_inner(inner, context)
        if result is None:
            context.flag(raw, inner, "unrecognized expression form")
        return result

    def translate(self, raw: Any, context: TranslationContext | Mapping[str, str] | None = None) -> str:
        """Template mode: JS text evaluating to the parameter's value."""
        ctx = coerce_context(context)
        literal, segments = self._segments(raw)
        if literal is not None:
            return literal

        if len(segments) == 1:
            inner = segments[0][1]
            result = self._translate_segment(raw, inner, ctx)
            return result if result is not None else f"`${{{inner}}}`"

        parts: list[str] = []
        for is_expr, text in segments:
            if is_expr:
                result = self._translate_segment(raw, text, ctx)
                parts.append(f"${{{result if result is not None else text}}}")
            else:
                parts.append(_escape_template_text(text))
        return "`" + "".join(parts) + "`"

    def translate_plain(
        self, raw: Any, context: TranslationContext | Mapping[str, str] | None = None
    ) -> str:
        """Plain mode: always a bare JS expression, never a template literal."""
        ctx = coerce_context(context)
        literal, segments = self._segments(raw)
        if literal is not None:
            return literal

        if len(segments) == 1:
            inner = segments[0][1]
            result = self._translate_segment(raw, inner, ctx)
            return result if result is not None else f"({inner})"

        parts: list[str] = []
        for is_expr, text in segments:
            if not is_expr:
                parts.append(js_literal(text))
                continue
            result = self._translate_segment(raw, text, ctx)
            parts.append(_group(result) if result is not None else f"({text})")
        return " + ".join(parts)


# ---------------------------------------------------------------------------
# Module-level convenience API
# ---------------------------------------------------------------------------

_DEFAULT_TRANSLATOR = ExpressionTranslator()


def translate_expression(
    raw: Any, context: TranslationContext | Mapping[str, str] | None = None
) -> str:
    return _DEFAULT_TRANSLATOR.translate(raw, context)


def translate_plain_expression(
    raw: Any, context: TranslationContext | Mapping[str, str] | None = None
) -> str:
    return _DEFAULT_TRANSLATOR.translate_plain(raw, context)


def is_expression(value: Any) -> bool:
    """True if *value* is an n8n expression string rather than a literal."""
    return isinstance(value, str) and ("{{" in value or value.startswith("="))
