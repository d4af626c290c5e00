"""Tests for the n8n expression translator."""

import pytest

from n8n_transpiler import (
    ExpressionRule,
    ExpressionTranslator,
    TranslationContext,
    TranslationOptions,
    to_step_id,
    to_variable_name,
    translate_expression,
    translate_plain_expression,
)
from n8n_transpiler.core.expressions import DEFAULT_RULES, is_expression, split_arguments


@pytest.fixture
def ctx():
    return TranslationContext(
        workflow_name="Order Sync",
        variable_map={"Fetch Data": "fetch_data", "Get Orders": "get_orders"},
    )


class TestLiterals:
    """Values that are not expressions."""

    def test_plain_text_is_quoted(self, ctx):
        assert translate_expression("plain text", ctx) == '"plain text"'

    def test_equals_prefix_without_braces(self, ctx):
        assert translate_expression("=plain", ctx) == '"plain"'

    @pytest.mark.parametrize("value, expected", [(42, "42"), (True, "true"), (None, "null"), ([1, "a"], '[1, "a"]')])
    def test_non_strings_are_json(self, ctx, value, expected):
        assert translate_expression(value, ctx) == expected

    def test_quotes_are_escaped(self, ctx):
        assert translate_expression('say "hi"', ctx) == '"say \\"hi\\""'

    def test_is_expression(self):
        assert is_expression("={{ $json.a }}")
        assert is_expression("=literal")
        assert not is_expression("literal")
        assert not is_expression(3)


class TestReferenceRules:
    """One test per rule of the table."""

    @pytest.mark.parametrize("raw, expected", [
        ("{{ $json.status }}", "data.status"),
        ("={{ $json.user.email }}", "data.user.email"),
        ('{{ $json["first name"] }}', 'data["first name"]'),
        ("{{ $json.items[0].sku }}", "data.items[0].sku"),
        ("{{ $json }}", "data"),
        ("{{ $input.item.json.total }}", "data.total"),
        ("{{ $('Fetch Data').json.id }}", "fetch_data.id"),
        ("{{ $('Fetch Data').item.json.id }}", "fetch_data.id"),
        ('{{ $("Fetch Data").first().json.id }}', "fetch_data.id"),
        ("{{ $('Fetch Data').last().json }}", "fetch_data"),
        ('{{ $node["Get Orders"].json.count }}', "get_orders.count"),
        ("{{ $('Get Orders').all() }}", "get_orders"),
        ("{{ $input.all() }}", "items"),
        ("{{ $input.first().json.id }}", "items[0].id"),
        ("{{ $input.last().json.id }}", "items[items.length - 1].id"),
        ("{{ $env.API_KEY }}", "process.env.API_KEY"),
        ('{{ $env["API_KEY"] }}', 'process.env["API_KEY"]'),
        ("{{ $now }}", "new Date().toISOString()"),
        ("{{ $now.toISO() }}", "new Date().toISOString()"),
        ("{{ $now.toMillis() }}", "Date.now()"),
        ("{{ $today }}", 'new Date().toISOString().split("T")[0]'),
        ("{{ $execution.id }}", '(event.data.executionId ?? "unknown")'),
        ("{{ $execution.mode }}", '"production"'),
        ("{{ $execution.resumeUrl }}", "event.data.resumeUrl"),
        ("{{ $workflow.name }}", '"Order Sync"'),
        ("{{ $workflow.id }}", '"Order Sync"'),
        ("{{ $workflow.active }}", "event.data.workflow.active"),
        ("{{ $runIndex }}", "index"),
        ("{{ $itemIndex }}", "itemIndex"),
    ])
    def test_rule(self, ctx, raw, expected):
        assert translate_expression(raw, ctx) == expected
        assert ctx.flagged == []

    def test_workflow_id_prefers_id(self):
        ctx = TranslationContext(workflow_name="Order Sync", workflow_id="abc123")
        assert translate_expression("{{ $workflow.id }}", ctx) == '"abc123"'

    def test_workflow_id_without_id_uses_name(self, ctx):
        assert translate_expression("{{ $workflow.id }}", ctx) == '"Order Sync"'

    def test_rule_names_are_unique(self):
        names = [rule.name for rule in DEFAULT_RULES]
        assert len(names) == len(set(names))


class TestCompoundExpressions:
    """Ternaries and arithmetic."""

    def test_ternary(self, ctx):
        raw = "{{ $if($json.count > 0, $json.count, 'none') }}"
        assert translate_expression(raw, ctx) == "(data.count > 0 ? data.count : 'none')"

    def test_ternary_with_commas_inside_strings(self, ctx):
        raw = "{{ $if($json.ok, 'a, b', 'c') }}"
        assert translate_expression(raw, ctx) == "(data.ok ? 'a, b' : 'c')"

    def test_arithmetic(self, ctx):
        raw = "{{ $json.price * $json.quantity + 5 }}"
        assert translate_expression(raw, ctx) == "data.price * data.quantity + 5"

    def test_arithmetic_with_node_reference(self, ctx):
        raw = "{{ $('Get Orders').item.json.total - $json.discount }}"
        assert translate_expression(raw, ctx) == "get_orders.total - data.discount"

    def test_method_call_on_reference(self, ctx):
        raw = "{{ $json.name.toUpperCase() }}"
        assert translate_expression(raw, ctx) == "data.name.toUpperCase()"

    def test_safe_globals_allowed(self, ctx):
        raw = "{{ Math.round($json.score) }}"
        assert translate_expression(raw, ctx) == "Math.round(data.score)"

    def test_dollar_inside_string_literal_untouched(self, ctx):
        raw = "{{ $json.amount + ' $' }}"
        assert translate_expression(raw, ctx) == "data.amount + ' $'"

    def test_split_arguments(self):
        assert split_arguments("a, f(b, c), 'd,e'") == ["a", "f(b, c)", "'d,e'"]


class TestTemplateMode:
    """Mixed literal and reference content."""

    def test_mixed_content_is_template_literal(self, ctx):
        raw = "=Hello {{ $json.name }}, order {{ $('Get Orders').item.json.id }}"
        assert translate_expression(raw, ctx) == "`Hello ${data.name}, order ${get_orders.id}`"

    def test_literal_text_is_escaped(self, ctx):
        raw = "=`cost` ${x} \\ {{ $json.cost }}"
        assert translate_expression(raw, ctx) == "`\\`cost\\` \\${x} \\\\ ${data.cost}`"

    def test_url_template(self, ctx):
        raw = "=https://api.example.com/users/{{ $json.userId }}/orders"
        assert translate_expression(raw, ctx) == "`https://api.example.com/users/${data.userId}/orders`"


class TestSegmentScanning:
    """Locating the `{{ … }}` boundaries."""

    def test_empty_braces_are_dropped(self, ctx):
        assert translate_expression("{{}}", ctx) == '""'
        assert translate_expression("=a{{ }}b", ctx) == '"ab"'
        assert translate_plain_expression("={{  }}", ctx) == '""'
        assert ctx.flagged == []

    def test_empty_braces_beside_expression(self, ctx):
        assert translate_expression("=a{{}}b{{ $json.c }}", ctx) == "`ab${data.c}`"

    def test_closing_braces_inside_string_literal(self, ctx):
        assert translate_expression("{{ $json.a + '}}' }}", ctx) == "data.a + '}}'"

    def test_nested_object_literal_not_truncated(self, ctx):
        raw = "={{ JSON.stringify({a: {b: 1}}) }}"
        assert translate_expression(raw, ctx) == "`${JSON.stringify({a: {b: 1}})}`"
        assert [f.inner for f in ctx.flagged] == ["JSON.stringify({a: {b: 1}})"]

    def test_unterminated_braces_stay_literal(self, ctx):
        assert translate_expression("=a {{ b", ctx) == '"a {{ b"'
        assert ctx.flagged == []


class TestPlainMode:
    """Bare expressions for condition contexts."""

    def test_pure_reference(self, ctx):
        assert translate_plain_expression("={{ $json.status }}", ctx) == "data.status"

    def test_literal(self, ctx):
        assert translate_plain_expression("active", ctx) == '"active"'

    def test_mixed_content_is_concatenation(self, ctx):
        raw = "=id-{{ $json.id }}"
        assert translate_plain_expression(raw, ctx) == '"id-" + data.id'

    def test_complex_parts_are_parenthesised(self, ctx):
        raw = "=total: {{ $json.a + $json.b }}"
        assert translate_plain_expression(raw, ctx) == '"total: " + (data.a + data.b)'

    def test_unrecognized_is_parenthesised(self, ctx):
        assert translate_plain_expression("{{ $fromAI('x') }}", ctx) == "($fromAI('x'))"
        assert len(ctx.flagged) == 1


class TestFallback:
    """Unrecognised forms pass through and are flagged."""

    def test_unrecognized_pure_reference(self, ctx):
        raw = "{{ $now.toFormat('yyyy-MM-dd') }}"
        assert translate_expression(raw, ctx) == "`${$now.toFormat('yyyy-MM-dd')}`"
        flagged = ctx.flagged[0]
        assert flagged.raw == raw
        assert flagged.inner == "$now.toFormat('yyyy-MM-dd')"
        assert flagged.reason == "unrecognized expression form"

    def test_unknown_identifier_is_flagged(self, ctx):
        translate_expression("{{ DateTime.now() }}", ctx)
        assert [f.inner for f in ctx.flagged] == ["DateTime.now()"]

    def test_unrecognized_segment_in_template(self, ctx):
        raw = "=Hi {{ $vars.greeting }}"
        assert translate_expression(raw, ctx) == "`Hi ${$vars.greeting}`"
        assert len(ctx.flagged) == 1

    def test_ternary_with_bad_part_is_flagged(self, ctx):
        translate_expression("{{ $if($vars.x, 1, 2) }}", ctx)
        assert len(ctx.flagged) == 1


class TestNodeResolution:
    """Node name to variable lookup."""

    def test_unknown_node_reserves_slug(self, ctx):
        assert translate_expression("{{ $('Send Email!').json.ok }}", ctx) == "send_email.ok"
        assert ctx.unresolved_nodes == ["Send Email!"]
        assert ctx.variable_map["Send Email!"] == "send_email"

    def test_forward_reference_avoids_taken_slug(self, ctx):
        """A later node whose slug collides gets the same de-duplicated name the reference used."""
        assert translate_expression("{{ $('Fetch-Data').json.id }}", ctx) == "fetch_data_2.id"
        assert ctx.assign_variable("Fetch-Data") == "fetch_data_2"
        assert ctx.unresolved_nodes == ["Fetch-Data"]

    def test_repeated_forward_reference_recorded_once(self, ctx):
        translate_expression("{{ $('Later').json.a + $('Later').json.b }}", ctx)
        assert ctx.unresolved_nodes == ["Later"]

    def test_plain_mapping_accepted_as_context(self):
        assert translate_expression("{{ $('Fetch Data').json.id }}", {"Fetch Data": "fd"}) == "fd.id"

    def test_assign_variable_deduplicates(self):
        ctx = TranslationContext()
        assert ctx.assign_variable("Fetch Data") == "fetch_data"
        assert ctx.assign_variable("Fetch-Data") == "fetch_data_2"
        assert ctx.assign_variable("Fetch Data") == "fetch_data"

    def test_custom_options(self):
        ctx = TranslationContext(options=TranslationOptions(item_accessor="item", env_accessor="env"))
        assert translate_expression("{{ $json.a }}", ctx) == "item.a"
        assert translate_expression("{{ $env.X }}", ctx) == "env.X"


class TestNaming:
    """Identifier and step id slugs."""

    @pytest.mark.parametrize("name, expected", [
        ("Fetch Data", "fetch_data"),
        ("HTTP Request (2)", "http_request_2"),
        ("  spaced  ", "spaced"),
        ("1st Step", "_1st_step"),
        ("!!!", "node"),
    ])
    def test_to_variable_name(self, name, expected):
        assert to_variable_name(name) == expected

    def test_to_step_id(self):
        assert to_step_id("Fetch Data!") == "fetch-data"
        assert to_step_id("Send  Email_2") == "send-email_2"


class TestCustomRules:
    """The rule table is open for extension."""

    def test_extra_rule_added_without_reordering(self):
        import re

        extra = ExpressionRule(
            name="vars",
            pattern=re.compile(r"\$vars\.(?P<key>\w+)"),
            rewrite=lambda _t, m, _ctx: f"vars.{m['key']}",
        )
        translator = ExpressionTranslator(rules=[extra, *DEFAULT_RULES])
        ctx = TranslationContext()
        assert translator.translate("{{ $vars.region }}", ctx) == "vars.region"
        assert translator.translate("{{ $vars.region + $json.x }}", ctx) == "vars.region + data.x"
        assert ctx.flagged == []
