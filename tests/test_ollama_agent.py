"""Tests for the flagged-expression review agent (no Ollama server needed)."""

import asyncio
from types import SimpleNamespace

import pytest

from n8n_transpiler import WorkflowTranslator, parse_workflow
from n8n_transpiler.agents import (
    OllamaAgent,
    TranslationRequest,
    TranslationResult,
    patch_report_with_translations,
    requests_from_report,
)
from n8n_transpiler.agents.ollama_agent import (
    DEFAULT_MODEL,
    MODEL_PROFILES,
    _clean_model_output,
    get_model_profile,
)


class FakeClient:
    """Stands in for `ollama.AsyncClient`; replies are token lists or exceptions."""

    def __init__(self, replies=(), models=("qwen2.5-coder:7b",)):
        self.replies = list(replies)
        self.models = models
        self.calls = []

    async def chat(self, **kwargs):
        self.calls.append(kwargs)
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply

        async def stream():
            for token in reply:
                yield SimpleNamespace(message=SimpleNamespace(content=token))

        return stream()

    async def list(self):
        return SimpleNamespace(models=[SimpleNamespace(model=m) for m in self.models])


@pytest.fixture
def flagged_report(make_node):
    parsed = parse_workflow({
        "name": "Dates",
        "nodes": [make_node("Stamp", "n8n-nodes-base.set", parameters={
            "day": "=Day {{ $now.toFormat('yyyy-MM-dd') }}",
            "plain": "={{ $json.id }}",
        })],
    })
    return WorkflowTranslator().translate(parsed)


class TestProfiles:
    """Model profile lookup."""

    def test_exact_match(self):
        assert get_model_profile("qwen2.5-coder:14b") is MODEL_PROFILES["qwen2.5-coder:14b"]

    def test_prefix_match(self):
        assert get_model_profile("qwen2.5-coder:7b-q4_K_M").model_tag == "qwen2.5-coder:7b"

    def test_default(self):
        assert get_model_profile("llama3").model_tag == "_default"

    def test_options(self):
        options = MODEL_PROFILES[DEFAULT_MODEL].as_options()
        assert set(options) == {"temperature", "top_p", "top_k", "repeat_penalty", "num_predict", "num_ctx"}


class TestConfiguration:
    """Environment overrides."""

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("OLLAMA_HOST", "http://gpu-box:11434")
        monkeypatch.setenv("N8N_TRANSPILER_MODEL", "qwen2.5-coder:14b")
        agent = OllamaAgent.from_env()
        assert agent.base_url == "http://gpu-box:11434"
        assert agent.model == "qwen2.5-coder:14b"

    def test_from_env_defaults(self, monkeypatch):
        monkeypatch.delenv("OLLAMA_HOST", raising=False)
        monkeypatch.delenv("N8N_TRANSPILER_MODEL", raising=False)
        agent = OllamaAgent.from_env()
        assert agent.model == DEFAULT_MODEL
        assert agent.base_url == "http://localhost:11434"


class TestOutputCleaning:
    """Chat-model artefacts are stripped."""

    def test_fences_and_semicolon(self):
        assert _clean_model_output("```javascript\nnew Date().getFullYear();\n```") == "new Date().getFullYear()"

    def test_preamble(self):
        assert _clean_model_output("Sure, here you go!\ndata.id") == "data.id"


class TestRequests:
    """Report to request conversion."""

    def test_requests_from_report(self, flagged_report):
        requests = requests_from_report(flagged_report)
        assert len(requests) == 1
        request = requests[0]
        assert request.node_name == "Stamp"
        assert request.json_path == "day"
        assert request.n8n_expression == "$now.toFormat('yyyy-MM-dd')"
        assert "Stamp -> stamp" in request.context_hint


class TestTranslation:
    """Streaming and batch translation against the fake client."""

    def test_translate_expression(self):
        client = FakeClient(replies=[["new Date()", ".toISOString()", ".slice(0, 10)"]])
        agent = OllamaAgent(client=client)
        request = TranslationRequest(json_path="day", n8n_expression="$today.toISODate()", node_name="N")

        result = asyncio.run(agent.translate_expression(request))

        assert result.success
        assert result.js_expression == "new Date().toISOString().slice(0, 10)"
        assert client.calls[0]["stream"] is True
        assert client.calls[0]["model"] == DEFAULT_MODEL
        assert "$today.toISODate()" in client.calls[0]["messages"][1]["content"]

    def test_failure_is_reported_not_raised(self):
        agent = OllamaAgent(client=FakeClient(replies=[ConnectionError("refused")]))
        request = TranslationRequest(json_path="p", n8n_expression="$x", node_name="N")
        result = asyncio.run(agent.translate_expression(request))
        assert not result.success
        assert result.error == "refused"

    def test_empty_reply_is_failure(self):
        agent = OllamaAgent(client=FakeClient(replies=[["```", "\n```"]]))
        request = TranslationRequest(json_path="p", n8n_expression="$x", node_name="N")
        assert not asyncio.run(agent.translate_expression(request)).success

    def test_batch_preserves_order(self):
        agent = OllamaAgent(client=FakeClient(replies=[["a"], ["b"]]))
        requests = [
            TranslationRequest(json_path="p1", n8n_expression="$x", node_name="N"),
            TranslationRequest(json_path="p2", n8n_expression="$y", node_name="N"),
        ]
        results = asyncio.run(agent.translate_batch(requests))
        assert [r.js_expression for r in results] == ["a", "b"]

    def test_check_connection(self):
        ok, message = asyncio.run(OllamaAgent(client=FakeClient()).check_connection())
        assert ok
        assert DEFAULT_MODEL in message

    def test_check_connection_missing_model(self):
        ok, message = asyncio.run(OllamaAgent(client=FakeClient(models=("llama3:8b",))).check_connection())
        assert not ok
        assert "ollama pull" in message


class TestPatching:
    """Rewrites are patched back into the report."""

    def test_review_report_patches_parameters(self, flagged_report):
        agent = OllamaAgent(client=FakeClient(replies=[['new Date().toISOString().split("T")[0]']]))
        results = asyncio.run(agent.review_report(flagged_report))

        assert len(results) == 1
        stamp = flagged_report.result_for("Stamp")
        assert stamp.parameters["day"] == '`Day ${new Date().toISOString().split("T")[0]}`'
        assert stamp.parameters["plain"] == "data.id"
        assert stamp.pending_review == []
        assert not flagged_report.has_pending_review

    def test_failed_translation_left_pending(self, flagged_report):
        request = requests_from_report(flagged_report)[0]
        failed = TranslationResult(request=request, js_expression="", model_used="m", success=False, error="x")
        assert patch_report_with_translations(flagged_report, [failed]) == 0
        assert flagged_report.total_pending_review == 1

    def test_nothing_pending(self, linear_workflow):
        report = WorkflowTranslator().translate(parse_workflow(linear_workflow))
        client = FakeClient()
        assert asyncio.run(OllamaAgent(client=client).review_report(report)) == []
        assert client.calls == []
