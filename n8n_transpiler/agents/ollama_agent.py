"""
ollama_agent.py
===============
Async review agent for n8n expressions the rule table could not translate.

Responsibilities:
    - Turn the `pending_review` entries of a `TranslationReport` into
      `TranslationRequest`s
    - Dispatch them to a locally-running Ollama model (Qwen2.5-Coder by
      default) and stream the response back token by token
    - Clean chat-model output artefacts before returning
    - Patch the JavaScript rewrites back into the report's translated
      parameters and conditions

Nothing in `n8n_transpiler.core` depends on this module; a conversion that
never calls the agent simply leaves flagged expressions passed through.
"""

from __future__ import annotations

import asyncio
import logging
import os
import re
from dataclasses import dataclass
from typing import AsyncIterator

from ..core.transpiler import TranslationReport

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Model profiles
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ModelProfile:
    """
    Model-specific Ollama inference parameters.

    Expression rewrites are short and must be exact, so every profile keeps
    temperature near zero and a small output budget.
    """

    model_tag: str
    temperature: float
    top_p: float
    top_k: int
    repeat_penalty: float
    num_predict: int          # max output tokens
    num_ctx: int              # context window (tokens)
    description: str = ""

    def as_options(self) -> dict:
        return {
            "temperature":    self.temperature,
            "top_p":          self.top_p,
            "top_k":          self.top_k,
            "repeat_penalty": self.repeat_penalty,
            "num_predict":    self.num_predict,
            "num_ctx":        self.num_ctx,
        }


MODEL_PROFILES: dict[str, ModelProfile] = {
    "qwen2.5-coder:7b": ModelProfile(
        model_tag="qwen2.5-coder:7b",
        temperature=0.05,
        top_p=0.9,
        top_k=40,
        repeat_penalty=1.1,
        num_predict=256,
        num_ctx=8192,
        description="Qwen2.5-Coder 7B, fits in 8 GB VRAM",
    ),
    "qwen2.5-coder:14b": ModelProfile(
        model_tag="qwen2.5-coder:14b",
        temperature=0.05,
        top_p=0.9,
        top_k=40,
        repeat_penalty=1.05,
        num_predict=384,
        num_ctx=16384,
        description="Qwen2.5-Coder 14B, needs ~16 GB VRAM",
    ),
    "_default": ModelProfile(
        model_tag="_default",
        temperature=0.1,
        top_p=0.9,
        top_k=40,
        repeat_penalty=1.1,
        num_predict=256,
        num_ctx=4096,
        description="Generic fallback profile",
    ),
}


def get_model_profile(model_tag: str) -> ModelProfile:
    """
    Resolve the best matching ModelProfile for a given model tag.
    Falls back to _default if no exact or prefix match is found.
    """
    if model_tag in MODEL_PROFILES:
        return MODEL_PROFILES[model_tag]
    # "qwen2.5-coder:7b-q4_K_M" -> "qwen2.5-coder:7b"
    for key in MODEL_PROFILES:
        if key != "_default" and model_tag.startswith(key):
            logger.debug("Model '%s' matched profile '%s' by prefix.", model_tag, key)
            return MODEL_PROFILES[key]
    logger.warning("No profile found for model '%s'. Using _default.", model_tag)
    return MODEL_PROFILES["_default"]


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

DEFAULT_MODEL   = "qwen2.5-coder:7b"
OLLAMA_BASE_URL = "http://localhost:11434"

HOST_ENV_VAR  = "OLLAMA_HOST"
MODEL_ENV_VAR = "N8N_TRANSPILER_MODEL"

_SYSTEM_PROMPT = """\
You are a specialist n8n to Inngest migration engineer.
Your ONLY task: rewrite one n8n expression as a single JavaScript expression.

OUTPUT RULES:
1. Output ONLY the JavaScript expression.
2. Do NOT include any explanation, commentary or prose.
3. Do NOT wrap output in markdown code fences.
4. Do NOT output statements, declarations or imports.

NAME MAPPING:
- $json.<path>                 -> data.<path>
- $input.item.json.<path>      -> data.<path>
- $input.all()                 -> items
- $('Node Name').item.json.x   -> <node_variable>.x   (variable given below)
- $node["Node Name"].json.x    -> <node_variable>.x
- $env.KEY                     -> process.env.KEY
- $now                         -> new Date()
- $today                       -> new Date(new Date().toISOString().split("T")[0])
- $execution.id                -> event.data.executionId
- $runIndex / $itemIndex       -> index / itemIndex

LUXON / N8N HELPERS:
- DateTime.now()               -> new Date()
- .toFormat('yyyy-MM-dd')      -> .toISOString().split("T")[0]
- .plus({ days: n })           -> new Date(d.getTime() + n * 86400000)
- $if(c, a, b)                 -> (c ? a : b)
- $ifEmpty(v, d)               -> (v || d)
- .isEmpty()                   -> (x.length === 0)
- .extractDomain()             -> new URL(x).hostname
"""


# ---------------------------------------------------------------------------
# Data containers
# ---------------------------------------------------------------------------


@dataclass
class TranslationRequest:
    """A single flagged n8n expression queued for LLM translation."""

    json_path: str          # Parameter path, or "conditions".
    n8n_expression: str     # The `{{ … }}` body that was passed through.
    node_name: str
    context_hint: str = ""  # Known node -> variable names, for the prompt.


@dataclass
class TranslationResult:
    """Outcome of a single LLM translation call."""

    request: TranslationRequest
    js_expression: str
    model_used: str
    success: bool
    error: str | None = None


def requests_from_report(report: TranslationReport) -> list[TranslationRequest]:
    """One request per `pending_review` entry, in execution order."""
    hint = ", ".join(f"{name} -> {var}" for name, var in report.variable_map.items())
    return [
        TranslationRequest(
            json_path=path,
            n8n_expression=inner,
            node_name=result.node_name,
            context_hint=hint,
        )
        for result in report.node_results
        for path, inner in result.pending_review
    ]


# ---------------------------------------------------------------------------
# Output cleaning
# ---------------------------------------------------------------------------

_ARTEFACT_PATTERNS: list[re.Pattern] = [
    re.compile(r"<\|im_(start|end)\|>(\w+)?\n?"),   # ChatML token leakage
    re.compile(r"^(Sure|Certainly|Of course)[,!].*\n", re.MULTILINE),
    re.compile(r"^Here('s| is) the (translation|equivalent|expression)[:\s]*\n", re.MULTILINE | re.IGNORECASE),
    re.compile(r"^```(?:javascript|js|typescript|ts)?\n?", re.MULTILINE),
    re.compile(r"\n?```$", re.MULTILINE),
    re.compile(r"^Note:.*$", re.MULTILINE | re.IGNORECASE),
]


def _clean_model_output(raw: str) -> str:
    """Strip chat-model artefacts and a trailing semicolon from raw output."""
    cleaned = raw
    for pattern in _ARTEFACT_PATTERNS:
        cleaned = pattern.sub("", cleaned)
    return cleaned.strip().rstrip(";").strip()


# ---------------------------------------------------------------------------
# Ollama client wrapper
# ---------------------------------------------------------------------------


class OllamaAgent:
    """
    Async wrapper around the Ollama Python SDK.

    Parameters
    ----------
    model:
        Ollama model tag. Defaults to qwen2.5-coder:7b.
    base_url:
        Ollama REST API base URL.
    timeout:
        Per-request timeout in seconds.
    client:
        Pre-built client; mostly useful for tests.
    """

    def __init__(
        self,
        model: str = DEFAULT_MODEL,
        base_url: str = OLLAMA_BASE_URL,
        timeout: int = 120,
        client: "ollama.AsyncClient | None" = None,  # type: ignore[name-defined]
    ) -> None:
        self.model = model
        self.base_url = base_url
        self.timeout = timeout
        self._profile: ModelProfile = get_model_profile(model)
        self._client = client
        logger.info(
            "OllamaAgent initialised: model=%s profile=%s",
            model,
            self._profile.description,
        )

    @classmethod
    def from_env(cls, **kwargs) -> "OllamaAgent":
        """Build an agent honouring OLLAMA_HOST and N8N_TRANSPILER_MODEL."""
        kwargs.setdefault("model", os.environ.get(MODEL_ENV_VAR, DEFAULT_MODEL))
        kwargs.setdefault("base_url", os.environ.get(HOST_ENV_VAR, OLLAMA_BASE_URL))
        return cls(**kwargs)

    # ------------------------------------------------------------------
    # Client lifecycle
    # ------------------------------------------------------------------

    def _get_client(self) -> "ollama.AsyncClient":  # type: ignore[name-defined]
        if self._client is None:
            try:
                import ollama  # noqa: PLC0415
            except ImportError as exc:
                raise RuntimeError(
                    "The 'ollama' package is not installed. Run: pip install ollama"
                ) from exc
            self._client = ollama.AsyncClient(host=self.base_url, timeout=self.timeout)
        return self._client

    # ------------------------------------------------------------------
    # Connection health check
    # ------------------------------------------------------------------

    async def check_connection(self) -> tuple[bool, str]:
        """
        Verify Ollama is reachable and the target model is pulled locally.

        Returns
        -------
        (ok, human_readable_message)
        """
        try:
            client = self._get_client()
            models_response = await client.list()
            available = [m.model for m in models_response.models]
        except Exception as exc:
            logger.error("Ollama connection check failed: %s", exc)
            return False, (
                f"Cannot reach Ollama at {self.base_url}.\n"
                "Ensure Ollama is running:  ollama serve"
            )

        logger.info("Ollama reachable. Available models: %s", available)
        model_found = self.model in available or any(
            m.startswith(self.model) for m in available
        )
        if not model_found:
            return False, (
                f"Model '{self.model}' is not pulled.\n"
                f"Run:  ollama pull {self.model}\n\n"
                f"Available: {', '.join(available) or 'none'}"
            )
        return True, f"Connected: '{self.model}' ready. ({self._profile.description})"

    # ------------------------------------------------------------------
    # Streaming translation
    # ------------------------------------------------------------------

    async def translate_expression_stream(
        self, request: TranslationRequest
    ) -> AsyncIterator[str]:
        """
        Stream the LLM translation for a single n8n expression, token by token.

        Yields
        ------
        str
            Raw token strings as they arrive from Ollama.
        """
        logger.info(
            "Translating [%s] path='%s' expr='%s'",
            request.node_name,
            request.json_path,
            request.n8n_expression[:80],
        )
        client = self._get_client()
        async for chunk in await client.chat(
            model=self.model,
            messages=[
                {"role": "system", "content": _SYSTEM_PROMPT},
                {"role": "user",   "content": self._build_user_prompt(request)},
            ],
            stream=True,
            options=self._profile.as_options(),
        ):
            token: str = chunk.message.content or ""
            if token:
                yield token

    async def translate_expression(self, request: TranslationRequest) -> TranslationResult:
        """
        Collect the full streaming response before returning.
        Failures are reported on the result rather than raised.
        """
        tokens: list[str] = []
        try:
            async for token in self.translate_expression_stream(request):
                tokens.append(token)
        except Exception as exc:
            logger.error(
                "Ollama streaming failed for '%s': %s",
                request.n8n_expression[:60],
                exc,
                exc_info=True,
            )
            return TranslationResult(
                request=request,
                js_expression="",
                model_used=self.model,
                success=False,
                error=str(exc),
            )

        cleaned = _clean_model_output("".join(tokens))
        if not cleaned:
            return TranslationResult(
                request=request,
                js_expression="",
                model_used=self.model,
                success=False,
                error="Model returned an empty response.",
            )
        return TranslationResult(
            request=request,
            js_expression=cleaned,
            model_used=self.model,
            success=True,
        )

    async def translate_batch(
        self,
        requests: list[TranslationRequest],
        max_concurrency: int = 1,
    ) -> list[TranslationResult]:
        """
        Translate multiple expressions with semaphore-bounded concurrency.

        Keep max_concurrency=1 for the 7B model on a single consumer GPU.
        """
        semaphore = asyncio.Semaphore(max_concurrency)

        async def _guarded(req: TranslationRequest) -> TranslationResult:
            async with semaphore:
                return await self.translate_expression(req)

        results = await asyncio.gather(*(_guarded(req) for req in requests), return_exceptions=True)

        typed: list[TranslationResult] = []
        for req, res in zip(requests, results):
            if isinstance(res, Exception):
                logger.error("Batch task raised for '%s': %s", req.node_name, res)
                typed.append(TranslationResult(
                    request=req,
                    js_expression="",
                    model_used=self.model,
                    success=False,
                    error=str(res),
                ))
            else:
                typed.append(res)
        return typed

    async def review_report(
        self, report: TranslationReport, max_concurrency: int = 1
    ) -> list[TranslationResult]:
        """Translate every pending expression of *report* and patch it in place."""
        requests = requests_from_report(report)
        if not requests:
            logger.info("Nothing pending review in '%s'.", report.workflow_name)
            return []
        results = await self.translate_batch(requests, max_concurrency=max_concurrency)
        patch_report_with_translations(report, results)
        return results

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _build_user_prompt(self, request: TranslationRequest) -> str:
        lines = [
            f"Node       : {request.node_name}",
            f"Path       : {request.json_path}",
            f"Expression : {request.n8n_expression}",
        ]
        if request.context_hint:
            lines.append(f"Variables  : {request.context_hint}")
        lines.append(
            "\nOutput the JavaScript equivalent of the n8n expression above. "
            "No explanation. Code only."
        )
        return "\n".join(lines)


# ---------------------------------------------------------------------------
# Report patching
# ---------------------------------------------------------------------------


def _patch_text(text: str, original: str, replacement: str) -> tuple[str, int]:
    return re.subn(re.escape(original), lambda _m: replacement, text, count=1)


def patch_report_with_translations(
    report: TranslationReport,
    translations: list[TranslationResult],
) -> int:
    """
    Substitute passed-through expressions in *report* with their LLM
    rewrites. Patched entries are removed from `pending_review`.

    Returns the number of expressions patched. Failed translations and
    expressions whose substitution point cannot be found are left as they
    are.
    """
    patched = 0
    for result in translations:
        if not result.success:
            continue
        request = result.request
        node_result = report.result_for(request.node_name)
        if node_result is None:
            logger.warning("No translated node named '%s'.", request.node_name)
            continue

        if request.json_path == "conditions":
            targets = node_result.conditions
            keys = list(targets)
        else:
            targets = node_result.parameters
            keys = [request.json_path] if request.json_path in targets else []

        n_subs = 0
        for key in keys:
            targets[key], n = _patch_text(targets[key], request.n8n_expression, result.js_expression)
            n_subs += n

        entry = (request.json_path, request.n8n_expression)
        if n_subs:
            patched += 1
            if entry in node_result.pending_review:
                node_result.pending_review.remove(entry)
            logger.debug(
                "Patched '%s' -> '%s'", request.n8n_expression[:60], result.js_expression[:60]
            )
        else:
            logger.warning("Could not find substitution point for: %s", request.n8n_expression[:60])
    return patched
