"""agents — optional LLM review of expressions the rule table could not translate."""
from .ollama_agent import (
    OllamaAgent,
    TranslationRequest,
    TranslationResult,
    patch_report_with_translations,
    requests_from_report,
)

__all__ = [
    "OllamaAgent", "TranslationRequest", "TranslationResult",
    "patch_report_with_translations", "requests_from_report",
]
