"""
Generative fallback clients.

The Gemini adapter lives in `gemini_service` and is imported on demand,
so a deployment without a model never loads the Gemini SDK.
"""

from qa_engine.services.llm.interface import GenerativeFallbackClient
from qa_engine.services.llm.prompts import SYSTEM_PROMPT, build_prompt, estimate_confidence

__all__ = [
    "GenerativeFallbackClient",
    "SYSTEM_PROMPT",
    "build_prompt",
    "estimate_confidence",
]
