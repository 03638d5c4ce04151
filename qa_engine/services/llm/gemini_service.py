"""
Gemini Generative Fallback

Google Gemini implementation of GenerativeFallbackClient.

Provider exceptions are translated into the resilience failure types here:
- DeadlineExceeded -> NetworkError(timeout)
- ResourceExhausted -> ApiError(429, quota)
- any other GoogleAPICallError -> ApiError(its HTTP status)
- a reply with no usable text -> ParsingError

No retrying happens in this module; the resilience layer owns retries.
"""

from typing import Optional

import google.generativeai as genai
import structlog
from google.api_core import exceptions as google_exceptions

from qa_engine.config import GeminiSettings, get_settings
from qa_engine.models.resolution import Completion
from qa_engine.resilience.errors import ApiError, NetworkError, ParsingError
from qa_engine.services.llm.interface import GenerativeFallbackClient


logger = structlog.get_logger(__name__)

MIN_ANSWER_LENGTH = 20


class GeminiFallbackClient(GenerativeFallbackClient):
    """Answers escalated questions with a Gemini model."""

    def __init__(self, settings: Optional[GeminiSettings] = None):
        self._settings = settings or get_settings().gemini
        self._configure_genai()

    def _configure_genai(self):
        """Configure Google Generative AI."""
        genai.configure(api_key=self._settings.api_key)
        self._model = genai.GenerativeModel(
            model_name=self._settings.model_name,
            generation_config={
                "temperature": self._settings.temperature,
                "max_output_tokens": self._settings.max_tokens,
            }
        )

    @property
    def model_name(self) -> str:
        return self._settings.model_name

    async def complete(self, prompt: str) -> Completion:
        try:
            response = await self._model.generate_content_async(prompt)
        except google_exceptions.DeadlineExceeded as e:
            raise NetworkError(f"Gemini request timed out: {e}", timeout=True)
        except google_exceptions.ResourceExhausted as e:
            raise ApiError(f"Gemini quota exhausted: {e}", status=429, quota=True)
        except google_exceptions.GoogleAPICallError as e:
            raise ApiError(f"Gemini request failed: {e}", status=e.code)

        try:
            text = response.text.strip()
        except ValueError as e:
            # .text raises when the reply was blocked or has no parts
            raise ParsingError(f"Gemini reply has no text: {e}")

        if len(text) < MIN_ANSWER_LENGTH:
            raise ParsingError("Gemini reply is too short to be an answer")

        usage = getattr(response, "usage_metadata", None)
        completion = Completion(
            text=text,
            input_tokens=getattr(usage, "prompt_token_count", 0) or 0,
            output_tokens=getattr(usage, "candidates_token_count", 0) or 0,
            model=self._settings.model_name,
        )
        logger.info(
            "gemini_completion",
            model=completion.model,
            input_tokens=completion.input_tokens,
            output_tokens=completion.output_tokens,
        )
        return completion
