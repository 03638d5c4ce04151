"""
Generative Fallback Interface

DESIGN DECISION: The engine talks to the generative model through this
interface only. This allows:
1. Swapping model providers without touching the resolver
2. Scripted fakes in tests
3. Running with no model at all (every escalation then degrades)

Implementations raise the resilience failure types (NetworkError,
ApiError, ParsingError) at this boundary so that classification never
has to inspect provider-specific exceptions.
"""

from abc import ABC, abstractmethod

from qa_engine.models.resolution import Completion


class GenerativeFallbackClient(ABC):
    """Produces an answer for a question the FAQ could not cover."""

    @property
    def model_name(self) -> str:
        return type(self).__name__

    @abstractmethod
    async def complete(self, prompt: str) -> Completion:
        """
        Generate a completion for prompt.

        Raises:
            NetworkError: If the provider is unreachable or times out
            ApiError: If the provider answers with an error status
            ParsingError: If the provider's reply has no usable text
        """
        pass
