"""Abstract model provider interface."""

from abc import ABC, abstractmethod

from medico.llm.types import Completion


class LLMProvider(ABC):
    """A model endpoint that turns one prompt into text.

    Providers make exactly one request per call. Retrying is left to the
    capability fallback chain, so SDK-level retries are disabled.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider identifier (e.g., 'anthropic', 'openai')."""
        ...

    @property
    @abstractmethod
    def default_model(self) -> str:
        """Model used when a route does not name one."""
        ...

    @abstractmethod
    async def generate(
        self,
        prompt: str,
        *,
        model: str | None = None,
        system: str | None = None,
        max_tokens: int = 4096,
        temperature: float | None = None,
    ) -> Completion:
        """Send a single user prompt.

        Args:
            prompt: Fully rendered prompt text.
            model: Provider model id (defaults to ``default_model``).
            system: Optional system instructions.
            max_tokens: Output token limit.
            temperature: Sampling temperature. None = use API default (omit for
                reasoning models).

        Raises:
            Whatever the provider SDK raises; the gateway classifies it.
        """
        ...
