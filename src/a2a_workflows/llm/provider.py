"""Abstract base class for LLM providers."""

from abc import ABC, abstractmethod
from typing import Any

ChatMessage = dict[str, str]


class LLMProvider(ABC):
    """Abstract base class for LLM providers used by ``llm`` tasks.

    Implementations accept an optional ``model`` keyword on every call; when it
    is omitted the provider's configured default model is used.
    """

    @abstractmethod
    def generate(
        self,
        prompt: str,
        max_tokens: int | None = None,
        temperature: float | None = None,
        **kwargs: Any,
    ) -> str:
        """Generate text completion from a single prompt.

        Args:
            prompt: The input prompt.
            max_tokens: Maximum tokens to generate.
            temperature: Sampling temperature.
            **kwargs: ``model`` and other provider-specific parameters.

        Returns:
            Generated text completion.
        """

    @abstractmethod
    def chat(
        self,
        messages: list[ChatMessage],
        max_tokens: int | None = None,
        temperature: float | None = None,
        **kwargs: Any,
    ) -> str:
        """Generate chat completion from messages.

        Args:
            messages: List of message dicts with 'role' and 'content'.
            max_tokens: Maximum tokens to generate.
            temperature: Sampling temperature.
            **kwargs: ``model`` and other provider-specific parameters.

        Returns:
            Generated chat response.
        """

    def complete(
        self,
        prompt: str | list[ChatMessage],
        **kwargs: Any,
    ) -> str:
        """Dispatch to :meth:`generate` or :meth:`chat` depending on the prompt shape."""
        if isinstance(prompt, str):
            return self.generate(prompt, **kwargs)
        return self.chat(prompt, **kwargs)

    def count_tokens(self, text: str) -> int:
        """Rough token estimate (about 4 characters per token)."""
        return len(text) // 4

    @property
    def name(self) -> str:
        return type(self).__name__
