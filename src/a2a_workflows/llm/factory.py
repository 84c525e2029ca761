"""Factory for creating LLM providers."""

import logging

from a2a_workflows.core.config import LLMConfig
from a2a_workflows.llm.provider import LLMProvider

logger = logging.getLogger(__name__)


class LLMFactory:
    """Factory for creating LLM provider instances."""

    @staticmethod
    def create(config: LLMConfig | None = None, provider: str | None = None) -> LLMProvider:
        """Create an LLM provider.

        Args:
            config: LLM configuration (loaded from the environment when omitted).
            provider: Overrides ``config.provider`` (per-task ``provider`` option).

        Returns:
            Configured LLM provider instance.

        Raises:
            ValueError: If provider type is not supported.
        """
        config = config or LLMConfig()
        name = provider or config.provider
        logger.info(f"Creating LLM provider: {name}")

        if name == "openai":
            from a2a_workflows.llm.openai_provider import OpenAIProvider

            return OpenAIProvider(config)
        if name == "llama":
            from a2a_workflows.llm.llama_provider import LLaMAProvider

            return LLaMAProvider(config)
        raise ValueError(f"Unsupported LLM provider: {name}")
