"""OpenAI chat-completions provider."""

import logging
from typing import Any

from openai import OpenAI

from a2a_workflows.core.config import LLMConfig
from a2a_workflows.llm.provider import ChatMessage, LLMProvider

logger = logging.getLogger(__name__)


class OpenAIProvider(LLMProvider):
    """OpenAI API provider.

    A single-prompt ``generate`` call is sent as one user message, so both
    entry points go through the chat-completions endpoint.
    """

    def __init__(self, config: LLMConfig, client: OpenAI | None = None) -> None:
        """Initialize the OpenAI provider.

        Args:
            config: LLM configuration.
            client: Pre-built OpenAI client (tests inject a fake).

        Raises:
            ValueError: If no API key is configured and no client is given.
        """
        if client is None and not config.openai_api_key:
            raise ValueError("OpenAI API key is required (set A2A_LLM_OPENAI_API_KEY)")

        self.config = config
        self.client = client or OpenAI(api_key=config.openai_api_key)
        self.model = config.openai_model
        self.temperature = config.openai_temperature

        logger.info("OpenAI provider initialized", extra={"model": self.model})

    def generate(
        self,
        prompt: str,
        max_tokens: int | None = None,
        temperature: float | None = None,
        **kwargs: Any,
    ) -> str:
        return self.chat(
            [{"role": "user", "content": prompt}],
            max_tokens=max_tokens,
            temperature=temperature,
            **kwargs,
        )

    def chat(
        self,
        messages: list[ChatMessage],
        max_tokens: int | None = None,
        temperature: float | None = None,
        **kwargs: Any,
    ) -> str:
        model = kwargs.pop("model", None) or self.model
        temp = temperature if temperature is not None else self.temperature

        logger.debug(f"Requesting chat completion from {model} with {len(messages)} messages")

        request: dict[str, Any] = {"model": model, "messages": messages, "temperature": temp}
        if max_tokens is not None:
            request["max_tokens"] = max_tokens
        request.update(kwargs)

        response = self.client.chat.completions.create(**request)

        content = response.choices[0].message.content or ""
        logger.debug(f"Generated {len(content)} characters")

        return content
