"""Local LLaMA provider (optional ``llama`` extra)."""

import logging
from typing import Any

from a2a_workflows.core.config import LLMConfig
from a2a_workflows.llm.provider import ChatMessage, LLMProvider

logger = logging.getLogger(__name__)

DEFAULT_MAX_TOKENS = 512


class LLaMAProvider(LLMProvider):
    """Local model served through llama-cpp-python.

    Requires the optional dependency:
        pip install "a2a-workflows[llama]"
    """

    def __init__(self, config: LLMConfig) -> None:
        """Load the model.

        Args:
            config: LLM configuration.

        Raises:
            ValueError: If model path is not provided.
            ImportError: If llama-cpp-python is not installed.
        """
        if not config.llama_model_path:
            raise ValueError("LLaMA model path is required (set A2A_LLM_LLAMA_MODEL_PATH)")

        try:
            from llama_cpp import Llama
        except ImportError as e:
            raise ImportError(
                "llama-cpp-python is required for the llama provider. "
                'Install it with: pip install "a2a-workflows[llama]"'
            ) from e

        self.config = config

        logger.info("Loading LLaMA model", extra={"model_path": str(config.llama_model_path)})

        self.llm = Llama(
            model_path=str(config.llama_model_path),
            n_ctx=config.llama_n_ctx,
            n_threads=config.llama_n_threads,
            verbose=False,
        )

    def generate(
        self,
        prompt: str,
        max_tokens: int | None = None,
        temperature: float | None = None,
        **kwargs: Any,
    ) -> str:
        # The loaded model file is the model; a per-call name has no meaning here.
        kwargs.pop("model", None)
        result = self.llm(
            prompt,
            max_tokens=max_tokens or DEFAULT_MAX_TOKENS,
            temperature=temperature if temperature is not None else 0.7,
            **kwargs,
        )
        return result["choices"][0]["text"]

    def chat(
        self,
        messages: list[ChatMessage],
        max_tokens: int | None = None,
        temperature: float | None = None,
        **kwargs: Any,
    ) -> str:
        kwargs.pop("model", None)
        result = self.llm.create_chat_completion(
            messages=messages,
            max_tokens=max_tokens or DEFAULT_MAX_TOKENS,
            temperature=temperature if temperature is not None else 0.7,
            **kwargs,
        )
        return result["choices"][0]["message"]["content"] or ""

    def count_tokens(self, text: str) -> int:
        return len(self.llm.tokenize(text.encode("utf-8")))
