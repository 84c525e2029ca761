"""LLM package initialization."""

from a2a_workflows.llm.factory import LLMFactory
from a2a_workflows.llm.provider import ChatMessage, LLMProvider

__all__ = [
    "ChatMessage",
    "LLMFactory",
    "LLMProvider",
]
