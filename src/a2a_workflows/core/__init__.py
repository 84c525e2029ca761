"""Core package initialization."""

from a2a_workflows.core.config import A2AClientConfig, LLMConfig, ServerSettings
from a2a_workflows.core.logging import configure_logging

__all__ = [
    "A2AClientConfig",
    "LLMConfig",
    "ServerSettings",
    "configure_logging",
]
