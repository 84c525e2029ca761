"""Outbound A2A client."""

from a2a_workflows.a2a.client import A2AClient, AgentCardCache, RemoteAgentCard, SSEEvent, parse_sse
from a2a_workflows.a2a.retry import RetryManager

__all__ = [
    "A2AClient",
    "AgentCardCache",
    "RemoteAgentCard",
    "RetryManager",
    "SSEEvent",
    "parse_sse",
]
