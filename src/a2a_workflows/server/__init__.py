"""HTTP surface: FastAPI app, middleware and the server lifecycle."""

from a2a_workflows.server.agent_card import AgentCard, build_agent_card
from a2a_workflows.server.app import create_app
from a2a_workflows.server.server import A2AServer, format_uptime

__all__ = ["A2AServer", "AgentCard", "build_agent_card", "create_app", "format_uptime"]
