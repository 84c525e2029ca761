"""A2A workflows.

Declare multi-step workflows with a small DSL and serve them as an
Agent-to-Agent (A2A) HTTP agent:

- ``Workflow`` subclasses define ordered tasks over a shared context
- ``A2AServer`` mounts them, publishes an agent card and handles invocations
- ``A2AClient`` and the ``a2a`` task type call other A2A agents
"""

__version__ = "0.1.0"

from a2a_workflows.a2a import A2AClient
from a2a_workflows.core.config import A2AClientConfig, LLMConfig, ServerSettings
from a2a_workflows.server import A2AServer
from a2a_workflows.workflow import (
    ExecutionContext,
    Workflow,
    WorkflowEngine,
    WorkflowResult,
    get_task_registry,
    get_workflow_registry,
)

__all__ = [
    "__version__",
    "A2AClient",
    "A2AClientConfig",
    "A2AServer",
    "ExecutionContext",
    "LLMConfig",
    "ServerSettings",
    "Workflow",
    "WorkflowEngine",
    "WorkflowResult",
    "get_task_registry",
    "get_workflow_registry",
]
