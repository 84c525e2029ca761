"""Exceptions raised by a2a-workflows.

All project-specific exceptions live in this module so handlers can map them
to HTTP responses without importing half the package:

    from a2a_workflows.errors import RegistryLookupError

Every class carries a stable ``code`` that is exposed in JSON error bodies.
"""

from __future__ import annotations

__all__ = [
    "A2AError",
    "DefinitionError",
    "RegistryLookupError",
    "RegistryFrozenError",
    "TaskExecutionError",
    "TaskTimeoutError",
    "WorkflowTimeoutError",
    "ServerConfigurationError",
    "InvocationError",
    "A2AClientError",
    "AgentUnavailableError",
    "SkillNotFoundError",
]


class A2AError(Exception):
    """Base class for every error raised by this package."""

    code = "internal_error"


class DefinitionError(A2AError, ValueError):
    """Raised when a workflow definition is malformed (DSL misuse)."""

    code = "definition_error"


class RegistryLookupError(A2AError, LookupError):
    """Raised when a task type or workflow route is not registered."""

    code = "not_found"

    def __init__(self, message: str, *, key: str | None = None) -> None:
        super().__init__(message)
        self.key = key

    def __str__(self) -> str:
        # LookupError's KeyError-style repr quoting is not wanted here.
        return str(self.args[0]) if self.args else ""


class RegistryFrozenError(A2AError, RuntimeError):
    """Raised when a registry is mutated after the server started."""

    code = "registry_frozen"


class TaskExecutionError(A2AError, RuntimeError):
    """Raised when a task implementation fails."""

    code = "task_execution_error"

    def __init__(self, message: str, *, task: str | None = None) -> None:
        super().__init__(message)
        self.task = task


class TaskTimeoutError(TaskExecutionError):
    """Raised when a single task attempt exceeds its timeout."""

    code = "task_timeout"


class WorkflowTimeoutError(TaskExecutionError):
    """Raised when the whole run exceeds the workflow deadline."""

    code = "workflow_timeout"


class ServerConfigurationError(A2AError):
    """Raised at startup for bad TLS material, bind address or task manifest."""

    code = "server_configuration_error"


class InvocationError(A2AError, ValueError):
    """Raised when an invoke request body cannot be understood."""

    code = "bad_request"


class A2AClientError(A2AError):
    """Raised by the outbound A2A client."""

    code = "a2a_client_error"


class AgentUnavailableError(A2AClientError):
    """Remote agent could not be reached (network error, 5xx, timeout)."""

    code = "agent_unavailable"


class SkillNotFoundError(A2AClientError):
    """Remote agent does not advertise the requested skill."""

    code = "skill_not_found"
