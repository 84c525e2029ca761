"""Task that invokes a skill on a remote A2A agent."""

from __future__ import annotations

import logging
import os
import time
import uuid
from collections.abc import Callable, Mapping
from datetime import UTC, datetime
from typing import Any

from a2a_workflows.a2a.client import A2AClient
from a2a_workflows.core.config import A2AClientConfig
from a2a_workflows.errors import A2AError, AgentUnavailableError, SkillNotFoundError, TaskExecutionError
from a2a_workflows.tasks.base import Task
from a2a_workflows.workflow.context import ExecutionContext
from a2a_workflows.workflow.spec import TaskSpec

logger = logging.getLogger(__name__)

# Request metadata the server adds to every invocation context.
INTERNAL_KEY_PREFIX = "_a2a_"
DEFAULT_RESULT_KEY = "a2a_result"
DEFAULT_ERROR_KEY = "a2a_error"


def resolve_auth(auth: Any) -> str | Mapping[str, Any] | None:
    """Turn the task's ``auth`` option into what :class:`A2AClient` accepts."""
    if auth is None or isinstance(auth, str):
        return auth
    if isinstance(auth, Mapping):
        if auth.get("type") == "env":
            return os.environ.get(str(auth.get("key", "")))
        return auth
    return str(auth)


class A2ATask(Task):
    """Calls ``skill`` on ``agent_url`` with the task's input context.

    The remote output is returned as the task result: merged into the context
    when it is a mapping and no outputs are declared, otherwise stored under
    ``a2a_result``. With ``fail_on_error=False`` failures are stored under
    ``a2a_error`` (or the declared output) and the run continues.
    """

    def __init__(
        self,
        spec: TaskSpec,
        client_factory: Callable[..., A2AClient] = A2AClient,
        config: A2AClientConfig | None = None,
    ) -> None:
        super().__init__(spec)
        self._client_factory = client_factory
        self._config = config

    def _client(self, context: ExecutionContext) -> A2AClient:
        cfg = self.spec.configuration
        return self._client_factory(
            cfg["agent_url"].rstrip("/"),
            auth=resolve_auth(self.resolve("auth", context)),
            timeout=cfg.get("timeout"),
            max_retries=cfg.get("max_retries"),
            cache_ttl=cfg.get("cache_ttl"),
            config=self._config,
        )

    def parameters(self, context: ExecutionContext) -> dict[str, Any]:
        return {
            k: v
            for k, v in context.items()
            if not k.startswith(INTERNAL_KEY_PREFIX) and v is not None
        }

    def execute(self, context: ExecutionContext) -> Any:
        cfg = self.spec.configuration
        agent_url = cfg["agent_url"]
        skill = cfg["skill"]
        started = time.monotonic()

        logger.info(
            "Starting A2A task",
            extra={"task": self.name, "agent_url": agent_url, "skill": skill, "stream": bool(cfg.get("stream"))},
        )

        try:
            with self._client(context) as client:
                if client.health_check() is None:
                    raise AgentUnavailableError(f"Agent at {agent_url} is not reachable")
                if not client.supports_skill(skill):
                    available = ", ".join(client.list_capabilities()) or "none"
                    raise SkillNotFoundError(
                        f"Skill '{skill}' not available. Available skills: {available}"
                    )
                result = client.invoke_skill(
                    skill,
                    self.parameters(context),
                    request_id=str(uuid.uuid4()),
                    stream=bool(cfg.get("stream")),
                    webhook_url=cfg.get("webhook_url"),
                )
        except A2AError as e:
            return self._failed(str(e), e)

        output = result.get("output", result.get("result", result))
        logger.info(
            "Completed A2A task",
            extra={"task": self.name, "duration_ms": round((time.monotonic() - started) * 1000, 2)},
        )
        if self.spec.outputs or isinstance(output, Mapping):
            return output
        return {DEFAULT_RESULT_KEY: output}

    def _failed(self, message: str, error: Exception) -> Any:
        logger.error(
            "Failed A2A task",
            extra={
                "task": self.name,
                "error": message,
                "error_class": type(error).__name__,
                "agent_url": self.spec.configuration.get("agent_url"),
                "skill": self.spec.configuration.get("skill"),
            },
        )
        if self.spec.configuration.get("fail_on_error", True):
            raise TaskExecutionError(message, task=self.name) from error

        logger.warning("A2A task failed but continuing: %s", message, extra={"task": self.name})
        failure = {"error": message, "failed": True, "timestamp": datetime.now(UTC).isoformat()}
        if self.spec.outputs:
            return failure
        return {DEFAULT_ERROR_KEY: failure}
