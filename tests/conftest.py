"""Test configuration and fixtures."""

from __future__ import annotations

from collections.abc import Callable, Iterator
from typing import Any

import pytest
from fastapi.testclient import TestClient

from a2a_workflows.a2a.client import AgentCardCache
from a2a_workflows.core.config import A2AClientConfig, LLMConfig, ServerSettings
from a2a_workflows.server.server import A2AServer
from a2a_workflows.tasks import register_default_tasks
from a2a_workflows.workflow.engine import WorkflowEngine
from a2a_workflows.workflow.registry import (
    TaskRegistry,
    WorkflowRegistry,
    reset_task_registry,
    reset_workflow_registry,
)


@pytest.fixture(autouse=True)
def _isolated_registries() -> Iterator[None]:
    """Never leak process-wide registries between tests."""
    reset_task_registry()
    reset_workflow_registry()
    yield
    reset_task_registry()
    reset_workflow_registry()


@pytest.fixture
def task_registry() -> TaskRegistry:
    """Provide a task registry with the built-in task types."""
    return register_default_tasks(TaskRegistry())


@pytest.fixture
def workflow_registry() -> WorkflowRegistry:
    return WorkflowRegistry()


@pytest.fixture
def engine(task_registry: TaskRegistry) -> WorkflowEngine:
    """Provide an engine that never sleeps between retries."""
    return WorkflowEngine(task_registry, sleep=lambda _s: None)


@pytest.fixture
def server_settings() -> ServerSettings:
    """Provide server settings that ignore the environment's ``.env``."""
    return ServerSettings(
        _env_file=None,
        host="127.0.0.1",
        port=8080,
        auth_token="",
        agent_name="Test Agent",
        agent_description="Agent under test",
        log_json=False,
    )


@pytest.fixture
def llm_config() -> LLMConfig:
    """Provide a test LLM configuration."""
    return LLMConfig(
        _env_file=None,
        provider="openai",
        openai_api_key="test-key",
        openai_model="gpt-4",
    )


@pytest.fixture
def client_config() -> A2AClientConfig:
    return A2AClientConfig(_env_file=None, max_retries=2, base_delay_seconds=0.0)


@pytest.fixture
def card_cache() -> AgentCardCache:
    return AgentCardCache()


@pytest.fixture
def make_server(
    server_settings: ServerSettings,
    task_registry: TaskRegistry,
    workflow_registry: WorkflowRegistry,
) -> Callable[..., A2AServer]:
    """Build an :class:`A2AServer` on isolated registries."""

    def factory(*workflows: Any, **overrides: Any) -> A2AServer:
        server = A2AServer(
            settings=server_settings,
            task_registry=task_registry,
            workflow_registry=workflow_registry,
            **overrides,
        )
        for workflow in workflows:
            server.register_workflow(workflow)
        return server

    return factory


@pytest.fixture
def make_client(make_server: Callable[..., A2AServer]) -> Callable[..., TestClient]:
    """Build a ``TestClient`` for a server mounting ``workflows``."""

    def factory(*workflows: Any, **overrides: Any) -> TestClient:
        return TestClient(make_server(*workflows, **overrides).app)

    return factory
