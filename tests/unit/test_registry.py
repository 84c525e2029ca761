"""Unit tests for the task-type and workflow registries."""

from __future__ import annotations

import pytest

from a2a_workflows.errors import DefinitionError, RegistryFrozenError, RegistryLookupError
from a2a_workflows.tasks.base import Task
from a2a_workflows.workflow.definition import Workflow
from a2a_workflows.workflow.dsl import WorkflowBuilder
from a2a_workflows.workflow.engine import WorkflowEngine
from a2a_workflows.workflow.registry import (
    TaskRegistry,
    WorkflowRegistry,
    get_task_registry,
    get_workflow_registry,
    normalize_path,
    reset_task_registry,
)


class RegistryAlphaWorkflow(Workflow):
    @classmethod
    def define(cls, w):
        w.task("lookup").process(lambda ctx: None)


class RegistryBetaWorkflow(Workflow):
    name = "beta"

    @classmethod
    def define(cls, w):
        w.task("lookup").process(lambda ctx: None)
        w.task("summarize").process(lambda ctx: None)


class ShoutTask(Task):
    def execute(self, context):
        return {"shout": str(self.resolve("text", context)).upper()}


def test_default_registry_has_builtin_task_types() -> None:
    registry = get_task_registry()

    assert {"direct_handler", "llm", "a2a"} <= set(registry.names())
    assert get_task_registry() is registry

    reset_task_registry()
    assert get_task_registry() is not registry


def test_custom_task_type_is_used_by_engine(task_registry: TaskRegistry) -> None:
    task_registry.register("shout", ShoutTask)
    w = WorkflowBuilder()
    w.task("loud", "shout").set("text", lambda ctx: ctx["word"])

    result = WorkflowEngine(task_registry).execute(w.build(), {"word": "hey"})

    assert result.succeeded
    assert result.output_context["shout"] == "HEY"


def test_register_replaces_and_lookup_reports_key(task_registry: TaskRegistry) -> None:
    task_registry.register("shout", ShoutTask)
    task_registry.register("shout", Task)

    assert task_registry.get("shout") is Task
    with pytest.raises(RegistryLookupError) as excinfo:
        task_registry.get("ghost")
    assert excinfo.value.key == "ghost"


def test_register_rejects_bad_factories(task_registry: TaskRegistry) -> None:
    with pytest.raises(DefinitionError):
        task_registry.register("", ShoutTask)
    with pytest.raises(DefinitionError):
        task_registry.register("x", "not callable")


def test_require_lists_all_missing_types(task_registry: TaskRegistry) -> None:
    task_registry.require(["llm", "a2a"])

    with pytest.raises(RegistryLookupError, match="email, web_search"):
        task_registry.require(["llm", "web_search", "email"])


def test_frozen_task_registry_rejects_registration(task_registry: TaskRegistry) -> None:
    task_registry.freeze()

    assert task_registry.frozen
    with pytest.raises(RegistryFrozenError):
        task_registry.register("late", ShoutTask)


def test_workflow_registry_paths_and_lookups(workflow_registry: WorkflowRegistry) -> None:
    alpha = workflow_registry.register(RegistryAlphaWorkflow)
    beta = workflow_registry.register(RegistryBetaWorkflow, "custom/beta/")

    assert alpha == "/agents/registry_alpha_workflow"
    assert beta == "/custom/beta"
    assert workflow_registry.paths() == [alpha, beta]
    assert "/custom/beta/" in workflow_registry
    assert len(workflow_registry) == 2
    assert workflow_registry.get("custom/beta") is RegistryBetaWorkflow
    assert workflow_registry.find_by_name("beta") == (beta, RegistryBetaWorkflow)
    assert workflow_registry.find_by_name("RegistryAlphaWorkflow") == (alpha, RegistryAlphaWorkflow)
    assert workflow_registry.find_by_skill("summarize") == (beta, RegistryBetaWorkflow)
    assert workflow_registry.find_by_skill("lookup") == (alpha, RegistryAlphaWorkflow)
    assert workflow_registry.find_by_skill("ghost") is None


def test_workflow_registry_rejects_conflicts(workflow_registry: WorkflowRegistry) -> None:
    workflow_registry.register(RegistryAlphaWorkflow, "/shared")
    workflow_registry.register(RegistryAlphaWorkflow, "/shared")

    with pytest.raises(DefinitionError, match="already mounted"):
        workflow_registry.register(RegistryBetaWorkflow, "/shared")
    with pytest.raises(DefinitionError):
        workflow_registry.register(object, "/other")
    with pytest.raises(RegistryLookupError):
        workflow_registry.get("/missing")


def test_frozen_workflow_registry(workflow_registry: WorkflowRegistry) -> None:
    workflow_registry.freeze()

    with pytest.raises(RegistryFrozenError):
        workflow_registry.register(RegistryAlphaWorkflow)


def test_default_workflow_registry_is_a_singleton() -> None:
    assert get_workflow_registry() is get_workflow_registry()


@pytest.mark.parametrize(
    "raw, expected",
    [("agents/echo", "/agents/echo"), ("/agents/echo/", "/agents/echo"), (" /x ", "/x"), ("/", "/")],
)
def test_normalize_path(raw: str, expected: str) -> None:
    assert normalize_path(raw) == expected
