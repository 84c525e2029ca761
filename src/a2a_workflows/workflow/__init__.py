"""Workflow definition and execution."""

from a2a_workflows.workflow.context import ExecutionContext
from a2a_workflows.workflow.definition import Workflow
from a2a_workflows.workflow.dsl import TaskConfigurator, TaskGroupBuilder, WorkflowBuilder
from a2a_workflows.workflow.engine import ExecutionListener, WorkflowEngine
from a2a_workflows.workflow.registry import (
    TaskRegistry,
    WorkflowRegistry,
    get_task_registry,
    get_workflow_registry,
    reset_task_registry,
    reset_workflow_registry,
)
from a2a_workflows.workflow.result import TaskResult, WorkflowResult
from a2a_workflows.workflow.spec import RetryPolicy, TaskSpec, WorkflowDefinition

__all__ = [
    "ExecutionContext",
    "ExecutionListener",
    "RetryPolicy",
    "TaskConfigurator",
    "TaskGroupBuilder",
    "TaskRegistry",
    "TaskResult",
    "TaskSpec",
    "Workflow",
    "WorkflowBuilder",
    "WorkflowDefinition",
    "WorkflowEngine",
    "WorkflowRegistry",
    "WorkflowResult",
    "get_task_registry",
    "get_workflow_registry",
    "reset_task_registry",
    "reset_workflow_registry",
]
