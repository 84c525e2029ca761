"""Built-in task types.

Business task types (``record_find``, ``email``, ``web_search``...) are
registered by the application::

    registry = get_task_registry()
    registry.register("email", MailerTask)
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from a2a_workflows.tasks.a2a import A2ATask
from a2a_workflows.tasks.base import Task, TaskFactory, TaskHandler
from a2a_workflows.tasks.direct import DirectHandlerTask
from a2a_workflows.tasks.llm import LLMTask

if TYPE_CHECKING:
    from a2a_workflows.workflow.registry import TaskRegistry

BUILTIN_TASK_TYPES: dict[str, TaskFactory] = {
    "direct_handler": DirectHandlerTask,
    "llm": LLMTask,
    "a2a": A2ATask,
}


def register_default_tasks(registry: TaskRegistry) -> TaskRegistry:
    """Register the built-in task types on ``registry``."""
    for task_type, factory in BUILTIN_TASK_TYPES.items():
        registry.register(task_type, factory)
    return registry


__all__ = [
    "A2ATask",
    "BUILTIN_TASK_TYPES",
    "DirectHandlerTask",
    "LLMTask",
    "Task",
    "TaskFactory",
    "TaskHandler",
    "register_default_tasks",
]
