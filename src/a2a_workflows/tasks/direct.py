"""Inline callback task."""

from __future__ import annotations

from typing import Any

from a2a_workflows.errors import TaskExecutionError
from a2a_workflows.tasks.base import Task
from a2a_workflows.workflow.context import ExecutionContext


class DirectHandlerTask(Task):
    """Runs the ``handler`` callable given in the DSL with the context."""

    def execute(self, context: ExecutionContext) -> Any:
        handler = self.spec.configuration.get("handler")
        if handler is None:
            raise TaskExecutionError(f"Task '{self.name}' has no handler", task=self.name)
        return handler(context)
