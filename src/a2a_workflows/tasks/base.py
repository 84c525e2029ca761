"""Task handler contract.

The task registry maps a type tag to a *factory*: a callable that receives the
compiled :class:`~a2a_workflows.workflow.spec.TaskSpec` and returns an object
with ``execute(context)``. A task class whose constructor takes the spec is
such a factory.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any, Protocol

from a2a_workflows.workflow.context import ExecutionContext
from a2a_workflows.workflow.options import TaskOptions
from a2a_workflows.workflow.spec import TaskSpec


class TaskHandler(Protocol):
    def execute(self, context: ExecutionContext) -> Any: ...


TaskFactory = Callable[[TaskSpec], TaskHandler]


class Task(ABC):
    """Convenience base class for task handlers."""

    def __init__(self, spec: TaskSpec) -> None:
        self.spec = spec

    @property
    def name(self) -> str:
        return self.spec.name

    @property
    def options(self) -> TaskOptions | None:
        return self.spec.options

    def resolve(self, key: str, context: ExecutionContext, default: Any = None) -> Any:
        return self.spec.resolve(key, context, default)

    @abstractmethod
    def execute(self, context: ExecutionContext) -> Any:
        """Run the task and return a mapping of outputs, a single value, or ``None``."""
        raise NotImplementedError
