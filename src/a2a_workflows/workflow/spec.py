"""Immutable workflow specifications produced by the DSL builder.

A :class:`WorkflowDefinition` is compiled once, when the workflow class is
declared, and is read-only afterwards. Callables stored in a spec (conditions,
handlers, hooks, deferred configuration values) always take the
:class:`~a2a_workflows.workflow.context.ExecutionContext` as their sole
argument, except error handlers which also receive the exception.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from a2a_workflows.workflow.context import ExecutionContext
    from a2a_workflows.workflow.options import TaskOptions

Condition = Callable[["ExecutionContext"], bool]
Hook = Callable[["ExecutionContext"], "Mapping[str, Any] | None"]
ErrorHandler = Callable[[BaseException, "ExecutionContext"], "Mapping[str, Any] | None"]

GLOBAL_ERROR_HANDLER = "global"
PARALLEL_TASK_TYPE = "parallel"


def _empty_mapping() -> Mapping[str, Any]:
    return MappingProxyType({})


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Workflow-wide retry defaults for tasks that do not set their own."""

    max_retries: int = 0
    delay: float = 1.0


@dataclass(frozen=True, slots=True)
class TaskSpec:
    """One declarative workflow step."""

    name: str
    type: str
    configuration: Mapping[str, Any] = field(default_factory=_empty_mapping)
    options: TaskOptions | None = None
    inputs: tuple[str, ...] = ()
    outputs: tuple[str, ...] = ()
    condition: Condition | None = None
    retries: int | None = None
    timeout: float | None = None
    metadata: Mapping[str, Any] = field(default_factory=_empty_mapping)
    children: tuple[TaskSpec, ...] = ()

    @property
    def description(self) -> str | None:
        value = self.metadata.get("description")
        return value if isinstance(value, str) else None

    @property
    def tags(self) -> tuple[str, ...]:
        return tuple(self.metadata.get("tags", ()))

    @property
    def is_group(self) -> bool:
        return self.type == PARALLEL_TASK_TYPE

    def resolve(self, key: str, context: ExecutionContext, default: Any = None) -> Any:
        """Return a configuration value, calling it first if it is a deferred callback."""
        value = self.configuration.get(key, default)
        if callable(value):
            return value(context)
        return value

    def iter_tasks(self) -> Iterator[TaskSpec]:
        yield self
        for child in self.children:
            yield from child.iter_tasks()


@dataclass(frozen=True, slots=True)
class WorkflowDefinition:
    """Ordered task list plus workflow-level hooks and policies."""

    tasks: tuple[TaskSpec, ...] = ()
    error_handlers: Mapping[str, ErrorHandler] = field(default_factory=_empty_mapping)
    before_hooks: tuple[Hook, ...] = ()
    after_hooks: tuple[Hook, ...] = ()
    timeout: float | None = None
    retry_policy: RetryPolicy | None = None

    def iter_tasks(self) -> Iterator[TaskSpec]:
        """All specs depth-first, parallel groups included."""
        for task in self.tasks:
            yield from task.iter_tasks()

    @property
    def task_names(self) -> list[str]:
        return [t.name for t in self.iter_tasks() if not t.is_group]

    def task_types(self) -> set[str]:
        """Task-type tags that must be registered to run this workflow."""
        return {t.type for t in self.iter_tasks() if not t.is_group}

    def find_task(self, name: str) -> TaskSpec | None:
        for task in self.iter_tasks():
            if task.name == name:
                return task
        return None

    def error_handler_for(self, task_name: str) -> ErrorHandler | None:
        handler = self.error_handlers.get(task_name)
        if handler is None:
            handler = self.error_handlers.get(GLOBAL_ERROR_HANDLER)
        return handler
