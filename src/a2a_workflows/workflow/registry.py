"""Task-type and workflow registries.

Both registries are populated at boot and frozen when the server starts.
Module-level singletons exist for convenience; every consumer also accepts an
explicit registry so tests can use isolated instances.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable
from typing import TYPE_CHECKING

from a2a_workflows.errors import DefinitionError, RegistryFrozenError, RegistryLookupError

if TYPE_CHECKING:
    from a2a_workflows.tasks.base import TaskFactory
    from a2a_workflows.workflow.definition import Workflow

logger = logging.getLogger(__name__)


class TaskRegistry:
    """Maps task-type tags to handler factories."""

    def __init__(self) -> None:
        self._factories: dict[str, TaskFactory] = {}
        self._frozen = False
        self._lock = threading.Lock()

    def register(self, task_type: str, factory: TaskFactory) -> None:
        """Register a factory for ``task_type``. A later registration replaces an earlier one."""
        if not task_type:
            raise DefinitionError("Task type must be a non-empty string")
        if not callable(factory):
            raise DefinitionError(f"Factory for task type '{task_type}' must be callable")
        with self._lock:
            if self._frozen:
                raise RegistryFrozenError(
                    f"Cannot register task type '{task_type}': registry is frozen"
                )
            if task_type in self._factories:
                logger.debug("Replacing task type registration: %s", task_type)
            self._factories[task_type] = factory
        logger.debug("Registered task type: %s", task_type)

    def get(self, task_type: str) -> TaskFactory:
        try:
            return self._factories[task_type]
        except KeyError:
            raise RegistryLookupError(
                f"Unknown task type: '{task_type}'", key=task_type
            ) from None

    def registered(self, task_type: str) -> bool:
        return task_type in self._factories

    def names(self) -> list[str]:
        return sorted(self._factories)

    def require(self, task_types: Iterable[str]) -> None:
        """Raise if any of ``task_types`` is missing, listing all of them."""
        missing = sorted({t for t in task_types if t not in self._factories})
        if missing:
            raise RegistryLookupError(
                f"Task types not registered: {', '.join(missing)}", key=missing[0]
            )

    def freeze(self) -> None:
        self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen


class WorkflowRegistry:
    """Maps route paths to workflow classes."""

    def __init__(self) -> None:
        self._routes: dict[str, type[Workflow]] = {}
        self._frozen = False
        self._lock = threading.Lock()

    def register(self, workflow: type[Workflow], path: str | None = None) -> str:
        """Mount ``workflow`` at ``path`` (default ``/agents/<snake_case_name>``).

        Returns the normalized path.
        """
        from a2a_workflows.workflow.definition import Workflow

        if not (isinstance(workflow, type) and issubclass(workflow, Workflow)):
            raise DefinitionError(f"Not a Workflow subclass: {workflow!r}")

        route = normalize_path(path or workflow.default_path())
        with self._lock:
            if self._frozen:
                raise RegistryFrozenError(
                    f"Cannot register workflow at '{route}': registry is frozen"
                )
            existing = self._routes.get(route)
            if existing is not None and existing is not workflow:
                raise DefinitionError(
                    f"Path '{route}' is already mounted by workflow '{existing.name}'"
                )
            self._routes[route] = workflow
        logger.info("Registered workflow", extra={"workflow": workflow.name, "path": route})
        return route

    def get(self, path: str) -> type[Workflow]:
        try:
            return self._routes[normalize_path(path)]
        except KeyError:
            raise RegistryLookupError(f"No workflow mounted at '{path}'", key=path) from None

    def find_by_name(self, name: str) -> tuple[str, type[Workflow]] | None:
        for route, workflow in self._routes.items():
            if workflow.name == name or workflow.__name__ == name:
                return route, workflow
        return None

    def find_by_skill(self, skill: str) -> tuple[str, type[Workflow]] | None:
        """First workflow (in mount order) declaring a task named ``skill``."""
        for route, workflow in self._routes.items():
            if skill in workflow.skills():
                return route, workflow
        return None

    def items(self) -> list[tuple[str, type[Workflow]]]:
        return list(self._routes.items())

    def paths(self) -> list[str]:
        return list(self._routes)

    def workflows(self) -> list[type[Workflow]]:
        return list(self._routes.values())

    def __len__(self) -> int:
        return len(self._routes)

    def __contains__(self, path: object) -> bool:
        return isinstance(path, str) and normalize_path(path) in self._routes

    def freeze(self) -> None:
        self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen


def normalize_path(path: str) -> str:
    path = "/" + path.strip().strip("/")
    return path


_task_registry: TaskRegistry | None = None
_workflow_registry: WorkflowRegistry | None = None


def get_task_registry() -> TaskRegistry:
    """Process-wide task registry, created with the built-in task types."""
    global _task_registry
    if _task_registry is None:
        from a2a_workflows.tasks import register_default_tasks

        registry = TaskRegistry()
        register_default_tasks(registry)
        _task_registry = registry
    return _task_registry


def get_workflow_registry() -> WorkflowRegistry:
    """Process-wide workflow registry."""
    global _workflow_registry
    if _workflow_registry is None:
        _workflow_registry = WorkflowRegistry()
    return _workflow_registry


def reset_task_registry() -> None:
    global _task_registry
    _task_registry = None


def reset_workflow_registry() -> None:
    global _workflow_registry
    _workflow_registry = None
