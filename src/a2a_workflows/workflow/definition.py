"""Declarative workflow base class."""

from __future__ import annotations

import re
from typing import Any, ClassVar

from a2a_workflows.workflow.dsl import WorkflowBuilder
from a2a_workflows.workflow.spec import WorkflowDefinition

DEFAULT_ROUTE_PREFIX = "/agents"


def snake_case(name: str) -> str:
    """``CustomerSupportWorkflow`` -> ``customer_support_workflow``."""
    name = re.sub(r"([A-Z]+)([A-Z][a-z])", r"\1_\2", name)
    name = re.sub(r"([a-z\d])([A-Z])", r"\1_\2", name)
    return name.replace("-", "_").lower()


class Workflow:
    """Base class for workflows exposed by the server.

    Subclasses implement :meth:`define`. The definition is compiled when the
    class statement runs, so DSL errors surface at import time::

        class EchoWorkflow(Workflow):
            description = "Echoes its input"

            @classmethod
            def define(cls, w):
                w.task("echo").input("text").output("text").process(lambda ctx: ctx["text"])
    """

    name: ClassVar[str] = "Workflow"
    description: ClassVar[str | None] = None
    version: ClassVar[str] = "1.0.0"
    definition: ClassVar[WorkflowDefinition] = WorkflowDefinition()

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        if "name" not in cls.__dict__:
            cls.name = cls.__name__
        builder = WorkflowBuilder()
        cls.define(builder)
        cls.definition = builder.build()

    @classmethod
    def define(cls, w: WorkflowBuilder) -> None:
        """Declare tasks on ``w``. The base implementation declares none."""

    @classmethod
    def default_path(cls) -> str:
        return f"{DEFAULT_ROUTE_PREFIX}/{snake_case(cls.__name__)}"

    @classmethod
    def skills(cls) -> list[str]:
        """Task names, advertised as capabilities in the agent card."""
        return cls.definition.task_names

    @classmethod
    def summary(cls) -> str:
        return cls.description or f"Workflow: {cls.name}"
