"""Outcome of one workflow run."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

from a2a_workflows.workflow.context import ExecutionContext

TaskStatus = Literal["success", "skipped", "failed", "recovered"]
RunStatus = Literal["success", "failure"]


@dataclass(slots=True)
class TaskResult:
    name: str
    status: TaskStatus
    duration_ms: float = 0.0
    attempts: int = 0
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "name": self.name,
            "status": self.status,
            "duration_ms": round(self.duration_ms, 3),
            "attempts": self.attempts,
        }
        if self.error is not None:
            data["error"] = self.error
        return data


@dataclass(slots=True)
class WorkflowResult:
    status: RunStatus
    output_context: ExecutionContext
    task_results: list[TaskResult] = field(default_factory=list)
    error: str | None = None
    error_class: str | None = None
    failed_task: str | None = None
    duration_ms: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.status == "success"

    def task(self, name: str) -> TaskResult | None:
        for result in self.task_results:
            if result.name == name:
                return result
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "output": self.output_context.to_dict(),
            "tasks": [r.to_dict() for r in self.task_results],
            "error": self.error,
            "error_class": self.error_class,
            "failed_task": self.failed_task,
            "duration_ms": round(self.duration_ms, 3),
        }
