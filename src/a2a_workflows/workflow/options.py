"""Typed configuration variants per task type.

The DSL collects task configuration into a plain mapping. At build time that
mapping is validated against the options model registered for the task type,
so a misspelt or mistyped option fails when the workflow class is declared.

Models allow extra keys: task types shipped outside this package can accept
options the core knows nothing about via ``TaskConfigurator.set``.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import Any, Literal
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from a2a_workflows.errors import DefinitionError

ResponseFormat = Literal["text", "json", "integer", "float", "boolean", "array", "hash"]


class TaskOptions(BaseModel):
    """Options every task type understands."""

    model_config = ConfigDict(extra="allow", frozen=True, arbitrary_types_allowed=True)

    timeout: float | None = Field(default=None, gt=0)
    retries: int | None = Field(default=None, ge=0)


class DirectHandlerOptions(TaskOptions):
    handler: Callable[..., Any]


class LLMOptions(TaskOptions):
    prompt: str | Callable[..., Any] | None = None
    system_prompt: str | Callable[..., Any] | None = None
    messages: list[dict[str, Any]] | Callable[..., Any] | None = None
    model: str | None = None
    temperature: float | None = Field(default=None, ge=0.0, le=2.0)
    max_tokens: int | None = Field(default=None, gt=0)
    provider: str | None = None
    format: ResponseFormat | None = None

    @model_validator(mode="after")
    def _require_prompt(self) -> LLMOptions:
        if self.prompt is None and self.messages is None and self.system_prompt is None:
            raise ValueError("llm tasks require prompt, messages or system_prompt")
        return self


class A2AOptions(TaskOptions):
    agent_url: str
    skill: str
    auth: str | dict[str, Any] | Callable[..., Any] | None = None
    stream: bool = False
    webhook_url: str | None = None
    fail_on_error: bool = True
    max_retries: int | None = Field(default=None, ge=0)
    cache_ttl: float | None = Field(default=None, ge=0)

    @field_validator("agent_url")
    @classmethod
    def _valid_url(cls, value: str) -> str:
        parsed = urlparse(value)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError(f"Invalid agent_url: {value!r}")
        return value.rstrip("/")


class RecordFindOptions(TaskOptions):
    model: Any
    where: dict[str, Any] | Callable[..., Any] | None = None
    find_by: dict[str, Any] | Callable[..., Any] | None = None
    includes: list[str] | None = None


class RecordQueryOptions(TaskOptions):
    model: Any
    scope: str | None = None
    where: dict[str, Any] | Callable[..., Any] | None = None
    includes: list[str] | None = None


class EmailOptions(TaskOptions):
    mailer: Any
    action: str
    params: dict[str, Any] | Callable[..., Any] | None = None
    delivery_method: str | None = None


class ImageGenerationOptions(TaskOptions):
    prompt: str | Callable[..., Any] | None = None
    model: str | None = None
    size: str | None = None


class FileUploadOptions(TaskOptions):
    file_path: str | Callable[..., Any]
    purpose: str | None = None


class WebSearchOptions(TaskOptions):
    query: str | Callable[..., Any] | None = None
    search_context_size: Literal["low", "medium", "high"] | None = None


class StreamUpdateOptions(TaskOptions):
    target: str | Callable[..., Any] | None = None
    action: str | None = None
    partial: str | None = None
    locals: dict[str, Any] | Callable[..., Any] | None = None


class ParallelOptions(TaskOptions):
    max_workers: int | None = Field(default=None, ge=1)


_OPTIONS_BY_TYPE: dict[str, type[TaskOptions]] = {
    "direct_handler": DirectHandlerOptions,
    "llm": LLMOptions,
    "a2a": A2AOptions,
    "record_find": RecordFindOptions,
    "record_query": RecordQueryOptions,
    "email": EmailOptions,
    "image_generation": ImageGenerationOptions,
    "file_upload": FileUploadOptions,
    "web_search": WebSearchOptions,
    "stream_update": StreamUpdateOptions,
    "parallel": ParallelOptions,
}


def register_task_options(task_type: str, model: type[TaskOptions]) -> None:
    """Attach a typed options model to a task type (last write wins)."""
    _OPTIONS_BY_TYPE[task_type] = model


def options_model_for(task_type: str) -> type[TaskOptions]:
    return _OPTIONS_BY_TYPE.get(task_type, TaskOptions)


def build_options(task_name: str, task_type: str, configuration: Mapping[str, Any]) -> TaskOptions:
    model = options_model_for(task_type)
    try:
        return model.model_validate(dict(configuration))
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or '<task>'}: {err['msg']}" for err in e.errors()
        )
        raise DefinitionError(
            f"Invalid configuration for task '{task_name}' ({task_type}): {problems}"
        ) from e
