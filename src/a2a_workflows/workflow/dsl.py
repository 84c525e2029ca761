"""Workflow definition DSL.

A workflow is declared by calling builder verbs inside ``Workflow.define``::

    class ResponseWorkflow(Workflow):
        @classmethod
        def define(cls, w: WorkflowBuilder) -> None:
            w.timeout(30)
            w.retry_policy(max_retries=2, delay=0.5)

            w.task("normalize").input("text").output("clean").process(
                lambda ctx: ctx["text"].strip()
            )
            w.llm("summarize", "Summarize: {{clean}}", model="gpt-4").output("summary")
            w.a2a_agent("notify", "http://notifier:8080", skill="send").skip_when("dry_run")

            w.after_all(lambda ctx: None)

Nothing is executed here. Each verb returns a :class:`TaskConfigurator`;
:meth:`WorkflowBuilder.build` turns the collected configurators into an
immutable :class:`~a2a_workflows.workflow.spec.WorkflowDefinition`. Every DSL
mistake is reported as :class:`~a2a_workflows.errors.DefinitionError` at that
point, which is class-declaration time for :class:`Workflow` subclasses.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, TypeVar

from a2a_workflows.errors import DefinitionError
from a2a_workflows.workflow.context import ExecutionContext
from a2a_workflows.workflow.options import build_options
from a2a_workflows.workflow.spec import (
    GLOBAL_ERROR_HANDLER,
    PARALLEL_TASK_TYPE,
    Condition,
    ErrorHandler,
    Hook,
    RetryPolicy,
    TaskSpec,
    WorkflowDefinition,
)

DEFAULT_TASK_TYPE = "direct_handler"

F = TypeVar("F", bound=Callable[..., Any])


# Conditions are value objects so that building the same DSL twice yields
# equal specs.


@dataclass(frozen=True, slots=True)
class AllOf:
    conditions: tuple[Condition, ...]

    def __call__(self, context: ExecutionContext) -> bool:
        return all(bool(cond(context)) for cond in self.conditions)


@dataclass(frozen=True, slots=True)
class Not:
    condition: Condition

    def __call__(self, context: ExecutionContext) -> bool:
        return not self.condition(context)


@dataclass(frozen=True, slots=True)
class KeyEquals:
    key: str
    value: Any = True

    def __call__(self, context: ExecutionContext) -> bool:
        return context.get(self.key) == self.value


def _require_callable(value: object, what: str) -> None:
    if not callable(value):
        raise DefinitionError(f"{what} must be callable, got {type(value).__name__}")


def _as_keys(value: str | Iterable[str]) -> tuple[str, ...]:
    if isinstance(value, str):
        return (value,)
    return tuple(value)


def _check_name(name: object) -> str:
    if not isinstance(name, str) or not name.strip():
        raise DefinitionError(f"Task name must be a non-empty string, got {name!r}")
    return name


class TaskConfigurator:
    """Fluent configuration for a single task.

    Setters return ``self``. Options without a first-class setter go through
    :meth:`set`, and are validated against the task type's options model at
    build time.
    """

    # Keyword options that map onto a single-argument setter.
    _KEYWORD_SETTERS = frozenset(
        {
            "description",
            "run_if",
            "skip_if",
            "process",
            "handler",
            "timeout",
            "retries",
            "prompt",
            "system_prompt",
            "messages",
            "model",
            "temperature",
            "max_tokens",
            "provider",
            "response_format",
            "where",
            "find_by",
            "scope",
            "mailer",
            "action",
            "params",
            "delivery_method",
            "target",
            "partial",
            "locals",
            "file_path",
            "purpose",
            "query",
            "search_context_size",
            "size",
            "agent_url",
            "skill",
            "auth_token",
            "auth_env",
            "auth",
            "stream",
            "webhook_url",
            "fail_on_error",
            "cache_ttl",
            "max_retries",
            "max_workers",
        }
    )
    # Keyword options that take a sequence.
    _KEYWORD_VARARGS = {
        "input": "input",
        "inputs": "input",
        "output": "output",
        "outputs": "output",
        "tags": "tags",
        "includes": "includes",
    }

    def __init__(self, name: str, task_type: str) -> None:
        self.name = _check_name(name)
        if not isinstance(task_type, str) or not task_type.strip():
            raise DefinitionError(f"Task '{name}' has an invalid type: {task_type!r}")
        self.type = task_type
        self._config: dict[str, Any] = {}
        self._inputs: list[str] = []
        self._outputs: list[str] = []
        self._conditions: list[Condition] = []
        self._meta: dict[str, Any] = {}
        self._children: list[TaskConfigurator] = []

    def __repr__(self) -> str:
        return f"TaskConfigurator(name={self.name!r}, type={self.type!r})"

    # Generic configuration

    def set(self, key: str, value: Any) -> TaskConfigurator:
        """Store an arbitrary configuration value (or deferred callback)."""
        if not isinstance(key, str) or not key:
            raise DefinitionError(f"Task '{self.name}': configuration keys must be strings")
        self._config[key] = value
        return self

    def configure(self, **options: Any) -> TaskConfigurator:
        """Apply keyword options, routing each to its setter when one exists."""
        for key, value in options.items():
            if key in self._KEYWORD_VARARGS:
                getattr(self, self._KEYWORD_VARARGS[key])(*_as_keys(value))
            elif key in self._KEYWORD_SETTERS:
                getattr(self, key)(value)
            else:
                self.set(key, value)
        return self

    def input(self, *keys: str) -> TaskConfigurator:
        self._inputs.extend(keys)
        return self

    def output(self, *keys: str) -> TaskConfigurator:
        self._outputs.extend(keys)
        return self

    def description(self, text: str) -> TaskConfigurator:
        self._meta["description"] = text
        return self

    def tags(self, *tag_list: str) -> TaskConfigurator:
        self._meta["tags"] = tuple(tag_list)
        return self

    def meta(self, key: str, value: Any) -> TaskConfigurator:
        self._meta[key] = value
        return self

    def validation(self, is_validation: bool = True) -> TaskConfigurator:
        self._meta["validation"] = is_validation
        return self

    # Conditions (AND-combined)

    def run_if(self, condition: Condition) -> TaskConfigurator:
        _require_callable(condition, f"run_if condition of task '{self.name}'")
        self._conditions.append(condition)
        return self

    def skip_if(self, condition: Condition) -> TaskConfigurator:
        _require_callable(condition, f"skip_if condition of task '{self.name}'")
        self._conditions.append(Not(condition))
        return self

    def run_when(self, key: str, value: Any = True) -> TaskConfigurator:
        self._conditions.append(KeyEquals(key, value))
        return self

    def skip_when(self, key: str, value: Any = True) -> TaskConfigurator:
        self._conditions.append(Not(KeyEquals(key, value)))
        return self

    # Handlers

    def handler(self, fn: Callable[[ExecutionContext], Any]) -> TaskConfigurator:
        _require_callable(fn, f"handler of task '{self.name}'")
        return self.set("handler", fn)

    def process(self, fn: Callable[[ExecutionContext], Any]) -> TaskConfigurator:
        return self.handler(fn)

    # Execution policy

    def timeout(self, seconds: float) -> TaskConfigurator:
        if seconds is None or seconds <= 0:
            raise DefinitionError(f"Task '{self.name}': timeout must be positive")
        return self.set("timeout", float(seconds))

    def retries(self, count: int) -> TaskConfigurator:
        if not isinstance(count, int) or count < 0:
            raise DefinitionError(f"Task '{self.name}': retries must be a non-negative integer")
        return self.set("retries", count)

    # LLM

    def prompt(self, text: str | Callable[[ExecutionContext], str]) -> TaskConfigurator:
        if text is None:
            raise DefinitionError(f"Task '{self.name}': prompt requires text or a callable")
        return self.set("prompt", text)

    def system_prompt(self, text: str | Callable[[ExecutionContext], str]) -> TaskConfigurator:
        if text is None:
            raise DefinitionError(f"Task '{self.name}': system_prompt requires text or a callable")
        return self.set("system_prompt", text)

    def messages(self, msgs: list[dict[str, Any]] | Callable[..., Any]) -> TaskConfigurator:
        return self.set("messages", msgs)

    def model(self, name: Any) -> TaskConfigurator:
        return self.set("model", name)

    def temperature(self, value: float) -> TaskConfigurator:
        return self.set("temperature", value)

    def max_tokens(self, value: int) -> TaskConfigurator:
        return self.set("max_tokens", value)

    def provider(self, name: str) -> TaskConfigurator:
        return self.set("provider", name)

    def response_format(self, value: str) -> TaskConfigurator:
        return self.set("format", value)

    # Record lookups

    def where(self, conditions: Mapping[str, Any] | Callable[..., Any]) -> TaskConfigurator:
        return self.set("where", conditions)

    def find_by(self, conditions: Mapping[str, Any] | Callable[..., Any]) -> TaskConfigurator:
        return self.set("find_by", conditions)

    def scope(self, scope_name: str) -> TaskConfigurator:
        return self.set("scope", scope_name)

    def includes(self, *associations: str) -> TaskConfigurator:
        return self.set("includes", list(associations))

    # Email

    def mailer(self, klass: Any) -> TaskConfigurator:
        return self.set("mailer", klass)

    def action(self, action_name: str) -> TaskConfigurator:
        return self.set("action", action_name)

    def params(self, values: Mapping[str, Any] | Callable[..., Any]) -> TaskConfigurator:
        return self.set("params", values)

    def delivery_method(self, method: str) -> TaskConfigurator:
        return self.set("delivery_method", method)

    # Streaming UI updates

    def target(self, selector: str | Callable[[ExecutionContext], str]) -> TaskConfigurator:
        if selector is None:
            raise DefinitionError(f"Task '{self.name}': target requires a selector or a callable")
        return self.set("target", selector)

    def partial(self, partial_name: str) -> TaskConfigurator:
        return self.set("partial", partial_name)

    def locals(self, values: Mapping[str, Any] | Callable[..., Any]) -> TaskConfigurator:
        if values is None:
            raise DefinitionError(f"Task '{self.name}': locals requires a mapping or a callable")
        return self.set("locals", values)

    # Files, search, images

    def file_path(self, path: str | Callable[[ExecutionContext], str]) -> TaskConfigurator:
        return self.set("file_path", path)

    def purpose(self, purpose_name: str) -> TaskConfigurator:
        return self.set("purpose", purpose_name)

    def query(self, search_query: str | Callable[[ExecutionContext], str]) -> TaskConfigurator:
        return self.set("query", search_query)

    def search_context_size(self, size: str) -> TaskConfigurator:
        return self.set("search_context_size", size)

    def size(self, value: str) -> TaskConfigurator:
        return self.set("size", value)

    # Remote agents

    def agent_url(self, url: str) -> TaskConfigurator:
        return self.set("agent_url", url)

    def skill(self, skill_name: str) -> TaskConfigurator:
        return self.set("skill", skill_name)

    def auth_token(self, token: str) -> TaskConfigurator:
        return self.set("auth", token)

    def auth_env(self, env_var: str) -> TaskConfigurator:
        return self.set("auth", {"type": "env", "key": env_var})

    def auth(self, provider: Callable[[ExecutionContext], str]) -> TaskConfigurator:
        _require_callable(provider, f"auth provider of task '{self.name}'")
        return self.set("auth", provider)

    def stream(self, enabled: bool = True) -> TaskConfigurator:
        return self.set("stream", enabled)

    def webhook_url(self, url: str) -> TaskConfigurator:
        return self.set("webhook_url", url)

    def fail_on_error(self, enabled: bool = True) -> TaskConfigurator:
        return self.set("fail_on_error", enabled)

    def cache_ttl(self, seconds: float) -> TaskConfigurator:
        return self.set("cache_ttl", seconds)

    def max_retries(self, count: int) -> TaskConfigurator:
        return self.set("max_retries", count)

    # Parallel groups

    def max_workers(self, count: int) -> TaskConfigurator:
        return self.set("max_workers", count)

    # Build

    def build(self) -> TaskSpec:
        config = dict(self._config)
        options = build_options(self.name, self.type, config)

        condition: Condition | None = None
        if len(self._conditions) == 1:
            condition = self._conditions[0]
        elif self._conditions:
            condition = AllOf(tuple(self._conditions))

        return TaskSpec(
            name=self.name,
            type=self.type,
            configuration=MappingProxyType(config),
            options=options,
            inputs=tuple(dict.fromkeys(self._inputs)),
            outputs=tuple(dict.fromkeys(self._outputs)),
            condition=condition,
            retries=config.get("retries"),
            timeout=config.get("timeout"),
            metadata=MappingProxyType(dict(self._meta)),
            children=tuple(child.build() for child in self._children),
        )


def _apply(
    configurator: TaskConfigurator,
    configure: Callable[[TaskConfigurator], Any] | None,
) -> TaskConfigurator:
    if configure is not None:
        _require_callable(configure, f"configure argument of task '{configurator.name}'")
        configure(configurator)
    return configurator


class TaskGroupBuilder:
    """Task verbs shared by workflows and parallel groups."""

    def __init__(self) -> None:
        self._tasks: list[TaskConfigurator] = []

    def task(
        self,
        name: str,
        task_type: str = DEFAULT_TASK_TYPE,
        configure: Callable[[TaskConfigurator], Any] | None = None,
        **options: Any,
    ) -> TaskConfigurator:
        """Declare a task of any registered type."""
        configurator = TaskConfigurator(name, task_type)
        configurator.configure(**options)
        _apply(configurator, configure)
        self._tasks.append(configurator)
        return configurator

    def llm(
        self,
        name: str,
        prompt: str | Callable[[ExecutionContext], str] | None = None,
        configure: Callable[[TaskConfigurator], Any] | None = None,
        **options: Any,
    ) -> TaskConfigurator:
        if prompt is not None:
            options["prompt"] = prompt
        return self.task(name, "llm", configure, **options)

    def chat(
        self,
        name: str,
        prompt: str | Callable[[ExecutionContext], str] | None = None,
        configure: Callable[[TaskConfigurator], Any] | None = None,
        **options: Any,
    ) -> TaskConfigurator:
        return self.llm(name, prompt, configure, **options)

    def validate(
        self,
        name: str,
        configure: Callable[[TaskConfigurator], Any] | None = None,
        **options: Any,
    ) -> TaskConfigurator:
        configurator = self.task(name, DEFAULT_TASK_TYPE, configure, **options)
        return configurator.validation(True)

    def fetch(
        self,
        name: str,
        model: Any,
        configure: Callable[[TaskConfigurator], Any] | None = None,
        **options: Any,
    ) -> TaskConfigurator:
        return self.task(name, "record_find", configure, model=model, **options)

    def query(
        self,
        name: str,
        model: Any,
        configure: Callable[[TaskConfigurator], Any] | None = None,
        **options: Any,
    ) -> TaskConfigurator:
        return self.task(name, "record_query", configure, model=model, **options)

    def email(
        self,
        name: str,
        mailer: Any,
        action: str,
        configure: Callable[[TaskConfigurator], Any] | None = None,
        **options: Any,
    ) -> TaskConfigurator:
        return self.task(name, "email", configure, mailer=mailer, action=action, **options)

    def image(
        self,
        name: str,
        prompt: str | Callable[[ExecutionContext], str] | None = None,
        configure: Callable[[TaskConfigurator], Any] | None = None,
        **options: Any,
    ) -> TaskConfigurator:
        if prompt is not None:
            options["prompt"] = prompt
        return self.task(name, "image_generation", configure, **options)

    def upload_file(
        self,
        name: str,
        file_path: str | Callable[[ExecutionContext], str],
        configure: Callable[[TaskConfigurator], Any] | None = None,
        **options: Any,
    ) -> TaskConfigurator:
        return self.task(name, "file_upload", configure, file_path=file_path, **options)

    def search(
        self,
        name: str,
        query: str | Callable[[ExecutionContext], str] | None = None,
        configure: Callable[[TaskConfigurator], Any] | None = None,
        **options: Any,
    ) -> TaskConfigurator:
        if query is not None:
            options["query"] = query
        return self.task(name, "web_search", configure, **options)

    def stream(
        self,
        name: str,
        configure: Callable[[TaskConfigurator], Any] | None = None,
        **options: Any,
    ) -> TaskConfigurator:
        return self.task(name, "stream_update", configure, **options)

    def a2a_agent(
        self,
        name: str,
        agent_url: str | None = None,
        configure: Callable[[TaskConfigurator], Any] | None = None,
        **options: Any,
    ) -> TaskConfigurator:
        """Call a skill on a remote A2A agent.

        Either ``agent_url`` or a ``configure`` callable (which must then set
        ``agent_url``) is required.
        """
        if agent_url is None and configure is None:
            raise DefinitionError(
                f"Task '{name}': either agent_url or a configure callable is required for a2a_agent"
            )
        if agent_url is not None:
            options["agent_url"] = agent_url
        return self.task(name, "a2a", configure, **options)

    def conditional(
        self,
        name: str,
        condition: Condition,
        configure: Callable[[TaskConfigurator], Any] | None = None,
        **options: Any,
    ) -> TaskConfigurator:
        _require_callable(condition, f"condition of task '{name}'")
        configurator = TaskConfigurator(name, DEFAULT_TASK_TYPE)
        configurator.run_if(condition)
        configurator.configure(**options)
        _apply(configurator, configure)
        self._tasks.append(configurator)
        return configurator

    def parallel(
        self,
        name: str,
        tasks: Callable[[TaskGroupBuilder], Any],
        **options: Any,
    ) -> TaskConfigurator:
        """Declare a group of tasks that run concurrently.

        ``tasks`` receives a nested builder on which the group members are
        declared. Members see a copy of the context; their outputs are merged
        in declaration order and must not overlap.
        """
        _require_callable(tasks, f"tasks argument of parallel group '{name}'")
        group = TaskGroupBuilder()
        tasks(group)
        if not group._tasks:
            raise DefinitionError(f"Parallel group '{name}' declares no tasks")
        for member in group._tasks:
            if member.type == PARALLEL_TASK_TYPE:
                raise DefinitionError(f"Parallel group '{name}' cannot nest group '{member.name}'")

        configurator = TaskConfigurator(name, PARALLEL_TASK_TYPE)
        configurator.configure(**options)
        configurator._children = list(group._tasks)
        self._tasks.append(configurator)
        return configurator

    def build_tasks(self) -> tuple[TaskSpec, ...]:
        return tuple(configurator.build() for configurator in self._tasks)


class WorkflowBuilder(TaskGroupBuilder):
    """Collects task declarations and workflow-level settings."""

    def __init__(self) -> None:
        super().__init__()
        self._error_handlers: dict[str, ErrorHandler] = {}
        self._before_hooks: list[Hook] = []
        self._after_hooks: list[Hook] = []
        self._timeout: float | None = None
        self._retry_policy: RetryPolicy | None = None

    def before_all(self, hook: F) -> F:
        """Run ``hook(context)`` once before the first task. Usable as a decorator."""
        _require_callable(hook, "before_all hook")
        self._before_hooks.append(hook)
        return hook

    def after_all(self, hook: F) -> F:
        """Run ``hook(context)`` once after the run, even when a task failed."""
        _require_callable(hook, "after_all hook")
        self._after_hooks.append(hook)
        return hook

    def on_error(
        self, handler: ErrorHandler | None = None, *, task: str | None = None
    ) -> Any:
        """Register ``handler(error, context)`` for one task or globally.

        Usable directly (``w.on_error(fn, task="fetch")``) or as a decorator
        (``@w.on_error(task="fetch")``).
        """
        key = task or GLOBAL_ERROR_HANDLER

        def register(fn: ErrorHandler) -> ErrorHandler:
            _require_callable(fn, f"on_error handler for '{key}'")
            self._error_handlers[key] = fn
            return fn

        if handler is None:
            return register
        return register(handler)

    def timeout(self, seconds: float) -> None:
        if seconds is None or seconds <= 0:
            raise DefinitionError("Workflow timeout must be positive")
        self._timeout = float(seconds)

    def retry_policy(self, max_retries: int, delay: float = 1.0) -> None:
        if not isinstance(max_retries, int) or max_retries < 0:
            raise DefinitionError("retry_policy max_retries must be a non-negative integer")
        if delay < 0:
            raise DefinitionError("retry_policy delay must not be negative")
        self._retry_policy = RetryPolicy(max_retries=max_retries, delay=float(delay))

    def build(self) -> WorkflowDefinition:
        tasks = self.build_tasks()
        definition = WorkflowDefinition(
            tasks=tasks,
            error_handlers=MappingProxyType(dict(self._error_handlers)),
            before_hooks=tuple(self._before_hooks),
            after_hooks=tuple(self._after_hooks),
            timeout=self._timeout,
            retry_policy=self._retry_policy,
        )
        self._check_names(definition)
        return definition

    def _check_names(self, definition: WorkflowDefinition) -> None:
        seen: set[str] = set()
        for spec in definition.iter_tasks():
            if spec.name in seen:
                raise DefinitionError(f"Duplicate task name: '{spec.name}'")
            seen.add(spec.name)

        for key in definition.error_handlers:
            if key != GLOBAL_ERROR_HANDLER and key not in seen:
                raise DefinitionError(f"on_error registered for unknown task '{key}'")
