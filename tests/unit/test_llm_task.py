"""Unit tests for LLM providers and the ``llm`` task type."""

from __future__ import annotations

import functools
from types import SimpleNamespace
from typing import Any

import pytest

from a2a_workflows.core.config import LLMConfig
from a2a_workflows.errors import TaskExecutionError
from a2a_workflows.llm import LLMFactory, LLMProvider
from a2a_workflows.llm.openai_provider import OpenAIProvider
from a2a_workflows.tasks.llm import LLMTask, parse_response, render_template
from a2a_workflows.workflow.context import ExecutionContext
from a2a_workflows.workflow.dsl import WorkflowBuilder
from a2a_workflows.workflow.engine import WorkflowEngine
from a2a_workflows.workflow.registry import TaskRegistry


class FakeProvider(LLMProvider):
    def __init__(self, reply: str = "ok", error: Exception | None = None) -> None:
        self.reply = reply
        self.error = error
        self.calls: list[tuple[str, Any, dict[str, Any]]] = []

    def generate(self, prompt, max_tokens=None, temperature=None, **kwargs):
        self.calls.append(("generate", prompt, {"max_tokens": max_tokens, "temperature": temperature, **kwargs}))
        if self.error:
            raise self.error
        return self.reply

    def chat(self, messages, max_tokens=None, temperature=None, **kwargs):
        self.calls.append(("chat", messages, {"max_tokens": max_tokens, "temperature": temperature, **kwargs}))
        if self.error:
            raise self.error
        return self.reply


def _spec(declare):
    w = WorkflowBuilder()
    declare(w)
    return w.build().tasks[0]


def test_render_template_substitutes_nested_values() -> None:
    ctx = ExecutionContext({"user": {"name": "Ada"}, "count": 3})

    rendered = render_template("Hi {{ user.name }}, {{count}} new, {{missing.key}}", ctx)

    assert rendered == "Hi Ada, 3 new, [MISSING: missing.key]"
    assert render_template(None, ctx) is None


@pytest.mark.parametrize(
    "response, fmt, expected",
    [
        ('Sure: {"score": 4}', "json", {"score": 4}),
        ("name: Ada\nrole: admin", "hash", {"name": "Ada", "role": "admin"}),
        ("The answer is 42.", "integer", 42),
        ("no digits", "integer", 0),
        ("about -3.5 degrees", "float", -3.5),
        ("Yes, approved", "boolean", True),
        ("Rejected", "boolean", False),
        ('["a", "b"]', "array", ["a", "b"]),
        ("red, green\nblue", "array", ["red", "green", "blue"]),
        ("plain", None, "plain"),
        ("plain", "text", "plain"),
    ],
)
def test_parse_response(response: str, fmt: str | None, expected: Any) -> None:
    assert parse_response(response, fmt) == expected


def test_prompt_only_uses_generate() -> None:
    provider = FakeProvider("done")
    spec = _spec(lambda w: w.llm("ask", "Tell me about {{topic}}", model="gpt-4o", temperature=0.1, max_tokens=50))

    result = LLMTask(spec, provider=provider).execute(ExecutionContext(topic="owls"))

    assert result == "done"
    kind, prompt, params = provider.calls[0]
    assert kind == "generate"
    assert prompt == "Tell me about owls"
    assert params == {"model": "gpt-4o", "temperature": 0.1, "max_tokens": 50}


def test_system_prompt_builds_chat_messages() -> None:
    provider = FakeProvider()
    spec = _spec(lambda w: w.llm("ask", "Q: {{q}}").system_prompt("You are {{role}}"))

    LLMTask(spec, provider=provider).execute(ExecutionContext(q="why", role="terse"))

    assert provider.calls[0][:2] == (
        "chat",
        [{"role": "system", "content": "You are terse"}, {"role": "user", "content": "Q: why"}],
    )


def test_messages_and_callable_prompts() -> None:
    provider = FakeProvider()
    spec = _spec(
        lambda w: w.chat("talk").messages(
            lambda ctx: [{"role": "user", "content": "Hello {{name}}"}, {"content": "again"}]
        )
    )

    prompt = LLMTask(spec, provider=provider).build_prompt(ExecutionContext(name="Bo"))

    assert prompt == [
        {"role": "user", "content": "Hello Bo"},
        {"role": "user", "content": "again"},
    ]


def test_system_prompt_only_is_sent_as_user_message() -> None:
    spec = _spec(lambda w: w.llm("ask").system_prompt("Just this"))

    prompt = LLMTask(spec, provider=FakeProvider()).build_prompt(ExecutionContext())

    assert prompt == [{"role": "user", "content": "Just this"}]


def test_provider_errors_become_task_errors() -> None:
    spec = _spec(lambda w: w.llm("ask", "hi"))
    task = LLMTask(spec, provider=FakeProvider(error=RuntimeError("rate limited")))

    with pytest.raises(TaskExecutionError, match="LLM API error: rate limited"):
        task.execute(ExecutionContext())


def test_llm_task_in_workflow_parses_format() -> None:
    registry = TaskRegistry()
    registry.register("llm", functools.partial(LLMTask, provider=FakeProvider('{"label": "spam"}')))
    w = WorkflowBuilder()
    w.llm("classify", "Classify {{text}}", format="json").input("text").output("classification")

    result = WorkflowEngine(registry).execute(w.build(), {"text": "buy now"})

    assert result.succeeded
    assert result.output_context["classification"] == {"label": "spam"}


def test_openai_provider_uses_chat_completions(llm_config: LLMConfig) -> None:
    captured: dict[str, Any] = {}

    def create(**request):
        captured.update(request)
        return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content="hello"))])

    fake_client = SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=create)))
    provider = OpenAIProvider(llm_config, client=fake_client)

    assert provider.generate("hi", max_tokens=5, model="gpt-4o-mini") == "hello"
    assert captured == {
        "model": "gpt-4o-mini",
        "messages": [{"role": "user", "content": "hi"}],
        "temperature": 0.7,
        "max_tokens": 5,
    }


def test_openai_provider_requires_key() -> None:
    with pytest.raises(ValueError, match="API key"):
        OpenAIProvider(LLMConfig(_env_file=None, openai_api_key=None))


def test_factory_rejects_unknown_provider(llm_config: LLMConfig) -> None:
    with pytest.raises(ValueError, match="Unsupported LLM provider"):
        LLMFactory.create(llm_config, provider="nope")


def test_factory_creates_openai_provider(llm_config: LLMConfig) -> None:
    provider = LLMFactory.create(llm_config)

    assert isinstance(provider, OpenAIProvider)
    assert provider.model == "gpt-4"


def test_provider_helpers() -> None:
    provider = FakeProvider()

    assert provider.count_tokens("abcdefgh") == 2
    assert provider.name == "FakeProvider"
