"""LLM task: prompt templating, provider call, response parsing.

Prompts may reference context values with ``{{key}}`` or ``{{key.nested.path}}``.
A missing value renders as ``[MISSING: key]`` and is logged.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any

from a2a_workflows.core.config import LLMConfig
from a2a_workflows.errors import TaskExecutionError
from a2a_workflows.llm.factory import LLMFactory
from a2a_workflows.llm.provider import ChatMessage, LLMProvider
from a2a_workflows.tasks.base import Task
from a2a_workflows.workflow.context import ExecutionContext
from a2a_workflows.workflow.spec import TaskSpec

logger = logging.getLogger(__name__)

_PLACEHOLDER = re.compile(r"\{\{(.+?)\}\}")
_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)
_JSON_ARRAY = re.compile(r"\[.*\]", re.DOTALL)
_KEY_VALUE = re.compile(r"(\w+):\s*([^\n,]+)")
_TRUTHY = re.compile(r"\b(true|yes|1|success|ok)\b")

_LOG_PREVIEW = 500


def render_template(template: Any, context: ExecutionContext) -> Any:
    """Substitute ``{{path}}`` placeholders from the context. Non-strings pass through."""
    if not isinstance(template, str):
        return template

    def substitute(match: re.Match[str]) -> str:
        path = match.group(1).strip()
        value = context.dig(*path.split("."))
        if value is None:
            logger.warning("Missing context variable in prompt: %s", path)
            return f"[MISSING: {path}]"
        return str(value)

    return _PLACEHOLDER.sub(substitute, template)


def parse_response(response: str, response_format: str | None) -> Any:
    """Convert raw model output according to the task's ``format`` option."""
    if response_format in ("json", "hash"):
        return _parse_json(response)
    if response_format == "integer":
        match = re.search(r"-?\d+", response)
        return int(match.group()) if match else 0
    if response_format == "float":
        match = re.search(r"-?\d+(?:\.\d+)?", response)
        return float(match.group()) if match else 0.0
    if response_format == "boolean":
        return bool(_TRUTHY.search(response.lower()))
    if response_format == "array":
        if _JSON_ARRAY.search(response):
            return _parse_json(response)
        return [part.strip() for part in re.split(r"[,\n]", response) if part.strip()]
    return response


def _parse_json(response: str) -> Any:
    match = _JSON_OBJECT.search(response) or _JSON_ARRAY.search(response)
    candidate = match.group() if match else response
    try:
        return json.loads(candidate)
    except json.JSONDecodeError as e:
        logger.warning("Failed to parse JSON response: %s", e)
        pairs = {k.lower(): v.strip() for k, v in _KEY_VALUE.findall(response)}
        return pairs or response


def _preview(value: Any) -> str:
    text = value if isinstance(value, str) else json.dumps(value, default=str)
    return text if len(text) <= _LOG_PREVIEW else text[:_LOG_PREVIEW] + "..."


class LLMTask(Task):
    """Sends a templated prompt to an LLM provider.

    ``provider`` is normally created from :class:`LLMConfig` on first use;
    register ``functools.partial(LLMTask, provider=...)`` to share one.
    """

    def __init__(
        self,
        spec: TaskSpec,
        provider: LLMProvider | None = None,
        config: LLMConfig | None = None,
    ) -> None:
        super().__init__(spec)
        self._provider = provider
        self._config = config

    @property
    def provider(self) -> LLMProvider:
        if self._provider is None:
            self._provider = LLMFactory.create(
                self._config, provider=self.spec.configuration.get("provider")
            )
        return self._provider

    def build_prompt(self, context: ExecutionContext) -> str | list[ChatMessage]:
        prompt = render_template(self.resolve("prompt", context), context)
        system_prompt = render_template(self.resolve("system_prompt", context), context)
        messages = self.resolve("messages", context)

        if messages:
            return [
                {"role": m.get("role", "user"), "content": render_template(m.get("content", ""), context)}
                for m in messages
            ]
        if system_prompt and prompt:
            return [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": prompt},
            ]
        if prompt:
            return prompt
        if system_prompt:
            return [{"role": "user", "content": system_prompt}]
        raise TaskExecutionError(
            f"Task '{self.name}' has no prompt, messages or system_prompt", task=self.name
        )

    def execute(self, context: ExecutionContext) -> Any:
        config = self.spec.configuration
        prompt = self.build_prompt(context)
        logger.info(
            "Executing LLM task",
            extra={"task": self.name, "prompt": _preview(prompt), "model": config.get("model")},
        )

        params: dict[str, Any] = {}
        for key in ("model", "temperature", "max_tokens"):
            value = config.get(key)
            if value is not None:
                params[key] = value

        try:
            response = self.provider.complete(prompt, **params)
        except TaskExecutionError:
            raise
        except Exception as e:
            raise TaskExecutionError(f"LLM API error: {e}", task=self.name) from e

        logger.info("LLM task completed", extra={"task": self.name, "response": _preview(response)})
        return parse_response(response, config.get("format"))
