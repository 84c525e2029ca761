"""Request models and parsing for the invoke endpoints."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from a2a_workflows.errors import InvocationError

# Keys that mark a plain (non JSON-RPC) invoke envelope.
_ENVELOPE_KEYS = {"workflow", "skill", "input", "parameters", "id", "stream"}


class InvokeTask(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str | int | None = None
    skill: str | None = None
    workflow: str | None = None
    parameters: dict[str, Any] = Field(default_factory=dict)
    options: dict[str, Any] = Field(default_factory=dict)


class JsonRpcParams(BaseModel):
    model_config = ConfigDict(extra="allow")

    task: InvokeTask


class JsonRpcInvokeRequest(BaseModel):
    """``{"jsonrpc": "2.0", "method": "invoke", "id": ..., "params": {"task": {...}}}``"""

    model_config = ConfigDict(extra="allow")

    jsonrpc: Literal["2.0"]
    method: Literal["invoke"] = "invoke"
    id: str | int | None = None
    params: JsonRpcParams


class PlainInvokeRequest(BaseModel):
    """``{"workflow" | "skill": ..., "input" | "parameters": {...}, "id": ...}``"""

    model_config = ConfigDict(extra="forbid")

    workflow: str | None = None
    skill: str | None = None
    input: dict[str, Any] | None = None
    parameters: dict[str, Any] | None = None
    id: str | int | None = None
    stream: bool = False


@dataclass(slots=True)
class Invocation:
    """Normalized invoke request."""

    parameters: dict[str, Any] = field(default_factory=dict)
    workflow: str | None = None
    skill: str | None = None
    rpc_id: str | int | None = None
    task_id: str = ""
    jsonrpc: bool = False
    stream: bool = False


def _problems(e: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(p) for p in err['loc']) or 'body'}: {err['msg']}" for err in e.errors()
    )


def _is_scoped_envelope(body: dict[str, Any]) -> bool:
    # Exactly one object payload plus envelope keys; anything else is raw input.
    if not set(body) <= _ENVELOPE_KEYS:
        return False
    payloads = [body[key] for key in ("input", "parameters") if key in body]
    return len(payloads) == 1 and isinstance(payloads[0], dict)


def parse_invocation(body: Any, *, scoped: bool = False) -> Invocation:
    """Parse an invoke body.

    Args:
        body: Decoded JSON body.
        scoped: True for a per-workflow endpoint, where any object that is not
            an envelope is taken as the raw input.

    Raises:
        InvocationError: The body is not an object or not a valid envelope.
    """
    if not isinstance(body, dict):
        raise InvocationError("Request body must be a JSON object")

    if "jsonrpc" in body:
        try:
            rpc = JsonRpcInvokeRequest.model_validate(body)
        except ValidationError as e:
            raise InvocationError(f"Invalid JSON-RPC invoke request: {_problems(e)}") from e
        task = rpc.params.task
        task_id = task.id if task.id is not None else rpc.id
        return Invocation(
            parameters=dict(task.parameters),
            workflow=task.workflow,
            skill=task.skill,
            rpc_id=rpc.id,
            task_id=str(task_id) if task_id is not None else str(uuid.uuid4()),
            jsonrpc=True,
            stream=bool(task.options.get("stream", False)),
        )

    if scoped:
        is_envelope = _is_scoped_envelope(body)
    else:
        is_envelope = bool(body) and set(body) <= _ENVELOPE_KEYS
    if not is_envelope:
        if scoped:
            return Invocation(parameters=dict(body), task_id=str(uuid.uuid4()))
        raise InvocationError(
            "Invoke body must be a JSON-RPC 2.0 request or an object with "
            "'workflow' or 'skill' and 'input'"
        )

    try:
        plain = PlainInvokeRequest.model_validate(body)
    except ValidationError as e:
        raise InvocationError(f"Invalid invoke request: {_problems(e)}") from e
    if plain.input is not None and plain.parameters is not None:
        raise InvocationError("Give either 'input' or 'parameters', not both")
    return Invocation(
        parameters=dict(plain.input if plain.input is not None else plain.parameters or {}),
        workflow=plain.workflow,
        skill=plain.skill,
        rpc_id=plain.id,
        task_id=str(plain.id) if plain.id is not None else str(uuid.uuid4()),
        stream=plain.stream,
    )
