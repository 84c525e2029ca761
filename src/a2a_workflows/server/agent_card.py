"""Agent card (``/.well-known/agent.json``) built from the mounted workflows."""

from __future__ import annotations

import hashlib
import json
from collections.abc import Mapping
from dataclasses import asdict, dataclass, field
from typing import Any

from a2a_workflows.workflow.registry import WorkflowRegistry

AGENT_CARD_PATH = "/.well-known/agent.json"
HEALTH_PATH = "/health"
INVOKE_PATH = "/invoke"


@dataclass(frozen=True, slots=True)
class SkillDescriptor:
    id: str
    name: str
    description: str
    workflow: str
    endpoint: str
    task_type: str
    tags: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class AgentCard:
    name: str
    description: str
    version: str
    url: str
    status: str = "active"
    capabilities: tuple[str, ...] = ()
    skills: tuple[SkillDescriptor, ...] = ()
    endpoints: Mapping[str, Any] = field(default_factory=dict)
    authentication: Mapping[str, Any] = field(default_factory=dict)
    updated_at: str = ""

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["endpoints"] = dict(self.endpoints)
        data["authentication"] = dict(self.authentication)
        return data

    def etag(self) -> str:
        payload = json.dumps(self.to_dict(), sort_keys=True, default=str)
        return '"' + hashlib.md5(payload.encode("utf-8"), usedforsecurity=False).hexdigest() + '"'


def build_agent_card(
    registry: WorkflowRegistry,
    *,
    name: str,
    description: str,
    version: str,
    base_url: str,
    auth_enabled: bool,
    updated_at: str,
) -> AgentCard:
    """Snapshot the registry as an agent card.

    With exactly one mounted workflow, its description is used for the card.
    """
    skills: list[SkillDescriptor] = []
    for path, workflow in registry.items():
        for spec in workflow.definition.iter_tasks():
            if spec.is_group:
                continue
            skills.append(
                SkillDescriptor(
                    id=spec.name,
                    name=spec.name,
                    description=spec.description or f"{spec.type} task of {workflow.name}",
                    workflow=workflow.name,
                    endpoint=path,
                    task_type=spec.type,
                    tags=spec.tags,
                )
            )

    workflows = registry.workflows()
    if len(workflows) == 1 and workflows[0].description:
        description = workflows[0].description

    if auth_enabled:
        authentication: dict[str, Any] = {"required": True, "schemes": ["bearer"]}
    else:
        authentication = {"required": False, "schemes": []}

    return AgentCard(
        name=name,
        description=description,
        version=version,
        url=base_url,
        capabilities=tuple(dict.fromkeys(s.name for s in skills)),
        skills=tuple(skills),
        endpoints={
            "agent_card": AGENT_CARD_PATH,
            "health": HEALTH_PATH,
            "invoke": INVOKE_PATH,
            "workflows": registry.paths(),
        },
        authentication=authentication,
        updated_at=updated_at,
    )
