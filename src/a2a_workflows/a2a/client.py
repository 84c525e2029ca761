"""HTTP client for remote A2A agents.

Used by ``a2a`` tasks to discover a remote agent (agent card), check its
health and invoke one of its skills, blocking or over Server-Sent Events.
"""

from __future__ import annotations

import json
import logging
import threading
import time
import uuid
from collections.abc import Callable, Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from typing import Any

import requests

from a2a_workflows.a2a.retry import RetryManager
from a2a_workflows.core.config import A2AClientConfig
from a2a_workflows.errors import A2AClientError, AgentUnavailableError, SkillNotFoundError

logger = logging.getLogger(__name__)

AGENT_CARD_PATH = "/.well-known/agent.json"


@dataclass(frozen=True, slots=True)
class RemoteAgentCard:
    """The parts of a remote agent card the client relies on."""

    name: str
    url: str
    version: str | None = None
    description: str | None = None
    capabilities: tuple[str, ...] = ()
    raw: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], *, url: str) -> RemoteAgentCard:
        names: list[str] = []
        for entry in list(data.get("capabilities") or []) + list(data.get("skills") or []):
            if isinstance(entry, str):
                names.append(entry)
            elif isinstance(entry, Mapping):
                value = entry.get("name") or entry.get("id")
                if isinstance(value, str):
                    names.append(value)
        return cls(
            name=str(data.get("name") or url),
            url=str(data.get("url") or url),
            version=data.get("version"),
            description=data.get("description"),
            capabilities=tuple(dict.fromkeys(names)),
            raw=dict(data),
        )

    def supports(self, skill: str) -> bool:
        return skill in self.capabilities


@dataclass(frozen=True, slots=True)
class SSEEvent:
    event: str
    data: Any = None
    id: str | None = None


def parse_sse(lines: Iterable[str]) -> Iterator[SSEEvent]:
    """Parse Server-Sent Events from decoded lines (blank line ends an event)."""
    event = "message"
    data_lines: list[str] = []
    event_id: str | None = None
    for line in lines:
        if line == "":
            if data_lines:
                raw = "\n".join(data_lines)
                try:
                    data: Any = json.loads(raw)
                except json.JSONDecodeError:
                    data = raw
                yield SSEEvent(event=event, data=data, id=event_id)
            event, data_lines, event_id = "message", [], None
            continue
        if line.startswith(":"):
            continue
        key, _, value = line.partition(":")
        value = value[1:] if value.startswith(" ") else value
        if key == "event":
            event = value
        elif key == "data":
            data_lines.append(value)
        elif key == "id":
            event_id = value
    if data_lines:
        raw = "\n".join(data_lines)
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            data = raw
        yield SSEEvent(event=event, data=data, id=event_id)


class AgentCardCache:
    """Thread-safe TTL cache of remote agent cards, keyed by agent URL."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._entries: dict[str, tuple[float, RemoteAgentCard]] = {}
        self._lock = threading.Lock()
        self._clock = clock

    def get(self, url: str, ttl: float) -> RemoteAgentCard | None:
        with self._lock:
            entry = self._entries.get(url)
            if entry is None:
                return None
            stored_at, card = entry
            if ttl <= 0 or self._clock() - stored_at > ttl:
                del self._entries[url]
                return None
            return card

    def set(self, url: str, card: RemoteAgentCard) -> None:
        with self._lock:
            self._entries[url] = (self._clock(), card)

    def invalidate(self, url: str | None = None) -> None:
        with self._lock:
            if url is None:
                self._entries.clear()
            else:
                self._entries.pop(url, None)

    def __len__(self) -> int:
        return len(self._entries)


_card_cache = AgentCardCache()


class A2AClient:
    """Client for one remote agent.

    Auth may be a bearer token string or a mapping:
    ``{"type": "api_key", "token": ...}``, ``{"type": "oauth2", "access_token": ...}``,
    ``{"type": "basic", "username": ..., "password": ...}``.
    """

    def __init__(
        self,
        agent_url: str,
        *,
        auth: str | Mapping[str, Any] | None = None,
        timeout: float | None = None,
        max_retries: int | None = None,
        cache_ttl: float | None = None,
        config: A2AClientConfig | None = None,
        session: requests.Session | None = None,
        cache: AgentCardCache | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if not agent_url:
            raise ValueError("agent_url is required")
        config = config or A2AClientConfig()

        self.agent_url = agent_url.rstrip("/")
        self.timeout = timeout if timeout is not None else config.timeout_seconds
        self.cache_ttl = cache_ttl if cache_ttl is not None else config.cache_ttl_seconds
        self.retry = RetryManager(
            max_retries=max_retries if max_retries is not None else config.max_retries,
            base_delay=config.base_delay_seconds,
            max_delay=config.max_delay_seconds,
            backoff_factor=config.backoff_factor,
            sleep=sleep,
        )
        self._cache = cache if cache is not None else _card_cache

        self._session = session or requests.Session()
        self._session.headers.update({"User-Agent": config.user_agent, "Accept": "application/json"})
        self._apply_auth(auth)

    def _apply_auth(self, auth: str | Mapping[str, Any] | None) -> None:
        if not auth:
            return
        if isinstance(auth, str):
            self._session.headers["Authorization"] = f"Bearer {auth}"
            return
        kind = auth.get("type")
        if kind == "api_key":
            self._session.headers["X-API-Key"] = str(auth.get("token", ""))
        elif kind == "oauth2":
            self._session.headers["Authorization"] = f"Bearer {auth.get('access_token', '')}"
        elif kind == "basic":
            self._session.auth = (str(auth.get("username", "")), str(auth.get("password", "")))
        else:
            self._session.headers["Authorization"] = f"Bearer {auth.get('token', '')}"

    def close(self) -> None:
        self._session.close()

    def __enter__(self) -> A2AClient:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    # Discovery

    def fetch_agent_card(self, *, force_refresh: bool = False) -> RemoteAgentCard:
        if not force_refresh:
            cached = self._cache.get(self.agent_url, self.cache_ttl)
            if cached is not None:
                return cached

        def fetch() -> RemoteAgentCard:
            resp = self._request("GET", AGENT_CARD_PATH)
            return RemoteAgentCard.from_dict(self._json(resp), url=self.agent_url)

        card = self.retry.call(fetch)
        self._cache.set(self.agent_url, card)
        logger.info("Fetched agent card", extra={"agent_url": self.agent_url, "agent": card.name})
        return card

    def list_capabilities(self) -> list[str]:
        return list(self.fetch_agent_card().capabilities)

    def supports_skill(self, skill: str) -> bool:
        return self.fetch_agent_card().supports(skill)

    def health_check(self) -> dict[str, Any] | None:
        """Return the remote health payload, or ``None`` when the agent is unreachable."""
        try:
            resp = self.retry.call(lambda: self._request("GET", "/health"))
            return self._json(resp)
        except A2AClientError as e:
            logger.warning("Health check failed", extra={"agent_url": self.agent_url, "error": str(e)})
            return None

    def clear_cache(self) -> None:
        self._cache.invalidate(self.agent_url)

    # Invocation

    def invoke_skill(
        self,
        skill: str,
        parameters: Mapping[str, Any],
        *,
        request_id: str | None = None,
        stream: bool = False,
        webhook_url: str | None = None,
        on_event: Callable[[SSEEvent], None] | None = None,
    ) -> dict[str, Any]:
        """Invoke ``skill`` and return the JSON-RPC ``result`` object.

        Raises:
            SkillNotFoundError: The agent card does not list ``skill``.
            AgentUnavailableError: Transport failure after retries.
            A2AClientError: The remote agent rejected the call or the run failed.
        """
        card = self.fetch_agent_card()
        if not card.supports(skill):
            raise SkillNotFoundError(
                f"Skill '{skill}' not found on {self.agent_url}. "
                f"Available skills: {', '.join(card.capabilities) or 'none'}"
            )

        request_id = request_id or str(uuid.uuid4())
        options: dict[str, Any] = {"stream": stream}
        if webhook_url:
            options["webhookUrl"] = webhook_url
        payload = {
            "jsonrpc": "2.0",
            "method": "invoke",
            "id": request_id,
            "params": {
                "task": {
                    "id": request_id,
                    "skill": skill,
                    "parameters": dict(parameters),
                    "options": options,
                }
            },
        }

        logger.info(
            "Invoking remote skill",
            extra={"agent_url": self.agent_url, "skill": skill, "request_id": request_id},
        )
        if stream:
            return self.retry.call(lambda: self._invoke_streaming(payload, on_event))
        return self.retry.call(lambda: self._invoke_blocking(payload))

    def _invoke_blocking(self, payload: dict[str, Any]) -> dict[str, Any]:
        resp = self._request("POST", "/invoke", json=payload)
        body = self._json(resp)
        error = body.get("error")
        if error:
            message = error.get("message") if isinstance(error, Mapping) else str(error)
            raise A2AClientError(f"Remote error: {message}")
        result = body.get("result")
        if not isinstance(result, dict):
            raise A2AClientError("Remote response has no result object")
        return result

    def _invoke_streaming(
        self,
        payload: dict[str, Any],
        on_event: Callable[[SSEEvent], None] | None,
    ) -> dict[str, Any]:
        resp = self._request(
            "POST",
            "/invoke",
            json=payload,
            headers={"Accept": "text/event-stream", "Cache-Control": "no-cache"},
            stream=True,
        )
        combined: dict[str, Any] = {}
        errors: list[str] = []
        try:
            for event in parse_sse(resp.iter_lines(decode_unicode=True)):
                if on_event is not None:
                    on_event(event)
                data = event.data if isinstance(event.data, Mapping) else {}
                if event.event in ("task_complete", "complete"):
                    result = data.get("result")
                    if isinstance(result, Mapping):
                        combined.update(result)
                elif event.event == "error":
                    errors.append(str(data.get("error") or "Unknown streaming error"))
        finally:
            resp.close()

        if errors:
            raise A2AClientError(f"Streaming errors: {', '.join(errors)}")
        return {"status": "completed", "result": combined}

    # HTTP plumbing

    def _request(self, method: str, path: str, **kwargs: Any) -> requests.Response:
        url = f"{self.agent_url}{path}"
        headers = {"X-Request-ID": str(uuid.uuid4())}
        headers.update(kwargs.pop("headers", {}))
        try:
            resp = self._session.request(method, url, headers=headers, timeout=self.timeout, **kwargs)
        except (requests.ConnectionError, requests.Timeout) as e:
            raise AgentUnavailableError(f"Agent at {self.agent_url} is not reachable: {e}") from e
        except requests.RequestException as e:
            raise A2AClientError(f"Request to {url} failed: {e}") from e

        self._check_status(resp)
        return resp

    def _check_status(self, resp: requests.Response) -> None:
        status = resp.status_code
        if 200 <= status < 300:
            return
        if status in (401, 403):
            raise A2AClientError(f"Authentication failed ({status}) for {self.agent_url}")
        if status == 404:
            raise A2AClientError(f"Endpoint not found: {resp.url}")
        if status in (408, 429) or status >= 500:
            remote = self._remote_failure(resp)
            if remote is not None:
                raise A2AClientError(f"Remote workflow failed: {remote}")
            raise AgentUnavailableError(f"Agent at {self.agent_url} returned {status}")
        raise A2AClientError(f"Client error {status}: {resp.text[:200]}")

    @staticmethod
    def _remote_failure(resp: requests.Response) -> str | None:
        """Error message when a 5xx body reports a failed workflow run (not worth retrying)."""
        try:
            body = resp.json()
        except ValueError:
            return None
        if isinstance(body, Mapping) and body.get("jsonrpc") == "2.0" and body.get("error"):
            error = body["error"]
            return str(error.get("message") if isinstance(error, Mapping) else error)
        return None

    @staticmethod
    def _json(resp: requests.Response) -> dict[str, Any]:
        try:
            data = resp.json()
        except ValueError as e:
            raise A2AClientError(f"Expected JSON from {resp.url}") from e
        if not isinstance(data, dict):
            raise A2AClientError(f"Expected a JSON object from {resp.url}")
        return data
