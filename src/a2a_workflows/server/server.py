"""A2A protocol server.

Lifecycle:

1. Register task types and workflows (``register_workflow`` or
   ``register_all_workflows``).
2. ``start()`` validates the bind address, TLS material and task manifest,
   freezes both registries, installs signal handlers and blocks in uvicorn.
3. SIGINT/SIGTERM (or ``stop()``) stop accepting connections; in-flight
   requests get ``drain_timeout_seconds`` to finish.

SIGUSR1 logs the current health and counters.
"""

from __future__ import annotations

import json
import logging
import signal
import ssl
import threading
import time
import uuid
from collections.abc import Iterator
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import uvicorn
from fastapi import FastAPI

from a2a_workflows import __version__
from a2a_workflows.core.config import ServerSettings
from a2a_workflows.errors import InvocationError, RegistryLookupError, ServerConfigurationError
from a2a_workflows.server.agent_card import (
    AGENT_CARD_PATH,
    HEALTH_PATH,
    INVOKE_PATH,
    AgentCard,
    build_agent_card,
)
from a2a_workflows.server.models import Invocation
from a2a_workflows.server.stats import ServerStats
from a2a_workflows.server.streaming import stream_run
from a2a_workflows.workflow.context import ExecutionContext
from a2a_workflows.workflow.definition import Workflow
from a2a_workflows.workflow.engine import ExecutionListener, WorkflowEngine
from a2a_workflows.workflow.registry import (
    TaskRegistry,
    WorkflowRegistry,
    get_task_registry,
    get_workflow_registry,
    normalize_path,
)
from a2a_workflows.workflow.result import WorkflowResult

logger = logging.getLogger(__name__)

A2A_PROTOCOL_VERSION = "1.0"
METADATA_PREFIX = "_a2a_"
RESERVED_PATHS = frozenset({"/", AGENT_CARD_PATH, HEALTH_PATH, INVOKE_PATH})
DOCUMENT_ARTIFACT_MIN_LENGTH = 1000


def format_uptime(seconds: float) -> str:
    """``93784`` -> ``"1d 2h 3m 4s"`` (zero leading units are omitted)."""
    seconds = int(seconds)
    days, seconds = divmod(seconds, 86_400)
    hours, seconds = divmod(seconds, 3600)
    minutes, seconds = divmod(seconds, 60)
    parts = []
    if days:
        parts.append(f"{days}d")
    if hours:
        parts.append(f"{hours}h")
    if minutes:
        parts.append(f"{minutes}m")
    parts.append(f"{seconds}s")
    return " ".join(parts)


def public_output(context: ExecutionContext) -> dict[str, Any]:
    """Context contents without the request metadata keys."""
    return {k: v for k, v in context.items() if not k.startswith(METADATA_PREFIX)}


def extract_artifacts(output: dict[str, Any]) -> list[dict[str, Any]]:
    """Describe structured and long-text outputs as artifacts.

    Mapping and list values become ``data`` artifacts; strings of at least
    ``DOCUMENT_ARTIFACT_MIN_LENGTH`` characters become ``document`` artifacts.
    Other values are only returned in ``output``.
    """
    created_at = datetime.now(UTC).isoformat()
    artifacts = []
    for key, value in output.items():
        if isinstance(value, str) and len(value) >= DOCUMENT_ARTIFACT_MIN_LENGTH:
            artifacts.append(
                {
                    "id": str(uuid.uuid4()),
                    "type": "document",
                    "name": f"{key}_result",
                    "content": value,
                    "description": f"Result from {key}",
                    "size": len(value.encode("utf-8")),
                    "created_at": created_at,
                }
            )
        elif isinstance(value, dict | list | tuple):
            artifacts.append(
                {
                    "id": str(uuid.uuid4()),
                    "type": "data",
                    "name": f"{key}_data",
                    "content": value,
                    "description": f"Data result from {key}",
                    "encoding": "json",
                    "size": len(json.dumps(value, default=str).encode("utf-8")),
                    "created_at": created_at,
                }
            )
    return artifacts


def overall_status(checks: dict[str, dict[str, Any]]) -> str:
    """``healthy`` with no failed check, ``degraded`` while fewer than half fail."""
    failed = sum(1 for check in checks.values() if check["status"] == "error")
    if not failed:
        return "healthy"
    if failed * 2 < len(checks):
        return "degraded"
    return "unhealthy"


class _UvicornServer(uvicorn.Server):
    def handle_exit(self, sig: int, frame: Any) -> None:
        logger.info("Received signal %s, shutting down gracefully", signal.Signals(sig).name)
        super().handle_exit(sig, frame)


class A2AServer:
    """Serves registered workflows over HTTP.

    Constructor arguments override the corresponding :class:`ServerSettings`
    fields. Registries default to the process-wide singletons.
    """

    def __init__(
        self,
        host: str | None = None,
        port: int | None = None,
        auth_token: str | None = None,
        ssl_cert_path: str | Path | None = None,
        ssl_key_path: str | Path | None = None,
        settings: ServerSettings | None = None,
        task_registry: TaskRegistry | None = None,
        workflow_registry: WorkflowRegistry | None = None,
    ) -> None:
        overrides: dict[str, Any] = {}
        if host is not None:
            overrides["host"] = host
        if port is not None:
            overrides["port"] = port
        if auth_token is not None:
            overrides["auth_token"] = auth_token
        if ssl_cert_path is not None:
            overrides["ssl_cert_path"] = Path(ssl_cert_path)
        if ssl_key_path is not None:
            overrides["ssl_key_path"] = Path(ssl_key_path)

        base = settings or ServerSettings()
        self.settings = base.model_copy(update=overrides) if overrides else base

        self.task_registry = task_registry if task_registry is not None else get_task_registry()
        self.workflow_registry = (
            workflow_registry if workflow_registry is not None else get_workflow_registry()
        )
        self.engine = WorkflowEngine(
            self.task_registry,
            default_timeout=self.settings.request_timeout_seconds,
            max_workers=self.settings.parallel_max_workers,
        )
        self.counters = ServerStats()

        self._started_at = datetime.now(UTC)
        self._started_monotonic = time.monotonic()
        self._app: FastAPI | None = None
        self._server: _UvicornServer | None = None

    # Properties

    @property
    def host(self) -> str:
        return self.settings.host

    @property
    def port(self) -> int:
        return self.settings.port

    @property
    def auth_token(self) -> str | None:
        return self.settings.auth_token or None

    @property
    def ssl_enabled(self) -> bool:
        return self.settings.ssl_enabled

    @property
    def base_url(self) -> str:
        if self.settings.base_url:
            return self.settings.base_url.rstrip("/")
        scheme = "https" if self.ssl_enabled else "http"
        host = "localhost" if self.host in ("0.0.0.0", "::", "") else self.host
        return f"{scheme}://{host}:{self.port}"

    @property
    def app(self) -> FastAPI:
        if self._app is None:
            self._app = self.build_app()
        return self._app

    @property
    def running(self) -> bool:
        return self._server is not None and self._server.started

    # Registration

    def register_workflow(self, workflow: type[Workflow], path: str | None = None) -> str:
        route = normalize_path(path or workflow.default_path())
        if route in RESERVED_PATHS:
            raise ServerConfigurationError(f"Path '{route}' is reserved by the server")
        route = self.workflow_registry.register(workflow, route)
        if self._app is not None:
            from a2a_workflows.server.app import mount_workflow

            mount_workflow(self._app, self, route, workflow)
        return route

    def register_all_workflows(self) -> list[str]:
        """Mount every concrete ``Workflow`` subclass not mounted yet, at its default path."""
        mounted = set(self.workflow_registry.workflows())
        routes = []
        for workflow in _iter_workflow_classes(Workflow):
            if workflow in mounted or not workflow.definition.tasks:
                continue
            routes.append(self.register_workflow(workflow))
            mounted.add(workflow)
        return routes

    def build_app(self) -> FastAPI:
        from a2a_workflows.server.app import create_app

        self._app = create_app(self)
        return self._app

    # Invocation

    def resolve(self, invocation: Invocation) -> tuple[str, type[Workflow]]:
        """Find the workflow for an invoke request: path, then name, then skill."""
        if invocation.workflow:
            if invocation.workflow.startswith("/") and invocation.workflow in self.workflow_registry:
                return normalize_path(invocation.workflow), self.workflow_registry.get(
                    invocation.workflow
                )
            found = self.workflow_registry.find_by_name(invocation.workflow)
            if found is not None:
                return found
            raise RegistryLookupError(
                f"Unknown workflow: '{invocation.workflow}'", key=invocation.workflow
            )
        if invocation.skill:
            found = self.workflow_registry.find_by_skill(invocation.skill)
            if found is not None:
                return found
            raise RegistryLookupError(f"Unknown skill: '{invocation.skill}'", key=invocation.skill)
        raise InvocationError("Invoke request must name a workflow or a skill")

    def build_context(
        self, invocation: Invocation, workflow: type[Workflow], request_id: str
    ) -> ExecutionContext:
        context = ExecutionContext(invocation.parameters)
        context[f"{METADATA_PREFIX}skill"] = invocation.skill or workflow.name
        context[f"{METADATA_PREFIX}request_id"] = request_id
        context[f"{METADATA_PREFIX}timestamp"] = datetime.now(UTC).isoformat()
        return context

    def run_workflow(
        self,
        workflow: type[Workflow],
        context: ExecutionContext,
        listener: ExecutionListener | None = None,
    ) -> WorkflowResult:
        self.counters.invocation_started()
        succeeded = False
        try:
            result = self.engine.execute(workflow.definition, context, listener, name=workflow.name)
            succeeded = result.succeeded
            return result
        finally:
            self.counters.invocation_finished(succeeded)

    def result_payload(
        self,
        result: WorkflowResult,
        invocation: Invocation,
        path: str,
        workflow: type[Workflow],
    ) -> dict[str, Any]:
        context = result.output_context
        output = public_output(context)
        return {
            "status": "completed" if result.succeeded else "failed",
            "output": output,
            "tasks": [r.to_dict() for r in result.task_results],
            "artifacts": extract_artifacts(output),
            "metadata": {
                "workflow": workflow.name,
                "path": path,
                "skill": context.get(f"{METADATA_PREFIX}skill"),
                "task_id": invocation.task_id,
                "request_id": context.get(f"{METADATA_PREFIX}request_id"),
                "timestamp": context.get(f"{METADATA_PREFIX}timestamp"),
                "duration_ms": round(result.duration_ms, 3),
            },
        }

    def stream_workflow(
        self,
        invocation: Invocation,
        path: str,
        workflow: type[Workflow],
        context: ExecutionContext,
        request_id: str,
    ) -> Iterator[str]:
        def on_result(result: WorkflowResult) -> dict[str, Any]:
            payload = self.result_payload(result, invocation, path, workflow)
            if result.succeeded:
                return {
                    "status": "completed",
                    "result": payload["output"],
                    "tasks": payload["tasks"],
                    "artifacts": payload["artifacts"],
                }
            return {
                "status": "failed",
                "error": result.error,
                "error_class": result.error_class,
                "failed_task": result.failed_task,
                "tasks": payload["tasks"],
            }

        def on_error(exc: BaseException) -> dict[str, Any]:
            return {"status": "failed", "error": str(exc), "error_class": type(exc).__name__}

        return stream_run(
            lambda listener: self.run_workflow(workflow, context, listener),
            start={
                "workflow": workflow.name,
                "path": path,
                "skill": invocation.skill,
                "task_id": invocation.task_id,
                "request_id": request_id,
            },
            on_result=on_result,
            on_error=on_error,
            request_id=request_id,
        )

    # Introspection

    def agent_card(self) -> AgentCard:
        return build_agent_card(
            self.workflow_registry,
            name=self.settings.agent_name,
            description=self.settings.agent_description,
            version=__version__,
            base_url=self.base_url,
            auth_enabled=self.auth_token is not None,
            updated_at=self._started_at.isoformat(),
        )

    def uptime(self) -> float:
        return time.monotonic() - self._started_monotonic

    def health_checks(self) -> dict[str, dict[str, Any]]:
        """Run the liveness checks reported by ``/health``.

        Each check has a ``status`` of ``ok``, ``warning`` or ``error``.
        """
        paths = self.workflow_registry.paths()
        missing = sorted(
            t for t in self.required_task_types() if not self.task_registry.registered(t)
        )
        config_ok = bool(self.host) and 0 <= self.port <= 65535
        return {
            "workflow_registry": {
                "status": "ok" if paths else "warning",
                "message": f"{len(paths)} workflows registered",
                "details": {"count": len(paths), "workflows": paths},
            },
            "task_manifest": {
                "status": "error" if missing else "ok",
                "message": (
                    f"Missing task types: {', '.join(missing)}"
                    if missing
                    else "All task types registered"
                ),
                "details": {"registered": self.task_registry.names(), "missing": missing},
            },
            "configuration": {
                "status": "ok" if config_ok else "error",
                "message": "Configuration valid" if config_ok else "Configuration issues",
                "details": {
                    "host": self.host,
                    "port": self.port,
                    "ssl": self.ssl_enabled,
                    "authentication": self.auth_token is not None,
                    "base_url": self.base_url,
                },
            },
        }

    def health(self) -> dict[str, Any]:
        uptime = self.uptime()
        checks = self.health_checks()
        return {
            "status": overall_status(checks),
            "checks": checks,
            "uptime_seconds": int(uptime),
            "uptime_human": format_uptime(uptime),
            "registered_workflows": len(self.workflow_registry),
            "version": __version__,
            "protocol_version": A2A_PROTOCOL_VERSION,
            "timestamp": datetime.now(UTC).isoformat(),
            "server_info": {
                "host": self.host,
                "port": self.port,
                "ssl": self.ssl_enabled,
                "authentication": self.auth_token is not None,
            },
        }

    def stats(self) -> dict[str, Any]:
        return {
            "workflows": len(self.workflow_registry),
            "total_capabilities": sum(
                len(w.skills()) for w in self.workflow_registry.workflows()
            ),
            "task_types": self.task_registry.names(),
            "endpoints": self.endpoint_list(),
            "uptime_seconds": int(self.uptime()),
            **self.counters.snapshot(),
        }

    def endpoint_list(self) -> list[str]:
        return ["/", AGENT_CARD_PATH, HEALTH_PATH, INVOKE_PATH, *self.workflow_registry.paths()]

    def info(self) -> dict[str, Any]:
        return {
            "name": self.settings.agent_name,
            "description": self.settings.agent_description,
            "version": __version__,
            "status": "running",
            "endpoints": {
                "agent_card": AGENT_CARD_PATH,
                "health": HEALTH_PATH,
                "invoke": INVOKE_PATH,
            },
            "workflows": [
                {"name": w.name, "path": p, "description": w.summary()}
                for p, w in self.workflow_registry.items()
            ],
        }

    # Lifecycle

    def required_task_types(self) -> set[str]:
        required = set(self.settings.parsed_required_task_types())
        for workflow in self.workflow_registry.workflows():
            required |= workflow.definition.task_types()
        return required

    def validate(self) -> None:
        """Check bind address, TLS material and task manifest.

        Raises:
            ServerConfigurationError: On the first problem found.
        """
        if not self.host:
            raise ServerConfigurationError("Bind host must not be empty")
        if not 0 <= self.port <= 65535:
            raise ServerConfigurationError(f"Invalid port: {self.port}")
        self._ssl_files()
        try:
            self.task_registry.require(self.required_task_types())
        except RegistryLookupError as e:
            raise ServerConfigurationError(f"Task manifest check failed: {e}") from e

    def _ssl_files(self) -> tuple[str, str] | None:
        cert, key = self.settings.ssl_cert_path, self.settings.ssl_key_path
        if cert is None and key is None:
            return None
        if cert is None or key is None:
            raise ServerConfigurationError("TLS requires both ssl_cert_path and ssl_key_path")
        for label, path in (("certificate", cert), ("private key", key)):
            if not Path(path).is_file():
                raise ServerConfigurationError(f"TLS {label} not found: {path}")
        try:
            ssl.create_default_context(ssl.Purpose.CLIENT_AUTH).load_cert_chain(str(cert), str(key))
        except (ssl.SSLError, OSError) as e:
            raise ServerConfigurationError(f"Invalid TLS certificate or key: {e}") from e
        return str(cert), str(key)

    def start(self) -> None:
        """Validate, freeze registries and serve until stopped (blocking)."""
        self.validate()
        self.task_registry.freeze()
        self.workflow_registry.freeze()

        app = self.app
        ssl_files = self._ssl_files()
        config = uvicorn.Config(
            app,
            host=self.host,
            port=self.port,
            ssl_certfile=ssl_files[0] if ssl_files else None,
            ssl_keyfile=ssl_files[1] if ssl_files else None,
            timeout_graceful_shutdown=self.settings.drain_timeout_seconds,
            log_config=None,
            access_log=False,
        )
        self._server = _UvicornServer(config)
        self._install_status_signal()

        self._started_at = datetime.now(UTC)
        self._started_monotonic = time.monotonic()
        logger.info(
            "Starting A2A server",
            extra={
                "host": self.host,
                "port": self.port,
                "ssl": ssl_files is not None,
                "authentication": self.auth_token is not None,
                "workflows": self.workflow_registry.paths(),
            },
        )
        try:
            self._server.run()
        except KeyboardInterrupt:
            # uvicorn re-raises the captured SIGINT once it has drained.
            logger.info("A2A server interrupted")
        finally:
            logger.info("A2A server stopped")
            self._server = None

    def stop(self) -> None:
        """Request a graceful shutdown. Safe to call from a signal handler."""
        if self._server is None:
            return
        logger.info("Stopping A2A server")
        self._server.should_exit = True

    def _install_status_signal(self) -> None:
        usr1 = getattr(signal, "SIGUSR1", None)
        if usr1 is None or threading.current_thread() is not threading.main_thread():
            return

        def log_status(signum: int, frame: Any) -> None:
            logger.info("Server status", extra={"health": self.health(), "stats": self.stats()})

        signal.signal(usr1, log_status)


def _iter_workflow_classes(base: type[Workflow]) -> Iterator[type[Workflow]]:
    for cls in base.__subclasses__():
        yield cls
        yield from _iter_workflow_classes(cls)
