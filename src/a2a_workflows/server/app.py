"""FastAPI app factory.

Route handlers are thin wrappers over :class:`~a2a_workflows.server.server.A2AServer`.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response, StreamingResponse
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException as StarletteHTTPException

from a2a_workflows import __version__
from a2a_workflows.errors import A2AError, InvocationError, RegistryLookupError
from a2a_workflows.server.agent_card import AGENT_CARD_PATH, HEALTH_PATH, INVOKE_PATH
from a2a_workflows.server.middleware import error_body, install_middleware
from a2a_workflows.server.models import Invocation, parse_invocation

if TYPE_CHECKING:
    from a2a_workflows.server.server import A2AServer
    from a2a_workflows.workflow.definition import Workflow
    from a2a_workflows.workflow.result import WorkflowResult

logger = logging.getLogger(__name__)

AGENT_CARD_CACHE_CONTROL = "public, max-age=300"
SSE_MEDIA_TYPE = "text/event-stream"


class SafeJSONResponse(JSONResponse):
    """JSON response that stringifies values the json module cannot encode."""

    def render(self, content: Any) -> bytes:
        return json.dumps(content, ensure_ascii=False, separators=(",", ":"), default=str).encode(
            "utf-8"
        )


def _status_for(exc: A2AError) -> int:
    if isinstance(exc, InvocationError):
        return 400
    if isinstance(exc, RegistryLookupError):
        return 404
    return 500


async def _read_json(request: Request, *, required: bool) -> Any:
    raw = await request.body()
    if not raw.strip():
        if required:
            raise InvocationError("Request body is required")
        return {}
    try:
        return json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise InvocationError(f"Malformed JSON body: {e}") from e


def _wants_stream(request: Request, invocation: Invocation) -> bool:
    return invocation.stream or SSE_MEDIA_TYPE in request.headers.get("accept", "")


def _invoke_response(
    request: Request,
    server: A2AServer,
    invocation: Invocation,
    path: str,
    workflow: type[Workflow],
    result: WorkflowResult,
) -> Response:
    payload = server.result_payload(result, invocation, path, workflow)
    response_id = invocation.rpc_id if invocation.rpc_id is not None else invocation.task_id
    if result.succeeded:
        return SafeJSONResponse({"jsonrpc": "2.0", "id": response_id, "result": payload})

    return SafeJSONResponse(
        status_code=500,
        content=error_body(
            request,
            result.error or "Workflow failed",
            "workflow_failed",
            error_class=result.error_class,
            jsonrpc="2.0",
            id=response_id,
            failed_task=result.failed_task,
            result=payload,
        ),
    )


async def _invoke(
    request: Request,
    server: A2AServer,
    *,
    scoped: tuple[str, type[Workflow]] | None = None,
) -> Response:
    body = await _read_json(request, required=scoped is None)
    invocation = parse_invocation(body, scoped=scoped is not None)
    path, workflow = scoped if scoped is not None else server.resolve(invocation)
    request_id = getattr(request.state, "request_id", None) or invocation.task_id
    context = server.build_context(invocation, workflow, request_id)

    if _wants_stream(request, invocation):
        return StreamingResponse(
            server.stream_workflow(invocation, path, workflow, context, request_id),
            media_type=SSE_MEDIA_TYPE,
            headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
        )

    result = await run_in_threadpool(server.run_workflow, workflow, context)
    return _invoke_response(request, server, invocation, path, workflow, result)


def mount_workflow(app: FastAPI, server: A2AServer, path: str, workflow: type[Workflow]) -> None:
    """Add ``GET``/``POST`` routes for one workflow."""

    def describe(request: Request) -> dict[str, Any]:
        return {
            "name": workflow.name,
            "description": workflow.summary(),
            "version": workflow.version,
            "capabilities": workflow.skills(),
            "endpoint": path,
        }

    async def run(request: Request) -> Response:
        return await _invoke(request, server, scoped=(path, workflow))

    app.add_api_route(path, describe, methods=["GET"], name=f"{workflow.name}.describe")
    app.add_api_route(path, run, methods=["POST"], name=f"{workflow.name}.invoke")


def create_app(server: A2AServer) -> FastAPI:
    settings = server.settings

    app = FastAPI(
        title=settings.agent_name,
        version=__version__,
        description=settings.agent_description,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.server = server

    install_middleware(
        app,
        auth_token=server.auth_token,
        cors_origins=settings.parsed_cors_origins(),
        stats=server.counters,
    )

    @app.exception_handler(A2AError)
    async def handle_a2a_error(request: Request, exc: A2AError) -> Response:
        status = _status_for(exc)
        if status >= 500:
            logger.error("Request failed: %s", exc, extra={"path": request.url.path})
        return SafeJSONResponse(
            status_code=status,
            content=error_body(request, str(exc), exc.code, error_class=type(exc).__name__),
        )

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_error(request: Request, exc: StarletteHTTPException) -> Response:
        if exc.status_code == 404:
            return SafeJSONResponse(
                status_code=404,
                content=error_body(
                    request,
                    "Endpoint not found",
                    "not_found",
                    available_endpoints=server.endpoint_list(),
                ),
            )
        if exc.status_code == 405:
            return SafeJSONResponse(
                status_code=405,
                content=error_body(request, "Method not allowed", "method_not_allowed"),
                headers=getattr(exc, "headers", None),
            )
        return SafeJSONResponse(
            status_code=exc.status_code,
            content=error_body(request, str(exc.detail), "http_error"),
            headers=getattr(exc, "headers", None),
        )

    @app.get("/")
    def root() -> dict[str, Any]:
        return server.info()

    @app.get(AGENT_CARD_PATH)
    def agent_card(request: Request) -> Response:
        card = server.agent_card()
        etag = card.etag()
        headers = {"ETag": etag, "Cache-Control": AGENT_CARD_CACHE_CONTROL}

        if_none_match = request.headers.get("if-none-match")
        if if_none_match:
            candidates = {tag.strip() for tag in if_none_match.split(",")}
            if etag in candidates or "*" in candidates:
                return Response(status_code=304, headers=headers)

        return SafeJSONResponse(card.to_dict(), headers=headers)

    @app.get(HEALTH_PATH)
    def health() -> Response:
        return SafeJSONResponse(
            server.health(),
            headers={"Cache-Control": "no-cache, no-store, must-revalidate"},
        )

    @app.post(INVOKE_PATH)
    async def invoke(request: Request) -> Response:
        return await _invoke(request, server)

    for path, workflow in server.workflow_registry.items():
        mount_workflow(app, server, path, workflow)

    return app
