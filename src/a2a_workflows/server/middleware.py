"""HTTP middleware: request logging and bearer-token authentication.

CORS uses Starlette's ``CORSMiddleware``; see :func:`install_middleware` for
the order.
"""

from __future__ import annotations

import hmac
import logging
import time
import uuid
from collections.abc import Iterable
from datetime import UTC, datetime
from typing import Any

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from a2a_workflows.core.logging import bind_request_id, reset_request_id
from a2a_workflows.server.agent_card import AGENT_CARD_PATH, HEALTH_PATH
from a2a_workflows.server.stats import ServerStats

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"
RESPONSE_TIME_HEADER = "X-Response-Time"
AUTH_REALM = "A2A Agent"

PUBLIC_PATHS = (AGENT_CARD_PATH, HEALTH_PATH, "/", "/favicon.ico")

CORS_ALLOW_METHODS = ["GET", "POST", "OPTIONS"]
CORS_ALLOW_HEADERS = ["Content-Type", "Authorization", "X-Request-ID", "Accept"]
CORS_EXPOSE_HEADERS = [REQUEST_ID_HEADER, RESPONSE_TIME_HEADER]
CORS_MAX_AGE = 86400


def error_body(
    request: Request,
    message: str,
    code: str,
    *,
    error_class: str | None = None,
    **extra: Any,
) -> dict[str, Any]:
    """Uniform JSON error body."""
    body: dict[str, Any] = {
        "error": message,
        "code": code,
        "error_class": error_class,
        "path": request.url.path,
        "timestamp": datetime.now(UTC).isoformat(),
        "request_id": getattr(request.state, "request_id", None),
    }
    body.update(extra)
    return body


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Logs one line per response and sets request-id / response-time headers.

    An exception escaping the app becomes a JSON 500 here so the process never
    drops a connection without a response.
    """

    def __init__(self, app: Any, stats: ServerStats | None = None) -> None:
        super().__init__(app)
        self.stats = stats

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        request.state.request_id = request_id
        token = bind_request_id(request_id)
        try:
            return await self._serve(request, call_next, request_id)
        finally:
            reset_request_id(token)

    async def _serve(
        self, request: Request, call_next: RequestResponseEndpoint, request_id: str
    ) -> Response:
        started = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception as e:
            logger.exception(
                "Unhandled error while serving request",
                extra={"method": request.method, "path": request.url.path, "request_id": request_id},
            )
            response = JSONResponse(
                status_code=500,
                content=error_body(
                    request, "Internal server error", "internal_error", error_class=type(e).__name__
                ),
            )

        duration_ms = (time.perf_counter() - started) * 1000
        response.headers[REQUEST_ID_HEADER] = request_id
        response.headers[RESPONSE_TIME_HEADER] = f"{duration_ms:.2f}ms"

        if self.stats is not None:
            self.stats.record_request(response.status_code)

        status = response.status_code
        level = logging.INFO if status < 400 else logging.WARNING if status < 500 else logging.ERROR
        logger.log(
            level,
            f"{request.method} {request.url.path} {status}",
            extra={
                "method": request.method,
                "path": request.url.path,
                "status_code": status,
                "duration_ms": round(duration_ms, 2),
                "request_id": request_id,
                "client": request.client.host if request.client else None,
            },
        )
        return response


class BearerAuthMiddleware(BaseHTTPMiddleware):
    """Requires ``Authorization: Bearer <token>`` except on public paths and OPTIONS."""

    def __init__(
        self,
        app: Any,
        token: str,
        public_paths: Iterable[str] = PUBLIC_PATHS,
        realm: str = AUTH_REALM,
    ) -> None:
        super().__init__(app)
        self.token = token
        self.public_paths = frozenset(public_paths)
        self.realm = realm

    def _authorized(self, header: str | None) -> bool:
        if not header:
            return False
        scheme, _, credentials = header.partition(" ")
        if scheme.lower() != "bearer" or not credentials.strip():
            return False
        return hmac.compare_digest(credentials.strip().encode(), self.token.encode())

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if request.method == "OPTIONS" or request.url.path in self.public_paths:
            return await call_next(request)

        if not self._authorized(request.headers.get("Authorization")):
            logger.warning(
                "Rejected unauthenticated request",
                extra={"path": request.url.path, "request_id": getattr(request.state, "request_id", None)},
            )
            return JSONResponse(
                status_code=401,
                content=error_body(request, "Unauthorized", "auth_required"),
                headers={"WWW-Authenticate": f'Bearer realm="{self.realm}"'},
            )
        return await call_next(request)


def install_middleware(
    app: FastAPI,
    *,
    auth_token: str | None,
    cors_origins: list[str],
    stats: ServerStats | None = None,
) -> None:
    """Install the middleware chain.

    Starlette runs the last-added middleware first, so requests pass through
    logging, then CORS (which answers preflights), then auth.
    """
    if auth_token:
        app.add_middleware(BearerAuthMiddleware, token=auth_token)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins or ["*"],
        allow_credentials=True,
        allow_methods=CORS_ALLOW_METHODS,
        allow_headers=CORS_ALLOW_HEADERS,
        expose_headers=CORS_EXPOSE_HEADERS,
        max_age=CORS_MAX_AGE,
    )

    app.add_middleware(RequestLoggingMiddleware, stats=stats)
