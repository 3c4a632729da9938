import json
import time
import uuid
from collections.abc import Awaitable, Callable

import structlog
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from provisioner.shared.core.config import get_settings

logger = structlog.get_logger()


class RequestIDMiddleware(BaseHTTPMiddleware):
    """
    Injects a unique X-Request-ID into the logs and response.
    NOTE: This middleware trusts the X-Request-ID header if provided by the client.
    This is intended for correlation and debugging, not as a security principal.
    """

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
        request.state.request_id = request_id

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response


class ScimRequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    One structured line per SCIM request: method, path, status and latency.

    With SCIM_LOG_PAYLOADS enabled the JSON request body is logged as well
    (credentials are stripped by the secret redactor processor).
    """

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        settings = get_settings()
        if not request.url.path.startswith(settings.SCIM_BASE_PATH):
            return await call_next(request)

        start = time.perf_counter()
        if settings.SCIM_LOG_PAYLOADS and request.method in {"POST", "PUT", "PATCH"}:
            raw = await request.body()
            try:
                payload = json.loads(raw) if raw else None
            except ValueError:
                payload = "<non-json body>"
            logger.info(
                "scim_request_received",
                method=request.method,
                path=request.url.path,
                body=payload,
            )

        response = await call_next(request)
        logger.info(
            "scim_request_completed",
            method=request.method,
            path=request.url.path,
            query=str(request.url.query or ""),
            status_code=response.status_code,
            duration_ms=round((time.perf_counter() - start) * 1000, 2),
        )
        return response
