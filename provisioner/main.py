from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Dict, List, Sequence

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from provisioner.modules.provisioning.api.v1.scim import scim_error_response
from provisioner.modules.provisioning.domain.errors import ScimError, ScimValidationError
from provisioner.shared.core.app_routes import (
    register_api_routers,
    register_lifecycle_routes,
)
from provisioner.shared.core.config import get_settings, reload_settings_from_environment
from provisioner.shared.core.logging import setup_logging
from provisioner.shared.core.middleware import (
    RequestIDMiddleware,
    ScimRequestLoggingMiddleware,
)
from provisioner.shared.db.session import build_db_runtime

settings = get_settings()
setup_logging()
logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    global settings
    settings = reload_settings_from_environment()
    logger.info("app_starting", app_name=settings.APP_NAME, environment=settings.ENVIRONMENT)

    runtime = build_db_runtime(settings)
    app.state.db = runtime

    yield

    logger.info("app_stopping")
    await runtime.dispose()
    logger.info("db_engine_disposed")


provisioner_app = FastAPI(
    title=settings.APP_NAME,
    version=settings.VERSION,
    lifespan=lifespan,
)
# Uvicorn looks for `app` by default.
app: FastAPI = provisioner_app

__all__ = ["app", "provisioner_app", "lifespan"]


def _is_scim_request(request: Request) -> bool:
    return request.url.path.startswith(get_settings().SCIM_BASE_PATH)


@provisioner_app.exception_handler(ScimError)
async def scim_error_handler(_request: Request, exc: ScimError) -> JSONResponse:
    """Return SCIM-compliant error responses for SCIM endpoints."""
    return scim_error_response(exc)


@provisioner_app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """SCIM clients get a 400 envelope; everything else keeps FastAPI's 422 shape."""

    def _describe(errors: Sequence[Any]) -> List[Dict[str, Any]]:
        described = []
        for err in errors:
            described.append(
                {
                    "loc": [str(part) for part in err.get("loc", ())],
                    "msg": str(err.get("msg", "")),
                    "type": str(err.get("type", "")),
                }
            )
        return described

    errors = _describe(exc.errors())
    if _is_scim_request(request):
        first = errors[0] if errors else {"loc": [], "msg": "Invalid request"}
        location = ".".join(part for part in first["loc"] if part != "body")
        detail = f"{location}: {first['msg']}" if location else first["msg"]
        logger.info("scim_request_invalid", path=request.url.path, errors=errors)
        return scim_error_response(ScimValidationError(detail, scim_type="invalidSyntax"))

    return JSONResponse(
        status_code=422,
        content={
            "error": "Unprocessable Entity",
            "code": "VALIDATION_ERROR",
            "message": "The request body or parameters are invalid.",
            "details": errors,
        },
    )


@provisioner_app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Unhandled errors are logged in full and returned without internals."""
    logger.error(
        "unhandled_exception",
        path=request.url.path,
        method=request.method,
        error_type=type(exc).__name__,
        exc_info=exc,
    )
    if _is_scim_request(request):
        return scim_error_response(ScimError("Internal server error", status_code=500))
    return JSONResponse(
        status_code=500,
        content={"error": "Internal Server Error", "code": "INTERNAL_ERROR"},
    )


register_lifecycle_routes(
    provisioner_app,
    app_name=settings.APP_NAME,
    version=settings.VERSION,
)
register_api_routers(provisioner_app, scim_base_path=settings.SCIM_BASE_PATH)

# Middleware is processed in REVERSE order of addition.
provisioner_app.add_middleware(ScimRequestLoggingMiddleware)
provisioner_app.add_middleware(RequestIDMiddleware)
