from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from provisioner.shared.db.session import get_db_runtime, health_check


def _validate_router_registry(routes: list[tuple[Any, str]]) -> None:
    seen_prefixes: set[str] = set()
    for router, prefix in routes:
        route_list = getattr(router, "routes", None)
        if not isinstance(route_list, list) or not route_list:
            raise RuntimeError("Router registry includes an empty router definition")
        normalized_prefix = prefix.strip()
        if not normalized_prefix.startswith("/"):
            raise RuntimeError(f"Router prefix must start with '/': {prefix!r}")
        if normalized_prefix in seen_prefixes:
            raise RuntimeError(f"Duplicate router prefix registered: {normalized_prefix}")
        seen_prefixes.add(normalized_prefix)


def register_lifecycle_routes(
    app: FastAPI,
    *,
    app_name: str,
    version: str,
) -> None:
    """Register lifecycle and health endpoints."""

    @app.get("/", tags=["Lifecycle"])
    async def root() -> dict[str, str]:
        """Root endpoint for basic reachability."""
        return {"status": "ok", "app": app_name, "version": version}

    @app.get("/health/live", tags=["Lifecycle"])
    async def liveness_check() -> dict[str, str]:
        """Fast liveness check without dependencies."""
        return {"status": "healthy"}

    @app.get("/health", tags=["Lifecycle"])
    async def readiness_check(request: Request) -> Any:
        """Database reachability for load balancers."""
        database = await health_check(get_db_runtime(request))
        if database["status"] == "down":
            return JSONResponse(
                status_code=503,
                content={"status": "unhealthy", "database": database},
            )
        return {"status": "healthy", "database": database}


def register_api_routers(app: FastAPI, *, scim_base_path: str) -> None:
    """Register API route modules in one place to keep app entrypoint focused."""
    from provisioner.modules.provisioning.api.v1.scim import router as scim_router

    routes: list[tuple[Any, str]] = [
        (scim_router, scim_base_path),
    ]

    _validate_router_registry(routes)

    for router, prefix in routes:
        app.include_router(router, prefix=prefix)
