"""
SCIM 2.0 provisioning API.

- Static bearer-token auth (one token per deployment, constant-time compare)
- Users and Groups CRUD, PATCH and PUT
- Discovery documents (ServiceProviderConfig, Schemas, ResourceTypes)

Resource semantics live in `provisioner.modules.provisioning.domain`; handlers
here only translate HTTP to service calls.
"""

from __future__ import annotations

import hmac
from typing import Any

import structlog
from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from provisioner.modules.provisioning.domain.errors import (
    ScimError,
    ScimNotFoundError,
    ScimUnauthorizedError,
)
from provisioner.modules.provisioning.domain.service import ScimProvisioningService
from provisioner.shared.core.config import Settings, get_settings
from provisioner.shared.db.session import get_db

from .scim_models import ScimGroupPayload, ScimPatchRequest, ScimUserPayload
from .scim_schemas import (
    SCIM_ERROR_SCHEMA,
    SCIM_GROUP_SCHEMA,
    SCIM_LIST_SCHEMA,
    SCIM_USER_SCHEMA,
    resource_types_response,
    scim_group_schema_resource,
    scim_user_schema_resource,
    service_provider_config,
)

logger = structlog.get_logger()

SCIM_MEDIA_TYPE = "application/scim+json"


class ScimJSONResponse(JSONResponse):
    media_type = SCIM_MEDIA_TYPE


def scim_error_response(exc: ScimError) -> JSONResponse:
    payload: dict[str, Any] = {
        "schemas": [SCIM_ERROR_SCHEMA],
        "status": str(exc.status_code),
        "detail": exc.detail,
    }
    if exc.scim_type:
        payload["scimType"] = exc.scim_type
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
    return ScimJSONResponse(status_code=exc.status_code, content=payload, headers=headers)


def _extract_bearer_token(request: Request) -> str:
    raw = (request.headers.get("Authorization") or "").strip()
    if not raw.lower().startswith("bearer "):
        raise ScimUnauthorizedError(
            "Missing or invalid Authorization header", scim_type="invalidSyntax"
        )
    token = raw.split(" ", 1)[-1].strip()
    if not token:
        raise ScimUnauthorizedError("Missing bearer token", scim_type="invalidSyntax")
    return token


async def require_scim_token(
    request: Request, settings: Settings = Depends(get_settings)
) -> None:
    token = _extract_bearer_token(request)
    expected = settings.SCIM_BEARER_TOKEN or ""
    if not expected or not hmac.compare_digest(
        token.encode("utf-8"), expected.encode("utf-8")
    ):
        logger.warning("scim_auth_rejected", path=request.url.path)
        raise ScimUnauthorizedError("Unauthorized", scim_type="invalidToken")


def get_scim_service(
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> ScimProvisioningService:
    return ScimProvisioningService(db, settings)


router = APIRouter(
    tags=["SCIM"],
    dependencies=[Depends(require_scim_token)],
    default_response_class=ScimJSONResponse,
)


@router.get("/ServiceProviderConfig")
async def get_service_provider_config(
    settings: Settings = Depends(get_settings),
) -> ScimJSONResponse:
    return ScimJSONResponse(
        content=service_provider_config(
            base_path=settings.SCIM_BASE_PATH,
            max_results=settings.SCIM_MAX_RESULTS,
        )
    )


@router.get("/Schemas")
async def list_schemas(settings: Settings = Depends(get_settings)) -> ScimJSONResponse:
    resources = [
        scim_user_schema_resource(base_path=settings.SCIM_BASE_PATH),
        scim_group_schema_resource(base_path=settings.SCIM_BASE_PATH),
    ]
    return ScimJSONResponse(
        content={
            "schemas": [SCIM_LIST_SCHEMA],
            "totalResults": len(resources),
            "startIndex": 1,
            "itemsPerPage": len(resources),
            "Resources": resources,
        }
    )


@router.get("/Schemas/{schema_id:path}")
async def get_schema(
    schema_id: str, settings: Settings = Depends(get_settings)
) -> ScimJSONResponse:
    normalized = (schema_id or "").strip()
    if normalized == SCIM_USER_SCHEMA:
        return ScimJSONResponse(
            content=scim_user_schema_resource(base_path=settings.SCIM_BASE_PATH)
        )
    if normalized == SCIM_GROUP_SCHEMA:
        return ScimJSONResponse(
            content=scim_group_schema_resource(base_path=settings.SCIM_BASE_PATH)
        )
    raise ScimNotFoundError()


@router.get("/ResourceTypes")
async def get_resource_types(settings: Settings = Depends(get_settings)) -> ScimJSONResponse:
    return ScimJSONResponse(
        content=resource_types_response(base_path=settings.SCIM_BASE_PATH)
    )


@router.get("/Users")
async def list_users(
    startIndex: int | None = None,
    count: int | None = None,
    filter: str | None = None,
    service: ScimProvisioningService = Depends(get_scim_service),
) -> ScimJSONResponse:
    payload = await service.list_users(
        filter_expression=filter, start_index=startIndex, count=count
    )
    return ScimJSONResponse(content=payload)


@router.post("/Users")
async def create_user(
    body: ScimUserPayload,
    service: ScimProvisioningService = Depends(get_scim_service),
) -> ScimJSONResponse:
    resource = await service.create_user(body)
    return ScimJSONResponse(
        status_code=201,
        content=resource,
        headers={"Location": resource["meta"]["location"]},
    )


@router.get("/Users/{user_id}")
async def get_user(
    user_id: str,
    service: ScimProvisioningService = Depends(get_scim_service),
) -> ScimJSONResponse:
    return ScimJSONResponse(content=await service.get_user(user_id))


@router.put("/Users/{user_id}")
async def put_user(
    user_id: str,
    body: ScimUserPayload,
    service: ScimProvisioningService = Depends(get_scim_service),
) -> ScimJSONResponse:
    return ScimJSONResponse(content=await service.replace_user(user_id, body))


@router.patch("/Users/{user_id}")
async def patch_user(
    user_id: str,
    body: ScimPatchRequest,
    service: ScimProvisioningService = Depends(get_scim_service),
) -> Response:
    await service.patch_user(user_id, body.Operations)
    return Response(status_code=204)


@router.delete("/Users/{user_id}")
async def delete_user(
    user_id: str,
    service: ScimProvisioningService = Depends(get_scim_service),
) -> Response:
    await service.delete_user(user_id)
    return Response(status_code=204)


@router.get("/Groups")
async def list_groups(
    startIndex: int | None = None,
    count: int | None = None,
    filter: str | None = None,
    service: ScimProvisioningService = Depends(get_scim_service),
) -> ScimJSONResponse:
    payload = await service.list_groups(
        filter_expression=filter, start_index=startIndex, count=count
    )
    return ScimJSONResponse(content=payload)


@router.post("/Groups")
async def create_group(
    body: ScimGroupPayload,
    service: ScimProvisioningService = Depends(get_scim_service),
) -> ScimJSONResponse:
    resource = await service.create_group(body)
    return ScimJSONResponse(
        status_code=201,
        content=resource,
        headers={"Location": resource["meta"]["location"]},
    )


@router.get("/Groups/{group_id}")
async def get_group(
    group_id: str,
    service: ScimProvisioningService = Depends(get_scim_service),
) -> ScimJSONResponse:
    return ScimJSONResponse(content=await service.get_group(group_id))


@router.put("/Groups/{group_id}")
async def put_group(
    group_id: str,
    body: ScimGroupPayload,
    service: ScimProvisioningService = Depends(get_scim_service),
) -> ScimJSONResponse:
    return ScimJSONResponse(content=await service.replace_group(group_id, body))


@router.patch("/Groups/{group_id}")
async def patch_group(
    group_id: str,
    body: ScimPatchRequest,
    service: ScimProvisioningService = Depends(get_scim_service),
) -> Response:
    await service.patch_group(group_id, body.Operations)
    return Response(status_code=204)


@router.delete("/Groups/{group_id}")
async def delete_group(
    group_id: str,
    service: ScimProvisioningService = Depends(get_scim_service),
) -> Response:
    await service.delete_group(group_id)
    return Response(status_code=204)
