from __future__ import annotations

from typing import Any, Sequence
from uuid import UUID, uuid4

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from provisioner.modules.provisioning.api.v1.scim_models import (
    ScimGroupPayload,
    ScimListResponse,
    ScimPatchOperation,
    ScimUserPayload,
)
from provisioner.shared.core.config import Settings

from .documents import (
    group_fields,
    parse_resource_id,
    render_document,
    render_group,
    user_fields,
)
from .errors import ScimNotFoundError, ScimValidationError, UnsupportedFilterError
from .filtering import parse_scim_filter
from .membership import MembershipSynchronizer
from .patch import apply_group_patch, apply_user_patch, compile_group_patch, compile_user_patch
from .replace import replace_group, replace_user
from .store import GroupStore, ResourceStore, UserStore, clamp_page, unit_of_work

logger = structlog.get_logger()


class ScimProvisioningService:
    """
    Operations behind the SCIM Users/Groups endpoints.

    One instance serves one request: all writes of a call share the injected
    session and are committed or rolled back together.
    """

    def __init__(self, db: AsyncSession, settings: Settings) -> None:
        self.db = db
        self.settings = settings
        self.base_path = settings.SCIM_BASE_PATH
        store_options = {
            "default_page_size": settings.SCIM_DEFAULT_PAGE_SIZE,
            "max_results": settings.SCIM_MAX_RESULTS,
        }
        self.users = UserStore(db, **store_options)
        self.groups = GroupStore(db, **store_options)
        self.membership = MembershipSynchronizer(db)

    async def _list_rows(
        self,
        store: ResourceStore[Any],
        filter_expression: str | None,
        start_index: int | None,
        count: int | None,
    ) -> tuple[Sequence[Any], int]:
        try:
            scim_filter = parse_scim_filter(filter_expression)
            return await store.list(scim_filter, start_index, count)
        except UnsupportedFilterError as exc:
            if self.settings.SCIM_STRICT_FILTERS:
                raise ScimValidationError(str(exc), scim_type="invalidFilter") from exc
            logger.warning(
                "scim_filter_unsupported",
                resource_type=store.resource_type,
                filter=filter_expression,
                reason=str(exc),
            )
            return await store.list(None, start_index, count)

    def _list_response(
        self,
        resources: list[dict[str, Any]],
        total: int,
        start_index: int | None,
        count: int | None,
    ) -> dict[str, Any]:
        resolved_start, _ = clamp_page(
            start_index,
            count,
            default_page_size=self.settings.SCIM_DEFAULT_PAGE_SIZE,
            max_results=self.settings.SCIM_MAX_RESULTS,
        )
        return ScimListResponse(
            totalResults=total,
            startIndex=resolved_start,
            itemsPerPage=len(resources),
            Resources=resources,
        ).model_dump()

    async def _render_group(self, group_id: UUID) -> dict[str, Any]:
        row = await self.groups.get(group_id)
        if row is None:
            raise ScimNotFoundError()
        members = await self.membership.materialize(group_id)
        return render_group(row.document, members, base_path=self.base_path)

    # Users

    async def list_users(
        self,
        *,
        filter_expression: str | None = None,
        start_index: int | None = None,
        count: int | None = None,
    ) -> dict[str, Any]:
        rows, total = await self._list_rows(self.users, filter_expression, start_index, count)
        resources = [render_document(row.document, base_path=self.base_path) for row in rows]
        return self._list_response(resources, total, start_index, count)

    async def get_user(self, user_id: str | UUID) -> dict[str, Any]:
        row = await self.users.get(parse_resource_id(user_id))
        if row is None:
            raise ScimNotFoundError()
        return render_document(row.document, base_path=self.base_path)

    async def create_user(self, payload: ScimUserPayload) -> dict[str, Any]:
        async with unit_of_work(
            self.db, operation="create_user", conflict_detail="userName already exists"
        ):
            row = await self.users.create(uuid4(), user_fields(payload))
        logger.info("scim_user_created", user_id=str(row.id))
        return render_document(row.document, base_path=self.base_path)

    async def replace_user(self, user_id: str | UUID, payload: ScimUserPayload) -> dict[str, Any]:
        parsed_id = parse_resource_id(user_id)
        async with unit_of_work(
            self.db, operation="replace_user", conflict_detail="userName already exists"
        ):
            await replace_user(self.users, parsed_id, payload)
        logger.info("scim_user_replaced", user_id=str(parsed_id))
        return await self.get_user(parsed_id)

    async def patch_user(
        self, user_id: str | UUID, operations: Sequence[ScimPatchOperation]
    ) -> None:
        parsed_id = parse_resource_id(user_id)
        steps = compile_user_patch(
            operations,
            ignore_unsupported=self.settings.SCIM_PATCH_IGNORE_UNSUPPORTED,
        )
        async with unit_of_work(
            self.db, operation="patch_user", conflict_detail="userName already exists"
        ):
            await apply_user_patch(self.users, parsed_id, steps)
        logger.info("scim_user_patched", user_id=str(parsed_id), steps=len(steps))

    async def delete_user(self, user_id: str | UUID) -> None:
        parsed_id = parse_resource_id(user_id)
        async with unit_of_work(self.db, operation="delete_user"):
            if await self.users.delete(parsed_id) == 0:
                raise ScimNotFoundError()
        logger.info("scim_user_deleted", user_id=str(parsed_id))

    # Groups

    async def list_groups(
        self,
        *,
        filter_expression: str | None = None,
        start_index: int | None = None,
        count: int | None = None,
    ) -> dict[str, Any]:
        rows, total = await self._list_rows(self.groups, filter_expression, start_index, count)
        members = await self.membership.materialize_many([row.id for row in rows])
        resources = [
            render_group(row.document, members.get(row.id, []), base_path=self.base_path)
            for row in rows
        ]
        return self._list_response(resources, total, start_index, count)

    async def get_group(self, group_id: str | UUID) -> dict[str, Any]:
        return await self._render_group(parse_resource_id(group_id))

    async def create_group(self, payload: ScimGroupPayload) -> dict[str, Any]:
        if payload.members:
            logger.info("scim_group_create_members_ignored", member_count=len(payload.members))
        async with unit_of_work(
            self.db, operation="create_group", conflict_detail="displayName already exists"
        ):
            row = await self.groups.create(uuid4(), group_fields(payload))
        logger.info("scim_group_created", group_id=str(row.id))
        return render_group(row.document, [], base_path=self.base_path)

    async def replace_group(
        self, group_id: str | UUID, payload: ScimGroupPayload
    ) -> dict[str, Any]:
        parsed_id = parse_resource_id(group_id)
        async with unit_of_work(
            self.db, operation="replace_group", conflict_detail="displayName already exists"
        ):
            await replace_group(self.groups, self.membership, parsed_id, payload)
        logger.info("scim_group_replaced", group_id=str(parsed_id))
        return await self._render_group(parsed_id)

    async def patch_group(
        self, group_id: str | UUID, operations: Sequence[ScimPatchOperation]
    ) -> None:
        parsed_id = parse_resource_id(group_id)
        steps = compile_group_patch(
            operations,
            ignore_unsupported=self.settings.SCIM_PATCH_IGNORE_UNSUPPORTED,
        )
        async with unit_of_work(
            self.db, operation="patch_group", conflict_detail="displayName already exists"
        ):
            await apply_group_patch(self.groups, self.membership, parsed_id, steps)
        logger.info("scim_group_patched", group_id=str(parsed_id), steps=len(steps))

    async def delete_group(self, group_id: str | UUID) -> None:
        parsed_id = parse_resource_id(group_id)
        async with unit_of_work(self.db, operation="delete_group"):
            if await self.groups.delete(parsed_id) == 0:
                raise ScimNotFoundError()
        logger.info("scim_group_deleted", group_id=str(parsed_id))
