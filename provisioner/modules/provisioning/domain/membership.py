from __future__ import annotations

from collections import defaultdict
from typing import Any, Iterable, Sequence
from uuid import UUID

import structlog
from sqlalchemy import delete, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from provisioner.models.scim import ScimGroupMember, ScimUser
from provisioner.shared.db.session import session_uses_postgresql

from .errors import ScimValidationError

logger = structlog.get_logger()


def _unique(user_ids: Iterable[UUID]) -> list[UUID]:
    seen: list[UUID] = []
    for user_id in user_ids:
        if user_id not in seen:
            seen.append(user_id)
    return seen


class MembershipSynchronizer:
    """
    Group membership edges, the only record of who is in a group.

    Writes join the caller's transaction; nothing here commits.
    """

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    def _insert(self) -> Any:
        if session_uses_postgresql(self.db):
            return pg_insert(ScimGroupMember)
        return sqlite_insert(ScimGroupMember)

    async def add_members(self, group_id: UUID, user_ids: Iterable[UUID]) -> None:
        """Idempotent: edges that already exist are left untouched."""
        ids = _unique(user_ids)
        if not ids:
            return
        stmt = (
            self._insert()
            .values([{"group_id": group_id, "user_id": user_id} for user_id in ids])
            .on_conflict_do_nothing(index_elements=["group_id", "user_id"])
        )
        try:
            await self.db.execute(stmt)
        except IntegrityError as exc:
            logger.info(
                "scim_membership_unknown_user",
                group_id=str(group_id),
                user_count=len(ids),
            )
            raise ScimValidationError(
                "One or more member values do not reference an existing user"
            ) from exc

    async def remove_member(self, group_id: UUID, user_id: UUID) -> None:
        await self.db.execute(
            delete(ScimGroupMember).where(
                ScimGroupMember.group_id == group_id,
                ScimGroupMember.user_id == user_id,
            )
        )

    async def replace_members(self, group_id: UUID, user_ids: Iterable[UUID]) -> None:
        await self.db.execute(
            delete(ScimGroupMember).where(ScimGroupMember.group_id == group_id)
        )
        await self.add_members(group_id, user_ids)

    async def materialize(self, group_id: UUID) -> list[dict[str, str]]:
        members = await self.materialize_many([group_id])
        return members.get(group_id, [])

    async def materialize_many(
        self, group_ids: Sequence[UUID]
    ) -> dict[UUID, list[dict[str, str]]]:
        """Members per group as `{value, display}`, ascending by user id."""
        members: dict[UUID, list[dict[str, str]]] = defaultdict(list)
        if not group_ids:
            return members
        result = await self.db.execute(
            select(ScimGroupMember.group_id, ScimUser.id, ScimUser.user_name)
            .join(ScimUser, ScimUser.id == ScimGroupMember.user_id)
            .where(ScimGroupMember.group_id.in_(list(group_ids)))
            .order_by(ScimGroupMember.group_id.asc(), ScimUser.id.asc())
        )
        for group_id, user_id, user_name in result.all():
            members[group_id].append({"value": str(user_id), "display": user_name})
        return members
