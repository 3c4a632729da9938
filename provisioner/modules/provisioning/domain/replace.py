"""
Full replacement (PUT).

PUT never creates: a missing id is a 404. The body's `id` is ignored and
`meta.created` survives. For groups the body's `members` is the complete
target set (absent means empty), written delete-then-insert in the caller's
transaction.
"""

from __future__ import annotations

from uuid import UUID

from provisioner.modules.provisioning.api.v1.scim_models import (
    ScimGroupPayload,
    ScimUserPayload,
)

from .documents import group_fields, member_ids_from_refs, user_fields
from .errors import ScimNotFoundError
from .membership import MembershipSynchronizer
from .store import GroupStore, UserStore


async def replace_user(users: UserStore, user_id: UUID, payload: ScimUserPayload) -> None:
    fields = user_fields(payload)
    if await users.replace_scalar_fields(user_id, fields) == 0:
        raise ScimNotFoundError()


async def replace_group(
    groups: GroupStore,
    membership: MembershipSynchronizer,
    group_id: UUID,
    payload: ScimGroupPayload,
) -> None:
    # Member ids are validated before the first write.
    target_members = member_ids_from_refs(payload.members)
    fields = group_fields(payload)
    if await groups.replace_scalar_fields(group_id, fields) == 0:
        raise ScimNotFoundError()
    await membership.replace_members(group_id, target_members)
