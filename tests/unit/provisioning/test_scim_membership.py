import uuid

import pytest
from sqlalchemy import func, select

from provisioner.models.scim import ScimGroupMember
from provisioner.modules.provisioning.domain.errors import ScimValidationError
from provisioner.modules.provisioning.domain.membership import MembershipSynchronizer
from provisioner.modules.provisioning.domain.store import (
    GroupStore,
    UserStore,
    unit_of_work,
)


async def _create_user(db, user_name: str) -> uuid.UUID:
    user_id = uuid.uuid4()
    await UserStore(db).create(
        user_id, {"userName": user_name, "name": {}, "emails": [], "active": True}
    )
    return user_id


async def _create_group(db, display_name: str = "Engineering") -> uuid.UUID:
    group_id = uuid.uuid4()
    await GroupStore(db).create(group_id, {"displayName": display_name})
    return group_id


async def _edge_count(db, group_id: uuid.UUID) -> int:
    result = await db.execute(
        select(func.count())
        .select_from(ScimGroupMember)
        .where(ScimGroupMember.group_id == group_id)
    )
    return int(result.scalar_one())


@pytest.mark.asyncio
async def test_add_members_is_idempotent(db):
    group_id = await _create_group(db)
    user_id = await _create_user(db, "alice")
    membership = MembershipSynchronizer(db)

    await membership.add_members(group_id, [user_id])
    await membership.add_members(group_id, [user_id, user_id])
    await db.commit()

    assert await _edge_count(db, group_id) == 1


@pytest.mark.asyncio
async def test_remove_absent_member_is_a_noop(db):
    group_id = await _create_group(db)
    member = await _create_user(db, "alice")
    stranger = await _create_user(db, "bob")
    membership = MembershipSynchronizer(db)
    await membership.add_members(group_id, [member])

    await membership.remove_member(group_id, stranger)
    await membership.remove_member(group_id, uuid.uuid4())
    await db.commit()

    assert await membership.materialize(group_id) == [
        {"value": str(member), "display": "alice"}
    ]


@pytest.mark.asyncio
async def test_materialize_orders_members_by_user_id(db):
    group_id = await _create_group(db)
    user_ids = [await _create_user(db, f"user{index}") for index in range(6)]
    membership = MembershipSynchronizer(db)
    await membership.add_members(group_id, list(reversed(user_ids)))
    await db.commit()

    members = await membership.materialize(group_id)

    assert [member["value"] for member in members] == sorted(str(u) for u in user_ids)


@pytest.mark.asyncio
async def test_materialize_many_groups_members_per_group(db):
    first = await _create_group(db, "First")
    second = await _create_group(db, "Second")
    empty = await _create_group(db, "Empty")
    alice = await _create_user(db, "alice")
    bob = await _create_user(db, "bob")
    membership = MembershipSynchronizer(db)
    await membership.add_members(first, [alice, bob])
    await membership.add_members(second, [bob])
    await db.commit()

    members = await membership.materialize_many([first, second, empty])

    assert {m["display"] for m in members[first]} == {"alice", "bob"}
    assert members[second] == [{"value": str(bob), "display": "bob"}]
    assert members.get(empty, []) == []


@pytest.mark.asyncio
async def test_unknown_user_is_a_validation_error(db):
    group_id = await _create_group(db)
    known = await _create_user(db, "alice")
    await db.commit()
    membership = MembershipSynchronizer(db)

    with pytest.raises(ScimValidationError) as exc:
        async with unit_of_work(db, operation="test_add_members"):
            await membership.add_members(group_id, [known, uuid.uuid4()])

    assert exc.value.scim_type == "invalidValue"
    assert await _edge_count(db, group_id) == 0


@pytest.mark.asyncio
async def test_replace_members_swaps_the_whole_set(db):
    group_id = await _create_group(db)
    a, b, c = [await _create_user(db, name) for name in ("a", "b", "c")]
    membership = MembershipSynchronizer(db)
    await membership.add_members(group_id, [a, b])
    await db.commit()

    await membership.replace_members(group_id, [c])
    await db.commit()

    assert [m["value"] for m in await membership.materialize(group_id)] == [str(c)]


@pytest.mark.asyncio
async def test_replace_members_is_invisible_to_other_sessions_until_commit(
    db, session_maker
):
    group_id = await _create_group(db)
    a, b, c = [await _create_user(db, name) for name in ("a", "b", "c")]
    membership = MembershipSynchronizer(db)
    await membership.add_members(group_id, [a, b])
    await db.commit()

    await membership.replace_members(group_id, [c])

    async with session_maker() as reader:
        observed = {
            m["value"] for m in await MembershipSynchronizer(reader).materialize(group_id)
        }
    assert observed == {str(a), str(b)}

    await db.commit()

    async with session_maker() as reader:
        observed = {
            m["value"] for m in await MembershipSynchronizer(reader).materialize(group_id)
        }
    assert observed == {str(c)}


@pytest.mark.asyncio
async def test_deleting_a_user_cascades_its_memberships(db):
    group_id = await _create_group(db)
    user_id = await _create_user(db, "alice")
    await MembershipSynchronizer(db).add_members(group_id, [user_id])
    await db.commit()

    assert await UserStore(db).delete(user_id) == 1
    await db.commit()

    assert await _edge_count(db, group_id) == 0
