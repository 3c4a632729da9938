import uuid
from unittest.mock import patch

import pytest

from provisioner.modules.provisioning.api.v1.scim_models import (
    IDENTITY_MAX_LENGTH,
    ScimGroupPayload,
    ScimPatchOperation,
    ScimUserPayload,
)
from provisioner.modules.provisioning.domain.errors import (
    ScimConflictError,
    ScimNotFoundError,
    ScimValidationError,
)
from provisioner.modules.provisioning.domain.patch import (
    AddMembers,
    RemoveMember,
    ReplaceAttribute,
    compile_group_patch,
    compile_user_patch,
)
from provisioner.modules.provisioning.domain.service import ScimProvisioningService


def _op(op: str, path: str | None = None, value=None) -> ScimPatchOperation:
    return ScimPatchOperation(op=op, path=path, value=value)


@pytest.fixture
def service_factory(settings):
    def _build(db, **overrides):
        return ScimProvisioningService(db, settings.model_copy(update=overrides))

    return _build


# ---------------------------------------------------------------------------
# Compile phase
# ---------------------------------------------------------------------------


def test_compile_group_operations_in_order():
    first, second = uuid.uuid4(), uuid.uuid4()
    steps = compile_group_patch(
        [
            _op("Add", "members", [{"value": str(first)}, {"value": str(second)}]),
            _op("remove", f'members[value eq "{first}"]'),
            _op("REPLACE", "displayName", "Renamed"),
        ]
    )
    assert steps == [
        AddMembers(user_ids=(first, second)),
        RemoveMember(user_id=first),
        ReplaceAttribute(attribute="displayName", value="Renamed"),
    ]


def test_add_members_accepts_a_single_object():
    member = uuid.uuid4()
    steps = compile_group_patch([_op("add", "members", {"value": str(member)})])
    assert steps == [AddMembers(user_ids=(member,))]


@pytest.mark.parametrize(
    "value", [None, "abc", [{"display": "no value"}], [{"value": "not-a-uuid"}], [42]]
)
def test_add_members_rejects_bad_values(value):
    with pytest.raises(ScimValidationError) as exc:
        compile_group_patch([_op("add", "members", value)])
    assert exc.value.scim_type == "invalidValue"


@pytest.mark.parametrize("value", [True, "true", "TRUE", False, "false", " False "])
def test_user_active_accepts_booleans_and_boolean_strings(value):
    steps = compile_user_patch([_op("replace", "active", value)])
    expected = value if isinstance(value, bool) else value.strip().lower() == "true"
    assert steps == [ReplaceAttribute(attribute="active", value=expected)]


@pytest.mark.parametrize("value", [None, "yes", 1, []])
def test_user_active_rejects_non_booleans(value):
    with pytest.raises(ScimValidationError):
        compile_user_patch([_op("replace", "active", value)])


def test_blank_display_name_is_rejected():
    with pytest.raises(ScimValidationError):
        compile_group_patch([_op("replace", "displayName", "  ")])


def test_display_name_length_matches_create_limit():
    steps = compile_group_patch([_op("replace", "displayName", "x" * IDENTITY_MAX_LENGTH)])
    assert steps == [ReplaceAttribute(attribute="displayName", value="x" * IDENTITY_MAX_LENGTH)]

    with pytest.raises(ScimValidationError) as exc:
        compile_group_patch([_op("replace", "displayName", "x" * (IDENTITY_MAX_LENGTH + 1))])
    assert exc.value.scim_type == "invalidValue"


@pytest.mark.parametrize("value", ["abc", "123", "not-a-uuid"])
def test_remove_member_with_non_uuid_value_matches_nothing(value):
    steps = compile_group_patch([_op("remove", f'members[value eq "{value}"]')])
    assert steps == [RemoveMember(user_id=None)]


@pytest.mark.parametrize(
    ("compile_fn", "operation"),
    [
        (compile_group_patch, _op("replace", "members", [])),
        (compile_group_patch, _op("remove", "members")),
        (compile_group_patch, _op("add", "externalId", "x")),
        (compile_group_patch, _op("replace", None, {"displayName": "x"})),
        (compile_group_patch, _op("move", "displayName", "x")),
        (compile_user_patch, _op("replace", "userName", "x")),
        (compile_user_patch, _op("add", "active", True)),
        (compile_user_patch, _op("replace", "name.givenName", "x")),
    ],
)
def test_unsupported_operations_are_rejected_by_default(compile_fn, operation):
    with pytest.raises(ScimValidationError) as exc:
        compile_fn([operation])
    assert exc.value.status_code == 400
    assert exc.value.scim_type == "invalidPath"


def test_unsupported_operations_are_skipped_in_lenient_mode():
    with patch("provisioner.modules.provisioning.domain.patch.logger") as logger:
        steps = compile_user_patch(
            [_op("replace", "userName", "x"), _op("replace", "active", False)],
            ignore_unsupported=True,
        )
    assert steps == [ReplaceAttribute(attribute="active", value=False)]
    logger.warning.assert_called_once()
    assert logger.warning.call_args.args[0] == "scim_patch_operation_ignored"


def test_malformed_path_is_rejected_even_in_lenient_mode():
    with pytest.raises(ScimValidationError) as exc:
        compile_group_patch(
            [_op("remove", 'members[value eq "abc"')], ignore_unsupported=True
        )
    assert exc.value.scim_type == "invalidPath"


# ---------------------------------------------------------------------------
# Apply phase (through the service, one transaction per request)
# ---------------------------------------------------------------------------


async def _seed_group(service, *user_names):
    users = [
        await service.create_user(ScimUserPayload(userName=name)) for name in user_names
    ]
    group = await service.create_group(ScimGroupPayload(displayName="Engineering"))
    return group, users


@pytest.mark.asyncio
async def test_patch_group_adds_and_removes_members(db, service_factory):
    service = service_factory(db)
    group, (alice, bob) = await _seed_group(service, "alice", "bob")

    await service.patch_group(
        group["id"],
        [_op("add", "members", [{"value": alice["id"]}, {"value": bob["id"]}])],
    )
    await service.patch_group(
        group["id"],
        [
            _op("add", "members", [{"value": alice["id"]}]),
            _op("remove", f'members[value eq "{bob["id"]}"]'),
        ],
    )

    current = await service.get_group(group["id"])
    assert current["members"] == [{"value": alice["id"], "display": "alice"}]


@pytest.mark.asyncio
async def test_membership_only_patch_refreshes_last_modified(db, service_factory):
    service = service_factory(db)
    group, (alice,) = await _seed_group(service, "alice")
    before = group["meta"]["lastModified"]

    await service.patch_group(group["id"], [_op("add", "members", [{"value": alice["id"]}])])

    current = await service.get_group(group["id"])
    assert current["meta"]["lastModified"] >= before
    assert current["meta"]["created"] == group["meta"]["created"]


@pytest.mark.asyncio
async def test_failed_operation_rolls_back_the_whole_request(db, service_factory):
    service = service_factory(db)
    group, (alice,) = await _seed_group(service, "alice")
    await service.patch_group(group["id"], [_op("add", "members", [{"value": alice["id"]}])])
    before = await service.get_group(group["id"])

    with pytest.raises(ScimValidationError):
        await service.patch_group(
            group["id"],
            [
                _op("replace", "displayName", "Renamed"),
                _op("remove", f'members[value eq "{alice["id"]}"]'),
                _op("add", "members", [{"value": str(uuid.uuid4())}]),
            ],
        )

    after = await service.get_group(group["id"])
    assert after == before


@pytest.mark.asyncio
async def test_rename_to_existing_display_name_conflicts(db, service_factory):
    service = service_factory(db)
    await service.create_group(ScimGroupPayload(displayName="Admins"))
    group = await service.create_group(ScimGroupPayload(displayName="Engineering"))

    with pytest.raises(ScimConflictError):
        await service.patch_group(group["id"], [_op("replace", "displayName", "admins")])

    assert (await service.get_group(group["id"]))["displayName"] == "Engineering"


@pytest.mark.asyncio
async def test_patch_user_active(db, service_factory):
    service = service_factory(db)
    user = await service.create_user(ScimUserPayload(userName="dana"))

    await service.patch_user(user["id"], [_op("Replace", "active", "False")])

    current = await service.get_user(user["id"])
    assert current["active"] is False
    assert current["meta"]["lastModified"] >= user["meta"]["lastModified"]


@pytest.mark.asyncio
async def test_strict_mode_rejects_before_touching_the_store(db, service_factory):
    service = service_factory(db)
    user = await service.create_user(ScimUserPayload(userName="erin"))

    with pytest.raises(ScimValidationError):
        await service.patch_user(
            user["id"],
            [_op("replace", "active", False), _op("replace", "emails", [])],
        )

    assert (await service.get_user(user["id"]))["active"] is True


@pytest.mark.asyncio
async def test_lenient_mode_applies_supported_operations(db, service_factory):
    service = service_factory(db, SCIM_PATCH_IGNORE_UNSUPPORTED=True)
    user = await service.create_user(ScimUserPayload(userName="frank"))

    await service.patch_user(
        user["id"],
        [_op("replace", "emails", []), _op("replace", "active", False)],
    )

    assert (await service.get_user(user["id"]))["active"] is False


@pytest.mark.asyncio
async def test_patch_missing_resource_is_not_found(db, service_factory):
    service = service_factory(db)
    with pytest.raises(ScimNotFoundError):
        await service.patch_group(str(uuid.uuid4()), [_op("replace", "displayName", "x")])
    with pytest.raises(ScimNotFoundError):
        await service.patch_user("not-a-uuid", [_op("replace", "active", False)])
