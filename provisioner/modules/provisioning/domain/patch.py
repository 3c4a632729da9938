"""
SCIM PATCH interpretation.

Compiling turns the request's operations into typed steps without touching the
store, so a request with any malformed or unsupported operation is rejected
before the first write. Applying runs the steps in order inside the caller's
transaction.

Supported operations:

    Group  add      members                     -> AddMembers
    Group  remove   members[value eq "<id>"]    -> RemoveMember
    Group  replace  displayName                 -> ReplaceAttribute
    User   replace  active                      -> ReplaceAttribute

Other (op, path) pairs raise `ScimValidationError(scimType=invalidPath)`, or
are skipped with a warning when `ignore_unsupported` is set.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Optional, Sequence, Union
from uuid import UUID

import structlog

from provisioner.modules.provisioning.api.v1.scim_models import (
    IDENTITY_MAX_LENGTH,
    ScimPatchOperation,
)

from .documents import parse_member_id
from .errors import PathSyntaxError, ScimNotFoundError, ScimValidationError
from .membership import MembershipSynchronizer
from .patch_path import AttributePath, FilteredPath, PatchPath, parse_patch_path
from .store import GroupStore, ResourceStore, UserStore

logger = structlog.get_logger()


@dataclass(frozen=True, slots=True)
class AddMembers:
    user_ids: tuple[UUID, ...]


@dataclass(frozen=True, slots=True)
class RemoveMember:
    # None when the filter value is not a user id; matches no edge.
    user_id: Optional[UUID]


@dataclass(frozen=True, slots=True)
class ReplaceAttribute:
    attribute: str
    value: Any


PatchStep = Union[AddMembers, RemoveMember, ReplaceAttribute]

_Compiler = Callable[[PatchPath, Any], PatchStep]


def _is_attribute(path: PatchPath, name: str) -> bool:
    return isinstance(path, AttributePath) and path.attribute.lower() == name.lower()


def _compile_add_members(_path: PatchPath, value: Any) -> PatchStep:
    items = [value] if isinstance(value, dict) else value
    if not isinstance(items, list):
        raise ScimValidationError("members value must be a list of {value} objects")
    user_ids: list[UUID] = []
    for item in items:
        if not isinstance(item, dict) or "value" not in item:
            raise ScimValidationError("members value must be a list of {value} objects")
        user_id = parse_member_id(item["value"])
        if user_id not in user_ids:
            user_ids.append(user_id)
    return AddMembers(user_ids=tuple(user_ids))


def _compile_remove_member(path: PatchPath, _value: Any) -> PatchStep:
    if not isinstance(path, FilteredPath):
        raise ScimValidationError("remove requires a members filter", scim_type="noTarget")
    try:
        return RemoveMember(user_id=parse_member_id(path.predicate.value))
    except ScimValidationError:
        return RemoveMember(user_id=None)


def _compile_display_name(_path: PatchPath, value: Any) -> PatchStep:
    if not isinstance(value, str) or not value.strip():
        raise ScimValidationError("displayName must be a non-empty string")
    if len(value) > IDENTITY_MAX_LENGTH:
        raise ScimValidationError(
            f"displayName must be at most {IDENTITY_MAX_LENGTH} characters"
        )
    return ReplaceAttribute(attribute="displayName", value=value)


def _coerce_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in {"true", "false"}:
        return value.strip().lower() == "true"
    raise ScimValidationError("active must be a boolean")


def _compile_active(_path: PatchPath, value: Any) -> PatchStep:
    return ReplaceAttribute(attribute="active", value=_coerce_bool(value))


def _group_compiler(op: str, path: PatchPath) -> Optional[_Compiler]:
    if op == "add" and _is_attribute(path, "members"):
        return _compile_add_members
    if (
        op == "remove"
        and isinstance(path, FilteredPath)
        and path.attribute.lower() == "members"
        and path.predicate.attribute.lower() == "value"
    ):
        return _compile_remove_member
    if op == "replace" and _is_attribute(path, "displayName"):
        return _compile_display_name
    return None


def _user_compiler(op: str, path: PatchPath) -> Optional[_Compiler]:
    if op == "replace" and _is_attribute(path, "active"):
        return _compile_active
    return None


def _compile(
    resource_type: str,
    operations: Sequence[ScimPatchOperation],
    resolve: Callable[[str, PatchPath], Optional[_Compiler]],
    *,
    ignore_unsupported: bool,
) -> list[PatchStep]:
    steps: list[PatchStep] = []
    for index, operation in enumerate(operations):
        compiler: Optional[_Compiler] = None
        path: Optional[PatchPath] = None
        if operation.path is not None:
            try:
                path = parse_patch_path(operation.path)
            except PathSyntaxError as exc:
                raise ScimValidationError(str(exc), scim_type="invalidPath") from exc
            compiler = resolve(operation.op, path)

        if compiler is None or path is None:
            if ignore_unsupported:
                logger.warning(
                    "scim_patch_operation_ignored",
                    resource_type=resource_type,
                    operation_index=index,
                    op=operation.op,
                    path=operation.path,
                )
                continue
            raise ScimValidationError(
                f"Unsupported PATCH operation: {operation.op} {operation.path or '(no path)'}",
                scim_type="invalidPath",
            )
        steps.append(compiler(path, operation.value))
    return steps


def compile_group_patch(
    operations: Sequence[ScimPatchOperation], *, ignore_unsupported: bool = False
) -> list[PatchStep]:
    return _compile("Group", operations, _group_compiler, ignore_unsupported=ignore_unsupported)


def compile_user_patch(
    operations: Sequence[ScimPatchOperation], *, ignore_unsupported: bool = False
) -> list[PatchStep]:
    return _compile("User", operations, _user_compiler, ignore_unsupported=ignore_unsupported)


async def _apply(
    store: ResourceStore[Any],
    membership: Optional[MembershipSynchronizer],
    resource_id: UUID,
    steps: Sequence[PatchStep],
) -> None:
    if await store.get(resource_id) is None:
        raise ScimNotFoundError()

    for step in steps:
        if isinstance(step, ReplaceAttribute):
            await store.update_attribute(resource_id, step.attribute, step.value)
        elif membership is None:
            raise TypeError(f"{type(step).__name__} requires a membership synchronizer")
        elif isinstance(step, AddMembers):
            await membership.add_members(resource_id, step.user_ids)
        elif step.user_id is not None:
            await membership.remove_member(resource_id, step.user_id)

    if steps:
        await store.touch(resource_id)


async def apply_group_patch(
    groups: GroupStore,
    membership: MembershipSynchronizer,
    group_id: UUID,
    steps: Sequence[PatchStep],
) -> None:
    await _apply(groups, membership, group_id, steps)


async def apply_user_patch(
    users: UserStore,
    user_id: UUID,
    steps: Sequence[PatchStep],
) -> None:
    await _apply(users, None, user_id, steps)
