"""
Canonical SCIM documents.

A stored document holds the closed attribute set of its kind plus an
`extensions` map for any attribute the client sent that the schema does not
declare. Rendering merges the extensions back without letting them shadow a
core attribute, and adds the derived parts (`meta.location`, Group `members`).
"""

from __future__ import annotations

import copy
from datetime import datetime, timezone
from typing import Any, Iterable
from uuid import UUID

from provisioner.modules.provisioning.api.v1.scim_models import (
    ScimGroupPayload,
    ScimMemberRef,
    ScimUserPayload,
)
from provisioner.modules.provisioning.api.v1.scim_schemas import (
    SCIM_GROUP_SCHEMA,
    SCIM_USER_SCHEMA,
)

from .errors import ScimNotFoundError, ScimValidationError

EXTENSIONS_KEY = "extensions"
RESOURCE_TYPE_USER = "User"
RESOURCE_TYPE_GROUP = "Group"

_ENDPOINTS = {RESOURCE_TYPE_USER: "Users", RESOURCE_TYPE_GROUP: "Groups"}


def utcnow_iso() -> str:
    return (
        datetime.now(timezone.utc)
        .isoformat(timespec="milliseconds")
        .replace("+00:00", "Z")
    )


def next_last_modified(previous: str | None) -> str:
    """A fresh timestamp that never sorts before `previous`."""
    now = utcnow_iso()
    if previous and previous > now:
        return previous
    return now


def normalize_identity(value: str) -> str:
    return value.strip().lower()


def parse_resource_id(raw: str | UUID) -> UUID:
    """Path ids that are not UUIDs cannot name a live resource."""
    if isinstance(raw, UUID):
        return raw
    try:
        return UUID(str(raw))
    except ValueError as exc:
        raise ScimNotFoundError() from exc


def parse_member_id(raw: Any) -> UUID:
    if not isinstance(raw, str) or not raw.strip():
        raise ScimValidationError("Member value must be a user id string")
    try:
        return UUID(raw.strip())
    except ValueError as exc:
        raise ScimValidationError(f"Invalid member value: {raw!r}") from exc


def member_ids_from_refs(members: Iterable[ScimMemberRef] | None) -> list[UUID]:
    """Ordered, de-duplicated user ids; refs without a value are skipped."""
    ids: list[UUID] = []
    for ref in members or []:
        if ref.value is None:
            continue
        member_id = parse_member_id(ref.value)
        if member_id not in ids:
            ids.append(member_id)
    return ids


def _drop_none(fields: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in fields.items() if value is not None}


def user_fields(payload: ScimUserPayload) -> dict[str, Any]:
    return _drop_none(
        {
            "schemas": payload.schemas,
            "userName": payload.userName,
            "externalId": payload.externalId,
            "name": payload.name,
            "emails": payload.emails,
            "active": payload.active,
            EXTENSIONS_KEY: payload.extension_attributes(),
        }
    )


def group_fields(payload: ScimGroupPayload) -> dict[str, Any]:
    return _drop_none(
        {
            "schemas": payload.schemas,
            "displayName": payload.displayName,
            "externalId": payload.externalId,
            EXTENSIONS_KEY: payload.extension_attributes(),
        }
    )


def default_schemas(resource_type: str) -> list[str]:
    if resource_type == RESOURCE_TYPE_USER:
        return [SCIM_USER_SCHEMA]
    return [SCIM_GROUP_SCHEMA]


def new_document(resource_type: str, resource_id: UUID, fields: dict[str, Any]) -> dict[str, Any]:
    document = copy.deepcopy(fields)
    document.setdefault("schemas", default_schemas(resource_type))
    document["id"] = str(resource_id)
    document["meta"] = {"resourceType": resource_type}
    return document


def replaced_document(existing: dict[str, Any], fields: dict[str, Any]) -> dict[str, Any]:
    """Full replacement: keeps `id`, `meta.created` and absent `schemas`."""
    document = copy.deepcopy(fields)
    document.setdefault("schemas", copy.deepcopy(existing.get("schemas")))
    document["id"] = existing["id"]
    document["meta"] = copy.deepcopy(existing.get("meta") or {})
    return document


def resource_location(base_path: str, resource_type: str, resource_id: str) -> str:
    return f"{base_path}/{_ENDPOINTS[resource_type]}/{resource_id}"


def render_document(document: dict[str, Any], *, base_path: str) -> dict[str, Any]:
    rendered = copy.deepcopy(document)
    extensions = rendered.pop(EXTENSIONS_KEY, None) or {}
    for key, value in extensions.items():
        rendered.setdefault(key, value)
    meta = dict(rendered.get("meta") or {})
    resource_type = meta.get("resourceType", RESOURCE_TYPE_USER)
    meta["location"] = resource_location(base_path, resource_type, rendered["id"])
    rendered["meta"] = meta
    return rendered


def render_group(
    document: dict[str, Any],
    members: list[dict[str, str]],
    *,
    base_path: str,
) -> dict[str, Any]:
    rendered = render_document(document, base_path=base_path)
    rendered["members"] = members
    return rendered
