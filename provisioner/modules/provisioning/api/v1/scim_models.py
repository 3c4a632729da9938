from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .scim_schemas import SCIM_LIST_SCHEMA

# Attributes owned by the server; ignored when a client echoes them back.
SERVER_OWNED_ATTRIBUTES = frozenset({"id", "meta"})

# Width of the userName / displayName columns.
IDENTITY_MAX_LENGTH = 255


class ScimListResponse(BaseModel):
    schemas: list[str] = Field(default_factory=lambda: [SCIM_LIST_SCHEMA])
    totalResults: int
    startIndex: int
    itemsPerPage: int
    Resources: list[dict[str, Any]]

    model_config = ConfigDict(extra="forbid")


class ScimMemberRef(BaseModel):
    value: str | None = None
    display: str | None = None

    model_config = ConfigDict(extra="ignore")


class _ScimResourcePayload(BaseModel):
    """Closed attribute set per kind; anything else lands in `model_extra`."""

    schemas: list[str] | None = None
    externalId: str | None = Field(default=None, max_length=255)

    model_config = ConfigDict(extra="allow")

    def extension_attributes(self) -> dict[str, Any]:
        extra = self.model_extra or {}
        return {
            key: value
            for key, value in extra.items()
            if key not in SERVER_OWNED_ATTRIBUTES
        }


class ScimUserPayload(_ScimResourcePayload):
    userName: str = Field(min_length=1, max_length=IDENTITY_MAX_LENGTH)
    name: dict[str, Any] = Field(default_factory=dict)
    emails: list[dict[str, Any]] = Field(default_factory=list)
    active: bool = True

    @field_validator("userName")
    @classmethod
    def _user_name_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("userName must not be blank")
        return value


class ScimGroupPayload(_ScimResourcePayload):
    displayName: str = Field(min_length=1, max_length=IDENTITY_MAX_LENGTH)
    members: list[ScimMemberRef] | None = None

    @field_validator("displayName")
    @classmethod
    def _display_name_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("displayName must not be blank")
        return value


class ScimPatchOperation(BaseModel):
    op: str = Field(min_length=1)
    path: str | None = None
    value: Any | None = None

    model_config = ConfigDict(extra="ignore")

    @field_validator("op")
    @classmethod
    def _normalize_op(cls, value: str) -> str:
        return value.strip().lower()


class ScimPatchRequest(BaseModel):
    schemas: list[str] | None = None
    Operations: list[ScimPatchOperation] = Field(min_length=1)

    model_config = ConfigDict(extra="ignore")
