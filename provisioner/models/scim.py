"""
SCIM resource tables.

Design:
- The JSON `document` is the canonical SCIM representation of the resource.
- Scalar columns (`user_name`, `user_name_norm`, `active`, `display_name`,
  `display_name_norm`) are a shadow index derived from the document on every
  write. They exist for uniqueness, filtering and ordering only.
- Group membership lives in `scim_group_members` and is never stored inside
  the group document.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    String,
    func,
    Uuid as PG_UUID,
)
from sqlalchemy.orm import Mapped, mapped_column

from provisioner.shared.db.base import Base, JSONDocument


class ScimUser(Base):
    __tablename__ = "scim_users"

    id: Mapped[UUID] = mapped_column(PG_UUID(), primary_key=True, default=uuid4)
    user_name: Mapped[str] = mapped_column(String(length=255), nullable=False, index=True)
    user_name_norm: Mapped[str] = mapped_column(
        String(length=255), nullable=False, unique=True
    )
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    document: Mapped[dict[str, Any]] = mapped_column(JSONDocument, nullable=False)

    def __repr__(self) -> str:
        return f"<ScimUser id={self.id} userName={self.user_name}>"


class ScimGroup(Base):
    __tablename__ = "scim_groups"

    id: Mapped[UUID] = mapped_column(PG_UUID(), primary_key=True, default=uuid4)
    display_name: Mapped[str] = mapped_column(
        String(length=255), nullable=False, index=True
    )
    display_name_norm: Mapped[str] = mapped_column(
        String(length=255), nullable=False, unique=True
    )
    document: Mapped[dict[str, Any]] = mapped_column(JSONDocument, nullable=False)

    def __repr__(self) -> str:
        return f"<ScimGroup id={self.id} displayName={self.display_name}>"


class ScimGroupMember(Base):
    __tablename__ = "scim_group_members"

    group_id: Mapped[UUID] = mapped_column(
        PG_UUID(),
        ForeignKey("scim_groups.id", ondelete="CASCADE"),
        primary_key=True,
    )
    user_id: Mapped[UUID] = mapped_column(
        PG_UUID(),
        ForeignKey("scim_users.id", ondelete="CASCADE"),
        primary_key=True,
        index=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<ScimGroupMember group={self.group_id} user={self.user_id}>"
