"""
Resource store: SCIM documents plus their derived index columns.

Every document write goes through `ResourceStore._write_document`, which stamps
`meta.lastModified` and re-derives the shadow columns in the same flush, so the
document and the columns used for uniqueness/filtering/ordering never diverge.

Stores never commit. Callers wrap a request's writes in `unit_of_work`.
"""

from __future__ import annotations

import copy
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, ClassVar, Generic, Sequence, TypeVar
from uuid import UUID

import structlog
from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from provisioner.models.scim import ScimGroup, ScimUser

from .documents import (
    RESOURCE_TYPE_GROUP,
    RESOURCE_TYPE_USER,
    new_document,
    next_last_modified,
    normalize_identity,
    replaced_document,
)
from .errors import (
    ScimConflictError,
    ScimError,
    ScimStoreError,
    UnsupportedFilterError,
)
from .filtering import ScimFilter, ScimFilterOp

logger = structlog.get_logger()

RowT = TypeVar("RowT", ScimUser, ScimGroup)

DEFAULT_PAGE_SIZE = 100
DEFAULT_MAX_RESULTS = 200
# Largest startIndex passed to the driver; anything beyond is past every row.
MAX_START_INDEX = 2**31 - 1


@asynccontextmanager
async def unit_of_work(
    db: AsyncSession,
    *,
    operation: str,
    conflict_detail: str = "Resource already exists",
) -> AsyncIterator[None]:
    """Commit on success; roll back and translate store errors otherwise."""
    try:
        yield
        await db.commit()
    except ScimError:
        await db.rollback()
        raise
    except IntegrityError as exc:
        await db.rollback()
        logger.info("scim_uniqueness_conflict", operation=operation)
        raise ScimConflictError(conflict_detail) from exc
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.error(
            "scim_store_failure",
            operation=operation,
            error=str(exc),
            error_type=type(exc).__name__,
        )
        raise ScimStoreError() from exc


def clamp_page(
    start_index: int | None,
    count: int | None,
    *,
    default_page_size: int = DEFAULT_PAGE_SIZE,
    max_results: int = DEFAULT_MAX_RESULTS,
) -> tuple[int, int]:
    resolved_start = min(max(1, int(start_index or 1)), MAX_START_INDEX)
    resolved_count = default_page_size if count is None else int(count)
    resolved_count = max(0, min(resolved_count, max_results))
    return resolved_start, resolved_count


class ResourceStore(Generic[RowT]):
    model: ClassVar[type]
    resource_type: ClassVar[str]
    identity_attribute: ClassVar[str]
    mutable_attributes: ClassVar[frozenset[str]]

    def __init__(
        self,
        db: AsyncSession,
        *,
        default_page_size: int = DEFAULT_PAGE_SIZE,
        max_results: int = DEFAULT_MAX_RESULTS,
    ) -> None:
        self.db = db
        self.default_page_size = default_page_size
        self.max_results = max_results

    # Column mapping is fixed per kind; attribute names from a filter are
    # only ever used as dict keys here.
    def _identity_column(self) -> Any:
        raise NotImplementedError

    def _identity_norm_column(self) -> Any:
        raise NotImplementedError

    def _derive_index(self, row: RowT, document: dict[str, Any]) -> None:
        raise NotImplementedError

    def _filter_clause(self, scim_filter: ScimFilter) -> Any:
        if scim_filter.attribute != self.identity_attribute:
            raise UnsupportedFilterError(
                f"Filtering {self.resource_type} resources by "
                f"{scim_filter.attribute!r} is not supported"
            )
        if scim_filter.operator is not ScimFilterOp.EQ:
            raise UnsupportedFilterError(
                f"Unsupported filter operator: {scim_filter.operator.value}"
            )
        return self._identity_norm_column() == normalize_identity(scim_filter.value)

    def _write_document(self, row: RowT, document: dict[str, Any]) -> None:
        previous_meta = (row.document or {}).get("meta") or {}
        stamped = copy.deepcopy(document)
        meta = dict(stamped.get("meta") or {})
        meta["resourceType"] = self.resource_type
        meta["lastModified"] = next_last_modified(previous_meta.get("lastModified"))
        meta["created"] = previous_meta.get("created") or meta["lastModified"]
        stamped["meta"] = meta
        # A new dict instance so the ORM sees the JSON column as changed.
        row.document = stamped
        self._derive_index(row, stamped)

    async def _flush(self) -> None:
        try:
            await self.db.flush()
        except IntegrityError as exc:
            raise ScimConflictError(
                f"{self.resource_type} {self.identity_attribute} already exists"
            ) from exc

    async def list(
        self,
        scim_filter: ScimFilter | None,
        start_index: int | None,
        count: int | None,
    ) -> tuple[Sequence[RowT], int]:
        """One page plus the filtered total, as two separate statements."""
        start, page_size = clamp_page(
            start_index,
            count,
            default_page_size=self.default_page_size,
            max_results=self.max_results,
        )
        stmt = select(self.model)
        count_stmt = select(func.count()).select_from(self.model)
        if scim_filter is not None:
            clause = self._filter_clause(scim_filter)
            stmt = stmt.where(clause)
            count_stmt = count_stmt.where(clause)

        total = int((await self.db.execute(count_stmt)).scalar_one())
        if page_size == 0:
            return [], total

        stmt = (
            stmt.order_by(self._identity_column().asc(), self.model.id.asc())
            .offset(start - 1)
            .limit(page_size)
        )
        rows = (await self.db.execute(stmt)).scalars().all()
        return rows, total

    async def get(self, resource_id: UUID) -> RowT | None:
        result = await self.db.execute(
            select(self.model).where(self.model.id == resource_id)
        )
        return result.scalar_one_or_none()

    async def create(self, resource_id: UUID, fields: dict[str, Any]) -> RowT:
        row = self.model(id=resource_id)
        self._write_document(row, new_document(self.resource_type, resource_id, fields))
        self.db.add(row)
        await self._flush()
        return row

    async def replace_scalar_fields(self, resource_id: UUID, fields: dict[str, Any]) -> int:
        row = await self.get(resource_id)
        if row is None:
            return 0
        self._write_document(row, replaced_document(row.document, fields))
        await self._flush()
        return 1

    async def update_attribute(self, resource_id: UUID, attribute: str, value: Any) -> int:
        if attribute not in self.mutable_attributes:
            raise ValueError(
                f"{self.resource_type} attribute {attribute!r} is not updatable"
            )
        row = await self.get(resource_id)
        if row is None:
            return 0
        document = copy.deepcopy(row.document)
        document[attribute] = value
        self._write_document(row, document)
        await self._flush()
        return 1

    async def touch(self, resource_id: UUID) -> int:
        row = await self.get(resource_id)
        if row is None:
            return 0
        self._write_document(row, row.document)
        await self._flush()
        return 1

    async def delete(self, resource_id: UUID) -> int:
        result = await self.db.execute(
            delete(self.model).where(self.model.id == resource_id)
        )
        return int(result.rowcount or 0)


class UserStore(ResourceStore[ScimUser]):
    model = ScimUser
    resource_type = RESOURCE_TYPE_USER
    identity_attribute = "userName"
    mutable_attributes = frozenset({"active", "userName"})

    def _identity_column(self) -> Any:
        return ScimUser.user_name

    def _identity_norm_column(self) -> Any:
        return ScimUser.user_name_norm

    def _derive_index(self, row: ScimUser, document: dict[str, Any]) -> None:
        user_name = str(document["userName"])
        row.user_name = user_name
        row.user_name_norm = normalize_identity(user_name)
        row.active = bool(document.get("active", True))


class GroupStore(ResourceStore[ScimGroup]):
    model = ScimGroup
    resource_type = RESOURCE_TYPE_GROUP
    identity_attribute = "displayName"
    mutable_attributes = frozenset({"displayName"})

    def _identity_column(self) -> Any:
        return ScimGroup.display_name

    def _identity_norm_column(self) -> Any:
        return ScimGroup.display_name_norm

    def _derive_index(self, row: ScimGroup, document: dict[str, Any]) -> None:
        display_name = str(document["displayName"])
        row.display_name = display_name
        row.display_name_norm = normalize_identity(display_name)
