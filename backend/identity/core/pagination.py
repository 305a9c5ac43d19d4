"""Pagination utilities and query execution.

Pages are 0-indexed: `page` (default 0) and `size` (default from
DEFAULT_PAGE_SIZE, max MAX_PAGE_SIZE).

Two result shapes:
- Page: offset fetch + count → current page, total items, total pages, has_next.
- Slice: offset fetch only → page, size, items. Use where a count is expensive
  or unnecessary (admin search).

WHY PAGINATION:
- Prevents memory issues with large result sets
- Improves response time for list endpoints
- Standard REST API pattern
"""

import math
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from fastapi import Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from identity.core.config import settings
from identity.core.field_types import Field
from identity.core.query_builder import FilteredQuery

T = TypeVar("T")
U = TypeVar("U")


@dataclass
class PaginationParams:
    """Pagination query parameters.

    Attributes:
        page: Current page number (0-indexed).
        size: Number of items per page.
    """

    page: int
    size: int

    @property
    def offset(self) -> int:
        """Calculate SQL OFFSET for database queries.

        Returns:
            Number of items to skip (0 for page 0).
        """
        return self.page * self.size

    @property
    def limit(self) -> int:
        """Calculate SQL LIMIT for database queries.

        Returns:
            Maximum number of items to return (same as size).
        """
        return self.size


@dataclass
class Page(Generic[T]):
    """Offset page with total count metadata."""

    current_page: int
    total_items: int
    total_pages: int
    items: list[T]
    has_next: bool

    def map(self, fn: Callable[[T], U]) -> "Page[U]":
        """Return the same page with every item converted by ``fn``."""
        return Page(
            current_page=self.current_page,
            total_items=self.total_items,
            total_pages=self.total_pages,
            items=[fn(item) for item in self.items],
            has_next=self.has_next,
        )


@dataclass
class Slice(Generic[T]):
    """Bounded fetch without a total count."""

    page: int
    size: int
    items: list[T]

    def map(self, fn: Callable[[T], U]) -> "Slice[U]":
        """Return the same slice with every item converted by ``fn``."""
        return Slice(page=self.page, size=self.size, items=[fn(i) for i in self.items])


def total_pages_for(total_items: int, size: int) -> int:
    """Number of pages of ``size`` needed for ``total_items`` (0 when empty)."""
    if total_items == 0:
        return 0
    return math.ceil(total_items / size)


async def find_page(
    db: AsyncSession,
    query: FilteredQuery,
    pagination: PaginationParams,
) -> Page[Any]:
    """Execute a query as an offset page with total count.

    The count query is skipped when the fetched rows already determine the
    total: a short page (fewer rows than ``size``) that is either the first
    page or non-empty ends the result set.

    Args:
        db: Async database session.
        query: Filtered query; the count reuses its conditions.
        pagination: Page number and size.

    Returns:
        Page with items and metadata.
    """
    stmt = query.statement().offset(pagination.offset).limit(pagination.limit)
    result = await db.execute(stmt)
    items = list(result.scalars().all())

    if len(items) < pagination.size and (pagination.offset == 0 or items):
        total_items = pagination.offset + len(items)
    else:
        total_items = await db.scalar(query.count_statement()) or 0

    total_pages = total_pages_for(total_items, pagination.size)
    return Page(
        current_page=pagination.page,
        total_items=total_items,
        total_pages=total_pages,
        items=items,
        has_next=pagination.page + 1 < total_pages,
    )


async def find_slice(
    db: AsyncSession,
    query: FilteredQuery,
    pagination: PaginationParams,
) -> Slice[Any]:
    """Execute only the bounded fetch of a query (no count).

    Args:
        db: Async database session.
        query: Filtered query.
        pagination: Page number and size.

    Returns:
        Slice with the requested page of items.
    """
    stmt = query.statement().offset(pagination.offset).limit(pagination.limit)
    result = await db.execute(stmt)
    return Slice(
        page=pagination.page,
        size=pagination.size,
        items=list(result.scalars().all()),
    )


async def find_distinct_values(
    db: AsyncSession,
    query: FilteredQuery,
    field: Field,
) -> list[Any]:
    """List the distinct values of ``field`` among rows matching ``query``.

    Collection fields are joined so each element counts as a value.

    Returns:
        Sorted distinct non-null values.
    """
    stmt = select(field.column).distinct().select_from(query.entity)
    if field.collection is not None:
        stmt = stmt.join(field.collection)
    stmt = stmt.where(*query.where).order_by(field.column)

    result = await db.execute(stmt)
    return [value for value in result.scalars().all() if value is not None]


# =============================================================================
# FastAPI Dependency Function
# =============================================================================


def pagination_params(
    page: int = Query(default=0, ge=0, description="Page number (0-indexed)"),
    size: int | None = Query(
        default=None,
        ge=1,
        description="Items per page (default and maximum come from configuration)",
    ),
) -> PaginationParams:
    """FastAPI dependency for pagination query parameters.

    Validates page >= 0 and size >= 1. Size is capped at MAX_PAGE_SIZE and
    falls back to DEFAULT_PAGE_SIZE when missing.

    Usage:
        @router.get("/items")
        async def list_items(
            pagination: PaginationParams = Depends(pagination_params)
        ):
            ...

    Args:
        page: Page number (default 0, must be >= 0).
        size: Items per page.

    Returns:
        PaginationParams with validated page and size.
    """
    effective_size = settings.default_page_size if size is None else size
    return PaginationParams(page=page, size=min(effective_size, settings.max_page_size))
