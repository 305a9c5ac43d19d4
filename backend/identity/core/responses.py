"""Response envelope models.

Consistent response format for all API endpoints:
- Single resources: {"data": ...}
- Offset pages: {"data": [...], "meta": {current_page, total_items, total_pages, has_next}}
- Slices: {"data": [...], "meta": {page, size}}
- Errors: {"error": {code, message, details}}
"""

from collections.abc import Callable
from typing import Any, Generic, TypeVar

from pydantic import BaseModel

from identity.core.pagination import Page, Slice

T = TypeVar("T")


class DataResponse(BaseModel, Generic[T]):
    """Standard response envelope for single resources.

    Usage:
        @router.get("/users/me")
        async def get_me(account: CurrentAccount) -> DataResponse[AccountResponse]:
            return DataResponse(data=AccountResponse.from_account(account))
    """

    data: T


class PageMeta(BaseModel):
    """Offset page metadata.

    Attributes:
        current_page: Page number (0-indexed).
        total_items: Matching items across all pages.
        total_pages: ceil(total_items / size); 0 when nothing matches.
        has_next: Whether a later page exists.
    """

    current_page: int
    total_items: int
    total_pages: int
    has_next: bool


class PageResponse(BaseModel, Generic[T]):
    """Collection envelope for counted pages."""

    data: list[T]
    meta: PageMeta

    @classmethod
    def from_page(cls, page: Page[Any], convert: Callable[[Any], T]) -> "PageResponse[T]":
        """Build the envelope, converting each item with ``convert``."""
        converted = page.map(convert)
        return cls(
            data=converted.items,
            meta=PageMeta(
                current_page=converted.current_page,
                total_items=converted.total_items,
                total_pages=converted.total_pages,
                has_next=converted.has_next,
            ),
        )


class SliceMeta(BaseModel):
    """Slice metadata: the requested window, no totals."""

    page: int
    size: int


class SliceResponse(BaseModel, Generic[T]):
    """Collection envelope for uncounted slices."""

    data: list[T]
    meta: SliceMeta

    @classmethod
    def from_slice(
        cls, slice_: Slice[Any], convert: Callable[[Any], T]
    ) -> "SliceResponse[T]":
        """Build the envelope, converting each item with ``convert``."""
        converted = slice_.map(convert)
        return cls(
            data=converted.items,
            meta=SliceMeta(page=converted.page, size=converted.size),
        )


class ErrorDetail(BaseModel):
    """Error detail for response body.

    Attributes:
        code: Machine-readable error code (e.g., "NOT_FOUND").
        message: Human-readable error message.
        details: Optional list of field-level errors (for validation).
    """

    code: str
    message: str
    details: list[dict] | None = None


class ErrorResponse(BaseModel):
    """Standard error response envelope.

    Usage in exception handlers:
        return JSONResponse(
            status_code=exc.status_code,
            content=ErrorResponse(
                error=ErrorDetail(code=exc.code, message=exc.message)
            ).model_dump(),
        )
    """

    error: ErrorDetail
