"""Account endpoints: own profile and admin listings.

Listings:
- GET /users: filter expressions (``?filter=key|op|value``, ANDed), sort and
  a counted page.
- GET /users/search: disjunctive search (any of name, email, roles,
  creation range) returned as an uncounted slice.
- GET /users/filter-values/{key}: distinct values of one field, for
  building filter dropdowns.

Filter parse errors are 400s with codes MALFORMED_FILTER, UNKNOWN_OPERATOR,
UNKNOWN_FIELD, UNSUPPORTED_FILTER_TYPE, INVALID_FILTER_VALUE and
PREDICATE_CONFLICT.
"""

from datetime import datetime
from typing import Annotated, Any

from fastapi import APIRouter, Depends, Path, Query

from identity.api.deps import Accounts, AdminAccount, CurrentAccount, DbSession
from identity.core.filtering import SortParams, filter_params, parse_filters, sort_params
from identity.core.pagination import PaginationParams, pagination_params
from identity.core.responses import DataResponse, PageResponse, SliceResponse
from identity.models.account import ACCOUNT_FIELDS
from identity.repositories.account_repository import AccountRepository
from identity.schemas.account import AccountResponse, UpdateProfileRequest

router = APIRouter()

RawFilters = Annotated[list[str], Depends(filter_params)]
Sort = Annotated[SortParams, Depends(sort_params)]
Pagination = Annotated[PaginationParams, Depends(pagination_params)]


@router.get("/me")
async def get_me(account: CurrentAccount) -> DataResponse[AccountResponse]:
    """Return the signed-in account."""
    return DataResponse(data=AccountResponse.from_account(account))


@router.patch("/me")
async def update_me(
    body: UpdateProfileRequest,
    account: CurrentAccount,
    accounts: Accounts,
) -> DataResponse[AccountResponse]:
    """Update the signed-in account's name and/or password."""
    updated = await accounts.update_profile(
        account,
        name=body.name,
        password=body.password,
        password_confirmation=body.password_confirmation,
    )
    return DataResponse(data=AccountResponse.from_account(updated))


@router.get("")
async def list_accounts(
    _admin: AdminAccount,
    db: DbSession,
    filters: RawFilters,
    sort: Sort,
    pagination: Pagination,
) -> PageResponse[AccountResponse]:
    """List accounts matching every filter expression.

    Example:
        GET /api/v1/users?filter=roles|in|ROLE_ADMIN&filter=created_at|gte|2024-01-01T00:00&sort=-created_at&page=0&size=20
    """
    filter_set = parse_filters(filters, ACCOUNT_FIELDS)
    page = await AccountRepository.list_page(db, filter_set, pagination, sort)
    return PageResponse.from_page(page, AccountResponse.from_account)


@router.get("/search")
async def search_accounts(
    _admin: AdminAccount,
    db: DbSession,
    pagination: Pagination,
    name: Annotated[str | None, Query(max_length=255)] = None,
    email: Annotated[str | None, Query(max_length=255)] = None,
    roles: Annotated[list[str] | None, Query(alias="role")] = None,
    created_from: datetime | None = None,
    created_to: datetime | None = None,
) -> SliceResponse[AccountResponse]:
    """Accounts matching ANY of the given criteria, without a total count.

    Name and email match as case-insensitive substrings. No criteria returns
    every account.
    """
    result = await AccountRepository.search(
        db,
        pagination,
        name=name,
        email=email,
        roles=roles,
        created_from=created_from,
        created_to=created_to,
    )
    return SliceResponse.from_slice(result, AccountResponse.from_account)


@router.get("/filter-values/{key}")
async def filter_values(
    _admin: AdminAccount,
    db: DbSession,
    filters: RawFilters,
    key: Annotated[str, Path(max_length=100)],
) -> DataResponse[list[Any]]:
    """Distinct values of ``key`` among accounts matching the filters."""
    filter_set = parse_filters(filters, ACCOUNT_FIELDS)
    values = await AccountRepository.distinct_values(db, key, filter_set)
    return DataResponse(data=values)
