"""Repository for Account CRUD and filtered listing.

Listing goes through the query engine: filter expressions are parsed
against ACCOUNT_FIELDS by the caller and arrive here as a FilterSet.
"""

import uuid
from collections.abc import Sequence
from datetime import datetime
from typing import Any

from sqlalchemy import ColumnElement, and_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from identity.core.field_types import resolve_field
from identity.core.filtering import FilterSet, SortParams
from identity.core.pagination import (
    Page,
    PaginationParams,
    Slice,
    find_distinct_values,
    find_page,
    find_slice,
)
from identity.core.query_builder import build_query, disjunctive_query
from identity.models.account import ACCOUNT_FIELDS, ROLE_USER, Account, AccountRole

# Fields that may be updated via AccountRepository.update().
# Security: Never add 'id', 'email', 'created_at', or 'updated_at'.
# Roles are excluded to prevent mass-assignment privilege escalation.
_UPDATABLE_FIELDS: frozenset[str] = frozenset(
    {
        "name",
        "password_hash",
        "email_activation_token",
        "email_activated_at",
    }
)

# Stable order for offset pages: newest first, id breaks ties.
_DEFAULT_ORDER = (Account.created_at.desc(), Account.id.asc())


class AccountRepository:
    """Stateless repository for Account table operations.

    All methods are static with no instance state. Pass an AsyncSession
    for every call so the caller controls transaction boundaries.
    """

    @staticmethod
    async def get_by_id(db: AsyncSession, account_id: uuid.UUID) -> Account | None:
        """Fetch an account by primary key.

        Args:
            db: Async database session.
            account_id: UUID primary key.

        Returns:
            Account if found, None otherwise.
        """
        return await db.get(Account, account_id)

    @staticmethod
    async def get_by_email(db: AsyncSession, email: str) -> Account | None:
        """Fetch an account by email address (case-insensitive).

        Args:
            db: Async database session.
            email: Email address to look up.

        Returns:
            Account if found, None otherwise.
        """
        stmt = select(Account).where(Account.email == email.strip().lower())
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def exists_by_email(db: AsyncSession, email: str) -> bool:
        """Whether an account is registered under ``email``."""
        stmt = select(Account.id).where(Account.email == email.strip().lower())
        return await db.scalar(stmt) is not None

    @staticmethod
    async def create(
        db: AsyncSession,
        *,
        name: str,
        email: str,
        password_hash: str,
        roles: Sequence[str] = (ROLE_USER,),
        email_activated_at: datetime | None = None,
        account_id: uuid.UUID | None = None,
    ) -> Account:
        """Create a new account.

        Email is normalized to lowercase before storage.

        Args:
            db: Async database session.
            name: Display name.
            email: Account email address.
            password_hash: bcrypt hash.
            roles: Role names in grant order.
            email_activated_at: Pre-activation timestamp (seeding only).
            account_id: Fixed primary key (seeding only).

        Returns:
            Created Account with database-generated fields populated.

        Raises:
            sqlalchemy.exc.IntegrityError: If email already exists.
        """
        account = Account(
            name=name,
            email=email.strip().lower(),
            password_hash=password_hash,
            email_activated_at=email_activated_at,
        )
        if account_id is not None:
            account.id = account_id
        account.roles.extend(roles)
        db.add(account)
        await db.flush()
        await db.refresh(account)
        return account

    @staticmethod
    async def update(
        db: AsyncSession,
        account_id: uuid.UUID,
        **kwargs: str | datetime | None,
    ) -> Account | None:
        """Update account fields.

        Only fields in _UPDATABLE_FIELDS are allowed. Unknown field names
        raise ValueError.

        Args:
            db: Async database session.
            account_id: UUID of the account to update.
            **kwargs: Field names and values to update.

        Returns:
            Updated Account if found, None if account does not exist.

        Raises:
            ValueError: If an unknown field name is passed.
        """
        unknown = set(kwargs) - _UPDATABLE_FIELDS
        if unknown:
            msg = f"Unknown fields: {', '.join(sorted(unknown))}"
            raise ValueError(msg)

        account = await db.get(Account, account_id)
        if account is None:
            return None

        for field, value in kwargs.items():
            setattr(account, field, value)

        await db.flush()
        await db.refresh(account)
        return account

    @staticmethod
    async def clear_activation_token(
        db: AsyncSession, account_id: uuid.UUID, token: str
    ) -> bool:
        """Clear ``email_activation_token`` only if it still equals ``token``.

        Conditional so a redelivered or late expiry event cannot wipe a
        token issued after the expired one.

        Returns:
            True if a row was updated.
        """
        stmt = (
            update(Account)
            .where(
                Account.id == account_id,
                Account.email_activation_token == token,
            )
            .values(email_activation_token=None)
            .execution_options(synchronize_session=False)
        )
        result = await db.execute(stmt)
        return result.rowcount > 0

    @staticmethod
    async def list_page(
        db: AsyncSession,
        filter_set: FilterSet,
        pagination: PaginationParams,
        sort: SortParams | None = None,
    ) -> Page[Account]:
        """Offset page of accounts matching every clause of ``filter_set``."""
        query = build_query(
            Account,
            filter_set,
            ACCOUNT_FIELDS,
            sort=sort,
            default_order=_DEFAULT_ORDER,
        )
        return await find_page(db, query, pagination)

    @staticmethod
    async def search(
        db: AsyncSession,
        pagination: PaginationParams,
        *,
        name: str | None = None,
        email: str | None = None,
        roles: Sequence[str] | None = None,
        created_from: datetime | None = None,
        created_to: datetime | None = None,
    ) -> Slice[Account]:
        """Slice of accounts matching ANY of the given criteria.

        Name and email match as case-insensitive substrings, roles as
        any-of, and the creation bounds form one closed range criterion.
        No criteria at all matches every account.
        """
        criteria: list[ColumnElement[bool]] = []
        if name:
            criteria.append(Account.name.icontains(name, autoescape=True))
        if email:
            criteria.append(Account.email.icontains(email, autoescape=True))
        if roles:
            criteria.append(Account.role_entries.any(AccountRole.name.in_(list(roles))))
        if created_from is not None or created_to is not None:
            bounds: list[ColumnElement[bool]] = []
            if created_from is not None:
                bounds.append(Account.created_at >= created_from)
            if created_to is not None:
                bounds.append(Account.created_at <= created_to)
            criteria.append(and_(*bounds))

        query = disjunctive_query(Account, criteria, order_by=_DEFAULT_ORDER)
        return await find_slice(db, query, pagination)

    @staticmethod
    async def distinct_values(
        db: AsyncSession, key: str, filter_set: FilterSet
    ) -> list[Any]:
        """Distinct values of field ``key`` over accounts matching ``filter_set``.

        Raises:
            UnknownFieldError: ``key`` is not a registered field.
        """
        field = resolve_field(ACCOUNT_FIELDS, key).field
        query = build_query(Account, filter_set, ACCOUNT_FIELDS)
        return await find_distinct_values(db, query, field)
