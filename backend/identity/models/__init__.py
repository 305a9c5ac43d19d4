"""SQLAlchemy ORM models for the identity service.

All models are exported from this module for convenient imports:
    from identity.models import Account, AccountRole, Base

- account.py: Account, AccountRole, ACCOUNT_FIELDS (filterable field table)
"""

from identity.models.account import (
    ACCOUNT_FIELDS,
    ROLE_ADMIN,
    ROLE_USER,
    Account,
    AccountRole,
)
from identity.models.base import Base, TimestampMixin

__all__ = [
    # Base classes
    "Base",
    "TimestampMixin",
    # Accounts
    "ACCOUNT_FIELDS",
    "ROLE_ADMIN",
    "ROLE_USER",
    "Account",
    "AccountRole",
]
