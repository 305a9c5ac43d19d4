"""Account model - registered identities with roles and email activation.

Roles live in their own table so they can be filtered as a collection
(``roles|in|ROLE_ADMIN``) and keep the order they were granted in.
ACCOUNT_FIELDS is the filterable field table for this model.
"""

import uuid
from datetime import datetime

from sqlalchemy import ForeignKey, Integer, String, Uuid
from sqlalchemy.ext.associationproxy import AssociationProxy, association_proxy
from sqlalchemy.ext.orderinglist import ordering_list
from sqlalchemy.orm import Mapped, mapped_column, relationship

from identity.core.field_types import EntitySchema, Field, FieldKind
from identity.models.base import Base, TimestampMixin

ROLE_USER = "ROLE_USER"
ROLE_ADMIN = "ROLE_ADMIN"


class AccountRole(Base):
    """One role granted to an account.

    Attributes:
        account_id: FK to accounts table.
        name: Role identifier (ROLE_USER, ROLE_ADMIN).
        position: Grant order, maintained by the ordering list.
    """

    __tablename__ = "account_roles"

    account_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(),
        ForeignKey("accounts.id", ondelete="CASCADE"),
        primary_key=True,
    )
    name: Mapped[str] = mapped_column(String(50), primary_key=True)
    position: Mapped[int] = mapped_column(Integer(), nullable=False, default=0)


class Account(Base, TimestampMixin):
    """Registered account.

    Attributes:
        id: UUID primary key.
        name: Display name.
        email: Unique email address, stored lower-case.
        password_hash: bcrypt hash. Never exposed or filterable.
        email_activation_token: Pending activation token. NULL once
            activated or after the token expired.
        email_activated_at: When the email was activated. NULL = inactive.
        roles: Role names in grant order (proxy over role_entries).
        created_at: Account creation timestamp (from TimestampMixin).
        updated_at: Last modification timestamp (from TimestampMixin).
    """

    __tablename__ = "accounts"
    __mapper_args__ = {"eager_defaults": True}

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(),
        primary_key=True,
        default=uuid.uuid4,
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(
        String(255),
        unique=True,
        nullable=False,
    )
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    email_activation_token: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
        index=True,
    )
    email_activated_at: Mapped[datetime | None] = mapped_column(nullable=True)

    role_entries: Mapped[list[AccountRole]] = relationship(
        AccountRole,
        order_by=AccountRole.position,
        collection_class=ordering_list("position"),
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    roles: AssociationProxy[list[str]] = association_proxy(
        "role_entries",
        "name",
        creator=lambda name: AccountRole(name=name),
    )

    @property
    def is_activated(self) -> bool:
        """True once the email activation link was followed."""
        return self.email_activated_at is not None

    @property
    def is_admin(self) -> bool:
        return ROLE_ADMIN in self.roles


ACCOUNT_FIELDS = EntitySchema(
    "account",
    {
        "id": Field(FieldKind.UUID, Account.id),
        "name": Field(FieldKind.STRING, Account.name),
        "email": Field(FieldKind.STRING, Account.email),
        "roles": Field(FieldKind.STRING, AccountRole.name, Account.role_entries),
        "created_at": Field(FieldKind.TIMESTAMP, Account.created_at),
        "updated_at": Field(FieldKind.TIMESTAMP, Account.updated_at),
        "activation": EntitySchema(
            "activation",
            {"activated_at": Field(FieldKind.TIMESTAMP, Account.email_activated_at)},
        ),
    },
)
