"""Create accounts and account_roles tables.

Revision ID: 001_accounts
Revises:
Create Date: 2026-10-18

Accounts are keyed by UUID with a unique lower-cased email. Roles are a
separate table so they can be filtered as a collection and keep grant order.
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

revision: str = "001_accounts"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "accounts",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("password_hash", sa.String(255), nullable=False),
        sa.Column("email_activation_token", sa.String(64), nullable=True),
        sa.Column("email_activated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.CheckConstraint("password_hash <> ''", name="ck_accounts_password_hash"),
    )
    op.create_index("idx_account_email", "accounts", ["email"], unique=True)
    op.create_index(
        "idx_account_activation_token", "accounts", ["email_activation_token"]
    )
    op.create_index("idx_account_created_at", "accounts", ["created_at"])

    op.create_table(
        "account_roles",
        sa.Column(
            "account_id",
            sa.Uuid(),
            sa.ForeignKey("accounts.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("name", sa.String(50), primary_key=True),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
    )
    op.create_index("idx_account_role_name", "account_roles", ["name"])


def downgrade() -> None:
    op.drop_index("idx_account_role_name", table_name="account_roles")
    op.drop_table("account_roles")
    op.drop_index("idx_account_created_at", table_name="accounts")
    op.drop_index("idx_account_activation_token", table_name="accounts")
    op.drop_index("idx_account_email", table_name="accounts")
    op.drop_table("accounts")
