"""Demo accounts created at startup when SEED_DEMO_ACCOUNTS is enabled.

One activated admin and one unactivated user with fixed ids, so local
environments have a known admin to sign in with. Existing emails are left
untouched, which makes seeding safe to run on every startup.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from identity.core.auth import hash_password
from identity.core.config import settings
from identity.models.account import ROLE_ADMIN, ROLE_USER
from identity.repositories.account_repository import AccountRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DemoAccount:
    account_id: uuid.UUID
    name: str
    email: str
    roles: tuple[str, ...]
    activated: bool


DEMO_ACCOUNTS = (
    DemoAccount(
        account_id=uuid.UUID("2cb9374e-4e52-4142-a1af-16144ef4a27d"),
        name="Demo Admin",
        email="admin@demo.identity.local",
        roles=(ROLE_USER, ROLE_ADMIN),
        activated=True,
    ),
    DemoAccount(
        account_id=uuid.UUID("3cb9374e-4e52-4142-a1af-16144ef4a27d"),
        name="Demo User",
        email="user@demo.identity.local",
        roles=(ROLE_USER,),
        activated=False,
    ),
)


async def seed_demo_accounts(
    session_factory: async_sessionmaker[AsyncSession],
) -> int:
    """Create missing demo accounts.

    Returns:
        Number of accounts created.
    """
    password_hash = hash_password(settings.demo_account_password.get_secret_value())
    created = 0
    async with session_factory() as db:
        for demo in DEMO_ACCOUNTS:
            if await AccountRepository.exists_by_email(db, demo.email):
                continue
            await AccountRepository.create(
                db,
                account_id=demo.account_id,
                name=demo.name,
                email=demo.email,
                password_hash=password_hash,
                roles=demo.roles,
                email_activated_at=datetime.now(UTC) if demo.activated else None,
            )
            created += 1
        await db.commit()
    if created:
        logger.info("Seeded %d demo accounts", created)
    return created
