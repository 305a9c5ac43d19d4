"""Helpers shared by unit tests: fake clock, account builders, session mocks."""

import uuid
from collections.abc import Sequence
from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock

from identity.core.auth import create_jwt, hash_password
from identity.core.config import settings
from identity.models.account import ROLE_USER, Account

DEFAULT_PASSWORD = "Old-passw0rd!"  # nosec B105


class FakeClock:
    """Monotonic clock advanced by hand."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_account(
    *,
    account_id: uuid.UUID | None = None,
    name: str = "Ann Example",
    email: str = "ann@example.com",
    password: str = DEFAULT_PASSWORD,
    roles: Sequence[str] = (ROLE_USER,),
    activated: bool = True,
) -> Account:
    """Build a transient Account with every response field populated."""
    now = datetime.now(UTC)
    account = Account(
        id=account_id or uuid.uuid4(),
        name=name,
        email=email,
        password_hash=hash_password(password),
        email_activated_at=now if activated else None,
        created_at=now,
        updated_at=now,
    )
    account.roles.extend(roles)
    return account


def session_headers(account_id: uuid.UUID, session_id: str) -> dict[str, str]:
    """Request headers carrying a signed session JWT cookie."""
    token = create_jwt(
        user_id=str(account_id),
        jti=session_id,
        secret=settings.auth_secret.get_secret_value(),
    )
    return {"Cookie": f"{settings.auth_cookie_name}={token}"}


def mock_session_factory(db: AsyncMock) -> MagicMock:
    """async_sessionmaker stand-in whose sessions are all ``db``."""
    factory = MagicMock()
    factory.return_value.__aenter__ = AsyncMock(return_value=db)
    factory.return_value.__aexit__ = AsyncMock(return_value=False)
    return factory
