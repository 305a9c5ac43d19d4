"""Shared dependencies for API endpoints.

Authentication: the JWT from the httpOnly cookie must verify AND its ``jti``
must still be an active session token, so logout and session expiry take
effect immediately rather than at JWT expiry.

WHY DEPENDENCY INJECTION:
- Consistent auth across all endpoints
- Token manager and activation queue are swappable in tests
- Testable with mocked dependencies
"""

import asyncio
import uuid
from dataclasses import dataclass
from typing import Annotated

import jwt
from fastapi import BackgroundTasks, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from identity.core.auth import decode_jwt
from identity.core.config import settings
from identity.core.database import get_db
from identity.core.errors import AdminRequiredError, NotFoundError, UnauthorizedError
from identity.models.account import Account
from identity.repositories.account_repository import AccountRepository
from identity.services.account_service import AccountService
from identity.services.activation_worker import (
    ActivationRequested,
    get_activation_worker,
)
from identity.services.token_lifecycle import (
    TokenKind,
    TokenLifecycleManager,
    get_token_manager,
)

DbSession = Annotated[AsyncSession, Depends(get_db)]
Tokens = Annotated[TokenLifecycleManager, Depends(get_token_manager)]


@dataclass(frozen=True)
class SessionClaims:
    """Verified identity of the caller."""

    account_id: uuid.UUID
    session_id: str


def get_activation_queue() -> asyncio.Queue[ActivationRequested]:
    """Queue consumed by the running ActivationWorker."""
    return get_activation_worker().queue


ActivationQueue = Annotated[
    asyncio.Queue[ActivationRequested], Depends(get_activation_queue)
]


async def get_current_session(request: Request, tokens: Tokens) -> SessionClaims:
    """Validate the session cookie.

    Validation steps:
    1. Read JWT from cookie
    2. Decode + verify signature (HS256), exp, aud, iss
    3. Extract sub as UUID
    4. Check jti is an active session token owned by sub

    Raises:
        UnauthorizedError: 401 for any auth failure. The message never says
            why, to avoid leaking information.
    """
    token = request.cookies.get(settings.auth_cookie_name)
    if not token:
        raise UnauthorizedError()

    try:
        payload = decode_jwt(token)
        account_id = uuid.UUID(payload["sub"])
        session_id = str(payload["jti"])
    except (jwt.InvalidTokenError, KeyError, ValueError) as exc:
        raise UnauthorizedError() from exc

    try:
        session = await tokens.lookup(session_id, TokenKind.SESSION)
    except NotFoundError as exc:
        raise UnauthorizedError() from exc
    if session.subject != str(account_id):
        raise UnauthorizedError()

    return SessionClaims(account_id=account_id, session_id=session_id)


CurrentSession = Annotated[SessionClaims, Depends(get_current_session)]


async def get_current_account(claims: CurrentSession, db: DbSession) -> Account:
    """Load the signed-in account.

    Raises:
        UnauthorizedError: Account deleted since the session was opened.
    """
    account = await AccountRepository.get_by_id(db, claims.account_id)
    if account is None:
        raise UnauthorizedError()
    return account


CurrentAccount = Annotated[Account, Depends(get_current_account)]


async def require_admin(account: CurrentAccount) -> Account:
    """Signed-in account holding ROLE_ADMIN.

    Raises:
        AdminRequiredError: 403 for non-admin accounts.
    """
    if not account.is_admin:
        raise AdminRequiredError()
    return account


AdminAccount = Annotated[Account, Depends(require_admin)]


def get_account_service(
    db: DbSession,
    tokens: Tokens,
    activation_queue: ActivationQueue,
    background_tasks: BackgroundTasks,
) -> AccountService:
    """AccountService bound to the request's session and background tasks."""
    return AccountService(
        db, tokens, activation_queue, schedule=background_tasks.add_task
    )


Accounts = Annotated[AccountService, Depends(get_account_service)]
