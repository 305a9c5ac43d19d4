"""Account business rules on top of the repository and token manager.

Registration, email activation, password reset, profile update, login and
logout. Emails are never sent inline: activation goes through the
ActivationWorker queue and the other notices are handed to ``schedule``
(FastAPI's BackgroundTasks.add_task in request handlers).
"""

import asyncio
import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from identity.core.auth import (
    create_jwt,
    hash_password,
    validate_password_strength,
    verify_password,
)
from identity.core.config import settings
from identity.core.email import send_password_changed_email, send_password_reset_email
from identity.core.errors import (
    APIError,
    ConflictError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from identity.core.messages import get_message
from identity.models.account import Account
from identity.repositories.account_repository import AccountRepository
from identity.services.activation_worker import ActivationRequested
from identity.services.token_lifecycle import (
    EphemeralToken,
    TokenKind,
    TokenLifecycleManager,
)

logger = logging.getLogger(__name__)

Scheduler = Callable[..., Any]


@dataclass(frozen=True)
class LoginResult:
    """Successful login: the account and its signed session JWT."""

    account: Account
    token: str
    expires_at: datetime


class AccountService:
    """Account operations bound to one database session.

    Args:
        db: Async database session of the current request.
        tokens: Token lifecycle manager.
        activation_queue: Queue consumed by the ActivationWorker.
        schedule: Fire-and-forget runner for notification emails.
    """

    def __init__(
        self,
        db: AsyncSession,
        tokens: TokenLifecycleManager,
        activation_queue: asyncio.Queue[ActivationRequested],
        *,
        schedule: Scheduler,
    ) -> None:
        self._db = db
        self._tokens = tokens
        self._activation_queue = activation_queue
        self._schedule = schedule

    async def register(self, *, name: str, email: str, password: str) -> Account:
        """Create an inactive account and request its activation email.

        The account is committed before the event is enqueued so the worker's
        own session can see it.

        Raises:
            ValidationError: Weak password.
            ConflictError: Email already registered (EMAIL_ALREADY_EXISTS).
        """
        validate_password_strength(password)

        if await AccountRepository.exists_by_email(self._db, email):
            raise ConflictError(
                code="EMAIL_ALREADY_EXISTS",
                message=get_message("email_already_exists"),
            )

        try:
            account = await AccountRepository.create(
                self._db,
                name=name.strip(),
                email=email,
                password_hash=hash_password(password),
            )
            await self._db.commit()
        except IntegrityError as exc:
            await self._db.rollback()
            raise ConflictError(
                code="EMAIL_ALREADY_EXISTS",
                message=get_message("email_already_exists"),
            ) from exc

        self._activation_queue.put_nowait(
            ActivationRequested(
                account_id=account.id, email=account.email, name=account.name
            )
        )
        logger.info("Account registered: %s", account.id)
        return account

    async def activate(self, token: str) -> Account:
        """Activate the account an activation token was issued for.

        Raises:
            NotFoundError: Unknown, replaced or expired token, or the
                account no longer exists.
        """
        record = await self._tokens.lookup(token, TokenKind.EMAIL_ACTIVATION)
        account = await self._account_for(record)

        async def mark_activated(_record: EphemeralToken) -> None:
            await AccountRepository.update(
                self._db,
                account.id,
                email_activated_at=datetime.now(UTC),
                email_activation_token=None,
            )
            await self._db.commit()

        await self._tokens.consume(
            token,
            TokenKind.EMAIL_ACTIVATION,
            subject=record.subject,
            action=mark_activated,
        )
        logger.info("Account activated: %s", account.id)
        return account

    async def request_password_reset(self, email: str) -> None:
        """Issue a reset token and email the reset link.

        Raises:
            NotFoundError: No account for ``email``.
            ConflictError: A reset token is already active
                (PASSWORD_RESET_TOKEN_EXISTS).
        """
        account = await AccountRepository.get_by_email(self._db, email)
        if account is None:
            raise NotFoundError("Account", message=get_message("user_not_found"))

        record = await self._tokens.issue(str(account.id), TokenKind.PASSWORD_RESET)
        self._schedule(
            send_password_reset_email,
            to_email=account.email,
            name=account.name,
            token=record.token,
        )

    async def reset_password(
        self,
        *,
        token: str,
        email: str,
        password: str,
        password_confirmation: str,
    ) -> Account:
        """Change a password with a reset token.

        Checks run in order: token active, account exists, token belongs to
        the account, confirmation matches, strength, differs from the
        current password. The token is deleted only after the new hash is
        committed.

        Raises:
            NotFoundError: Token or account unknown.
            ConflictError: Token issued for another account
                (INVALID_TOKEN_FOR_SUBJECT) or password reused
                (PASSWORD_REUSED).
            ValidationError: Confirmation mismatch or weak password.
        """
        await self._tokens.lookup(token, TokenKind.PASSWORD_RESET)
        account = await AccountRepository.get_by_email(self._db, email)
        if account is None:
            raise NotFoundError("Account", message=get_message("user_not_found"))

        async def apply_new_password(_record: EphemeralToken) -> None:
            if password != password_confirmation:
                raise ValidationError(get_message("password_mismatch"))
            validate_password_strength(password)
            if verify_password(password, account.password_hash):
                raise ConflictError(
                    code="PASSWORD_REUSED",
                    message=get_message("new_password_must_be_different_from_old"),
                )
            await AccountRepository.update(
                self._db, account.id, password_hash=hash_password(password)
            )
            await self._db.commit()

        await self._tokens.consume(
            token,
            TokenKind.PASSWORD_RESET,
            subject=str(account.id),
            action=apply_new_password,
        )
        self._schedule(
            send_password_changed_email, to_email=account.email, name=account.name
        )
        logger.info("Password reset for account %s", account.id)
        return account

    async def update_profile(
        self,
        account: Account,
        *,
        name: str | None = None,
        password: str | None = None,
        password_confirmation: str | None = None,
    ) -> Account:
        """Update name and/or password of the signed-in account.

        A blank name leaves the name unchanged.

        Raises:
            ValidationError: Password without confirmation, mismatch, or
                weak password.
        """
        updates: dict[str, str] = {}
        if name is not None and name.strip():
            updates["name"] = name.strip()

        if password is not None:
            if not password_confirmation:
                raise ValidationError(get_message("password_confirmation_not_provided"))
            if password != password_confirmation:
                raise ValidationError(get_message("password_mismatch"))
            validate_password_strength(password)
            updates["password_hash"] = hash_password(password)

        if not updates:
            return account
        updated = await AccountRepository.update(self._db, account.id, **updates)
        if updated is None:
            raise NotFoundError("Account", message=get_message("user_not_found"))
        return updated

    async def login(self, *, email: str, password: str) -> LoginResult:
        """Verify credentials and open a session.

        Always runs one bcrypt comparison so unknown emails take as long as
        wrong passwords.

        Raises:
            UnauthorizedError: Unknown email or wrong password.
            APIError: Email not activated yet (EMAIL_NOT_ACTIVATED, 403).
        """
        account = await AccountRepository.get_by_email(self._db, email)
        stored_hash = account.password_hash if account is not None else None
        if not verify_password(password, stored_hash) or account is None:
            raise UnauthorizedError(get_message("invalid_credentials"))

        if not account.is_activated:
            raise APIError(
                code="EMAIL_NOT_ACTIVATED",
                message=get_message("email_not_activated"),
                status_code=403,
            )

        session = await self._tokens.issue(str(account.id), TokenKind.SESSION)
        token = create_jwt(
            user_id=str(account.id),
            jti=session.token,
            secret=settings.auth_secret.get_secret_value(),
        )
        return LoginResult(account=account, token=token, expires_at=session.expires_at)

    async def logout(self, session_id: str) -> None:
        """End a session. Unknown or expired sessions are ignored."""
        await self._tokens.revoke(session_id, TokenKind.SESSION)

    async def _account_for(self, record: EphemeralToken) -> Account:
        account = await AccountRepository.get_by_id(self._db, uuid.UUID(record.subject))
        if account is None:
            raise NotFoundError("Account", message=get_message("user_not_found"))
        return account


def register_expiry_handlers(
    tokens: TokenLifecycleManager,
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    """Attach account-side reactions to token expiry.

    An expired activation token is cleared from its account, but only if
    the account still holds that exact token.
    """

    async def clear_stale_activation(record: EphemeralToken) -> None:
        async with session_factory() as db:
            cleared = await AccountRepository.clear_activation_token(
                db, uuid.UUID(record.subject), record.token
            )
            await db.commit()
        if cleared:
            logger.info("Cleared expired activation token of account %s", record.subject)

    tokens.on_expiry(TokenKind.EMAIL_ACTIVATION, clear_stale_activation)
