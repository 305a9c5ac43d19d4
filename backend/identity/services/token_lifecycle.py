"""Ephemeral token lifecycle: issue, look up, consume, revoke, expire.

Tokens are opaque random strings stored in the expiry store, never in the
database. Each token moves ``absent → active → consumed | expired``;
consumption and expiry are terminal.

Keys:
    tokens:{kind}:{token}              → EphemeralToken JSON (notifies on expiry)
    tokens:{kind}:subject:{subject}    → token (subject index, silent)

Per-kind policies:
- password_reset: 50 chars, one active token per subject. The subject
  index is claimed with a conditional write, so two concurrent requests
  cannot both issue.
- email_activation: 15 chars, a new token replaces the previous one.
- session: 32 chars (the JWT ``jti``), no subject index.

Expired tokens are logged with the subject bound into the structlog
context, then passed to handlers registered with ``on_expiry``.
"""

import secrets
import string
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import StrEnum

import pydantic
import structlog
from pydantic import BaseModel, ConfigDict

from identity.core.config import settings
from identity.core.errors import ConflictError, NotFoundError
from identity.core.expiry_store import ExpiredEntry, ExpiryStore
from identity.core.messages import get_message

logger = structlog.get_logger()

_KEY_PREFIX = "tokens"
_SUBJECT_SEGMENT = "subject"
_TOKEN_ALPHABET = string.ascii_letters + string.digits


class TokenKind(StrEnum):
    """Kinds of ephemeral token."""

    PASSWORD_RESET = "password_reset"
    SESSION = "session"
    EMAIL_ACTIVATION = "email_activation"


class SubjectIndex(StrEnum):
    """How a kind tracks the active token of a subject."""

    NONE = "none"
    UNIQUE = "unique"
    REPLACE = "replace"


@dataclass(frozen=True)
class TokenPolicy:
    """Issuance rules for one token kind.

    Attributes:
        length: Characters in a generated token.
        ttl: Lifetime from issue.
        subject_index: Per-subject tracking mode.
        not_found_code: Message code used when a token is unknown.
    """

    length: int
    ttl: timedelta
    subject_index: SubjectIndex = SubjectIndex.NONE
    not_found_code: str = "token_not_found"

    @property
    def ttl_ms(self) -> int:
        return int(self.ttl.total_seconds() * 1000)


def default_policies() -> dict[TokenKind, TokenPolicy]:
    """Policies with lifetimes taken from settings."""
    return {
        TokenKind.PASSWORD_RESET: TokenPolicy(
            length=50,
            ttl=timedelta(minutes=settings.password_reset_token_ttl_minutes),
            subject_index=SubjectIndex.UNIQUE,
            not_found_code="password_reset_token_expired",
        ),
        TokenKind.EMAIL_ACTIVATION: TokenPolicy(
            length=15,
            ttl=timedelta(minutes=settings.activation_token_ttl_minutes),
            subject_index=SubjectIndex.REPLACE,
            not_found_code="activation_token_not_found",
        ),
        TokenKind.SESSION: TokenPolicy(
            length=32,
            ttl=timedelta(minutes=settings.session_token_ttl_minutes),
        ),
    }


class EphemeralToken(BaseModel):
    """Stored token record.

    Attributes:
        token: Opaque token string.
        subject: What the token is for (account id).
        kind: Token kind.
        issued_at: Issue timestamp (UTC).
        ttl_ms: Lifetime in milliseconds.
    """

    model_config = ConfigDict(frozen=True)

    token: str
    subject: str
    kind: TokenKind
    issued_at: datetime
    ttl_ms: int

    @property
    def expires_at(self) -> datetime:
        return self.issued_at + timedelta(milliseconds=self.ttl_ms)


TokenAction = Callable[[EphemeralToken], Awaitable[None]]
TokenExpiryHandler = Callable[[EphemeralToken], Awaitable[None]]


def generate_token(length: int) -> str:
    """Random alphanumeric token from the OS CSPRNG."""
    return "".join(secrets.choice(_TOKEN_ALPHABET) for _ in range(length))


def token_key(kind: TokenKind, token: str) -> str:
    return f"{_KEY_PREFIX}:{kind.value}:{token}"


def subject_key(kind: TokenKind, subject: str) -> str:
    return f"{_KEY_PREFIX}:{kind.value}:{_SUBJECT_SEGMENT}:{subject}"


class TokenLifecycleManager:
    """Issues and retires ephemeral tokens in an ExpiryStore.

    Subscribes itself to the store's expiry events on construction.

    Args:
        store: Expiry store holding the tokens.
        policies: Per-kind issuance rules. Defaults to ``default_policies()``.
        clock: UTC time source for ``issued_at``.
    """

    def __init__(
        self,
        store: ExpiryStore,
        policies: Mapping[TokenKind, TokenPolicy] | None = None,
        *,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self._store = store
        self._policies = dict(policies or default_policies())
        self._clock = clock
        self._handlers: dict[TokenKind, list[TokenExpiryHandler]] = {}
        store.subscribe(self.handle_expired)

    @property
    def store(self) -> ExpiryStore:
        return self._store

    def policy(self, kind: TokenKind) -> TokenPolicy:
        return self._policies[kind]

    def on_expiry(self, kind: TokenKind, handler: TokenExpiryHandler) -> None:
        """Call ``handler`` with each expired token of ``kind``.

        Handlers must be idempotent: with several instances sharing Redis,
        each instance receives the event.
        """
        self._handlers.setdefault(kind, []).append(handler)

    async def issue(self, subject: str, kind: TokenKind) -> EphemeralToken:
        """Issue a fresh token for ``subject``.

        Raises:
            ConflictError: ``kind`` allows one active token per subject and
                one exists (PASSWORD_RESET_TOKEN_EXISTS for reset tokens).
        """
        policy = self._policies[kind]
        record = EphemeralToken(
            token=generate_token(policy.length),
            subject=subject,
            kind=kind,
            issued_at=self._clock(),
            ttl_ms=policy.ttl_ms,
        )
        index_key = subject_key(kind, subject)

        if policy.subject_index is SubjectIndex.UNIQUE:
            claimed = await self._store.put(
                index_key,
                record.token,
                policy.ttl_ms,
                only_if_absent=True,
                notify_on_expiry=False,
            )
            if not claimed:
                raise ConflictError(
                    code=f"{kind.value.upper()}_TOKEN_EXISTS",
                    message=get_message(f"{kind.value}_token_exist"),
                )
        elif policy.subject_index is SubjectIndex.REPLACE:
            previous = await self._store.get(index_key)
            await self._store.put(
                index_key, record.token, policy.ttl_ms, notify_on_expiry=False
            )
            if previous is not None:
                await self._store.delete(token_key(kind, previous))

        await self._store.put(
            token_key(kind, record.token), record.model_dump_json(), policy.ttl_ms
        )
        logger.info("Token issued", token_kind=kind.value, subject=subject)
        return record

    async def lookup(self, token: str, kind: TokenKind) -> EphemeralToken:
        """Return the active record for ``token``.

        Raises:
            NotFoundError: Unknown, consumed, replaced, or expired token.
        """
        raw = await self._store.get(token_key(kind, token))
        if raw is None:
            raise NotFoundError(
                "Token",
                message=get_message(self._policies[kind].not_found_code, token=token),
            )
        return EphemeralToken.model_validate_json(raw)

    async def find_by_subject(
        self, subject: str, kind: TokenKind
    ) -> EphemeralToken | None:
        """Active token of ``subject`` for an indexed kind, if any.

        Raises:
            ValueError: ``kind`` keeps no subject index.
        """
        if self._policies[kind].subject_index is SubjectIndex.NONE:
            msg = f"{kind.value} tokens are not indexed by subject"
            raise ValueError(msg)
        token = await self._store.get(subject_key(kind, subject))
        if token is None:
            return None
        raw = await self._store.get(token_key(kind, token))
        return EphemeralToken.model_validate_json(raw) if raw is not None else None

    async def consume(
        self,
        token: str,
        kind: TokenKind,
        *,
        subject: str | None = None,
        action: TokenAction | None = None,
    ) -> EphemeralToken:
        """Use a token once.

        The record is taken out of the store before ownership is checked,
        so concurrent calls with the same token cannot both proceed: the
        loser sees NotFoundError. A subject mismatch or a failing ``action``
        puts the record back for the rest of its lifetime.

        Args:
            token: Token string.
            kind: Token kind.
            subject: Expected owner. None skips the ownership check.
            action: Work to perform before the token is removed.

        Returns:
            The consumed record.

        Raises:
            NotFoundError: Token not active.
            ConflictError: Token belongs to another subject
                (INVALID_TOKEN_FOR_SUBJECT).
        """
        key = token_key(kind, token)
        taken = await self._store.take(key)
        if taken is None:
            raise NotFoundError(
                "Token",
                message=get_message(self._policies[kind].not_found_code, token=token),
            )
        record = EphemeralToken.model_validate_json(taken.value)

        if subject is not None and record.subject != subject:
            await self._store.put(key, taken.value, taken.ttl_ms)
            raise ConflictError(
                code="INVALID_TOKEN_FOR_SUBJECT",
                message=get_message("invalid_token_for_mail"),
            )
        if action is not None:
            try:
                await action(record)
            except BaseException:
                await self._store.put(key, taken.value, taken.ttl_ms)
                raise
        await self._remove(record)
        logger.info("Token consumed", token_kind=kind.value, subject=record.subject)
        return record

    async def revoke(self, token: str, kind: TokenKind) -> bool:
        """Delete a token without an ownership check.

        Returns:
            True if an active token was removed.
        """
        raw = await self._store.get(token_key(kind, token))
        if raw is None:
            return False
        await self._remove(EphemeralToken.model_validate_json(raw))
        return True

    async def handle_expired(self, entry: ExpiredEntry) -> None:
        """Store subscriber: log the expired token and run kind handlers.

        Entries outside the token keyspace are ignored. Unreadable payloads
        are logged and dropped.
        """
        if not entry.key.startswith(f"{_KEY_PREFIX}:"):
            return
        try:
            record = EphemeralToken.model_validate_json(entry.value)
        except pydantic.ValidationError:
            logger.warning("Expired token payload unreadable", key=entry.key)
            return

        with structlog.contextvars.bound_contextvars(
            subject=record.subject, token_kind=record.kind.value
        ):
            logger.info("Token expired", expires_at=record.expires_at.isoformat())
            for handler in self._handlers.get(record.kind, []):
                try:
                    await handler(record)
                except Exception:  # noqa: BLE001
                    logger.exception("Token expiry handler failed")

    async def _remove(self, record: EphemeralToken) -> None:
        keys = [token_key(record.kind, record.token)]
        if self._policies[record.kind].subject_index is not SubjectIndex.NONE:
            index_key = subject_key(record.kind, record.subject)
            if await self._store.get(index_key) == record.token:
                keys.append(index_key)
        await self._store.delete(*keys)


# Singleton instance for the application
_token_manager: TokenLifecycleManager | None = None


def get_token_manager() -> TokenLifecycleManager:
    """Get the application's token manager.

    Raises:
        RuntimeError: Called before the application started.
    """
    if _token_manager is None:
        msg = "Token manager not initialized"
        raise RuntimeError(msg)
    return _token_manager


def set_token_manager(manager: TokenLifecycleManager | None) -> None:
    """Install (or clear, with None) the application's token manager."""
    global _token_manager
    _token_manager = manager
