"""Authentication helpers for JWT creation, cookie management, and passwords.

Pipeline:
- create_jwt / set_auth_cookie: JWT issuance for successful login
- decode_jwt: signature and claim verification for the auth dependency
- validate_password_strength: Format rules (sync, no network)
- hash_password / verify_password: bcrypt
- DUMMY_HASH: Timing-safe constant for user enumeration defense

Every JWT carries a ``jti`` that is registered as a session token in the
expiry store; logout revokes it and expiry ends the session.
"""

import re
from datetime import UTC, datetime, timedelta
from typing import Any

import bcrypt
import jwt
from fastapi import Response

from identity.core.config import settings
from identity.core.errors import ValidationError

_JWT_ALGORITHM = "HS256"

# Pre-computed bcrypt hash for timing-safe comparison on user-not-found.
# Security: prevents user enumeration via response time differences.
# Pre-generated to avoid ~300ms bcrypt computation on every app startup.
DUMMY_HASH = b"$2b$12$ZP2PVB8yI35X.mkRqcUPUuSzJA1CNRt4dZ7X3cyrfJu.2S3w.Qen2"


def session_lifetime() -> timedelta:
    """JWT and session token lifetime."""
    return timedelta(minutes=settings.session_token_ttl_minutes)


def create_jwt(
    *,
    user_id: str,
    jti: str,
    secret: str,
    expires_delta: timedelta | None = None,
) -> str:
    """Create a signed JWT with standard claims.

    Args:
        user_id: Account UUID string for the sub claim.
        jti: Session token id, checked against the session store.
        secret: HMAC signing secret.
        expires_delta: Time until expiration. Defaults to the session TTL.

    Returns:
        Encoded JWT string.
    """
    now = datetime.now(UTC)
    payload = {
        "sub": user_id,
        "jti": jti,
        "aud": settings.auth_audience,
        "iss": settings.auth_issuer,
        "exp": now + (expires_delta or session_lifetime()),
        "iat": now,
    }
    return jwt.encode(payload, secret, algorithm=_JWT_ALGORITHM)


def decode_jwt(token: str) -> dict[str, Any]:
    """Verify signature, exp, aud and iss of a JWT.

    Raises:
        jwt.InvalidTokenError: On any verification failure.
    """
    return jwt.decode(
        token,
        settings.auth_secret.get_secret_value(),
        algorithms=[_JWT_ALGORITHM],
        audience=settings.auth_audience,
        issuer=settings.auth_issuer,
        options={"require": ["sub", "jti", "exp", "iat"]},
    )


def set_auth_cookie(response: Response, token: str) -> None:
    """Set httpOnly JWT cookie on response.

    Security: httpOnly prevents XSS cookie theft. Secure flag and SameSite
    are configured via settings for environment-appropriate security.

    Args:
        response: FastAPI response object.
        token: JWT token string.
    """
    response.set_cookie(
        key=settings.auth_cookie_name,
        value=token,
        httponly=True,
        secure=settings.auth_cookie_secure,
        samesite=settings.auth_cookie_samesite,
        path="/",
        max_age=int(session_lifetime().total_seconds()),
        domain=settings.auth_cookie_domain or None,
    )


def clear_auth_cookie(response: Response) -> None:
    """Expire the JWT cookie with the same attributes it was set with."""
    response.delete_cookie(
        key=settings.auth_cookie_name,
        path="/",
        secure=settings.auth_cookie_secure,
        httponly=True,
        samesite=settings.auth_cookie_samesite,
        domain=settings.auth_cookie_domain or None,
    )


def validate_password_strength(password: str) -> None:
    """Validate password meets strength requirements.

    8-128 chars, letter + number + special character.

    Args:
        password: Plain-text password to validate.

    Raises:
        ValidationError: If password doesn't meet requirements.
    """
    if len(password) < 8:
        raise ValidationError("Password must be at least 8 characters")
    if len(password) > 128:
        raise ValidationError("Password must be at most 128 characters")
    if not re.search(r"[a-zA-Z]", password):
        raise ValidationError("Password must contain at least one letter")
    if not re.search(r"\d", password):
        raise ValidationError("Password must contain at least one number")
    if not re.search(r"[^a-zA-Z\d]", password):
        raise ValidationError("Password must contain at least one special character")


def hash_password(password: str) -> str:
    """bcrypt hash of ``password`` at the configured cost."""
    return bcrypt.hashpw(
        password.encode(), bcrypt.gensalt(rounds=settings.bcrypt_rounds)
    ).decode()


def verify_password(password: str, password_hash: str | None) -> bool:
    """Check ``password`` against a stored hash.

    A missing hash still runs a bcrypt comparison against DUMMY_HASH so the
    response time does not reveal whether the account exists.
    """
    if not password_hash:
        bcrypt.checkpw(password.encode(), DUMMY_HASH)
        return False
    return bcrypt.checkpw(password.encode(), password_hash.encode())
