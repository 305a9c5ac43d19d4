"""Rate limiting configuration using slowapi.

Security: Slows credential stuffing and email flooding on the
unauthenticated auth endpoints.

Requests carrying a valid session cookie are keyed per account so users
behind a shared IP don't throttle each other. Everything else is keyed by
client IP.

Usage in routers:
    from identity.core.rate_limiting import limiter

    @router.post("/login")
    @limiter.limit("5/15minute")
    async def login(request: Request, ...):
        ...
"""

import jwt
from fastapi import Request, Response
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.responses import JSONResponse

from identity.core.auth import decode_jwt
from identity.core.config import settings


def _rate_limit_key_func(request: Request) -> str:
    """Get rate limit key from request.

    Key format:
    - Valid JWT: "user:{sub}"
    - No/invalid JWT: "unauth:{ip}"

    Args:
        request: The incoming request.

    Returns:
        Rate limit key string.
    """
    # Note: No session-store check here. Rate limiting only needs the sub
    # claim for keying; full auth validation happens in deps.py.
    token = request.cookies.get(settings.auth_cookie_name)
    if token:
        try:
            sub = decode_jwt(token)["sub"]
            # Defense-in-depth: validate sub looks like a UUID (36 chars)
            if len(sub) <= 36:
                return f"user:{sub}"
        except (jwt.InvalidTokenError, KeyError):
            pass

    return f"unauth:{get_remote_address(request)}"


# Global limiter instance
# Configured with in-memory storage (suitable for single-instance deployment)
# For multi-instance, configure Redis storage via RATELIMIT_STORAGE_URL
limiter = Limiter(
    key_func=_rate_limit_key_func,
    enabled=settings.rate_limit_enabled,
)


def rate_limit_exceeded_handler(
    _request: Request,
    exc: RateLimitExceeded,
) -> Response:
    """Handle rate limit exceeded errors.

    Security: Returns 429 Too Many Requests with standard error envelope.

    Args:
        request: The incoming request.
        exc: The rate limit exception.

    Returns:
        JSONResponse with 429 status and retry-after header.
    """
    # Parse retry-after from exception detail (e.g., "10 per 1 minute")
    # Fallback to 60 seconds if parsing fails
    try:
        retry_after = str(exc.detail.split()[-1])
        int(retry_after.rstrip("s"))
    except (ValueError, AttributeError, IndexError):
        retry_after = "60"

    return JSONResponse(
        status_code=429,
        content={
            "error": {
                "code": "RATE_LIMITED",
                "message": f"Rate limit exceeded: {exc.detail}",
            }
        },
        headers={"Retry-After": retry_after},
    )
