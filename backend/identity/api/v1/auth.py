"""Authentication endpoints: registration, activation, login, password reset.

Security considerations:
- login: constant-time comparison via DUMMY_HASH prevents user enumeration
- register: bcrypt, password strength, email uniqueness, activation email
  sent by the ActivationWorker, never inline
- password reset: one active reset token per account, token ownership is
  checked against the submitted email
- every unauthenticated endpoint is rate limited per IP
"""

from fastapi import APIRouter, Request, Response, status

from identity.api.deps import Accounts, CurrentSession
from identity.core.auth import clear_auth_cookie, set_auth_cookie
from identity.core.rate_limiting import limiter
from identity.core.responses import DataResponse
from identity.schemas.account import (
    AccountResponse,
    ChangePasswordRequest,
    LoginRequest,
    LoginResponse,
    PasswordResetRequest,
    RegisterRequest,
)

router = APIRouter()


@router.post("/register", status_code=status.HTTP_201_CREATED)
@limiter.limit("3/hour")
async def register(
    request: Request,  # noqa: ARG001 - required by @limiter.limit()
    body: RegisterRequest,
    accounts: Accounts,
) -> DataResponse[AccountResponse]:
    """Register a new account.

    The account starts inactive; the activation email follows
    asynchronously.

    Rate limit: 3 per hour per IP.
    """
    account = await accounts.register(
        name=body.name, email=body.email, password=body.password
    )
    return DataResponse(data=AccountResponse.from_account(account))


@router.post("/login")
@limiter.limit("5/15minute")
async def login(
    request: Request,  # noqa: ARG001 - required by @limiter.limit()
    body: LoginRequest,
    response: Response,
    accounts: Accounts,
) -> DataResponse[LoginResponse]:
    """Verify email + password and issue the JWT cookie.

    Rate limit: 5 per 15 minutes per IP.
    """
    result = await accounts.login(email=body.email, password=body.password)
    set_auth_cookie(response, result.token)
    return DataResponse(
        data=LoginResponse(
            account=AccountResponse.from_account(result.account),
            expires_at=result.expires_at,
        )
    )


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
async def logout(session: CurrentSession, accounts: Accounts) -> Response:
    """End the current session and clear the cookie."""
    await accounts.logout(session.session_id)
    response = Response(status_code=status.HTTP_204_NO_CONTENT)
    clear_auth_cookie(response)
    return response


@router.get("/activate/{token}")
@limiter.limit("10/hour")
async def activate(
    request: Request,  # noqa: ARG001 - required by @limiter.limit()
    token: str,
    accounts: Accounts,
) -> DataResponse[AccountResponse]:
    """Activate an account from the emailed link."""
    account = await accounts.activate(token)
    return DataResponse(data=AccountResponse.from_account(account))


@router.post("/password-reset", status_code=status.HTTP_202_ACCEPTED)
@limiter.limit("3/hour")
async def request_password_reset(
    request: Request,  # noqa: ARG001 - required by @limiter.limit()
    body: PasswordResetRequest,
    accounts: Accounts,
) -> DataResponse[dict]:
    """Email a password reset link.

    Returns 409 while a previous link is still valid.

    Rate limit: 3 per hour per IP.
    """
    await accounts.request_password_reset(body.email)
    return DataResponse(data={"email": body.email.lower()})


@router.post("/password-reset/{token}")
@limiter.limit("5/hour")
async def reset_password(
    request: Request,  # noqa: ARG001 - required by @limiter.limit()
    token: str,
    body: ChangePasswordRequest,
    accounts: Accounts,
) -> DataResponse[AccountResponse]:
    """Set a new password with a reset token.

    Rate limit: 5 per hour per IP.
    """
    account = await accounts.reset_password(
        token=token,
        email=body.email,
        password=body.password,
        password_confirmation=body.password_confirmation,
    )
    return DataResponse(data=AccountResponse.from_account(account))
