"""Email sending via Resend API.

Plain-text emails for the account lifecycle: activation link, password
reset link, and password-changed notice. Delivery is fire-and-forget:
failures are logged and never surface to the caller.
"""

import logging
from urllib.parse import quote

import httpx

from identity.core.config import settings

logger = logging.getLogger(__name__)

_RESEND_API_URL = "https://api.resend.com/emails"
_RESEND_TIMEOUT = 10.0


async def _send(*, to_email: str, subject: str, text: str) -> None:
    try:
        async with httpx.AsyncClient() as client:
            resp = await client.post(
                _RESEND_API_URL,
                headers={
                    "Authorization": f"Bearer {settings.resend_api_key.get_secret_value()}",
                },
                json={
                    "from": settings.email_from,
                    "to": to_email,
                    "subject": subject,
                    "text": text,
                },
                timeout=_RESEND_TIMEOUT,
            )
            resp.raise_for_status()
    except Exception:
        logger.warning("Failed to send '%s' email", subject, exc_info=True)


async def send_activation_email(*, to_email: str, name: str, token: str) -> None:
    """Send the email activation link.

    The link points at the backend activation endpoint directly.
    """
    activate_url = f"{settings.backend_url}/api/v1/auth/activate/{quote(token, safe='')}"
    hours = settings.activation_token_ttl_minutes // 60
    await _send(
        to_email=to_email,
        subject="Activate your account",
        text=(
            f"Hi {name},\n\n"
            f"Click this link to activate your account:\n\n{activate_url}\n\n"
            f"This link expires in {hours} hours."
        ),
    )


async def send_password_reset_email(*, to_email: str, name: str, token: str) -> None:
    """Send the password reset link pointing at the frontend form."""
    reset_url = f"{settings.frontend_url}/password-reset/{quote(token, safe='')}"
    await _send(
        to_email=to_email,
        subject="Reset your password",
        text=(
            f"Hi {name},\n\n"
            f"Click this link to choose a new password:\n\n{reset_url}\n\n"
            f"This link expires in {settings.password_reset_token_ttl_minutes} minutes. "
            "If you didn't request this, you can safely ignore this email."
        ),
    )


async def send_password_changed_email(*, to_email: str, name: str) -> None:
    """Notify the account owner that their password changed."""
    await _send(
        to_email=to_email,
        subject="Your password was changed",
        text=(
            f"Hi {name},\n\n"
            "Your password was just changed. If this wasn't you, reset your "
            "password immediately."
        ),
    )
