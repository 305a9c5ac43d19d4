"""Message catalog for user-facing error text.

Error codes resolve to human-readable messages here so services never build
client-facing text inline, and so internal exception text (SQLAlchemy, regex
compiler, datetime parser) never reaches a response body.
"""

import logging

logger = logging.getLogger(__name__)

_MESSAGES: dict[str, str] = {
    # Accounts
    "user_not_found": "User not found",
    "email_already_exists": "Email already registered",
    "email_not_activated": (
        "Please activate your email before signing in. "
        "Check your inbox for the activation link."
    ),
    "invalid_credentials": "Invalid email or password",
    "activation_token_not_found": "Activation link is invalid or has expired",
    # Passwords
    "password_mismatch": "Password and confirmation do not match",
    "password_confirmation_not_provided": "Password confirmation is required",
    "new_password_must_be_different_from_old": (
        "New password must be different from the current password"
    ),
    # Tokens
    "password_reset_token_exist": (
        "A password reset link was already sent. Check your inbox or try again later."
    ),
    "password_reset_token_expired": "Password reset token '{token}' is invalid or expired",
    "invalid_token_for_mail": "Token does not belong to this email",
    "token_not_found": "Token not found or expired",
    # Filtering
    "malformed_filter": "Filter '{filter}' must have the form key|operator|value",
    "empty_set_filter": "Filter '{filter}' needs at least one value for '{operator}'",
    "unknown_operator": "Unknown filter operator '{operator}'",
    "unknown_field": "Filtering not allowed on field '{field}'",
    "unsupported_filter_type": "Filtering not supported for field '{field}'",
    "unsupported_operator_for_type": (
        "Operator '{operator}' is not supported for field '{field}'"
    ),
    "invalid_filter_value": "Value '{value}' is not a valid {kind}",
    "predicate_conflict": (
        "Cannot combine '{operator}' with an existing non-range filter on '{field}'"
    ),
}


def get_message(code: str, **params: object) -> str:
    """Resolve a message code to its text.

    Args:
        code: Message code (e.g., "user_not_found").
        **params: Values substituted into the message template.

    Returns:
        Formatted message. Unknown codes return the code itself so a missing
        catalog entry degrades to something readable instead of raising.
    """
    template = _MESSAGES.get(code)
    if template is None:
        logger.warning("Missing message code: %s", code)
        return code
    return template.format(**params)
