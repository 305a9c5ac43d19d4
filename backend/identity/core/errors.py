"""API error classes.

WHY CUSTOM ERROR CLASSES:
- Consistent error response format across all endpoints
- Easy to map to HTTP status codes in exception handlers
- Type-safe error handling in services/repositories

Filter errors are raised by the query engine and abort the whole parse;
token and password conflicts are business errors and map to 4xx.
"""

from identity.core.messages import get_message


class APIError(Exception):
    """Base class for API errors.

    All API errors have a code, message, and HTTP status.
    Subclasses set default status_code.

    Attributes:
        code: Machine-readable error code (e.g., "NOT_FOUND").
        message: Human-readable error message.
        status_code: HTTP status code to return.
        details: Optional list of additional error details.
    """

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = 500,
        details: list[dict] | None = None,
    ) -> None:
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details
        super().__init__(message)


class ValidationError(APIError):
    """Field validation failed (400).

    Use for request body validation errors, query param errors, etc.
    """

    def __init__(
        self,
        message: str,
        details: list[dict] | None = None,
    ) -> None:
        super().__init__(
            code="VALIDATION_ERROR",
            message=message,
            status_code=400,
            details=details,
        )


class UnauthorizedError(APIError):
    """Authentication required (401).

    Use when no valid auth credentials provided.
    """

    def __init__(self, message: str = "Authentication required") -> None:
        super().__init__(
            code="UNAUTHORIZED",
            message=message,
            status_code=401,
        )


class ForbiddenError(APIError):
    """Not allowed to access resource (403).

    Use when auth is valid but user lacks permission.
    """

    def __init__(self, message: str = "Access denied") -> None:
        super().__init__(
            code="FORBIDDEN",
            message=message,
            status_code=403,
        )


class AdminRequiredError(ForbiddenError):
    """Admin role required (403).

    Raised by the require_admin dependency when the account lacks ROLE_ADMIN.
    """

    def __init__(self) -> None:
        APIError.__init__(
            self,
            code="ADMIN_REQUIRED",
            message="Admin access required",
            status_code=403,
        )


class NotFoundError(APIError):
    """Resource not found (404).

    Use when requested resource doesn't exist OR doesn't belong to user.
    Pass ``message`` to use catalog text instead of the generic form.
    """

    def __init__(
        self,
        resource: str,
        resource_id: str | None = None,
        *,
        message: str | None = None,
    ) -> None:
        if message is None:
            if resource_id:
                message = f"{resource} with id '{resource_id}' not found"
            else:
                message = f"{resource} not found"
        super().__init__(
            code="NOT_FOUND",
            message=message,
            status_code=404,
        )


class ConflictError(APIError):
    """Duplicate or conflicting resource (409).

    Use for duplicate entries, conflicting state, etc.
    Accepts custom code for specific conflict types.
    """

    def __init__(
        self,
        code: str,
        message: str,
        details: list[dict] | None = None,
    ) -> None:
        super().__init__(
            code=code,
            message=message,
            status_code=409,
            details=details,
        )


# =============================================================================
# Filter expression errors (400)
# =============================================================================


class FilterError(APIError):
    """Base class for filter parsing and query building failures (400)."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(code=code, message=message, status_code=400)


class MalformedFilterError(FilterError):
    """Filter string is not ``key|operator|value`` or has an empty set value."""

    def __init__(self, raw_filter: str, *, operator: str | None = None) -> None:
        if operator is None:
            message = get_message("malformed_filter", filter=raw_filter)
        else:
            message = get_message(
                "empty_set_filter", filter=raw_filter, operator=operator
            )
        super().__init__("MALFORMED_FILTER", message)
        self.raw_filter = raw_filter


class UnknownOperatorError(FilterError):
    """Operator name is not one of the supported filter operators."""

    def __init__(self, operator: str) -> None:
        super().__init__(
            "UNKNOWN_OPERATOR", get_message("unknown_operator", operator=operator)
        )
        self.operator = operator


class UnknownFieldError(FilterError):
    """A path segment does not name a registered field."""

    def __init__(self, segment: str) -> None:
        super().__init__("UNKNOWN_FIELD", get_message("unknown_field", field=segment))
        self.segment = segment


class UnsupportedTypeError(FilterError):
    """No converter exists for the resolved field kind, or the operator
    does not apply to it."""

    def __init__(self, field: str, *, operator: str | None = None) -> None:
        if operator is None:
            message = get_message("unsupported_filter_type", field=field)
        else:
            message = get_message(
                "unsupported_operator_for_type", field=field, operator=operator
            )
        super().__init__("UNSUPPORTED_FILTER_TYPE", message)
        self.field = field


class ValueParseError(FilterError):
    """Raw filter value does not parse as the field's kind."""

    def __init__(self, value: str, kind: str) -> None:
        super().__init__(
            "INVALID_FILTER_VALUE",
            get_message("invalid_filter_value", value=value, kind=kind),
        )
        self.value = value
        self.kind = kind


class PredicateConflictError(FilterError):
    """Range bound applied on top of an equality/set/regex predicate."""

    def __init__(self, field: str, operator: str) -> None:
        super().__init__(
            "PREDICATE_CONFLICT",
            get_message("predicate_conflict", field=field, operator=operator),
        )
