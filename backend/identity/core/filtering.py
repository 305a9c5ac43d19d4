"""Filtering and sorting utilities for collection endpoints.

Filtering:
    - `?filter=email|eq|a@x.com` - one clause, `key|operator|value`
    - `?filter=created_at|gte|2024-01-01T00:00&filter=created_at|lte|2024-02-01T00:00`
      - repeated params are ANDed
    - `?filter=roles|in|ROLE_ADMIN;ROLE_USER` - `in`/`nin` take `;`-separated values
    - keys may be dotted paths into nested fields (`activation.activated_at`)

Sorting:
    - `?sort=created_at` - Ascending by field
    - `?sort=-created_at` - Descending (prefix with `-`)
    - `?sort=-created_at,name` - Multiple fields, comma-separated

Operators: eq, ne, gt, gte, lt, lte, in, nin, regex (case-insensitive names).

Example:
    GET /users?filter=roles|in|ROLE_ADMIN&filter=name|regex|^an&sort=-created_at
"""

import re
from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import StrEnum

from fastapi import Query

from identity.core.coercion import coerce_value
from identity.core.errors import (
    MalformedFilterError,
    UnknownOperatorError,
    UnsupportedTypeError,
    ValueParseError,
)
from identity.core.field_types import EntitySchema, FieldKind, resolve_field

# Separators of the filter grammar
_PART_SEPARATOR = "|"
_SET_SEPARATOR = ";"

# Inline option groups and Python-only group syntax; PostgreSQL rejects these
_UNPORTABLE_REGEX = re.compile(r"\(\?(?:[aiLmsux-]+[:)]|P|>)")


class Operator(StrEnum):
    """Supported filter operators."""

    EQ = "eq"
    GT = "gt"
    GTE = "gte"
    IN = "in"
    LT = "lt"
    LTE = "lte"
    NE = "ne"
    NIN = "nin"
    REGEX = "regex"

    @classmethod
    def from_name(cls, name: str) -> "Operator":
        """Look up an operator by case-insensitive name.

        Raises:
            UnknownOperatorError: If no operator has that name.
        """
        try:
            return cls(name.strip().lower())
        except ValueError as exc:
            raise UnknownOperatorError(name) from exc

    @property
    def is_range(self) -> bool:
        """True for bounds that refine each other on the same key."""
        return self in _RANGE_OPERATORS

    @property
    def is_set(self) -> bool:
        """True for operators whose value is a set."""
        return self in _SET_OPERATORS


_RANGE_OPERATORS = frozenset({Operator.GT, Operator.GTE, Operator.LT, Operator.LTE})
_SET_OPERATORS = frozenset({Operator.IN, Operator.NIN})


@dataclass(frozen=True)
class FilterClause:
    """One parsed ``key|operator|value`` predicate.

    Attributes:
        key: Dotted field path.
        operator: Filter operator.
        value: Coerced scalar, or a non-empty frozenset for in/nin. Regex
            values are the pattern string.
    """

    key: str
    operator: Operator
    value: object


# Insertion order mirrors the order of the filter query params.
FilterSet = tuple[FilterClause, ...]


def parse_filter(raw_filter: str, schema: EntitySchema) -> FilterClause:
    """Parse a single ``key|operator|value`` string.

    Args:
        raw_filter: Filter expression from the query string.
        schema: Registered field table of the filtered entity.

    Returns:
        FilterClause with a typed value.

    Raises:
        MalformedFilterError: Wrong number of parts, or empty in/nin value.
        UnknownOperatorError: Operator not supported.
        UnknownFieldError: Key not registered.
        UnsupportedTypeError: Field kind has no converter, or regex on a
            non-string field.
        ValueParseError: Value does not parse as the field kind.
    """
    parts = raw_filter.split(_PART_SEPARATOR)
    if len(parts) != 3:
        raise MalformedFilterError(raw_filter)

    key, operator_name, raw_value = parts
    operator = Operator.from_name(operator_name)
    resolved = resolve_field(schema, key.strip())

    if operator.is_set:
        # Empty elements ("A;;B", trailing ";") are skipped; a value with no
        # elements at all is rejected rather than matching nothing/everything.
        elements = [
            v.strip() for v in raw_value.split(_SET_SEPARATOR) if v.strip()
        ]
        if not elements:
            raise MalformedFilterError(raw_filter, operator=operator.value)
        value: object = frozenset(
            coerce_value(element, resolved.kind) for element in elements
        )
    elif operator is Operator.REGEX:
        if resolved.kind is not FieldKind.STRING:
            raise UnsupportedTypeError(resolved.path, operator=operator.value)
        try:
            re.compile(raw_value)
        except re.error as exc:
            raise ValueParseError(raw_value, "regular expression") from exc
        if _UNPORTABLE_REGEX.search(raw_value):
            raise ValueParseError(raw_value, "regular expression")
        value = raw_value
    else:
        value = coerce_value(raw_value, resolved.kind)

    return FilterClause(key=resolved.path, operator=operator, value=value)


def parse_filters(raw_filters: Sequence[str] | None, schema: EntitySchema) -> FilterSet:
    """Parse filter query params into an ordered FilterSet.

    Any failing clause aborts the whole parse; no partial filter is returned.

    Args:
        raw_filters: Filter expressions, in query-string order.
        schema: Registered field table of the filtered entity.

    Returns:
        Tuple of FilterClause in input order. Empty when no filters.
    """
    if not raw_filters:
        return ()
    return tuple(parse_filter(raw_filter, schema) for raw_filter in raw_filters)


def parse_sort(sort_param: str | None) -> list[tuple[str, str]]:
    """Parse sort query parameter into field/direction tuples.

    Args:
        sort_param: Raw sort query string (e.g., "-created_at,name").

    Returns:
        List of (field_name, direction) tuples.
        Direction is "asc" or "desc".

    Examples:
        >>> parse_sort("-created_at,name")
        [("created_at", "desc"), ("name", "asc")]

        >>> parse_sort("email")
        [("email", "asc")]
    """
    if not sort_param:
        return []

    result: list[tuple[str, str]] = []
    for part in sort_param.split(","):
        field_name = part.strip()
        if not field_name:
            continue

        if field_name.startswith("-"):
            result.append((field_name[1:].strip(), "desc"))
        else:
            result.append((field_name, "asc"))

    return result


@dataclass
class SortParams:
    """Parsed sort parameters for a query.

    Attributes:
        fields: List of (field_name, direction) tuples.
    """

    fields: list[tuple[str, str]] = field(default_factory=list)

    @classmethod
    def from_query(cls, sort_param: str | None) -> "SortParams":
        """Create SortParams from query string."""
        return cls(fields=parse_sort(sort_param))

    def is_empty(self) -> bool:
        """Check if no sort fields are specified."""
        return len(self.fields) == 0


# =============================================================================
# FastAPI Dependency Functions
# =============================================================================


def filter_params(
    filters: list[str] | None = Query(  # noqa: B008
        default=None,
        alias="filter",
        description="Filter clauses `key|operator|value`. Repeat to AND them.",
        examples=["email|eq|a@x.com", "roles|in|ROLE_ADMIN;ROLE_USER"],
    ),
) -> list[str]:
    """FastAPI dependency collecting raw ``filter`` query params.

    Parsing happens in the endpoint against the resource's field table so
    errors surface as 400 filter errors rather than request validation errors.

    Returns:
        Raw filter strings in query order.
    """
    return filters or []


def sort_params(
    sort: str | None = Query(  # noqa: B008
        default=None,
        description="Sort fields. Use `-` prefix for descending. Comma-separate multiple.",
        examples=["-created_at,name", "email"],
    ),
) -> SortParams:
    """FastAPI dependency for parsing sort query parameter.

    Args:
        sort: Raw sort query parameter.

    Returns:
        Parsed SortParams instance.
    """
    return SortParams.from_query(sort)
