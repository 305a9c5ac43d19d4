"""Raw string to typed value conversion for filter values.

Whitelisted kinds only: there is no fallback that stringifies an unknown
kind. Conversion is a closed match over FieldKind.

Timestamps accept ISO-8601 (``2024-04-11T00:00``, ``2024-04-11T00:00:00.000Z``,
``2024-04-11 00:00:00+00:00``). Naive timestamps are taken as UTC.
"""

import math
import uuid
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from identity.core.errors import UnsupportedTypeError, ValueParseError
from identity.core.field_types import FieldKind

_TRUE_LITERALS = frozenset({"true"})
_FALSE_LITERALS = frozenset({"false"})


def coerce_value(raw: str, kind: FieldKind) -> object:
    """Convert a raw filter value into the Python value for ``kind``.

    Args:
        raw: Raw text from the filter expression.
        kind: Resolved field kind.

    Returns:
        str, int, float, bool, datetime, or uuid.UUID.

    Raises:
        UnsupportedTypeError: If ``kind`` has no converter.
        ValueParseError: If ``raw`` does not parse as ``kind``.
    """
    match kind:
        case FieldKind.STRING:
            return raw
        case FieldKind.INTEGER | FieldKind.LONG:
            return _parse(raw, kind, int)
        case FieldKind.DOUBLE | FieldKind.FLOAT:
            value = _parse(raw, kind, float)
            if not math.isfinite(value):
                raise ValueParseError(raw, kind.value)
            return value
        case FieldKind.BOOLEAN:
            return _parse_bool(raw)
        case FieldKind.TIMESTAMP:
            return parse_timestamp(raw)
        case FieldKind.UUID:
            return _parse(raw, kind, uuid.UUID)
        case _:
            raise UnsupportedTypeError(str(kind))


def parse_timestamp(raw: str) -> datetime:
    """Parse an ISO-8601 timestamp, defaulting naive values to UTC.

    Raises:
        ValueParseError: If ``raw`` is not ISO-8601.
    """
    value = _parse(raw, FieldKind.TIMESTAMP, datetime.fromisoformat)
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value


def _parse_bool(raw: str) -> bool:
    normalized = raw.strip().lower()
    if normalized in _TRUE_LITERALS:
        return True
    if normalized in _FALSE_LITERALS:
        return False
    raise ValueParseError(raw, FieldKind.BOOLEAN.value)


def _parse(raw: str, kind: FieldKind, parser: Callable[[str], Any]) -> Any:
    try:
        return parser(raw.strip())
    except (ValueError, TypeError) as exc:
        raise ValueParseError(raw, kind.value) from exc
