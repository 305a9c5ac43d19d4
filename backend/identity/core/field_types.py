"""Registered field-type tables for filterable entities.

Each filterable entity registers an EntitySchema at import time: a mapping
from field name to either a primitive Field (kind + column) or a nested
EntitySchema. Dotted filter keys are resolved by walking that table, so an
unregistered field (e.g. ``password_hash``) can never be queried and a
model rename fails at startup instead of at request time.

Example:
    ACCOUNT_FIELDS = EntitySchema(
        "account",
        {
            "email": Field(FieldKind.STRING, Account.email),
            "activation": EntitySchema(
                "activation",
                {"activated_at": Field(FieldKind.TIMESTAMP, Account.email_activated_at)},
            ),
        },
    )

    resolve_field(ACCOUNT_FIELDS, "activation.activated_at").kind
    # FieldKind.TIMESTAMP
"""

from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from enum import StrEnum
from typing import Any, Union

from sqlalchemy.orm import InstrumentedAttribute

from identity.core.errors import UnknownFieldError, UnsupportedTypeError


class FieldKind(StrEnum):
    """Closed set of primitive kinds a filter value can be coerced into."""

    STRING = "string"
    INTEGER = "integer"
    LONG = "long"
    DOUBLE = "double"
    FLOAT = "float"
    BOOLEAN = "boolean"
    TIMESTAMP = "timestamp"
    UUID = "uuid"


@dataclass(frozen=True)
class Field:
    """A filterable primitive field.

    Attributes:
        kind: Primitive kind used to coerce raw filter values.
        column: Column the predicate renders against.
        collection: Relationship holding ``column`` when the field is
            multi-valued (e.g. roles). Predicates render as "any element
            matches" through this relationship.
    """

    kind: FieldKind
    column: Any
    collection: InstrumentedAttribute[Any] | None = None

    @property
    def is_collection(self) -> bool:
        """True when the field holds several values per record."""
        return self.collection is not None


@dataclass(frozen=True)
class EntitySchema:
    """Named table of filterable fields, possibly nested."""

    name: str
    fields: Mapping[str, Union[Field, "EntitySchema"]]

    def paths(self, prefix: str = "") -> Iterator[str]:
        """Yield every dotted path that resolves to a primitive field."""
        for name, entry in self.fields.items():
            path = f"{prefix}{name}"
            if isinstance(entry, EntitySchema):
                yield from entry.paths(f"{path}.")
            else:
                yield path


@dataclass(frozen=True)
class ResolvedField:
    """Terminal field found for a dotted path."""

    path: str
    field: Field

    @property
    def kind(self) -> FieldKind:
        return self.field.kind


def resolve_field(schema: EntitySchema, path: str) -> ResolvedField:
    """Resolve a dotted path to its terminal primitive field.

    Walks one schema level per segment, so depth is bounded by the number of
    segments in the path.

    Args:
        schema: Root entity schema.
        path: Dotted field path (e.g. "activation.activated_at").

    Returns:
        ResolvedField with the terminal Field.

    Raises:
        UnknownFieldError: If a segment is not registered, or the path
            continues past a primitive field.
        UnsupportedTypeError: If the path stops on a nested schema.
    """
    segments = path.split(".")
    current: Field | EntitySchema = schema

    for segment in segments:
        if not isinstance(current, EntitySchema) or segment not in current.fields:
            raise UnknownFieldError(segment)
        current = current.fields[segment]

    if isinstance(current, EntitySchema):
        raise UnsupportedTypeError(path)

    return ResolvedField(path=path, field=current)
