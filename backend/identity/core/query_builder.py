"""Compose parsed filters into SQLAlchemy queries.

Clauses are folded into one predicate per key before rendering:

- eq, ne, in, nin, regex: last clause on a key wins (overwrite).
- gt, gte, lt, lte: refine a range on the key, so ``age|gte|18`` and
  ``age|lte|65`` become one closed range. A second bound on the same side
  replaces the first. A range bound on top of an eq/ne/in/nin/regex
  predicate raises PredicateConflictError.

Rendered predicates are ANDed. Collection fields (roles) match when any
element matches; ``ne``/``nin`` on a collection match when no element does.
Scalar ``ne``/``nin`` also match NULL, like a document store treats a missing
field.

Regex patterns match case-insensitively (``~*`` on PostgreSQL).
"""

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, replace
from typing import Any

from sqlalchemy import ColumnElement, Select, and_, func, or_, select, true

from identity.core.errors import PredicateConflictError, UnsupportedTypeError
from identity.core.field_types import EntitySchema, Field, resolve_field
from identity.core.filtering import FilterSet, Operator, SortParams


@dataclass(frozen=True)
class RangePredicate:
    """Accumulated lower/upper bounds for one key.

    Attributes:
        lower: (GT or GTE, value) or None.
        upper: (LT or LTE, value) or None.
    """

    lower: tuple[Operator, Any] | None = None
    upper: tuple[Operator, Any] | None = None

    def refine(self, operator: Operator, value: Any) -> "RangePredicate":
        """Return a copy with one side set to ``operator value``."""
        if operator in (Operator.GT, Operator.GTE):
            return replace(self, lower=(operator, value))
        return replace(self, upper=(operator, value))


@dataclass(frozen=True)
class ComparisonPredicate:
    """Equality, set membership, or regex predicate for one key."""

    operator: Operator
    value: Any


Predicate = RangePredicate | ComparisonPredicate


@dataclass(frozen=True)
class FilteredQuery:
    """Store-native query: entity, conjoined conditions, and ordering.

    Data and count statements are both derived from ``where`` so a page's
    total can never drift from the rows it counts.
    """

    entity: Any
    where: tuple[ColumnElement[bool], ...] = ()
    order_by: tuple[Any, ...] = ()

    def statement(self) -> Select[Any]:
        """SELECT of matching entities, ordered."""
        stmt = select(self.entity).where(*self.where)
        if self.order_by:
            stmt = stmt.order_by(*self.order_by)
        return stmt

    def count_statement(self) -> Select[Any]:
        """SELECT COUNT(*) over the same conditions."""
        return select(func.count()).select_from(self.entity).where(*self.where)


def resolve_predicates(filter_set: FilterSet) -> dict[str, Predicate]:
    """Fold clauses into one accumulated predicate per key.

    Args:
        filter_set: Parsed clauses in input order.

    Returns:
        Mapping of key to predicate, keys in first-seen order.

    Raises:
        PredicateConflictError: Range bound applied onto a non-range predicate.
    """
    predicates: dict[str, Predicate] = {}
    for clause in filter_set:
        if clause.operator.is_range:
            existing = predicates.get(clause.key, RangePredicate())
            if not isinstance(existing, RangePredicate):
                raise PredicateConflictError(clause.key, clause.operator.value)
            predicates[clause.key] = existing.refine(clause.operator, clause.value)
        else:
            predicates[clause.key] = ComparisonPredicate(clause.operator, clause.value)
    return predicates


def render_predicate(field: Field, predicate: Predicate) -> ColumnElement[bool]:
    """Render one accumulated predicate against its registered column."""
    column = field.column

    if isinstance(predicate, RangePredicate):
        condition = _render_range(column, predicate)
        return field.collection.any(condition) if field.collection else condition

    operator, value = predicate.operator, predicate.value
    if field.collection is not None:
        # Negative operators on a collection: no element matches.
        if operator is Operator.NE:
            return ~field.collection.any(column == value)
        if operator is Operator.NIN:
            return ~field.collection.any(column.in_(list(value)))
        return field.collection.any(_render_comparison(column, operator, value))

    return _render_comparison(column, operator, value)


def build_conditions(
    filter_set: FilterSet, schema: EntitySchema
) -> tuple[ColumnElement[bool], ...]:
    """Fold and render a FilterSet into AND-able conditions."""
    return tuple(
        render_predicate(resolve_field(schema, key).field, predicate)
        for key, predicate in resolve_predicates(filter_set).items()
    )


def build_query(
    entity: Any,
    filter_set: FilterSet,
    schema: EntitySchema,
    *,
    sort: SortParams | None = None,
    default_order: Sequence[Any] = (),
) -> FilteredQuery:
    """Build a conjunctive query from parsed filters.

    Args:
        entity: Mapped class being queried.
        filter_set: Parsed clauses.
        schema: Registered field table of ``entity``.
        sort: Requested ordering; falls back to ``default_order``.
        default_order: Ordering used when ``sort`` is empty. Also appended
            as a tiebreaker so offset pages are stable.

    Returns:
        FilteredQuery with all predicates ANDed.
    """
    order_by: list[Any] = []
    if sort is not None and not sort.is_empty():
        order_by.extend(order_by_clauses(sort, schema))
    order_by.extend(default_order)
    return FilteredQuery(
        entity=entity,
        where=build_conditions(filter_set, schema),
        order_by=tuple(order_by),
    )


def disjunctive_query(
    entity: Any,
    conditions: Iterable[ColumnElement[bool]],
    *,
    order_by: Sequence[Any] = (),
) -> FilteredQuery:
    """Build a query matching ANY of ``conditions``.

    No conditions means match-all, not match-nothing.
    """
    present = list(conditions)
    where = (or_(*present),) if present else (true(),)
    return FilteredQuery(entity=entity, where=where, order_by=tuple(order_by))


def order_by_clauses(sort: SortParams, schema: EntitySchema) -> list[Any]:
    """Resolve sort fields against the field table.

    Raises:
        UnknownFieldError: Sort field not registered.
        UnsupportedTypeError: Sort on a collection field.
    """
    clauses: list[Any] = []
    for path, direction in sort.fields:
        resolved = resolve_field(schema, path)
        if resolved.field.is_collection:
            raise UnsupportedTypeError(resolved.path)
        column = resolved.field.column
        clauses.append(column.desc() if direction == "desc" else column.asc())
    return clauses


def _render_range(column: Any, predicate: RangePredicate) -> ColumnElement[bool]:
    bounds: list[ColumnElement[bool]] = []
    if predicate.lower is not None:
        operator, value = predicate.lower
        bounds.append(column > value if operator is Operator.GT else column >= value)
    if predicate.upper is not None:
        operator, value = predicate.upper
        bounds.append(column < value if operator is Operator.LT else column <= value)
    return and_(*bounds)


def _render_comparison(
    column: Any, operator: Operator, value: Any
) -> ColumnElement[bool]:
    match operator:
        case Operator.EQ:
            return column == value
        case Operator.NE:
            return column.is_distinct_from(value)
        case Operator.IN:
            return column.in_(list(value))
        case Operator.NIN:
            return or_(column.not_in(list(value)), column.is_(None))
        case Operator.REGEX:
            return column.regexp_match(value, flags="i")
        case _:
            raise UnsupportedTypeError(str(column), operator=operator.value)
