"""Tests for filter expression parsing and sort parsing."""

import uuid
from dataclasses import FrozenInstanceError
from datetime import UTC, datetime

import pytest

from identity.core.errors import (
    MalformedFilterError,
    UnknownFieldError,
    UnknownOperatorError,
    UnsupportedTypeError,
    ValueParseError,
)
from identity.core.filtering import (
    FilterClause,
    Operator,
    SortParams,
    parse_filter,
    parse_filters,
    parse_sort,
)
from identity.models.account import ACCOUNT_FIELDS


def _parse(raw: str) -> FilterClause:
    return parse_filter(raw, ACCOUNT_FIELDS)


class TestParseFilterShape:
    """Tests for the key|operator|value grammar."""

    def test_scalar_clause(self):
        clause = _parse("name|eq|Ann")
        assert clause == FilterClause(key="name", operator=Operator.EQ, value="Ann")

    def test_operator_name_is_case_insensitive(self):
        assert _parse("name|ReGeX|^an").operator is Operator.REGEX

    @pytest.mark.parametrize("raw", ["name|eq", "name", "name|eq|a|b", ""])
    def test_wrong_part_count_is_malformed(self, raw):
        """Exactly three parts are required."""
        with pytest.raises(MalformedFilterError) as exc_info:
            _parse(raw)
        assert exc_info.value.code == "MALFORMED_FILTER"

    def test_unknown_operator(self):
        """'name|bogus|5' names an operator outside the fixed set."""
        with pytest.raises(UnknownOperatorError) as exc_info:
            _parse("name|bogus|5")
        assert exc_info.value.operator == "bogus"
        assert exc_info.value.code == "UNKNOWN_OPERATOR"

    def test_unknown_field(self):
        with pytest.raises(UnknownFieldError):
            _parse("password_hash|eq|x")

    def test_empty_scalar_string_is_allowed(self):
        """Only set operators reject an empty value."""
        assert _parse("name|eq|").value == ""

    def test_nested_key(self):
        clause = _parse("activation.activated_at|gte|2024-01-01T00:00")
        assert clause.key == "activation.activated_at"
        assert clause.value == datetime(2024, 1, 1, tzinfo=UTC)


class TestParseFilterValues:
    """Tests for typed values, sets and regex validation."""

    def test_set_value(self):
        """'roles|in|A;B;C' yields a three-element set."""
        clause = _parse("roles|in|A;B;C")
        assert clause.value == frozenset({"A", "B", "C"})
        assert len(clause.value) == 3

    def test_set_duplicates_collapse(self):
        assert _parse("roles|nin|A;A;B").value == frozenset({"A", "B"})

    def test_empty_set_elements_skipped(self):
        assert _parse("roles|in|A;;B;").value == frozenset({"A", "B"})

    def test_set_elements_are_trimmed(self):
        assert _parse("roles|in|A; B ").value == frozenset({"A", "B"})

    @pytest.mark.parametrize("raw", ["roles|in|", "roles|nin|;", "roles|in| ; "])
    def test_empty_set_rejected(self, raw):
        """A set operator with no elements is malformed, not match-nothing."""
        with pytest.raises(MalformedFilterError):
            _parse(raw)

    def test_set_elements_are_coerced(self):
        first, second = uuid.uuid4(), uuid.uuid4()
        clause = _parse(f"id|in|{first};{second}")
        assert clause.value == frozenset({first, second})

    def test_bad_scalar_value(self):
        with pytest.raises(ValueParseError):
            _parse("created_at|gte|yesterday")

    def test_bad_set_element(self):
        with pytest.raises(ValueParseError):
            _parse(f"id|in|{uuid.uuid4()};nope")

    def test_regex_requires_string_field(self):
        with pytest.raises(UnsupportedTypeError):
            _parse("created_at|regex|2024")

    def test_invalid_regex(self):
        with pytest.raises(ValueParseError):
            _parse("name|regex|(unclosed")

    def test_regex_value_kept_verbatim(self):
        assert _parse("email|regex|@example\\.com$").value == "@example\\.com$"

    @pytest.mark.parametrize("pattern", ["(?s)a.b", "^a(?i:b)", "(?P<n>a)", "(?>ab)"])
    def test_regex_outside_portable_syntax(self, pattern):
        """Inline flags and Python-only groups never reach the database."""
        with pytest.raises(ValueParseError):
            _parse(f"name|regex|{pattern}")

    @pytest.mark.parametrize("pattern", ["^(?:an|bo)", "a(?=b)", "a(?!b)"])
    def test_regex_plain_groups_accepted(self, pattern):
        assert _parse(f"name|regex|{pattern}").value == pattern


class TestParseFilters:
    """Tests for parsing a list of filter params."""

    def test_none_and_empty(self):
        assert parse_filters(None, ACCOUNT_FIELDS) == ()
        assert parse_filters([], ACCOUNT_FIELDS) == ()

    def test_order_preserved(self):
        filter_set = parse_filters(
            ["email|eq|a@x.com", "name|ne|Bob", "roles|in|ROLE_ADMIN"], ACCOUNT_FIELDS
        )
        assert [c.key for c in filter_set] == ["email", "name", "roles"]

    def test_one_bad_clause_aborts_all(self):
        """No partial FilterSet is returned."""
        with pytest.raises(UnknownOperatorError):
            parse_filters(["email|eq|a@x.com", "name|bogus|5"], ACCOUNT_FIELDS)

    def test_clauses_are_immutable(self):
        clause = _parse("name|eq|Ann")
        with pytest.raises(FrozenInstanceError):
            clause.value = "Bob"


class TestOperator:
    """Tests for operator classification."""

    def test_range_operators(self):
        assert {op for op in Operator if op.is_range} == {
            Operator.GT,
            Operator.GTE,
            Operator.LT,
            Operator.LTE,
        }

    def test_set_operators(self):
        assert {op for op in Operator if op.is_set} == {Operator.IN, Operator.NIN}


class TestParseSort:
    """Tests for parsing sort query strings."""

    def test_ascending_sort(self):
        """Positive field name should sort ascending."""
        assert parse_sort("created_at") == [("created_at", "asc")]

    def test_descending_sort_with_minus_prefix(self):
        """Negative prefix should sort descending."""
        assert parse_sort("-created_at") == [("created_at", "desc")]

    def test_multiple_fields_mixed_directions(self):
        """Each field can have independent sort direction."""
        assert parse_sort("-created_at,name,-email") == [
            ("created_at", "desc"),
            ("name", "asc"),
            ("email", "desc"),
        ]

    def test_empty_sort_returns_empty_list(self):
        """Empty or None sort should return empty list."""
        assert parse_sort("") == []
        assert parse_sort(None) == []

    def test_whitespace_trimmed(self):
        """Whitespace around field names should be trimmed."""
        assert parse_sort(" created_at , -name ") == [
            ("created_at", "asc"),
            ("name", "desc"),
        ]

    def test_sort_params_is_empty(self):
        assert SortParams.from_query("").is_empty() is True
        assert SortParams.from_query("name").is_empty() is False
