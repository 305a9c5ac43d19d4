"""Tests for raw filter value coercion."""

import uuid
from datetime import UTC, datetime, timedelta, timezone

import pytest

from identity.core.coercion import coerce_value, parse_timestamp
from identity.core.errors import UnsupportedTypeError, ValueParseError
from identity.core.field_types import FieldKind


class TestScalarKinds:
    """Tests for string, numeric and boolean conversion."""

    def test_string_is_identity(self):
        """Strings are returned untouched, whitespace included."""
        assert coerce_value(" Ann ", FieldKind.STRING) == " Ann "

    @pytest.mark.parametrize("kind", [FieldKind.INTEGER, FieldKind.LONG])
    def test_integers(self, kind):
        assert coerce_value("42", kind) == 42
        assert coerce_value(" -7 ", kind) == -7

    @pytest.mark.parametrize("kind", [FieldKind.DOUBLE, FieldKind.FLOAT])
    def test_floating_point(self, kind):
        assert coerce_value("4.25", kind) == 4.25

    @pytest.mark.parametrize("raw", ["nan", "inf", "-inf"])
    def test_non_finite_floats_rejected(self, raw):
        """NaN and infinities are not comparable filter values."""
        with pytest.raises(ValueParseError):
            coerce_value(raw, FieldKind.DOUBLE)

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [("true", True), ("FALSE", False), (" True ", True)],
    )
    def test_booleans(self, raw, expected):
        assert coerce_value(raw, FieldKind.BOOLEAN) is expected

    @pytest.mark.parametrize("raw", ["yes", "1", ""])
    def test_boolean_literals_are_strict(self, raw):
        with pytest.raises(ValueParseError):
            coerce_value(raw, FieldKind.BOOLEAN)

    def test_uuid(self):
        value = uuid.uuid4()
        assert coerce_value(str(value), FieldKind.UUID) == value


class TestTimestamps:
    """Tests for ISO-8601 timestamp parsing."""

    def test_naive_timestamp_is_utc(self):
        assert parse_timestamp("2024-04-11T00:00") == datetime(2024, 4, 11, tzinfo=UTC)

    def test_zulu_suffix(self):
        assert parse_timestamp("2024-04-11T00:00:00.000Z") == datetime(
            2024, 4, 11, tzinfo=UTC
        )

    def test_offset_is_kept(self):
        value = parse_timestamp("2024-04-11T02:00:00+02:00")
        assert value.utcoffset() == timedelta(hours=2)
        assert value == datetime(2024, 4, 11, tzinfo=UTC)

    def test_space_separator(self):
        assert coerce_value("2024-04-11 00:00:00", FieldKind.TIMESTAMP) == datetime(
            2024, 4, 11, tzinfo=UTC
        )


class TestErrors:
    """Tests for rejection of unparseable values and unknown kinds."""

    @pytest.mark.parametrize(
        ("raw", "kind"),
        [
            ("abc", FieldKind.INTEGER),
            ("4.2", FieldKind.LONG),
            ("four", FieldKind.DOUBLE),
            ("11/04/2024", FieldKind.TIMESTAMP),
            ("not-a-uuid", FieldKind.UUID),
        ],
    )
    def test_parse_error(self, raw, kind):
        """Parse failures carry the raw value and the target kind."""
        with pytest.raises(ValueParseError) as exc_info:
            coerce_value(raw, kind)
        assert exc_info.value.value == raw
        assert exc_info.value.kind == kind.value
        assert exc_info.value.code == "INVALID_FILTER_VALUE"

    def test_parse_error_hides_parser_text(self):
        """Messages come from the catalog, not from the underlying parser."""
        with pytest.raises(ValueParseError) as exc_info:
            coerce_value("abc", FieldKind.INTEGER)
        assert exc_info.value.message == "Value 'abc' is not a valid integer"

    def test_unregistered_kind_fails_closed(self):
        """No converter means an error, never a stringified fallback."""
        with pytest.raises(UnsupportedTypeError):
            coerce_value("x", "geo_point")


class TestRoundTrip:
    """str(value) coerces back to value for every kind."""

    @pytest.mark.parametrize(
        ("value", "kind"),
        [
            ("Ann", FieldKind.STRING),
            (123, FieldKind.INTEGER),
            (9_007_199_254_740_993, FieldKind.LONG),
            (0.1, FieldKind.DOUBLE),
            (-2.5, FieldKind.FLOAT),
            (True, FieldKind.BOOLEAN),
            (False, FieldKind.BOOLEAN),
            (datetime(2024, 4, 11, 8, 30, 15, 123000, tzinfo=UTC), FieldKind.TIMESTAMP),
            (
                datetime(2024, 4, 11, 8, 30, tzinfo=timezone(timedelta(hours=-5))),
                FieldKind.TIMESTAMP,
            ),
            (uuid.UUID("2cb9374e-4e52-4142-a1af-16144ef4a27d"), FieldKind.UUID),
        ],
    )
    def test_round_trip(self, value, kind):
        raw = value.isoformat() if isinstance(value, datetime) else str(value)
        assert coerce_value(raw, kind) == value
