"""
Unit quantity tests.

Verifies:
- "<major>-<minor>" parsing for compound units and decimals for scalar units
- Every malformed form is a ParseError, never a silent zero
- Comparison and arithmetic happen on canonical integers
"""

from decimal import Decimal

import pytest

from storeledger.domain import units
from storeledger.domain.units import (
    CompoundQuantity,
    Ordering,
    ScalarQuantity,
    display_quantity,
    format_quantity,
    from_canonical,
    parse_quantity,
    to_canonical,
)
from storeledger.validation import ParseError, ValidationError


class TestParseCompound:

    def test_kg_grams(self):
        q = parse_quantity("155-20", "kg-grams")
        assert isinstance(q, CompoundQuantity)
        assert (q.major, q.minor) == (155, 20)
        assert to_canonical(q) == 155020

    def test_leading_zeros_in_minor(self):
        assert to_canonical(parse_quantity("2-050", "kg-grams")) == 2050

    def test_missing_minor_component(self):
        with pytest.raises(ParseError) as exc:
            parse_quantity("155", "kg-grams")
        assert "missing" in str(exc.value)
        assert exc.value.reason == ParseError.MALFORMED

    @pytest.mark.parametrize("text", ["155-", "155-1000", "-1-0", "a-b", "1.5-0", ""])
    def test_malformed(self, text):
        with pytest.raises(ParseError):
            parse_quantity(text, "kg-grams")


class TestParseScalar:

    def test_pieces(self):
        q = parse_quantity("12", "piece")
        assert isinstance(q, ScalarQuantity)
        assert to_canonical(q) == 12

    def test_meters_with_decimals(self):
        assert to_canonical(parse_quantity("2.5", "meter")) == 250
        assert to_canonical(parse_quantity("2.50", "meter")) == 250

    def test_too_many_decimal_places(self):
        with pytest.raises(ParseError):
            parse_quantity("2.555", "meter")
        with pytest.raises(ParseError):
            parse_quantity("1.5", "bag")

    @pytest.mark.parametrize("text", ["-3", "three", "1e3", ""])
    def test_malformed(self, text):
        with pytest.raises(ParseError):
            parse_quantity(text, "piece")

    def test_int_input_accepted(self):
        assert to_canonical(parse_quantity(7, "bag")) == 7

    def test_unknown_unit_type(self):
        with pytest.raises(ValidationError):
            parse_quantity("1", "litre")


class TestStorableRange:

    def test_largest_storable_quantities_parse(self):
        assert to_canonical(parse_quantity("9223372036854775807", "piece")) == units.MAX_CANONICAL_QUANTITY
        assert to_canonical(parse_quantity("9223372036854775-807", "kg-grams")) == units.MAX_CANONICAL_QUANTITY
        assert to_canonical(parse_quantity("9223372036854775.807", "kg")) == units.MAX_CANONICAL_QUANTITY

    @pytest.mark.parametrize("text,unit_type", [
        ("1" * 30, "piece"),
        ("9223372036854775808", "piece"),
        ("9223372036854775-808", "kg-grams"),
        ("9223372036854776-0", "kg-grams"),
        ("9223372036854775.808", "kg"),
        ("1" * 5000 + "-0", "kg-grams"),
    ])
    def test_oversized_text_is_malformed(self, text, unit_type):
        with pytest.raises(ParseError) as exc:
            parse_quantity(text, unit_type)
        assert exc.value.reason == ParseError.MALFORMED

    def test_add_past_largest_storable_refused(self):
        big = parse_quantity("9223372036854775807", "piece")
        with pytest.raises(ValidationError):
            units.add(big, parse_quantity("1", "piece"))


class TestFormat:

    @pytest.mark.parametrize("text,unit_type", [
        ("155-20", "kg-grams"),
        ("0-0", "kg-grams"),
        ("2.5", "meter"),
        ("12", "bag"),
        ("0.125", "kg"),
    ])
    def test_format_inverts_parse(self, text, unit_type):
        q = parse_quantity(text, unit_type)
        assert format_quantity(q) == text
        assert parse_quantity(format_quantity(q), unit_type) == q

    def test_display(self):
        assert display_quantity(parse_quantity("155-20", "kg-grams")) == "155kg 20g"
        assert display_quantity(parse_quantity("3-0", "kg-grams")) == "3kg"
        assert display_quantity(parse_quantity("12", "bag")) == "12 bags"

    def test_from_canonical(self):
        q = from_canonical(155020, "kg-grams")
        assert format_quantity(q) == "155-20"
        assert from_canonical(250, "meter").value == Decimal("2.50")

    def test_from_canonical_refuses_bad_input(self):
        with pytest.raises(TypeError):
            from_canonical("5", "bag")
        with pytest.raises(ValueError):
            from_canonical(-1, "bag")


class TestArithmetic:

    def test_compare(self):
        a = parse_quantity("10-0", "kg-grams")
        b = parse_quantity("9-999", "kg-grams")
        assert units.compare(a, b) is Ordering.GREATER
        assert units.compare(b, a) is Ordering.LESS
        assert units.compare(a, parse_quantity("10-000", "kg-grams")) is Ordering.EQUAL

    def test_add_carries_minor(self):
        total = units.add(parse_quantity("1-600", "kg-grams"), parse_quantity("2-500", "kg-grams"))
        assert format_quantity(total) == "4-100"

    def test_subtract(self):
        result = units.subtract(parse_quantity("10-0", "kg-grams"), parse_quantity("2-250", "kg-grams"))
        assert format_quantity(result.quantity) == "7-750"
        assert result.would_underflow is False

    def test_subtract_underflow_clamps_and_reports(self):
        result = units.subtract(parse_quantity("10-0", "kg-grams"), parse_quantity("12-500", "kg-grams"))
        assert result.would_underflow is True
        assert result.shortfall_canonical == 2500
        assert format_quantity(result.quantity) == "0-0"

    def test_mixed_units_refused(self):
        with pytest.raises(TypeError):
            units.add(parse_quantity("1", "bag"), parse_quantity("1", "piece"))
