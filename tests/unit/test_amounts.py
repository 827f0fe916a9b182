"""
Unit tests for settlement_kernel.domain.amounts.

Covers:
- Canonical two-decimal rounding (ROUND_HALF_UP)
- Parsing of user and record input
- Clamping helpers
- Fixed tolerances
"""

from decimal import Decimal

import pytest

from settlement_kernel.domain.amounts import (
    COVERAGE_TOLERANCE,
    DEDUCTION_TOLERANCE,
    ZERO,
    clamp,
    non_negative,
    parse_amount,
    parse_optional_amount,
    round_money,
)
from settlement_kernel.exceptions import InvalidAmountError


class TestRoundMoney:
    """Tests for round_money."""

    def test_half_up(self):
        assert round_money(Decimal("10.555")) == Decimal("10.56")
        assert round_money(Decimal("10.545")) == Decimal("10.55")

    def test_negative_half_up_rounds_away_from_zero(self):
        assert round_money(Decimal("-0.005")) == Decimal("-0.01")

    def test_pads_to_two_places(self):
        assert str(round_money(Decimal("7"))) == "7.00"

    def test_custom_places(self):
        assert round_money(Decimal("1.23456"), decimal_places=4) == Decimal("1.2346")


class TestParseAmount:
    """Tests for parse_amount."""

    @pytest.mark.parametrize("raw,expected", [
        ("500", Decimal("500.00")),
        (" 12.345 ", Decimal("12.35")),
        (42, Decimal("42.00")),
        (0.1, Decimal("0.10")),
        (Decimal("3.999"), Decimal("4.00")),
        ("-20", Decimal("-20.00")),
    ])
    def test_accepts_numeric_input(self, raw, expected):
        assert parse_amount(raw) == expected

    def test_float_goes_through_str(self):
        """0.1 + 0.2 style float noise never leaks into the Decimal."""
        assert parse_amount(0.30000000000000004) == Decimal("0.30")

    @pytest.mark.parametrize("raw", [
        "abc", "", "   ", None, True, False, "NaN", "Infinity", "-inf",
        float("nan"), [], {}, "1e400000",
    ])
    def test_rejects_non_numeric(self, raw):
        with pytest.raises(InvalidAmountError) as exc_info:
            parse_amount(raw)
        assert exc_info.value.code == "INVALID_AMOUNT"

    def test_error_keeps_repr_of_value(self):
        with pytest.raises(InvalidAmountError) as exc_info:
            parse_amount("12abc")
        assert exc_info.value.value == "'12abc'"


class TestParseOptionalAmount:
    """Tests for parse_optional_amount."""

    def test_blank_is_none(self):
        assert parse_optional_amount("") is None
        assert parse_optional_amount("  ") is None
        assert parse_optional_amount(None) is None

    def test_zero_is_not_none(self):
        assert parse_optional_amount("0") == ZERO

    def test_garbage_still_raises(self):
        with pytest.raises(InvalidAmountError):
            parse_optional_amount("ten")


class TestClampHelpers:
    """Tests for non_negative and clamp."""

    def test_non_negative(self):
        assert non_negative(Decimal("-5")) == ZERO
        assert non_negative(Decimal("5.005")) == Decimal("5.01")

    def test_clamp_inside(self):
        assert clamp(Decimal("5"), ZERO, Decimal("10")) == Decimal("5")

    def test_clamp_edges(self):
        assert clamp(Decimal("-1"), ZERO, Decimal("10")) == ZERO
        assert clamp(Decimal("11"), ZERO, Decimal("10")) == Decimal("10")

    def test_clamp_inverted_range_yields_lower(self):
        assert clamp(Decimal("5"), ZERO, Decimal("-3")) == ZERO


class TestTolerances:
    """The fixed tolerances are one cent and a tenth of a cent."""

    def test_values(self):
        assert COVERAGE_TOLERANCE == Decimal("0.01")
        assert DEDUCTION_TOLERANCE == Decimal("0.001")
