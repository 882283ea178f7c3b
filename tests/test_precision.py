"""
Tests for lumina_core.precision — fixed-point amounts.
"""

from decimal import Decimal

import pytest

from lumina_core.errors import InsufficientFunds, InvalidAmount
from lumina_core.precision import (
    MAX_UNITS,
    UNITS_PER_TOKEN,
    add_units,
    check_units,
    format_amount,
    parse_amount,
    sub_units,
    units_to_decimal,
)


class TestParseAmount:
    def test_decimal_string(self):
        assert parse_amount("1.5") == 150_000_000

    def test_integer_tokens(self):
        assert parse_amount(3) == 3 * UNITS_PER_TOKEN

    def test_smallest_unit(self):
        assert parse_amount("0.00000001") == 1

    def test_decimal_instance(self):
        assert parse_amount(Decimal("0.1")) == 10_000_000

    def test_whitespace_stripped(self):
        assert parse_amount(" 2 ") == 2 * UNITS_PER_TOKEN

    def test_too_many_decimals(self):
        with pytest.raises(InvalidAmount):
            parse_amount("0.000000001")

    @pytest.mark.parametrize("bad", ["abc", "", "1.2.3", "NaN", "Infinity"])
    def test_garbage_rejected(self, bad):
        with pytest.raises(InvalidAmount):
            parse_amount(bad)

    def test_float_rejected(self):
        with pytest.raises(InvalidAmount):
            parse_amount(1.5)

    def test_bool_rejected(self):
        with pytest.raises(InvalidAmount):
            parse_amount(True)

    def test_out_of_range(self):
        with pytest.raises(InvalidAmount):
            parse_amount("100000000000000")

    def test_negative_parses(self):
        # Sign is checked by the caller (transfer) so it can report InvalidAmount itself.
        assert parse_amount("-1") == -UNITS_PER_TOKEN


class TestFormatting:
    def test_eight_decimals(self):
        assert format_amount(150_000_000) == "1.50000000 LMT"

    def test_zero(self):
        assert format_amount(0, "ABC") == "0.00000000 ABC"

    def test_negative(self):
        assert format_amount(-1) == "-0.00000001 LMT"

    def test_units_to_decimal(self):
        assert units_to_decimal(1) == Decimal("0.00000001")


class TestArithmetic:
    def test_check_units_ok(self):
        assert check_units(5) == 5

    @pytest.mark.parametrize("bad", [-1, MAX_UNITS + 1, 1.0, "5", True])
    def test_check_units_rejects(self, bad):
        with pytest.raises(InvalidAmount):
            check_units(bad)

    def test_add_overflow(self):
        with pytest.raises(InvalidAmount):
            add_units(MAX_UNITS, 1)

    def test_sub_insufficient(self):
        with pytest.raises(InsufficientFunds):
            sub_units(5, 6)

    def test_sub_exact(self):
        assert sub_units(5, 5) == 0
