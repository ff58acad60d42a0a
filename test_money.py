"""
Money Arithmetic Tests

Rounding law, sum stability and degradation of bad input to zero.
"""

import pytest
from decimal import Decimal


class TestRoundMoney:
    """Round half away from zero at the second decimal."""

    def test_half_rounds_up(self):
        from core.money import round_money

        assert round_money(1.005) == Decimal("1.01")
        assert round_money("2.675") == Decimal("2.68")
        assert round_money(Decimal("0.125")) == Decimal("0.13")

    def test_below_half_rounds_down(self):
        from core.money import round_money

        assert round_money(1.004) == Decimal("1.00")
        assert round_money("10.994") == Decimal("10.99")

    def test_negative_rounds_away_from_zero(self):
        from core.money import round_money

        assert round_money(-1.005) == Decimal("-1.01")
        assert round_money("(3.335)") == Decimal("-3.34")

    def test_result_has_two_places(self):
        from core.money import round_money

        assert str(round_money(7)) == "7.00"
        assert str(round_money("RM 1,234.5")) == "1234.50"

    @pytest.mark.parametrize("value", [None, "", "abc", "NaN", "Infinity", True, object()])
    def test_invalid_input_degrades_to_zero(self, value):
        from core.money import round_money

        assert round_money(value) == Decimal("0.00")


class TestMoneyOperations:
    """Addition, multiplication and summation."""

    def test_add_money_is_exact(self):
        from core.money import add_money

        assert add_money(0.1, 0.2) == Decimal("0.30")
        assert add_money("100.005", 0) == Decimal("100.01")

    def test_multiply_money(self):
        from core.money import multiply_money

        assert multiply_money("19.99", 3) == Decimal("59.97")
        assert multiply_money("0.333", "3") == Decimal("1.00")
        assert multiply_money("12.50", "0.5") == Decimal("6.25")

    def test_sum_money_by_has_no_drift(self):
        """10,000 amounts of 0.10 sum to exactly 1000.00."""
        from core.money import sum_money_by

        items = [{"amount": 0.10} for _ in range(10_000)]
        assert sum_money_by(items, lambda item: item["amount"]) == Decimal("1000.00")

    def test_sum_money_by_rounds_each_addend(self):
        from core.money import sum_money_by

        # 0.005 + 0.005 rounds each to 0.01 first
        assert sum_money_by(["0.005", "0.005"], lambda v: v) == Decimal("0.02")

    def test_sum_money_by_skips_bad_values(self):
        from core.money import sum_money_by

        assert sum_money_by(["10.00", "n/a", None, "5.25"], lambda v: v) == Decimal("15.25")

    def test_sum_of_nothing_is_zero(self):
        from core.money import sum_money_by, ZERO

        assert sum_money_by([], lambda v: v) == ZERO

    def test_format_money(self):
        from core.money import format_money

        assert format_money("449.985") == "449.99"
        assert format_money(None) == "0.00"


if __name__ == "__main__":
    pytest.main([__file__, "-v", "-s"])
