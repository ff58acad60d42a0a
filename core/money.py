"""Exact currency arithmetic for consolidation totals.

All amounts are ``Decimal`` values quantized to 2 fractional digits (sen/cent)
with round-half-up. Floats are converted through ``str()`` so that a value
written as ``1.005`` rounds to ``1.01`` instead of drifting to ``1.00``.

These helpers never raise: anything that is not a finite number is treated as
zero, so one bad field cannot fail a whole aggregation.
"""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Callable, Iterable, TypeVar


T = TypeVar("T")

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def to_decimal(value: Any) -> Decimal:
    """Convert value to an unrounded Decimal, degrading to zero.

    Accepts Decimal, int, float and numeric strings (currency symbols,
    thousands separators and accounting parentheses are stripped).
    """
    if value is None or isinstance(value, bool):
        return Decimal("0")
    if isinstance(value, Decimal):
        return value if value.is_finite() else Decimal("0")
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, float):
        value = str(value)
    if isinstance(value, str):
        s = value.strip().replace("RM", "").replace("$", "").replace(",", "")
        if s.startswith("(") and s.endswith(")"):
            s = "-" + s[1:-1]
        try:
            result = Decimal(s)
        except InvalidOperation:
            return Decimal("0")
        return result if result.is_finite() else Decimal("0")
    return Decimal("0")


def round_money(value: Any) -> Decimal:
    """Round half away from zero to 2 decimals."""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def add_money(a: Any, b: Any) -> Decimal:
    """Exact sum of two amounts, rounded to 2 decimals."""
    return round_money(to_decimal(a) + to_decimal(b))


def multiply_money(price: Any, quantity: Any) -> Decimal:
    """Exact product of a unit price and a quantity, rounded to 2 decimals."""
    return round_money(to_decimal(price) * to_decimal(quantity))


def sum_money_by(items: Iterable[T], selector: Callable[[T], Any]) -> Decimal:
    """Sum ``selector(item)`` over items, rounding every addend first."""
    total = ZERO
    for item in items:
        total += round_money(selector(item))
    return round_money(total)


def format_money(value: Any) -> str:
    """Render an amount as a plain 2-decimal string (e.g. ``"449.99"``)."""
    return f"{round_money(value):.2f}"
