"""Consolidation period and business-timezone helpers.

Months are 1-based (1 = January) everywhere inside the core. The 0-based
convention used by some callers is converted once, at the boundary, through
``Period.from_zero_based``.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Union

from core.errors import InvalidPeriodError


# Fixed UTC+8 business timezone (Malaysia), no DST.
BUSINESS_TZ = timezone(timedelta(hours=8), name="UTC+08:00")

MIN_YEAR = 2000
MAX_YEAR = 9999


def to_business_time(value: datetime) -> datetime:
    """Express a timestamp in the business timezone.

    Naive timestamps are taken to already be business-local time.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=BUSINESS_TZ)
    return value.astimezone(BUSINESS_TZ)


def business_date(value: Union[date, datetime]) -> date:
    """Calendar date of a timestamp in the business timezone."""
    if isinstance(value, datetime):
        return to_business_time(value).date()
    return value


@dataclass(frozen=True, order=True)
class Period:
    """A calendar month targeted by a consolidation."""
    year: int
    month: int

    def __post_init__(self):
        if isinstance(self.year, bool) or not isinstance(self.year, int):
            raise InvalidPeriodError(self.year, self.month, "year must be an integer")
        if isinstance(self.month, bool) or not isinstance(self.month, int):
            raise InvalidPeriodError(self.year, self.month, "month must be an integer")
        if not MIN_YEAR <= self.year <= MAX_YEAR:
            raise InvalidPeriodError(self.year, self.month, f"year must be {MIN_YEAR}-{MAX_YEAR}")
        if not 1 <= self.month <= 12:
            raise InvalidPeriodError(self.year, self.month, "month must be 1-12")

    @classmethod
    def from_zero_based(cls, year: int, month_index: int) -> "Period":
        """Build from a 0-based month index (0 = January)."""
        if isinstance(month_index, bool) or not isinstance(month_index, int):
            raise InvalidPeriodError(year, month_index, "month index must be an integer")
        if not 0 <= month_index <= 11:
            raise InvalidPeriodError(year, month_index, "month index must be 0-11")
        return cls(year, month_index + 1)

    @classmethod
    def containing(cls, value: Union[date, datetime]) -> "Period":
        """Period that contains a date or timestamp (business timezone)."""
        d = business_date(value)
        return cls(d.year, d.month)

    @classmethod
    def parse(cls, value: str) -> "Period":
        """Parse ``YYYY-MM``."""
        try:
            year_s, month_s = value.strip().split("-")
            return cls(int(year_s), int(month_s))
        except (AttributeError, ValueError) as e:
            if isinstance(e, InvalidPeriodError):
                raise
            raise InvalidPeriodError(value, None, "expected YYYY-MM") from e

    @property
    def month_index(self) -> int:
        """0-based month, for callers on the legacy convention."""
        return self.month - 1

    def previous(self) -> "Period":
        if self.month == 1:
            return Period(self.year - 1, 12)
        return Period(self.year, self.month - 1)

    def next(self) -> "Period":
        if self.month == 12:
            return Period(self.year + 1, 1)
        return Period(self.year, self.month + 1)

    @property
    def first_day(self) -> date:
        return date(self.year, self.month, 1)

    @property
    def last_day(self) -> date:
        return self.next().first_day - timedelta(days=1)

    def starts_at(self) -> datetime:
        """Inclusive start instant in the business timezone."""
        return datetime.combine(self.first_day, time.min, tzinfo=BUSINESS_TZ)

    def ends_before(self) -> datetime:
        """Exclusive end instant in the business timezone."""
        return self.next().starts_at()

    def contains(self, value: Union[date, datetime]) -> bool:
        d = business_date(value)
        return d.year == self.year and d.month == self.month

    def __str__(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"


def business_now() -> datetime:
    """Current time in the business timezone."""
    return datetime.now(BUSINESS_TZ)
