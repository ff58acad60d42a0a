"""
Period and Business Timezone Tests
"""

import pytest
from datetime import date, datetime, timedelta, timezone


class TestPeriod:
    """Period construction and validation."""

    def test_valid_period(self):
        from core.models import Period

        period = Period(2025, 3)
        assert str(period) == "2025-03"
        assert period.month_index == 2

    @pytest.mark.parametrize("year,month", [(2025, 0), (2025, 13), (1999, 5), (10000, 1)])
    def test_invalid_period_rejected(self, year, month):
        from core.errors import InvalidPeriodError
        from core.models import Period

        with pytest.raises(InvalidPeriodError):
            Period(year, month)

    def test_invalid_period_is_value_error(self):
        from core.models import Period

        with pytest.raises(ValueError):
            Period(2025, "3")

    def test_from_zero_based(self):
        from core.errors import InvalidPeriodError
        from core.models import Period

        assert Period.from_zero_based(2025, 0) == Period(2025, 1)
        assert Period.from_zero_based(2025, 11) == Period(2025, 12)
        with pytest.raises(InvalidPeriodError):
            Period.from_zero_based(2025, 12)

    def test_parse(self):
        from core.errors import InvalidPeriodError
        from core.models import Period

        assert Period.parse("2024-12") == Period(2024, 12)
        with pytest.raises(InvalidPeriodError):
            Period.parse("2024/12")

    def test_navigation_wraps_years(self):
        from core.models import Period

        assert Period(2025, 1).previous() == Period(2024, 12)
        assert Period(2024, 12).next() == Period(2025, 1)
        assert Period(2024, 2).last_day == date(2024, 2, 29)

    def test_periods_are_ordered(self):
        from core.models import Period

        assert sorted([Period(2025, 2), Period(2024, 12), Period(2025, 1)]) == [
            Period(2024, 12), Period(2025, 1), Period(2025, 2),
        ]


class TestBusinessTimezone:
    """Period membership is decided in UTC+8."""

    def test_utc_evening_belongs_to_next_day(self):
        from core.models import Period

        # 2025-03-31 16:30 UTC is 2025-04-01 00:30 in UTC+8
        ts = datetime(2025, 3, 31, 16, 30, tzinfo=timezone.utc)
        assert Period(2025, 4).contains(ts)
        assert not Period(2025, 3).contains(ts)
        assert Period.containing(ts) == Period(2025, 4)

    def test_naive_timestamps_are_business_local(self):
        from core.models import Period

        assert Period(2025, 3).contains(datetime(2025, 3, 31, 23, 59))

    def test_bounds(self):
        from core.models import BUSINESS_TZ, Period

        period = Period(2025, 3)
        assert period.starts_at() == datetime(2025, 3, 1, tzinfo=BUSINESS_TZ)
        assert period.ends_before() == datetime(2025, 4, 1, tzinfo=BUSINESS_TZ)
        assert period.contains(period.ends_before() - timedelta(microseconds=1))
        assert not period.contains(period.ends_before())

    def test_invoice_timestamp_parsing(self):
        """Epoch milliseconds, ISO strings and 'Z' suffixes all parse."""
        from core.models import BUSINESS_TZ, Invoice

        epoch_ms = int(datetime(2025, 3, 15, 10, 0, tzinfo=BUSINESS_TZ).timestamp() * 1000)
        by_epoch = Invoice(id="A", issued_at=epoch_ms)
        by_string = Invoice(id="B", issued_at=str(epoch_ms))
        by_iso = Invoice(id="C", issued_at="2025-03-15T02:00:00Z")

        assert by_epoch.issued_at == by_string.issued_at == by_iso.issued_at
        assert by_iso.issued_at.utcoffset() == timedelta(hours=8)


if __name__ == "__main__":
    pytest.main([__file__, "-v", "-s"])
