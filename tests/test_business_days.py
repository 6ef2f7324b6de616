"""Business-day arithmetic: pure logic tests, no DB."""

from __future__ import annotations

from datetime import date, datetime, timezone

from backend.escalation.business_days import (
    count_business_days,
    is_business_day,
    lookback_start,
    subtract_business_days,
)


class TestCountBusinessDays:

    def test_full_week(self):
        # Mon 2 Mar .. Sun 8 Mar 2026
        assert count_business_days(date(2026, 3, 2), date(2026, 3, 8)) == 5

    def test_single_weekend_day_is_zero(self):
        assert count_business_days(date(2026, 3, 7), date(2026, 3, 7)) == 0

    def test_holidays_excluded(self):
        holidays = {date(2026, 3, 4)}
        assert count_business_days(date(2026, 3, 2), date(2026, 3, 6), holidays) == 4

    def test_reversed_range_is_empty(self):
        assert count_business_days(date(2026, 3, 6), date(2026, 3, 2)) == 0

    def test_is_business_day(self):
        assert is_business_day(date(2026, 3, 2))
        assert not is_business_day(date(2026, 3, 8))
        assert not is_business_day(date(2026, 3, 2), {date(2026, 3, 2)})


class TestSubtractBusinessDays:

    def test_friday_approval_due_next_wednesday(self):
        """Created Friday 10:00 with a 3-day threshold: stale from Wednesday 10:00."""
        created = datetime(2026, 3, 6, 10, 0, tzinfo=timezone.utc)  # Friday

        tuesday = datetime(2026, 3, 10, 10, 0, tzinfo=timezone.utc)
        assert subtract_business_days(tuesday, 3) < created

        wednesday = datetime(2026, 3, 11, 10, 0, tzinfo=timezone.utc)
        assert subtract_business_days(wednesday, 3) == created

    def test_holiday_pushes_threshold_back(self):
        wednesday = datetime(2026, 3, 11, 10, 0, tzinfo=timezone.utc)
        holidays = {date(2026, 3, 10)}
        # Mon 9, Fri 6, Thu 5
        assert subtract_business_days(wednesday, 3, holidays) == datetime(
            2026, 3, 5, 10, 0, tzinfo=timezone.utc,
        )

    def test_zero_days_returns_moment(self):
        moment = datetime(2026, 3, 11, 10, 0, tzinfo=timezone.utc)
        assert subtract_business_days(moment, 0) == moment

    def test_lookback_covers_subtraction(self):
        moment = datetime(2026, 3, 11, 10, 0, tzinfo=timezone.utc)
        start = lookback_start(moment, 3)
        assert start <= subtract_business_days(moment, 3).date()
