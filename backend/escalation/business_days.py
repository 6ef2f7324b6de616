"""Business-day arithmetic: weekends (Sat/Sun) and company holidays are skipped."""

from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import AbstractSet

WEEKEND = {5, 6}


def is_business_day(day: date, holidays: AbstractSet[date] = frozenset()) -> bool:
    return day.weekday() not in WEEKEND and day not in holidays


def count_business_days(
    from_date: date,
    to_date: date,
    holidays: AbstractSet[date] = frozenset(),
) -> int:
    """Business days in the inclusive range; 0 when the range is empty."""
    total = 0
    current = from_date
    while current <= to_date:
        if is_business_day(current, holidays):
            total += 1
        current += timedelta(days=1)
    return total


def subtract_business_days(
    moment: datetime,
    business_days: int,
    holidays: AbstractSet[date] = frozenset(),
) -> datetime:
    """Walk back from *moment* until *business_days* business days have passed.

    The time of day is preserved, so an approval created Friday 10:00 with a
    three-day threshold becomes due the following Wednesday at 10:00.
    """
    if business_days <= 0:
        return moment
    counted = 0
    current = moment
    while counted < business_days:
        current -= timedelta(days=1)
        if is_business_day(current.date(), holidays):
            counted += 1
    return current


def lookback_start(moment: datetime, business_days: int) -> date:
    """First date of the holiday window to prefetch before subtracting *business_days*."""
    return (moment - timedelta(days=business_days * 2 + 14)).date()
