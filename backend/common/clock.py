"""Injectable wall clock and company-timezone helpers."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def resolve_timezone(tz_name: str) -> ZoneInfo | timezone:
    """Return the zone for *tz_name*, falling back to UTC when unknown."""
    try:
        return ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Invalid timezone %r, falling back to UTC", tz_name)
        return timezone.utc


def company_now(tz_name: str, clock: Clock = utc_now) -> datetime:
    """Current time as an aware datetime in the company timezone."""
    return clock().astimezone(resolve_timezone(tz_name))


def to_utc(moment: datetime) -> datetime:
    """Normalise *moment* to aware UTC (naive values are taken as UTC)."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)
