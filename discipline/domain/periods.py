"""
Rolling evaluation window arithmetic.

A period opens at 00:00 UTC of the day it is created and closes a fixed
number of calendar months later.  When the target month is shorter than the
start day (e.g. 30 Nov + 3 months) the end is clamped to the last day of
that month.

Complexity: O(1).
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from dateutil.relativedelta import relativedelta

from .entities import Period


def start_of_day(instant: datetime) -> datetime:
    instant = instant.astimezone(timezone.utc)
    return instant.replace(hour=0, minute=0, second=0, microsecond=0)


def new_period(now: datetime, months: int = 3) -> Period:
    start = start_of_day(now)
    return Period(start=start, end=start + relativedelta(months=months))


def is_expired(period_end: Optional[datetime], now: datetime) -> bool:
    """A period whose end has been reached no longer counts disputes."""
    return period_end is None or period_end <= now
