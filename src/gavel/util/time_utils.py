"""
Unix-second time helpers.

All persisted timestamps are INTEGER unix seconds (UTC). Components accept a
``clock`` callable returning the current unix second so tests can drive time
explicitly.
"""

from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Callable

Clock = Callable[[], int]

MINUTE = 60
HOUR = 60 * MINUTE
DAY = 24 * HOUR


def now_ts() -> int:
    """Return the current time as unix seconds."""
    return int(time.time())


def hours(value: float) -> int:
    return int(value * HOUR)


def days(value: float) -> int:
    return int(value * DAY)


def hour_of_day(ts: int) -> int:
    """Return the UTC hour-of-day bucket (0-23) for a unix timestamp."""
    return datetime.fromtimestamp(ts, tz=timezone.utc).hour


def minutes_until(ts: int, now: int) -> int:
    """Whole minutes remaining until ``ts``, rounded up and never negative."""
    remaining = ts - now
    if remaining <= 0:
        return 0
    return -(-remaining // MINUTE)
