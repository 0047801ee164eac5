from __future__ import annotations

import calendar
import time
from datetime import datetime, timedelta, timezone
from typing import Callable

from tradeledger.core.models.enums import Frequency

Clock = Callable[[], int]

HOUR_MS = 3_600_000
DAY_MS = 24 * HOUR_MS


def now_ms() -> int:
    return int(time.time() * 1000)


def add_frequency(ts_ms: int, frequency: Frequency) -> int:
    """One frequency unit after ts_ms. MONTHLY keeps the day-of-month, clamped to month end."""
    if frequency is Frequency.HOURLY:
        return ts_ms + HOUR_MS
    if frequency is Frequency.DAILY:
        return ts_ms + DAY_MS
    if frequency is Frequency.WEEKLY:
        return ts_ms + 7 * DAY_MS

    secs, ms = divmod(ts_ms, 1000)
    dt = datetime.fromtimestamp(secs, tz=timezone.utc)
    year, month = (dt.year + 1, 1) if dt.month == 12 else (dt.year, dt.month + 1)
    day = min(dt.day, calendar.monthrange(year, month)[1])
    nxt = dt.replace(year=year, month=month, day=day)
    return int(nxt.timestamp()) * 1000 + ms


def days_ms(days: float) -> int:
    return int(timedelta(days=days).total_seconds() * 1000)
