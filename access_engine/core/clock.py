"""Time helpers.

All persisted timestamps are integer epoch seconds (UTC).  Services take a
``clock`` callable so tests can pin "now" without patching datetime.
"""

from __future__ import annotations

import calendar
import datetime
from collections.abc import Callable

Clock = Callable[[], int]


def utc_now() -> int:
    return int(datetime.datetime.now(datetime.UTC).timestamp())


def add_months(epoch_seconds: int, months: int) -> int:
    """Shift a timestamp by calendar months, clamping the day.

    Jan 31 + 1 month is Feb 28 (or 29), not Mar 3.
    """
    start = datetime.datetime.fromtimestamp(epoch_seconds, datetime.UTC)
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return int(start.replace(year=year, month=month, day=day).timestamp())
