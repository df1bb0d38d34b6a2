from __future__ import annotations

import calendar
from datetime import date, datetime, time, timedelta, timezone


def _shift_month(year: int, month: int, offset: int) -> tuple[int, int]:
    index = year * 12 + (month - 1) + offset
    return index // 12, index % 12 + 1


def target_renewal_date(today: date, month_offset: int = 0, day_of_month: int = 0) -> date:
    """Renewal date whose memberships are billed by a run started on ``today``.

    ``day_of_month`` 0 means the last day of the target month; other values are
    clamped to the month length (31 in February lands on the 28th/29th).
    """
    year, month = _shift_month(today.year, today.month, month_offset)
    last_day = calendar.monthrange(year, month)[1]
    if day_of_month <= 0:
        return date(year, month, last_day)
    return date(year, month, min(day_of_month, last_day))


def to_epoch_millis(value: date) -> int:
    midnight = datetime.combine(value, time.min, tzinfo=timezone.utc)
    return int(midnight.timestamp() * 1000)


def due_date(issued: date, days: int) -> date:
    return issued + timedelta(days=days)


def period_label(value: date) -> str:
    return f"{value.year:04d}-{value.month:02d}"
