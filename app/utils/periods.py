import calendar
import re
from datetime import datetime, timedelta
from typing import Optional

_PERIOD_RE = re.compile(r'^\s*(\d+)\s*(minute|hour|day|week|month|year)s?\s*$', re.IGNORECASE)


def _add_months(moment: datetime, months: int) -> datetime:
    month_index = moment.month - 1 + months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def add_period(moment: datetime, period: str) -> Optional[datetime]:
    """
    Advance `moment` by a period label such as "30 minutes", "1 month" or "2 Years".

    Month arithmetic clamps to the last day of the target month.
    Returns None when the label cannot be parsed.
    """
    if not period:
        return None

    match = _PERIOD_RE.match(str(period))
    if not match:
        return None

    count = int(match.group(1))
    unit = match.group(2).lower()

    if unit == 'minute':
        return moment + timedelta(minutes=count)
    if unit == 'hour':
        return moment + timedelta(hours=count)
    if unit == 'day':
        return moment + timedelta(days=count)
    if unit == 'week':
        return moment + timedelta(weeks=count)
    if unit == 'month':
        return _add_months(moment, count)
    return _add_months(moment, count * 12)


def package_minutes(period, default: int = 1440) -> int:
    """Read the leading integer of a hotspot package period as minutes."""
    match = re.match(r'^\s*(\d+)', str(period or ''))
    if not match:
        return default
    minutes = int(match.group(1))
    return minutes if minutes > 0 else default
