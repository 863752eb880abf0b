import math
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Optional, Union
from zoneinfo import ZoneInfo

from config import get_settings
from models import Budget, BudgetPeriod


PERIOD_DAYS = {
    BudgetPeriod.weekly: 7,
    BudgetPeriod.monthly: 30,
    BudgetPeriod.yearly: 365,
    BudgetPeriod.custom: 30,
}

InstantLike = Union[date, datetime, str, None]


@dataclass(frozen=True)
class Period:
    slug: str
    start: datetime
    end: datetime


def local_now() -> datetime:
    settings = get_settings()
    tz = ZoneInfo(settings.timezone)
    return datetime.now(tz).replace(tzinfo=None)


def day_start(moment: datetime) -> datetime:
    return datetime.combine(moment.date(), time.min)


def period_days(period: Optional[BudgetPeriod]) -> int:
    if period is None:
        return 30
    return PERIOD_DAYS.get(BudgetPeriod(period), 30)


def coerce_instant(value: InstantLike, *, end_of_day: bool = False) -> Optional[datetime]:
    """Turn a stored date-ish value into a naive local datetime.

    Dates become midnight (or the last microsecond of that day when
    ``end_of_day`` is set). Anything that does not parse yields ``None``.
    """
    if value is None:
        return None
    if isinstance(value, str):
        raw = value.strip()
        if not raw:
            return None
        try:
            parsed = datetime.fromisoformat(raw)
        except ValueError:
            return None
        if len(raw) <= 10:
            value = parsed.date()
        else:
            return parsed.replace(tzinfo=None)
    if isinstance(value, datetime):
        return value.replace(tzinfo=None)
    if isinstance(value, date):
        return datetime.combine(value, time.max if end_of_day else time.min)
    return None


def spend_window(budget: Budget, now: datetime) -> Optional[Period]:
    start = coerce_instant(budget.start_date)
    if budget.end_date is None:
        end: Optional[datetime] = now
    else:
        end = coerce_instant(budget.end_date, end_of_day=True)
    if start is None or end is None or start > end:
        return None
    return Period("active", start, end)


def current_cycle(budget: Budget, now: datetime) -> Optional[Period]:
    start = coerce_instant(budget.start_date)
    if start is None:
        return None
    hard_end = None
    if budget.end_date is not None:
        end_day = coerce_instant(budget.end_date)
        if end_day is None:
            return None
        hard_end = day_start(end_day) + timedelta(days=1)

    if budget.period == BudgetPeriod.custom and hard_end is not None:
        return Period("custom", start, hard_end)

    length = timedelta(days=period_days(budget.period))
    elapsed = max(timedelta(0), day_start(now) - start)
    cycles = elapsed // length
    cycle_start = start + cycles * length
    cycle_end = cycle_start + length
    if hard_end is not None and hard_end < cycle_end:
        cycle_end = hard_end
    return Period(BudgetPeriod(budget.period).value, cycle_start, cycle_end)


def days_remaining(period_end: datetime, now: datetime) -> int:
    return math.ceil((period_end - now).total_seconds() / 86400)


def trailing_windows(now: datetime, length_days: int, count: int) -> list[Period]:
    windows: list[Period] = []
    length = timedelta(days=length_days)
    for index in range(count):
        end = now - index * length
        windows.append(Period(f"trailing_{index}", end - length, end))
    return windows
