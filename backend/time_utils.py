import os
from datetime import date, datetime, time
from typing import Optional
from zoneinfo import ZoneInfo


def _timezone() -> ZoneInfo:
    name = os.environ.get("APP_TIMEZONE", "UTC")
    return ZoneInfo(name)


def now_tz() -> datetime:
    return datetime.now(_timezone())


def ensure_timezone(dt: datetime) -> datetime:
    tz = _timezone()
    if dt.tzinfo is None:
        return dt.replace(tzinfo=tz)
    return dt.astimezone(tz)


def ensure_timezone_optional(dt: Optional[datetime]) -> Optional[datetime]:
    if dt is None:
        return None
    return ensure_timezone(dt)


def combine_local(day: date, clock_time: time) -> datetime:
    return datetime.combine(day, clock_time).replace(tzinfo=_timezone())


def within_window(moment: datetime, start: Optional[datetime], end: Optional[datetime]) -> bool:
    if start is None or end is None:
        return False
    return ensure_timezone(start) <= ensure_timezone(moment) <= ensure_timezone(end)
