from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from typing import Optional, Tuple, Union

# Business days are counted in Vietnam local time (no DST).
VIETNAM_TZ = timezone(timedelta(hours=7), name="Asia/Ho_Chi_Minh")


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive, canonical)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def now_in_vietnam() -> datetime:
    return datetime.now(VIETNAM_TZ)


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO-8601 datetime string and normalize to UTC-naive datetime.

    - None / "" -> None
    - "YYYY-MM-DDTHH:MM" (naive) is interpreted as UTC
    - "...Z" or "...+/-HH:MM" is converted to UTC and tzinfo is stripped
    """
    if value is None:
        return None
    s = value.strip()
    if not s:
        return None

    if s.endswith("Z"):
        s = s[:-1] + "+00:00"

    dt = datetime.fromisoformat(s)
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def parse_local_date(value: Union[str, date, datetime, None]) -> Optional[date]:
    """Accept 'YYYY-MM-DD' (or a full ISO timestamp) and return the calendar date."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    s = value.strip()
    if not s:
        return None
    return date.fromisoformat(s[:10])


def _local_midnight_to_utc(day: date) -> datetime:
    local = datetime.combine(day, time.min).replace(tzinfo=VIETNAM_TZ)
    return local.astimezone(timezone.utc).replace(tzinfo=None)


def vietnam_day_bounds(value: Union[str, date, datetime]) -> Tuple[datetime, datetime]:
    """
    Return the UTC-naive [start, end) window covering one Vietnam calendar day.

    2024-03-01 -> (2024-02-29T17:00, 2024-03-01T17:00)
    """
    day = parse_local_date(value)
    if day is None:
        raise ValueError("date is required")
    start = _local_midnight_to_utc(day)
    return start, start + timedelta(days=1)


def vietnam_range_bounds(
    start_date: Union[str, date, None],
    end_date: Union[str, date, None],
) -> Tuple[Optional[datetime], Optional[datetime]]:
    """Inclusive local date range -> UTC-naive [start, end) window. Either side may be open."""
    start = vietnam_day_bounds(start_date)[0] if parse_local_date(start_date) else None
    end = vietnam_day_bounds(end_date)[1] if parse_local_date(end_date) else None
    return start, end


def vietnam_month_bounds(year: int, month: int) -> Tuple[datetime, datetime]:
    start = _local_midnight_to_utc(date(year, month, 1))
    if month == 12:
        nxt = date(year + 1, 1, 1)
    else:
        nxt = date(year, month + 1, 1)
    return start, _local_midnight_to_utc(nxt)


def vietnam_year_bounds(year: int) -> Tuple[datetime, datetime]:
    return _local_midnight_to_utc(date(year, 1, 1)), _local_midnight_to_utc(date(year + 1, 1, 1))


def to_vietnam_date(dt: datetime) -> date:
    """UTC-naive timestamp -> Vietnam calendar date."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(VIETNAM_TZ).date()


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """
    Serializes datetime to ISO-8601 with trailing 'Z'.
    If dt is naive, it is treated as UTC.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt_utc = dt.astimezone(timezone.utc).replace(microsecond=0)
    return dt_utc.isoformat().replace("+00:00", "Z")


def preset_start(preset: str, now: Optional[datetime] = None) -> datetime:
    """
    UTC-naive start of a named reporting window ending now.

    day/month/quarter/year start at local midnight of the current day/month/
    quarter/year; week is the trailing 7 days.
    """
    local = (now.astimezone(VIETNAM_TZ) if now else now_in_vietnam())
    if preset == "day":
        return _local_midnight_to_utc(local.date())
    if preset == "week":
        return (local - timedelta(days=7)).astimezone(timezone.utc).replace(tzinfo=None)
    if preset == "month":
        return _local_midnight_to_utc(local.date().replace(day=1))
    if preset == "quarter":
        first_month = (local.month - 1) // 3 * 3 + 1
        return _local_midnight_to_utc(date(local.year, first_month, 1))
    if preset == "year":
        return _local_midnight_to_utc(date(local.year, 1, 1))
    raise ValueError(f"unknown period preset: {preset}")
