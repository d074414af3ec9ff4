import datetime as dt
import re
import time
import uuid
from typing import Iterator, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


DATE_KEY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
MONTH_KEY_RE = re.compile(r"^\d{4}-\d{2}$")

DateLike = Union[dt.date, str]


def utc_now() -> dt.datetime:
    """Current time, timezone-aware UTC."""
    return dt.datetime.now(dt.timezone.utc)


def iso_timestamp(moment: dt.datetime) -> str:
    """ISO-8601 UTC with milliseconds and a 'Z' suffix (2025-04-10T03:00:00.000Z)."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=dt.timezone.utc)
    stamp = moment.astimezone(dt.timezone.utc).isoformat(timespec="milliseconds")
    return stamp.replace("+00:00", "Z")


def local_today(moment: dt.datetime, tz_name: str) -> dt.date:
    """Calendar date of ``moment`` in ``tz_name``; UTC when the zone is unknown."""
    try:
        zone = ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError):
        zone = dt.timezone.utc
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=dt.timezone.utc)
    return moment.astimezone(zone).date()


def generate_id(prefix: str) -> str:
    """Opaque unique id: <prefix>_<epoch ms>_<random>."""
    return f"{prefix}_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


def check_date_key(value: str) -> str:
    if not DATE_KEY_RE.match(value or ""):
        raise ValueError(f"expected YYYY-MM-DD, got {value!r}")
    dt.date.fromisoformat(value)
    return value


def check_month_key(value: str) -> str:
    if not MONTH_KEY_RE.match(value or ""):
        raise ValueError(f"expected YYYY-MM, got {value!r}")
    return value


def as_date(value: DateLike) -> dt.date:
    if isinstance(value, dt.datetime):
        return value.date()
    if isinstance(value, dt.date):
        return value
    return dt.date.fromisoformat(str(value)[:10])


def iter_days(start: DateLike, end: DateLike) -> Iterator[dt.date]:
    """Every calendar day from ``start`` to ``end``, both inclusive."""
    day = as_date(start)
    last = as_date(end)
    if day > last:
        return
    while True:
        yield day
        if day == last:
            return
        day += dt.timedelta(days=1)


def next_month_key(day: dt.date) -> str:
    if day.month == 12:
        return f"{day.year + 1:04d}-01"
    return f"{day.year:04d}-{day.month + 1:02d}"
