"""Clock helpers. All game-calendar logic runs in the configured timezone (Europe/Berlin)."""

import calendar
import time
from datetime import datetime, timedelta

import pytz

MS_PER_SECOND = 1000


def now_ms() -> int:
    """Current time as milliseconds since the epoch."""
    return int(time.time() * MS_PER_SECOND)


def local_datetime(timestamp_ms: int, timezone: str) -> datetime:
    """Convert an epoch-ms timestamp into an aware datetime in `timezone`."""
    tz = pytz.timezone(timezone)
    return datetime.fromtimestamp(timestamp_ms / MS_PER_SECOND, tz=pytz.utc).astimezone(tz)


def local_date(timestamp_ms: int, timezone: str) -> str:
    """Calendar date (YYYY-MM-DD) of a timestamp in `timezone`."""
    return local_datetime(timestamp_ms, timezone).strftime("%Y-%m-%d")


def local_month(timestamp_ms: int, timezone: str) -> str:
    """Calendar month (YYYY-MM) of a timestamp in `timezone`."""
    return local_datetime(timestamp_ms, timezone).strftime("%Y-%m")


def days_in_month(timestamp_ms: int, timezone: str) -> int:
    local = local_datetime(timestamp_ms, timezone)
    return calendar.monthrange(local.year, local.month)[1]


def seconds_until_midnight(timestamp_ms: int, timezone: str) -> int:
    local = local_datetime(timestamp_ms, timezone)
    return 86400 - (local.hour * 3600 + local.minute * 60 + local.second)


def format_remaining(seconds: int) -> str:
    """`3h 5m` or `5m`."""
    hours, rest = divmod(max(0, seconds), 3600)
    if hours > 0:
        return f"{hours}h {rest // 60}m"
    return f"{rest // 60}m"


def week_start(timestamp_ms: int, timezone: str) -> str:
    """Monday of the week containing the timestamp, as YYYY-MM-DD."""
    local = local_datetime(timestamp_ms, timezone)
    monday = local.date() - timedelta(days=local.weekday())
    return monday.strftime("%Y-%m-%d")
