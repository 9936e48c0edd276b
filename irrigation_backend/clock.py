"""Time helpers.

Instants are stored as epoch milliseconds (UTC). Calendar-day bucketing uses a
fixed local offset, +05:30 unless configured otherwise.
"""

from datetime import date, datetime, timedelta, timezone

DEFAULT_UTC_OFFSET = timedelta(hours=5, minutes=30)
MS_PER_MINUTE = 60_000


def now_ms() -> int:
    return int(datetime.now(timezone.utc).timestamp() * 1000)


def local_zone(utc_offset: timedelta = DEFAULT_UTC_OFFSET) -> timezone:
    return timezone(utc_offset)


def to_local(ts_ms: int, utc_offset: timedelta = DEFAULT_UTC_OFFSET) -> datetime:
    """Aware datetime for an epoch-ms instant at the given offset."""
    return datetime.fromtimestamp(ts_ms / 1000, tz=local_zone(utc_offset))


def to_ms(dt: datetime) -> int:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp() * 1000)


def local_day(ts_ms: int, utc_offset: timedelta = DEFAULT_UTC_OFFSET) -> date:
    return to_local(ts_ms, utc_offset).date()


def next_local_midnight(ts_ms: int, utc_offset: timedelta = DEFAULT_UTC_OFFSET) -> int:
    local = to_local(ts_ms, utc_offset)
    start_of_day = local.replace(hour=0, minute=0, second=0, microsecond=0)
    return to_ms(start_of_day + timedelta(days=1))


def minutes_between(start_ms: int, end_ms: int) -> int:
    # whole minutes, truncated
    return (end_ms - start_ms) // MS_PER_MINUTE
