from datetime import date, datetime, time, timedelta, timezone
from typing import Iterator, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def overlaps(s1: datetime, e1: datetime, s2: datetime, e2: datetime) -> bool:
    """Half-open interval test: [s1, e1) and [s2, e2) share at least one instant."""
    return s1 < e2 and s2 < e1


def footprint(start: datetime, end: datetime, buffer_after_mins: Optional[int]) -> Tuple[datetime, datetime]:
    """The range a booking or hold actually occupies, cleanup buffer included."""
    return start, end + timedelta(minutes=buffer_after_mins or 0)


def business_zone(tz_name: Optional[str], default: str) -> ZoneInfo:
    try:
        return ZoneInfo(tz_name or default)
    except (ZoneInfoNotFoundError, ValueError):
        return ZoneInfo(default)


def minutes_of(t: time) -> int:
    return t.hour * 60 + t.minute


def iter_days(start: date, end: date) -> Iterator[date]:
    """Local dates in [start, end)."""
    day = start
    while day < end:
        yield day
        day += timedelta(days=1)


def iter_slot_starts(window_start: time, window_end: time, increment_mins: int, duration_mins: int) -> Iterator[int]:
    """
    Candidate start offsets (minutes from local midnight) inside one window.

    A candidate must end no later than the window end. An end time of 00:00
    means the window runs to midnight.
    """
    start = minutes_of(window_start)
    end = minutes_of(window_end) or 24 * 60
    offset = start
    while offset + duration_mins <= end:
        yield offset
        offset += increment_mins


def bucket_starts(start: datetime, end: datetime, bucket_mins: int) -> Iterator[datetime]:
    """
    Every epoch-aligned bucket touched by [start, end).

    Ranges that do not sit on bucket boundaries claim the partial buckets at
    both edges too.
    """
    size = timedelta(minutes=bucket_mins)
    first = EPOCH + ((start - EPOCH) // size) * size
    current = first
    while current < end:
        yield current
        current += size


def local_offset_to_utc(day: date, offset_mins: int, tz: ZoneInfo) -> datetime:
    """Local midnight of `day` plus a wall-clock offset, as UTC."""
    wall = datetime.combine(day, time(0), tzinfo=tz) + timedelta(minutes=offset_mins)
    return wall.astimezone(timezone.utc)


def on_grid(value: datetime, bucket_mins: int) -> bool:
    """True when `value` is an epoch-aligned bucket boundary."""
    return (value - EPOCH) % timedelta(minutes=bucket_mins) == timedelta(0)


def time_on_grid(t: time, bucket_mins: int) -> bool:
    """True when a wall-clock time falls on a bucket boundary of the local day."""
    return t.second == 0 and t.microsecond == 0 and minutes_of(t) % bucket_mins == 0
