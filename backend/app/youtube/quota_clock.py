"""Quota-day clock: YouTube resets project quota at midnight US Pacific time.

All day boundaries in the sync backend come from this module so the ledger
reset, the status `reset_time`, analytics windows and the scheduler timers
agree with each other. Pacific offsets are computed from the fixed US rules
(DST from the second Sunday of March 02:00 local to the first Sunday of
November 02:00 local) instead of the host's zone database.
"""

from datetime import UTC, date, datetime, time, timedelta, timezone

PST = timedelta(hours=-8)
PDT = timedelta(hours=-7)

_TRANSITION_HOUR = 2  # local wall-clock hour of both DST transitions


def _nth_sunday(year: int, month: int, n: int) -> date:
    first = date(year, month, 1)
    first_sunday = first + timedelta(days=(6 - first.weekday()) % 7)
    return first_sunday + timedelta(weeks=n - 1)


def dst_start(year: int) -> date:
    """Second Sunday of March."""
    return _nth_sunday(year, 3, 2)


def dst_end(year: int) -> date:
    """First Sunday of November."""
    return _nth_sunday(year, 11, 1)


def _ensure_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=UTC)
    return moment.astimezone(UTC)


def is_pacific_dst(moment: datetime) -> bool:
    """Return True when daylight time is in effect in Pacific time at `moment`.

    Naive datetimes are treated as UTC.
    """
    moment = _ensure_utc(moment)
    year = moment.year
    # 02:00 PST == 10:00 UTC, 02:00 PDT == 09:00 UTC
    starts = datetime.combine(dst_start(year), time(10, 0), tzinfo=UTC)
    ends = datetime.combine(dst_end(year), time(9, 0), tzinfo=UTC)
    return starts <= moment < ends


def pacific_offset(moment: datetime) -> timedelta:
    return PDT if is_pacific_dst(moment) else PST


def to_pacific(moment: datetime) -> datetime:
    """Convert to an aware datetime carrying the fixed Pacific offset in effect."""
    moment = _ensure_utc(moment)
    return moment.astimezone(timezone(pacific_offset(moment)))


def quota_date(moment: datetime) -> date:
    """Pacific calendar date of `moment`, the quota day it is charged to."""
    return to_pacific(moment).date()


def date_key(moment: datetime) -> str:
    """Ledger date key, e.g. '2025-01-01'."""
    return quota_date(moment).isoformat()


def _local_is_dst(local: datetime) -> bool:
    d = local.date()
    start, end = dst_start(d.year), dst_end(d.year)
    if start < d < end:
        return True
    if d == start:
        # 02:00-02:59 does not exist on this day; treat it as already shifted
        return local.hour >= _TRANSITION_HOUR
    if d == end:
        # 01:00-01:59 happens twice; resolve to the first (daylight) occurrence
        return local.hour < _TRANSITION_HOUR
    return False


def pacific_to_utc(local: datetime) -> datetime:
    """Convert a naive Pacific wall-clock time to an aware UTC datetime."""
    offset = PDT if _local_is_dst(local) else PST
    return (local - offset).replace(tzinfo=UTC)


def quota_day_start(day: date) -> datetime:
    """UTC instant of Pacific midnight that opens `day`."""
    return pacific_to_utc(datetime.combine(day, time.min))


def quota_day_window(day: date) -> tuple[datetime, datetime]:
    """[start, end) UTC bounds of the quota day `day`.

    Days that contain a DST transition are 23 or 25 hours long.
    """
    return quota_day_start(day), quota_day_start(day + timedelta(days=1))


def next_reset_time(moment: datetime) -> datetime:
    """Next Pacific midnight after `moment`, in UTC."""
    return quota_day_start(quota_date(moment) + timedelta(days=1))
