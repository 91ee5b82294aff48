import re
from datetime import date, timedelta
from typing import Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from . import config
from .db import Trip

WEEKDAYS = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")
TRIP_STATUSES = ("active", "inactive", "cancelled")
MAX_EXPANSION_DAYS = 366

_TIME_RE = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


class ScheduleError(ValueError):
    pass


def normalize_days(days: Iterable[str]) -> List[str]:
    """
    Canonical weekday list: title-cased, de-duplicated, Monday first.
    Raises ScheduleError for unknown names or an empty selection.
    """
    picked = set()
    for raw in days or ():
        name = (raw or "").strip().capitalize()
        if name not in WEEKDAYS:
            raise ScheduleError(f"invalid weekday: {raw}")
        picked.add(name)
    if not picked:
        raise ScheduleError("at least one weekday is required")
    return [d for d in WEEKDAYS if d in picked]


def parse_departure_time(value: str) -> str:
    v = (value or "").strip()
    if len(v) == 4 and v[1] == ":":
        v = "0" + v
    if not _TIME_RE.match(v):
        raise ScheduleError(f"invalid time (HH:MM): {value}")
    return v


def _minutes(hhmm: str) -> int:
    h, m = hhmm.split(":")
    return int(h) * 60 + int(m)


def times_clash(a: str, b: str, gap_minutes: int) -> bool:
    """True when two HH:MM departures are less than `gap_minutes` apart."""
    return abs(_minutes(a) - _minutes(b)) < max(gap_minutes, 1)


def find_conflicts(
    s: Session,
    company_id: str,
    bus_id: str,
    days: List[str],
    depart_to: str,
    depart_from: str,
    exclude_trip_id: Optional[str] = None,
    gap_minutes: Optional[int] = None,
) -> List[Trip]:
    """
    Active trips of the same bus that share a weekday and leave within
    `gap_minutes` of one of the given departures, in either direction.
    """
    gap = config.TRIP_MIN_GAP_MINUTES if gap_minutes is None else gap_minutes
    stmt = select(Trip).where(
        Trip.company_id == company_id,
        Trip.bus_id == bus_id,
        Trip.status == "active",
    )
    if exclude_trip_id:
        stmt = stmt.where(Trip.id != exclude_trip_id)
    wanted_days = set(days)
    wanted_times = (depart_to, depart_from)
    out: List[Trip] = []
    for t in s.scalars(stmt).all():
        if not wanted_days.intersection(t.days):
            continue
        if any(times_clash(a, b, gap) for a in wanted_times for b in (t.departure_to, t.departure_from)):
            out.append(t)
    return out


def expand_trip(days: Iterable[str], start: date, end: date) -> List[date]:
    """Dates between start and end (inclusive) that fall on one of `days`."""
    if end < start:
        raise ScheduleError("endDate must not be before startDate")
    span = (end - start).days + 1
    if span > MAX_EXPANSION_DAYS:
        raise ScheduleError(f"date range too long (max {MAX_EXPANSION_DAYS} days)")
    wanted = {WEEKDAYS.index(d) for d in days if d in WEEKDAYS}
    out: List[date] = []
    for i in range(span):
        d = start + timedelta(days=i)
        if d.weekday() in wanted:
            out.append(d)
    return out
