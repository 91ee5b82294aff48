"""
Revenue analytics and the operator dashboard.

Both read the same merged payment stream as the ledger and aggregate it
in one pass; only per-route, per-bus and per-day buckets are held.
"""
import logging
from datetime import date, datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from .db import Booking, BusRoute, BusVehicle, Schedule, Trip, as_utc
from .fares import display_amount
from .ledger import LedgerFilters, merged_entries, parse_bound
from .schemas import (
    Analytics,
    AnalyticsOverview,
    AnalyticsPeriod,
    AnalyticsSummary,
    BusRevenue,
    DailyRevenue,
    DashboardOut,
    DashboardStats,
    LedgerEntry,
    MonthlyRevenue,
    RouteRevenue,
)

_log = logging.getLogger("shiteni.bus.analytics")

DEFAULT_PERIOD_DAYS = 30
MAX_PERIOD_DAYS = 366
TOP_N = 5
DASHBOARD_MONTHS = 6
RECENT_PAYMENTS = 5
PAYMENT_METHODS = ("card", "mobile_money", "cash", "bank_transfer")


class AnalyticsError(ValueError):
    pass


def resolve_period(
    start_date: Optional[str],
    end_date: Optional[str],
    period: Optional[int],
    now: Optional[datetime] = None,
) -> Tuple[datetime, datetime]:
    """
    Inclusive (start, end) window. `end` defaults to now and `start` to
    `period` days before it; a bare end date covers that whole day.
    """
    days = DEFAULT_PERIOD_DAYS if period is None else period
    if not 1 <= days <= MAX_PERIOD_DAYS:
        raise AnalyticsError(f"period must be between 1 and {MAX_PERIOD_DAYS} days")
    if end_date and end_date.strip():
        end, inclusive = parse_bound(end_date, end=True)
        if not inclusive:
            end -= timedelta(microseconds=1)
    else:
        end = now or datetime.now(timezone.utc)
    if start_date and start_date.strip():
        start, _ = parse_bound(start_date)
    else:
        start = end - timedelta(days=days)
    if end < start:
        raise AnalyticsError("endDate must not be before startDate")
    if (end - start).days > MAX_PERIOD_DAYS:
        raise AnalyticsError(f"date range too long (max {MAX_PERIOD_DAYS} days)")
    return start, end


def _window(s: Session, company_id: str, start: datetime, end: datetime) -> Iterable[LedgerEntry]:
    return merged_entries(s, company_id, LedgerFilters(start_date=start.isoformat(), end_date=end.isoformat()))


def _passengers(e: LedgerEntry) -> int:
    if e.source == "dispatch":
        return 0
    return len([x for x in (e.seat_number or "").split(",") if x.strip()]) or 1


def _growth(current: float, previous: float) -> float:
    if previous <= 0:
        return 0
    return round((current - previous) / previous * 100, 2)


def _status_counts(s: Session, model, company_id: str) -> Dict[str, int]:
    rows = s.execute(
        select(model.status, func.count()).where(model.company_id == company_id).group_by(model.status)
    ).all()
    return {status: n for status, n in rows}


def _trip_counts(s: Session, company_id: str) -> Tuple[int, int]:
    counts = _status_counts(s, Trip, company_id)
    return sum(counts.values()), counts.get("active", 0)


def build_analytics(s: Session, company_id: str, start: datetime, end: datetime) -> Analytics:
    overview = AnalyticsOverview()
    summary = AnalyticsSummary()
    routes: Dict[str, RouteRevenue] = {}
    buses: Dict[str, BusRevenue] = {}
    trend: Dict[date, float] = {}
    d = start.date()
    while d <= end.date():
        trend[d] = 0.0
        d += timedelta(days=1)
    methods: Dict[str, float] = {m: 0.0 for m in PAYMENT_METHODS}

    for e in _window(s, company_id, start, end):
        paid = e.payment_status == "completed"
        amount = float(e.amount or 0) if paid else 0.0
        riders = _passengers(e)

        if e.source == "booking":
            summary.total_bookings += 1
            summary.paid_bookings += int(paid)
            overview.online_revenue += amount
            overview.online_passengers += riders
        elif e.source == "ticket":
            summary.total_tickets += 1
            summary.paid_tickets += int(paid)
            overview.walk_in_revenue += amount
            overview.walk_in_passengers += riders
        else:
            summary.total_dispatches += 1
            summary.arrived_dispatches += int(paid)
            overview.dispatch_revenue += amount

        r = routes.setdefault(e.route_name, RouteRevenue(route_name=e.route_name))
        r.sales += 1
        r.passengers += riders
        r.revenue += amount
        b = buses.setdefault(e.bus_name, BusRevenue(bus_name=e.bus_name))
        b.sales += 1
        b.passengers += riders
        b.revenue += amount

        if paid:
            day = as_utc(e.payment_date).date()
            if day in trend:
                trend[day] += amount
            methods[e.payment_method] = methods.get(e.payment_method, 0.0) + amount

    overview.total_revenue = overview.online_revenue + overview.walk_in_revenue + overview.dispatch_revenue
    overview.total_passengers = overview.online_passengers + overview.walk_in_passengers

    # Equal-length window immediately before this one.
    prev_start = start - (end - start)
    prev_revenue = 0.0
    prev_passengers = 0
    for e in _window(s, company_id, prev_start, start - timedelta(microseconds=1)):
        if e.payment_status == "completed":
            prev_revenue += float(e.amount or 0)
        prev_passengers += _passengers(e)
    overview.revenue_growth = _growth(overview.total_revenue, prev_revenue)
    overview.passenger_growth = _growth(overview.total_passengers, prev_passengers)
    overview.total_trips, overview.active_trips = _trip_counts(s, company_id)

    for field in ("total_revenue", "online_revenue", "walk_in_revenue", "dispatch_revenue"):
        setattr(overview, field, display_amount(getattr(overview, field)))
    for item in list(routes.values()) + list(buses.values()):
        item.revenue = display_amount(item.revenue)

    top_routes = sorted(routes.values(), key=lambda x: (-x.revenue, x.route_name))[:TOP_N]
    top_buses = sorted(buses.values(), key=lambda x: (-x.revenue, x.bus_name))[:TOP_N]
    _log.info(
        "analytics built",
        extra={"company_id": company_id, "window_start": start.isoformat(), "window_end": end.isoformat()},
    )
    return Analytics(
        overview=overview,
        top_routes=top_routes,
        total_routes=len(routes),
        top_buses=top_buses,
        total_buses=len(buses),
        revenue_trend=[DailyRevenue(day=k, revenue=display_amount(v)) for k, v in trend.items()],
        period=AnalyticsPeriod(start_date=start, end_date=end, days=(end.date() - start.date()).days + 1),
        payment_methods={k: display_amount(v) for k, v in methods.items()},
        summary=summary,
    )


def _month_keys(today: date, n: int) -> List[str]:
    y, m = today.year, today.month
    keys = []
    for _ in range(n):
        keys.append(f"{y:04d}-{m:02d}")
        m -= 1
        if m == 0:
            y, m = y - 1, 12
    return list(reversed(keys))


def build_dashboard(s: Session, company_id: str, now: Optional[datetime] = None) -> DashboardOut:
    now = now or datetime.now(timezone.utc)
    today = as_utc(now).date()
    stats = DashboardStats()

    route_counts = _status_counts(s, BusRoute, company_id)
    stats.total_routes = sum(route_counts.values())
    stats.active_routes = route_counts.get("active", 0)
    fleet_counts = _status_counts(s, BusVehicle, company_id)
    stats.fleet_size = sum(fleet_counts.values())
    stats.active_buses = fleet_counts.get("active", 0)
    stats.total_trips, stats.active_trips = _trip_counts(s, company_id)
    stats.today_schedules = (
        s.scalar(
            select(func.count()).select_from(Schedule).where(Schedule.company_id == company_id, Schedule.run_date == today)
        )
        or 0
    )
    booking_counts = _status_counts(s, Booking, company_id)
    stats.total_bookings = sum(booking_counts.values())
    stats.confirmed_bookings = booking_counts.get("confirmed", 0)
    stats.cancelled_bookings = booking_counts.get("cancelled", 0)

    months = {k: 0.0 for k in _month_keys(today, DASHBOARD_MONTHS)}
    recent: List[LedgerEntry] = []
    for e in merged_entries(s, company_id, LedgerFilters()):
        if len(recent) < RECENT_PAYMENTS:
            recent.append(e)
        day = as_utc(e.payment_date).date()
        if day == today:
            stats.today_passengers += _passengers(e)
        if e.payment_status != "completed":
            continue
        amount = float(e.amount or 0)
        stats.total_revenue += amount
        if day == today:
            stats.today_revenue += amount
        key = f"{day.year:04d}-{day.month:02d}"
        if key in months:
            months[key] += amount
    stats.total_revenue = display_amount(stats.total_revenue)
    stats.today_revenue = display_amount(stats.today_revenue)
    return DashboardOut(
        stats=stats,
        revenue_by_month=[MonthlyRevenue(month=k, revenue=display_amount(v)) for k, v in months.items()],
        recent_payments=recent,
    )
