from datetime import date, datetime, timezone

import pytest

from apps.bus.app.analytics import AnalyticsError, build_analytics, build_dashboard, resolve_period

MARCH_1 = datetime(2026, 3, 1, tzinfo=timezone.utc)


def _first_week(session, vendor):
    start, end = resolve_period("2026-03-01", "2026-03-07", None)
    return build_analytics(session, vendor.id, start, end)


def test_resolve_period_defaults_to_trailing_days():
    now = datetime(2026, 3, 5, 12, 0, tzinfo=timezone.utc)
    start, end = resolve_period(None, None, None, now=now)
    assert end == now
    assert start == datetime(2026, 2, 3, 12, 0, tzinfo=timezone.utc)
    start, _ = resolve_period(None, None, 7, now=now)
    assert start == datetime(2026, 2, 26, 12, 0, tzinfo=timezone.utc)


def test_resolve_period_bare_end_date_covers_the_day():
    start, end = resolve_period("2026-03-01", "2026-03-07", None)
    assert start == MARCH_1
    assert end.date() == date(2026, 3, 7)
    assert (end.hour, end.minute, end.second) == (23, 59, 59)


@pytest.mark.parametrize(
    "start,end,period",
    [
        (None, None, 0),
        (None, None, 400),
        ("2026-03-07", "2026-03-01", None),
        ("2025-01-01", "2026-03-01", None),
    ],
)
def test_resolve_period_rejects_bad_windows(start, end, period):
    with pytest.raises(AnalyticsError):
        resolve_period(start, end, period)


def test_revenue_counts_only_settled_sales(session, vendor, sales):
    res = _first_week(session, vendor)
    o = res.overview
    assert o.total_revenue == 210
    assert o.online_revenue == 100
    assert o.walk_in_revenue == 110
    assert o.dispatch_revenue == 0
    # Every booking holds two seats; tickets are one passenger each.
    assert (o.online_passengers, o.walk_in_passengers, o.total_passengers) == (6, 2, 8)

    s = res.summary
    assert (s.total_bookings, s.paid_bookings) == (3, 1)
    assert (s.total_tickets, s.paid_tickets) == (2, 2)
    assert (s.total_dispatches, s.arrived_dispatches) == (1, 0)


def test_revenue_by_route_and_bus(session, vendor, sales):
    res = _first_week(session, vendor)
    assert [(r.route_name, r.sales, r.passengers, r.revenue) for r in res.top_routes] == [
        ("Lusaka - Kabwe", 2, 2, 110),
        ("Lusaka - Ndola", 4, 6, 100),
    ]
    assert res.total_routes == 2
    assert [(b.bus_name, b.sales, b.revenue) for b in res.top_buses] == [("Coach 1", 6, 210)]
    assert res.total_buses == 1


def test_daily_trend_and_payment_methods(session, vendor, sales):
    res = _first_week(session, vendor)
    assert [d.day for d in res.revenue_trend][0] == date(2026, 3, 1)
    assert len(res.revenue_trend) == 7 == res.period.days
    assert [d.revenue for d in res.revenue_trend] == [210, 0, 0, 0, 0, 0, 0]
    assert res.payment_methods == {"card": 160, "mobile_money": 0, "cash": 50, "bank_transfer": 0}


def test_arrived_parcel_is_cash_revenue(session, vendor, sales, rows):
    session.add(rows.dispatch(vendor.id, "D-2", 40, "arrived", 10))
    session.commit()
    res = _first_week(session, vendor)
    assert res.overview.dispatch_revenue == 40
    assert res.overview.total_revenue == 250
    assert res.payment_methods["cash"] == 90
    assert res.summary.arrived_dispatches == 1


def test_growth_against_previous_window(session, vendor, sales, rows):
    assert _first_week(session, vendor).overview.revenue_growth == 0

    # Three days before the window: one paid two-seat booking.
    session.add(rows.booking(vendor.id, "P-1", 105, "paid", -3 * 24 * 60))
    session.commit()
    o = _first_week(session, vendor).overview
    assert o.revenue_growth == 100
    assert o.passenger_growth == 300
    assert o.total_revenue == 210


def test_other_operators_are_excluded(session, other_vendor, sales):
    start, end = resolve_period("2026-03-01", "2026-03-07", None)
    res = build_analytics(session, other_vendor.id, start, end)
    assert res.overview.total_revenue == 999
    assert res.summary.total_bookings == 1


def test_trip_counts_come_from_the_catalog(session, vendor, catalog):
    res = _first_week(session, vendor)
    assert (res.overview.total_trips, res.overview.active_trips) == (1, 1)
    assert res.top_routes == []


def test_analytics_over_http(client, auth_headers, sales):
    resp = client.get(
        "/bus/analytics",
        params={"startDate": "2026-03-01", "endDate": "2026-03-03"},
        headers=auth_headers,
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    a = body["analytics"]
    assert a["overview"]["totalRevenue"] == 210
    assert a["topRoutes"][0]["routeName"] == "Lusaka - Kabwe"
    assert a["revenueTrend"] == [
        {"date": "2026-03-01", "revenue": 210},
        {"date": "2026-03-02", "revenue": 0},
        {"date": "2026-03-03", "revenue": 0},
    ]
    assert a["paymentMethods"]["card"] == 160
    assert a["period"]["days"] == 3


def test_analytics_bad_window_is_a_client_error(client, auth_headers):
    resp = client.get("/bus/analytics", params={"period": 0}, headers=auth_headers)
    assert resp.status_code == 400
    assert resp.json()["success"] is False
    resp = client.get("/bus/analytics", params={"startDate": "yesterday"}, headers=auth_headers)
    assert resp.status_code == 400
    assert resp.json()["error"] == "invalid date: yesterday"


def test_dashboard_counts_and_revenue(session, vendor, catalog, sales):
    res = build_dashboard(session, vendor.id, now=datetime(2026, 3, 1, 18, 0, tzinfo=timezone.utc))
    st = res.stats
    assert (st.total_routes, st.active_routes) == (1, 1)
    assert (st.fleet_size, st.active_buses) == (1, 1)
    assert (st.total_trips, st.active_trips) == (1, 1)
    assert (st.total_bookings, st.confirmed_bookings, st.cancelled_bookings) == (3, 3, 0)
    assert st.today_schedules == 0
    assert st.today_passengers == 8
    assert st.today_revenue == 210
    assert st.total_revenue == 210

    assert [m.month for m in res.revenue_by_month] == [
        "2025-10",
        "2025-11",
        "2025-12",
        "2026-01",
        "2026-02",
        "2026-03",
    ]
    assert [m.revenue for m in res.revenue_by_month] == [0, 0, 0, 0, 0, 210]
    assert [p.payment_id for p in res.recent_payments] == ["B-3", "T-2", "D-1", "B-2", "T-1"]


def test_dashboard_over_http(client, auth_headers, catalog):
    resp = client.get("/bus/dashboard", headers=auth_headers)
    assert resp.status_code == 200
    body = resp.json()
    assert body["stats"]["fleetSize"] == 1
    assert body["stats"]["activeTrips"] == 1
    assert len(body["revenueByMonth"]) == 6
    assert body["recentPayments"] == []
