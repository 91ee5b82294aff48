import os
import uuid
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

os.environ["ENV"] = "test"
os.environ.setdefault("BUS_DB_URL", "sqlite+pysqlite:///:memory:")

import apps.bus.app.main as bus  # noqa: E402
from apps.bus.app.auth import Caller  # noqa: E402
from apps.bus.app.db import Base, Booking, Dispatch, Ticket, get_session  # noqa: E402

COMPANY_ID = "company-1"
OTHER_COMPANY_ID = "company-2"

# Sales rows are stamped relative to BASE; DEPART is their travel day.
BASE = datetime(2026, 3, 1, 10, 0, tzinfo=timezone.utc)
DEPART = datetime(2026, 3, 20, tzinfo=timezone.utc)


@pytest.fixture()
def bus_engine():
    """
    Isolated in-memory SQLite engine shared by every session of one test.
    """
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return engine


@pytest.fixture()
def session(bus_engine):
    with Session(bus_engine) as s:
        yield s


@pytest.fixture()
def client(bus_engine):
    def _override():
        with Session(bus_engine) as s:
            yield s

    bus.app.dependency_overrides[get_session] = _override
    try:
        yield TestClient(bus.app)
    finally:
        bus.app.dependency_overrides.pop(get_session, None)


@pytest.fixture()
def vendor() -> Caller:
    return Caller(id=COMPANY_ID, name="Desk Agent", email="desk@example.com", service_type="bus")


@pytest.fixture()
def other_vendor() -> Caller:
    return Caller(id=OTHER_COMPANY_ID, name="Other Agent", service_type="bus")


@pytest.fixture()
def auth_headers():
    # X-Test-* headers are only honoured when ENV=test.
    return {"X-Test-User": COMPANY_ID, "X-Test-Name": "Desk Agent"}


@pytest.fixture()
def catalog(session, vendor):
    """
    A small operator setup: two terminals and a stop, one bus, one
    Lusaka - Ndola route with a discounted fare and a Monday/Wednesday trip.
    """
    for name, kind in (("Lusaka", "terminal"), ("Ndola", "terminal"), ("Kabwe", "stop")):
        bus.create_stop(body=bus.StopIn(stop_name=name, stop_type=kind, district=name), caller=vendor, s=session)
    coach = bus.create_bus(
        body=bus.BusIn(bus_name="Coach 1", bus_number_plate="ABZ 1234", number_of_seats=60, bus_type="Luxury"),
        caller=vendor,
        s=session,
    ).bus
    route = bus.create_route(
        body=bus.RouteIn(
            route_name="Lusaka - Ndola",
            stops=[
                {"stopId": "s-1", "stopName": "Lusaka"},
                {"stopId": "s-2", "stopName": "Kabwe"},
                {"stopId": "s-3", "stopName": "Ndola"},
            ],
        ),
        caller=vendor,
        s=session,
    ).route
    fare = bus.create_fare(
        body=bus.FareIn(origin="Lusaka", destination="Ndola", fare_amount=200, discount=10),
        caller=vendor,
        s=session,
    ).fare
    trip = bus.create_trip(
        body=bus.TripIn(
            bus_id=coach.id,
            route_id=route.id,
            departure_times={"to": "08:00", "from": "15:00"},
            days_of_week=["Monday", "Wednesday"],
        ),
        caller=vendor,
        s=session,
    ).trip
    return SimpleNamespace(bus=coach, route=route, fare=fare, trip=trip)


def make_booking(company_id: str, number: str, amount: float, payment_status: str, minutes: int, **extra) -> Booking:
    values = dict(
        id=str(uuid.uuid4()),
        company_id=company_id,
        booking_number=number,
        customer_id="cust-1",
        customer_first_name="Mary",
        customer_last_name="Banda",
        customer_email="mary@example.com",
        customer_phone="+260970000001",
        trip_id="trip-1",
        trip_name="Coach 1 - Lusaka - Ndola",
        route_name="Lusaka - Ndola",
        bus_id="bus-1",
        bus_name="Coach 1",
        seat_numbers="1,2",
        boarding_point="Lusaka",
        dropping_point="Ndola",
        fare_amount=amount,
        currency="ZMW",
        payment_method="card",
        payment_status=payment_status,
        payment_reference="ref-" + number,
        departure_date=DEPART,
        departure_time="08:00",
        created_at=BASE + timedelta(minutes=minutes),
        updated_at=BASE + timedelta(minutes=minutes),
    )
    values.update(extra)
    return Booking(**values)


def make_ticket(company_id: str, number: str, amount: float, method: str, minutes: int) -> Ticket:
    return Ticket(
        id=str(uuid.uuid4()),
        company_id=company_id,
        ticket_number=number,
        trip_id="trip-1",
        trip_name="Coach 1 - Lusaka - Kabwe",
        route_name="Lusaka - Kabwe",
        bus_id="bus-1",
        bus_name="Coach 1",
        passenger_first_name="John",
        passenger_last_name="Phiri",
        passenger_phone="+260970000002",
        passenger_email=None,
        boarding_point="Lusaka",
        dropping_point="Kabwe",
        seat_number="7",
        fare_amount=amount,
        currency="ZMW",
        payment_method=method,
        payment_status="paid",
        departure_date=DEPART,
        departure_time="08:00",
        sold_by="agent-9",
        sold_by_name="Desk Agent",
        created_at=BASE + timedelta(minutes=minutes),
        updated_at=BASE + timedelta(minutes=minutes),
    )


def make_dispatch(company_id: str, number: str, price: float, status: str, minutes: int) -> Dispatch:
    return Dispatch(
        id=str(uuid.uuid4()),
        company_id=company_id,
        dispatch_number=number,
        trip_id="trip-1",
        trip_name="Coach 1 - Lusaka - Ndola",
        route_name="Lusaka - Ndola",
        bus_id="bus-1",
        bus_name="Coach 1",
        bus_number="ABZ 1234",
        departure_date=DEPART,
        dispatch_stop="Ndola",
        receiver_contact="Peter 0977000003",
        parcel_description="Documents",
        parcel_value=500,
        billed_price=price,
        status=status,
        dispatched_by="agent-9",
        dispatched_by_name="Desk Agent",
        created_at=BASE + timedelta(minutes=minutes),
        updated_at=BASE + timedelta(minutes=minutes),
    )


@pytest.fixture()
def sales(session, vendor, other_vendor):
    """
    Three bookings, two tickets and one parcel still in transit, created
    one minute apart in this order:
      B-1 (t0), T-1 (t1), B-2 (t2), D-1 (t3), T-2 (t4), B-3 (t5)
    """
    session.add_all(
        [
            make_booking(vendor.id, "B-1", 100, "paid", 0),
            make_ticket(vendor.id, "T-1", 50, "cash", 1),
            make_booking(vendor.id, "B-2", 150, "pending", 2),
            make_dispatch(vendor.id, "D-1", 30, "in_transit", 3),
            make_ticket(vendor.id, "T-2", 60, "card", 4),
            make_booking(vendor.id, "B-3", 200, "failed", 5),
            # Another operator's sale never shows up.
            make_booking(other_vendor.id, "X-1", 999, "paid", 6),
        ]
    )
    session.commit()


@pytest.fixture()
def rows():
    return SimpleNamespace(booking=make_booking, ticket=make_ticket, dispatch=make_dispatch)
