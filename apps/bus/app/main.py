import logging
import os
import random
import string
import time
import uuid
from datetime import datetime, timedelta
from typing import Annotated, List, Optional, Tuple

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query
from shiteni_shared import (
    RequestIDMiddleware,
    add_standard_health,
    configure_cors,
    install_error_handlers,
    register_startup,
    setup_json_logging,
)
from sqlalchemy import func, select, text
from sqlalchemy.orm import Session
from starlette.middleware.trustedhost import TrustedHostMiddleware

from . import config, notify
from .analytics import DEFAULT_PERIOD_DAYS, AnalyticsError, build_analytics, build_dashboard, resolve_period
from .auth import Caller, require_bus_vendor
from .db import (
    Base,
    Booking,
    BusRoute,
    BusVehicle,
    Dispatch,
    Fare,
    Payment,
    RouteStop,
    Schedule,
    Stop,
    Ticket,
    Trip,
    as_utc,
    engine,
    get_session,
)
from .fares import best_fare_for_route, display_amount, fare_price
from .ledger import LedgerFilterError, LedgerFilters, build_ledger, clamp_page
from .routing import UnknownStopError, company_stop_names, require_route_name, resolve_route_name, trip_name
from .schedule import ScheduleError, expand_trip, find_conflicts
from .schemas import (
    AnalyticsOut,
    BookingEnvelope,
    BookingIn,
    BookingList,
    BookingOut,
    BookingPatch,
    BusEnvelope,
    BusIn,
    BusList,
    BusOut,
    CustomerDetails,
    DashboardOut,
    DeletedOut,
    DepartureTimes,
    DispatchEnvelope,
    DispatchIn,
    DispatchList,
    DispatchOut,
    DispatchPatch,
    FareEnvelope,
    FareIn,
    FareList,
    FareOut,
    GenerateSchedulesIn,
    GenerateSchedulesOut,
    LedgerPage,
    Pagination,
    PassengerDetails,
    PaymentEnvelope,
    PaymentIn,
    PaymentOut,
    PromotionIn,
    PromotionOut,
    RouteEnvelope,
    RouteIn,
    RouteList,
    RouteNameOut,
    RouteOut,
    ScheduleList,
    ScheduleOut,
    StopEnvelope,
    StopIn,
    StopList,
    StopOut,
    TicketEnvelope,
    TicketIn,
    TicketList,
    TicketOut,
    TicketPatch,
    TripEnvelope,
    TripIn,
    TripList,
    TripOut,
)

_log = logging.getLogger("shiteni.bus")

# Fallback capacity when a bus record has no seat count.
DEFAULT_SEATS = 50

app = FastAPI(
    title="Bus API",
    version="0.1.0",
    docs_url="/docs" if config.ENABLE_DOCS else None,
    redoc_url="/redoc" if config.ENABLE_DOCS else None,
    openapi_url="/openapi.json" if config.ENABLE_DOCS else None,
)
setup_json_logging()
app.add_middleware(RequestIDMiddleware)
configure_cors(app, os.getenv("ALLOWED_ORIGINS", ""))
install_error_handlers(app)


def _db_ping() -> None:
    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))


add_standard_health(app, checks={"db": _db_ping})

# Trusted hosts: mitigate Host header attacks and misrouting.
_allowed_hosts_raw = (os.getenv("ALLOWED_HOSTS") or "").strip()
if _allowed_hosts_raw:
    _allowed_hosts = [h.strip() for h in _allowed_hosts_raw.split(",") if h.strip()]
    # Keep local health checks working even if ALLOWED_HOSTS is minimal.
    for _extra in ("localhost", "127.0.0.1"):
        if _extra not in _allowed_hosts:
            _allowed_hosts.append(_extra)
    app.add_middleware(TrustedHostMiddleware, allowed_hosts=_allowed_hosts)


@register_startup(app)
def _create_tables() -> None:
    # Schema is created from the models; there is no migration tool.
    Base.metadata.create_all(engine)


router = APIRouter(prefix="/bus", dependencies=[Depends(require_bus_vendor)])


# ---- Identifiers ----
def _now_ms() -> int:
    return int(time.time() * 1000)


def _rand36(n: int = 9) -> str:
    return "".join(random.choices(string.ascii_lowercase + string.digits, k=n))


def _new_payment_id() -> str:
    return f"PAY-{_now_ms()}-{_rand36()}"


def _new_booking_number() -> str:
    return f"BUS-{_now_ms()}-{_rand36().upper()}"


def _new_ticket_number() -> str:
    return f"BT{str(_now_ms())[-6:]}{random.randint(0, 999):03d}"


def _new_dispatch_number() -> str:
    return f"DISP-{_now_ms()}-{_rand36()}"


# ---- Helpers ----
def _owned(s: Session, model, obj_id: str, caller: Caller, what: str):
    obj = s.get(model, obj_id)
    if obj is None or obj.company_id != caller.id:
        raise HTTPException(status_code=404, detail=f"{what} not found")
    return obj


def _day_bounds(value: str) -> Tuple[datetime, datetime]:
    try:
        start = datetime.fromisoformat(value.strip()[:10] + "T00:00:00+00:00")
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid parameters: date")
    return start, start + timedelta(days=1)


def _paged(s: Session, stmt, page: int, limit: int):
    page, limit = clamp_page(page, limit)
    total = s.scalar(select(func.count()).select_from(stmt.order_by(None).subquery())) or 0
    rows = s.scalars(stmt.offset((page - 1) * limit).limit(limit)).all()
    pages = (total + limit - 1) // limit
    return rows, Pagination(page=page, limit=limit, total=total, pages=pages)


def _fare_out(f: Fare) -> FareOut:
    return FareOut(
        id=f.id,
        route_name=f.route_name,
        origin=f.origin,
        destination=f.destination,
        fare_amount=f.fare_amount,
        currency=f.currency,
        discount=f.discount,
        discounted_amount=display_amount(fare_price(f)),
        status=f.status,
        created_at=f.created_at,
        updated_at=f.updated_at,
    )


def _trip_out(t: Trip) -> TripOut:
    return TripOut(
        id=t.id,
        trip_name=t.trip_name,
        bus_id=t.bus_id,
        bus_name=t.bus_name,
        route_id=t.route_id,
        route_name=t.route_name,
        departure_times=DepartureTimes(to=t.departure_to, from_=t.departure_from),
        days_of_week=t.days,
        status=t.status,
        created_at=t.created_at,
        updated_at=t.updated_at,
    )


def _booking_out(b: Booking) -> BookingOut:
    return BookingOut(
        id=b.id,
        booking_number=b.booking_number,
        customer_id=b.customer_id,
        customer_details=CustomerDetails(
            first_name=b.customer_first_name,
            last_name=b.customer_last_name,
            email=b.customer_email,
            phone_number=b.customer_phone,
        ),
        trip_id=b.trip_id,
        trip_name=b.trip_name,
        route_name=b.route_name,
        bus_id=b.bus_id,
        bus_name=b.bus_name,
        seat_numbers=b.seats,
        boarding_point=b.boarding_point,
        dropping_point=b.dropping_point,
        fare_amount=b.fare_amount,
        currency=b.currency,
        payment_method=b.payment_method,
        payment_status=b.payment_status,
        payment_reference=b.payment_reference,
        departure_date=b.departure_date,
        departure_time=b.departure_time,
        status=b.status,
        booking_type=b.booking_type,
        created_at=b.created_at,
        updated_at=b.updated_at,
    )


def _ticket_out(t: Ticket) -> TicketOut:
    return TicketOut(
        id=t.id,
        ticket_number=t.ticket_number,
        trip_id=t.trip_id,
        trip_name=t.trip_name,
        route_name=t.route_name,
        bus_id=t.bus_id,
        bus_name=t.bus_name,
        passenger_details=PassengerDetails(
            first_name=t.passenger_first_name,
            last_name=t.passenger_last_name,
            phone_number=t.passenger_phone,
            email=t.passenger_email,
        ),
        boarding_point=t.boarding_point,
        dropping_point=t.dropping_point,
        seat_number=t.seat_number,
        fare_amount=t.fare_amount,
        currency=t.currency,
        payment_method=t.payment_method,
        payment_status=t.payment_status,
        departure_date=t.departure_date,
        departure_time=t.departure_time,
        status=t.status,
        sold_by=t.sold_by,
        sold_by_name=t.sold_by_name,
        created_at=t.created_at,
        updated_at=t.updated_at,
    )


def _seat_price(s: Session, caller: Caller, trip: Trip) -> Tuple[float, str]:
    fare = best_fare_for_route(s, caller.id, trip.route_name)
    if fare is None:
        raise HTTPException(status_code=400, detail=f"No active fare for route: {trip.route_name}")
    return fare_price(fare), fare.currency


def _taken_seats(s: Session, caller: Caller, trip_id: str, departure: datetime) -> set:
    lo, hi = _day_bounds(as_utc(departure).date().isoformat())
    taken = set()
    for b in s.scalars(
        select(Booking).where(
            Booking.company_id == caller.id,
            Booking.trip_id == trip_id,
            Booking.departure_date >= lo,
            Booking.departure_date < hi,
            Booking.status != "cancelled",
        )
    ):
        taken.update(b.seats)
    taken.update(
        s.scalars(
            select(Ticket.seat_number).where(
                Ticket.company_id == caller.id,
                Ticket.trip_id == trip_id,
                Ticket.departure_date >= lo,
                Ticket.departure_date < hi,
                Ticket.status.not_in(("cancelled", "refunded")),
            )
        ).all()
    )
    return taken


def _check_sale(s: Session, trip: Trip, seats: List[str], boarding: str, dropping: str) -> None:
    """Reject sales on a trip that is not running, between unknown or
    reversed stops, or for seats the bus does not have."""
    if trip.status != "active":
        raise HTTPException(status_code=409, detail=f"Trip is not active: {trip.trip_name}")
    route = s.get(BusRoute, trip.route_id)
    bus = s.get(BusVehicle, trip.bus_id)
    if route is None or bus is None:
        raise HTTPException(status_code=404, detail="Route or bus not found")
    order = {rs.stop_name: rs.order for rs in route.stops}
    if boarding not in order or dropping not in order:
        raise HTTPException(status_code=400, detail="Invalid boarding or alighting stop")
    if order[boarding] >= order[dropping]:
        raise HTTPException(status_code=400, detail="Alighting stop must come after boarding stop")
    capacity = bus.number_of_seats or DEFAULT_SEATS
    bad = [x for x in seats if not x.isdigit() or not 1 <= int(x) <= capacity]
    if bad:
        raise HTTPException(status_code=400, detail=f"Invalid seat number: {', '.join(bad)} (bus has {capacity} seats)")


# ---- Stops ----
@router.get("/stops", response_model=StopList)
def list_stops(caller: Caller = Depends(require_bus_vendor), s: Session = Depends(get_session)):
    rows = s.scalars(select(Stop).where(Stop.company_id == caller.id).order_by(Stop.created_at.desc())).all()
    return StopList(stops=[StopOut.model_validate(x) for x in rows])


@router.post("/stops", response_model=StopEnvelope)
def create_stop(body: StopIn, caller: Caller = Depends(require_bus_vendor), s: Session = Depends(get_session)):
    stop = Stop(
        id=str(uuid.uuid4()),
        company_id=caller.id,
        stop_name=body.stop_name,
        stop_type=body.stop_type,
        district=body.district,
        status=body.status,
    )
    s.add(stop)
    s.commit()
    s.refresh(stop)
    return StopEnvelope(stop=StopOut.model_validate(stop))


@router.put("/stops/{stop_id}", response_model=StopEnvelope)
def update_stop(stop_id: str, body: StopIn, caller: Caller = Depends(require_bus_vendor), s: Session = Depends(get_session)):
    stop = _owned(s, Stop, stop_id, caller, "Stop")
    stop.stop_name = body.stop_name
    stop.stop_type = body.stop_type
    stop.district = body.district
    stop.status = body.status
    s.commit()
    s.refresh(stop)
    return StopEnvelope(stop=StopOut.model_validate(stop))


@router.delete("/stops/{stop_id}", response_model=DeletedOut)
def delete_stop(stop_id: str, caller: Caller = Depends(require_bus_vendor), s: Session = Depends(get_session)):
    stop = _owned(s, Stop, stop_id, caller, "Stop")
    s.delete(stop)
    s.commit()
    return DeletedOut(message="Stop deleted")


# ---- Fleet ----
@router.get("/fleet", response_model=BusList)
def list_buses(caller: Caller = Depends(require_bus_vendor), s: Session = Depends(get_session)):
    rows = s.scalars(
        select(BusVehicle).where(BusVehicle.company_id == caller.id).order_by(BusVehicle.created_at.desc())
    ).all()
    return BusList(buses=[BusOut.model_validate(x) for x in rows])


def _apply_bus(bus: BusVehicle, body: BusIn) -> None:
    bus.bus_name = body.bus_name
    bus.bus_number_plate = body.bus_number_plate
    bus.number_of_seats = body.number_of_seats
    bus.bus_type = body.bus_type
    bus.has_ac = body.has_ac
    bus.image = body.image
    bus.status = body.status


@router.post("/fleet", response_model=BusEnvelope)
def create_bus(body: BusIn, caller: Caller = Depends(require_bus_vendor), s: Session = Depends(get_session)):
    bus = BusVehicle(id=str(uuid.uuid4()), company_id=caller.id)
    _apply_bus(bus, body)
    s.add(bus)
    s.commit()
    s.refresh(bus)
    return BusEnvelope(bus=BusOut.model_validate(bus))


@router.put("/fleet/{bus_id}", response_model=BusEnvelope)
def update_bus(bus_id: str, body: BusIn, caller: Caller = Depends(require_bus_vendor), s: Session = Depends(get_session)):
    bus = _owned(s, BusVehicle, bus_id, caller, "Bus")
    _apply_bus(bus, body)
    s.commit()
    s.refresh(bus)
    return BusEnvelope(bus=BusOut.model_validate(bus))


@router.delete("/fleet/{bus_id}", response_model=DeletedOut)
def delete_bus(bus_id: str, caller: Caller = Depends(require_bus_vendor), s: Session = Depends(get_session)):
    # Trips, tickets and dispatches keep pointing at the bus, so it is
    # only retired.
    bus = _owned(s, BusVehicle, bus_id, caller, "Bus")
    bus.status = "inactive"
    s.commit()
    return DeletedOut(message="Bus deactivated")


# ---- Routes ----
@router.get("/routes", response_model=RouteList)
def list_routes(caller: Caller = Depends(require_bus_vendor), s: Session = Depends(get_session)):
    rows = s.scalars(
        select(BusRoute).where(BusRoute.company_id == caller.id).order_by(BusRoute.created_at.desc())
    ).all()
    return RouteList(routes=[RouteOut.model_validate(x) for x in rows])


def _route_stops(body: RouteIn) -> List[RouteStop]:
    return [
        RouteStop(id=str(uuid.uuid4()), stop_id=rs.stop_id, stop_name=rs.stop_name, order=i + 1)
        for i, rs in enumerate(body.stops)
    ]


@router.post("/routes", response_model=RouteEnvelope)
def create_route(body: RouteIn, caller: Caller = Depends(require_bus_vendor), s: Session = Depends(get_session)):
    route = BusRoute(
        id=str(uuid.uuid4()),
        company_id=caller.id,
        route_name=body.route_name,
        total_distance=body.total_distance,
        is_bidirectional=body.is_bidirectional,
        status=body.status,
        stops=_route_stops(body),
    )
    s.add(route)
    s.commit()
    s.refresh(route)
    return RouteEnvelope(route=RouteOut.model_validate(route))


@router.put("/routes/{route_id}", response_model=RouteEnvelope)
def update_route(route_id: str, body: RouteIn, caller: Caller = Depends(require_bus_vendor), s: Session = Depends(get_session)):
    route = _owned(s, BusRoute, route_id, caller, "Route")
    route.route_name = body.route_name
    route.total_distance = body.total_distance
    route.is_bidirectional = body.is_bidirectional
    route.status = body.status
    route.stops = _route_stops(body)
    s.commit()
    s.refresh(route)
    return RouteEnvelope(route=RouteOut.model_validate(route))


@router.delete("/routes/{route_id}", response_model=DeletedOut)
def delete_route(route_id: str, caller: Caller = Depends(require_bus_vendor), s: Session = Depends(get_session)):
    route = _owned(s, BusRoute, route_id, caller, "Route")
    s.delete(route)
    s.commit()
    return DeletedOut(message="Route deleted")


# ---- Fares ----
@router.get("/fares", response_model=FareList)
def list_fares(caller: Caller = Depends(require_bus_vendor), s: Session = Depends(get_session)):
    rows = s.scalars(select(Fare).where(Fare.company_id == caller.id).order_by(Fare.created_at.desc())).all()
    return FareList(fares=[_fare_out(f) for f in rows])


@router.get("/fares/route-name", response_model=RouteNameOut)
def fare_route_name(
    origin: Optional[str] = None,
    destination: Optional[str] = None,
    caller: Caller = Depends(require_bus_vendor),
    s: Session = Depends(get_session),
):
    return RouteNameOut(route_name=resolve_route_name(origin, destination, company_stop_names(s, caller.id)))


def _apply_fare(s: Session, caller: Caller, fare: Fare, body: FareIn) -> None:
    route_name = (body.route_name or "").strip()
    if not route_name:
        try:
            route_name = require_route_name(body.origin, body.destination, company_stop_names(s, caller.id))
        except UnknownStopError as e:
            raise HTTPException(status_code=400, detail=str(e))
    fare.route_name = route_name
    fare.origin = body.origin
    fare.destination = body.destination
    fare.fare_amount = body.fare_amount
    fare.currency = body.currency
    fare.discount = body.discount
    fare.status = body.status


@router.post("/fares", response_model=FareEnvelope)
def create_fare(body: FareIn, caller: Caller = Depends(require_bus_vendor), s: Session = Depends(get_session)):
    fare = Fare(id=str(uuid.uuid4()), company_id=caller.id)
    _apply_fare(s, caller, fare, body)
    s.add(fare)
    s.commit()
    s.refresh(fare)
    return FareEnvelope(fare=_fare_out(fare))


@router.put("/fares/{fare_id}", response_model=FareEnvelope)
def update_fare(fare_id: str, body: FareIn, caller: Caller = Depends(require_bus_vendor), s: Session = Depends(get_session)):
    fare = _owned(s, Fare, fare_id, caller, "Fare")
    _apply_fare(s, caller, fare, body)
    s.commit()
    s.refresh(fare)
    return FareEnvelope(fare=_fare_out(fare))


@router.delete("/fares/{fare_id}", response_model=DeletedOut)
def delete_fare(fare_id: str, caller: Caller = Depends(require_bus_vendor), s: Session = Depends(get_session)):
    fare = _owned(s, Fare, fare_id, caller, "Fare")
    s.delete(fare)
    s.commit()
    return DeletedOut(message="Fare deleted")


# ---- Trips ----
@router.get("/trips", response_model=TripList)
def list_trips(
    status: Optional[str] = None,
    caller: Caller = Depends(require_bus_vendor),
    s: Session = Depends(get_session),
):
    stmt = select(Trip).where(Trip.company_id == caller.id)
    if status and status != "all":
        stmt = stmt.where(Trip.status == status)
    rows = s.scalars(stmt.order_by(Trip.created_at.desc())).all()
    return TripList(trips=[_trip_out(t) for t in rows])


def _apply_trip(s: Session, caller: Caller, trip: Trip, body: TripIn) -> None:
    bus = _owned(s, BusVehicle, body.bus_id, caller, "Bus")
    route = _owned(s, BusRoute, body.route_id, caller, "Route")
    times = body.departure_times
    if body.status == "active":
        clashes = find_conflicts(
            s,
            caller.id,
            bus.id,
            body.days_of_week,
            times.to,
            times.from_,
            exclude_trip_id=trip.id,
        )
        if clashes:
            names = ", ".join(t.trip_name for t in clashes)
            raise HTTPException(status_code=409, detail=f"Bus already runs a trip at this time: {names}")
    trip.bus_id = bus.id
    trip.bus_name = (body.bus_name or "").strip() or bus.bus_name
    trip.route_id = route.id
    trip.route_name = (body.route_name or "").strip() or route.route_name
    trip.trip_name = (body.trip_name or "").strip() or trip_name(trip.bus_name, trip.route_name)
    trip.departure_to = times.to
    trip.departure_from = times.from_
    trip.days_of_week = ",".join(body.days_of_week)
    trip.status = body.status


@router.post("/trips", response_model=TripEnvelope)
def create_trip(body: TripIn, caller: Caller = Depends(require_bus_vendor), s: Session = Depends(get_session)):
    trip = Trip(id=str(uuid.uuid4()), company_id=caller.id)
    _apply_trip(s, caller, trip, body)
    s.add(trip)
    s.commit()
    s.refresh(trip)
    _log.info("trip created", extra={"company_id": caller.id, "trip_id": trip.id})
    return TripEnvelope(trip=_trip_out(trip))


@router.put("/trips/{trip_id}", response_model=TripEnvelope)
def update_trip(trip_id: str, body: TripIn, caller: Caller = Depends(require_bus_vendor), s: Session = Depends(get_session)):
    trip = _owned(s, Trip, trip_id, caller, "Trip")
    _apply_trip(s, caller, trip, body)
    s.commit()
    s.refresh(trip)
    return TripEnvelope(trip=_trip_out(trip))


@router.delete("/trips/{trip_id}", response_model=DeletedOut)
def delete_trip(trip_id: str, caller: Caller = Depends(require_bus_vendor), s: Session = Depends(get_session)):
    # Bookings and tickets reference the trip by id; cancel instead of
    # removing the row.
    trip = _owned(s, Trip, trip_id, caller, "Trip")
    trip.status = "cancelled"
    s.commit()
    return DeletedOut(message="Trip cancelled")


# ---- Schedules ----
@router.post("/generate-schedules", response_model=GenerateSchedulesOut)
def generate_schedules(body: GenerateSchedulesIn, caller: Caller = Depends(require_bus_vendor), s: Session = Depends(get_session)):
    trip = _owned(s, Trip, body.trip_id, caller, "Trip")
    bus = s.get(BusVehicle, trip.bus_id)
    route = s.get(BusRoute, trip.route_id)
    if bus is None or route is None:
        raise HTTPException(status_code=404, detail="Route or bus not found")
    try:
        dates = expand_trip(trip.days, body.start_date, body.end_date)
    except ScheduleError as e:
        raise HTTPException(status_code=400, detail=str(e))
    # Dates that already have a schedule for this trip are skipped.
    existing = set()
    if dates:
        existing = set(
            s.scalars(
                select(Schedule.run_date).where(Schedule.trip_id == trip.id, Schedule.run_date.in_(dates))
            ).all()
        )
    fare = best_fare_for_route(s, caller.id, trip.route_name)
    seats = bus.number_of_seats or DEFAULT_SEATS
    created = 0
    for d in dates:
        if d in existing:
            continue
        s.add(
            Schedule(
                id=str(uuid.uuid4()),
                company_id=caller.id,
                trip_id=trip.id,
                route_id=trip.route_id,
                bus_id=trip.bus_id,
                run_date=d,
                departure_time=trip.departure_to,
                return_time=trip.departure_from,
                total_seats=seats,
                available_seats=seats,
                fare_amount=fare_price(fare) if fare is not None else None,
                currency=fare.currency if fare is not None else config.DEFAULT_CURRENCY,
                notes=f"Generated from trip: {trip.trip_name}",
            )
        )
        created += 1
    s.commit()
    _log.info("schedules generated", extra={"company_id": caller.id, "trip_id": trip.id, "schedules_created": created})
    return GenerateSchedulesOut(
        message=f"Generated {created} schedules from trip",
        schedules_created=created,
        trip_name=trip.trip_name,
    )


@router.get("/schedules", response_model=ScheduleList)
def list_schedules(
    trip_id: Annotated[Optional[str], Query(alias="tripId")] = None,
    day: Annotated[Optional[str], Query(alias="date")] = None,
    caller: Caller = Depends(require_bus_vendor),
    s: Session = Depends(get_session),
):
    stmt = select(Schedule).where(Schedule.company_id == caller.id)
    if trip_id:
        stmt = stmt.where(Schedule.trip_id == trip_id)
    if day:
        lo, _ = _day_bounds(day)
        stmt = stmt.where(Schedule.run_date == lo.date())
    rows = s.scalars(stmt.order_by(Schedule.run_date.asc(), Schedule.departure_time.asc())).all()
    return ScheduleList(schedules=[ScheduleOut.model_validate(x) for x in rows])


# ---- Bookings ----
@router.get("/bookings", response_model=BookingList)
def list_bookings(
    status: Optional[str] = None,
    day: Annotated[Optional[str], Query(alias="date")] = None,
    page: int = 1,
    limit: int = 10,
    caller: Caller = Depends(require_bus_vendor),
    s: Session = Depends(get_session),
):
    stmt = select(Booking).where(Booking.company_id == caller.id)
    if status and status != "all":
        stmt = stmt.where(Booking.status == status)
    if day:
        lo, hi = _day_bounds(day)
        stmt = stmt.where(Booking.departure_date >= lo, Booking.departure_date < hi)
    rows, pagination = _paged(s, stmt.order_by(Booking.created_at.desc()), page, limit)
    return BookingList(bookings=[_booking_out(b) for b in rows], pagination=pagination)


@router.post("/bookings", response_model=BookingEnvelope)
def create_booking(body: BookingIn, caller: Caller = Depends(require_bus_vendor), s: Session = Depends(get_session)):
    trip = _owned(s, Trip, body.trip_id, caller, "Trip")
    seats = list(dict.fromkeys(body.seat_numbers))
    _check_sale(s, trip, seats, body.boarding_point, body.dropping_point)
    taken = _taken_seats(s, caller, trip.id, body.departure_date).intersection(seats)
    if taken:
        raise HTTPException(status_code=409, detail="Seat already taken: " + ", ".join(sorted(taken)))
    if body.fare_amount is not None:
        amount = body.fare_amount
        currency = body.currency or config.DEFAULT_CURRENCY
    else:
        per_seat, fare_currency = _seat_price(s, caller, trip)
        amount = per_seat * len(seats)
        currency = body.currency or fare_currency
    cd = body.customer_details
    booking = Booking(
        id=str(uuid.uuid4()),
        company_id=caller.id,
        booking_number=_new_booking_number(),
        customer_id=(body.customer_id or "").strip() or cd.email,
        customer_first_name=cd.first_name,
        customer_last_name=cd.last_name,
        customer_email=cd.email,
        customer_phone=cd.phone_number,
        trip_id=trip.id,
        trip_name=trip.trip_name,
        route_name=trip.route_name,
        bus_id=trip.bus_id,
        bus_name=trip.bus_name,
        seat_numbers=",".join(seats),
        boarding_point=body.boarding_point,
        dropping_point=body.dropping_point,
        fare_amount=amount,
        currency=currency,
        payment_method=body.payment_method,
        payment_status=body.payment_status,
        payment_reference=body.payment_reference,
        departure_date=body.departure_date,
        departure_time=body.departure_time or trip.departure_to,
        booking_type=body.booking_type,
    )
    s.add(booking)
    s.commit()
    s.refresh(booking)
    _log.info("booking created", extra={"company_id": caller.id, "booking_number": booking.booking_number})
    notify.send_booking_confirmation(booking)
    return BookingEnvelope(booking=_booking_out(booking))


@router.patch("/bookings/{booking_id}", response_model=BookingEnvelope)
def update_booking(booking_id: str, body: BookingPatch, caller: Caller = Depends(require_bus_vendor), s: Session = Depends(get_session)):
    booking = _owned(s, Booking, booking_id, caller, "Booking")
    changes = {k: v for k, v in body.model_dump(exclude_unset=True).items() if v is not None}
    if not changes:
        raise HTTPException(status_code=400, detail="Nothing to update")
    for k, v in changes.items():
        setattr(booking, k, v)
    s.commit()
    s.refresh(booking)
    return BookingEnvelope(booking=_booking_out(booking))


# ---- Walk-in tickets ----
@router.get("/tickets", response_model=TicketList)
def list_tickets(
    status: Optional[str] = None,
    day: Annotated[Optional[str], Query(alias="date")] = None,
    page: int = 1,
    limit: int = 10,
    caller: Caller = Depends(require_bus_vendor),
    s: Session = Depends(get_session),
):
    stmt = select(Ticket).where(Ticket.company_id == caller.id)
    if status and status != "all":
        stmt = stmt.where(Ticket.status == status)
    if day:
        lo, hi = _day_bounds(day)
        stmt = stmt.where(Ticket.departure_date >= lo, Ticket.departure_date < hi)
    rows, pagination = _paged(s, stmt.order_by(Ticket.created_at.desc()), page, limit)
    return TicketList(tickets=[_ticket_out(t) for t in rows], pagination=pagination)


@router.post("/tickets", response_model=TicketEnvelope)
def create_ticket(body: TicketIn, caller: Caller = Depends(require_bus_vendor), s: Session = Depends(get_session)):
    trip = _owned(s, Trip, body.trip_id, caller, "Trip")
    _check_sale(s, trip, [body.seat_number], body.boarding_point, body.dropping_point)
    if body.seat_number in _taken_seats(s, caller, trip.id, body.departure_date):
        raise HTTPException(status_code=409, detail=f"Seat already taken: {body.seat_number}")
    if body.fare_amount is not None:
        amount = body.fare_amount
        currency = body.currency or config.DEFAULT_CURRENCY
    else:
        amount, fare_currency = _seat_price(s, caller, trip)
        currency = body.currency or fare_currency
    pd = body.passenger_details
    ticket = Ticket(
        id=str(uuid.uuid4()),
        company_id=caller.id,
        ticket_number=_new_ticket_number(),
        trip_id=trip.id,
        trip_name=trip.trip_name,
        route_name=trip.route_name,
        bus_id=trip.bus_id,
        bus_name=trip.bus_name,
        passenger_first_name=pd.first_name,
        passenger_last_name=pd.last_name,
        passenger_phone=pd.phone_number,
        passenger_email=pd.email,
        boarding_point=body.boarding_point,
        dropping_point=body.dropping_point,
        seat_number=body.seat_number,
        fare_amount=amount,
        currency=currency,
        payment_method=body.payment_method,
        payment_status=body.payment_status,
        departure_date=body.departure_date,
        departure_time=body.departure_time or trip.departure_to,
        sold_by=caller.id,
        sold_by_name=caller.name or "Staff",
    )
    s.add(ticket)
    s.commit()
    s.refresh(ticket)
    _log.info("ticket sold", extra={"company_id": caller.id, "ticket_number": ticket.ticket_number})
    return TicketEnvelope(ticket=_ticket_out(ticket))


@router.patch("/tickets/{ticket_id}", response_model=TicketEnvelope)
def update_ticket(ticket_id: str, body: TicketPatch, caller: Caller = Depends(require_bus_vendor), s: Session = Depends(get_session)):
    ticket = _owned(s, Ticket, ticket_id, caller, "Ticket")
    changes = {k: v for k, v in body.model_dump(exclude_unset=True).items() if v is not None}
    if not changes:
        raise HTTPException(status_code=400, detail="Nothing to update")
    for k, v in changes.items():
        setattr(ticket, k, v)
    s.commit()
    s.refresh(ticket)
    return TicketEnvelope(ticket=_ticket_out(ticket))


# ---- Parcel dispatches ----
@router.get("/sending", response_model=DispatchList)
def list_dispatches(
    status: Optional[str] = None,
    bus_id: Annotated[Optional[str], Query(alias="busId")] = None,
    day: Annotated[Optional[str], Query(alias="date")] = None,
    page: int = 1,
    limit: int = 10,
    caller: Caller = Depends(require_bus_vendor),
    s: Session = Depends(get_session),
):
    stmt = select(Dispatch).where(Dispatch.company_id == caller.id)
    if status and status != "all":
        stmt = stmt.where(Dispatch.status == status)
    if bus_id:
        stmt = stmt.where(Dispatch.bus_id == bus_id)
    if day:
        lo, hi = _day_bounds(day)
        stmt = stmt.where(Dispatch.departure_date >= lo, Dispatch.departure_date < hi)
    rows, pagination = _paged(s, stmt.order_by(Dispatch.departure_date.asc(), Dispatch.created_at.asc()), page, limit)
    return DispatchList(dispatches=[DispatchOut.model_validate(d) for d in rows], pagination=pagination)


@router.post("/sending", response_model=DispatchEnvelope)
def create_dispatch(body: DispatchIn, caller: Caller = Depends(require_bus_vendor), s: Session = Depends(get_session)):
    trip = _owned(s, Trip, body.trip_id, caller, "Trip")
    bus_number = (body.bus_number or "").strip()
    if not bus_number:
        bus = s.get(BusVehicle, trip.bus_id)
        bus_number = bus.bus_number_plate if bus is not None else ""
    dispatch = Dispatch(
        id=str(uuid.uuid4()),
        company_id=caller.id,
        dispatch_number=_new_dispatch_number(),
        trip_id=trip.id,
        trip_name=trip.trip_name,
        route_name=trip.route_name,
        bus_id=trip.bus_id,
        bus_name=trip.bus_name,
        bus_number=bus_number,
        departure_date=body.departure_date,
        dispatch_stop=body.dispatch_stop,
        receiver_contact=body.receiver_contact,
        parcel_description=body.parcel_description,
        parcel_value=body.parcel_value,
        billed_price=body.billed_price,
        status=body.status,
        dispatched_by=caller.id,
        dispatched_by_name=caller.name or "Staff",
        notes=body.notes,
    )
    s.add(dispatch)
    s.commit()
    s.refresh(dispatch)
    _log.info("parcel dispatched", extra={"company_id": caller.id, "dispatch_number": dispatch.dispatch_number})
    return DispatchEnvelope(dispatch=DispatchOut.model_validate(dispatch))


@router.patch("/sending/{dispatch_id}", response_model=DispatchEnvelope)
def update_dispatch(dispatch_id: str, body: DispatchPatch, caller: Caller = Depends(require_bus_vendor), s: Session = Depends(get_session)):
    dispatch = _owned(s, Dispatch, dispatch_id, caller, "Dispatch")
    dispatch.status = body.status
    if body.notes:
        dispatch.notes = body.notes
    s.commit()
    s.refresh(dispatch)
    return DispatchEnvelope(dispatch=DispatchOut.model_validate(dispatch))


# ---- Payments ----
@router.get("/payments", response_model=LedgerPage)
def list_payments(
    status: Optional[str] = None,
    payment_method: Annotated[Optional[str], Query(alias="paymentMethod")] = None,
    start_date: Annotated[Optional[str], Query(alias="startDate")] = None,
    end_date: Annotated[Optional[str], Query(alias="endDate")] = None,
    search: Optional[str] = None,
    page: int = 1,
    limit: int = 10,
    caller: Caller = Depends(require_bus_vendor),
    s: Session = Depends(get_session),
):
    filters = LedgerFilters(
        status=status,
        payment_method=payment_method,
        start_date=start_date,
        end_date=end_date,
        search=search,
        page=page,
        limit=limit,
    )
    try:
        return build_ledger(s, caller.id, filters)
    except LedgerFilterError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.post("/payments", response_model=PaymentEnvelope)
def create_payment(body: PaymentIn, caller: Caller = Depends(require_bus_vendor), s: Session = Depends(get_session)):
    payment = Payment(
        id=str(uuid.uuid4()),
        company_id=caller.id,
        payment_id=_new_payment_id(),
        booking_id=body.booking_id,
        ticket_id=body.ticket_id,
        customer_id=body.customer_id,
        customer_name=body.customer_name,
        customer_email=body.customer_email,
        customer_phone=body.customer_phone,
        amount=body.amount,
        currency=body.currency or config.DEFAULT_CURRENCY,
        payment_method=body.payment_method,
        transaction_id=body.transaction_id,
        reference=body.reference,
        trip_id=body.trip_id,
        trip_name=body.trip_name,
        route_name=body.route_name,
        bus_id=body.bus_id,
        bus_name=body.bus_name,
        bus_number=body.bus_number,
        seat_number=body.seat_number,
        boarding_point=body.boarding_point,
        dropping_point=body.dropping_point,
        departure_date=body.departure_date,
        departure_time=body.departure_time,
        processed_by=body.processed_by or caller.id,
        processed_by_name=body.processed_by_name or caller.name or "Staff",
        notes=body.notes,
    )
    s.add(payment)
    s.commit()
    s.refresh(payment)
    _log.info("payment recorded", extra={"company_id": caller.id, "payment_id": payment.payment_id})
    return PaymentEnvelope(payment=PaymentOut.model_validate(payment))


# ---- Analytics ----
@router.get("/analytics", response_model=AnalyticsOut)
def get_analytics(
    start_date: Annotated[Optional[str], Query(alias="startDate")] = None,
    end_date: Annotated[Optional[str], Query(alias="endDate")] = None,
    period: int = DEFAULT_PERIOD_DAYS,
    caller: Caller = Depends(require_bus_vendor),
    s: Session = Depends(get_session),
):
    try:
        start, end = resolve_period(start_date, end_date, period)
    except (AnalyticsError, LedgerFilterError) as e:
        raise HTTPException(status_code=400, detail=str(e))
    return AnalyticsOut(analytics=build_analytics(s, caller.id, start, end))


@router.get("/dashboard", response_model=DashboardOut)
def get_dashboard(caller: Caller = Depends(require_bus_vendor), s: Session = Depends(get_session)):
    return build_dashboard(s, caller.id)


# ---- Promotions ----
@router.post("/promotions/send", response_model=PromotionOut)
def send_promotion(body: PromotionIn, caller: Caller = Depends(require_bus_vendor), s: Session = Depends(get_session)):
    if body.recipients:
        candidates = body.recipients
    else:
        candidates = s.scalars(
            select(Booking.customer_email).where(Booking.company_id == caller.id).distinct()
        ).all()
    recipients = list(dict.fromkeys(r.strip() for r in candidates if r and r.strip()))
    if not recipients:
        raise HTTPException(status_code=400, detail="No recipients")
    sent, failed = notify.send_bulk(recipients, body.subject, html=body.html, text=body.text)
    _log.info("promotion sent", extra={"company_id": caller.id, "sent": sent, "failed": failed})
    return PromotionOut(
        message=f"Email sent to {sent} recipients ({failed} failed)",
        success_count=sent,
        fail_count=failed,
    )


app.include_router(router)
