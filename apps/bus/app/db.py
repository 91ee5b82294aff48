from datetime import date, datetime, timezone
from typing import List, Optional

from sqlalchemy import Boolean, Date, DateTime, Float, ForeignKey, Integer, String, create_engine
from sqlalchemy.types import TypeDecorator
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, relationship

from . import config

DB_SCHEMA = config.DB_SCHEMA


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _fk(target: str) -> ForeignKey:
    return ForeignKey(f"{DB_SCHEMA}.{target}" if DB_SCHEMA else target, ondelete="CASCADE")


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; every stored timestamp is UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware UTC datetimes on every backend. SQLite drops the offset
    on write, so values are normalized to UTC going in and tagged as UTC
    coming out.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return as_utc(value)

    def process_result_value(self, value, dialect):
        return as_utc(value)


class Base(DeclarativeBase):
    pass


class _Tenant:
    """Columns shared by every vendor-owned table."""

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    company_id: Mapped[str] = mapped_column(String(64), index=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=_now, index=True)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=_now, onupdate=_now)


class Stop(_Tenant, Base):
    __tablename__ = "bus_stops"
    __table_args__ = ({"schema": DB_SCHEMA} if DB_SCHEMA else {})
    stop_name: Mapped[str] = mapped_column(String(120), index=True)
    stop_type: Mapped[str] = mapped_column(String(16), default="stop")  # stop|terminal
    district: Mapped[str] = mapped_column(String(120))
    status: Mapped[str] = mapped_column(String(16), default="active")  # active|inactive|maintenance


class BusVehicle(_Tenant, Base):
    __tablename__ = "buses"
    __table_args__ = ({"schema": DB_SCHEMA} if DB_SCHEMA else {})
    bus_name: Mapped[str] = mapped_column(String(120))
    bus_number_plate: Mapped[str] = mapped_column(String(32))
    number_of_seats: Mapped[int] = mapped_column(Integer, default=50)
    bus_type: Mapped[str] = mapped_column(String(64))
    has_ac: Mapped[bool] = mapped_column(Boolean, default=False)
    image: Mapped[Optional[str]] = mapped_column(String(1024), default=None)
    status: Mapped[str] = mapped_column(String(16), default="active")  # active|inactive|maintenance


class BusRoute(_Tenant, Base):
    __tablename__ = "bus_routes"
    __table_args__ = ({"schema": DB_SCHEMA} if DB_SCHEMA else {})
    route_name: Mapped[str] = mapped_column(String(255), index=True)
    total_distance: Mapped[Optional[float]] = mapped_column(Float, default=None)
    is_bidirectional: Mapped[bool] = mapped_column(Boolean, default=True)
    status: Mapped[str] = mapped_column(String(16), default="active")
    stops: Mapped[List["RouteStop"]] = relationship(
        back_populates="route",
        order_by="RouteStop.order",
        cascade="all, delete-orphan",
        lazy="selectin",
    )


class RouteStop(Base):
    __tablename__ = "bus_route_stops"
    __table_args__ = ({"schema": DB_SCHEMA} if DB_SCHEMA else {})
    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    route_id: Mapped[str] = mapped_column(String(36), _fk("bus_routes.id"), index=True)
    # Stops are referenced by id and name; there is no integrity check
    # against bus_stops, a deleted stop keeps its name here.
    stop_id: Mapped[str] = mapped_column(String(36))
    stop_name: Mapped[str] = mapped_column(String(120))
    order: Mapped[int] = mapped_column(Integer, default=0)
    route: Mapped[BusRoute] = relationship(back_populates="stops")


class Fare(_Tenant, Base):
    __tablename__ = "bus_fares"
    __table_args__ = ({"schema": DB_SCHEMA} if DB_SCHEMA else {})
    route_name: Mapped[str] = mapped_column(String(255), index=True)
    origin: Mapped[str] = mapped_column(String(120))
    destination: Mapped[str] = mapped_column(String(120))
    fare_amount: Mapped[float] = mapped_column(Float)
    currency: Mapped[str] = mapped_column(String(3), default="ZMW")  # ZMW|USD
    discount: Mapped[float] = mapped_column(Float, default=0.0)  # percent, 0..100
    status: Mapped[str] = mapped_column(String(16), default="active")  # active|inactive|seasonal


class Trip(_Tenant, Base):
    __tablename__ = "bus_trips"
    __table_args__ = ({"schema": DB_SCHEMA} if DB_SCHEMA else {})
    trip_name: Mapped[str] = mapped_column(String(255))
    bus_id: Mapped[str] = mapped_column(String(36), index=True)
    bus_name: Mapped[str] = mapped_column(String(120))
    route_id: Mapped[str] = mapped_column(String(36), index=True)
    route_name: Mapped[str] = mapped_column(String(255))
    departure_to: Mapped[str] = mapped_column(String(5))  # HH:MM outbound
    departure_from: Mapped[str] = mapped_column(String(5))  # HH:MM return
    # Comma separated weekday names, Monday first.
    days_of_week: Mapped[str] = mapped_column(String(80))
    status: Mapped[str] = mapped_column(String(16), default="active")  # active|inactive|cancelled

    @property
    def days(self) -> List[str]:
        return [d for d in (self.days_of_week or "").split(",") if d]


class Schedule(_Tenant, Base):
    __tablename__ = "bus_schedules"
    __table_args__ = ({"schema": DB_SCHEMA} if DB_SCHEMA else {})
    trip_id: Mapped[str] = mapped_column(String(36), index=True)
    route_id: Mapped[str] = mapped_column(String(36))
    bus_id: Mapped[str] = mapped_column(String(36))
    run_date: Mapped[date] = mapped_column(Date, index=True)
    departure_time: Mapped[str] = mapped_column(String(5))
    return_time: Mapped[str] = mapped_column(String(5))
    total_seats: Mapped[int] = mapped_column(Integer)
    available_seats: Mapped[int] = mapped_column(Integer)
    fare_amount: Mapped[Optional[float]] = mapped_column(Float, default=None)
    currency: Mapped[str] = mapped_column(String(3), default="ZMW")
    status: Mapped[str] = mapped_column(String(16), default="scheduled")
    notes: Mapped[Optional[str]] = mapped_column(String(512), default=None)


class Booking(_Tenant, Base):
    __tablename__ = "bus_bookings"
    __table_args__ = ({"schema": DB_SCHEMA} if DB_SCHEMA else {})
    booking_number: Mapped[str] = mapped_column(String(40), unique=True)
    customer_id: Mapped[str] = mapped_column(String(64))
    customer_first_name: Mapped[str] = mapped_column(String(120))
    customer_last_name: Mapped[str] = mapped_column(String(120))
    customer_email: Mapped[str] = mapped_column(String(255))
    customer_phone: Mapped[str] = mapped_column(String(32))
    trip_id: Mapped[str] = mapped_column(String(36), index=True)
    trip_name: Mapped[str] = mapped_column(String(255))
    route_name: Mapped[str] = mapped_column(String(255))
    bus_id: Mapped[str] = mapped_column(String(36))
    bus_name: Mapped[str] = mapped_column(String(120))
    seat_numbers: Mapped[str] = mapped_column(String(255), default="")  # comma separated
    boarding_point: Mapped[str] = mapped_column(String(120))
    dropping_point: Mapped[str] = mapped_column(String(120))
    fare_amount: Mapped[float] = mapped_column(Float)
    currency: Mapped[str] = mapped_column(String(3), default="ZMW")
    payment_method: Mapped[str] = mapped_column(String(16))  # card|mobile_money
    payment_status: Mapped[str] = mapped_column(String(16), default="pending")  # pending|paid|failed|refunded
    payment_reference: Mapped[Optional[str]] = mapped_column(String(120), default=None)
    departure_date: Mapped[datetime] = mapped_column(UTCDateTime())
    departure_time: Mapped[str] = mapped_column(String(5))
    status: Mapped[str] = mapped_column(String(16), default="confirmed")  # confirmed|cancelled|completed|no_show
    booking_type: Mapped[str] = mapped_column(String(16), default="online")  # online|walk_in

    @property
    def seats(self) -> List[str]:
        return [x for x in (self.seat_numbers or "").split(",") if x]


class Ticket(_Tenant, Base):
    __tablename__ = "bus_tickets"
    __table_args__ = ({"schema": DB_SCHEMA} if DB_SCHEMA else {})
    ticket_number: Mapped[str] = mapped_column(String(40), unique=True)
    trip_id: Mapped[str] = mapped_column(String(36), index=True)
    trip_name: Mapped[str] = mapped_column(String(255))
    route_name: Mapped[str] = mapped_column(String(255))
    bus_id: Mapped[str] = mapped_column(String(36))
    bus_name: Mapped[str] = mapped_column(String(120))
    passenger_first_name: Mapped[str] = mapped_column(String(120))
    passenger_last_name: Mapped[str] = mapped_column(String(120))
    passenger_phone: Mapped[str] = mapped_column(String(32))
    passenger_email: Mapped[Optional[str]] = mapped_column(String(255), default=None)
    boarding_point: Mapped[str] = mapped_column(String(120))
    dropping_point: Mapped[str] = mapped_column(String(120))
    seat_number: Mapped[str] = mapped_column(String(16))
    fare_amount: Mapped[float] = mapped_column(Float)
    currency: Mapped[str] = mapped_column(String(3), default="ZMW")
    payment_method: Mapped[str] = mapped_column(String(16))  # cash|card|mobile_money
    payment_status: Mapped[str] = mapped_column(String(16), default="paid")  # pending|paid|refunded
    departure_date: Mapped[datetime] = mapped_column(UTCDateTime())
    departure_time: Mapped[str] = mapped_column(String(5))
    status: Mapped[str] = mapped_column(String(16), default="active")  # active|used|cancelled|refunded
    sold_by: Mapped[str] = mapped_column(String(64))
    sold_by_name: Mapped[str] = mapped_column(String(120))


class Dispatch(_Tenant, Base):
    __tablename__ = "bus_dispatches"
    __table_args__ = ({"schema": DB_SCHEMA} if DB_SCHEMA else {})
    dispatch_number: Mapped[str] = mapped_column(String(40), unique=True)
    trip_id: Mapped[str] = mapped_column(String(36), index=True)
    trip_name: Mapped[str] = mapped_column(String(255))
    route_name: Mapped[str] = mapped_column(String(255))
    bus_id: Mapped[str] = mapped_column(String(36))
    bus_name: Mapped[str] = mapped_column(String(120))
    bus_number: Mapped[str] = mapped_column(String(32))
    departure_date: Mapped[datetime] = mapped_column(UTCDateTime())
    dispatch_stop: Mapped[str] = mapped_column(String(120))
    receiver_contact: Mapped[str] = mapped_column(String(120))
    parcel_description: Mapped[str] = mapped_column(String(512))
    parcel_value: Mapped[float] = mapped_column(Float)
    billed_price: Mapped[float] = mapped_column(Float)
    # scheduled|boarding|departed|in_transit|arrived|delayed|cancelled
    status: Mapped[str] = mapped_column(String(16), default="scheduled")
    dispatched_by: Mapped[str] = mapped_column(String(64))
    dispatched_by_name: Mapped[str] = mapped_column(String(120))
    notes: Mapped[Optional[str]] = mapped_column(String(1024), default=None)


class Payment(_Tenant, Base):
    __tablename__ = "bus_payments"
    __table_args__ = ({"schema": DB_SCHEMA} if DB_SCHEMA else {})
    payment_id: Mapped[str] = mapped_column(String(40), unique=True)
    booking_id: Mapped[Optional[str]] = mapped_column(String(36), default=None)
    ticket_id: Mapped[Optional[str]] = mapped_column(String(36), default=None)
    customer_id: Mapped[str] = mapped_column(String(64))
    customer_name: Mapped[str] = mapped_column(String(255))
    customer_email: Mapped[Optional[str]] = mapped_column(String(255), default=None)
    customer_phone: Mapped[Optional[str]] = mapped_column(String(32), default=None)
    amount: Mapped[float] = mapped_column(Float)
    currency: Mapped[str] = mapped_column(String(3), default="ZMW")
    payment_method: Mapped[str] = mapped_column(String(16))  # mobile_money|card|cash|bank_transfer
    # pending|completed|failed|refunded|cancelled
    payment_status: Mapped[str] = mapped_column(String(16), default="pending")
    transaction_id: Mapped[Optional[str]] = mapped_column(String(120), default=None)
    reference: Mapped[Optional[str]] = mapped_column(String(120), default=None)
    trip_id: Mapped[str] = mapped_column(String(36))
    trip_name: Mapped[str] = mapped_column(String(255))
    route_name: Mapped[str] = mapped_column(String(255))
    bus_id: Mapped[str] = mapped_column(String(36))
    bus_name: Mapped[str] = mapped_column(String(120))
    bus_number: Mapped[Optional[str]] = mapped_column(String(32), default=None)
    seat_number: Mapped[Optional[str]] = mapped_column(String(64), default=None)
    boarding_point: Mapped[Optional[str]] = mapped_column(String(120), default=None)
    dropping_point: Mapped[Optional[str]] = mapped_column(String(120), default=None)
    departure_date: Mapped[datetime] = mapped_column(UTCDateTime())
    departure_time: Mapped[Optional[str]] = mapped_column(String(5), default=None)
    payment_date: Mapped[datetime] = mapped_column(UTCDateTime(), default=_now)
    processed_by: Mapped[Optional[str]] = mapped_column(String(64), default=None)
    processed_by_name: Mapped[Optional[str]] = mapped_column(String(120), default=None)
    notes: Mapped[Optional[str]] = mapped_column(String(1024), default=None)
    refund_amount: Mapped[float] = mapped_column(Float, default=0.0)
    refund_reason: Mapped[Optional[str]] = mapped_column(String(512), default=None)
    refund_date: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), default=None)


if config.DB_URL.startswith("sqlite"):
    engine = create_engine(config.DB_URL, pool_pre_ping=True, connect_args={"check_same_thread": False})
else:
    engine = create_engine(config.DB_URL, pool_pre_ping=True)


def get_session():
    with Session(engine) as s:
        yield s
