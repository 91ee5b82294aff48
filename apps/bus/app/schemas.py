"""
Request and response models for the bus vendor API.

Field names are snake_case in Python and camelCase on the wire; every
model accepts both spellings on input.
"""
from datetime import date, datetime
from typing import Annotated, Dict, List, Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, StringConstraints, field_validator, model_validator
from pydantic.alias_generators import to_camel

from .schedule import ScheduleError, normalize_days, parse_departure_time

NonEmptyStr = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]

Currency = Literal["ZMW", "USD"]
PaymentMethod = Literal["mobile_money", "card", "cash", "bank_transfer"]
LedgerStatus = Literal["pending", "completed", "failed", "refunded", "cancelled"]
DispatchStatus = Literal["scheduled", "boarding", "departed", "in_transit", "arrived", "delayed", "cancelled"]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


# ---- Stops ----
class StopIn(CamelModel):
    stop_name: NonEmptyStr
    stop_type: Literal["stop", "terminal"]
    district: NonEmptyStr
    status: Literal["active", "inactive", "maintenance"] = "active"


class StopOut(CamelModel):
    id: str
    stop_name: str
    stop_type: str
    district: str
    status: str
    created_at: datetime
    updated_at: datetime


# ---- Fleet ----
class BusIn(CamelModel):
    bus_name: NonEmptyStr
    bus_number_plate: NonEmptyStr
    number_of_seats: int = Field(..., ge=1, le=200)
    bus_type: NonEmptyStr
    has_ac: bool = Field(default=False, validation_alias=AliasChoices("hasAC", "hasAc", "has_ac"))
    image: Optional[str] = None
    status: Literal["active", "inactive", "maintenance"] = "active"


class BusOut(CamelModel):
    id: str
    bus_name: str
    bus_number_plate: str
    number_of_seats: int
    bus_type: str
    has_ac: bool = Field(validation_alias=AliasChoices("has_ac", "hasAC"), serialization_alias="hasAC")
    image: Optional[str] = None
    status: str
    created_at: datetime
    updated_at: datetime


# ---- Routes ----
class RouteStopIn(CamelModel):
    stop_id: NonEmptyStr
    stop_name: NonEmptyStr


class RouteStopOut(CamelModel):
    stop_id: str
    stop_name: str
    order: int


class RouteIn(CamelModel):
    route_name: NonEmptyStr
    stops: List[RouteStopIn] = Field(..., min_length=2)
    total_distance: Optional[float] = Field(default=None, ge=0)
    is_bidirectional: bool = True
    status: Literal["active", "inactive"] = "active"


class RouteOut(CamelModel):
    id: str
    route_name: str
    stops: List[RouteStopOut]
    total_distance: Optional[float] = None
    is_bidirectional: bool
    status: str
    created_at: datetime
    updated_at: datetime


# ---- Fares ----
class FareIn(CamelModel):
    # Derived from origin/destination when omitted.
    route_name: Optional[str] = None
    origin: NonEmptyStr
    destination: NonEmptyStr
    fare_amount: float = Field(..., gt=0)
    currency: Currency = "ZMW"
    discount: float = Field(default=0, ge=0, le=100, validation_alias=AliasChoices("discount", "discountPercent"))
    status: Literal["active", "inactive", "seasonal"] = "active"


class FareOut(CamelModel):
    id: str
    route_name: str
    origin: str
    destination: str
    fare_amount: float
    currency: str
    discount: float
    discounted_amount: float
    status: str
    created_at: datetime
    updated_at: datetime


class RouteNameOut(CamelModel):
    success: bool = True
    route_name: Optional[str] = None


# ---- Trips ----
class DepartureTimes(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    to: str
    from_: str = Field(..., alias="from")

    @field_validator("to", "from_")
    @classmethod
    def _valid_time(cls, v: str) -> str:
        try:
            return parse_departure_time(v)
        except ScheduleError as e:
            raise ValueError(str(e))


class TripIn(CamelModel):
    bus_id: NonEmptyStr
    route_id: NonEmptyStr
    departure_times: DepartureTimes
    days_of_week: List[str]
    # Filled from the bus/route records when omitted.
    trip_name: Optional[str] = None
    bus_name: Optional[str] = None
    route_name: Optional[str] = None
    status: Literal["active", "inactive", "cancelled"] = "active"

    @field_validator("days_of_week")
    @classmethod
    def _valid_days(cls, v: List[str]) -> List[str]:
        try:
            return normalize_days(v)
        except ScheduleError as e:
            raise ValueError(str(e))


class TripOut(CamelModel):
    id: str
    trip_name: str
    bus_id: str
    bus_name: str
    route_id: str
    route_name: str
    departure_times: DepartureTimes
    days_of_week: List[str]
    status: str
    created_at: datetime
    updated_at: datetime


class GenerateSchedulesIn(CamelModel):
    trip_id: NonEmptyStr
    start_date: date
    end_date: date


class ScheduleOut(CamelModel):
    id: str
    trip_id: str
    route_id: str
    bus_id: str
    run_date: date = Field(validation_alias=AliasChoices("run_date", "date"), serialization_alias="date")
    departure_time: str
    return_time: str
    total_seats: int
    available_seats: int
    fare_amount: Optional[float] = None
    currency: str
    status: str
    notes: Optional[str] = None


class GenerateSchedulesOut(CamelModel):
    success: bool = True
    message: str
    schedules_created: int
    trip_name: str


# ---- Bookings ----
class CustomerDetails(CamelModel):
    first_name: NonEmptyStr
    last_name: NonEmptyStr
    email: NonEmptyStr
    phone_number: NonEmptyStr


class BookingIn(CamelModel):
    trip_id: NonEmptyStr
    customer_details: CustomerDetails
    seat_numbers: List[NonEmptyStr] = Field(..., min_length=1)
    boarding_point: NonEmptyStr
    dropping_point: NonEmptyStr
    payment_method: Literal["card", "mobile_money"]
    departure_date: datetime
    customer_id: Optional[str] = None
    # Priced from the route's fare when omitted.
    fare_amount: Optional[float] = Field(default=None, gt=0)
    currency: Optional[Currency] = None
    payment_status: Literal["pending", "paid", "failed", "refunded"] = "pending"
    payment_reference: Optional[str] = None
    departure_time: Optional[str] = None
    booking_type: Literal["online", "walk_in"] = "online"


class BookingPatch(CamelModel):
    status: Optional[Literal["confirmed", "cancelled", "completed", "no_show"]] = None
    payment_status: Optional[Literal["pending", "paid", "failed", "refunded"]] = None
    payment_reference: Optional[str] = None


class BookingOut(CamelModel):
    id: str
    booking_number: str
    customer_id: str
    customer_details: CustomerDetails
    trip_id: str
    trip_name: str
    route_name: str
    bus_id: str
    bus_name: str
    seat_numbers: List[str]
    boarding_point: str
    dropping_point: str
    fare_amount: float
    currency: str
    payment_method: str
    payment_status: str
    payment_reference: Optional[str] = None
    departure_date: datetime
    departure_time: str
    status: str
    booking_type: str
    created_at: datetime
    updated_at: datetime


# ---- Walk-in tickets ----
class PassengerDetails(CamelModel):
    first_name: NonEmptyStr
    last_name: NonEmptyStr
    phone_number: NonEmptyStr
    email: Optional[str] = None


class TicketIn(CamelModel):
    trip_id: NonEmptyStr
    passenger_details: PassengerDetails
    boarding_point: NonEmptyStr
    dropping_point: NonEmptyStr
    seat_number: NonEmptyStr
    payment_method: Literal["cash", "card", "mobile_money"]
    departure_date: datetime
    fare_amount: Optional[float] = Field(default=None, gt=0)
    currency: Optional[Currency] = None
    payment_status: Literal["pending", "paid", "refunded"] = "paid"
    departure_time: Optional[str] = None


class TicketPatch(CamelModel):
    status: Optional[Literal["active", "used", "cancelled", "refunded"]] = None
    payment_status: Optional[Literal["pending", "paid", "refunded"]] = None


class TicketOut(CamelModel):
    id: str
    ticket_number: str
    trip_id: str
    trip_name: str
    route_name: str
    bus_id: str
    bus_name: str
    passenger_details: PassengerDetails
    boarding_point: str
    dropping_point: str
    seat_number: str
    fare_amount: float
    currency: str
    payment_method: str
    payment_status: str
    departure_date: datetime
    departure_time: str
    status: str
    sold_by: str
    sold_by_name: str
    created_at: datetime
    updated_at: datetime


# ---- Parcel dispatches ----
class DispatchIn(CamelModel):
    trip_id: NonEmptyStr
    departure_date: datetime
    dispatch_stop: NonEmptyStr
    receiver_contact: NonEmptyStr
    parcel_description: NonEmptyStr
    parcel_value: float = Field(..., ge=0)
    billed_price: float = Field(..., gt=0)
    bus_number: Optional[str] = None
    status: DispatchStatus = "scheduled"
    notes: Optional[str] = None


class DispatchPatch(CamelModel):
    status: DispatchStatus
    notes: Optional[str] = None


class DispatchOut(CamelModel):
    id: str
    dispatch_id: str = Field(
        validation_alias=AliasChoices("dispatch_number", "dispatchId", "dispatch_id"), serialization_alias="dispatchId"
    )
    trip_id: str
    trip_name: str
    route_name: str
    bus_id: str
    bus_name: str
    bus_number: str
    departure_date: datetime
    dispatch_stop: str
    receiver_contact: str
    parcel_description: str
    parcel_value: float
    billed_price: float
    status: str
    dispatched_by: str
    dispatched_by_name: str
    notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime


# ---- Payments ----
class PaymentIn(CamelModel):
    customer_id: NonEmptyStr
    customer_name: NonEmptyStr
    amount: float = Field(..., gt=0)
    payment_method: PaymentMethod
    trip_id: NonEmptyStr
    trip_name: NonEmptyStr
    route_name: NonEmptyStr
    bus_id: NonEmptyStr
    bus_name: NonEmptyStr
    departure_date: datetime
    booking_id: Optional[str] = None
    ticket_id: Optional[str] = None
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None
    currency: Optional[Currency] = None
    transaction_id: Optional[str] = None
    reference: Optional[str] = None
    bus_number: Optional[str] = None
    seat_number: Optional[str] = None
    boarding_point: Optional[str] = None
    dropping_point: Optional[str] = None
    departure_time: Optional[str] = None
    processed_by: Optional[str] = None
    processed_by_name: Optional[str] = None
    notes: Optional[str] = None


class PaymentOut(CamelModel):
    id: str
    payment_id: str
    booking_id: Optional[str] = None
    ticket_id: Optional[str] = None
    customer_id: str
    customer_name: str
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None
    amount: float
    currency: str
    payment_method: str
    payment_status: str
    transaction_id: Optional[str] = None
    reference: Optional[str] = None
    trip_id: str
    trip_name: str
    route_name: str
    bus_id: str
    bus_name: str
    bus_number: Optional[str] = None
    seat_number: Optional[str] = None
    boarding_point: Optional[str] = None
    dropping_point: Optional[str] = None
    departure_date: datetime
    departure_time: Optional[str] = None
    payment_date: datetime
    processed_by: Optional[str] = None
    processed_by_name: Optional[str] = None
    notes: Optional[str] = None
    refund_amount: float = 0
    created_at: datetime
    updated_at: datetime


class LedgerEntry(CamelModel):
    """A booking, ticket or dispatch seen as a payment."""

    id: str
    payment_id: str
    source: Literal["booking", "ticket", "dispatch"]
    customer_id: str
    customer_name: str
    customer_email: str = ""
    customer_phone: str = ""
    amount: float
    currency: str
    payment_method: str
    payment_status: LedgerStatus
    transaction_id: Optional[str] = None
    trip_id: str
    trip_name: str
    route_name: str
    bus_id: str
    bus_name: str
    bus_number: Optional[str] = None
    seat_number: Optional[str] = None
    boarding_point: Optional[str] = None
    dropping_point: Optional[str] = None
    departure_date: datetime
    departure_time: Optional[str] = None
    payment_date: datetime
    processed_by: str
    processed_by_name: str
    notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class LedgerStats(CamelModel):
    total_amount: float = 0
    total_payments: int = 0
    completed_amount: float = 0
    completed_count: int = 0
    pending_amount: float = 0
    pending_count: int = 0
    failed_amount: float = 0
    failed_count: int = 0


class LedgerPage(CamelModel):
    success: bool = True
    payments: List[LedgerEntry]
    pagination: Pagination
    stats: LedgerStats


# ---- Analytics ----
class AnalyticsOverview(CamelModel):
    total_revenue: float = 0
    online_revenue: float = 0
    walk_in_revenue: float = 0
    dispatch_revenue: float = 0
    total_passengers: int = 0
    online_passengers: int = 0
    walk_in_passengers: int = 0
    total_trips: int = 0
    active_trips: int = 0
    # Percent change against the window of equal length just before.
    revenue_growth: float = 0
    passenger_growth: float = 0


class RouteRevenue(CamelModel):
    route_name: str
    sales: int = 0
    passengers: int = 0
    revenue: float = 0


class BusRevenue(CamelModel):
    bus_name: str
    sales: int = 0
    passengers: int = 0
    revenue: float = 0


class DailyRevenue(CamelModel):
    day: date = Field(validation_alias=AliasChoices("day", "date"), serialization_alias="date")
    revenue: float = 0


class AnalyticsPeriod(CamelModel):
    start_date: datetime
    end_date: datetime
    days: int


class AnalyticsSummary(CamelModel):
    total_bookings: int = 0
    total_tickets: int = 0
    total_dispatches: int = 0
    paid_bookings: int = 0
    paid_tickets: int = 0
    arrived_dispatches: int = 0


class Analytics(CamelModel):
    overview: AnalyticsOverview
    top_routes: List[RouteRevenue]
    total_routes: int
    top_buses: List[BusRevenue]
    total_buses: int
    revenue_trend: List[DailyRevenue]
    period: AnalyticsPeriod
    payment_methods: Dict[str, float]
    summary: AnalyticsSummary


class AnalyticsOut(CamelModel):
    success: bool = True
    analytics: Analytics


class DashboardStats(CamelModel):
    total_routes: int = 0
    active_routes: int = 0
    fleet_size: int = 0
    active_buses: int = 0
    total_trips: int = 0
    active_trips: int = 0
    today_schedules: int = 0
    total_bookings: int = 0
    confirmed_bookings: int = 0
    cancelled_bookings: int = 0
    today_passengers: int = 0
    today_revenue: float = 0
    total_revenue: float = 0


class MonthlyRevenue(CamelModel):
    month: str
    revenue: float = 0


class DashboardOut(CamelModel):
    success: bool = True
    stats: DashboardStats
    revenue_by_month: List[MonthlyRevenue]
    recent_payments: List[LedgerEntry]


# ---- Promotions ----
class PromotionIn(CamelModel):
    subject: NonEmptyStr
    html: Optional[str] = None
    text: Optional[str] = None
    recipients: Optional[List[str]] = None

    @model_validator(mode="after")
    def _has_content(self):
        if not (self.html or self.text):
            raise ValueError("html or text is required")
        return self


class PromotionOut(CamelModel):
    success: bool = True
    message: str
    success_count: int
    fail_count: int


# ---- Envelopes ----
class StopEnvelope(CamelModel):
    success: bool = True
    stop: StopOut


class StopList(CamelModel):
    success: bool = True
    stops: List[StopOut]


class BusEnvelope(CamelModel):
    success: bool = True
    bus: BusOut


class BusList(CamelModel):
    success: bool = True
    buses: List[BusOut]


class RouteEnvelope(CamelModel):
    success: bool = True
    route: RouteOut


class RouteList(CamelModel):
    success: bool = True
    routes: List[RouteOut]


class FareEnvelope(CamelModel):
    success: bool = True
    fare: FareOut


class FareList(CamelModel):
    success: bool = True
    fares: List[FareOut]


class TripEnvelope(CamelModel):
    success: bool = True
    trip: TripOut


class TripList(CamelModel):
    success: bool = True
    trips: List[TripOut]


class ScheduleList(CamelModel):
    success: bool = True
    schedules: List[ScheduleOut]


class BookingEnvelope(CamelModel):
    success: bool = True
    booking: BookingOut


class BookingList(CamelModel):
    success: bool = True
    bookings: List[BookingOut]
    pagination: Pagination


class TicketEnvelope(CamelModel):
    success: bool = True
    ticket: TicketOut


class TicketList(CamelModel):
    success: bool = True
    tickets: List[TicketOut]
    pagination: Pagination


class DispatchEnvelope(CamelModel):
    success: bool = True
    dispatch: DispatchOut


class DispatchList(CamelModel):
    success: bool = True
    dispatches: List[DispatchOut]
    pagination: Pagination


class PaymentEnvelope(CamelModel):
    success: bool = True
    payment: PaymentOut


class DeletedOut(CamelModel):
    success: bool = True
    message: str
