"""
Unified payment ledger over bookings, walk-in tickets and parcel
dispatches.

Each source is queried separately, newest first, and the three sorted
streams are merged into one. Statistics cover the whole filtered stream;
only the requested page is materialized.
"""
import heapq
import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Iterator, List, Optional, Tuple

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from . import config
from .db import Booking, Dispatch, Ticket
from .fares import display_amount
from .schemas import LedgerEntry, LedgerPage, LedgerStats, Pagination

_log = logging.getLogger("shiteni.bus.ledger")

DEFAULT_LIMIT = 10
MAX_LIMIT = 200
# Rows fetched per round trip while streaming a source.
_BATCH = 500


class LedgerFilterError(ValueError):
    pass


@dataclass
class LedgerFilters:
    status: Optional[str] = None
    payment_method: Optional[str] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    search: Optional[str] = None
    page: int = 1
    limit: int = DEFAULT_LIMIT


def _opt(value: Optional[str]) -> Optional[str]:
    v = (value or "").strip()
    if not v or v.lower() == "all":
        return None
    return v


def parse_bound(value: str, end: bool = False) -> Tuple[datetime, bool]:
    """
    Parse a date filter bound. Returns the instant and whether the bound
    is inclusive. A bare date used as an end bound covers the whole day,
    so it becomes an exclusive bound at the next midnight.
    """
    v = value.strip()
    try:
        if len(v) == 10:
            dt = datetime.fromisoformat(v + "T00:00:00+00:00")
            if end:
                return dt + timedelta(days=1), False
            return dt, True
        dt = datetime.fromisoformat(v.replace("Z", "+00:00"))
    except ValueError:
        raise LedgerFilterError(f"invalid date: {value}")
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt, True


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _apply_common(stmt, model, company_id: str, f: LedgerFilters, search_cols):
    stmt = stmt.where(model.company_id == company_id)
    start = _opt(f.start_date)
    if start:
        lo, _ = parse_bound(start)
        stmt = stmt.where(model.created_at >= lo)
    end = _opt(f.end_date)
    if end:
        hi, inclusive = parse_bound(end, end=True)
        stmt = stmt.where(model.created_at <= hi if inclusive else model.created_at < hi)
    term = _opt(f.search)
    if term:
        pattern = f"%{_escape_like(term)}%"
        stmt = stmt.where(or_(*[col.ilike(pattern, escape="\\") for col in search_cols]))
    return stmt.order_by(model.created_at.desc(), model.id.desc())


def _stored_payment_status(status: str) -> str:
    return "paid" if status == "completed" else status


def _booking_query(company_id: str, f: LedgerFilters):
    stmt = _apply_common(
        select(Booking),
        Booking,
        company_id,
        f,
        (
            Booking.customer_first_name,
            Booking.customer_last_name,
            Booking.customer_email,
            Booking.customer_phone,
            Booking.booking_number,
            Booking.trip_name,
            Booking.route_name,
        ),
    )
    status = _opt(f.status)
    if status:
        stmt = stmt.where(Booking.payment_status == _stored_payment_status(status))
    method = _opt(f.payment_method)
    if method:
        stmt = stmt.where(Booking.payment_method == method)
    return stmt


def _ticket_query(company_id: str, f: LedgerFilters):
    stmt = _apply_common(
        select(Ticket),
        Ticket,
        company_id,
        f,
        (
            Ticket.passenger_first_name,
            Ticket.passenger_last_name,
            Ticket.passenger_phone,
            Ticket.passenger_email,
            Ticket.ticket_number,
            Ticket.trip_name,
            Ticket.route_name,
        ),
    )
    status = _opt(f.status)
    if status:
        stmt = stmt.where(Ticket.payment_status == _stored_payment_status(status))
    method = _opt(f.payment_method)
    if method:
        stmt = stmt.where(Ticket.payment_method == method)
    return stmt


def _dispatch_query(company_id: str, f: LedgerFilters):
    """
    Dispatches carry no payment fields of their own: they are always paid
    in cash and count as completed once the parcel has arrived. Returns
    None when the filters can never match a dispatch.
    """
    status = _opt(f.status)
    method = _opt(f.payment_method)
    if method and method != "cash":
        return None
    if status and status not in ("completed", "pending"):
        return None
    stmt = _apply_common(
        select(Dispatch),
        Dispatch,
        company_id,
        f,
        (
            Dispatch.receiver_contact,
            Dispatch.dispatch_number,
            Dispatch.trip_name,
            Dispatch.route_name,
        ),
    )
    if status == "completed":
        stmt = stmt.where(Dispatch.status == "arrived")
    elif status == "pending":
        stmt = stmt.where(Dispatch.status != "arrived")
    return stmt


def _fmt_number(value: float) -> str:
    v = float(value or 0)
    return str(int(v)) if v.is_integer() else str(v)


def from_booking(b: Booking) -> LedgerEntry:
    return LedgerEntry(
        id=b.id,
        payment_id=b.booking_number,
        source="booking",
        customer_id=b.customer_id,
        customer_name=f"{b.customer_first_name} {b.customer_last_name}",
        customer_email=b.customer_email or "",
        customer_phone=b.customer_phone or "",
        amount=b.fare_amount,
        currency=b.currency,
        payment_method=b.payment_method,
        payment_status="completed" if b.payment_status == "paid" else b.payment_status,
        transaction_id=b.payment_reference,
        trip_id=b.trip_id,
        trip_name=b.trip_name,
        route_name=b.route_name,
        bus_id=b.bus_id,
        bus_name=b.bus_name,
        seat_number=", ".join(b.seats),
        boarding_point=b.boarding_point,
        dropping_point=b.dropping_point,
        departure_date=b.departure_date,
        departure_time=b.departure_time,
        payment_date=b.created_at,
        processed_by=b.company_id,
        processed_by_name="System",
        created_at=b.created_at,
        updated_at=b.updated_at,
    )


def from_ticket(t: Ticket) -> LedgerEntry:
    return LedgerEntry(
        id=t.id,
        payment_id=t.ticket_number,
        source="ticket",
        customer_id=t.sold_by,
        customer_name=f"{t.passenger_first_name} {t.passenger_last_name}",
        customer_email=t.passenger_email or "",
        customer_phone=t.passenger_phone or "",
        amount=t.fare_amount,
        currency=t.currency,
        payment_method=t.payment_method,
        payment_status="completed" if t.payment_status == "paid" else t.payment_status,
        trip_id=t.trip_id,
        trip_name=t.trip_name,
        route_name=t.route_name,
        bus_id=t.bus_id,
        bus_name=t.bus_name,
        seat_number=t.seat_number,
        boarding_point=t.boarding_point,
        dropping_point=t.dropping_point,
        departure_date=t.departure_date,
        departure_time=t.departure_time,
        payment_date=t.created_at,
        processed_by=t.sold_by,
        processed_by_name=t.sold_by_name,
        created_at=t.created_at,
        updated_at=t.updated_at,
    )


def from_dispatch(d: Dispatch) -> LedgerEntry:
    currency = config.DEFAULT_CURRENCY
    return LedgerEntry(
        id=d.id,
        payment_id=d.dispatch_number,
        source="dispatch",
        customer_id=d.dispatched_by,
        customer_name=d.receiver_contact,
        customer_email="",
        customer_phone=d.receiver_contact,
        amount=d.billed_price,
        currency=currency,
        payment_method="cash",
        payment_status="completed" if d.status == "arrived" else "pending",
        trip_id=d.trip_id,
        trip_name=d.trip_name,
        route_name=d.route_name,
        bus_id=d.bus_id,
        bus_name=d.bus_name,
        bus_number=d.bus_number,
        boarding_point=d.dispatch_stop,
        dropping_point=d.dispatch_stop,
        departure_date=d.departure_date,
        payment_date=d.created_at,
        processed_by=d.dispatched_by,
        processed_by_name=d.dispatched_by_name,
        notes=f"Parcel: {d.parcel_description} (Value: {_fmt_number(d.parcel_value)} {currency})",
        created_at=d.created_at,
        updated_at=d.updated_at,
    )


def _stream(s: Session, stmt, convert) -> Iterator[LedgerEntry]:
    for row in s.scalars(stmt.execution_options(yield_per=_BATCH)):
        yield convert(row)


def merged_entries(s: Session, company_id: str, f: LedgerFilters) -> Iterator[LedgerEntry]:
    """All matching entries, newest payment first."""
    streams = [
        _stream(s, _booking_query(company_id, f), from_booking),
        _stream(s, _ticket_query(company_id, f), from_ticket),
    ]
    dispatch_stmt = _dispatch_query(company_id, f)
    if dispatch_stmt is not None:
        streams.append(_stream(s, dispatch_stmt, from_dispatch))
    return heapq.merge(*streams, key=lambda e: e.payment_date, reverse=True)


def clamp_page(page: Optional[int], limit: Optional[int]) -> Tuple[int, int]:
    p = max(1, int(page if page is not None else 1))
    lim = max(1, min(int(limit if limit is not None else DEFAULT_LIMIT), MAX_LIMIT))
    return p, lim


def build_ledger(s: Session, company_id: str, f: LedgerFilters) -> LedgerPage:
    page, limit = clamp_page(f.page, f.limit)
    skip = (page - 1) * limit
    stats = LedgerStats()
    payments: List[LedgerEntry] = []
    total = 0
    for entry in merged_entries(s, company_id, f):
        if skip <= total < skip + limit:
            payments.append(entry)
        total += 1
        amount = float(entry.amount or 0)
        stats.total_amount += amount
        if entry.payment_status == "completed":
            stats.completed_amount += amount
            stats.completed_count += 1
        elif entry.payment_status == "pending":
            stats.pending_amount += amount
            stats.pending_count += 1
        elif entry.payment_status == "failed":
            stats.failed_amount += amount
            stats.failed_count += 1
    stats.total_payments = total
    stats.total_amount = display_amount(stats.total_amount)
    stats.completed_amount = display_amount(stats.completed_amount)
    stats.pending_amount = display_amount(stats.pending_amount)
    stats.failed_amount = display_amount(stats.failed_amount)
    _log.info(
        "ledger built",
        extra={"company_id": company_id, "total": total, "page": page, "limit": limit},
    )
    return LedgerPage(
        payments=payments,
        pagination=Pagination(page=page, limit=limit, total=total, pages=math.ceil(total / limit)),
        stats=stats,
    )
