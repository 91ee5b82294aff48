"""
Outbound email through the HTTP mail relay.

Delivery is best effort: failures are logged and reported back as False,
never raised into the caller's business action.
"""
import html as _html
import logging
from typing import Iterable, Optional, Tuple

import httpx

from . import config
from .db import Booking
from .fares import display_amount

_log = logging.getLogger("shiteni.bus.notify")


def send_email(recipient: str, subject: str, html: Optional[str] = None, text: Optional[str] = None) -> bool:
    if not recipient:
        return False
    if not config.MAIL_API_URL:
        _log.info("mail relay not configured; not sending", extra={"recipient": recipient, "subject": subject})
        return False
    payload = {
        "from": config.MAIL_FROM,
        "to": recipient,
        "subject": subject,
        "html": html,
        "text": text,
    }
    headers = {"Authorization": f"Bearer {config.MAIL_API_KEY}"} if config.MAIL_API_KEY else {}
    try:
        r = httpx.post(config.MAIL_API_URL, json=payload, headers=headers, timeout=config.MAIL_TIMEOUT_SECS)
        r.raise_for_status()
    except httpx.HTTPError as e:
        _log.warning("email to %s failed: %s", recipient, e)
        return False
    _log.info("email sent", extra={"recipient": recipient, "subject": subject})
    return True


def send_bulk(recipients: Iterable[str], subject: str, html: Optional[str] = None, text: Optional[str] = None) -> Tuple[int, int]:
    """Send one message per recipient. Returns (sent, failed)."""
    sent = failed = 0
    for r in recipients:
        if send_email(r, subject, html=html, text=text):
            sent += 1
        else:
            failed += 1
    return sent, failed


def booking_confirmation(b: Booking) -> Tuple[str, str, str]:
    """Subject, HTML and plain text bodies for a new booking."""
    seats = ", ".join(b.seats)
    when = b.departure_date.strftime("%Y-%m-%d")
    amount = f"{b.currency} {display_amount(b.fare_amount):.2f}"
    name = f"{b.customer_first_name} {b.customer_last_name}"
    subject = f"Booking confirmed: {b.booking_number}"
    lines = [
        ("Booking", b.booking_number),
        ("Trip", b.trip_name),
        ("Route", b.route_name),
        ("Departure", f"{when} {b.departure_time}"),
        ("Seats", seats),
        ("Boarding", b.boarding_point),
        ("Dropping", b.dropping_point),
        ("Amount", amount),
        ("Payment", b.payment_status),
    ]
    text = f"Hello {name},\n\nYour bus booking is confirmed.\n\n" + "\n".join(f"{k}: {v}" for k, v in lines)
    rows = "".join(
        f"<tr><td><strong>{_html.escape(k)}</strong></td><td>{_html.escape(str(v))}</td></tr>" for k, v in lines
    )
    body = (
        f"<p>Hello {_html.escape(name)},</p>"
        "<p>Your bus booking is confirmed.</p>"
        f"<table>{rows}</table>"
    )
    return subject, body, text


def send_booking_confirmation(b: Booking) -> bool:
    subject, body, text = booking_confirmation(b)
    ok = send_email(b.customer_email, subject, html=body, text=text)
    if not ok:
        _log.warning("booking confirmation not delivered", extra={"booking_number": b.booking_number})
    return ok
