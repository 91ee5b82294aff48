import json
import logging

import pytest

from shiteni_shared.logging import JsonFormatter


class _JsonLines(logging.Handler):
    def __init__(self):
        super().__init__(level=logging.INFO)
        self.setFormatter(JsonFormatter())
        self.lines = []

    def emit(self, record):
        self.lines.append(json.loads(self.format(record)))


@pytest.fixture()
def json_lines():
    handler = _JsonLines()
    log = logging.getLogger("shiteni")
    old_level = log.level
    log.addHandler(handler)
    log.setLevel(logging.INFO)
    try:
        yield handler.lines
    finally:
        log.removeHandler(handler)
        log.setLevel(old_level)


def _by_message(lines):
    out = {}
    for line in lines:
        out.setdefault(line["message"], line)
    return out


def test_every_logged_action_formats_as_json(client, auth_headers, catalog, json_lines):
    trip = client.post(
        "/bus/trips",
        json={
            "busId": catalog.bus.id,
            "routeId": catalog.route.id,
            "departureTimes": {"to": "08:00", "from": "15:00"},
            "daysOfWeek": ["Friday"],
        },
        headers=auth_headers,
    )
    assert trip.status_code == 200

    resp = client.post(
        "/bus/generate-schedules",
        json={"tripId": catalog.trip.id, "startDate": "2026-01-05", "endDate": "2026-01-11"},
        headers=auth_headers,
    )
    assert resp.status_code == 200

    resp = client.post(
        "/bus/bookings",
        json={
            "tripId": catalog.trip.id,
            "customerDetails": {
                "firstName": "Mary",
                "lastName": "Banda",
                "email": "mary@example.com",
                "phoneNumber": "+260970000001",
            },
            "seatNumbers": ["1"],
            "boardingPoint": "Lusaka",
            "droppingPoint": "Ndola",
            "paymentMethod": "card",
            "departureDate": "2026-03-23T00:00:00Z",
        },
        headers=auth_headers,
    )
    assert resp.status_code == 200

    resp = client.post(
        "/bus/tickets",
        json={
            "tripId": catalog.trip.id,
            "passengerDetails": {"firstName": "John", "lastName": "Phiri", "phoneNumber": "+260970000002"},
            "boardingPoint": "Lusaka",
            "droppingPoint": "Kabwe",
            "seatNumber": "7",
            "paymentMethod": "cash",
            "departureDate": "2026-03-23T00:00:00Z",
        },
        headers=auth_headers,
    )
    assert resp.status_code == 200

    resp = client.post(
        "/bus/sending",
        json={
            "tripId": catalog.trip.id,
            "departureDate": "2026-03-23T00:00:00Z",
            "dispatchStop": "Ndola",
            "receiverContact": "Peter 0977000003",
            "parcelDescription": "Documents",
            "parcelValue": 500,
            "billedPrice": 45,
        },
        headers=auth_headers,
    )
    assert resp.status_code == 200

    resp = client.post(
        "/bus/payments",
        json={
            "customerId": "cust-1",
            "customerName": "Mary Banda",
            "amount": 180,
            "paymentMethod": "mobile_money",
            "tripId": catalog.trip.id,
            "tripName": "Coach 1 - Lusaka - Ndola",
            "routeName": "Lusaka - Ndola",
            "busId": catalog.bus.id,
            "busName": "Coach 1",
            "departureDate": "2026-03-23T08:00:00Z",
        },
        headers=auth_headers,
    )
    assert resp.status_code == 200

    assert client.get("/bus/payments", headers=auth_headers).status_code == 200
    assert client.get("/bus/analytics", headers=auth_headers).status_code == 200

    resp = client.post(
        "/bus/promotions/send",
        json={"subject": "Weekend fares", "text": "Half price on Saturday.", "recipients": ["john@example.com"]},
        headers=auth_headers,
    )
    assert resp.status_code == 200

    logged = _by_message(json_lines)
    for message in (
        "trip created",
        "schedules generated",
        "booking created",
        "mail relay not configured; not sending",
        "booking confirmation not delivered",
        "ticket sold",
        "parcel dispatched",
        "payment recorded",
        "ledger built",
        "analytics built",
        "promotion sent",
    ):
        assert message in logged, message
        assert logged[message]["level"] in ("INFO", "WARNING")

    assert logged["schedules generated"]["schedules_created"] == 2
    assert logged["schedules generated"]["trip_id"] == catalog.trip.id
    assert logged["booking created"]["company_id"] == "company-1"
    # Booking, ticket and parcel; recorded payments stay out of the ledger.
    assert logged["ledger built"]["total"] == 3
    assert logged["promotion sent"]["failed"] == 1
    assert logged["mail relay not configured; not sending"]["recipient"] == "mary@example.com"
