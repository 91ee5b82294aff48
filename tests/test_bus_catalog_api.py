import pytest
from fastapi import HTTPException
from sqlalchemy import select

import apps.bus.app.main as bus  # type: ignore[import]
from apps.bus.app.db import RouteStop


def test_stop_crud(client, auth_headers):
    resp = client.post(
        "/bus/stops",
        json={"stopName": "Kitwe", "stopType": "terminal", "district": "Copperbelt"},
        headers=auth_headers,
    )
    assert resp.status_code == 200
    stop = resp.json()["stop"]
    assert stop["stopName"] == "Kitwe" and stop["status"] == "active"

    resp = client.put(
        f"/bus/stops/{stop['id']}",
        json={"stopName": "Kitwe", "stopType": "stop", "district": "Copperbelt", "status": "maintenance"},
        headers=auth_headers,
    )
    assert resp.json()["stop"]["status"] == "maintenance"

    assert [s["id"] for s in client.get("/bus/stops", headers=auth_headers).json()["stops"]] == [stop["id"]]
    resp = client.delete(f"/bus/stops/{stop['id']}", headers=auth_headers)
    assert resp.json() == {"success": True, "message": "Stop deleted"}
    assert client.get("/bus/stops", headers=auth_headers).json()["stops"] == []


def test_stop_type_is_validated(client, auth_headers):
    resp = client.post("/bus/stops", json={"stopName": "Kitwe", "stopType": "depot"}, headers=auth_headers)
    assert resp.status_code == 400
    error = resp.json()["error"]
    assert error.startswith("Missing required fields: district; Invalid fields: stopType")


def test_fleet_uses_hasac_on_the_wire(client, auth_headers):
    resp = client.post(
        "/bus/fleet",
        json={"busName": "Coach 2", "busNumberPlate": "BAA 9", "numberOfSeats": 44, "busType": "Standard", "hasAC": True},
        headers=auth_headers,
    )
    assert resp.status_code == 200
    coach = resp.json()["bus"]
    assert coach["hasAC"] is True
    assert coach["numberOfSeats"] == 44

    resp = client.delete(f"/bus/fleet/{coach['id']}", headers=auth_headers)
    assert resp.json()["message"] == "Bus deactivated"
    listed = client.get("/bus/fleet", headers=auth_headers).json()["buses"]
    assert [(b["id"], b["status"]) for b in listed] == [(coach["id"], "inactive")]


def test_route_keeps_stop_order(session, vendor, catalog):
    stops = catalog.route.stops
    assert [(s.stop_name, s.order) for s in stops] == [("Lusaka", 1), ("Kabwe", 2), ("Ndola", 3)]

    res = bus.update_route(
        route_id=catalog.route.id,
        body=bus.RouteIn(
            route_name="Lusaka - Ndola",
            stops=[{"stopId": "s-1", "stopName": "Lusaka"}, {"stopId": "s-3", "stopName": "Ndola"}],
        ),
        caller=vendor,
        s=session,
    )
    assert [s.stop_name for s in res.route.stops] == ["Lusaka", "Ndola"]
    assert len(session.scalars(select(RouteStop)).all()) == 2


def test_route_needs_two_stops(client, auth_headers):
    resp = client.post(
        "/bus/routes",
        json={"routeName": "Lusaka - Lusaka", "stops": [{"stopId": "s-1", "stopName": "Lusaka"}]},
        headers=auth_headers,
    )
    assert resp.status_code == 400


def test_route_direction_is_stored(client, auth_headers, catalog):
    assert catalog.route.is_bidirectional is True
    stops = [{"stopId": "s-1", "stopName": "Lusaka"}, {"stopId": "s-2", "stopName": "Kabwe"}]
    resp = client.post(
        "/bus/routes",
        json={"routeName": "Lusaka - Kabwe", "stops": stops, "isBidirectional": False},
        headers=auth_headers,
    )
    assert resp.status_code == 200
    route = resp.json()["route"]
    assert route["isBidirectional"] is False

    resp = client.put(
        f"/bus/routes/{route['id']}",
        json={"routeName": "Lusaka - Kabwe", "stops": stops, "isBidirectional": True},
        headers=auth_headers,
    )
    assert resp.json()["route"]["isBidirectional"] is True


def test_fare_discount_bounds(client, auth_headers, catalog):
    resp = client.post(
        "/bus/fares",
        json={"origin": "Lusaka", "destination": "Kabwe", "fareAmount": 90, "discountPercent": 120},
        headers=auth_headers,
    )
    assert resp.status_code == 400

    resp = client.post(
        "/bus/fares",
        json={"origin": "Lusaka", "destination": "Kabwe", "fareAmount": 90, "discountPercent": 50},
        headers=auth_headers,
    )
    fare = resp.json()["fare"]
    assert fare["routeName"] == "Lusaka - Kabwe"
    assert fare["discount"] == 50
    assert fare["discountedAmount"] == 45


def test_trip_delete_cancels(client, auth_headers, catalog):
    resp = client.delete(f"/bus/trips/{catalog.trip.id}", headers=auth_headers)
    assert resp.json()["message"] == "Trip cancelled"
    trips = client.get("/bus/trips", params={"status": "cancelled"}, headers=auth_headers).json()["trips"]
    assert [t["id"] for t in trips] == [catalog.trip.id]
    assert trips[0]["departureTimes"] == {"to": "08:00", "from": "15:00"}


@pytest.mark.parametrize(
    "call",
    [
        lambda c, s: bus.update_stop(
            stop_id="missing", body=bus.StopIn(stop_name="X", stop_type="stop", district="Y"), caller=c, s=s
        ),
        lambda c, s: bus.delete_bus(bus_id="missing", caller=c, s=s),
        lambda c, s: bus.delete_route(route_id="missing", caller=c, s=s),
        lambda c, s: bus.delete_fare(fare_id="missing", caller=c, s=s),
        lambda c, s: bus.delete_trip(trip_id="missing", caller=c, s=s),
    ],
)
def test_unknown_ids_are_not_found(session, vendor, call):
    with pytest.raises(HTTPException) as err:
        call(vendor, session)
    assert err.value.status_code == 404


def test_records_of_other_companies_are_invisible(session, catalog, other_vendor):
    with pytest.raises(HTTPException) as err:
        bus.delete_trip(trip_id=catalog.trip.id, caller=other_vendor, s=session)
    assert err.value.status_code == 404
    assert bus.list_trips(status=None, caller=other_vendor, s=session).trips == []
