import uuid
from datetime import datetime, timedelta, timezone

import pytest

from apps.bus.app import fares
from apps.bus.app.db import Fare


def _fare(company_id: str, route_name: str, amount: float, status: str = "active", age_days: int = 0) -> Fare:
    return Fare(
        id=str(uuid.uuid4()),
        company_id=company_id,
        route_name=route_name,
        origin=route_name.split(" - ")[0],
        destination=route_name.split(" - ")[1],
        fare_amount=amount,
        discount=0,
        status=status,
        created_at=datetime(2026, 1, 10, tzinfo=timezone.utc) - timedelta(days=age_days),
    )


@pytest.mark.parametrize(
    "amount,pct,expected",
    [
        (200, 10, 180),
        (150, 0, 150),
        (99.99, 100, 0),
        (80, 12.5, 70),
    ],
)
def test_discounted_amount(amount, pct, expected):
    assert fares.discounted_amount(amount, pct) == pytest.approx(expected)


def test_discount_never_raises_price_or_goes_negative():
    for pct in (0, 1, 33.3, 50, 100):
        value = fares.discounted_amount(120, pct)
        assert 0 <= value <= 120


def test_discounted_amount_keeps_full_precision():
    # 33.333...% off is only rounded when rendered.
    raw = fares.discounted_amount(100, 100 / 3)
    assert raw != round(raw, 2)
    assert fares.display_amount(raw) == 66.67


def test_best_fare_prefers_newest_pricing_fare(session):
    session.add_all(
        [
            _fare("c1", "Lusaka - Ndola", 150, age_days=5),
            _fare("c1", "Lusaka - Ndola", 170, status="seasonal", age_days=1),
            _fare("c1", "Lusaka - Ndola", 999, status="inactive", age_days=0),
            _fare("c2", "Lusaka - Ndola", 10, age_days=0),
        ]
    )
    session.commit()
    best = fares.best_fare_for_route(session, "c1", "Lusaka - Ndola")
    assert best is not None
    assert best.fare_amount == 170


def test_best_fare_missing_route(session):
    assert fares.best_fare_for_route(session, "c1", "Nowhere - Else") is None
    assert fares.best_fare_for_route(session, "c1", "") is None
