from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from .db import Fare

# Fares in these states can price a seat; "inactive" fares are kept for
# history only.
PRICING_STATUSES = ("active", "seasonal")


def discounted_amount(fare_amount: float, discount_percent: float) -> float:
    """
    Price after applying a percentage discount.

    Not rounded: amounts are stored at full precision and only rounded by
    `display_amount` when rendered. The result never drops below zero.
    """
    amount = float(fare_amount or 0)
    pct = float(discount_percent or 0)
    return max(0.0, amount - amount * pct / 100)


def display_amount(value: Optional[float]) -> float:
    return round(float(value or 0), 2)


def fare_price(fare: Fare) -> float:
    return discounted_amount(fare.fare_amount, fare.discount)


def best_fare_for_route(s: Session, company_id: str, route_name: str) -> Optional[Fare]:
    """Most recently created fare of the company that can price `route_name`."""
    if not route_name:
        return None
    return s.scalars(
        select(Fare)
        .where(
            Fare.company_id == company_id,
            Fare.route_name == route_name,
            Fare.status.in_(PRICING_STATUSES),
        )
        .order_by(Fare.created_at.desc())
        .limit(1)
    ).first()
