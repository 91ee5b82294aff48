from typing import Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from .db import Stop


class UnknownStopError(ValueError):
    def __init__(self, names: List[str]):
        self.names = names
        super().__init__("Unknown stop: " + ", ".join(names))


def _clean(name: Optional[str]) -> str:
    return (name or "").strip()


def resolve_route_name(origin: Optional[str], destination: Optional[str], stop_names: Iterable[str]) -> Optional[str]:
    """
    "{origin} - {destination}" when both names match a known stop exactly,
    otherwise None.
    """
    o, d = _clean(origin), _clean(destination)
    if not o or not d:
        return None
    known = set(stop_names)
    if o not in known or d not in known:
        return None
    return f"{o} - {d}"


def require_route_name(origin: Optional[str], destination: Optional[str], stop_names: Iterable[str]) -> str:
    known = set(stop_names)
    name = resolve_route_name(origin, destination, known)
    if name is not None:
        return name
    missing = [n or "" for n in (_clean(origin), _clean(destination)) if n not in known]
    raise UnknownStopError(missing)


def company_stop_names(s: Session, company_id: str) -> List[str]:
    return list(s.scalars(select(Stop.stop_name).where(Stop.company_id == company_id)).all())


def trip_name(bus_name: str, route_name: str) -> str:
    return f"{_clean(bus_name)} - {_clean(route_name)}"
