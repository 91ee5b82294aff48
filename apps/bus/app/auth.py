"""
Caller resolution for the bus vendor API.

Sessions are owned by the external auth provider; this service only asks
the provider's session endpoint who the caller is. The caller's id is
the company scope for every query.
"""
import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx
from fastapi import Depends, HTTPException, Request

from . import config

_log = logging.getLogger("shiteni.bus.auth")

BUS_SERVICE_TYPE = "bus"


@dataclass
class Caller:
    id: str
    name: str = ""
    email: str = ""
    service_type: str = ""
    role: str = ""


def _test_mode() -> bool:
    return (os.getenv("ENV") or "dev").strip().lower() == "test"


def _caller_from_test_headers(request: Request) -> Optional[Caller]:
    # Only honoured when ENV=test so tests can act as any vendor.
    uid = (request.headers.get("X-Test-User") or "").strip()
    if not uid:
        return None
    return Caller(
        id=uid,
        name=(request.headers.get("X-Test-Name") or "Test Staff").strip(),
        service_type=(request.headers.get("X-Test-Service-Type") or BUS_SERVICE_TYPE).strip(),
    )


def _session_credentials(request: Request) -> Dict[str, Any]:
    token = request.cookies.get(config.AUTH_SESSION_COOKIE)
    if token:
        return {"cookies": {config.AUTH_SESSION_COOKIE: token}}
    auth = (request.headers.get("Authorization") or "").strip()
    if auth.lower().startswith("bearer ") and auth[7:].strip():
        return {"headers": {"Authorization": auth}}
    return {}


def fetch_session_user(request: Request) -> Optional[Dict[str, Any]]:
    """
    Ask the auth provider for the current session. Returns the `user`
    object, or None when there is no valid session.
    """
    creds = _session_credentials(request)
    if not creds:
        return None
    if not config.AUTH_SESSION_URL:
        _log.warning("AUTH_SESSION_URL not configured; rejecting session")
        return None
    try:
        r = httpx.get(config.AUTH_SESSION_URL, timeout=config.AUTH_TIMEOUT_SECS, **creds)
    except httpx.HTTPError as e:
        _log.warning("session lookup failed: %s", e)
        return None
    if r.status_code != 200:
        return None
    try:
        data = r.json()
    except ValueError:
        return None
    user = (data or {}).get("user") if isinstance(data, dict) else None
    if not isinstance(user, dict) or not user.get("id"):
        return None
    return user


def require_caller(request: Request) -> Caller:
    if _test_mode():
        caller = _caller_from_test_headers(request)
        if caller is not None:
            return caller
    user = fetch_session_user(request)
    if user is None:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return Caller(
        id=str(user["id"]),
        name=str(user.get("name") or ""),
        email=str(user.get("email") or ""),
        service_type=str(user.get("serviceType") or ""),
        role=str(user.get("role") or ""),
    )


def require_bus_vendor(caller: Caller = Depends(require_caller)) -> Caller:
    if caller.service_type != BUS_SERVICE_TYPE:
        raise HTTPException(status_code=403, detail="Access denied. Bus staff only.")
    return caller
