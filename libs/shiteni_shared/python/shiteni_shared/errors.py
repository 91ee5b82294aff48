from __future__ import annotations

import logging
import os
from typing import Any, Dict, List

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from .request_id import get_request_id

_log = logging.getLogger("shiteni.errors")

# Blank strings count as absent.
_MISSING_TYPES = ("missing", "string_too_short")


def is_prod_env() -> bool:
    env = (os.getenv("ENV") or "dev").strip().lower()
    return env in ("prod", "production", "staging")


def _field_name(loc: Any) -> str:
    parts = [str(p) for p in (loc or ()) if not isinstance(p, int)]
    if len(parts) > 1 and parts[0] in ("body", "query", "path", "header", "cookie"):
        parts = parts[1:]
    return ".".join(parts) or "body"


def validation_message(errors: List[Dict[str, Any]]) -> str:
    """
    Collapse a pydantic error list into one message naming every offending
    field once, in the order they were reported.

    Body fields that are absent or blank are listed as missing; body fields with a
    bad value carry the validator's message. Query and path problems are
    reported as invalid parameters.
    """
    missing: List[str] = []
    invalid: List[str] = []
    params: List[str] = []
    for err in errors:
        loc = tuple(err.get("loc") or ())
        name = _field_name(loc)
        if loc and loc[0] != "body":
            if name not in params:
                params.append(name)
            continue
        if err.get("type") in _MISSING_TYPES:
            if name not in missing:
                missing.append(name)
            continue
        msg = str(err.get("msg") or "invalid value")
        if msg.startswith("Value error, "):
            msg = msg[len("Value error, "):]
        entry = f"{name} ({msg})"
        if entry not in invalid:
            invalid.append(entry)
    parts: List[str] = []
    if missing:
        parts.append("Missing required fields: " + ", ".join(missing))
    if invalid:
        parts.append("Invalid fields: " + ", ".join(invalid))
    if params:
        parts.append("Invalid parameters: " + ", ".join(params))
    return "; ".join(parts) or "Invalid request"


def install_error_handlers(app: FastAPI) -> None:
    """
    Map every failure onto the `{success: false, error}` envelope used by
    the dashboard clients.
    """

    @app.exception_handler(HTTPException)
    async def _http_exception_handler(request: Request, exc: HTTPException):
        status = int(getattr(exc, "status_code", 500) or 500)
        payload: Dict[str, Any] = {"success": False, "error": exc.detail}
        # Never leak server-side error details in prod/staging.
        if status >= 500 and is_prod_env():
            payload = {"success": False, "error": "internal error", "request_id": get_request_id()}
        return JSONResponse(status_code=status, content=payload, headers=getattr(exc, "headers", None))

    @app.exception_handler(RequestValidationError)
    async def _validation_exception_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=400,
            content={"success": False, "error": validation_message(list(exc.errors()))},
        )

    @app.exception_handler(Exception)
    async def _unhandled_exception_handler(request: Request, exc: Exception):
        rid = get_request_id()
        _log.exception("unhandled exception on %s %s", request.method, request.url.path, extra={"request_id": rid})
        payload: Dict[str, Any] = {"success": False, "error": "internal error", "request_id": rid}
        if not is_prod_env():
            # dev/test: keep a useful error message for debugging.
            payload["detail"] = str(exc)
        return JSONResponse(status_code=500, content=payload)
