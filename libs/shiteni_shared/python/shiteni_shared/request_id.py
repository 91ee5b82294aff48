from __future__ import annotations

import re
import uuid
from contextvars import ContextVar

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

REQUEST_ID_HEADER = "X-Request-ID"

_rid_ctx: ContextVar[str] = ContextVar("request_id", default="")
# Client supplied ids end up in log lines; only accept short, plain tokens.
_RID_RE = re.compile(r"^[A-Za-z0-9._-]{1,64}$")


def get_request_id() -> str:
    rid = _rid_ctx.get()
    if not rid:
        rid = uuid.uuid4().hex
        _rid_ctx.set(rid)
    return rid


def _inbound_request_id(raw: str | None) -> str:
    value = (raw or "").strip()
    if value and _RID_RE.match(value):
        return value
    return uuid.uuid4().hex


class RequestIDMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, header_name: str = REQUEST_ID_HEADER):
        super().__init__(app)
        self.header_name = header_name

    async def dispatch(self, request: Request, call_next):
        rid = _inbound_request_id(request.headers.get(self.header_name))
        token = _rid_ctx.set(rid)
        try:
            response: Response = await call_next(request)
        finally:
            _rid_ctx.reset(token)
        response.headers.setdefault(self.header_name, rid)
        return response
