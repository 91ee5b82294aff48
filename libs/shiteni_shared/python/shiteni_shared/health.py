from __future__ import annotations

import logging
import os
from typing import Callable, Dict, Optional

from fastapi import FastAPI
from fastapi.responses import JSONResponse

_log = logging.getLogger("shiteni.health")


def add_standard_health(
    app: FastAPI,
    env_key: str = "ENV",
    checks: Optional[Dict[str, Callable[[], None]]] = None,
):
    """
    Register GET /health.

    Each entry in `checks` is called on every health request; a check that raises
    marks the service as degraded and turns the response into a 503.
    """
    checks = dict(checks or {})

    @app.get("/health")
    def _health():
        results: Dict[str, str] = {}
        healthy = True
        for name, check in checks.items():
            try:
                check()
                results[name] = "ok"
            except Exception:
                _log.warning("health check %s failed", name, exc_info=True)
                results[name] = "error"
                healthy = False
        body = {
            "status": "ok" if healthy else "degraded",
            "env": os.getenv(env_key, "dev"),
            "service": app.title,
            "version": getattr(app, "version", None),
        }
        if results:
            body["checks"] = results
        return JSONResponse(status_code=200 if healthy else 503, content=body)
