from .request_id import RequestIDMiddleware, get_request_id, REQUEST_ID_HEADER
from .cors import configure_cors
from .health import add_standard_health
from .logging import setup_json_logging
from .lifecycle import register_startup, register_shutdown
from .errors import install_error_handlers, is_prod_env

__all__ = [
    "RequestIDMiddleware",
    "get_request_id",
    "REQUEST_ID_HEADER",
    "configure_cors",
    "add_standard_health",
    "setup_json_logging",
    "register_startup",
    "register_shutdown",
    "install_error_handlers",
    "is_prod_env",
]
