import os


def _env_or(key: str, default: str) -> str:
    v = os.getenv(key)
    return v if v is not None else default


DB_URL = _env_or("BUS_DB_URL", _env_or("DB_URL", "sqlite+pysqlite:////tmp/shiteni-bus.db"))
DB_SCHEMA = os.getenv("DB_SCHEMA") if not DB_URL.startswith("sqlite") else None

ENV_LOWER = _env_or("ENV", "dev").lower()

DEFAULT_CURRENCY = _env_or("BUS_DEFAULT_CURRENCY", "ZMW")

# External auth provider (NextAuth-compatible session endpoint).
AUTH_SESSION_URL = _env_or("AUTH_SESSION_URL", "")
AUTH_SESSION_COOKIE = _env_or("AUTH_SESSION_COOKIE", "next-auth.session-token")
AUTH_TIMEOUT_SECS = float(_env_or("AUTH_TIMEOUT_SECS", "5"))

# Outbound mail relay; empty disables delivery (messages are only logged).
MAIL_API_URL = _env_or("MAIL_API_URL", "")
MAIL_API_KEY = _env_or("MAIL_API_KEY", "")
MAIL_FROM = _env_or("MAIL_FROM", "support@shiteni.com")
MAIL_TIMEOUT_SECS = float(_env_or("MAIL_TIMEOUT_SECS", "10"))

# Never expose interactive API docs by default in prod.
ENABLE_DOCS = ENV_LOWER in ("dev", "test") or os.getenv("ENABLE_API_DOCS_IN_PROD", "").lower() in (
    "1",
    "true",
    "yes",
    "on",
)

# Departures of one bus closer than this on a shared weekday clash.
TRIP_MIN_GAP_MINUTES = int(_env_or("BUS_TRIP_MIN_GAP_MINUTES", "60"))
