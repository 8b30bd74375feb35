import os

db_url = os.environ.get("DB_URL", "sqlite://:memory:")
payments_ms_url = os.environ.get("PAYMENTS_MS_URL", "http://localhost:8003")
REDIS_URL = os.environ.get("REDIS_URL", "redis://localhost:6379/0")
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
CURRENCY = os.environ.get("CURRENCY", "usd")

# Cache TTLs, in seconds
VEHICLE_LIST_TTL = int(os.environ.get("VEHICLE_LIST_TTL", "300"))
VEHICLE_DETAIL_TTL = int(os.environ.get("VEHICLE_DETAIL_TTL", "120"))
USER_BOOKINGS_TTL = int(os.environ.get("USER_BOOKINGS_TTL", "120"))
SLOTS_TTL = int(os.environ.get("SLOTS_TTL", "60"))
DEALS_ACTIVE_TTL = int(os.environ.get("DEALS_ACTIVE_TTL", "600"))
DEALS_ADMIN_TTL = int(os.environ.get("DEALS_ADMIN_TTL", "300"))
DASHBOARD_TTL = int(os.environ.get("DASHBOARD_TTL", "300"))
BROADCASTS_TTL = int(os.environ.get("BROADCASTS_TTL", "120"))

# After a failed Redis call, wait this long before pinging again
CACHE_RETRY_SECONDS = float(os.environ.get("CACHE_RETRY_SECONDS", "5"))

MAX_RENTAL_DAYS = int(os.environ.get("MAX_RENTAL_DAYS", "30"))
CANCELLATION_WINDOW_HOURS = int(os.environ.get("CANCELLATION_WINDOW_HOURS", "24"))
REVIEW_EDIT_DAYS = int(os.environ.get("REVIEW_EDIT_DAYS", "7"))

TORTOISE_ORM = {
    "connections": {"default": db_url},
    "apps": {"models": {"models": ["rentals.models"], "default_connection": "default"}},
    "use_tz": True,
    "timezone": "UTC",
}

# Create tables on startup; disable once migrations own the schema
GENERATE_SCHEMAS = os.environ.get("GENERATE_SCHEMAS", "true").lower() == "true"
