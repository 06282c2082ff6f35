import os

from dotenv import load_dotenv


load_dotenv()


def _get_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_list(value: str | None, default: list[str]) -> list[str]:
    if not value:
        return default
    return [item.strip() for item in value.split(",") if item.strip()]

APP_ENV = os.getenv("APP_ENV", "development")

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./booking.db")
DATABASE_ECHO = _get_bool(os.getenv("DATABASE_ECHO"), default=False)

CORS_ORIGINS = _get_list(os.getenv("CORS_ORIGINS"), ["http://localhost:3000"])

# Every slot boundary sits on this grid.
SLOT_GRAIN_MINUTES = 5
MAX_ADVANCE_BOOKING_DAYS = 30
DEFAULT_ADVANCE_BOOKING_DAYS = int(os.getenv("DEFAULT_ADVANCE_BOOKING_DAYS", "30"))

RESERVATION_TTL_MINUTES = int(os.getenv("RESERVATION_TTL_MINUTES", "15"))
RESERVATION_TTL_MIN_MINUTES = int(os.getenv("RESERVATION_TTL_MIN_MINUTES", "5"))
RESERVATION_TTL_MAX_MINUTES = int(os.getenv("RESERVATION_TTL_MAX_MINUTES", "30"))

EXPIRED_RESERVATION_ALERT_THRESHOLD = int(os.getenv("EXPIRED_RESERVATION_ALERT_THRESHOLD", "100"))
MAX_ACTIVE_RESERVATION_AGE_MINUTES = int(os.getenv("MAX_ACTIVE_RESERVATION_AGE_MINUTES", "30"))

BOOKING_ID_PREFIX = os.getenv("BOOKING_ID_PREFIX", "BK")
MAX_APPOINTMENT_NOTES_LENGTH = 600

CRON_SECRET = os.getenv("CRON_SECRET", "")

JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "change-me")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")

def validate_runtime_config() -> None:
    if APP_ENV.lower() == "production" and JWT_SECRET_KEY == "change-me":
        raise RuntimeError("JWT_SECRET_KEY must be set in production.")
    if APP_ENV.lower() == "production" and not CRON_SECRET:
        raise RuntimeError("CRON_SECRET must be set in production.")
    if not RESERVATION_TTL_MIN_MINUTES <= RESERVATION_TTL_MINUTES <= RESERVATION_TTL_MAX_MINUTES:
        raise RuntimeError("RESERVATION_TTL_MINUTES must be within the configured TTL bounds.")
