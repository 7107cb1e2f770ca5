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
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./faculty_booking.db")

CORS_ALLOWED_ORIGINS = _get_list(os.getenv("CORS_ALLOWED_ORIGINS"), ["http://localhost:3000"])

JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "change-me")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_EXPIRES_MINUTES = int(os.getenv("JWT_EXPIRES_MINUTES", "60"))

NOTIFICATIONS_ENABLED = _get_bool(os.getenv("NOTIFICATIONS_ENABLED"), default=True)
SMTP_HOST = os.getenv("SMTP_HOST", "")
SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
SMTP_USERNAME = os.getenv("SMTP_USERNAME", "")
SMTP_PASSWORD = os.getenv("SMTP_PASSWORD", "")
SMTP_USE_TLS = _get_bool(os.getenv("SMTP_USE_TLS"), default=True)
SMTP_TIMEOUT_SECONDS = int(os.getenv("SMTP_TIMEOUT_SECONDS", "10"))
EMAIL_FROM_ADDRESS = os.getenv("EMAIL_FROM_ADDRESS", "Faculty Appointments <no-reply@localhost>")

# Per client IP, in slowapi/limits notation.
RATE_LIMIT_ENABLED = _get_bool(os.getenv("RATE_LIMIT_ENABLED"), default=True)
RATE_LIMIT_DEFAULT = os.getenv("RATE_LIMIT_DEFAULT", "100 per 10 minutes")

# same_day: one pending/accepted appointment per student per date.
# overlapping_time: only reject when the time ranges on that date overlap.
STUDENT_BOOKING_GUARD_SAME_DAY = "same_day"
STUDENT_BOOKING_GUARD_OVERLAPPING_TIME = "overlapping_time"
STUDENT_BOOKING_GUARDS = {STUDENT_BOOKING_GUARD_SAME_DAY, STUDENT_BOOKING_GUARD_OVERLAPPING_TIME}
STUDENT_BOOKING_GUARD = os.getenv("STUDENT_BOOKING_GUARD", STUDENT_BOOKING_GUARD_SAME_DAY).strip().lower()


def is_development() -> bool:
    return APP_ENV.lower() == "development"


def validate_runtime_config() -> None:
    if APP_ENV.lower() == "production" and JWT_SECRET_KEY == "change-me":
        raise RuntimeError("JWT_SECRET_KEY must be set in production.")
    if STUDENT_BOOKING_GUARD not in STUDENT_BOOKING_GUARDS:
        raise RuntimeError(
            f"STUDENT_BOOKING_GUARD must be one of {sorted(STUDENT_BOOKING_GUARDS)}, got {STUDENT_BOOKING_GUARD!r}."
        )
