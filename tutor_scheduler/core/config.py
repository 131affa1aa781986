import os

from dotenv import load_dotenv


load_dotenv()


def _get_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_list(value: str | None) -> list[str]:
    if not value:
        return []
    return [item.strip().lower() for item in value.split(",") if item.strip()]

APP_ENV = os.getenv("APP_ENV", "development")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./tutor_scheduler.db")
DATABASE_ECHO = _get_bool(os.getenv("DATABASE_ECHO"), default=False)

CORS_ALLOW_ORIGINS = os.getenv("CORS_ALLOW_ORIGINS", "http://localhost:3000").split(",")

BUSINESS_NAME = os.getenv("BUSINESS_NAME", "PrimaMateria AI Programming School")
BUSINESS_TIMEZONE = os.getenv("BUSINESS_TIMEZONE", "Asia/Tokyo")
SLOT_DURATION_MINUTES = int(os.getenv("SLOT_DURATION_MINUTES", "60"))
DEFAULT_RANGE_DAYS = int(os.getenv("DEFAULT_RANGE_DAYS", "14"))
MAX_RANGE_DAYS = int(os.getenv("MAX_RANGE_DAYS", "60"))
POLICY_CACHE_TTL_SECONDS = float(os.getenv("POLICY_CACHE_TTL_SECONDS", "30"))
IDEMPOTENCY_TTL_SECONDS = float(os.getenv("IDEMPOTENCY_TTL_SECONDS", "600"))

GOOGLE_CLIENT_ID = os.getenv("GOOGLE_CLIENT_ID", "")
GOOGLE_CLIENT_SECRET = os.getenv("GOOGLE_CLIENT_SECRET", "")
GOOGLE_REFRESH_TOKEN = os.getenv("GOOGLE_REFRESH_TOKEN", "")
GOOGLE_SERVICE_ACCOUNT_KEY = os.getenv("GOOGLE_SERVICE_ACCOUNT_KEY", "")
GOOGLE_REDIRECT_URI = os.getenv("GOOGLE_REDIRECT_URI", "http://localhost:3333/callback")
GOOGLE_CALENDAR_ID = os.getenv("GOOGLE_CALENDAR_ID", "primary")

BUSY_SOURCE_TIMEOUT_SECONDS = float(os.getenv("BUSY_SOURCE_TIMEOUT_SECONDS", "10"))
CALENDAR_EVENT_TIMEOUT_SECONDS = float(os.getenv("CALENDAR_EVENT_TIMEOUT_SECONDS", "15"))
NOTIFICATION_TIMEOUT_SECONDS = float(os.getenv("NOTIFICATION_TIMEOUT_SECONDS", "10"))

RESEND_API_KEY = os.getenv("RESEND_API_KEY", "")
EMAIL_FROM = os.getenv("EMAIL_FROM", "PrimaMateria <onboarding@resend.dev>")
ADMIN_EMAIL = os.getenv("ADMIN_EMAIL", "admin@example.com")
ADMIN_EMAILS = _get_list(os.getenv("ADMIN_EMAILS")) or [ADMIN_EMAIL.lower()]
SUPPORT_EMAIL = os.getenv("SUPPORT_EMAIL", "support@example.com")

JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "change-me")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_EXPIRES_MINUTES = int(os.getenv("JWT_EXPIRES_MINUTES", "60"))


def validate_runtime_config() -> None:
    if APP_ENV.lower() == "production" and JWT_SECRET_KEY == "change-me":
        raise RuntimeError("JWT_SECRET_KEY must be set in production.")
    if APP_ENV.lower() == "production" and not (GOOGLE_REFRESH_TOKEN or GOOGLE_SERVICE_ACCOUNT_KEY):
        raise RuntimeError("GOOGLE_REFRESH_TOKEN or GOOGLE_SERVICE_ACCOUNT_KEY must be set in production.")
    if SLOT_DURATION_MINUTES <= 0:
        raise RuntimeError("SLOT_DURATION_MINUTES must be positive.")
