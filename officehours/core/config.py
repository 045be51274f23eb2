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
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./officehours.db")

CORS_ORIGINS = _get_list(os.getenv("CORS_ORIGINS"), ["http://localhost:3000"])

JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "change-me")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_EXPIRES_MINUTES = int(os.getenv("JWT_EXPIRES_MINUTES", "60"))

REMINDERS_ENABLED = _get_bool(os.getenv("REMINDERS_ENABLED"), default=True)
REMINDER_SCAN_INTERVAL_MINUTES = int(os.getenv("REMINDER_SCAN_INTERVAL_MINUTES", "15"))
REMINDER_STARTUP_DELAY_SECONDS = int(os.getenv("REMINDER_STARTUP_DELAY_SECONDS", "5"))

RECURRING_WEEKS_AHEAD = int(os.getenv("RECURRING_WEEKS_AHEAD", "8"))
DEFAULT_SLOT_DURATION_MINUTES = int(os.getenv("DEFAULT_SLOT_DURATION_MINUTES", "30"))
MAX_BULK_SLOTS = int(os.getenv("MAX_BULK_SLOTS", "50"))

def validate_runtime_config() -> None:
    if APP_ENV.lower() == "production" and JWT_SECRET_KEY == "change-me":
        raise RuntimeError("JWT_SECRET_KEY must be set in production.")
    if REMINDER_SCAN_INTERVAL_MINUTES <= 0:
        raise RuntimeError("REMINDER_SCAN_INTERVAL_MINUTES must be positive.")
