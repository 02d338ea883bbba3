import os

from dotenv import load_dotenv

load_dotenv()


def _get_int(name: str, default: int) -> int:
    raw = os.getenv(name, str(default)).strip()
    try:
        return int(raw)
    except Exception:
        return int(default)


def _get_float(name: str, default: float) -> float:
    raw = os.getenv(name, str(default)).strip()
    try:
        return float(raw)
    except Exception:
        return float(default)


def _get_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name, "1" if default else "0").strip().lower()
    if raw in {"1", "true", "yes", "on"}:
        return True
    if raw in {"0", "false", "no", "off"}:
        return False
    return bool(default)


def _get_list(name: str, default: str = "") -> list[str]:
    raw = os.getenv(name, default)
    return [part.strip() for part in raw.split(",") if part.strip()]


class Settings:
    DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./spadesk.db")
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").strip().upper()

    AUTH_SECRET_KEY = os.getenv("AUTH_SECRET_KEY", "change-this-in-prod").strip()
    AUTH_ALGORITHM = os.getenv("AUTH_ALGORITHM", "HS256").strip()
    AUTH_ACCESS_TOKEN_HOURS = _get_int("AUTH_ACCESS_TOKEN_HOURS", 24)
    AUTH_PASSWORD_MIN_LENGTH = _get_int("AUTH_PASSWORD_MIN_LENGTH", 8)
    AUTH_PASSWORD_REQUIRE_UPPER = _get_bool("AUTH_PASSWORD_REQUIRE_UPPER", False)
    AUTH_PASSWORD_REQUIRE_LOWER = _get_bool("AUTH_PASSWORD_REQUIRE_LOWER", True)
    AUTH_PASSWORD_REQUIRE_DIGIT = _get_bool("AUTH_PASSWORD_REQUIRE_DIGIT", True)
    AUTH_PASSWORD_REQUIRE_SPECIAL = _get_bool("AUTH_PASSWORD_REQUIRE_SPECIAL", False)

    BOOTSTRAP_ADMIN_EMAIL = os.getenv("BOOTSTRAP_ADMIN_EMAIL", "").strip().lower()
    BOOTSTRAP_ADMIN_PASSWORD = os.getenv("BOOTSTRAP_ADMIN_PASSWORD", "").strip()
    BOOTSTRAP_ADMIN_FIRST_NAME = os.getenv("BOOTSTRAP_ADMIN_FIRST_NAME", "Salon").strip()
    BOOTSTRAP_ADMIN_LAST_NAME = os.getenv("BOOTSTRAP_ADMIN_LAST_NAME", "Admin").strip()

    HUBTEL_API_URL = os.getenv("HUBTEL_API_URL", "https://api.hubtel.com/v1/messages").strip()
    HUBTEL_CLIENT_ID = os.getenv("HUBTEL_CLIENT_ID", "").strip()
    HUBTEL_CLIENT_SECRET = os.getenv("HUBTEL_CLIENT_SECRET", "").strip()
    HUBTEL_SENDER_ID = os.getenv("HUBTEL_SENDER_ID", "SALON&SPA").strip()
    SMS_ENABLED = _get_bool("SMS_ENABLED", True)
    SMS_COUNTRY_CODE = os.getenv("SMS_COUNTRY_CODE", "233").strip().lstrip("+")
    SMS_MAX_ATTEMPTS = _get_int("SMS_MAX_ATTEMPTS", 3)
    SMS_RETRY_BASE_SECONDS = _get_float("SMS_RETRY_BASE_SECONDS", 1.0)
    SMS_RETRY_MAX_SECONDS = _get_float("SMS_RETRY_MAX_SECONDS", 8.0)
    SMS_TIMEOUT_SECONDS = _get_float("SMS_TIMEOUT_SECONDS", 10.0)
    CURRENCY = os.getenv("CURRENCY", "GHS").strip().upper()

    CORS_ORIGINS = _get_list("CORS_ORIGINS", "*")
    SECURITY_HEADERS_ENABLED = _get_bool("SECURITY_HEADERS_ENABLED", True)


settings = Settings()
