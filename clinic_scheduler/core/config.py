import os



def _get_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"Invalid integer for {name}: {raw!r}") from None


def _get_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"Invalid float for {name}: {raw!r}") from None


def _get_list(value: str | None, default: list[str]) -> list[str]:
    if value is None:
        return default
    return [item.strip() for item in value.split(",") if item.strip()]


APP_ENV = os.getenv("APP_ENV", "development")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

CORS_ALLOW_ORIGINS = _get_list(os.getenv("CORS_ALLOW_ORIGINS"), ["http://localhost:4200"])

# Slot generation
SLOT_RESULT_LIMIT = _get_int("SLOT_RESULT_LIMIT", 50)
MAX_SLOT_RANGE_DAYS = _get_int("MAX_SLOT_RANGE_DAYS", 62)

# Alternative-slot recommender
ALTERNATIVE_LIMIT = _get_int("ALTERNATIVE_LIMIT", 5)
ALTERNATIVE_WINDOW_MINUTES = _get_int("ALTERNATIVE_WINDOW_MINUTES", 120)
ALTERNATIVE_CACHE_TTL_MINUTES = _get_int("ALTERNATIVE_CACHE_TTL_MINUTES", 60)
DEFAULT_ALTERNATIVE_DURATION_MINUTES = _get_int("DEFAULT_ALTERNATIVE_DURATION_MINUTES", 30)
EQUIVALENT_PRACTITIONER_SCAN_LIMIT = _get_int("EQUIVALENT_PRACTITIONER_SCAN_LIMIT", 10)

# Notifications
NOTIFICATION_WEBHOOK_URL = os.getenv("NOTIFICATION_WEBHOOK_URL", "")
NOTIFICATION_TIMEOUT_SECONDS = _get_float("NOTIFICATION_TIMEOUT_SECONDS", 10.0)
NOTIFICATION_WORKERS = _get_int("NOTIFICATION_WORKERS", 4)

DISCONNECT_POLL_SECONDS = _get_float("DISCONNECT_POLL_SECONDS", 0.25)
SQL_ECHO = _get_bool(os.getenv("SQL_ECHO"), default=False)


def validate_runtime_config() -> None:
    for name, value in [
        ("SLOT_RESULT_LIMIT", SLOT_RESULT_LIMIT),
        ("MAX_SLOT_RANGE_DAYS", MAX_SLOT_RANGE_DAYS),
        ("ALTERNATIVE_LIMIT", ALTERNATIVE_LIMIT),
        ("ALTERNATIVE_WINDOW_MINUTES", ALTERNATIVE_WINDOW_MINUTES),
        ("ALTERNATIVE_CACHE_TTL_MINUTES", ALTERNATIVE_CACHE_TTL_MINUTES),
        ("DEFAULT_ALTERNATIVE_DURATION_MINUTES", DEFAULT_ALTERNATIVE_DURATION_MINUTES),
        ("NOTIFICATION_WORKERS", NOTIFICATION_WORKERS),
    ]:
        if value < 1:
            raise RuntimeError(f"{name} must be >= 1, got {value}.")

    if APP_ENV.lower() == "production" and not NOTIFICATION_WEBHOOK_URL:
        raise RuntimeError("NOTIFICATION_WEBHOOK_URL must be set in production.")
