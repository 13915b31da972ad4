import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parents[1]

DB_PATH = Path(os.getenv("RFIDATT_DB_PATH", BASE_DIR / "database" / "rfid_attendance.db"))


def _parse_bool(value: str | None, fallback: bool) -> bool:
    if value is None:
        return fallback
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return fallback


def _parse_csv(value: str | None, fallback: list[str]) -> list[str]:
    if not value:
        return fallback
    parsed = [item.strip() for item in value.split(",") if item.strip()]
    return parsed or fallback


def _parse_int(value: str | None, fallback: int, *, minimum: int = 0) -> int:
    try:
        parsed = int(value) if value is not None else fallback
    except ValueError:
        parsed = fallback
    return max(minimum, parsed)


def _parse_float(value: str | None, fallback: float, *, minimum: float = 0.0) -> float:
    try:
        parsed = float(value) if value is not None else fallback
    except ValueError:
        parsed = fallback
    return max(minimum, parsed)


def _parse_choice(value: str | None, choices: set[str], fallback: str) -> str:
    normalized = (value or "").strip().lower()
    if normalized in choices:
        return normalized
    return fallback


CORS_ALLOW_ORIGINS = _parse_csv(
    os.getenv("RFIDATT_CORS_ALLOW_ORIGINS"),
    ["http://localhost:5173", "http://127.0.0.1:5173"],
)
CORS_ALLOW_METHODS = _parse_csv(
    os.getenv("RFIDATT_CORS_ALLOW_METHODS"),
    ["GET", "OPTIONS"],
)
CORS_ALLOW_HEADERS = _parse_csv(
    os.getenv("RFIDATT_CORS_ALLOW_HEADERS"),
    ["Content-Type", "Accept"],
)
CORS_ALLOW_CREDENTIALS = _parse_bool(os.getenv("RFIDATT_CORS_ALLOW_CREDENTIALS"), True)
ENABLE_DEBUG_ENDPOINTS = _parse_bool(os.getenv("RFIDATT_ENABLE_DEBUG_ENDPOINTS"), False)

LOG_LEVEL = _parse_choice(
    os.getenv("RFIDATT_LOG_LEVEL"),
    {"debug", "info", "warning", "error"},
    "info",
).upper()

HOST = os.getenv("RFIDATT_HOST", "0.0.0.0").strip() or "0.0.0.0"
PORT = _parse_int(os.getenv("RFIDATT_PORT"), 3000, minimum=1)

# SQLite waits this long for a competing writer before raising "database is locked".
DB_BUSY_TIMEOUT_SECONDS = _parse_float(os.getenv("RFIDATT_DB_BUSY_TIMEOUT_SECONDS"), 30.0)

# IANA zone name used for weekday/day boundaries. Empty = server local time.
ATTENDANCE_TIMEZONE = os.getenv("RFIDATT_TIMEZONE", "").strip()
REASON_LANGUAGE = _parse_choice(os.getenv("RFIDATT_REASON_LANGUAGE"), {"en", "id"}, "en")

WORKER_ENABLED = _parse_bool(os.getenv("RFIDATT_WORKER_ENABLED"), True)
WORKER_POLL_INTERVAL_SECONDS = _parse_float(
    os.getenv("RFIDATT_WORKER_POLL_INTERVAL_SECONDS"),
    0.5,
    minimum=0.05,
)
WORKER_BATCH_SIZE = _parse_int(os.getenv("RFIDATT_WORKER_BATCH_SIZE"), 50, minimum=1)
WORKER_MAX_CONCURRENCY = _parse_int(os.getenv("RFIDATT_WORKER_MAX_CONCURRENCY"), 8, minimum=1)
