import os
import secrets
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parents[1]

DB_PATH = Path(os.getenv("QRATT_DB_PATH", BASE_DIR / "database" / "attendance.db"))
SIGNING_KEY = os.getenv("QRATT_SIGNING_KEY", "").strip() or secrets.token_urlsafe(32)
AUTH_TOKEN_TTL_SECONDS = int(os.getenv("QRATT_AUTH_TOKEN_TTL_SECONDS", "43200"))
LOG_LEVEL = (os.getenv("QRATT_LOG_LEVEL", "INFO").strip() or "INFO").upper()


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


def _parse_minutes(value: str | None, fallback: list[int]) -> list[int]:
    if not value:
        return fallback
    minutes: list[int] = []
    for item in _parse_csv(value, []):
        try:
            parsed = int(item)
        except ValueError:
            continue
        if parsed > 0 and parsed not in minutes:
            minutes.append(parsed)
    return sorted(minutes) or fallback


CORS_ALLOW_ORIGINS = _parse_csv(
    os.getenv("QRATT_CORS_ALLOW_ORIGINS"),
    ["http://localhost:3000", "http://127.0.0.1:3000"],
)
CORS_ALLOW_METHODS = _parse_csv(
    os.getenv("QRATT_CORS_ALLOW_METHODS"),
    ["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
)
CORS_ALLOW_HEADERS = _parse_csv(
    os.getenv("QRATT_CORS_ALLOW_HEADERS"),
    ["Authorization", "Content-Type", "Accept"],
)
CORS_ALLOW_CREDENTIALS = _parse_bool(os.getenv("QRATT_CORS_ALLOW_CREDENTIALS"), True)
ENABLE_DEBUG_ENDPOINTS = _parse_bool(os.getenv("QRATT_ENABLE_DEBUG_ENDPOINTS"), False)

# Attendance sessions
SESSION_DURATION_CHOICES = _parse_minutes(
    os.getenv("QRATT_SESSION_DURATION_CHOICES"),
    [5, 10, 15, 30, 60],
)
SESSION_DEFAULT_MINUTES = int(os.getenv("QRATT_SESSION_DEFAULT_MINUTES", "30"))
if SESSION_DEFAULT_MINUTES not in SESSION_DURATION_CHOICES:
    SESSION_DURATION_CHOICES = sorted([*SESSION_DURATION_CHOICES, SESSION_DEFAULT_MINUTES])

# QR rendering
QR_BOX_SIZE = max(1, int(os.getenv("QRATT_QR_BOX_SIZE", "10")))
QR_BORDER = max(0, int(os.getenv("QRATT_QR_BORDER", "2")))
