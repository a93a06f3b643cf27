import math
import os
import secrets
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parents[1]

DB_PATH = Path(os.getenv("GEOATTEND_DB_PATH", BASE_DIR / "database" / "geoattend.db"))
SIGNING_KEY = os.getenv("GEOATTEND_SIGNING_KEY", "").strip() or secrets.token_urlsafe(32)
LOG_LEVEL = os.getenv("GEOATTEND_LOG_LEVEL", "INFO").strip().upper() or "INFO"


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


def _parse_float(value: str | None, fallback: float, *, minimum: float = 0.0) -> float:
    if not value:
        return fallback
    try:
        parsed = float(value)
    except ValueError:
        return fallback
    if not math.isfinite(parsed) or parsed < minimum:
        return fallback
    return parsed


def _parse_int(value: str | None, fallback: int, *, minimum: int = 1) -> int:
    if not value:
        return fallback
    try:
        parsed = int(value)
    except ValueError:
        return fallback
    return parsed if parsed >= minimum else fallback


CORS_ALLOW_ORIGINS = _parse_csv(
    os.getenv("GEOATTEND_CORS_ALLOW_ORIGINS"),
    ["http://localhost:3000", "http://127.0.0.1:3000"],
)
CORS_ALLOW_METHODS = _parse_csv(
    os.getenv("GEOATTEND_CORS_ALLOW_METHODS"),
    ["GET", "POST", "OPTIONS"],
)
CORS_ALLOW_HEADERS = _parse_csv(
    os.getenv("GEOATTEND_CORS_ALLOW_HEADERS"),
    ["Authorization", "Content-Type", "Accept"],
)
CORS_ALLOW_CREDENTIALS = _parse_bool(os.getenv("GEOATTEND_CORS_ALLOW_CREDENTIALS"), True)

# Roles come from the external credential service's token claims.
ISSUER_ROLES = _parse_csv(os.getenv("GEOATTEND_ISSUER_ROLES"), ["staff", "admin"])
CLAIMANT_ROLES = _parse_csv(os.getenv("GEOATTEND_CLAIMANT_ROLES"), ["student"])
# Issuers with these roles may read sessions minted by other issuers.
ADMIN_ROLES = _parse_csv(os.getenv("GEOATTEND_ADMIN_ROLES"), ["admin"])

# OTP sessions
OTP_LENGTH = _parse_int(os.getenv("GEOATTEND_OTP_LENGTH"), 6)
OTP_TTL_SECONDS = _parse_int(os.getenv("GEOATTEND_OTP_TTL_SECONDS"), 300)
OTP_MAX_ATTEMPTS = _parse_int(os.getenv("GEOATTEND_OTP_MAX_ATTEMPTS"), 10)

# Presence decision (meters)
BASE_DISTANCE_THRESHOLD_METERS = _parse_float(
    os.getenv("GEOATTEND_BASE_DISTANCE_THRESHOLD_METERS"), 10.0
)
LOW_CONFIDENCE_ACCURACY_METERS = _parse_float(
    os.getenv("GEOATTEND_LOW_CONFIDENCE_ACCURACY_METERS"), 20.0
)
LOW_CONFIDENCE_MIN_THRESHOLD_METERS = _parse_float(
    os.getenv("GEOATTEND_LOW_CONFIDENCE_MIN_THRESHOLD_METERS"), 30.0
)
LOW_CONFIDENCE_BUFFER_CAP_METERS = _parse_float(
    os.getenv("GEOATTEND_LOW_CONFIDENCE_BUFFER_CAP_METERS"), 20.0
)
HIGH_CONFIDENCE_BUFFER_CAP_METERS = _parse_float(
    os.getenv("GEOATTEND_HIGH_CONFIDENCE_BUFFER_CAP_METERS"), 10.0
)

# Claimant classification must equal the session's on these fields.
CLASSIFICATION_MATCH_FIELDS = _parse_csv(
    os.getenv("GEOATTEND_CLASSIFICATION_MATCH_FIELDS"),
    ["subject", "year", "semester"],
)

# SQLite
SQLITE_CONNECT_TIMEOUT_SECONDS = _parse_float(
    os.getenv("GEOATTEND_SQLITE_CONNECT_TIMEOUT_SECONDS"), 30.0, minimum=0.001
)
SQLITE_BUSY_TIMEOUT_MS = _parse_int(os.getenv("GEOATTEND_SQLITE_BUSY_TIMEOUT_MS"), 30_000)
