from datetime import datetime, timezone

from fastapi import APIRouter
from fastapi.responses import JSONResponse

import backend.config as config
from backend import geo
from database.db import ping

router = APIRouter()


@router.get("/health")
def health():
    database_ok = ping()
    payload = {
        "status": "healthy" if database_ok else "unhealthy",
        "timestamp": datetime.now(timezone.utc).isoformat(timespec="seconds"),
        "checks": {"database": database_ok, "api": True},
    }
    return JSONResponse(payload, status_code=200 if database_ok else 503)


@router.get("/config/attendance")
def attendance_config():
    return {
        "otp_length": config.OTP_LENGTH,
        "otp_ttl_seconds": config.OTP_TTL_SECONDS,
        "otp_max_attempts": config.OTP_MAX_ATTEMPTS,
        "base_distance_threshold_meters": config.BASE_DISTANCE_THRESHOLD_METERS,
        "low_confidence_accuracy_meters": config.LOW_CONFIDENCE_ACCURACY_METERS,
        "low_confidence_min_threshold_meters": config.LOW_CONFIDENCE_MIN_THRESHOLD_METERS,
        "low_confidence_buffer_cap_meters": config.LOW_CONFIDENCE_BUFFER_CAP_METERS,
        "high_confidence_buffer_cap_meters": config.HIGH_CONFIDENCE_BUFFER_CAP_METERS,
        "short_range_cutoff_meters": geo.SHORT_RANGE_CUTOFF_METERS,
        "classification_match_fields": list(config.CLASSIFICATION_MATCH_FIELDS),
    }
