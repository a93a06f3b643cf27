import backend.config as config
from backend.decision import DecisionPolicy
from backend.services.ledger import AttendanceLedger
from backend.services.otp_sessions import OTPSessionManager
from database.db import SqliteRecordStore, SqliteSessionStore


def get_session_manager() -> OTPSessionManager:
    return OTPSessionManager(
        SqliteSessionStore(),
        ttl_seconds=config.OTP_TTL_SECONDS,
        code_length=config.OTP_LENGTH,
        max_attempts=config.OTP_MAX_ATTEMPTS,
    )


def get_ledger() -> AttendanceLedger:
    return AttendanceLedger(
        get_session_manager(),
        SqliteRecordStore(),
        base_threshold=config.BASE_DISTANCE_THRESHOLD_METERS,
        policy=DecisionPolicy.from_config(),
        match_fields=config.CLASSIFICATION_MATCH_FIELDS,
    )
