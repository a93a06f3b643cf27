import logging
from collections.abc import Mapping, Sequence
from typing import Any

from backend import geo
from backend.decision import DecisionPolicy, accuracy_band, decide
from backend.errors import ConflictError, DuplicateKeyError, MismatchError
from backend.logging_config import bind_logger
from backend.models import GeoPoint, VerificationRecord, VerificationSession
from backend.services.otp_sessions import OTPSessionManager
from backend.stores import RecordStore

ALREADY_MARKED_MESSAGE = "Attendance already marked for this session"


def _field_label(name: str) -> str:
    return name.replace("_", " ").capitalize()


def check_classification(
    session_classification: Mapping[str, Any],
    claimant_classification: Mapping[str, Any],
    match_fields: Sequence[str],
) -> None:
    """Raise MismatchError on the first configured field that differs.

    Fields the session does not carry are not checked.
    """
    for name in match_fields:
        if name not in session_classification:
            continue
        expected = session_classification[name]
        actual = claimant_classification.get(name)
        if actual is None or str(actual).strip() != str(expected).strip():
            raise MismatchError(
                f'{_field_label(name)} mismatch! This OTP is for "{expected}", '
                f'but you selected "{"" if actual is None else actual}".'
            )


class AttendanceLedger:
    """Write path for claims: at most one record per (claimant, session)."""

    def __init__(
        self,
        sessions: OTPSessionManager,
        store: RecordStore,
        *,
        base_threshold: float = 10.0,
        policy: DecisionPolicy | None = None,
        match_fields: Sequence[str] = ("subject", "year", "semester"),
        logger: logging.Logger | logging.LoggerAdapter | None = None,
    ):
        self._sessions = sessions
        self._store = store
        self._base_threshold = base_threshold
        self._policy = policy or DecisionPolicy()
        self._match_fields = tuple(match_fields)
        self._logger = logger or logging.getLogger(__name__)

    def claim(
        self,
        claimant_id: str,
        code: str,
        claimant_point: GeoPoint,
        reported_accuracy: float | None,
        claimant_classification: Mapping[str, Any],
    ) -> VerificationRecord:
        log = bind_logger(self._logger, otp_code=code, claimant_id=claimant_id)

        session = self._sessions.resolve(code)
        check_classification(session.classification, claimant_classification, self._match_fields)

        if self._store.get_record(claimant_id, session.id) is not None:
            log.info("Duplicate claim rejected", extra={"session_id": session.id})
            raise ConflictError(ALREADY_MARKED_MESSAGE)

        meters = geo.distance(session.anchor, claimant_point)
        decision = decide(meters, reported_accuracy, self._base_threshold, self._policy)
        log.info(
            "distance=%.3fm accuracy=%s (%s) effective_threshold=%.3fm status=%s",
            meters,
            "unknown" if reported_accuracy is None else f"{reported_accuracy:g}m",
            accuracy_band(reported_accuracy),
            decision.effective_threshold,
            decision.status,
            extra={"session_id": session.id},
        )

        record = VerificationRecord(
            claimant_id=claimant_id,
            session_id=session.id,
            session_code=session.code,
            claimant_point=GeoPoint(
                latitude=float(claimant_point.latitude),
                longitude=float(claimant_point.longitude),
            ),
            reported_accuracy=None if reported_accuracy is None else float(reported_accuracy),
            distance_meters=meters,
            effective_threshold=decision.effective_threshold,
            status=decision.status,
            created_at=self._sessions.now(),
        )
        try:
            return self._store.insert_record(record)
        except DuplicateKeyError:
            # A concurrent claim for the same pair committed first.
            log.info("Concurrent duplicate claim rejected", extra={"session_id": session.id})
            raise ConflictError(ALREADY_MARKED_MESSAGE)

    def records_for_session(self, code: str) -> tuple[VerificationSession, list[VerificationRecord]]:
        session = self._sessions.get(code)
        return session, self._store.list_records_for_session(session.id)

    def records_for_claimant(self, claimant_id: str) -> list[VerificationRecord]:
        return self._store.list_records_for_claimant(claimant_id)
