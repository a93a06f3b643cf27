import logging
import secrets
from collections.abc import Callable, Mapping
from datetime import datetime, timedelta, timezone
from typing import Any

from backend.errors import DuplicateKeyError, ExhaustedError, ExpiredError, NotFoundError, ValidationError
from backend.geo import validate_point
from backend.logging_config import bind_logger
from backend.models import GeoPoint, VerificationSession
from backend.stores import SessionStore

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def random_numeric_code(length: int) -> str:
    return f"{secrets.randbelow(10 ** length):0{length}d}"


class OTPSessionManager:
    """
    Mints and resolves time-limited numeric codes bound to an anchor location.

    Uniqueness of a code among unexpired sessions is the store's job; this
    class only retries with a fresh code when the store reports a collision,
    up to `max_attempts` times.
    """

    def __init__(
        self,
        store: SessionStore,
        *,
        ttl_seconds: int = 300,
        code_length: int = 6,
        max_attempts: int = 10,
        clock: Clock = utc_now,
        code_factory: Callable[[int], str] = random_numeric_code,
        logger: logging.Logger | logging.LoggerAdapter | None = None,
    ):
        if code_length < 1:
            raise ValueError("code_length must be positive")
        if max_attempts < 1:
            raise ValueError("max_attempts must be positive")
        self._store = store
        self._default_ttl = timedelta(seconds=ttl_seconds)
        self._code_length = code_length
        self._max_attempts = max_attempts
        self._clock = clock
        self._code_factory = code_factory
        self._logger = logger or logging.getLogger(__name__)

    def now(self) -> datetime:
        return self._clock()

    def issue(
        self,
        anchor: GeoPoint,
        classification: Mapping[str, Any],
        ttl: timedelta | None = None,
        *,
        issuer_id: str | None = None,
    ) -> VerificationSession:
        anchor = validate_point(anchor)
        ttl = self._default_ttl if ttl is None else ttl
        if ttl <= timedelta(0):
            raise ValidationError("OTP lifetime must be positive.")

        log = bind_logger(self._logger, issuer_id=issuer_id)
        for attempt in range(1, self._max_attempts + 1):
            code = self._code_factory(self._code_length)
            issued_at = self.now()
            if self._store.is_code_active(code, issued_at):
                log.debug("Code collision on attempt %d", attempt, extra={"otp_code": code})
                continue

            candidate = VerificationSession(
                code=code,
                anchor=anchor,
                classification=dict(classification),
                issued_at=issued_at,
                expires_at=issued_at + ttl,
                issuer_id=issuer_id,
            )
            try:
                session = self._store.insert_session(candidate)
            except DuplicateKeyError:
                # Lost a race with a concurrent mint of the same code.
                log.debug("Code reserved concurrently on attempt %d", attempt, extra={"otp_code": code})
                continue

            log.info(
                "Issued OTP session expiring at %s",
                session.expires_at.isoformat(),
                extra={"otp_code": session.code, "session_id": session.id},
            )
            return session

        log.error("No unique OTP after %d attempts", self._max_attempts)
        raise ExhaustedError("Failed to generate unique OTP")

    def get(self, code: str) -> VerificationSession:
        """Latest session for `code`, expired or not."""
        clean = (code or "").strip()
        session = self._store.get_latest_session(clean) if clean else None
        if session is None:
            raise NotFoundError("Invalid OTP code")
        return session

    def resolve(self, code: str) -> VerificationSession:
        session = self.get(code)
        if session.is_expired(self.now()):
            raise ExpiredError("OTP has expired")
        return session

    def remaining_seconds(self, session: VerificationSession) -> int:
        return session.remaining_seconds(self.now())

    def active_sessions(self, issuer_id: str | None = None) -> list[VerificationSession]:
        return self._store.list_active_sessions(self.now(), issuer_id=issuer_id)
