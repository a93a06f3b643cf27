from datetime import datetime
from typing import Protocol

from backend.models import VerificationRecord, VerificationSession


class SessionStore(Protocol):
    """Durable home of issued sessions.

    `insert_session` must reject, with `DuplicateKeyError`, a code that is
    still held by an unexpired session at `session.issued_at`. The check and
    the write happen in the store, not in the caller.
    """

    def is_code_active(self, code: str, now: datetime) -> bool: ...

    def insert_session(self, session: VerificationSession) -> VerificationSession: ...

    def get_latest_session(self, code: str) -> VerificationSession | None: ...

    def list_active_sessions(
        self, now: datetime, *, issuer_id: str | None = None
    ) -> list[VerificationSession]: ...


class RecordStore(Protocol):
    """Append-only home of verification records.

    `insert_record` must raise `DuplicateKeyError` when a record already
    exists for `(claimant_id, session_id)`.
    """

    def get_record(self, claimant_id: str, session_id: int) -> VerificationRecord | None: ...

    def insert_record(self, record: VerificationRecord) -> VerificationRecord: ...

    def list_records_for_session(self, session_id: int) -> list[VerificationRecord]: ...

    def list_records_for_claimant(self, claimant_id: str) -> list[VerificationRecord]: ...
