import json
import logging
import sqlite3
from contextlib import closing
from datetime import datetime, timezone
from typing import Any

from backend.config import DB_PATH, SQLITE_BUSY_TIMEOUT_MS, SQLITE_CONNECT_TIMEOUT_SECONDS
from backend.errors import DuplicateKeyError, StoreError
from backend.models import GeoPoint, VerificationRecord, VerificationSession

logger = logging.getLogger(__name__)


def connect_db():
    conn = sqlite3.connect(
        str(DB_PATH),
        timeout=SQLITE_CONNECT_TIMEOUT_SECONDS,
        check_same_thread=False,
    )
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON;")
    conn.execute("PRAGMA journal_mode = WAL;")
    conn.execute("PRAGMA synchronous = NORMAL;")
    conn.execute(f"PRAGMA busy_timeout = {int(SQLITE_BUSY_TIMEOUT_MS)};")
    return conn


def create_tables():
    conn = connect_db()
    cursor = conn.cursor()

    # One row per issued code; codes may repeat once the earlier session expired.
    cursor.execute("""
    CREATE TABLE IF NOT EXISTS otp_sessions (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        otp_code TEXT NOT NULL,
        issuer_id TEXT,
        anchor_lat REAL NOT NULL,
        anchor_lng REAL NOT NULL,
        classification_json TEXT NOT NULL DEFAULT '{}',
        issued_at TEXT NOT NULL,          -- ISO-8601 UTC
        expires_at TEXT NOT NULL,         -- ISO-8601 UTC
        CHECK (expires_at > issued_at)
    )
    """)
    cursor.execute(
        "CREATE INDEX IF NOT EXISTS idx_otp_sessions_code ON otp_sessions(otp_code, issued_at)"
    )
    cursor.execute(
        "CREATE INDEX IF NOT EXISTS idx_otp_sessions_issuer ON otp_sessions(issuer_id, expires_at)"
    )

    # Code reservation: the primary key keeps a code held by at most one
    # unexpired session. Expired reservations are cleared on the next mint.
    cursor.execute("""
    CREATE TABLE IF NOT EXISTS active_otp_codes (
        otp_code TEXT PRIMARY KEY,
        session_id INTEGER NOT NULL,
        expires_at TEXT NOT NULL,
        FOREIGN KEY (session_id) REFERENCES otp_sessions(id) ON DELETE CASCADE
    )
    """)

    cursor.execute("""
    CREATE TABLE IF NOT EXISTS verification_records (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        claimant_id TEXT NOT NULL,
        session_id INTEGER NOT NULL,
        otp_code TEXT NOT NULL,
        claimant_lat REAL NOT NULL,
        claimant_lng REAL NOT NULL,
        reported_accuracy REAL,
        distance_meters REAL NOT NULL CHECK (distance_meters >= 0),
        effective_threshold REAL NOT NULL,
        status TEXT NOT NULL CHECK (status IN ('PRESENT', 'ABSENT')),
        created_at TEXT NOT NULL,
        FOREIGN KEY (session_id) REFERENCES otp_sessions(id),
        UNIQUE(claimant_id, session_id)
    )
    """)
    cursor.execute(
        "CREATE INDEX IF NOT EXISTS idx_verification_records_session ON verification_records(session_id)"
    )
    cursor.execute("""
    CREATE TRIGGER IF NOT EXISTS verification_records_immutable
    BEFORE UPDATE ON verification_records
    BEGIN
        SELECT RAISE(ABORT, 'verification records are immutable');
    END
    """)

    conn.commit()
    conn.close()


def ping() -> bool:
    try:
        with closing(connect_db()) as conn:
            conn.execute("SELECT 1").fetchone()
        return True
    except sqlite3.Error:
        logger.exception("Database ping failed (db_path=%s)", DB_PATH)
        return False


# -----------------------------
# Row mapping
# -----------------------------
def _ts(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _parse_ts(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _session_from_row(row: sqlite3.Row) -> VerificationSession:
    return VerificationSession(
        id=int(row["id"]),
        code=str(row["otp_code"]),
        issuer_id=row["issuer_id"],
        anchor=GeoPoint(latitude=float(row["anchor_lat"]), longitude=float(row["anchor_lng"])),
        classification=json.loads(row["classification_json"] or "{}"),
        issued_at=_parse_ts(row["issued_at"]),
        expires_at=_parse_ts(row["expires_at"]),
    )


def _record_from_row(row: sqlite3.Row) -> VerificationRecord:
    accuracy = row["reported_accuracy"]
    return VerificationRecord(
        id=int(row["id"]),
        claimant_id=str(row["claimant_id"]),
        session_id=int(row["session_id"]),
        session_code=str(row["otp_code"]),
        claimant_point=GeoPoint(latitude=float(row["claimant_lat"]), longitude=float(row["claimant_lng"])),
        reported_accuracy=float(accuracy) if accuracy is not None else None,
        distance_meters=float(row["distance_meters"]),
        effective_threshold=float(row["effective_threshold"]),
        status=row["status"],
        created_at=_parse_ts(row["created_at"]),
    )


def _classification_json(classification: dict[str, Any]) -> str:
    return json.dumps(classification, sort_keys=True, separators=(",", ":"))


# -----------------------------
# Session store
# -----------------------------
class SqliteSessionStore:
    def is_code_active(self, code: str, now: datetime) -> bool:
        try:
            with closing(connect_db()) as conn:
                row = conn.execute(
                    """
                    SELECT 1
                    FROM active_otp_codes
                    WHERE otp_code = ? AND expires_at >= ?
                    """,
                    (code, _ts(now)),
                ).fetchone()
        except sqlite3.Error as exc:
            logger.exception("Active-code lookup failed", extra={"otp_code": code})
            raise StoreError("Session store unavailable.") from exc
        return row is not None

    def insert_session(self, session: VerificationSession) -> VerificationSession:
        conn = None
        try:
            conn = connect_db()
            conn.execute("BEGIN IMMEDIATE")
            # A reservation left behind by an expired session no longer blocks the code.
            conn.execute(
                """
                DELETE FROM active_otp_codes
                WHERE otp_code = ? AND expires_at < ?
                """,
                (session.code, _ts(session.issued_at)),
            )
            cur = conn.execute(
                """
                INSERT INTO otp_sessions (
                    otp_code,
                    issuer_id,
                    anchor_lat,
                    anchor_lng,
                    classification_json,
                    issued_at,
                    expires_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    session.code,
                    session.issuer_id,
                    session.anchor.latitude,
                    session.anchor.longitude,
                    _classification_json(session.classification),
                    _ts(session.issued_at),
                    _ts(session.expires_at),
                ),
            )
            session_id = int(cur.lastrowid)
            conn.execute(
                """
                INSERT INTO active_otp_codes (otp_code, session_id, expires_at)
                VALUES (?, ?, ?)
                """,
                (session.code, session_id, _ts(session.expires_at)),
            )
            conn.commit()
        except sqlite3.IntegrityError as exc:
            if conn is not None:
                conn.rollback()
            raise DuplicateKeyError(f"Code {session.code} is held by an active session.") from exc
        except sqlite3.Error as exc:
            if conn is not None:
                conn.rollback()
            logger.exception("Session insert failed", extra={"otp_code": session.code})
            raise StoreError("Session store unavailable.") from exc
        finally:
            if conn is not None:
                conn.close()

        return VerificationSession(
            id=session_id,
            code=session.code,
            issuer_id=session.issuer_id,
            anchor=session.anchor,
            classification=dict(session.classification),
            issued_at=session.issued_at,
            expires_at=session.expires_at,
        )

    def get_latest_session(self, code: str) -> VerificationSession | None:
        try:
            with closing(connect_db()) as conn:
                row = conn.execute(
                    """
                    SELECT *
                    FROM otp_sessions
                    WHERE otp_code = ?
                    ORDER BY issued_at DESC, id DESC
                    LIMIT 1
                    """,
                    (code,),
                ).fetchone()
        except sqlite3.Error as exc:
            logger.exception("Session lookup failed", extra={"otp_code": code})
            raise StoreError("Session store unavailable.") from exc
        return _session_from_row(row) if row else None

    def list_active_sessions(
        self, now: datetime, *, issuer_id: str | None = None
    ) -> list[VerificationSession]:
        clauses = ["expires_at >= ?"]
        params: list[Any] = [_ts(now)]
        if issuer_id is not None:
            clauses.append("issuer_id = ?")
            params.append(issuer_id)

        try:
            with closing(connect_db()) as conn:
                rows = conn.execute(
                    f"""
                    SELECT *
                    FROM otp_sessions
                    WHERE {" AND ".join(clauses)}
                    ORDER BY issued_at DESC, id DESC
                    """,
                    params,
                ).fetchall()
        except sqlite3.Error as exc:
            logger.exception("Active session listing failed", extra={"issuer_id": issuer_id})
            raise StoreError("Session store unavailable.") from exc
        return [_session_from_row(r) for r in rows]


# -----------------------------
# Record store
# -----------------------------
class SqliteRecordStore:
    def get_record(self, claimant_id: str, session_id: int) -> VerificationRecord | None:
        try:
            with closing(connect_db()) as conn:
                row = conn.execute(
                    """
                    SELECT *
                    FROM verification_records
                    WHERE claimant_id = ? AND session_id = ?
                    """,
                    (claimant_id, session_id),
                ).fetchone()
        except sqlite3.Error as exc:
            logger.exception(
                "Record lookup failed",
                extra={"claimant_id": claimant_id, "session_id": session_id},
            )
            raise StoreError("Record store unavailable.") from exc
        return _record_from_row(row) if row else None

    def insert_record(self, record: VerificationRecord) -> VerificationRecord:
        conn = None
        try:
            conn = connect_db()
            cur = conn.execute(
                """
                INSERT INTO verification_records (
                    claimant_id,
                    session_id,
                    otp_code,
                    claimant_lat,
                    claimant_lng,
                    reported_accuracy,
                    distance_meters,
                    effective_threshold,
                    status,
                    created_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record.claimant_id,
                    record.session_id,
                    record.session_code,
                    record.claimant_point.latitude,
                    record.claimant_point.longitude,
                    record.reported_accuracy,
                    record.distance_meters,
                    record.effective_threshold,
                    record.status,
                    _ts(record.created_at),
                ),
            )
            record_id = int(cur.lastrowid)
            conn.commit()
        except sqlite3.IntegrityError as exc:
            if conn is not None:
                conn.rollback()
            raise DuplicateKeyError(
                f"Record for claimant {record.claimant_id} and session {record.session_id} exists."
            ) from exc
        except sqlite3.Error as exc:
            if conn is not None:
                conn.rollback()
            logger.exception(
                "Record insert failed",
                extra={"claimant_id": record.claimant_id, "session_id": record.session_id},
            )
            raise StoreError("Record store unavailable.") from exc
        finally:
            if conn is not None:
                conn.close()

        return VerificationRecord(
            id=record_id,
            claimant_id=record.claimant_id,
            session_id=record.session_id,
            session_code=record.session_code,
            claimant_point=record.claimant_point,
            reported_accuracy=record.reported_accuracy,
            distance_meters=record.distance_meters,
            effective_threshold=record.effective_threshold,
            status=record.status,
            created_at=record.created_at,
        )

    def list_records_for_session(self, session_id: int) -> list[VerificationRecord]:
        return self._list("session_id = ?", (session_id,))

    def list_records_for_claimant(self, claimant_id: str) -> list[VerificationRecord]:
        return self._list("claimant_id = ?", (claimant_id,))

    def _list(self, where: str, params: tuple) -> list[VerificationRecord]:
        try:
            with closing(connect_db()) as conn:
                rows = conn.execute(
                    f"""
                    SELECT *
                    FROM verification_records
                    WHERE {where}
                    ORDER BY created_at DESC, id DESC
                    """,
                    params,
                ).fetchall()
        except sqlite3.Error as exc:
            logger.exception("Record listing failed")
            raise StoreError("Record store unavailable.") from exc
        return [_record_from_row(r) for r in rows]
