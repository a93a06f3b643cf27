from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

import pytest

from backend.errors import ExhaustedError, ExpiredError, InvalidCoordinateError, NotFoundError, ValidationError
from backend.models import GeoPoint
from backend.services.otp_sessions import OTPSessionManager, random_numeric_code
from database.db import SqliteSessionStore

ANCHOR = GeoPoint(12.9716, 77.5946)
CLASSIFICATION = {"subject": "DSA", "year": 2, "semester": 1}


def _codes(*values):
    it = iter(values)
    return lambda _length: next(it)


@pytest.fixture()
def store(db_path):
    return SqliteSessionStore()


def test_issue_persists_session_with_default_ttl(store, clock):
    manager = OTPSessionManager(store, clock=clock)

    session = manager.issue(ANCHOR, CLASSIFICATION, issuer_id="staff-001")

    assert session.id is not None
    assert len(session.code) == 6 and session.code.isdigit()
    assert session.issued_at == clock.current
    assert session.expires_at - session.issued_at == timedelta(minutes=5)
    assert manager.resolve(session.code) == session


def test_resolve_unknown_code(store, clock):
    manager = OTPSessionManager(store, clock=clock)
    with pytest.raises(NotFoundError, match="Invalid OTP code"):
        manager.resolve("000000")
    with pytest.raises(NotFoundError):
        manager.resolve("   ")


def test_session_expires_by_wall_clock(store, clock):
    manager = OTPSessionManager(store, clock=clock, ttl_seconds=60)
    session = manager.issue(ANCHOR, CLASSIFICATION)

    clock.advance(seconds=59)
    assert manager.resolve(session.code).id == session.id
    assert manager.remaining_seconds(session) == 1

    clock.advance(seconds=1)
    assert manager.resolve(session.code).id == session.id
    assert manager.remaining_seconds(session) == 0

    clock.advance(microseconds=1)
    with pytest.raises(ExpiredError, match="OTP has expired"):
        manager.resolve(session.code)
    assert manager.remaining_seconds(session) == 0
    assert manager.get(session.code).id == session.id


def test_resolve_is_repeatable_for_many_claimants(store, clock):
    manager = OTPSessionManager(store, clock=clock)
    session = manager.issue(ANCHOR, CLASSIFICATION)
    assert all(manager.resolve(session.code).id == session.id for _ in range(5))


def test_collision_with_active_code_regenerates(store, clock):
    manager = OTPSessionManager(store, clock=clock, code_factory=_codes("111111", "111111", "222222"))

    first = manager.issue(ANCHOR, CLASSIFICATION)
    second = manager.issue(ANCHOR, CLASSIFICATION)

    assert first.code == "111111"
    assert second.code == "222222"


def test_exhaustion_fails_loudly(store, clock):
    manager = OTPSessionManager(store, clock=clock, max_attempts=3, code_factory=lambda _n: "424242")
    manager.issue(ANCHOR, CLASSIFICATION)

    with pytest.raises(ExhaustedError, match="Failed to generate unique OTP"):
        manager.issue(ANCHOR, CLASSIFICATION)


def test_expired_code_can_be_reissued(store, clock):
    manager = OTPSessionManager(store, clock=clock, ttl_seconds=60, code_factory=lambda _n: "777777")
    old = manager.issue(ANCHOR, CLASSIFICATION)
    clock.advance(minutes=2)

    fresh = manager.issue(ANCHOR, {"subject": "OS", "year": 2, "semester": 2})

    assert fresh.code == old.code
    assert fresh.id != old.id
    assert manager.resolve("777777").classification["subject"] == "OS"


def test_store_rejects_duplicate_active_code_without_precheck(store, clock):
    # Simulates a concurrent mint that slipped past the active-code check.
    class BlindStore(SqliteSessionStore):
        def is_code_active(self, code, now):
            return False

    manager = OTPSessionManager(BlindStore(), clock=clock, code_factory=_codes("555555", "555555", "666666"))
    manager.issue(ANCHOR, CLASSIFICATION)
    second = manager.issue(ANCHOR, CLASSIFICATION)

    assert second.code == "666666"
    assert [s.code for s in store.list_active_sessions(clock.current)] == ["666666", "555555"]


def test_invalid_anchor_and_ttl_are_rejected(store, clock):
    manager = OTPSessionManager(store, clock=clock)
    with pytest.raises(InvalidCoordinateError):
        manager.issue(GeoPoint(95.0, 0.0), CLASSIFICATION)
    with pytest.raises(ValidationError):
        manager.issue(ANCHOR, CLASSIFICATION, ttl=timedelta(0))


def test_active_sessions_filter_by_issuer(store, clock):
    manager = OTPSessionManager(store, clock=clock, ttl_seconds=60)
    mine = manager.issue(ANCHOR, CLASSIFICATION, issuer_id="staff-001")
    manager.issue(ANCHOR, CLASSIFICATION, issuer_id="staff-002")

    assert [s.id for s in manager.active_sessions("staff-001")] == [mine.id]
    clock.advance(minutes=5)
    assert manager.active_sessions("staff-001") == []


def test_random_code_shape():
    codes = {random_numeric_code(6) for _ in range(200)}
    assert all(len(c) == 6 and c.isdigit() for c in codes)
    assert len(codes) > 1


def test_concurrent_issuance_never_shares_active_codes(store):
    manager = OTPSessionManager(store, ttl_seconds=120)

    with ThreadPoolExecutor(max_workers=16) as pool:
        sessions = list(pool.map(lambda _i: manager.issue(ANCHOR, CLASSIFICATION), range(1000)))

    codes = [s.code for s in sessions]
    assert len(set(codes)) == 1000
    assert len({s.id for s in sessions}) == 1000
