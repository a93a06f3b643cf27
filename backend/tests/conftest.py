from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

import backend.config as config
import database.db as db
from backend.security import issue_session_token


class FakeClock:
    def __init__(self, start: datetime | None = None):
        self.current = start or datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> None:
        self.current += timedelta(**kwargs)


@pytest.fixture()
def db_path(tmp_path, monkeypatch):
    test_db = tmp_path / "geoattend_test.db"

    # Point DB to a temp file for isolation.
    monkeypatch.setattr(config, "DB_PATH", test_db)
    monkeypatch.setattr(db, "DB_PATH", test_db)

    db.create_tables()
    return test_db


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def client(db_path):
    import backend.main as main

    with TestClient(main.app) as c:
        yield c


def _bearer(subject: str, role: str) -> dict[str, str]:
    token, _claims = issue_session_token(subject, role=role)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def staff_headers():
    return _bearer("staff-001", "staff")


@pytest.fixture()
def student_headers():
    return _bearer("student-001", "student")


@pytest.fixture()
def other_student_headers():
    return _bearer("student-002", "student")
