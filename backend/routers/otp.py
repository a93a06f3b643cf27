from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from backend.decision import accuracy_band
from backend.dependencies import get_ledger, get_session_manager
from backend.errors import ValidationError
from backend.models import GeoPoint, VerificationRecord, VerificationSession
from backend.security import ensure_issuer_owns, require_claimant, require_issuer
from backend.services.ledger import AttendanceLedger
from backend.services.otp_sessions import OTPSessionManager

router = APIRouter()


class IssueRequest(BaseModel):
    latitude: float
    longitude: float
    subject: str
    year: int = Field(ge=1)
    semester: int = Field(ge=1)
    period: int | None = Field(default=None, ge=1, le=8)


class ClaimRequest(BaseModel):
    otp_code: str
    latitude: float
    longitude: float
    accuracy: float | None = None
    subject: str
    year: int = Field(ge=1)
    semester: int = Field(ge=1)


def session_to_dict(session: VerificationSession) -> dict[str, Any]:
    return {
        "code": session.code,
        "anchor_latitude": session.anchor.latitude,
        "anchor_longitude": session.anchor.longitude,
        "subject": session.classification.get("subject"),
        "year": session.classification.get("year"),
        "semester": session.classification.get("semester"),
        "period": session.classification.get("period"),
        "issued_at": session.issued_at.isoformat(),
        "expires_at": session.expires_at.isoformat(),
    }


def record_to_dict(record: VerificationRecord) -> dict[str, Any]:
    return {
        "id": record.id,
        "claimant_id": record.claimant_id,
        "otp_code": record.session_code,
        "claimant_latitude": record.claimant_point.latitude,
        "claimant_longitude": record.claimant_point.longitude,
        "reported_accuracy": record.reported_accuracy,
        "distance_meters": record.distance_meters,
        "effective_threshold": record.effective_threshold,
        "status": record.status,
        "created_at": record.created_at.isoformat(),
    }


@router.post("/otp/generate", status_code=201)
def generate_otp(
    payload: IssueRequest,
    session: dict = Depends(require_issuer),
    manager: OTPSessionManager = Depends(get_session_manager),
):
    subject = payload.subject.strip()
    if not subject:
        raise ValidationError("Missing required fields")

    classification: dict[str, Any] = {
        "subject": subject,
        "year": payload.year,
        "semester": payload.semester,
    }
    if payload.period is not None:
        classification["period"] = payload.period

    otp_session = manager.issue(
        GeoPoint(latitude=payload.latitude, longitude=payload.longitude),
        classification,
        issuer_id=session["sub"],
    )
    return session_to_dict(otp_session)


@router.get("/otp/active")
def active_otps(
    session: dict = Depends(require_issuer),
    manager: OTPSessionManager = Depends(get_session_manager),
):
    return [
        {**session_to_dict(s), "remaining_seconds": manager.remaining_seconds(s)}
        for s in manager.active_sessions(issuer_id=session["sub"])
    ]


@router.get("/otp/{code}")
def otp_detail(
    code: str,
    session: dict = Depends(require_issuer),
    manager: OTPSessionManager = Depends(get_session_manager),
):
    otp_session = manager.get(code)
    ensure_issuer_owns(session, otp_session.issuer_id)
    remaining = manager.remaining_seconds(otp_session)
    return {
        **session_to_dict(otp_session),
        "active": not otp_session.is_expired(manager.now()),
        "remaining_seconds": remaining,
    }


@router.get("/otp/{code}/records")
def otp_records(
    code: str,
    session: dict = Depends(require_issuer),
    ledger: AttendanceLedger = Depends(get_ledger),
):
    otp_session, records = ledger.records_for_session(code)
    ensure_issuer_owns(session, otp_session.issuer_id)
    return {
        "session": session_to_dict(otp_session),
        "records": [record_to_dict(r) for r in records],
        "present": sum(1 for r in records if r.status == "PRESENT"),
        "absent": sum(1 for r in records if r.status == "ABSENT"),
    }


@router.post("/otp/verify", status_code=201)
def verify_otp(
    payload: ClaimRequest,
    session: dict = Depends(require_claimant),
    ledger: AttendanceLedger = Depends(get_ledger),
):
    code = payload.otp_code.strip()
    subject = payload.subject.strip()
    if not code or not subject:
        raise ValidationError("Missing required fields")

    record = ledger.claim(
        claimant_id=session["sub"],
        code=code,
        claimant_point=GeoPoint(latitude=payload.latitude, longitude=payload.longitude),
        reported_accuracy=payload.accuracy,
        claimant_classification={
            "subject": subject,
            "year": payload.year,
            "semester": payload.semester,
        },
    )
    return {
        "message": "Attendance marked successfully",
        "otp_code": record.session_code,
        "distance_meters": record.distance_meters,
        "status": record.status,
        "effective_threshold": record.effective_threshold,
        "gps_quality": accuracy_band(record.reported_accuracy),
        "subject": subject,
        "year": payload.year,
        "semester": payload.semester,
        "created_at": record.created_at.isoformat(),
    }
