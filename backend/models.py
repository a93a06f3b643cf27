from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal

from backend.errors import ValidationError

AttendanceStatus = Literal["PRESENT", "ABSENT"]
AccuracyBand = Literal["excellent", "good", "moderate", "poor", "unknown"]


@dataclass(frozen=True)
class GeoPoint:
    """A latitude/longitude pair in decimal degrees."""

    latitude: float
    longitude: float


@dataclass(frozen=True)
class VerificationSession:
    """One issued code, bound to the issuer's location at mint time."""

    code: str
    anchor: GeoPoint
    issued_at: datetime
    expires_at: datetime
    classification: dict[str, Any] = field(default_factory=dict)
    issuer_id: str | None = None
    id: int | None = None

    def __post_init__(self) -> None:
        if self.expires_at <= self.issued_at:
            raise ValidationError("Session expiry must be after its issue time.")

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at

    def remaining_seconds(self, now: datetime) -> int:
        remaining = math.floor((self.expires_at - now).total_seconds())
        return remaining if remaining > 0 else 0


@dataclass(frozen=True)
class VerificationRecord:
    """One claimant's outcome for one session. Never updated after insert."""

    claimant_id: str
    session_id: int
    session_code: str
    claimant_point: GeoPoint
    reported_accuracy: float | None
    distance_meters: float
    effective_threshold: float
    status: AttendanceStatus
    created_at: datetime
    id: int | None = None


@dataclass(frozen=True)
class Decision:
    status: AttendanceStatus
    effective_threshold: float
    low_confidence: bool
