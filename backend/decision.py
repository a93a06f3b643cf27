"""
PRESENT/ABSENT decision from a computed distance and the claimant's
self-reported GPS accuracy.

Readings with poor reported accuracy (typically indoors) get a raised
threshold floor and a larger accuracy buffer. Readings with good accuracy
keep the base threshold and a small buffer.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

import backend.config as config
from backend.errors import ValidationError
from backend.models import AccuracyBand, Decision


@dataclass(frozen=True)
class DecisionPolicy:
    low_confidence_accuracy: float = 20.0
    low_confidence_min_threshold: float = 30.0
    low_confidence_buffer_cap: float = 20.0
    high_confidence_buffer_cap: float = 10.0

    @classmethod
    def from_config(cls) -> DecisionPolicy:
        return cls(
            low_confidence_accuracy=config.LOW_CONFIDENCE_ACCURACY_METERS,
            low_confidence_min_threshold=config.LOW_CONFIDENCE_MIN_THRESHOLD_METERS,
            low_confidence_buffer_cap=config.LOW_CONFIDENCE_BUFFER_CAP_METERS,
            high_confidence_buffer_cap=config.HIGH_CONFIDENCE_BUFFER_CAP_METERS,
        )


DEFAULT_POLICY = DecisionPolicy()


def _non_negative(value: float, *, name: str) -> float:
    if isinstance(value, bool):
        raise ValidationError(f"{name} must be a number.")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{name} must be a number.")
    if not math.isfinite(number) or number < 0:
        raise ValidationError(f"{name} must be a non-negative number.")
    return number


def is_low_confidence(reported_accuracy: float | None, policy: DecisionPolicy = DEFAULT_POLICY) -> bool:
    if reported_accuracy is None:
        return False
    return reported_accuracy > policy.low_confidence_accuracy


def decide(
    distance_meters: float,
    reported_accuracy: float | None,
    base_threshold: float,
    policy: DecisionPolicy | None = None,
) -> Decision:
    policy = policy or DEFAULT_POLICY
    distance = _non_negative(distance_meters, name="Distance")
    base = _non_negative(base_threshold, name="Distance threshold")
    accuracy = 0.0 if reported_accuracy is None else _non_negative(reported_accuracy, name="Accuracy")

    low_confidence = is_low_confidence(accuracy, policy)
    if low_confidence:
        adjusted = max(base, policy.low_confidence_min_threshold)
        buffer = min(accuracy, policy.low_confidence_buffer_cap)
    else:
        adjusted = base
        buffer = min(accuracy, policy.high_confidence_buffer_cap)

    effective_threshold = adjusted + buffer
    status = "PRESENT" if distance <= effective_threshold else "ABSENT"
    return Decision(
        status=status,
        effective_threshold=effective_threshold,
        low_confidence=low_confidence,
    )


def accuracy_band(reported_accuracy: float | None) -> AccuracyBand:
    """Human-readable GPS quality. Informational only; never feeds `decide`."""
    if reported_accuracy is None:
        return "unknown"
    if reported_accuracy <= 5:
        return "excellent"
    if reported_accuracy <= 10:
        return "good"
    if reported_accuracy <= 20:
        return "moderate"
    return "poor"
