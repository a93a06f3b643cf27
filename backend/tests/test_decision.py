import pytest

from backend.decision import DEFAULT_POLICY, DecisionPolicy, accuracy_band, decide, is_low_confidence
from backend.errors import ValidationError


def test_zero_distance_good_fix_is_present():
    result = decide(0.0, 5, 10)
    assert result.status == "PRESENT"
    assert result.effective_threshold == 15.0
    assert result.low_confidence is False


def test_low_confidence_reading_raises_floor_and_buffer():
    result = decide(12.0, 25, 10)
    assert result.low_confidence is True
    assert result.effective_threshold == 50.0
    assert result.status == "PRESENT"


def test_low_confidence_keeps_base_above_floor():
    result = decide(55.0, 40, 45)
    # max(45, 30) + min(40, 20)
    assert result.effective_threshold == 65.0
    assert result.status == "PRESENT"


def test_high_confidence_buffer_is_capped():
    # 20 m is not above the cutoff, so the reading is still high-confidence.
    result = decide(20.5, 20, 10)
    assert result.low_confidence is False
    assert result.effective_threshold == 20.0
    assert result.status == "ABSENT"


def test_missing_accuracy_means_no_buffer():
    assert decide(10.0, None, 10).status == "PRESENT"
    absent = decide(10.001, None, 10)
    assert absent.status == "ABSENT"
    assert absent.effective_threshold == 10.0


def test_boundary_distance_equal_to_threshold_is_present():
    assert decide(18.0, 8, 10).status == "PRESENT"
    assert decide(18.001, 8, 10).status == "ABSENT"


def test_far_claimant_is_absent_even_with_poor_accuracy():
    result = decide(144.554, 50, 10)
    assert result.effective_threshold == 50.0
    assert result.status == "ABSENT"


@pytest.mark.parametrize(
    "args",
    [
        (0.0, 5, 10),
        (12.0, 25, 10),
        (144.554, None, 10),
        (30.0, 20.0, 10),
        (49.999, 120, 5),
    ],
)
def test_decision_is_deterministic(args):
    assert decide(*args) == decide(*args)


def test_custom_policy_is_applied():
    policy = DecisionPolicy(
        low_confidence_accuracy=10,
        low_confidence_min_threshold=15,
        low_confidence_buffer_cap=5,
        high_confidence_buffer_cap=2,
    )
    assert decide(19.0, 12, 5, policy).effective_threshold == 20.0
    assert decide(7.5, 8, 5, policy).effective_threshold == 7.0


def test_policy_from_config_reads_current_values(monkeypatch):
    import backend.config as config

    monkeypatch.setattr(config, "LOW_CONFIDENCE_MIN_THRESHOLD_METERS", 40.0)
    policy = DecisionPolicy.from_config()
    assert policy.low_confidence_min_threshold == 40.0
    assert policy.high_confidence_buffer_cap == config.HIGH_CONFIDENCE_BUFFER_CAP_METERS


@pytest.mark.parametrize(
    "args",
    [
        (-1.0, 5, 10),
        (1.0, -5, 10),
        (1.0, 5, -10),
        (float("nan"), 5, 10),
        (1.0, float("inf"), 10),
        (1.0, "abc", 10),
        (None, 5, 10),
        (True, 5, 10),
    ],
)
def test_invalid_inputs_are_rejected(args):
    with pytest.raises(ValidationError):
        decide(*args)


def test_low_confidence_cutoff_is_strict():
    assert is_low_confidence(20.0, DEFAULT_POLICY) is False
    assert is_low_confidence(20.01, DEFAULT_POLICY) is True
    assert is_low_confidence(None, DEFAULT_POLICY) is False


@pytest.mark.parametrize(
    "accuracy, band",
    [(None, "unknown"), (3, "excellent"), (5, "excellent"), (9.9, "good"), (20, "moderate"), (21, "poor")],
)
def test_accuracy_band(accuracy, band):
    assert accuracy_band(accuracy) == band
