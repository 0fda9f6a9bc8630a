"""Tests for pose-based height/weight estimation and the demographic fallback."""

from __future__ import annotations

import pytest

from kumbhid.biometrics.anthropometry import (
    AgeBracket,
    AnthropometryConfig,
    estimate_body,
    estimate_height,
    estimate_weight,
    fallback_estimate,
)
from kumbhid.biometrics.types import EstimateSource, Gender
from tests.conftest import build_pose

# ---------------------------------------------------------------------------
# Height
# ---------------------------------------------------------------------------


class TestEstimateHeight:
    def test_standing_pose(self) -> None:
        assert estimate_height(build_pose()) == 170

    def test_low_confidence_nose_is_absent(self) -> None:
        assert estimate_height(build_pose(nose=(100.0, 110.0, 0.1))) is None

    def test_missing_eye_is_absent(self) -> None:
        assert estimate_height(build_pose(left_eye=None)) is None

    def test_no_ankles_is_absent(self) -> None:
        assert estimate_height(build_pose(left_ankle=None, right_ankle=None)) is None

    def test_single_ankle_is_enough(self) -> None:
        assert estimate_height(build_pose(left_ankle=None)) == 170

    def test_uses_more_confident_ankle(self) -> None:
        pose = build_pose(left_ankle=(100.0, 600.0, 0.35), right_ankle=(100.0, 304.0, 0.95))
        assert estimate_height(pose) == 170

    def test_low_confidence_ankles_are_absent(self) -> None:
        pose = build_pose(left_ankle=(100.0, 304.0, 0.2), right_ankle=(100.0, 304.0, 0.1))
        assert estimate_height(pose) is None

    def test_clamped_to_upper_bound(self) -> None:
        assert estimate_height(build_pose(left_ankle=(100.0, 100_000.0), right_ankle=None)) == 210

    def test_clamped_to_lower_bound(self) -> None:
        assert estimate_height(build_pose(left_ankle=(100.0, 101.0), right_ankle=None)) == 120

    def test_degenerate_eye_to_nose_span_is_clamped(self) -> None:
        pose = build_pose(nose=(100.0, 100.0))
        assert estimate_height(pose) == 210

    def test_fully_collapsed_pose_is_clamped(self) -> None:
        pose = build_pose(nose=(100.0, 100.0), left_ankle=(100.0, 100.0), right_ankle=None)
        assert estimate_height(pose) == 120

    def test_custom_confidence_threshold(self) -> None:
        config = AnthropometryConfig(min_height_confidence=0.95)
        assert estimate_height(build_pose(score=0.9), config) is None


# ---------------------------------------------------------------------------
# Weight
# ---------------------------------------------------------------------------


class TestEstimateWeight:
    def test_male_baseline(self) -> None:
        assert estimate_weight(build_pose(), 170, Gender.MALE) == 64

    def test_female_baseline(self) -> None:
        assert estimate_weight(build_pose(), 170, Gender.FEMALE) == 61

    def test_unknown_gender_uses_default_bmi(self) -> None:
        assert estimate_weight(build_pose(), 170, None) == 64

    def test_broad_shoulders_raise_bmi(self) -> None:
        pose = build_pose(left_shoulder=(77.0, 130.0), right_shoulder=(123.0, 130.0))
        assert estimate_weight(pose, 170, Gender.MALE) == 67

    def test_tall_torso_raises_bmi(self) -> None:
        pose = build_pose(left_hip=(85.0, 210.0), right_hip=(115.0, 210.0))
        assert estimate_weight(pose, 170, Gender.MALE) == 65

    def test_zero_hip_width_skips_adjustments(self) -> None:
        pose = build_pose(left_hip=(100.0, 190.0), right_hip=(100.0, 190.0))
        assert estimate_weight(pose, 170, Gender.MALE) == 64

    def test_requires_height(self) -> None:
        assert estimate_weight(build_pose(), None, Gender.MALE) is None

    def test_low_confidence_hip_is_absent(self) -> None:
        pose = build_pose(right_hip=(115.0, 190.0, 0.35))
        assert estimate_weight(pose, 170, Gender.MALE) is None

    @pytest.mark.parametrize("height", [120, 210, 10_000])
    def test_always_within_bounds(self, height: int) -> None:
        pose = build_pose(left_shoulder=(0.0, 130.0), right_shoulder=(500.0, 130.0))
        weight = estimate_weight(pose, height, Gender.MALE)
        assert weight is not None
        assert 30 <= weight <= 150


# ---------------------------------------------------------------------------
# Fallback and combination
# ---------------------------------------------------------------------------


class TestFallback:
    @pytest.mark.parametrize(
        ("age", "bracket"),
        [
            (5, AgeBracket.CHILD),
            (15, AgeBracket.TEEN),
            (30, AgeBracket.ADULT),
            (70, AgeBracket.SENIOR),
            (None, AgeBracket.ADULT),
        ],
    )
    def test_age_brackets(self, age: int | None, bracket: AgeBracket) -> None:
        assert AgeBracket.for_age(age) == bracket

    def test_gender_specific_row(self) -> None:
        assert fallback_estimate(30, Gender.MALE) == (168, 65)
        assert fallback_estimate(30, Gender.FEMALE) == (155, 55)

    def test_config_tables_are_independent(self) -> None:
        tuned = AnthropometryConfig()
        tuned.fallback_table[Gender.MALE][AgeBracket.ADULT] = (175, 80)

        assert fallback_estimate(30, Gender.MALE, tuned) == (175, 80)
        assert fallback_estimate(30, Gender.MALE) == (168, 65)
        assert AnthropometryConfig().fallback_table[Gender.MALE][AgeBracket.ADULT] == (168, 65)

    def test_unknown_gender_averages_rows(self) -> None:
        height, weight = fallback_estimate(30, None)
        assert height == round((168 + 155) / 2)
        assert weight == 60


class TestEstimateBody:
    def test_pose_estimate(self) -> None:
        estimate = estimate_body(build_pose(), age=34.6, gender=Gender.MALE)
        assert estimate is not None
        assert estimate.age == 35
        assert estimate.height_cm == 170
        assert estimate.weight_kg == 64
        assert estimate.source == EstimateSource.POSE

    def test_low_confidence_pose_falls_back(self) -> None:
        estimate = estimate_body(build_pose(score=0.1), age=30, gender=Gender.FEMALE)
        assert estimate is not None
        assert (estimate.height_cm, estimate.weight_kg) == (155, 55)
        assert estimate.source == EstimateSource.FALLBACK

    def test_missing_pose_falls_back(self) -> None:
        estimate = estimate_body(None, age=8, gender=Gender.MALE)
        assert estimate is not None
        assert (estimate.height_cm, estimate.weight_kg) == (130, 28)

    def test_pose_height_with_uncertain_torso_uses_table_weight(self) -> None:
        pose = build_pose(left_hip=(85.0, 190.0, 0.2))
        estimate = estimate_body(pose, age=30, gender=Gender.MALE)
        assert estimate is not None
        assert estimate.height_cm == 170
        assert estimate.weight_kg == 65
        assert estimate.source == EstimateSource.POSE

    def test_nothing_known_is_absent(self) -> None:
        assert estimate_body(None) is None
        assert estimate_body(build_pose(score=0.1)) is None

    def test_pose_alone_is_enough(self) -> None:
        estimate = estimate_body(build_pose())
        assert estimate is not None
        assert estimate.height_cm == 170
        assert estimate.age is None
