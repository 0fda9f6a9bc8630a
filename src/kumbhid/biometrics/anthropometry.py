"""Height and weight estimation from body-pose keypoints.

Height is scaled from the eye-to-ankle span, using the eye-to-nose span as
a stand-in for head height so no camera calibration is needed. Weight
starts from a gender baseline BMI and nudges it by body proportions.
When the pose is missing or too uncertain, a (gender, age bracket) lookup
table supplies representative values instead.

All constants are hand-tuned heuristics for the registration population and
are exposed through :class:`AnthropometryConfig` rather than hard-coded.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING

from kumbhid.biometrics.types import DemographicEstimate, EstimateSource, Gender

if TYPE_CHECKING:
    from kumbhid.biometrics.types import Pose, PoseKeypoint

logger = logging.getLogger(__name__)

_EPSILON = 1e-6


class AgeBracket(StrEnum):
    CHILD = "child"
    TEEN = "teen"
    ADULT = "adult"
    SENIOR = "senior"

    @classmethod
    def for_age(cls, age: float | None) -> AgeBracket:
        if age is None:
            return cls.ADULT
        if age < 13:
            return cls.CHILD
        if age < 18:
            return cls.TEEN
        if age < 60:
            return cls.ADULT
        return cls.SENIOR


# (height_cm, weight_kg) per gender and age bracket.
_DEFAULT_FALLBACK_TABLE: dict[Gender, dict[AgeBracket, tuple[int, int]]] = {
    Gender.MALE: {
        AgeBracket.CHILD: (130, 28),
        AgeBracket.TEEN: (160, 50),
        AgeBracket.ADULT: (168, 65),
        AgeBracket.SENIOR: (164, 62),
    },
    Gender.FEMALE: {
        AgeBracket.CHILD: (128, 27),
        AgeBracket.TEEN: (152, 45),
        AgeBracket.ADULT: (155, 55),
        AgeBracket.SENIOR: (151, 52),
    },
}


@dataclass(frozen=True)
class AnthropometryConfig:
    """Tunable constants for pose-based body estimation."""

    min_height_confidence: float = 0.3
    min_weight_confidence: float = 0.4
    eye_to_ankle_fraction: float = 0.88
    head_to_eye_nose_ratio: float = 3.0
    average_head_height_cm: float = 22.0
    min_height_cm: int = 120
    max_height_cm: int = 210
    min_weight_kg: int = 30
    max_weight_kg: int = 150
    baseline_bmi: dict[Gender, float] = field(
        default_factory=lambda: {Gender.MALE: 22.0, Gender.FEMALE: 21.0},
    )
    default_bmi: float = 22.0
    broad_shoulder_ratio: float = 1.35
    broad_shoulder_multiplier: float = 1.05
    tall_torso_ratio: float = 2.2
    tall_torso_multiplier: float = 1.03
    fallback_table: dict[Gender, dict[AgeBracket, tuple[int, int]]] = field(
        default_factory=lambda: {gender: dict(rows) for gender, rows in _DEFAULT_FALLBACK_TABLE.items()},
    )


DEFAULT_CONFIG = AnthropometryConfig()


def _distance(ax: float, ay: float, bx: float, by: float) -> float:
    return math.hypot(bx - ax, by - ay)


def _clamp(value: float, low: int, high: int) -> int:
    if math.isnan(value):
        return low
    if math.isinf(value):
        return high if value > 0 else low
    return max(low, min(high, round(value)))


def _confident(pose: Pose, names: tuple[str, ...], threshold: float) -> list[PoseKeypoint] | None:
    found: list[PoseKeypoint] = []
    for name in names:
        keypoint = pose.get(name)
        if keypoint is None or keypoint.score < threshold:
            return None
        found.append(keypoint)
    return found


def estimate_height(pose: Pose, config: AnthropometryConfig = DEFAULT_CONFIG) -> int | None:
    """Standing height in cm, or None if the required keypoints are uncertain."""
    required = _confident(pose, ("left_eye", "right_eye", "nose"), config.min_height_confidence)
    if required is None:
        return None
    left_eye, right_eye, nose = required

    ankles = [kp for kp in (pose.get("left_ankle"), pose.get("right_ankle")) if kp is not None]
    if not ankles:
        return None
    ankle = max(ankles, key=lambda kp: kp.score)
    if ankle.score < config.min_height_confidence:
        return None

    eye_x = (left_eye.x + right_eye.x) / 2
    eye_y = (left_eye.y + right_eye.y) / 2
    eye_to_ankle_px = _distance(eye_x, eye_y, ankle.x, ankle.y)
    head_px = config.head_to_eye_nose_ratio * _distance(eye_x, eye_y, nose.x, nose.y)

    if head_px <= _EPSILON:
        # Scale is unbounded; any visible body span saturates the upper clamp.
        raw_height = math.inf if eye_to_ankle_px > _EPSILON else 0.0
    else:
        cm_per_px = config.average_head_height_cm / head_px
        raw_height = (eye_to_ankle_px * cm_per_px) / config.eye_to_ankle_fraction

    return _clamp(raw_height, config.min_height_cm, config.max_height_cm)


def estimate_weight(
    pose: Pose,
    height_cm: float | None,
    gender: Gender | None = None,
    config: AnthropometryConfig = DEFAULT_CONFIG,
) -> int | None:
    """Body weight in kg from height and torso proportions, or None."""
    if height_cm is None or height_cm <= 0:
        return None
    required = _confident(
        pose,
        ("left_shoulder", "right_shoulder", "left_hip", "right_hip"),
        config.min_weight_confidence,
    )
    if required is None:
        return None
    left_shoulder, right_shoulder, left_hip, right_hip = required

    shoulder_width = _distance(left_shoulder.x, left_shoulder.y, right_shoulder.x, right_shoulder.y)
    hip_width = _distance(left_hip.x, left_hip.y, right_hip.x, right_hip.y)
    torso_height = _distance(
        (left_shoulder.x + right_shoulder.x) / 2,
        (left_shoulder.y + right_shoulder.y) / 2,
        (left_hip.x + right_hip.x) / 2,
        (left_hip.y + right_hip.y) / 2,
    )

    bmi = config.baseline_bmi.get(gender, config.default_bmi)  # type: ignore[arg-type]
    if hip_width > _EPSILON:
        if shoulder_width / hip_width > config.broad_shoulder_ratio:
            bmi *= config.broad_shoulder_multiplier
        if torso_height / hip_width > config.tall_torso_ratio:
            bmi *= config.tall_torso_multiplier

    height_m = height_cm / 100
    return _clamp(bmi * height_m * height_m, config.min_weight_kg, config.max_weight_kg)


def fallback_estimate(
    age: float | None,
    gender: Gender | None,
    config: AnthropometryConfig = DEFAULT_CONFIG,
) -> tuple[int, int]:
    """Representative (height_cm, weight_kg) for a gender and age bracket.

    An unknown gender averages the male and female rows.
    """
    bracket = AgeBracket.for_age(age)
    if gender is not None and gender in config.fallback_table:
        return config.fallback_table[gender][bracket]

    rows = [table[bracket] for table in config.fallback_table.values()]
    height = round(sum(row[0] for row in rows) / len(rows))
    weight = round(sum(row[1] for row in rows) / len(rows))
    return height, weight


def estimate_body(
    pose: Pose | None,
    age: float | None = None,
    gender: Gender | None = None,
    config: AnthropometryConfig = DEFAULT_CONFIG,
) -> DemographicEstimate | None:
    """Combine pose-derived measurements with the demographic fallback.

    Returns None only when there is no usable pose and neither age nor
    gender is known.
    """
    rounded_age = round(age) if age is not None else None

    height = estimate_height(pose, config) if pose is not None else None
    if height is not None:
        weight = estimate_weight(pose, height, gender, config)  # type: ignore[arg-type]
        if weight is None:
            _, weight = fallback_estimate(age, gender, config)
        return DemographicEstimate(
            age=rounded_age,
            gender=gender,
            height_cm=height,
            weight_kg=weight,
            source=EstimateSource.POSE,
        )

    if age is None and gender is None:
        return None

    logger.debug("Pose unusable; falling back to demographic table (age=%s, gender=%s)", age, gender)
    height, weight = fallback_estimate(age, gender, config)
    return DemographicEstimate(
        age=rounded_age,
        gender=gender,
        height_cm=height,
        weight_kg=weight,
        source=EstimateSource.FALLBACK,
    )
