"""Value types shared by the biometric pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum

FaceDescriptor = tuple[float, ...]


class Gender(StrEnum):
    MALE = "male"
    FEMALE = "female"

    @classmethod
    def parse(cls, value: object) -> Gender | None:
        """Map free-form provider/client labels onto the enum, or None."""
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            return None
        try:
            return cls(value.strip().lower())
        except ValueError:
            return None


class EstimateSource(StrEnum):
    POSE = "pose"
    FALLBACK = "fallback"


@dataclass(frozen=True)
class Point:
    x: float
    y: float


@dataclass(frozen=True)
class BoundingBox:
    """Face box in pixel coordinates of the analysed frame."""

    x: float
    y: float
    width: float
    height: float


@dataclass(frozen=True)
class FaceDetection:
    """A single face as reported by the inference provider.

    Landmarks follow the 68-point layout; the mouth occupies indices 48-67.
    An empty tuple means the provider could not place landmarks.
    """

    box: BoundingBox
    landmarks: tuple[Point, ...] = ()
    embedding: FaceDescriptor | None = None
    age: float | None = None
    gender: Gender | None = None


@dataclass(frozen=True)
class PoseKeypoint:
    name: str
    x: float
    y: float
    score: float


@dataclass(frozen=True)
class Pose:
    """Body keypoints for one detected person."""

    keypoints: tuple[PoseKeypoint, ...]

    def get(self, name: str) -> PoseKeypoint | None:
        for keypoint in self.keypoints:
            if keypoint.name == name:
                return keypoint
        return None


@dataclass(frozen=True)
class DemographicEstimate:
    """Best-effort demographics. Every field is independently optional."""

    age: int | None = None
    gender: Gender | None = None
    height_cm: int | None = None
    weight_kg: int | None = None
    source: EstimateSource | None = None

    @property
    def is_empty(self) -> bool:
        return self.age is None and self.gender is None and self.height_cm is None and self.weight_kg is None


@dataclass(frozen=True)
class CaptureResult:
    """Outcome of one capture event. A missing descriptor is a valid result."""

    image: bytes = field(repr=False)
    descriptor: FaceDescriptor | None = None
    demographics: DemographicEstimate | None = None
