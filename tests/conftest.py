"""Shared fixtures: an in-process inference provider and detection builders."""

from __future__ import annotations

import asyncio
from collections.abc import Callable

import pytest

from kumbhid.biometrics.types import BoundingBox, FaceDetection, Gender, Point, Pose, PoseKeypoint

DESCRIPTOR_LENGTH = 128


class FakeProvider:
    """Scriptable stand-in for the remote inference service."""

    def __init__(self) -> None:
        self.faces: list[FaceDetection] = []
        self.poses: list[Pose] = []
        self.face_error: Exception | None = None
        self.pose_error: Exception | None = None
        self.face_gate: asyncio.Event | None = None
        self.face_calls = 0
        self.pose_calls = 0

    async def detect_faces(self, image: bytes) -> list[FaceDetection]:
        self.face_calls += 1
        if self.face_gate is not None:
            await self.face_gate.wait()
        if self.face_error is not None:
            raise self.face_error
        return list(self.faces)

    async def detect_pose(self, image: bytes) -> list[Pose]:
        self.pose_calls += 1
        if self.pose_error is not None:
            raise self.pose_error
        return list(self.poses)


def build_face(
    box_height: float = 100.0,
    mouth_gap: float = 2.0,
    with_landmarks: bool = True,
    embedding: tuple[float, ...] | None = None,
    age: float | None = None,
    gender: Gender | None = None,
    box_width: float = 80.0,
) -> FaceDetection:
    landmarks: tuple[Point, ...] = ()
    if with_landmarks:
        points = [Point(50.0, 50.0)] * 68
        points[51] = Point(50.0, 60.0)
        points[57] = Point(50.0, 60.0 + mouth_gap)
        landmarks = tuple(points)
    return FaceDetection(
        box=BoundingBox(x=10.0, y=10.0, width=box_width, height=box_height),
        landmarks=landmarks,
        embedding=embedding,
        age=age,
        gender=gender,
    )


# Standing subject: eye-to-nose 10px, eye-to-ankle 204px -> 170 cm.
_STANDING = {
    "left_eye": (90.0, 100.0),
    "right_eye": (110.0, 100.0),
    "nose": (100.0, 110.0),
    "left_shoulder": (80.0, 130.0),
    "right_shoulder": (120.0, 130.0),
    "left_hip": (85.0, 190.0),
    "right_hip": (115.0, 190.0),
    "left_ankle": (100.0, 304.0),
    "right_ankle": (100.0, 304.0),
}


def build_pose(score: float = 0.9, **overrides: object) -> Pose:
    """Standing pose; pass ``name=(x, y)``, ``name=(x, y, score)`` or ``name=None`` to override."""
    points: dict[str, object] = dict(_STANDING)
    points.update(overrides)
    keypoints = []
    for name, value in points.items():
        if value is None:
            continue
        x, y, *rest = value  # type: ignore[misc]
        keypoints.append(PoseKeypoint(name=name, x=x, y=y, score=rest[0] if rest else score))
    return Pose(keypoints=tuple(keypoints))


def descriptor(first: float = 0.0, length: int = DESCRIPTOR_LENGTH) -> tuple[float, ...]:
    """A descriptor whose distance from the zero vector is ``abs(first)``."""
    return (first,) + (0.0,) * (length - 1)


@pytest.fixture()
def fake_provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture()
def make_face() -> Callable[..., FaceDetection]:
    return build_face


@pytest.fixture()
def make_pose() -> Callable[..., Pose]:
    return build_pose


@pytest.fixture()
def make_descriptor() -> Callable[..., tuple[float, ...]]:
    return descriptor
