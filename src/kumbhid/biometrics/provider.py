"""Inference provider capability and its HTTP implementation.

The face and pose networks run outside this service. The core only depends
on the :class:`InferenceProvider` protocol; :class:`HttpInferenceProvider`
talks to one or more remote inference endpoints, falling over to the next
endpoint in order when one is unreachable.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Protocol, TypeVar

import httpx

from kumbhid.biometrics.types import BoundingBox, FaceDetection, Gender, Point, Pose, PoseKeypoint
from kumbhid.exceptions import InferenceUnavailableError

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

logger = logging.getLogger(__name__)

T = TypeVar("T")


class InferenceProvider(Protocol):
    """Protocol for face and pose inference backends."""

    async def detect_faces(self, image: bytes) -> list[FaceDetection]:
        """Detect faces in an encoded image.

        Args:
            image: Encoded image bytes (JPEG/PNG).

        Returns:
            Zero or more detections with box, landmarks and, when the backend
            computes them, embedding and age/gender.

        Raises:
            InferenceUnavailableError: If no backend could be reached.
        """
        ...

    async def detect_pose(self, image: bytes) -> list[Pose]:
        """Detect body poses in an encoded image.

        Raises:
            InferenceUnavailableError: If no backend could be reached.
        """
        ...


# ---------------------------------------------------------------------------
# Payload parsing
# ---------------------------------------------------------------------------


def _parse_point(raw: object) -> Point:
    if isinstance(raw, dict):
        return Point(x=float(raw["x"]), y=float(raw["y"]))
    x, y = raw  # type: ignore[misc]
    return Point(x=float(x), y=float(y))


def parse_faces(payload: object) -> list[FaceDetection]:
    """Convert a provider JSON payload into :class:`FaceDetection` objects.

    Raises:
        ValueError: If the payload does not have the expected shape.
    """
    if not isinstance(payload, list):
        raise ValueError("face payload must be a list")

    faces: list[FaceDetection] = []
    for item in payload:
        try:
            box = item["box"]
            embedding = item.get("embedding")
            age = item.get("age")
            faces.append(
                FaceDetection(
                    box=BoundingBox(
                        x=float(box["x"]),
                        y=float(box["y"]),
                        width=float(box["width"]),
                        height=float(box["height"]),
                    ),
                    landmarks=tuple(_parse_point(p) for p in item.get("landmarks") or ()),
                    embedding=tuple(float(v) for v in embedding) if embedding else None,
                    age=float(age) if age is not None else None,
                    gender=Gender.parse(item.get("gender")),
                )
            )
        except (KeyError, TypeError) as exc:
            raise ValueError(f"malformed face entry: {exc}") from exc
    return faces


def parse_poses(payload: object) -> list[Pose]:
    """Convert a provider JSON payload into :class:`Pose` objects.

    Raises:
        ValueError: If the payload does not have the expected shape.
    """
    if not isinstance(payload, list):
        raise ValueError("pose payload must be a list")

    poses: list[Pose] = []
    for item in payload:
        try:
            keypoints = tuple(
                PoseKeypoint(
                    name=str(kp["name"]),
                    x=float(kp["x"]),
                    y=float(kp["y"]),
                    score=float(kp.get("score", 0.0)),
                )
                for kp in item["keypoints"]
            )
        except (KeyError, TypeError) as exc:
            raise ValueError(f"malformed pose entry: {exc}") from exc
        poses.append(Pose(keypoints=keypoints))
    return poses


# ---------------------------------------------------------------------------
# HTTP implementation
# ---------------------------------------------------------------------------


class HttpInferenceProvider:
    """Calls remote inference endpoints, one attempt each, in configured order."""

    def __init__(
        self,
        endpoints: Sequence[str],
        timeout: float = 5.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        if not endpoints:
            raise ValueError("At least one inference endpoint is required")
        self._endpoints = [endpoint.rstrip("/") for endpoint in endpoints]
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None

    @property
    def endpoints(self) -> list[str]:
        return list(self._endpoints)

    async def detect_faces(self, image: bytes) -> list[FaceDetection]:
        """Detect faces via the first endpoint that answers."""
        return await self._post("detect-faces", image, parse_faces)

    async def detect_pose(self, image: bytes) -> list[Pose]:
        """Detect poses via the first endpoint that answers."""
        return await self._post("detect-pose", image, parse_poses)

    async def aclose(self) -> None:
        """Close the underlying HTTP client if this provider created it."""
        if self._owns_client:
            await self._client.aclose()

    # -- Internal -----------------------------------------------------------

    async def _post(self, path: str, image: bytes, parse: Callable[[object], T]) -> T:
        errors: list[str] = []
        for endpoint in self._endpoints:
            url = f"{endpoint}/{path}"
            try:
                response = await self._client.post(
                    url,
                    files={"file": ("frame.jpg", image, "image/jpeg")},
                )
                response.raise_for_status()
                return parse(response.json())
            except (httpx.HTTPError, ValueError) as exc:
                logger.warning("Inference endpoint %s failed: %s", url, exc)
                errors.append(f"{url}: {exc}")

        raise InferenceUnavailableError(
            f"All inference endpoints failed for {path}",
            details={"errors": errors},
        )
