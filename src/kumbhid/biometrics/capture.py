"""Capture pipeline: one frozen frame in, one :class:`CaptureResult` out.

Face extraction (embedding, age, gender) and pose extraction run
concurrently against the same frame. Either can fail or time out; the
result simply lacks the fields that step would have produced.
"""

from __future__ import annotations

import asyncio
import logging
import math
from typing import TYPE_CHECKING

from kumbhid.biometrics.anthropometry import DEFAULT_CONFIG, estimate_body
from kumbhid.biometrics.types import CaptureResult
from kumbhid.exceptions import CaptureError, InferenceUnavailableError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from kumbhid.biometrics.anthropometry import AnthropometryConfig
    from kumbhid.biometrics.provider import InferenceProvider
    from kumbhid.biometrics.types import FaceDetection, Pose

logger = logging.getLogger(__name__)


class CapturePipeline:
    """Turns a confirmed frame into descriptor plus demographics."""

    def __init__(
        self,
        provider: InferenceProvider,
        timeout: float | None = None,
        descriptor_length: int | None = None,
        anthropometry: AnthropometryConfig = DEFAULT_CONFIG,
    ) -> None:
        self._provider = provider
        self._timeout = timeout
        self._descriptor_length = descriptor_length
        self._anthropometry = anthropometry

    async def capture(self, image: bytes) -> CaptureResult:
        """Extract everything available from ``image``.

        Raises:
            CaptureError: If the frame payload is empty.
        """
        if not image:
            raise CaptureError("Captured frame is empty")

        face, pose = await asyncio.gather(self._extract_face(image), self._extract_pose(image))

        descriptor = face.embedding if face is not None else None
        if descriptor is not None and self._descriptor_length and len(descriptor) != self._descriptor_length:
            logger.warning(
                "Discarding descriptor of length %d (expected %d)",
                len(descriptor),
                self._descriptor_length,
            )
            descriptor = None
        elif descriptor is not None and not all(math.isfinite(value) for value in descriptor):
            logger.warning("Discarding descriptor with non-finite values")
            descriptor = None

        demographics = estimate_body(
            pose,
            age=face.age if face is not None else None,
            gender=face.gender if face is not None else None,
            config=self._anthropometry,
        )

        logger.info(
            "Capture complete (descriptor=%s, demographics=%s)",
            descriptor is not None,
            demographics.source if demographics is not None else None,
        )
        return CaptureResult(image=image, descriptor=descriptor, demographics=demographics)

    async def capture_from(self, frame_source: Callable[[], Awaitable[bytes]]) -> CaptureResult:
        """Freeze a frame from ``frame_source`` and capture it.

        Raises:
            CaptureError: If the frame source cannot deliver a frame.
        """
        try:
            frame = await frame_source()
        except OSError as exc:
            raise CaptureError(f"Frame source failed: {exc}") from exc
        return await self.capture(frame)

    # -- Internal -----------------------------------------------------------

    async def _extract_face(self, image: bytes) -> FaceDetection | None:
        try:
            faces = await asyncio.wait_for(self._provider.detect_faces(image), timeout=self._timeout)
        except (InferenceUnavailableError, TimeoutError) as exc:
            logger.warning("Face extraction degraded: %r", exc)
            return None
        except Exception:
            logger.exception("Face extraction failed")
            return None
        if not faces:
            return None
        # Single identity per capture: keep the most prominent face.
        return max(faces, key=lambda face: face.box.width * face.box.height)

    async def _extract_pose(self, image: bytes) -> Pose | None:
        try:
            poses = await asyncio.wait_for(self._provider.detect_pose(image), timeout=self._timeout)
        except (InferenceUnavailableError, TimeoutError) as exc:
            logger.warning("Pose extraction degraded: %r", exc)
            return None
        except Exception:
            logger.exception("Pose extraction failed")
            return None
        return poses[0] if poses else None
