"""Liveness and capture-quality validation.

:func:`validate_frame` is a pure policy over one frame's detections.
:class:`LivenessMonitor` drives it on a fixed cadence against a live frame
source, skipping a tick whenever the previous check is still running.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

from kumbhid.exceptions import CaptureError, InferenceUnavailableError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Sequence

    from kumbhid.biometrics.provider import InferenceProvider
    from kumbhid.biometrics.types import FaceDetection

logger = logging.getLogger(__name__)

DEFAULT_MOUTH_OPEN_THRESHOLD: float = 0.06

# 68-point layout: mouth spans 48-67, upper-lip centre 51, lower-lip centre 57.
MOUTH_TOP_CENTER = 51
MOUTH_BOTTOM_CENTER = 57


class ReasonCode(StrEnum):
    NO_FACE = "NO_FACE"
    MULTIPLE_FACES = "MULTIPLE_FACES"
    MOUTH_OPEN = "MOUTH_OPEN"
    LANDMARKS_UNAVAILABLE = "LANDMARKS_UNAVAILABLE"
    READY = "READY"


@dataclass(frozen=True)
class Verdict:
    """Whether the frame may be captured, and why."""

    is_valid: bool
    reason: ReasonCode
    mouth_opening: float | None = None


def mouth_opening_ratio(face: FaceDetection) -> float | None:
    """Vertical lip gap divided by face box height, or None without landmarks."""
    if len(face.landmarks) <= MOUTH_BOTTOM_CENTER:
        return None
    top = face.landmarks[MOUTH_TOP_CENTER]
    bottom = face.landmarks[MOUTH_BOTTOM_CENTER]
    face_height = face.box.height if face.box.height > 0 else 1.0
    return abs(top.y - bottom.y) / face_height


def validate_frame(
    detections: Sequence[FaceDetection],
    mouth_open_threshold: float = DEFAULT_MOUTH_OPEN_THRESHOLD,
) -> Verdict:
    """Decide whether the current frame is acceptable to capture. Never raises."""
    if not detections:
        return Verdict(is_valid=False, reason=ReasonCode.NO_FACE)
    if len(detections) > 1:
        return Verdict(is_valid=False, reason=ReasonCode.MULTIPLE_FACES)

    opening = mouth_opening_ratio(detections[0])
    if opening is None:
        return Verdict(is_valid=True, reason=ReasonCode.LANDMARKS_UNAVAILABLE)
    if opening < mouth_open_threshold:
        return Verdict(is_valid=True, reason=ReasonCode.READY, mouth_opening=opening)
    return Verdict(is_valid=False, reason=ReasonCode.MOUTH_OPEN, mouth_opening=opening)


class LivenessMonitor:
    """Polls a frame source and keeps the latest verdict.

    Checks never overlap: a tick that fires while the previous check is
    still awaiting inference is dropped and counted in ``skipped_ticks``.
    """

    def __init__(
        self,
        provider: InferenceProvider,
        frame_source: Callable[[], Awaitable[bytes]],
        poll_interval: float = 0.2,
        mouth_open_threshold: float = DEFAULT_MOUTH_OPEN_THRESHOLD,
    ) -> None:
        self._provider = provider
        self._frame_source = frame_source
        self._poll_interval = poll_interval
        self._mouth_open_threshold = mouth_open_threshold
        self._latest = Verdict(is_valid=False, reason=ReasonCode.NO_FACE)
        self._busy = False
        self._skipped_ticks = 0
        self._task: asyncio.Task[None] | None = None
        self._inflight: set[asyncio.Task[Verdict | None]] = set()

    @property
    def latest(self) -> Verdict:
        return self._latest

    @property
    def skipped_ticks(self) -> int:
        return self._skipped_ticks

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def tick(self) -> Verdict | None:
        """Run one check, or return None if the previous one is still in flight."""
        if self._busy:
            self._skipped_ticks += 1
            logger.debug("Skipping validation tick; previous check still running")
            return None

        self._busy = True
        try:
            frame = await self._frame_source()
            detections = await self._provider.detect_faces(frame)
            verdict = validate_frame(detections, self._mouth_open_threshold)
        except (InferenceUnavailableError, CaptureError, OSError) as exc:
            logger.warning("Validation check degraded: %s", exc)
            verdict = Verdict(is_valid=False, reason=ReasonCode.NO_FACE)
        except Exception:
            logger.exception("Validation check failed")
            verdict = Verdict(is_valid=False, reason=ReasonCode.NO_FACE)
        finally:
            self._busy = False

        self._latest = verdict
        return verdict

    def start(self) -> None:
        """Begin polling on the running event loop."""
        if self.running:
            return
        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        """Stop polling and wait for any in-flight check to finish."""
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        if self._inflight:
            await asyncio.gather(*self._inflight, return_exceptions=True)

    async def _run(self) -> None:
        while True:
            if self._busy or self._inflight:
                self._skipped_ticks += 1
                logger.debug("Skipping validation tick; previous check still running")
            else:
                task = asyncio.create_task(self.tick())
                self._inflight.add(task)
                task.add_done_callback(self._inflight.discard)
            await asyncio.sleep(self._poll_interval)
