"""
CardSnap — Camera Resource Provider
====================================

What:  Acquires a live video stream, grabs single frames and releases it.
Why:   The capture session only needs these three operations; keeping them
       behind CameraProvider lets the session run against a webcam, a test
       double, or any other frame source.
How:   OpenCVCamera wraps cv2.VideoCapture. Every OpenCV call blocks, so each
       one is moved to a worker thread with asyncio.to_thread.

Contract:
    stream = await provider.acquire(constraints)   # CameraAccessError if denied
    frame = await provider.grab_frame(stream)      # CapturedFrame
    await provider.release(stream)                 # idempotent
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional

import cv2

from cardsnap.capture.models import CapturedFrame
from cardsnap.config import settings
from cardsnap.exceptions import CameraAccessError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CameraConstraints:
    """
    Preferred stream parameters. Devices may deliver something else; the
    normalizer makes the final geometry independent of what they grant.
    """

    width: int = 1920
    height: int = 1080
    facing_mode: str = "environment"
    device_index: int = 0

    @classmethod
    def from_settings(cls) -> "CameraConstraints":
        return cls(
            width=settings.camera_width,
            height=settings.camera_height,
            facing_mode=settings.camera_facing_mode,
            device_index=settings.camera_index,
        )


@dataclass
class CameraStream:
    """A granted stream; ``handle`` is provider-specific."""

    constraints: CameraConstraints
    handle: Any = field(default=None, repr=False)
    width: Optional[int] = None
    height: Optional[int] = None
    released: bool = False


class CameraProvider(ABC):
    """Abstract camera resource provider used by CaptureSession."""

    @abstractmethod
    async def acquire(self, constraints: CameraConstraints) -> CameraStream:
        """
        Open a stream honoring the constraints where possible.

        Raises:
            CameraAccessError: Permission denied or no usable device.
        """
        ...

    @abstractmethod
    async def grab_frame(self, stream: CameraStream) -> CapturedFrame:
        """Grab a single frame from an acquired stream."""
        ...

    @abstractmethod
    async def release(self, stream: CameraStream) -> None:
        """Release the stream; calling it again is a no-op."""
        ...


class OpenCVCamera(CameraProvider):
    """
    Local webcam through OpenCV.

    Desktop cameras have no facing concept, so facing_mode is only logged;
    the device is chosen by constraints.device_index.
    """

    # Frames to read and drop after opening; many webcams return dark or
    # half-exposed frames until auto-exposure settles
    WARMUP_FRAMES = 5

    def __init__(self, backend: int = cv2.CAP_ANY):
        self.backend = backend

    def _open(self, constraints: CameraConstraints) -> CameraStream:
        capture = cv2.VideoCapture(constraints.device_index, self.backend)
        if not capture.isOpened():
            capture.release()
            raise CameraAccessError(
                reason=f"no camera at index {constraints.device_index}",
                context={"device_index": constraints.device_index},
            )

        capture.set(cv2.CAP_PROP_FRAME_WIDTH, constraints.width)
        capture.set(cv2.CAP_PROP_FRAME_HEIGHT, constraints.height)
        for _ in range(self.WARMUP_FRAMES):
            capture.read()

        width = int(capture.get(cv2.CAP_PROP_FRAME_WIDTH))
        height = int(capture.get(cv2.CAP_PROP_FRAME_HEIGHT))
        logger.info(
            "Camera %d opened at %dx%d (requested %dx%d, facing=%s)",
            constraints.device_index,
            width,
            height,
            constraints.width,
            constraints.height,
            constraints.facing_mode,
        )
        return CameraStream(constraints=constraints, handle=capture, width=width, height=height)

    async def acquire(self, constraints: CameraConstraints) -> CameraStream:
        try:
            return await asyncio.to_thread(self._open, constraints)
        except cv2.error as e:
            raise CameraAccessError(
                reason=str(e),
                context={"device_index": constraints.device_index},
            ) from e

    def _read(self, stream: CameraStream) -> CapturedFrame:
        ok, frame = stream.handle.read()
        if not ok or frame is None:
            raise CameraAccessError(reason="the camera stopped delivering frames")
        # OpenCV delivers BGR; frames travel as RGB
        rgb = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
        height, width = rgb.shape[:2]
        return CapturedFrame(data=rgb.tobytes(), width=width, height=height, mode="RGB")

    async def grab_frame(self, stream: CameraStream) -> CapturedFrame:
        if stream.released or stream.handle is None:
            raise CameraAccessError(reason="the camera stream was already released")
        return await asyncio.to_thread(self._read, stream)

    async def release(self, stream: CameraStream) -> None:
        if stream.released:
            return
        stream.released = True
        if stream.handle is not None:
            await asyncio.to_thread(stream.handle.release)
            stream.handle = None
        logger.info("Camera %d released", stream.constraints.device_index)
