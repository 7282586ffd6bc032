"""
CardSnap — Capture Session Controller
======================================

What:  Drives one capture: camera stream → frame → CardPipeline → result.
Who:   The `cardsnap capture` CLI and any interactive front end.

State Machine:

    idle ──start()──▶ requesting ──granted──▶ previewing ──capture()──▶ capturing
      ▲                    │                                                │
      │                 denied                                         frame grabbed,
      │                    ▼                                           camera released
      │                 failed ◀───────── decode / unexpected error ──── processing
      │                    │                                                │
      └──── retake() ──────┴──────────────── retake() ◀──────── done ◀─────┘
                                                                  (OCR failure: done,
                                                                   degraded)
    any state ──close()──▶ closed (terminal)

Guarantees:
    - at most one pipeline run in flight; capture() while capturing or
      processing returns None and is not queued
    - the camera stream is released exactly once on every path
    - every CaptureError (and any unexpected exception) ends up in a
      CaptureFailure result; nothing escapes capture()
    - a result that resolves after close() is discarded
    - an OCR engine the pipeline started after close() is closed before
      capture() returns
"""

import logging
from typing import Optional

from cardsnap.capture.camera import CameraConstraints, CameraProvider, CameraStream
from cardsnap.capture.models import (
    CaptureFailure,
    CaptureResult,
    CaptureState,
    CaptureSuccess,
)
from cardsnap.capture.pipeline import CardPipeline
from cardsnap.exceptions import CaptureError
from cardsnap.services.ocr_base import OcrEngine

logger = logging.getLogger(__name__)


class CaptureSession:
    """
    Owns the camera stream and the OCR engine of one capture session.

    Usage:
        async with CaptureSession(OpenCVCamera(), create_ocr_engine()) as session:
            failure = await session.start()
            if failure is None:
                result = await session.capture()
    """

    def __init__(
        self,
        camera: CameraProvider,
        ocr_engine: OcrEngine,
        constraints: Optional[CameraConstraints] = None,
        target_ratio: Optional[float] = None,
        target_width: Optional[int] = None,
        quality: Optional[int] = None,
    ):
        self._camera = camera
        self._ocr_engine = ocr_engine
        self._constraints = constraints or CameraConstraints.from_settings()
        self._pipeline = CardPipeline(
            ocr_engine,
            target_ratio=target_ratio,
            target_width=target_width,
            quality=quality,
        )
        self._state = CaptureState.IDLE
        self._stream: Optional[CameraStream] = None
        self._error: Optional[CaptureError] = None
        self._result: Optional[CaptureResult] = None

    @property
    def state(self) -> CaptureState:
        return self._state

    @property
    def error(self) -> Optional[CaptureError]:
        """Last error that moved the session to FAILED."""
        return self._error

    @property
    def result(self) -> Optional[CaptureResult]:
        return self._result

    @property
    def closed(self) -> bool:
        return self._state is CaptureState.CLOSED

    async def __aenter__(self) -> "CaptureSession":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # ── Transitions ──────────────────────────────────────────────────────

    def _fail(self, error: CaptureError) -> CaptureFailure:
        self._state = CaptureState.FAILED
        self._error = error
        failure = CaptureFailure(error=error)
        self._result = failure
        return failure

    async def _release_stream(self) -> None:
        # Detach before awaiting so a concurrent close() cannot release twice
        stream, self._stream = self._stream, None
        if stream is not None:
            await self._camera.release(stream)

    async def start(self) -> Optional[CaptureFailure]:
        """
        Acquire the camera and enter PREVIEWING.

        Returns:
            None when the stream was granted, CaptureFailure(CameraAccessError)
            when it was denied or the device is unusable.

        Raises:
            RuntimeError: The session is closed or a capture is in progress.
        """
        if self.closed:
            raise RuntimeError("Capture session is closed")
        if self._state is CaptureState.PREVIEWING:
            return None
        if self._state not in (CaptureState.IDLE, CaptureState.DONE, CaptureState.FAILED):
            raise RuntimeError(f"Cannot start a capture session in state '{self._state.value}'")

        self._error = None
        self._result = None
        self._state = CaptureState.REQUESTING

        try:
            stream = await self._camera.acquire(self._constraints)
        except CaptureError as e:
            logger.warning("Camera access failed: %s", e.message)
            return self._fail(e)
        except Exception as e:
            logger.exception("Unexpected error while acquiring the camera")
            return self._fail(CaptureError(context={"error_type": type(e).__name__}))

        if self.closed:
            # Closed while the permission request was pending
            await self._camera.release(stream)
            return None

        self._stream = stream
        self._state = CaptureState.PREVIEWING
        logger.info("Capture session previewing")
        return None

    async def capture(self) -> Optional[CaptureResult]:
        """
        Grab one frame and run it through the pipeline.

        Returns:
            The CaptureResult, or None when the trigger was ignored (not
            previewing) or the session was closed before the result arrived.
        """
        if self._state is not CaptureState.PREVIEWING:
            logger.debug("Capture trigger ignored in state '%s'", self._state.value)
            return None

        self._state = CaptureState.CAPTURING
        stream = self._stream
        try:
            try:
                frame = await self._camera.grab_frame(stream)
            finally:
                await self._release_stream()

            if self.closed:
                return None
            self._state = CaptureState.PROCESSING
            result = await self._pipeline.run(frame)
        except CaptureError as e:
            logger.warning("Capture failed: %s", e.message)
            result = CaptureFailure(error=e)
        except Exception as e:
            logger.exception("Unexpected error during capture")
            result = CaptureFailure(
                error=CaptureError(context={"error_type": type(e).__name__}),
            )

        if self.closed:
            # close() may have run before the pipeline started the engine
            await self._ocr_engine.close()
            logger.info("Discarding capture result that arrived after close")
            return None

        if isinstance(result, CaptureSuccess):
            self._state = CaptureState.DONE
            self._result = result
            return result
        return self._fail(result.error)

    async def retake(self) -> Optional[CaptureFailure]:
        """Discard the previous capture and start over; valid from DONE or FAILED."""
        if self._state not in (CaptureState.DONE, CaptureState.FAILED):
            raise RuntimeError(f"Cannot retake from state '{self._state.value}'")
        self._result = None
        self._error = None
        self._state = CaptureState.IDLE
        return await self.start()

    async def close(self) -> None:
        """Release the stream and the OCR engine; the session cannot be reused."""
        if self.closed:
            return
        self._state = CaptureState.CLOSED
        try:
            await self._release_stream()
        finally:
            await self._ocr_engine.close()
        logger.info("Capture session closed")
