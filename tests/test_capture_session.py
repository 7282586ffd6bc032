"""
CardSnap — Capture Session Controller Tests
============================================

What:  State machine, resource release and concurrency of CaptureSession.
How:   FakeCamera and FakeOcrEngine from conftest; an asyncio.Event holds
       recognition open so tests can act while the session is PROCESSING.

Test Strategy:
    ✅ Happy path: idle → previewing → done, camera released once
    ✅ OCR failure: degraded success, camera released exactly once
    ✅ Decode failure: FAILED with ImageDecodeError, camera released
    ✅ Camera denied: FAILED with CameraAccessError; retake recovers
    ✅ Second trigger while processing is ignored (one pipeline run)
    ✅ close() mid-processing discards the late result
"""

import asyncio
import threading
from unittest.mock import patch

import pytest

from cardsnap.capture.models import CapturedFrame, CaptureFailure, CaptureState, CaptureSuccess
from cardsnap.capture.normalizer import normalize
from cardsnap.capture.session import CaptureSession
from cardsnap.exceptions import (
    CameraAccessError,
    CaptureError,
    ImageDecodeError,
    OcrUnavailableError,
)

from conftest import FakeCamera, FakeOcrEngine


def _session(camera, engine) -> CaptureSession:
    return CaptureSession(camera, engine, target_width=400)


class TestHappyPath:
    @pytest.mark.asyncio
    async def test_capture_returns_image_and_fields(self, fake_camera, fake_ocr):
        session = _session(fake_camera, fake_ocr)
        assert session.state is CaptureState.IDLE

        assert await session.start() is None
        assert session.state is CaptureState.PREVIEWING

        result = await session.capture()
        assert isinstance(result, CaptureSuccess)
        assert not result.degraded
        assert result.fields.name == "Jane Doe"
        assert result.fields.email == "jane.doe@acme.com"
        assert (result.image.width, result.image.height) == (400, 229)
        assert session.state is CaptureState.DONE
        assert session.result is result
        assert fake_camera.release_calls == 1

    @pytest.mark.asyncio
    async def test_context_manager_closes_engine_and_stream(self, fake_camera, fake_ocr):
        async with _session(fake_camera, fake_ocr) as session:
            await session.start()
        assert session.closed
        assert fake_camera.release_calls == 1
        # Engine was never started, so there is nothing to close
        assert fake_ocr.close_calls == 0

    @pytest.mark.asyncio
    async def test_engine_started_once_and_closed_with_session(self, fake_camera, fake_ocr):
        async with _session(fake_camera, fake_ocr) as session:
            await session.start()
            await session.capture()
            await session.retake()
            await session.capture()
        assert fake_ocr.start_calls == 1
        assert fake_ocr.recognize_calls == 2
        assert fake_ocr.close_calls == 1

    @pytest.mark.asyncio
    async def test_capture_ignored_when_not_previewing(self, fake_camera, fake_ocr):
        session = _session(fake_camera, fake_ocr)
        assert await session.capture() is None
        assert fake_camera.grab_calls == 0


class TestFailurePaths:
    @pytest.mark.asyncio
    async def test_ocr_failure_releases_camera_exactly_once(self, fake_camera):
        """Recognition throwing still returns the image, with empty fields."""
        engine = FakeOcrEngine(error=OcrUnavailableError(message="engine crashed"))
        session = _session(fake_camera, engine)
        await session.start()

        result = await session.capture()

        assert isinstance(result, CaptureSuccess)
        assert result.degraded
        assert result.fields.is_empty()
        assert result.image.data
        assert session.state is CaptureState.DONE
        assert fake_camera.release_calls == 1

        await session.close()
        assert fake_camera.release_calls == 1

    @pytest.mark.asyncio
    async def test_decode_failure_fails_session(self, fake_ocr):
        camera = FakeCamera(CapturedFrame.from_encoded(b"not an image"))
        session = _session(camera, fake_ocr)
        await session.start()

        result = await session.capture()

        assert isinstance(result, CaptureFailure)
        assert isinstance(result.error, ImageDecodeError)
        assert result.kind == "error"
        assert session.state is CaptureState.FAILED
        assert session.error is result.error
        assert camera.release_calls == 1
        assert fake_ocr.recognize_calls == 0

    @pytest.mark.asyncio
    async def test_grab_failure_releases_camera(self, fake_camera, fake_ocr):
        fake_camera.grab_error = CameraAccessError(reason="the camera stopped delivering frames")
        session = _session(fake_camera, fake_ocr)
        await session.start()

        result = await session.capture()

        assert isinstance(result, CaptureFailure)
        assert isinstance(result.error, CameraAccessError)
        assert session.state is CaptureState.FAILED
        assert fake_camera.release_calls == 1

    @pytest.mark.asyncio
    async def test_unexpected_error_is_wrapped(self, fake_camera):
        """Nothing escapes capture(): a stray exception becomes a CaptureError."""
        engine = FakeOcrEngine(error=KeyError("boom"))
        session = _session(fake_camera, engine)
        await session.start()

        result = await session.capture()

        assert isinstance(result, CaptureFailure)
        assert type(result.error) is CaptureError
        assert result.error.context["error_type"] == "KeyError"
        assert fake_camera.release_calls == 1

    @pytest.mark.asyncio
    async def test_camera_denied_then_retake(self, rgb_frame, fake_ocr):
        camera = FakeCamera(rgb_frame, deny=True)
        session = _session(camera, fake_ocr)

        failure = await session.start()

        assert isinstance(failure, CaptureFailure)
        assert isinstance(failure.error, CameraAccessError)
        assert "permission denied" in failure.error.message
        assert session.state is CaptureState.FAILED
        assert camera.release_calls == 0

        camera.deny = False
        assert await session.retake() is None
        assert session.state is CaptureState.PREVIEWING
        assert session.error is None
        assert isinstance(await session.capture(), CaptureSuccess)

    @pytest.mark.asyncio
    async def test_retake_discards_previous_result(self, fake_camera, fake_ocr):
        session = _session(fake_camera, fake_ocr)
        await session.start()
        await session.capture()

        await session.retake()

        assert session.result is None
        assert session.state is CaptureState.PREVIEWING
        assert fake_camera.acquire_calls == 2

    @pytest.mark.asyncio
    async def test_retake_from_previewing_is_rejected(self, fake_camera, fake_ocr):
        session = _session(fake_camera, fake_ocr)
        await session.start()
        with pytest.raises(RuntimeError):
            await session.retake()


class TestConcurrency:
    @pytest.mark.asyncio
    async def test_second_trigger_while_processing_is_ignored(self, fake_camera, fake_ocr):
        fake_ocr.gate = asyncio.Event()
        session = _session(fake_camera, fake_ocr)
        await session.start()

        first = asyncio.create_task(session.capture())
        await fake_ocr.entered.wait()
        assert session.state is CaptureState.PROCESSING

        assert await session.capture() is None

        fake_ocr.gate.set()
        result = await first

        assert isinstance(result, CaptureSuccess)
        assert fake_ocr.recognize_calls == 1
        assert fake_camera.grab_calls == 1
        assert fake_camera.release_calls == 1

    @pytest.mark.asyncio
    async def test_close_during_processing_discards_result(self, fake_camera, fake_ocr):
        fake_ocr.gate = asyncio.Event()
        session = _session(fake_camera, fake_ocr)
        await session.start()

        pending = asyncio.create_task(session.capture())
        await fake_ocr.entered.wait()

        await session.close()
        assert session.closed
        fake_ocr.gate.set()

        assert await pending is None
        assert session.state is CaptureState.CLOSED
        assert session.result is None
        assert fake_camera.release_calls == 1

    @pytest.mark.asyncio
    async def test_close_during_normalize_leaves_engine_closed(self, fake_camera, fake_ocr):
        entered = threading.Event()
        release = threading.Event()

        def slow_normalize(*args):
            entered.set()
            release.wait(5)
            return normalize(*args)

        session = _session(fake_camera, fake_ocr)
        await session.start()

        with patch("cardsnap.capture.pipeline.normalize", side_effect=slow_normalize):
            pending = asyncio.create_task(session.capture())
            await asyncio.to_thread(entered.wait, 5)

            await session.close()
            assert not fake_ocr.started
            release.set()

            assert await pending is None

        assert fake_ocr.start_calls == 1
        assert fake_ocr.close_calls == 1
        assert not fake_ocr.started
        assert fake_camera.release_calls == 1

    @pytest.mark.asyncio
    async def test_closed_session_cannot_start(self, fake_camera, fake_ocr):
        session = _session(fake_camera, fake_ocr)
        await session.close()
        with pytest.raises(RuntimeError):
            await session.start()
        assert await session.capture() is None
