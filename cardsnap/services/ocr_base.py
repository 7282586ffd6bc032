"""
CardSnap — Abstract OCR Engine Interface
=========================================

What:  Abstract base class defining the contract for text recognition engines.
Why:   The capture pipeline only depends on ``recognize(image) -> text``; the
       engine behind it (local Tesseract, a hosted vision model) is chosen by
       configuration and can be swapped without touching callers.
How:   Concrete engines inherit from OcrEngine and implement _start(),
       recognize(), _close() and health_check().
Who:   Owned by a CaptureSession (one per session) or by the FastAPI app
       (one per process, started in the lifespan).

Lifecycle:
    engine = create_ocr_engine("tesseract")
    async with engine:                 # start() once
        await engine.recognize(img)    # any number of times
                                       # close() guaranteed, even on errors
"""

import logging
from abc import ABC, abstractmethod

from cardsnap.capture.models import NormalizedImage, RecognizedText

logger = logging.getLogger(__name__)


class OcrEngine(ABC):
    """
    Abstract interface for text recognition over a normalized card image.

    Contract:
        - recognize() never blocks the event loop; slow work runs in a
          thread or on a remote service
        - every engine-specific failure is wrapped in OcrUnavailableError
        - start() and close() are idempotent; close() after a failed
          recognize() still releases everything start() acquired
    """

    name: str = "base"

    def __init__(self) -> None:
        self._started = False

    @property
    def started(self) -> bool:
        return self._started

    async def start(self) -> None:
        """Initialize the underlying worker once; later calls are no-ops."""
        if self._started:
            return
        await self._start()
        self._started = True
        logger.info("OCR engine '%s' started", self.name)

    async def close(self) -> None:
        """Release the underlying worker; safe to call any number of times."""
        if not self._started:
            return
        self._started = False
        await self._close()
        logger.info("OCR engine '%s' closed", self.name)

    async def __aenter__(self) -> "OcrEngine":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def _start(self) -> None:
        """Engine-specific initialization hook."""

    async def _close(self) -> None:
        """Engine-specific release hook."""

    @abstractmethod
    async def recognize(self, image: NormalizedImage) -> RecognizedText:
        """
        Recognize the text printed on a card image.

        Args:
            image: JPEG-encoded card image from the normalizer.

        Returns:
            RecognizedText; text is "" when nothing was recognized.

        Raises:
            OcrUnavailableError: The engine failed, timed out or is not installed.
        """
        ...

    @abstractmethod
    async def health_check(self) -> bool:
        """Lightweight availability probe used by GET /health."""
        ...
