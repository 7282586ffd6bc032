"""
CardSnap — Card Pipeline
=========================

What:  Runs one frame through normalize → recognize → extract.
Who:   CaptureSession (camera captures), CaptureService (HTTP uploads) and
       the `cardsnap extract` CLI command.

Failure policy:
    ImageDecodeError     → CaptureFailure (nothing usable was produced)
    OcrUnavailableError  → degraded CaptureSuccess: image kept, empty fields,
                           the error attached as ``warning``
    extract()            → never raises
    anything else        → propagates to the caller's boundary
"""

import asyncio
import logging
import time
from typing import Optional

from cardsnap.capture.extractor import extract
from cardsnap.capture.models import (
    CapturedFrame,
    CaptureFailure,
    CaptureResult,
    CaptureSuccess,
    ExtractedFields,
)
from cardsnap.capture.normalizer import normalize
from cardsnap.config import settings
from cardsnap.exceptions import ImageDecodeError, OcrUnavailableError
from cardsnap.services.ocr_base import OcrEngine

logger = logging.getLogger(__name__)


class CardPipeline:
    """Stateless sequencing of the capture stages around one OCR engine."""

    def __init__(
        self,
        ocr_engine: OcrEngine,
        target_ratio: Optional[float] = None,
        target_width: Optional[int] = None,
        quality: Optional[int] = None,
    ):
        self.ocr_engine = ocr_engine
        self.target_ratio = target_ratio or settings.card_aspect_ratio
        self.target_width = target_width or settings.card_image_width
        self.quality = quality or settings.card_image_quality

    async def run(self, frame: CapturedFrame) -> CaptureResult:
        start_time = time.perf_counter()

        try:
            image = await asyncio.to_thread(
                normalize,
                frame,
                self.target_ratio,
                self.target_width,
                self.quality,
            )
        except ImageDecodeError as e:
            logger.warning("Normalization failed: %s %s", e.message, e.context)
            return CaptureFailure(error=e)

        try:
            # start() is idempotent; the engine comes up on the first capture only
            await self.ocr_engine.start()
            recognized = await self.ocr_engine.recognize(image)
        except OcrUnavailableError as e:
            logger.warning(
                "OCR unavailable, returning image without fields: %s %s",
                e.message,
                e.context,
            )
            return CaptureSuccess(image=image, fields=ExtractedFields(), warning=e)

        fields = extract(recognized.text)
        logger.info(
            "Pipeline finished in %.0fms: %d chars recognized, fields=%s",
            (time.perf_counter() - start_time) * 1000,
            len(recognized.text),
            sorted(k for k, v in fields.to_dict().items() if v),
        )
        return CaptureSuccess(image=image, fields=fields)
