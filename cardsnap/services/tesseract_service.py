"""
CardSnap — Tesseract OCR Engine
================================

What:  Local OCR engine backed by the tesseract binary through pytesseract.
Why:   Printed business cards are the case Tesseract is built for; it runs
       offline and costs nothing per request.
How:   The JPEG is decoded with Pillow and passed to image_to_data in a worker
       thread (asyncio.to_thread) so the event loop, and with it the camera
       preview, keeps running. Words are regrouped into lines using the
       block / paragraph / line numbers Tesseract reports.
"""

import asyncio
import io
import logging
import time
from typing import Dict, List, Optional, Tuple

import pytesseract
from PIL import Image

from cardsnap.capture.models import NormalizedImage, RecognizedText
from cardsnap.config import settings
from cardsnap.exceptions import OcrUnavailableError
from cardsnap.services.ocr_base import OcrEngine

logger = logging.getLogger(__name__)

# Page segmentation mode 3: fully automatic layout, the right default for the
# scattered blocks of a business card
DEFAULT_TESSERACT_CONFIG = "--psm 3"


def _lines_from_data(data: Dict[str, List]) -> Tuple[str, Optional[float]]:
    """
    Rebuild text lines and a mean word confidence from image_to_data output.

    Entries with confidence -1 are layout rows (page, block, paragraph), not
    words, and are skipped.
    """
    lines: Dict[Tuple[int, int, int], List[str]] = {}
    confidences: List[float] = []

    for i, word in enumerate(data.get("text", [])):
        word = (word or "").strip()
        try:
            conf = float(data["conf"][i])
        except (KeyError, IndexError, TypeError, ValueError):
            conf = -1.0
        if not word or conf < 0:
            continue
        key = (
            int(data["block_num"][i]),
            int(data["par_num"][i]),
            int(data["line_num"][i]),
        )
        lines.setdefault(key, []).append(word)
        confidences.append(conf)

    text = "\n".join(" ".join(words) for _, words in sorted(lines.items()))
    confidence = round(sum(confidences) / len(confidences), 2) if confidences else None
    return text, confidence


class TesseractOcrEngine(OcrEngine):
    """
    OCR engine running the local tesseract binary.

    Tesseract is a subprocess per call, so there is no long-lived worker to
    hold; _start() only verifies the binary is installed.
    """

    name = "tesseract"

    def __init__(
        self,
        language: Optional[str] = None,
        timeout_seconds: Optional[int] = None,
        tesseract_cmd: Optional[str] = None,
        config: str = DEFAULT_TESSERACT_CONFIG,
    ):
        super().__init__()
        self.language = language or settings.ocr_language
        self.timeout_seconds = timeout_seconds or settings.ocr_timeout_seconds
        self.config = config
        cmd = tesseract_cmd or settings.tesseract_cmd
        if cmd:
            pytesseract.pytesseract.tesseract_cmd = cmd

    async def _start(self) -> None:
        try:
            version = await asyncio.to_thread(pytesseract.get_tesseract_version)
        except pytesseract.TesseractNotFoundError as e:
            raise OcrUnavailableError(
                message="Text recognition is not installed on this server",
                context={"engine": self.name, "error": str(e)},
            ) from e
        logger.info("Using tesseract %s (lang=%s)", version, self.language)

    def _recognize_sync(self, image: NormalizedImage) -> Tuple[str, Optional[float]]:
        with Image.open(io.BytesIO(image.data)) as pil_image:
            data = pytesseract.image_to_data(
                pil_image,
                lang=self.language,
                config=self.config,
                timeout=self.timeout_seconds,
                output_type=pytesseract.Output.DICT,
            )
        return _lines_from_data(data)

    async def recognize(self, image: NormalizedImage) -> RecognizedText:
        """
        Run Tesseract over the card image.

        Raises:
            OcrUnavailableError: tesseract missing, crashed, or exceeded the timeout.
        """
        start_time = time.perf_counter()
        try:
            text, confidence = await asyncio.to_thread(self._recognize_sync, image)
        except pytesseract.TesseractNotFoundError as e:
            raise OcrUnavailableError(
                message="Text recognition is not installed on this server",
                context={"engine": self.name, "error": str(e)},
            ) from e
        except RuntimeError as e:
            # pytesseract signals its own timeout with a bare RuntimeError
            logger.warning("Tesseract timed out after %ds", self.timeout_seconds)
            raise OcrUnavailableError(
                message="Text recognition took too long. You can fill in the card manually.",
                context={"engine": self.name, "timeout": self.timeout_seconds},
            ) from e
        except (pytesseract.TesseractError, OSError) as e:
            logger.warning("Tesseract failed: %s", e)
            raise OcrUnavailableError(
                context={"engine": self.name, "error_type": type(e).__name__},
            ) from e

        logger.info(
            "Tesseract recognized %d chars in %.0fms (confidence=%s)",
            len(text),
            (time.perf_counter() - start_time) * 1000,
            confidence,
        )
        return RecognizedText(text=text, confidence=confidence)

    async def health_check(self) -> bool:
        try:
            await asyncio.to_thread(pytesseract.get_tesseract_version)
            return True
        except (pytesseract.TesseractNotFoundError, OSError) as e:
            logger.warning("Tesseract health check failed: %s", e)
            return False
