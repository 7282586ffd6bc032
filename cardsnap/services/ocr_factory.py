"""
CardSnap — OCR Engine Factory
==============================

Builds an OcrEngine from its configured name. Engine modules are imported
lazily so a deployment only needs the libraries of the engine it runs.
"""

import logging
from typing import Optional

from fastapi import Request

from cardsnap.config import SUPPORTED_OCR_ENGINES, settings
from cardsnap.exceptions import OcrUnavailableError
from cardsnap.services.ocr_base import OcrEngine

logger = logging.getLogger(__name__)


def create_ocr_engine(name: Optional[str] = None) -> OcrEngine:
    """
    Create an OCR engine instance (not yet started).

    Args:
        name: "tesseract" or "gemini"; defaults to settings.ocr_engine.

    Raises:
        ValueError: Unknown engine name.
    """
    engine_name = (name or settings.ocr_engine).strip().lower()

    if engine_name == "tesseract":
        from cardsnap.services.tesseract_service import TesseractOcrEngine

        engine: OcrEngine = TesseractOcrEngine()
    elif engine_name == "gemini":
        from cardsnap.services.gemini_service import GeminiOcrEngine

        engine = GeminiOcrEngine()
    else:
        raise ValueError(
            f"Unknown OCR engine '{engine_name}'. "
            f"Supported: {', '.join(sorted(SUPPORTED_OCR_ENGINES))}"
        )

    logger.debug("Created OCR engine '%s'", engine_name)
    return engine


def get_ocr_engine(request: Request) -> OcrEngine:
    """
    FastAPI dependency returning the process-wide engine created in the
    lifespan. Overridden in tests.
    """
    engine = getattr(request.app.state, "ocr_engine", None)
    if engine is None:
        raise OcrUnavailableError(
            message="Text recognition engine is not running",
            context={"engine": settings.ocr_engine},
        )
    return engine
