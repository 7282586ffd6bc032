"""
CardSnap — Capture Service (HTTP capture orchestrator)
=======================================================

Orchestration Flow (POST /api/capture):
    ┌──────────┐    ┌────────────┐    ┌──────────────────────────┐    ┌──────────┐
    │  Upload  │───▶│  Validate  │───▶│  CardPipeline            │───▶│  Store   │
    │  (Route) │    │ (FileServ) │    │  normalize→OCR→extract   │    │  image   │
    └──────────┘    └────────────┘    └──────────────────────────┘    └──────────┘

    Result is an editable draft; nothing is written to the database.

    ValidationError   → 400, nothing stored
    ImageDecodeError  → 422, nothing stored
    OCR unavailable   → 200 with empty fields and a warning; image stored
"""

import logging
from typing import Optional

from cardsnap.capture.models import CapturedFrame, CaptureFailure
from cardsnap.capture.pipeline import CardPipeline
from cardsnap.schemas.card import CaptureResponse, ExtractedFieldsSchema
from cardsnap.services.card_service import image_url_for
from cardsnap.services.file_service import FileService
from cardsnap.services.ocr_base import OcrEngine

logger = logging.getLogger(__name__)


class CaptureService:
    async def capture_upload(
        self,
        ocr_engine: OcrEngine,
        file_service: FileService,
        filename: Optional[str],
        content: bytes,
        content_length: Optional[int] = None,
    ) -> CaptureResponse:
        """
        Turn an uploaded card photo into a stored image plus pre-filled fields.

        Raises:
            ValidationError: Unsupported or oversized upload.
            ImageDecodeError: The photo could not be decoded.
            FileStorageError: The normalized image could not be written.
        """
        mime_type = file_service.validate_upload(filename, content, content_length)
        logger.info("Capture upload accepted: %s, %d bytes", mime_type, len(content))

        result = await CardPipeline(ocr_engine).run(CapturedFrame.from_encoded(content))
        if isinstance(result, CaptureFailure):
            raise result.error

        image_path = await file_service.store_bytes(result.image.data, result.image.extension)

        return CaptureResponse(
            image_path=image_path,
            image_url=image_url_for(image_path),
            width=result.image.width,
            height=result.image.height,
            fields=ExtractedFieldsSchema.from_fields(result.fields),
            ocr_available=not result.degraded,
            warning=result.warning.message if result.warning else None,
        )


capture_service = CaptureService()
