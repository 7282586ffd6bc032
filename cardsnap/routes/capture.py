"""
CardSnap — Capture Route Handler
=================================

What:  POST /api/capture: card photo in, editable draft out.
How:   Reads the multipart upload and delegates to CaptureService.

Request Flow:
    1. Client sends multipart/form-data with a 'file' field (camera frame)
    2. Upload is validated (extension, size, MIME)
    3. Pipeline: normalize → OCR → extract
    4. Normalized JPEG is stored; the draft references it by image_path
    5. Client edits the draft and confirms it with POST /api/cards

The draft is returned with 200 even when recognition failed: the image is
still usable and the fields are left for the user to type.
"""

import logging

from fastapi import APIRouter, Depends, File, UploadFile

from cardsnap.identity import get_current_user
from cardsnap.models.user import User
from cardsnap.schemas.card import CaptureResponse, ErrorResponse
from cardsnap.services.capture_service import capture_service
from cardsnap.services.file_service import FileService, get_file_service
from cardsnap.services.ocr_base import OcrEngine
from cardsnap.services.ocr_factory import get_ocr_engine

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Capture"])


@router.post(
    "/capture",
    response_model=CaptureResponse,
    responses={
        200: {"description": "Draft with pre-filled fields (possibly empty)", "model": CaptureResponse},
        400: {"description": "Invalid file type or size", "model": ErrorResponse},
        401: {"description": "Missing identity", "model": ErrorResponse},
        422: {"description": "Image could not be decoded", "model": ErrorResponse},
        429: {"description": "Rate limit exceeded", "model": ErrorResponse},
    },
    summary="Capture a business card from a photo",
    description=(
        "Upload a photo of a business card (PNG, JPEG or WebP). The photo is cropped "
        "to card proportions, text is recognized, and contact fields are pre-filled. "
        "Nothing is saved as a card until the draft is confirmed."
    ),
)
async def capture_card(
    file: UploadFile = File(..., description="Photo of a business card"),
    user: User = Depends(get_current_user),
    ocr_engine: OcrEngine = Depends(get_ocr_engine),
    file_service: FileService = Depends(get_file_service),
) -> CaptureResponse:
    content = await file.read()
    logger.info(
        "Capture request from %s: filename=%s, size=%d bytes",
        user.id,
        file.filename or "unknown",
        len(content),
    )
    try:
        return await capture_service.capture_upload(
            ocr_engine=ocr_engine,
            file_service=file_service,
            filename=file.filename,
            content=content,
            content_length=file.size,
        )
    finally:
        await file.close()
