"""
CardSnap capture pipeline: camera → normalizer → OCR → field extractor.

The modules here have no dependency on the web layer or the database.
"""

from cardsnap.capture.extractor import extract
from cardsnap.capture.models import (
    CapturedFrame,
    CaptureFailure,
    CaptureResult,
    CaptureState,
    CaptureSuccess,
    ExtractedFields,
    NormalizedImage,
    RecognizedText,
)
from cardsnap.capture.normalizer import normalize

__all__ = [
    "CapturedFrame",
    "CaptureFailure",
    "CaptureResult",
    "CaptureState",
    "CaptureSuccess",
    "ExtractedFields",
    "NormalizedImage",
    "RecognizedText",
    "extract",
    "normalize",
]
