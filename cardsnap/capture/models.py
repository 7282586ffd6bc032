"""
CardSnap — Capture Pipeline Data Types
=======================================

What:  Value objects passed between the pipeline stages.
How:   Frozen dataclasses; every entity is ephemeral and consumed once.

Lifecycle:
    CapturedFrame ──normalize──▶ NormalizedImage ──recognize──▶ RecognizedText
                                        │                          │
                                        │                       extract
                                        ▼                          ▼
                                  CaptureSuccess(image, fields: ExtractedFields)

    A retake discards every entity of the previous run.
"""

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Dict, Literal, Optional, Union

from cardsnap.exceptions import CaptureError, OcrUnavailableError


@dataclass(frozen=True)
class CapturedFrame:
    """
    A single frame grabbed from a camera, or an uploaded photo.

    When ``mode`` is set ("RGB", "RGBA", "L"), ``data`` is a raw pixel buffer
    of ``width x height``. When ``mode`` is None, ``data`` is an encoded image
    (JPEG/PNG) and the dimensions are read when it is decoded.
    """

    data: bytes = field(repr=False)
    width: Optional[int] = None
    height: Optional[int] = None
    mode: Optional[str] = None

    @classmethod
    def from_encoded(cls, data: bytes) -> "CapturedFrame":
        return cls(data=data)

    @property
    def is_raw(self) -> bool:
        return self.mode is not None


@dataclass(frozen=True)
class NormalizedImage:
    """Card image at the target aspect ratio, encoded for storage and OCR."""

    data: bytes = field(repr=False)
    width: int
    height: int
    mime_type: str = "image/jpeg"
    quality: int = 90

    @property
    def aspect_ratio(self) -> float:
        return self.width / self.height

    @property
    def extension(self) -> str:
        return ".png" if self.mime_type == "image/png" else ".jpg"


@dataclass(frozen=True)
class RecognizedText:
    """Unstructured OCR output; confidence is 0-100 when the engine reports one."""

    text: str
    confidence: Optional[float] = None


@dataclass(frozen=True)
class ExtractedFields:
    """
    Contact fields assigned by the field extractor.

    Absent fields are None; ``notes`` is always a string. The fields only
    ever pre-fill an editable draft, they are never persisted directly.
    """

    name: Optional[str] = None
    title: Optional[str] = None
    company: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    website: Optional[str] = None
    notes: str = ""

    def to_dict(self) -> Dict[str, Optional[str]]:
        return asdict(self)

    def is_empty(self) -> bool:
        return not any(self.to_dict().values())


class CaptureState(str, Enum):
    """States of a capture session; see cardsnap.capture.session."""

    IDLE = "idle"
    REQUESTING = "requesting"
    PREVIEWING = "previewing"
    CAPTURING = "capturing"
    PROCESSING = "processing"
    DONE = "done"
    FAILED = "failed"
    CLOSED = "closed"


@dataclass(frozen=True)
class CaptureSuccess:
    """
    Pipeline completed, possibly degraded.

    ``warning`` holds the OCR error when recognition failed; in that case
    ``fields`` is empty and the image is still usable.
    """

    image: NormalizedImage
    fields: ExtractedFields
    warning: Optional[OcrUnavailableError] = None
    kind: Literal["success"] = "success"

    @property
    def degraded(self) -> bool:
        return self.warning is not None


@dataclass(frozen=True)
class CaptureFailure:
    """Pipeline failed; ``error`` is the user-visible cause."""

    error: CaptureError
    kind: Literal["error"] = "error"


CaptureResult = Union[CaptureSuccess, CaptureFailure]
