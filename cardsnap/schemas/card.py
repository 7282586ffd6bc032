"""
CardSnap — Pydantic Request/Response Schemas
=============================================

What:  The API contract between clients and the backend.
How:   FastAPI validates request bodies against these models, serializes
       responses through them and builds the OpenAPI docs from them.

Schemas are separate from the SQLAlchemy models: the API never exposes
owner ids of other users or the share table, and request validation rules
(trimmed strings, optional-but-valid email) differ from column constraints.
"""

import re
import uuid
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

from cardsnap.capture.models import ExtractedFields

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def _clean_optional(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


def _validate_email(value: Optional[str]) -> Optional[str]:
    value = _clean_optional(value)
    if value is None:
        return None
    if not EMAIL_PATTERN.match(value):
        raise ValueError(f"'{value}' is not a valid email address")
    return value.lower()


# ══════════════════════════════════════════════════════════════════════════
# Capture
# ══════════════════════════════════════════════════════════════════════════


class ExtractedFieldsSchema(BaseModel):
    """Contact fields pre-filled from OCR; every field may be null."""

    name: Optional[str] = None
    title: Optional[str] = None
    company: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    website: Optional[str] = None
    notes: str = ""

    @classmethod
    def from_fields(cls, fields: ExtractedFields) -> "ExtractedFieldsSchema":
        return cls(**fields.to_dict())


class CaptureResponse(BaseModel):
    """
    What:  Editable draft produced by POST /api/capture.
    When:  After the uploaded photo was normalized, recognized and stored.

    The draft is NOT a card yet: the client shows it in an edit form and
    sends the confirmed values to POST /api/cards.

    Example (OCR degraded):
        {
            "kind": "success",
            "image_path": "2024/01/15/3f0c....jpg",
            "image_url": "/api/files/2024/01/15/3f0c....jpg",
            "fields": {"name": null, ..., "notes": ""},
            "ocr_available": false,
            "warning": "Text recognition took too long. You can fill in the card manually."
        }
    """

    kind: Literal["success"] = "success"
    image_path: str = Field(description="Relative path of the stored normalized image")
    image_url: str = Field(description="URL path to fetch the normalized image")
    width: int = Field(description="Normalized image width in pixels")
    height: int = Field(description="Normalized image height in pixels")
    fields: ExtractedFieldsSchema
    ocr_available: bool = Field(description="False when recognition failed and fields are empty")
    warning: Optional[str] = Field(default=None, description="Why the fields are empty")


# ══════════════════════════════════════════════════════════════════════════
# Cards
# ══════════════════════════════════════════════════════════════════════════


class CardBase(BaseModel):
    title: Optional[str] = Field(default=None, max_length=255)
    company: Optional[str] = Field(default=None, max_length=255)
    email: Optional[str] = Field(default=None, max_length=320)
    phone: Optional[str] = Field(default=None, max_length=64)
    website: Optional[str] = Field(default=None, max_length=512)
    address: Optional[str] = None
    category: Optional[str] = Field(default=None, max_length=100)

    @field_validator("title", "company", "phone", "website", "address", "category")
    @classmethod
    def strip_optional(cls, v: Optional[str]) -> Optional[str]:
        return _clean_optional(v)

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: Optional[str]) -> Optional[str]:
        return _validate_email(v)


class CardCreate(CardBase):
    """Body of POST /api/cards: the confirmed draft."""

    name: str = Field(min_length=1, max_length=255)
    notes: str = ""
    image_path: Optional[str] = Field(default=None, max_length=255)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Name is required")
        return v

    @field_validator("notes")
    @classmethod
    def strip_notes(cls, v: str) -> str:
        return (v or "").strip()


class CardUpdate(CardBase):
    """Body of PATCH /api/cards/{id}; only the fields sent are changed."""

    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    notes: Optional[str] = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip()
        if not v:
            raise ValueError("Name cannot be empty")
        return v


class ImageUpdateRequest(BaseModel):
    """Body of PUT /api/cards/{id}/image; path returned by POST /api/capture."""

    image_path: str = Field(min_length=1, max_length=255)


class ShareRequest(BaseModel):
    """Body of POST /api/cards/{id}/share."""

    email: str = Field(min_length=3, max_length=320)

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        cleaned = _validate_email(v)
        if cleaned is None:
            raise ValueError("Email is required")
        return cleaned


class CardResponse(BaseModel):
    """
    Full card representation.

    ``is_owner`` tells the client whether edit and delete controls apply;
    ``shared_with`` is only filled for the owner.
    """

    id: uuid.UUID
    name: str
    title: Optional[str] = None
    company: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    website: Optional[str] = None
    address: Optional[str] = None
    notes: str = ""
    category: Optional[str] = None
    image_path: Optional[str] = None
    image_url: Optional[str] = None
    is_owner: bool
    shared_with: List[str] = Field(default_factory=list, description="Recipient emails")
    created_at: datetime
    updated_at: datetime


class CardListResponse(BaseModel):
    """
    Offset-paginated list of cards visible to the user.

    The total is also sent in the X-Total-Count header.
    """

    cards: List[CardResponse]
    total_count: int
    limit: int
    offset: int
    has_more: bool


class ShareResponse(BaseModel):
    card_id: uuid.UUID
    shared_with: List[str]


# ══════════════════════════════════════════════════════════════════════════
# Errors & Health
# ══════════════════════════════════════════════════════════════════════════


class ErrorResponse(BaseModel):
    """
    Standardized error body for all API errors.

    Example:
        {
            "error": "image_decode_error",
            "message": "The captured image could not be processed. Please retake the photo.",
            "details": null,
            "request_id": "550e8400-e29b-41d4-a716-446655440000"
        }
    """

    error: str = Field(description="Machine-readable error code")
    message: str = Field(description="Human-readable error description")
    details: Optional[dict] = Field(default=None, description="Additional error context")
    request_id: Optional[str] = Field(default=None, description="Request correlation ID")


class HealthResponse(BaseModel):
    status: str = Field(description="Overall service status: healthy, degraded, unhealthy")
    version: str = Field(description="Application version")
    database: str = Field(description="Database connectivity: connected, disconnected")
    ocr_engine: str = Field(description="Configured OCR engine name")
    ocr: str = Field(description="OCR status: available, unavailable, circuit_open")
    uptime_seconds: float = Field(description="Seconds since service started")
