"""
CardSnap — Custom Exception Hierarchy
======================================

What:  Application-specific exceptions for the service and the capture pipeline.
How:   Each exception carries a user-facing message and an optional context dict.
       Global handlers (registered in main.py) map them to JSON error responses;
       the capture session controller catches the CaptureError family at its
       boundary and turns it into a CaptureFailure result.
Who:   Raised by services, the capture pipeline and middleware.

Exception Hierarchy:
    CardSnapError (base)
    ├── ValidationError          → 400 Bad Request
    ├── AuthenticationError      → 401 Unauthorized
    ├── PermissionDeniedError    → 403 Forbidden
    ├── NotFoundError            → 404 Not Found
    ├── RateLimitExceededError   → 429 Too Many Requests
    ├── FileStorageError         → 500 Internal Server Error
    ├── DatabaseError            → 500 Internal Server Error
    └── CaptureError             → capture pipeline failures
        ├── CameraAccessError    → 503 (camera denied or unavailable)
        ├── ImageDecodeError     → 422 (frame could not be normalized)
        └── OcrUnavailableError  → 503 (recognition failed or timed out)
            └── CircuitBreakerOpenError
"""

from typing import Any, Dict, Optional


class CardSnapError(Exception):
    """
    Base exception for all CardSnap application errors.

    Attributes:
        message:  User-facing error description (safe to return in API response)
        context:  Additional debug info (logged but NOT returned for server errors)
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)


class ValidationError(CardSnapError):
    """
    Raised when client input fails a business rule.

    When:    Unsupported upload type, oversized file, invalid share target,
             image path outside storage.
    HTTP:    400 Bad Request
    """

    def __init__(
        self,
        message: str = "Validation failed",
        field: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if field:
            ctx["field"] = field
        super().__init__(message=message, context=ctx)
        self.field = field


class AuthenticationError(CardSnapError):
    """
    Raised when a request carries no verified identity.

    The upstream authentication proxy is expected to set the identity headers;
    a request without them never reaches the card store.
    HTTP: 401 Unauthorized
    """

    def __init__(
        self,
        message: str = "Authentication required",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class PermissionDeniedError(CardSnapError):
    """Raised when a user acts on a card they can see but do not own. HTTP 403."""

    def __init__(
        self,
        message: str = "You do not have permission to modify this card",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class NotFoundError(CardSnapError):
    """
    Raised when a requested resource does not exist (or is not visible).

    Cards the user neither owns nor received are reported as not found,
    so their existence is not leaked.
    HTTP: 404 Not Found
    """

    def __init__(
        self,
        resource: str = "resource",
        resource_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = f"The requested {resource} was not found"
        if resource_id:
            message = f"{resource} with ID '{resource_id}' was not found"
        ctx = context or {}
        ctx["resource"] = resource
        if resource_id:
            ctx["resource_id"] = resource_id
        super().__init__(message=message, context=ctx)


class FileStorageError(CardSnapError):
    """
    Raised when blob storage operations fail.

    When:    Disk full, permission denied, directory not writable, I/O error.
    HTTP:    500 Internal Server Error
    """

    def __init__(
        self,
        message: str = "File storage operation failed",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class DatabaseError(CardSnapError):
    """
    Raised when database operations fail unexpectedly.

    The message returned to the client is always generic; the SQL error is
    logged server-side only.
    HTTP: 500 Internal Server Error
    """

    def __init__(
        self,
        message: str = "A database error occurred. Please try again later.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class RateLimitExceededError(CardSnapError):
    """Raised when a client exceeds the per-IP request rate limit. HTTP 429."""

    def __init__(
        self,
        retry_after: int = 60,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = (
            f"Rate limit exceeded. Please wait {retry_after} seconds before making more requests."
        )
        ctx = context or {}
        ctx["retry_after"] = retry_after
        super().__init__(message=message, context=ctx)
        self.retry_after = retry_after


# ══════════════════════════════════════════════════════════════════════════
# Capture Pipeline Errors
# ══════════════════════════════════════════════════════════════════════════


class CaptureError(CardSnapError):
    """
    Base class for failures inside the capture-and-extract pipeline.

    Every pipeline stage raises a subclass of this; the capture session
    controller converts them into CaptureFailure results. A bare
    CaptureError wraps an unexpected exception caught at the controller
    boundary.
    """

    # Machine-readable tag exposed in results and API error bodies
    code = "capture_error"

    def __init__(
        self,
        message: str = "The capture could not be completed. Please try again.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class CameraAccessError(CaptureError):
    """
    Camera permission denied or hardware unavailable.

    Terminal for the session until the user explicitly retries.
    """

    code = "camera_access_error"

    def __init__(
        self,
        reason: str = "Camera is unavailable",
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        ctx["reason"] = reason
        super().__init__(
            message=f"Unable to access the camera: {reason}",
            context=ctx,
        )
        self.reason = reason


class ImageDecodeError(CaptureError):
    """
    The captured frame could not be decoded or normalized.

    Moves the session to FAILED; the user is advised to retake.
    HTTP: 422 Unprocessable Entity
    """

    code = "image_decode_error"

    def __init__(
        self,
        message: str = "The captured image could not be processed. Please retake the photo.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class OcrUnavailableError(CaptureError):
    """
    The recognition engine failed or timed out.

    Non-fatal for a capture: the normalized image is still returned with
    empty fields and the user fills the form manually.
    HTTP: 503 Service Unavailable (only where OCR itself is the request)
    """

    code = "ocr_unavailable"

    def __init__(
        self,
        message: str = "Text recognition is temporarily unavailable",
        retry_after: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if retry_after:
            ctx["retry_after"] = retry_after
        super().__init__(message=message, context=ctx)
        self.retry_after = retry_after


class CircuitBreakerOpenError(OcrUnavailableError):
    """
    Raised by remote OCR engines while their circuit breaker is OPEN.

    How circuit breaker works:
        CLOSED (normal) → failures increment counter
        → After N failures → OPEN (reject all calls for recovery_time seconds)
        → After recovery_time → HALF-OPEN (allow one test call)
        → Test succeeds → CLOSED; test fails → OPEN again
    """

    code = "ocr_circuit_open"

    def __init__(
        self,
        recovery_time: int = 60,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        ctx["recovery_time"] = recovery_time
        super().__init__(
            message=(
                "Text recognition is temporarily unavailable due to repeated failures. "
                f"It will be retried in approximately {recovery_time} seconds."
            ),
            retry_after=recovery_time,
            context=ctx,
        )
        self.recovery_time = recovery_time
