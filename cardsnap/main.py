"""
CardSnap — FastAPI Application Factory
=======================================

What:  Creates and configures the FastAPI application instance.
How:   create_app() registers middleware, exception handlers and routers;
       the lifespan owns the process-wide OCR engine and the DB engine.
Who:   uvicorn (uvicorn cardsnap.main:app) and `cardsnap serve`.

Application Architecture:
    ┌──────────────────────────────────────────────────────┐
    │                    FastAPI App                       │
    │                                                      │
    │  Middleware Chain:                                   │
    │  ┌────────────┐ ┌──────────┐ ┌─────────┐ ┌────────┐  │
    │  │ Rate Limit │→│  Req ID  │→│ Logging │→│GZip/CORS│ │
    │  └────────────┘ └──────────┘ └─────────┘ └────────┘  │
    │                                                      │
    │  Routes:                                             │
    │  ┌──────────────┐ ┌────────────┐ ┌───────────────┐   │
    │  │ POST capture │ │ /api/cards │ │  GET /health  │   │
    │  └──────────────┘ └────────────┘ └───────────────┘   │
    │                                                      │
    │  app.state.ocr_engine: one OcrEngine per process     │
    └──────────────────────────────────────────────────────┘

Lifecycle:
    Startup:  logging → config validation → storage dir → OCR engine start
    Shutdown: OCR engine close → database engine dispose
"""

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncGenerator, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from cardsnap import __version__
from cardsnap.config import settings
from cardsnap.database import dispose_engine
from cardsnap.exceptions import (
    AuthenticationError,
    CameraAccessError,
    CaptureError,
    CardSnapError,
    CircuitBreakerOpenError,
    DatabaseError,
    FileStorageError,
    ImageDecodeError,
    NotFoundError,
    OcrUnavailableError,
    PermissionDeniedError,
    RateLimitExceededError,
    ValidationError,
)
from cardsnap.log import setup_logging
from cardsnap.middleware.logging import RequestLoggingMiddleware
from cardsnap.middleware.rate_limit import RateLimitMiddleware
from cardsnap.middleware.request_id import RequestIDMiddleware, request_id_var
from cardsnap.routes import capture, cards, health
from cardsnap.services.ocr_factory import create_ocr_engine

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════════════════
# Application Lifespan (Startup & Shutdown)
# ══════════════════════════════════════════════════════════════════════════

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Startup and shutdown of process-wide resources.

    The OCR engine is created and started here and closed on shutdown. If it
    cannot start (binary missing, no API key) the server still comes up:
    captures return images without fields and /health reports "degraded".
    """
    setup_logging()
    logger.info("=" * 60)
    logger.info("CardSnap %s starting up...", __version__)

    try:
        settings.validate_required_for_production()
    except ValueError as e:
        logger.error("Configuration error: %s", e)
        logger.error("Fix the configuration and restart the server.")

    storage = Path(settings.storage_root)
    storage.mkdir(parents=True, exist_ok=True)
    logger.info("Storage directory: %s", storage.resolve())

    ocr_engine = create_ocr_engine(settings.ocr_engine)
    try:
        await ocr_engine.start()
    except OcrUnavailableError as e:
        logger.warning(
            "OCR engine '%s' did not start (%s); captures will return images without fields",
            ocr_engine.name,
            e.message,
        )
    app.state.ocr_engine = ocr_engine

    logger.info("Server ready at http://%s:%d", settings.backend_host, settings.backend_port)
    logger.info("=" * 60)

    try:
        yield
    finally:
        logger.info("CardSnap shutting down...")
        await ocr_engine.close()
        await dispose_engine()
        logger.info("Shutdown complete.")


# ══════════════════════════════════════════════════════════════════════════
# Exception Handlers
# ══════════════════════════════════════════════════════════════════════════

def _error_response(
    status_code: int,
    error: str,
    message: str,
    details: Optional[Dict[str, Any]] = None,
    headers: Optional[Dict[str, str]] = None,
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "error": error,
            "message": message,
            "details": details,
            "request_id": request_id_var.get(""),
        },
        headers=headers,
    )


def register_exception_handlers(app: FastAPI) -> None:
    """
    Map the CardSnapError hierarchy to HTTP responses.

    Handler hierarchy (most specific class wins):
        ValidationError         → 400
        AuthenticationError     → 401
        PermissionDeniedError   → 403
        NotFoundError           → 404
        ImageDecodeError        → 422 (retake the photo)
        RateLimitExceededError  → 429 + Retry-After
        CircuitBreakerOpenError → 503 + Retry-After
        OcrUnavailableError     → 503
        CameraAccessError       → 503
        DatabaseError / FileStorageError / CaptureError / CardSnapError → 500
        Exception (fallback)    → 500

    Server errors never expose their context; it is logged instead.
    """

    @app.exception_handler(ValidationError)
    async def handle_validation_error(request: Request, exc: ValidationError):
        logger.warning("[%s] Validation error: %s", request_id_var.get(""), exc.message)
        return _error_response(400, "validation_error", exc.message, exc.context)

    @app.exception_handler(AuthenticationError)
    async def handle_authentication_error(request: Request, exc: AuthenticationError):
        return _error_response(401, "authentication_required", exc.message)

    @app.exception_handler(PermissionDeniedError)
    async def handle_permission_denied(request: Request, exc: PermissionDeniedError):
        return _error_response(403, "permission_denied", exc.message)

    @app.exception_handler(NotFoundError)
    async def handle_not_found(request: Request, exc: NotFoundError):
        return _error_response(404, "not_found", exc.message)

    @app.exception_handler(ImageDecodeError)
    async def handle_image_decode_error(request: Request, exc: ImageDecodeError):
        logger.warning("[%s] Image decode error: %s", request_id_var.get(""), exc.context)
        return _error_response(422, exc.code, exc.message)

    @app.exception_handler(RateLimitExceededError)
    async def handle_rate_limit(request: Request, exc: RateLimitExceededError):
        return _error_response(
            429,
            "rate_limit_exceeded",
            exc.message,
            exc.context,
            headers={"Retry-After": str(exc.retry_after)},
        )

    @app.exception_handler(CircuitBreakerOpenError)
    async def handle_circuit_breaker(request: Request, exc: CircuitBreakerOpenError):
        logger.warning("[%s] Circuit breaker open: %s", request_id_var.get(""), exc.message)
        return _error_response(
            503,
            exc.code,
            exc.message,
            {"recovery_time": exc.recovery_time},
            headers={"Retry-After": str(exc.recovery_time)},
        )

    @app.exception_handler(OcrUnavailableError)
    async def handle_ocr_unavailable(request: Request, exc: OcrUnavailableError):
        logger.error("[%s] OCR unavailable: %s | %s", request_id_var.get(""), exc.message, exc.context)
        headers = {"Retry-After": str(exc.retry_after)} if exc.retry_after else None
        return _error_response(503, exc.code, exc.message, headers=headers)

    @app.exception_handler(CameraAccessError)
    async def handle_camera_access(request: Request, exc: CameraAccessError):
        return _error_response(503, exc.code, exc.message, {"reason": exc.reason})

    @app.exception_handler(CaptureError)
    async def handle_capture_error(request: Request, exc: CaptureError):
        logger.error("[%s] Capture error: %s | %s", request_id_var.get(""), exc.message, exc.context)
        return _error_response(500, exc.code, exc.message)

    @app.exception_handler(DatabaseError)
    async def handle_database_error(request: Request, exc: DatabaseError):
        logger.error("[%s] Database error: %s | Context: %s", request_id_var.get(""), exc.message, exc.context)
        return _error_response(500, "server_error", "An internal error occurred. Please try again later.")

    @app.exception_handler(FileStorageError)
    async def handle_file_storage_error(request: Request, exc: FileStorageError):
        logger.error("[%s] File storage error: %s | Context: %s", request_id_var.get(""), exc.message, exc.context)
        return _error_response(500, "server_error", exc.message)

    @app.exception_handler(CardSnapError)
    async def handle_cardsnap_error(request: Request, exc: CardSnapError):
        logger.error("[%s] Application error: %s | Context: %s", request_id_var.get(""), exc.message, exc.context)
        return _error_response(500, "server_error", exc.message)

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        logger.error("[%s] Unexpected error: %s", request_id_var.get(""), exc, exc_info=True)
        return _error_response(
            500,
            "internal_server_error",
            "An unexpected error occurred. Please try again or contact support.",
        )


# ══════════════════════════════════════════════════════════════════════════
# Application Factory
# ══════════════════════════════════════════════════════════════════════════

def create_app() -> FastAPI:
    app = FastAPI(
        title="CardSnap API",
        description=(
            "Business card capture and management. Photograph a card, review the "
            "pre-filled contact fields, save, search and share your cards."
        ),
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # Middleware executes in reverse order of addition:
    # RateLimit → RequestID → Logging → GZip → CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "X-Total-Count", "Retry-After"],
    )
    app.add_middleware(GZipMiddleware, minimum_size=500)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(RateLimitMiddleware)

    register_exception_handlers(app)

    app.include_router(capture.router)
    app.include_router(cards.router)
    app.include_router(health.router)

    return app


app = create_app()
