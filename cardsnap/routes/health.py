"""
CardSnap — Health Check Route
==============================

What:  Health endpoint for container probes and load balancers.

Status levels:
    healthy:   database and OCR engine available                 (HTTP 200)
    degraded:  OCR unavailable; captures still return images     (HTTP 200)
    unhealthy: database unreachable                              (HTTP 503)
"""

import logging
import time

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from cardsnap import __version__
from cardsnap.config import settings
from cardsnap.database import check_database
from cardsnap.schemas.card import HealthResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])

_start_time = time.time()


async def _ocr_status(request: Request) -> str:
    engine = getattr(request.app.state, "ocr_engine", None)
    if engine is None:
        return "unavailable"
    breaker = getattr(engine, "circuit_breaker", None)
    if breaker is not None and breaker.state == breaker.OPEN:
        return "circuit_open"
    return "available" if await engine.health_check() else "unavailable"


@router.get(
    "/health",
    response_model=HealthResponse,
    responses={503: {"description": "Database unreachable", "model": HealthResponse}},
    summary="Service health check",
)
async def health_check(request: Request):
    db_status = "connected"
    overall = "healthy"

    try:
        await check_database()
    except (SQLAlchemyError, OSError) as e:
        db_status = "disconnected"
        overall = "unhealthy"
        logger.warning("Health check: database unreachable: %s", e)

    ocr_status = await _ocr_status(request)
    if ocr_status != "available" and overall == "healthy":
        overall = "degraded"

    body = HealthResponse(
        status=overall,
        version=__version__,
        database=db_status,
        ocr_engine=settings.ocr_engine,
        ocr=ocr_status,
        uptime_seconds=round(time.time() - _start_time, 2),
    )
    if overall == "unhealthy":
        return JSONResponse(status_code=503, content=body.model_dump())
    return body
