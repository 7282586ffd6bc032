"""
CardSnap — Logging Configuration
=================================

Shared by the FastAPI lifespan and the CLI. Every module logs through
``logging.getLogger(__name__)``; this only configures the root handler.

Format: 2024-01-15T12:00:00 [INFO] cardsnap.capture.pipeline: message
"""

import logging
import sys
from typing import Optional, TextIO

from cardsnap.config import settings

NOISY_LOGGERS = (
    "uvicorn.access",
    "sqlalchemy.engine",
    "httpcore",
    "httpx",
    "PIL",
    "multipart",
)


def setup_logging(level: Optional[str] = None, stream: Optional[TextIO] = None) -> None:
    """
    Configure the root logger.

    The service logs to stdout (containers collect it); the CLI passes
    stderr so stdout stays clean for --json output.
    """
    logging.basicConfig(
        level=getattr(logging, (level or settings.log_level).upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[logging.StreamHandler(stream or sys.stdout)],
        force=True,
    )

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
