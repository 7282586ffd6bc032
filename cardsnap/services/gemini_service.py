"""
CardSnap — Google Gemini OCR Engine
====================================

What:  Remote OCR engine using the Gemini vision API to transcribe card text.
Why:   Handles stylized fonts, low contrast and skewed photos better than
       Tesseract; selected with OCR_ENGINE=gemini.
How:   Sends the normalized JPEG inline with a transcription prompt and
       returns the plain text. Calls are wrapped in tenacity retries and a
       circuit breaker so an outage degrades captures instantly instead of
       stalling each one for the full retry budget.

Resilience Strategy:
    1. Tenacity retry with exponential backoff + jitter for transient failures
    2. Circuit breaker that rejects calls while the API is known to be down
    3. Per-call request timeout (OCR_TIMEOUT_SECONDS)
    Every failure surfaces as OcrUnavailableError, which the pipeline turns
    into a degraded capture (image kept, fields empty).
"""

import asyncio
import logging
import time
import uuid
from typing import Optional

import google.generativeai as genai
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from cardsnap.capture.models import NormalizedImage, RecognizedText
from cardsnap.config import settings
from cardsnap.exceptions import CardSnapError, CircuitBreakerOpenError, OcrUnavailableError
from cardsnap.services.ocr_base import OcrEngine

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════════════════
# Circuit Breaker
# ══════════════════════════════════════════════════════════════════════════

class CircuitBreaker:
    """
    Circuit breaker guarding calls to a remote service.

    State Machine:
        CLOSED (normal operation)
            → On failure: increment failure_count
            → When failure_count >= threshold: transition to OPEN

        OPEN (rejecting all requests)
            → All calls raise CircuitBreakerOpenError immediately
            → After recovery_timeout seconds: transition to HALF_OPEN

        HALF_OPEN (testing recovery)
            → One request goes through
            → On success: CLOSED; on failure: back to OPEN

    Not thread-safe; all callers share the event loop of one process.
    """

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"

    def __init__(self, failure_threshold: int = 5, recovery_timeout: int = 60):
        """
        Args:
            failure_threshold: Consecutive failures before opening the circuit
            recovery_timeout: Seconds to wait before allowing a test call
        """
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.failure_count = 0
        self.state = self.CLOSED
        self.last_failure_time: Optional[float] = None

    def can_execute(self) -> bool:
        """
        Check whether a call may go through.

        Raises:
            CircuitBreakerOpenError: Circuit is OPEN and the recovery window
                has not elapsed yet.
        """
        if self.state == self.CLOSED:
            return True

        if self.state == self.OPEN:
            elapsed = time.time() - (self.last_failure_time or 0)
            if elapsed >= self.recovery_timeout:
                logger.info(
                    "Circuit breaker transitioning to HALF_OPEN after %.1fs",
                    elapsed,
                )
                self.state = self.HALF_OPEN
                return True
            remaining = max(1, int(self.recovery_timeout - elapsed))
            raise CircuitBreakerOpenError(recovery_time=remaining)

        return True

    def record_success(self) -> None:
        if self.state == self.HALF_OPEN:
            logger.info("Circuit breaker transitioning to CLOSED (service recovered)")
        self.failure_count = 0
        self.state = self.CLOSED
        self.last_failure_time = None

    def record_failure(self) -> None:
        self.failure_count += 1
        self.last_failure_time = time.time()

        if self.state == self.HALF_OPEN:
            logger.warning("Circuit breaker returning to OPEN (test request failed)")
            self.state = self.OPEN
        elif self.failure_count >= self.failure_threshold:
            logger.warning(
                "Circuit breaker OPENING after %d consecutive failures",
                self.failure_count,
            )
            self.state = self.OPEN


# ══════════════════════════════════════════════════════════════════════════
# Gemini OCR Engine
# ══════════════════════════════════════════════════════════════════════════

class GeminiOcrEngine(OcrEngine):
    """
    Gemini vision implementation of OcrEngine.

    Error Handling Chain:
        API call fails → tenacity retries (RETRY_MAX_ATTEMPTS, backoff)
        → all retries fail → circuit breaker records a failure
        → threshold reached → later calls rejected instantly
        → recovery timeout → one test call (HALF_OPEN)
        → test succeeds → CLOSED
    """

    name = "gemini"

    TRANSCRIBE_PROMPT = """You are reading a photo of a business card.
Transcribe ALL printed text on the card exactly as it appears.

Instructions:
1. Output one line of the card per line of text, top to bottom
2. Keep names, titles, company names, emails, phone numbers and websites verbatim
3. Do not translate, correct, label or reorder anything
4. Return ONLY the transcribed text, with no commentary
5. If the card has no readable text, return an empty response"""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model_name: Optional[str] = None,
        timeout_seconds: Optional[int] = None,
    ):
        super().__init__()
        self.api_key = api_key or settings.gemini_api_key
        self.model_name = model_name or settings.gemini_model
        self.timeout_seconds = timeout_seconds or settings.ocr_timeout_seconds
        self.model: Optional[genai.GenerativeModel] = None
        self.circuit_breaker = CircuitBreaker(
            failure_threshold=settings.cb_failure_threshold,
            recovery_timeout=settings.cb_recovery_timeout,
        )

    async def _start(self) -> None:
        if not self.api_key:
            raise OcrUnavailableError(
                message="Text recognition is not configured on this server",
                context={"engine": self.name, "reason": "GEMINI_API_KEY is not set"},
            )
        # The SDK keeps credentials in module-level state
        genai.configure(api_key=self.api_key)
        self.model = genai.GenerativeModel(self.model_name)
        logger.info(
            "Gemini OCR ready: model=%s, circuit_breaker(threshold=%d, recovery=%ds)",
            self.model_name,
            self.circuit_breaker.failure_threshold,
            self.circuit_breaker.recovery_timeout,
        )

    async def _close(self) -> None:
        self.model = None

    async def recognize(self, image: NormalizedImage) -> RecognizedText:
        """
        Transcribe the card image through Gemini.

        Flow:
            1. Check circuit breaker → may raise CircuitBreakerOpenError
            2. Call Gemini with retry logic
            3. Record success/failure in circuit breaker

        Raises:
            CircuitBreakerOpenError: Circuit is open (too many recent failures)
            OcrUnavailableError: Not started, or Gemini failed after all retries
        """
        if self.model is None:
            raise OcrUnavailableError(
                message="Text recognition engine is not running",
                context={"engine": self.name},
            )

        request_id = uuid.uuid4().hex[:8]
        self.circuit_breaker.can_execute()

        logger.info("[%s] Starting Gemini OCR (%d bytes)", request_id, len(image.data))

        try:
            text = await self._call_gemini_with_retry(image, request_id)
        except Exception as e:
            self.circuit_breaker.record_failure()
            logger.error(
                "[%s] Gemini OCR failed after retries: %s",
                request_id,
                e,
            )
            raise OcrUnavailableError(
                message="Text recognition failed. You can fill in the card manually.",
                retry_after=self.circuit_breaker.recovery_timeout,
                context={
                    "request_id": request_id,
                    "attempts": settings.retry_max_attempts,
                    "error_type": type(e).__name__,
                },
            ) from e

        self.circuit_breaker.record_success()
        return RecognizedText(text=text)

    @retry(
        retry=retry_if_not_exception_type(CardSnapError),
        stop=stop_after_attempt(settings.retry_max_attempts),
        wait=wait_exponential_jitter(
            initial=settings.retry_min_wait,
            max=settings.retry_max_wait,
            jitter=1,
        ),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    async def _call_gemini_with_retry(self, image: NormalizedImage, request_id: str) -> str:
        """
        Single Gemini call; retried by the decorator.

        Kept apart from recognize() so the circuit breaker check is not
        itself retried.
        """
        start_time = time.time()
        try:
            response = await self.model.generate_content_async(
                [
                    self.TRANSCRIBE_PROMPT,
                    {"mime_type": image.mime_type, "data": image.data},
                ],
                request_options={"timeout": self.timeout_seconds},
            )
        except Exception as e:
            logger.warning(
                "[%s] Gemini API call failed after %.0fms: %s",
                request_id,
                (time.time() - start_time) * 1000,
                e,
            )
            raise

        text = self._response_text(response, request_id)
        logger.info(
            "[%s] Gemini OCR completed in %.0fms, %d chars",
            request_id,
            (time.time() - start_time) * 1000,
            len(text),
        )
        return text

    @staticmethod
    def _response_text(response, request_id: str) -> str:
        # .text raises ValueError when the candidate has no parts (blank or blocked)
        try:
            text = response.text
        except ValueError:
            logger.info("[%s] Gemini returned no text parts, treating card as blank", request_id)
            return ""
        return text.strip() if text else ""

    async def health_check(self) -> bool:
        """
        Check that the Gemini API is reachable with the configured key.

        Lists models rather than sending an image, which costs no quota.
        """
        if not self.api_key:
            return False
        try:
            models = await asyncio.to_thread(lambda: [m.name for m in genai.list_models()])
        except Exception as e:
            logger.warning("Gemini health check failed: %s", e)
            return False
        target = f"models/{self.model_name}"
        if target not in models:
            logger.warning("Configured model %s not found in available models", target)
        return True
