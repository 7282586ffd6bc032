"""
CardSnap — Tesseract Engine Unit Tests (Mocked)
================================================

What:  Tests for TesseractOcrEngine with pytesseract calls patched.
Why:   The tesseract binary is not required to run the suite.

Test Strategy:
    ✅ Words are regrouped into lines in reading order
    ✅ Layout rows (conf -1) and blank words are dropped
    ✅ Missing binary, timeouts and crashes become OcrUnavailableError
    ✅ Health check reports False instead of raising
"""

from unittest.mock import patch

import pytest
import pytesseract

from cardsnap.capture.models import NormalizedImage
from cardsnap.exceptions import OcrUnavailableError
from cardsnap.services.tesseract_service import TesseractOcrEngine, _lines_from_data

PATCH_ROOT = "cardsnap.services.tesseract_service.pytesseract"


def _data(rows):
    """Build an image_to_data dict from (block, par, line, text, conf) rows."""
    return {
        "block_num": [r[0] for r in rows],
        "par_num": [r[1] for r in rows],
        "line_num": [r[2] for r in rows],
        "text": [r[3] for r in rows],
        "conf": [r[4] for r in rows],
    }


CARD_DATA = _data(
    [
        (0, 0, 0, "", -1),
        (1, 1, 1, "Jane", 96),
        (1, 1, 1, "Doe", 94),
        (1, 1, 2, "Engineer", 90),
        (2, 1, 1, "", -1),
        (2, 1, 1, "jane@acme.com", 80),
        (2, 1, 1, " ", 10),
    ]
)


@pytest.fixture
def card_image(jpeg_bytes) -> NormalizedImage:
    return NormalizedImage(data=jpeg_bytes, width=640, height=480)


class TestLinesFromData:
    def test_groups_words_into_lines(self):
        text, confidence = _lines_from_data(CARD_DATA)
        assert text == "Jane Doe\nEngineer\njane@acme.com"
        assert confidence == pytest.approx(90.0)

    def test_empty_page(self):
        assert _lines_from_data(_data([(0, 0, 0, "", -1)])) == ("", None)

    def test_string_confidences(self):
        """Older tesseract versions report conf as strings."""
        text, confidence = _lines_from_data(_data([(1, 1, 1, "Acme", "88.5")]))
        assert text == "Acme"
        assert confidence == pytest.approx(88.5)


class TestTesseractOcrEngine:
    def setup_method(self):
        self.engine = TesseractOcrEngine(language="eng", timeout_seconds=5)

    @pytest.mark.asyncio
    async def test_recognize_success(self, card_image):
        with patch(f"{PATCH_ROOT}.image_to_data", return_value=CARD_DATA) as mock_data:
            result = await self.engine.recognize(card_image)

        assert result.text == "Jane Doe\nEngineer\njane@acme.com"
        assert result.confidence == pytest.approx(90.0)
        kwargs = mock_data.call_args.kwargs
        assert kwargs["lang"] == "eng"
        assert kwargs["timeout"] == 5

    @pytest.mark.asyncio
    async def test_timeout_becomes_ocr_unavailable(self, card_image):
        with patch(f"{PATCH_ROOT}.image_to_data", side_effect=RuntimeError("Tesseract process timeout")):
            with pytest.raises(OcrUnavailableError, match="too long") as exc_info:
                await self.engine.recognize(card_image)
        assert exc_info.value.context["timeout"] == 5

    @pytest.mark.asyncio
    async def test_missing_binary_becomes_ocr_unavailable(self, card_image):
        with patch(f"{PATCH_ROOT}.image_to_data", side_effect=pytesseract.TesseractNotFoundError()):
            with pytest.raises(OcrUnavailableError, match="not installed"):
                await self.engine.recognize(card_image)

    @pytest.mark.asyncio
    async def test_engine_crash_becomes_ocr_unavailable(self, card_image):
        error = pytesseract.TesseractError(1, "Error opening data file")
        with patch(f"{PATCH_ROOT}.image_to_data", side_effect=error):
            with pytest.raises(OcrUnavailableError) as exc_info:
                await self.engine.recognize(card_image)
        assert exc_info.value.context["error_type"] == "TesseractError"

    @pytest.mark.asyncio
    async def test_start_fails_without_binary(self):
        with patch(f"{PATCH_ROOT}.get_tesseract_version", side_effect=pytesseract.TesseractNotFoundError()):
            with pytest.raises(OcrUnavailableError):
                await self.engine.start()
        assert not self.engine.started

    @pytest.mark.asyncio
    async def test_start_and_close_are_idempotent(self):
        with patch(f"{PATCH_ROOT}.get_tesseract_version", return_value="5.3.0") as mock_version:
            await self.engine.start()
            await self.engine.start()
            assert self.engine.started
            assert mock_version.call_count == 1

        await self.engine.close()
        await self.engine.close()
        assert not self.engine.started

    @pytest.mark.asyncio
    async def test_health_check(self):
        with patch(f"{PATCH_ROOT}.get_tesseract_version", return_value="5.3.0"):
            assert await self.engine.health_check() is True
        with patch(f"{PATCH_ROOT}.get_tesseract_version", side_effect=pytesseract.TesseractNotFoundError()):
            assert await self.engine.health_check() is False
