"""
CardSnap — Image Normalizer Unit Tests
=======================================

What:  Tests for normalize() and its crop geometry.
How:   Frames are generated with Pillow; outputs are decoded back and
       inspected pixel by pixel.

Test Strategy:
    ✅ Output is always exactly the target size, JPEG-encoded
    ✅ Wider and taller frames are center-cropped with equal strips
    ✅ Transparent areas come out white
    ✅ Raw RGB frames and encoded uploads both decode
    ✅ Undecodable input raises ImageDecodeError
"""

import io

import pytest
from PIL import Image

from cardsnap.capture.models import CapturedFrame
from cardsnap.capture.normalizer import crop_box, normalize, target_size
from cardsnap.exceptions import ImageDecodeError


def _encode(image: Image.Image, fmt: str = "PNG") -> CapturedFrame:
    buffer = io.BytesIO()
    image.save(buffer, format=fmt)
    return CapturedFrame.from_encoded(buffer.getvalue())


def _decode(data: bytes) -> Image.Image:
    return Image.open(io.BytesIO(data)).convert("RGB")


def _close(pixel, expected, tolerance=12) -> bool:
    return all(abs(a - b) <= tolerance for a, b in zip(pixel, expected))


class TestGeometry:
    def test_target_size_defaults(self):
        """1280 / 1.75 rounds to 731."""
        assert target_size(1.75, 1280) == (1280, 731)

    def test_crop_box_matching_ratio_keeps_everything(self):
        assert crop_box(1750, 1000, 1.75) == (0.0, 0.0, 1750.0, 1000.0)

    def test_crop_box_wider_frame_trims_left_and_right(self):
        """A 16:9 frame loses equal strips on both sides."""
        left, top, right, bottom = crop_box(1920, 1080, 1.75)
        assert (top, bottom) == (0.0, 1080.0)
        assert left == pytest.approx(1920 - right)
        assert (right - left) / (bottom - top) == pytest.approx(1.75)

    def test_crop_box_taller_frame_trims_top_and_bottom(self):
        """A portrait phone photo loses equal strips top and bottom."""
        left, top, right, bottom = crop_box(1080, 1920, 1.75)
        assert (left, right) == (0.0, 1080.0)
        assert top == pytest.approx(1920 - bottom)
        assert (right - left) / (bottom - top) == pytest.approx(1.75)


class TestNormalize:
    def test_output_has_target_size_and_is_jpeg(self, jpeg_bytes):
        result = normalize(CapturedFrame.from_encoded(jpeg_bytes))
        assert (result.width, result.height) == (1280, 731)
        assert result.mime_type == "image/jpeg"
        decoded = Image.open(io.BytesIO(result.data))
        assert decoded.format == "JPEG"
        assert decoded.size == (1280, 731)

    def test_custom_ratio_and_width(self, jpeg_bytes):
        result = normalize(CapturedFrame.from_encoded(jpeg_bytes), target_ratio=2.0, target_width=400)
        assert (result.width, result.height) == (400, 200)
        assert result.aspect_ratio == pytest.approx(2.0)

    def test_raw_rgb_frame(self, rgb_frame):
        """Camera frames arrive as raw RGB buffers."""
        result = normalize(rgb_frame, target_width=640)
        assert (result.width, result.height) == (640, 366)

    def test_wider_frame_keeps_center(self):
        """
        A 4:1 frame with red outer quarters and a green middle half: the
        1.75 crop lies entirely inside the green band.
        """
        image = Image.new("RGB", (400, 100), (255, 0, 0))
        image.paste((0, 255, 0), (100, 0, 300, 100))
        result = _decode(normalize(_encode(image), target_width=350).data)

        for x in (2, result.width // 2, result.width - 3):
            assert _close(result.getpixel((x, result.height // 2)), (0, 255, 0))

    def test_taller_frame_keeps_center(self):
        image = Image.new("RGB", (175, 700), (0, 0, 255))
        image.paste((0, 255, 0), (0, 250, 175, 450))
        result = _decode(normalize(_encode(image), target_width=350).data)

        for y in (2, result.height // 2, result.height - 3):
            assert _close(result.getpixel((result.width // 2, y)), (0, 255, 0))

    def test_transparent_background_is_white(self):
        """Alpha is composited onto an opaque white surface, never black."""
        image = Image.new("RGBA", (350, 200), (0, 0, 0, 0))
        result = _decode(normalize(_encode(image), target_width=350).data)
        assert _close(result.getpixel((175, 100)), (255, 255, 255), tolerance=4)

    def test_quality_is_recorded(self, jpeg_bytes):
        result = normalize(CapturedFrame.from_encoded(jpeg_bytes), quality=70)
        assert result.quality == 70

    def test_garbage_bytes_raise_decode_error(self):
        with pytest.raises(ImageDecodeError):
            normalize(CapturedFrame.from_encoded(b"definitely not an image"))

    def test_truncated_jpeg_raises_decode_error(self, jpeg_bytes):
        with pytest.raises(ImageDecodeError):
            normalize(CapturedFrame.from_encoded(jpeg_bytes[:200]))

    def test_raw_frame_without_dimensions_raises_decode_error(self):
        with pytest.raises(ImageDecodeError):
            normalize(CapturedFrame(data=b"\x00" * 12, mode="RGB"))

    def test_raw_frame_with_short_buffer_raises_decode_error(self):
        with pytest.raises(ImageDecodeError):
            normalize(CapturedFrame(data=b"\x00" * 12, width=100, height=100, mode="RGB"))

    @pytest.mark.parametrize(
        "kwargs",
        [{"target_ratio": 0}, {"target_width": 0}, {"quality": 0}, {"quality": 101}],
    )
    def test_invalid_arguments_raise_value_error(self, jpeg_bytes, kwargs):
        with pytest.raises(ValueError):
            normalize(CapturedFrame.from_encoded(jpeg_bytes), **kwargs)
