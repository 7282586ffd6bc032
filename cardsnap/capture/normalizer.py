"""
CardSnap — Image Normalizer
============================

What:  Turns a raw captured frame into a fixed-aspect-ratio, bounded-size JPEG.
Why:   Stored card images and OCR input share one geometry regardless of which
       camera or phone produced the frame.
How:   Pillow. The frame is decoded, the centered region matching the target
       ratio is selected, resampled straight to the output size and drawn onto
       an opaque white surface, then JPEG-encoded.

Geometry (defaults: ratio 1.75, width 1280 → height 731):

    wider than target            taller than target
    ┌──┬──────────┬──┐           ┌──────────┐
    │░░│          │░░│           │░░░░░░░░░░│  cropped equally
    │░░│  output  │░░│           ├──────────┤  top and bottom
    │░░│          │░░│           │  output  │
    └──┴──────────┴──┘           ├──────────┤
    cropped equally              │░░░░░░░░░░│
    left and right               └──────────┘

Scaling to the output height and center-cropping the overflow is the same
image as cropping the centered source region and scaling it; the second form
is used because it resamples once and never allocates the oversized bitmap.
"""

import io
import logging
import math
from typing import Tuple

from PIL import Image, ImageOps, UnidentifiedImageError

from cardsnap.capture.models import CapturedFrame, NormalizedImage
from cardsnap.exceptions import ImageDecodeError

logger = logging.getLogger(__name__)

DEFAULT_TARGET_RATIO = 1.75
DEFAULT_TARGET_WIDTH = 1280
DEFAULT_QUALITY = 90

WHITE = (255, 255, 255)


def target_size(target_ratio: float, target_width: int) -> Tuple[int, int]:
    """Output dimensions for a ratio/width pair."""
    return target_width, max(1, round(target_width / target_ratio))


def _decode(frame: CapturedFrame) -> Image.Image:
    """Decode a frame into a Pillow image or raise ImageDecodeError."""
    try:
        if frame.is_raw:
            if not frame.width or not frame.height:
                raise ImageDecodeError(
                    context={"reason": "raw frame without dimensions"},
                )
            image = Image.frombytes(frame.mode, (frame.width, frame.height), frame.data)
        else:
            image = Image.open(io.BytesIO(frame.data))
            image.load()
            # Phone uploads carry their rotation in EXIF rather than in pixels
            image = ImageOps.exif_transpose(image)
    except ImageDecodeError:
        raise
    except (UnidentifiedImageError, Image.DecompressionBombError, ValueError, OSError) as e:
        logger.warning("Frame decode failed: %s", e)
        raise ImageDecodeError(
            context={"error_type": type(e).__name__, "bytes": len(frame.data)},
        ) from e

    if image.width == 0 or image.height == 0:
        raise ImageDecodeError(context={"reason": "empty frame"})
    return image


def _has_alpha(image: Image.Image) -> bool:
    return image.mode in ("RGBA", "LA", "PA") or (
        image.mode == "P" and "transparency" in image.info
    )


def crop_box(width: int, height: int, target_ratio: float) -> Tuple[float, float, float, float]:
    """
    Centered source region whose aspect ratio equals ``target_ratio``.

    Returns (left, top, right, bottom) in source pixels; fractional values
    are kept so the centering stays exact for odd overflows.
    """
    native_ratio = width / height
    if math.isclose(native_ratio, target_ratio, rel_tol=1e-9):
        return 0.0, 0.0, float(width), float(height)

    if native_ratio > target_ratio:
        # Relatively wider: keep full height, discard equal strips left/right
        crop_width = height * target_ratio
        left = (width - crop_width) / 2
        return left, 0.0, left + crop_width, float(height)

    # Relatively taller: keep full width, discard equal strips top/bottom
    crop_height = width / target_ratio
    top = (height - crop_height) / 2
    return 0.0, top, float(width), top + crop_height


def normalize(
    frame: CapturedFrame,
    target_ratio: float = DEFAULT_TARGET_RATIO,
    target_width: int = DEFAULT_TARGET_WIDTH,
    quality: int = DEFAULT_QUALITY,
) -> NormalizedImage:
    """
    Normalize a captured frame to the card geometry.

    Args:
        frame: Raw pixel buffer or encoded upload.
        target_ratio: Output width / height.
        target_width: Output width in pixels; height follows from the ratio.
        quality: JPEG quality, 1-100.

    Returns:
        NormalizedImage of exactly ``target_size(target_ratio, target_width)``.

    Raises:
        ImageDecodeError: The frame could not be decoded.
        ValueError: Invalid geometry or quality arguments.
    """
    if target_ratio <= 0:
        raise ValueError(f"target_ratio must be positive, got {target_ratio}")
    if target_width <= 0:
        raise ValueError(f"target_width must be positive, got {target_width}")
    if not 1 <= quality <= 100:
        raise ValueError(f"quality must be within 1-100, got {quality}")

    source = _decode(frame)
    size = target_size(target_ratio, target_width)
    box = crop_box(source.width, source.height, target_ratio)

    canvas = Image.new("RGB", size, WHITE)
    if _has_alpha(source):
        drawn = source.convert("RGBA").resize(size, Image.Resampling.LANCZOS, box=box)
        canvas.paste(drawn, (0, 0), drawn)
    else:
        drawn = source.convert("RGB").resize(size, Image.Resampling.LANCZOS, box=box)
        canvas.paste(drawn, (0, 0))

    buffer = io.BytesIO()
    try:
        canvas.save(buffer, format="JPEG", quality=quality, optimize=True)
    except OSError as e:
        raise ImageDecodeError(
            message="The captured image could not be encoded. Please retake the photo.",
            context={"error_type": type(e).__name__},
        ) from e

    logger.debug(
        "Normalized %dx%d frame to %dx%d (crop box %s)",
        source.width,
        source.height,
        size[0],
        size[1],
        tuple(round(v, 1) for v in box),
    )
    return NormalizedImage(
        data=buffer.getvalue(),
        width=size[0],
        height=size[1],
        mime_type="image/jpeg",
        quality=quality,
    )
