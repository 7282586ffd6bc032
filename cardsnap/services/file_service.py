"""
CardSnap — File Storage Service
================================

What:  Upload validation and blob storage for card images.
How:   Validates size and MIME type, stores bytes in date-organized
       directories under UUID filenames, resolves stored paths for serving.
Who:   CaptureService (normalized card images), the files route, CardService
       (removal of replaced or deleted images).

Security Model:
    1. Extension check:  rejects obviously wrong uploads before sniffing.
                         Camera uploads often arrive as "blob" with no
                         extension; those go straight to the MIME check.
    2. MIME type check:  libmagic inspects the header bytes; this is the
                         authoritative type.
    3. Size check:       bounded by MAX_FILE_SIZE; empty uploads rejected.
    4. UUID filename:    no user input ever reaches the file system path.
    5. resolve_path():   stored paths are re-checked to stay under the
                         storage root before anything is served or deleted.

Directory Structure:
    storage/
    └── 2024/
        └── 01/
            └── 15/
                ├── a1b2c3d4-5678.jpg
                └── e5f6g7h8-9012.jpg
"""

import logging
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Tuple

import aiofiles
import aiofiles.os
import magic

from cardsnap.config import settings
from cardsnap.exceptions import FileStorageError, ValidationError

logger = logging.getLogger(__name__)

# Photo formats the normalizer can decode
ALLOWED_MIME_TYPES = {
    "image/png": ".png",
    "image/jpeg": ".jpg",
    "image/jpg": ".jpg",
    "image/webp": ".webp",
}

ALLOWED_EXTENSIONS = {".png", ".jpg", ".jpeg", ".webp"}


class FileService:
    """
    Manages upload validation and the lifecycle of stored card images.

    Lifecycle of a captured card image:
        1. Photo upload → validate_upload() (extension, size, MIME)
        2. Pipeline normalizes it to a JPEG (the upload itself is not kept)
        3. store_bytes() writes the JPEG, returns the relative path
        4. The path travels with the draft and is saved on the card
        5. Replaced or deleted cards → cleanup_file() in the background
    """

    def __init__(self, storage_root: Optional[str] = None):
        """
        Args:
            storage_root: Override the default storage path (used in tests).
        """
        self.storage_root = Path(storage_root or settings.storage_root).resolve()
        self.storage_root.mkdir(parents=True, exist_ok=True)

    # ── Validation ────────────────────────────────────────────────────────

    def _validate_extension(self, filename: Optional[str]) -> Optional[str]:
        """
        Returns the normalized extension, or None when the upload has none.

        Raises:
            ValidationError: The extension is present but not allowed.
        """
        ext = Path(filename or "").suffix.lower()
        if not ext:
            return None
        if ext not in ALLOWED_EXTENSIONS:
            raise ValidationError(
                message=(
                    f"File type '{ext}' is not supported. "
                    f"Allowed types: {', '.join(sorted(ALLOWED_EXTENSIONS))}"
                ),
                field="file",
                context={"extension": ext, "allowed": sorted(ALLOWED_EXTENSIONS)},
            )
        return ext

    def _validate_size(self, content: bytes, content_length: Optional[int]) -> None:
        """
        Checks the Content-Length header first, then the actual byte count.

        Raises:
            ValidationError: Empty upload or larger than MAX_FILE_SIZE.
        """
        max_mb = settings.max_file_size / (1024 * 1024)

        if not content:
            raise ValidationError(
                message="The uploaded file is empty.",
                field="file",
            )

        size = max(len(content), content_length or 0)
        if size > settings.max_file_size:
            raise ValidationError(
                message=(
                    f"File is too large ({size / (1024 * 1024):.1f}MB). "
                    f"Maximum size is {max_mb:.0f}MB."
                ),
                field="file",
                context={"max_size_mb": max_mb, "size": size},
            )

    def _validate_mime_type(self, content: bytes) -> str:
        """
        Detect the real content type from the header bytes.

        Raises:
            ValidationError: Not a supported image.
            FileStorageError: libmagic itself failed.
        """
        try:
            mime_type = magic.from_buffer(content[:4096], mime=True)
        except magic.MagicException as e:
            logger.error("MIME type detection failed: %s", e)
            raise FileStorageError(
                message="Could not verify file type. Please try again.",
                context={"error": str(e)},
            ) from e

        if mime_type not in ALLOWED_MIME_TYPES:
            raise ValidationError(
                message=(
                    f"File content type '{mime_type}' is not supported. "
                    "The file must be a PNG, JPEG or WebP photo."
                ),
                field="file",
                context={"detected_mime": mime_type, "allowed": sorted(ALLOWED_MIME_TYPES)},
            )
        return mime_type

    def validate_upload(
        self,
        filename: Optional[str],
        content: bytes,
        content_length: Optional[int] = None,
    ) -> str:
        """
        Run all upload checks, cheapest first.

        Returns:
            The detected MIME type.
        """
        self._validate_extension(filename)
        self._validate_size(content, content_length)
        return self._validate_mime_type(content)

    # ── Storage ───────────────────────────────────────────────────────────

    def _generate_storage_path(self, extension: str) -> Tuple[Path, str]:
        """Returns (absolute_path, relative_path) for YYYY/MM/DD/<uuid><ext>."""
        date_dir = datetime.now(timezone.utc).strftime("%Y/%m/%d")
        relative_path = f"{date_dir}/{uuid.uuid4()}{extension}"
        return self.storage_root / relative_path, relative_path

    async def store_bytes(self, content: bytes, extension: str = ".jpg") -> str:
        """
        Write content to a new file under the storage root.

        Returns:
            Path relative to the storage root (what the database stores).

        Raises:
            FileStorageError: Directory creation or write failed.
        """
        absolute_path, relative_path = self._generate_storage_path(extension)
        try:
            await aiofiles.os.makedirs(absolute_path.parent, exist_ok=True)
            async with aiofiles.open(absolute_path, "wb") as f:
                await f.write(content)
        except OSError as e:
            logger.error("Failed to store file at %s: %s", absolute_path, e)
            raise FileStorageError(
                message="Failed to save the card image. Please try again.",
                context={"path": relative_path, "os_error": str(e)},
            ) from e

        logger.info("File stored: %s (%d bytes)", relative_path, len(content))
        return relative_path

    def resolve_path(self, relative_path: str) -> Path:
        """
        Map a stored relative path to an absolute path inside the storage root.

        Raises:
            ValidationError: The path escapes the storage root.
        """
        candidate = (self.storage_root / relative_path.lstrip("/")).resolve()
        if candidate == self.storage_root or self.storage_root not in candidate.parents:
            raise ValidationError(
                message="Invalid image path.",
                field="image_path",
                context={"path": relative_path},
            )
        return candidate

    def exists(self, relative_path: str) -> bool:
        return self.resolve_path(relative_path).is_file()

    async def cleanup_file(self, relative_path: str) -> None:
        """
        Best-effort removal of a stored file.

        Runs as a background task after a card is deleted or its image is
        replaced; a failure is logged and left for periodic cleanup.
        """
        try:
            path = self.resolve_path(relative_path)
        except ValidationError:
            logger.warning("Refusing to clean up path outside storage: %s", relative_path)
            return
        try:
            await aiofiles.os.remove(path)
            logger.info("Cleaned up file: %s", relative_path)
        except FileNotFoundError:
            logger.debug("Cleanup: file already gone: %s", relative_path)
        except OSError as e:
            logger.warning("Failed to clean up file %s: %s", relative_path, e)


def get_file_service() -> FileService:
    """FastAPI dependency; overridden in tests with a temporary storage root."""
    return FileService()


