"""
CardSnap — Test Configuration (conftest.py)
============================================

What:  Shared pytest fixtures for the entire test suite.
Why:   Provides reusable test infrastructure (in-memory DB, API client,
       fake camera and OCR engine, generated card photos).
How:   pytest auto-discovers conftest.py and makes fixtures available to all tests.

Fixture Hierarchy:
    Function-scoped (created fresh for each test):
    ├── db_engine / db_session: in-memory SQLite with the full schema
    ├── file_service: FileService rooted in a temporary directory
    ├── fake_ocr / fake_camera: test doubles for the capture pipeline
    ├── jpeg_bytes / png_bytes / rgb_frame: generated card photos
    ├── test_app / test_client: app with dependency overrides + HTTPX client
    └── alice / bob: identity headers of two proxy-authenticated users
"""

import asyncio
import io
import os
import tempfile
from typing import AsyncGenerator, Optional
from uuid import uuid4

# Override settings for testing BEFORE any cardsnap imports
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["STORAGE_ROOT"] = tempfile.mkdtemp(prefix="cardsnap_test_")
os.environ["OCR_ENGINE"] = "tesseract"
os.environ["GEMINI_API_KEY"] = "test-key-not-real"
os.environ["LOG_LEVEL"] = "WARNING"

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from PIL import Image
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import cardsnap.models  # noqa: F401  registers all tables on Base.metadata
from cardsnap.capture.camera import CameraConstraints, CameraProvider, CameraStream
from cardsnap.capture.models import CapturedFrame, NormalizedImage, RecognizedText
from cardsnap.database import Base, get_db_session
from cardsnap.exceptions import CameraAccessError
from cardsnap.services.file_service import FileService, get_file_service
from cardsnap.services.ocr_base import OcrEngine
from cardsnap.services.ocr_factory import get_ocr_engine

CARD_TEXT = "Jane Doe\nSoftware Engineer\nAcme Corp\njane.doe@acme.com\n(415) 555-0134"


# ══════════════════════════════════════════════════════════════════════════
# Test Doubles
# ══════════════════════════════════════════════════════════════════════════


class FakeOcrEngine(OcrEngine):
    """
    OcrEngine returning canned text.

    ``gate`` lets a test hold recognize() open to observe the session while
    it is PROCESSING; ``error`` makes every recognize() call raise; ``start_error``
    makes start() raise.
    """

    name = "fake"

    def __init__(self, text: str = CARD_TEXT, error: Optional[Exception] = None, healthy: bool = True):
        super().__init__()
        self.text = text
        self.error = error
        self.healthy = healthy
        self.gate: Optional[asyncio.Event] = None
        self.entered = asyncio.Event()
        self.recognize_calls = 0
        self.start_calls = 0
        self.close_calls = 0
        self.start_error: Optional[Exception] = None

    async def _start(self) -> None:
        self.start_calls += 1
        if self.start_error is not None:
            raise self.start_error

    async def _close(self) -> None:
        self.close_calls += 1

    async def recognize(self, image: NormalizedImage) -> RecognizedText:
        self.recognize_calls += 1
        self.entered.set()
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return RecognizedText(text=self.text)

    async def health_check(self) -> bool:
        return self.healthy


class FakeCamera(CameraProvider):
    """Camera provider serving one fixed frame; counts every release() call."""

    def __init__(self, frame: CapturedFrame, deny: bool = False):
        self.frame = frame
        self.deny = deny
        self.grab_error: Optional[Exception] = None
        self.acquire_calls = 0
        self.grab_calls = 0
        self.release_calls = 0
        self.streams = []

    async def acquire(self, constraints: CameraConstraints) -> CameraStream:
        self.acquire_calls += 1
        if self.deny:
            raise CameraAccessError(reason="permission denied")
        stream = CameraStream(constraints=constraints, handle=object(), width=640, height=480)
        self.streams.append(stream)
        return stream

    async def grab_frame(self, stream: CameraStream) -> CapturedFrame:
        self.grab_calls += 1
        if self.grab_error is not None:
            raise self.grab_error
        return self.frame

    async def release(self, stream: CameraStream) -> None:
        self.release_calls += 1
        stream.released = True


# ══════════════════════════════════════════════════════════════════════════
# Images
# ══════════════════════════════════════════════════════════════════════════


def make_image_bytes(size=(640, 480), color=(230, 230, 230), fmt="JPEG", mode="RGB") -> bytes:
    buffer = io.BytesIO()
    Image.new(mode, size, color).save(buffer, format=fmt)
    return buffer.getvalue()


@pytest.fixture
def jpeg_bytes() -> bytes:
    """A real 640x480 JPEG; passes MIME sniffing and decodes with Pillow."""
    return make_image_bytes()


@pytest.fixture
def png_bytes() -> bytes:
    return make_image_bytes(fmt="PNG")


@pytest.fixture
def rgb_frame() -> CapturedFrame:
    """Raw RGB frame as delivered by OpenCVCamera."""
    image = Image.new("RGB", (640, 480), (200, 200, 200))
    return CapturedFrame(data=image.tobytes(), width=640, height=480, mode="RGB")


# ══════════════════════════════════════════════════════════════════════════
# Services & Doubles
# ══════════════════════════════════════════════════════════════════════════


@pytest.fixture
def temp_storage(tmp_path):
    """A fresh storage directory for each test."""
    storage_dir = tmp_path / "storage"
    storage_dir.mkdir()
    return str(storage_dir)


@pytest.fixture
def file_service(temp_storage) -> FileService:
    return FileService(storage_root=temp_storage)


@pytest.fixture
def fake_ocr() -> FakeOcrEngine:
    return FakeOcrEngine()


@pytest.fixture
def fake_camera(rgb_frame) -> FakeCamera:
    return FakeCamera(rgb_frame)


# ══════════════════════════════════════════════════════════════════════════
# Database
# ══════════════════════════════════════════════════════════════════════════


@pytest_asyncio.fixture
async def db_engine():
    """
    In-memory SQLite with the schema created from the ORM metadata.

    StaticPool keeps a single connection so every session sees the same
    in-memory database.
    """
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


# ══════════════════════════════════════════════════════════════════════════
# API
# ══════════════════════════════════════════════════════════════════════════


@pytest.fixture
def test_app(session_factory, fake_ocr, file_service):
    """
    A fresh app per test (fresh rate limiter state) with the database, OCR
    engine and storage replaced by test instances. The lifespan does not run
    under ASGITransport, so app.state is filled in here.
    """
    from cardsnap.main import create_app

    app = create_app()

    async def override_db_session():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db_session] = override_db_session
    app.dependency_overrides[get_ocr_engine] = lambda: fake_ocr
    app.dependency_overrides[get_file_service] = lambda: file_service
    app.state.ocr_engine = fake_ocr
    return app


@pytest_asyncio.fixture
async def test_client(test_app) -> AsyncGenerator[AsyncClient, None]:
    """
    HTTPX AsyncClient routed straight into the app.

    Usage:
        async def test_health(test_client):
            response = await test_client.get("/health")
            assert response.status_code == 200
    """
    transport = ASGITransport(app=test_app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


def identity_headers(email: str, name: Optional[str] = None) -> dict:
    headers = {"X-User-Id": str(uuid4()), "X-User-Email": email}
    if name:
        headers["X-User-Name"] = name
    return headers


@pytest.fixture
def alice() -> dict:
    return identity_headers("alice@example.com", "Alice")


@pytest.fixture
def bob() -> dict:
    return identity_headers("bob@example.com", "Bob")
