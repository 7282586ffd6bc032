"""CardSnap — CLI tests with the camera and OCR engine replaced by fakes."""

import json
from unittest.mock import patch

from PIL import Image
from typer.testing import CliRunner

from cardsnap.cli import app
from cardsnap.exceptions import OcrUnavailableError

from conftest import FakeCamera, FakeOcrEngine

runner = CliRunner()


class TestExtractCommand:
    def test_extract_json(self, tmp_path, jpeg_bytes):
        photo = tmp_path / "card.jpg"
        photo.write_bytes(jpeg_bytes)
        output = tmp_path / "out" / "normalized.jpg"

        with patch("cardsnap.cli.create_ocr_engine", return_value=FakeOcrEngine()):
            result = runner.invoke(app, ["extract", str(photo), "--output", str(output), "--json"])

        assert result.exit_code == 0, result.output
        body = json.loads(result.stdout)
        assert body["fields"]["company"] == "Acme Corp"
        assert body["ocr_available"] is True
        with Image.open(output) as image:
            assert image.size == (1280, 731)

    def test_extract_degrades_when_engine_cannot_start(self, tmp_path, jpeg_bytes):
        photo = tmp_path / "card.jpg"
        photo.write_bytes(jpeg_bytes)
        output = tmp_path / "normalized.jpg"
        engine = FakeOcrEngine()
        engine.start_error = OcrUnavailableError(message="Text recognition is not installed on this server.")

        with patch("cardsnap.cli.create_ocr_engine", return_value=engine):
            result = runner.invoke(app, ["extract", str(photo), "-o", str(output), "--json"])

        assert result.exit_code == 0, result.output
        body = json.loads(result.stdout)
        assert body["ocr_available"] is False
        assert body["warning"] == "Text recognition is not installed on this server."
        assert body["fields"]["name"] is None
        assert output.exists()
        assert not engine.started

    def test_extract_json_stays_parseable_when_ocr_fails(self, tmp_path, jpeg_bytes):
        """The degraded path logs a warning; it must not land in the JSON on stdout."""
        photo = tmp_path / "card.jpg"
        photo.write_bytes(jpeg_bytes)
        engine = FakeOcrEngine(error=OcrUnavailableError(message="engine crashed"))

        with patch("cardsnap.cli.create_ocr_engine", return_value=engine):
            result = runner.invoke(app, ["extract", str(photo), "--json"])

        assert result.exit_code == 0, result.output
        body = json.loads(result.stdout)
        assert body["ocr_available"] is False
        assert body["fields"]["notes"] == ""
        assert engine.close_calls == 1

    def test_extract_table(self, tmp_path, jpeg_bytes):
        photo = tmp_path / "card.jpg"
        photo.write_bytes(jpeg_bytes)

        with patch("cardsnap.cli.create_ocr_engine", return_value=FakeOcrEngine()):
            result = runner.invoke(app, ["extract", str(photo)])

        assert result.exit_code == 0, result.output
        assert "Jane Doe" in result.output

    def test_extract_undecodable_file(self, tmp_path):
        photo = tmp_path / "card.jpg"
        photo.write_bytes(b"not an image")

        with patch("cardsnap.cli.create_ocr_engine", return_value=FakeOcrEngine()):
            result = runner.invoke(app, ["extract", str(photo)])

        assert result.exit_code == 1
        assert "retake" in result.output.lower()

    def test_unknown_engine(self, tmp_path, jpeg_bytes):
        photo = tmp_path / "card.jpg"
        photo.write_bytes(jpeg_bytes)
        result = runner.invoke(app, ["extract", str(photo), "--engine", "abbyy"])
        assert result.exit_code == 2
        assert "Unknown OCR engine" in result.output


class TestCaptureCommand:
    def test_capture_with_webcam(self, tmp_path, rgb_frame):
        output = tmp_path / "card.jpg"
        camera = FakeCamera(rgb_frame)

        with patch("cardsnap.cli.OpenCVCamera", return_value=camera), \
             patch("cardsnap.cli.create_ocr_engine", return_value=FakeOcrEngine()):
            result = runner.invoke(app, ["capture", "--output", str(output), "--json"], input="\n")

        assert result.exit_code == 0, result.output
        assert output.exists()
        assert camera.release_calls == 1
        assert '"email": "jane.doe@acme.com"' in result.output

    def test_capture_camera_denied(self, tmp_path, rgb_frame):
        camera = FakeCamera(rgb_frame, deny=True)

        with patch("cardsnap.cli.OpenCVCamera", return_value=camera), \
             patch("cardsnap.cli.create_ocr_engine", return_value=FakeOcrEngine()):
            result = runner.invoke(app, ["capture", "--output", str(tmp_path / "card.jpg")], input="n\n")

        assert result.exit_code == 1
        assert "permission denied" in result.output
        assert not (tmp_path / "card.jpg").exists()
