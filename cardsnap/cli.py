"""Typer CLI: capture a card from the webcam, extract fields from a photo, run the API."""

import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from cardsnap.capture.camera import CameraConstraints, OpenCVCamera
from cardsnap.capture.models import CapturedFrame, CaptureFailure, CaptureResult, CaptureSuccess
from cardsnap.capture.pipeline import CardPipeline
from cardsnap.capture.session import CaptureSession
from cardsnap.config import settings
from cardsnap.log import setup_logging
from cardsnap.services.ocr_factory import create_ocr_engine

app = typer.Typer(no_args_is_help=True, help="CardSnap business card capture.")
console = Console()
logger = logging.getLogger(__name__)

FIELD_ORDER = ("name", "title", "company", "email", "phone", "website", "notes")


def _print_result(result: CaptureResult, output: Optional[Path], as_json: bool) -> None:
    if isinstance(result, CaptureFailure):
        console.print(f"[red]{result.error.message}[/red]")
        raise typer.Exit(1)

    if output is not None:
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_bytes(result.image.data)

    fields = result.fields.to_dict()
    if as_json:
        typer.echo(
            json.dumps(
                {
                    "fields": fields,
                    "image": str(output) if output else None,
                    "ocr_available": not result.degraded,
                    "warning": result.warning.message if result.warning else None,
                },
                indent=2,
            )
        )
        return

    if result.degraded:
        console.print(f"[yellow]{result.warning.message}[/yellow]")

    table = Table(title="Extracted fields")
    table.add_column("Field")
    table.add_column("Value")
    for key in FIELD_ORDER:
        table.add_row(key, fields.get(key) or "[dim]-[/dim]")
    console.print(table)
    if output is not None:
        console.print(
            f"Card image saved to {output} ({result.image.width}x{result.image.height})"
        )


async def _run_capture(constraints: CameraConstraints, engine_name: Optional[str]) -> CaptureResult:
    async with CaptureSession(OpenCVCamera(), create_ocr_engine(engine_name), constraints) as session:
        failure = await session.start()
        while True:
            if failure is not None:
                console.print(f"[red]{failure.error.message}[/red]")
                if not typer.confirm("Try again?", default=False):
                    return failure
                failure = await session.retake()
                continue

            await asyncio.to_thread(
                console.input, "Hold the card in front of the camera and press [bold]Enter[/bold] "
            )
            with console.status("Reading card..."):
                result = await session.capture()

            if isinstance(result, CaptureSuccess):
                return result
            console.print(f"[red]{result.error.message}[/red]")
            if not typer.confirm("Retake?", default=True):
                return result
            failure = await session.retake()


@app.command("capture")
def capture(
    camera_index: int = typer.Option(settings.camera_index, "--camera-index", help="Webcam device index"),
    output: Path = typer.Option(Path("card.jpg"), "--output", "-o", help="Where to write the card image"),
    engine: Optional[str] = typer.Option(None, "--engine", help="OCR engine: tesseract or gemini"),
    as_json: bool = typer.Option(False, "--json", help="Print fields as JSON"),
) -> None:
    """Capture a business card with the webcam and print the extracted fields."""
    setup_logging("WARNING", stream=sys.stderr)
    constraints = CameraConstraints(
        width=settings.camera_width,
        height=settings.camera_height,
        facing_mode=settings.camera_facing_mode,
        device_index=camera_index,
    )
    try:
        result = asyncio.run(_run_capture(constraints, engine))
    except ValueError as e:
        typer.secho(str(e), fg=typer.colors.RED)
        raise typer.Exit(2)
    _print_result(result, output, as_json)


async def _run_extract(data: bytes, engine_name: Optional[str]) -> CaptureResult:
    # The pipeline starts the engine itself so a failed start degrades the result
    engine = create_ocr_engine(engine_name)
    try:
        return await CardPipeline(engine).run(CapturedFrame.from_encoded(data))
    finally:
        await engine.close()


@app.command("extract")
def extract(
    image: Path = typer.Argument(..., exists=True, dir_okay=False, readable=True, help="Photo of a card"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write the normalized card image here"),
    engine: Optional[str] = typer.Option(None, "--engine", help="OCR engine: tesseract or gemini"),
    as_json: bool = typer.Option(False, "--json", help="Print fields as JSON"),
) -> None:
    """Extract contact fields from a photo of a business card."""
    setup_logging("WARNING", stream=sys.stderr)
    try:
        result = asyncio.run(_run_extract(image.read_bytes(), engine))
    except ValueError as e:
        typer.secho(str(e), fg=typer.colors.RED)
        raise typer.Exit(2)
    _print_result(result, output, as_json)


@app.command("serve")
def serve(
    host: str = typer.Option(settings.backend_host, "--host"),
    port: int = typer.Option(settings.backend_port, "--port"),
    reload: bool = typer.Option(False, "--reload", help="Restart on code changes (development)"),
) -> None:
    """Run the HTTP API with uvicorn."""
    import uvicorn

    uvicorn.run("cardsnap.main:app", host=host, port=port, reload=reload, log_level=settings.log_level.lower())


if __name__ == "__main__":
    app()
