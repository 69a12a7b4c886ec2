"""Entry-point for the media service."""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from enum import Enum
from pathlib import Path
from typing import List, Optional

import typer
import uvicorn
from rich.console import Console
from rich.table import Table

from media_service.bootstrap import BootstrapError, check_dependencies, initialize_app
from media_service.config import AppConfig, ConfigError
from media_service.errors import InvalidRequestError, ServiceError
from media_service.logging_utils import configure_logging
from media_service.processing.formats import check_audio_upload
from media_service.processing.waveform import (
    DurationProbe,
    PeakExtractor,
    resolve_sample_count,
    sample_count_in_range,
)
from media_service.services.archive import ZipEntrySink
from media_service.services.batch import (
    SAMPLES_RANGE_MESSAGE,
    AudioVariantGenerator,
    BatchInput,
    ImageVariantGenerator,
    VariantGenerator,
    index_uploads,
    write_archive,
)
from media_service.services.debug import create_trace, parse_debug_level
from media_service.services.manifest import parse_manifest
from media_service.web import create_app


LOGGER = logging.getLogger("media_service.cli")

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 3000

_SNIFF_BYTES = 16


cli = typer.Typer(add_completion=False, help="Media service management commands")


class BatchKind(str, Enum):
    IMAGE = "image"
    AUDIO = "audio"


config_option = typer.Option(
    None,
    "--config",
    "-c",
    help="Path to a JSON configuration file.",
    exists=True,
    dir_okay=False,
)


def _load_config(config_path: Optional[Path]) -> AppConfig:
    try:
        return initialize_app(config_path)
    except (ConfigError, BootstrapError) as error:
        typer.echo(f"Configuration error: {error}", err=True)
        raise typer.Exit(code=2) from error


@cli.command()
def serve(
    host: str = typer.Option(DEFAULT_HOST, help="Host interface for the web server"),
    port: int = typer.Option(DEFAULT_PORT, help="Port for the web server"),
    config_path: Optional[Path] = config_option,
) -> None:
    """Run the HTTP API."""

    app_config = _load_config(config_path)
    configure_logging(app_config.log_level)
    app = create_app(app_config)

    server_config = uvicorn.Config(app, host=host, port=port, log_config=None)
    server = uvicorn.Server(server_config)
    LOGGER.info("Serving on http://%s:%s", host, port)
    server.run()


async def _extract_peaks(
    config: AppConfig,
    source: Path,
    samples: Optional[int],
    samples_per_minute: Optional[int],
) -> List[float]:
    with source.open("rb") as handle:
        check_audio_upload(source.name, handle.read(_SNIFF_BYTES))

    duration: Optional[float] = None
    if samples is None:
        duration = await DurationProbe(config).probe(source)
    resolved = resolve_sample_count(
        samples,
        samples_per_minute,
        duration,
        default_samples_per_minute=config.default_samples_per_minute,
    )
    if not sample_count_in_range(resolved):
        raise InvalidRequestError(SAMPLES_RANGE_MESSAGE, details=[f"resolved {resolved} samples"])
    return await PeakExtractor(config).extract(source, resolved)


@cli.command()
def peaks(
    audio: Path = typer.Argument(
        ...,
        exists=True,
        dir_okay=False,
        help="Audio file to analyse.",
    ),
    samples: Optional[int] = typer.Option(
        None, min=1, max=10000, help="Exact number of peaks to return."
    ),
    samples_per_minute: Optional[int] = typer.Option(
        None, min=1, max=10000, help="Peak density used when --samples is omitted."
    ),
    config_path: Optional[Path] = config_option,
) -> None:
    """Print waveform peaks for a local audio file as JSON."""

    app_config = _load_config(config_path)
    try:
        result = asyncio.run(_extract_peaks(app_config, audio, samples, samples_per_minute))
    except ServiceError as error:
        typer.echo(f"Peak extraction failed: {error.message}", err=True)
        raise typer.Exit(code=1) from error

    typer.echo(json.dumps({"peaks": result, "samples": len(result)}))


async def _run_batch(
    config: AppConfig,
    kind: BatchKind,
    files: List[Path],
    manifest_path: Path,
    output: Path,
    debug: Optional[str],
) -> int:
    uploads = [BatchInput(filename=path.name, data=path.read_bytes()) for path in files]
    manifest = parse_manifest(
        manifest_path.read_text(encoding="utf-8"),
        [upload.filename for upload in uploads],
        kind=kind.value,
        max_files=config.max_batch_files,
        max_variants_per_file=config.max_variants_per_file,
    )
    trace = create_trace(parse_debug_level(debug), uuid.uuid4().hex)
    generator: VariantGenerator
    if kind is BatchKind.IMAGE:
        generator = ImageVariantGenerator(config, trace=trace)
    else:
        generator = AudioVariantGenerator(config, trace=trace)
    plan = await generator.plan(manifest, index_uploads(uploads, trace))

    output.parent.mkdir(parents=True, exist_ok=True)
    try:
        with output.open("wb") as handle:
            return await write_archive(plan, generator, ZipEntrySink(handle), trace=trace)
    except BaseException:
        output.unlink(missing_ok=True)
        raise


@cli.command()
def batch(
    files: List[Path] = typer.Argument(..., exists=True, dir_okay=False, help="Input files."),
    kind: BatchKind = typer.Option(BatchKind.IMAGE, "--kind", "-k", help="Batch type."),
    manifest: Path = typer.Option(
        ..., "--manifest", "-m", exists=True, dir_okay=False, help="Manifest JSON file."
    ),
    output: Path = typer.Option(..., "--output", "-o", help="Destination zip archive."),
    debug: Optional[str] = typer.Option(
        None, help="Embed debug.json at the given level (debug, info, warn, error, crit)."
    ),
    config_path: Optional[Path] = config_option,
) -> None:
    """Run a manifest-driven batch into a local zip archive."""

    app_config = _load_config(config_path)
    try:
        entries = asyncio.run(_run_batch(app_config, kind, files, manifest, output, debug))
    except ServiceError as error:
        typer.echo(f"Batch failed: {error.message}", err=True)
        if isinstance(error.details, list):
            for detail in error.details:
                typer.echo(f"  - {detail}", err=True)
        elif error.details:
            typer.echo(f"  - {error.details}", err=True)
        raise typer.Exit(code=1) from error

    typer.echo(f"Archive written to: {output} ({entries} entries, {output.stat().st_size} bytes)")


@cli.command()
def check(config_path: Optional[Path] = config_option) -> None:
    """Report whether the external tools and the image library are usable."""

    app_config = _load_config(config_path)
    checks = check_dependencies(app_config)
    table = Table.grid(padding=(0, 1))
    table.add_column(style="dim")
    table.add_column(style="bold")
    for name, available in checks.items():
        table.add_row(name, "[green]ok" if available else "[red]missing")
    Console().print(table)
    if not all(checks.values()):
        raise typer.Exit(code=1)


if __name__ == "__main__":
    cli()
