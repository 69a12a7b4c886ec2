"""Manifest-driven batch generation streamed into a zip archive.

A batch runs in two phases. Planning resolves every variant against its
input (format sniffing, duration probing, derived sample counts, archive
paths) and raises :class:`~media_service.errors.InvalidRequestError` before
anything is streamed. Generation then produces the artifacts in manifest
order and variant order, and :class:`ArchiveAssembler` appends each one to
the archive as soon as it exists.
"""

from __future__ import annotations

import asyncio
import functools
import json
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import (
    Any,
    AsyncIterator,
    Callable,
    Dict,
    List,
    Mapping,
    Optional,
    Sequence,
    Set,
)

from ..config import AppConfig
from ..errors import InvalidRequestError
from ..processing.formats import check_audio_upload, is_supported_audio_format
from ..processing.images import ImageTransform, probe_image, transform_image
from ..processing.waveform import (
    MAX_SAMPLES,
    MIN_SAMPLES,
    DurationProbe,
    PeakExtractor,
    resolve_sample_count,
    sample_count_in_range,
)
from .archive import EntrySink
from .debug import DebugTrace, maybe_step
from .events import emit_variant_event
from .manifest import AudioVariantSpec, ImageVariantSpec, Manifest
from .naming import (
    base_name,
    default_image_name,
    default_peaks_name,
    peaks_entry_name,
    sanitize_filename,
)
from .temp_files import TempFileManager


LOGGER = logging.getLogger(__name__)

MANIFEST_ENTRY = "manifest.json"
DEBUG_ENTRY = "debug.json"

SAMPLES_RANGE_MESSAGE = (
    f"Invalid samples configuration. Must be between {MIN_SAMPLES} and {MAX_SAMPLES}."
)


@dataclass(frozen=True)
class BatchInput:
    """One uploaded file held in memory for the duration of the request."""

    filename: str
    data: bytes
    content_type: Optional[str] = None

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class ArchiveEntry:
    name: str
    data: bytes


@dataclass
class VariantPlan:
    output_index: int
    variant_index: int
    archive_path: str
    spec: ImageVariantSpec | AudioVariantSpec
    transform: Optional[ImageTransform] = None
    samples: Optional[int] = None
    samples_per_minute: Optional[int] = None

    def describe(self) -> Dict[str, Any]:
        record: Dict[str, Any] = {
            "output": self.output_index,
            "variant": self.variant_index,
            "path": self.archive_path,
        }
        if self.transform is not None:
            record.update(
                format=self.transform.format,
                width=self.transform.width,
                height=self.transform.height,
                fit=self.transform.fit,
            )
        if self.samples is not None:
            record["samples"] = self.samples
        if self.samples_per_minute is not None:
            record["samplesPerMinute"] = self.samples_per_minute
        return record


@dataclass
class InputPlan:
    source: BatchInput
    base: str
    variants: List[VariantPlan] = field(default_factory=list)
    extension: str = ""
    detected_format: Optional[str] = None
    duration_seconds: Optional[float] = None
    temp_path: Optional[Path] = None


@dataclass
class BatchPlan:
    manifest: Manifest
    inputs: List[InputPlan]

    @property
    def variant_count(self) -> int:
        return sum(len(item.variants) for item in self.inputs)


def index_uploads(
    uploads: Sequence[BatchInput], trace: Optional[DebugTrace] = None
) -> Dict[str, BatchInput]:
    """Map uploads by original filename; the first upload of a name wins."""

    indexed: Dict[str, BatchInput] = {}
    for upload in uploads:
        if upload.filename in indexed:
            LOGGER.warning("Ignoring duplicate upload named %s", upload.filename)
            if trace is not None:
                trace.warn(f"Duplicate upload ignored: {upload.filename}")
            continue
        indexed[upload.filename] = upload
    return indexed


class VariantGenerator:
    """Shared planning and generation flow for one manifest kind."""

    kind = ""

    def __init__(self, config: AppConfig, *, trace: Optional[DebugTrace] = None) -> None:
        self._config = config
        self._trace = trace

    async def plan(self, manifest: Manifest, uploads: Mapping[str, BatchInput]) -> BatchPlan:
        seen: Set[str] = set()
        inputs: List[InputPlan] = []
        try:
            for output_index, output in enumerate(manifest.outputs):
                source = uploads[output.file]
                input_plan = InputPlan(source=source, base=base_name(source.filename))
                with maybe_step(self._trace, f"plan:{source.filename}"):
                    await self._plan_input(output_index, input_plan, output.variants)
                for variant in input_plan.variants:
                    if variant.archive_path in seen:
                        raise InvalidRequestError(
                            f"Duplicate output path in manifest: {variant.archive_path}",
                            details=[
                                f"outputs.{variant.output_index}.variants.{variant.variant_index}"
                            ],
                        )
                    seen.add(variant.archive_path)
                inputs.append(input_plan)
        except BaseException:
            await self.close()
            raise
        plan = BatchPlan(manifest=manifest, inputs=inputs)
        if self._trace is not None:
            self._trace.input.update(
                outputs=len(manifest.outputs),
                variants=plan.variant_count,
                files=[self._describe_input(item) for item in inputs],
            )
        return plan

    async def generate(self, plan: BatchPlan) -> AsyncIterator[ArchiveEntry]:
        for input_plan in plan.inputs:
            async for entry in self._generate_input(input_plan):
                yield entry

    async def close(self) -> None:
        """Release resources still held by the batch."""

    async def _plan_input(
        self,
        output_index: int,
        input_plan: InputPlan,
        variants: Sequence[Any],
    ) -> None:
        raise NotImplementedError

    def _generate_input(self, input_plan: InputPlan) -> AsyncIterator[ArchiveEntry]:
        raise NotImplementedError

    def _describe_input(self, input_plan: InputPlan) -> Dict[str, Any]:
        return {
            "name": input_plan.source.filename,
            "sizeBytes": input_plan.source.size,
            "contentType": input_plan.source.content_type,
        }

    def _record_variant(
        self,
        input_plan: InputPlan,
        variant: VariantPlan,
        *,
        size_bytes: int,
        started: float,
        **extra: Any,
    ) -> None:
        duration_ms = round((time.perf_counter() - started) * 1000, 1)
        record = {"file": input_plan.source.filename, **variant.describe(), **extra}
        record.update(sizeBytes=size_bytes, durationMs=duration_ms)
        emit_variant_event(
            f"{self.kind} variant generated",
            payload={"path": variant.archive_path, "size_bytes": size_bytes},
            duration_ms=duration_ms,
            level=logging.DEBUG,
        )
        if self._trace is not None:
            self._trace.variants.append(record)


class ImageVariantGenerator(VariantGenerator):
    """Resize and re-encode each image once per variant."""

    kind = "image"

    def __init__(
        self,
        config: AppConfig,
        *,
        trace: Optional[DebugTrace] = None,
        transformer: Callable[..., bytes] = transform_image,
    ) -> None:
        super().__init__(config, trace=trace)
        self._transformer = transformer

    async def _plan_input(
        self,
        output_index: int,
        input_plan: InputPlan,
        variants: Sequence[ImageVariantSpec],
    ) -> None:
        info = probe_image(input_plan.source.data, max_pixels=self._config.image_max_input_pixels)
        input_plan.detected_format = info.format
        for variant_index, spec in enumerate(variants):
            transform = ImageTransform(
                format=spec.format, width=spec.width, height=spec.height, fit=spec.fit
            )
            if spec.name:
                file_name = sanitize_filename(spec.name)
            else:
                file_name = default_image_name(input_plan.base, spec.width, spec.height, spec.format)
            input_plan.variants.append(
                VariantPlan(
                    output_index=output_index,
                    variant_index=variant_index,
                    archive_path=f"images/{input_plan.base}/{file_name}",
                    spec=spec,
                    transform=transform,
                )
            )

    async def _generate_input(self, input_plan: InputPlan) -> AsyncIterator[ArchiveEntry]:
        loop = asyncio.get_running_loop()
        for variant in input_plan.variants:
            started = time.perf_counter()
            operation = functools.partial(
                self._transformer,
                input_plan.source.data,
                variant.transform,
                max_pixels=self._config.image_max_input_pixels,
            )
            data = await loop.run_in_executor(None, operation)
            self._record_variant(input_plan, variant, size_bytes=len(data), started=started)
            yield ArchiveEntry(variant.archive_path, data)

    def _describe_input(self, input_plan: InputPlan) -> Dict[str, Any]:
        record = super()._describe_input(input_plan)
        record["detectedFormat"] = input_plan.detected_format
        return record


class AudioVariantGenerator(VariantGenerator):
    """Extract waveform peaks once per variant from a temp copy of each input."""

    kind = "audio"

    def __init__(
        self,
        config: AppConfig,
        *,
        trace: Optional[DebugTrace] = None,
        extractor: Optional[PeakExtractor] = None,
        duration_probe: Optional[DurationProbe] = None,
        temp_files: Optional[TempFileManager] = None,
    ) -> None:
        super().__init__(config, trace=trace)
        self._extractor = extractor or PeakExtractor(config)
        self._probe = duration_probe or DurationProbe(config)
        self._temp_files = temp_files or TempFileManager(config.temp_root)

    async def close(self) -> None:
        await self._temp_files.release_all()

    async def _materialize(self, input_plan: InputPlan) -> Path:
        if input_plan.temp_path is None:
            extension = input_plan.extension if is_supported_audio_format(input_plan.extension) else ""
            with maybe_step(self._trace, f"write_temp_file:{input_plan.source.filename}"):
                input_plan.temp_path = await self._temp_files.materialize(
                    input_plan.source.data, extension
                )
        return input_plan.temp_path

    async def _plan_input(
        self,
        output_index: int,
        input_plan: InputPlan,
        variants: Sequence[AudioVariantSpec],
    ) -> None:
        source = input_plan.source
        input_plan.extension, input_plan.detected_format = check_audio_upload(
            source.filename, source.data
        )

        if any(spec.samples is None for spec in variants):
            path = await self._materialize(input_plan)
            with maybe_step(self._trace, f"get_duration:{source.filename}"):
                input_plan.duration_seconds = await self._probe.probe(path)

        for variant_index, spec in enumerate(variants):
            samples_per_minute = None
            if spec.samples is None:
                samples_per_minute = (
                    spec.samples_per_minute or self._config.default_samples_per_minute
                )
            samples = resolve_sample_count(
                spec.samples,
                samples_per_minute,
                input_plan.duration_seconds,
                default_samples_per_minute=self._config.default_samples_per_minute,
            )
            if not sample_count_in_range(samples):
                raise InvalidRequestError(
                    SAMPLES_RANGE_MESSAGE,
                    details=[
                        f"outputs.{output_index}.variants.{variant_index}: "
                        f"resolved {samples} samples for '{source.filename}'"
                    ],
                )
            if spec.name:
                file_name = peaks_entry_name(sanitize_filename(spec.name))
            else:
                file_name = default_peaks_name(input_plan.base, samples)
            input_plan.variants.append(
                VariantPlan(
                    output_index=output_index,
                    variant_index=variant_index,
                    archive_path=f"peaks/{input_plan.base}/{file_name}",
                    spec=spec,
                    samples=samples,
                    samples_per_minute=samples_per_minute,
                )
            )

    async def _generate_input(self, input_plan: InputPlan) -> AsyncIterator[ArchiveEntry]:
        path = await self._materialize(input_plan)
        try:
            for variant in input_plan.variants:
                started = time.perf_counter()
                peaks = await self._extractor.extract(path, variant.samples)  # type: ignore[arg-type]
                data = json.dumps({"peaks": peaks, "samples": len(peaks)}).encode("utf-8")
                self._record_variant(
                    input_plan,
                    variant,
                    size_bytes=len(data),
                    started=started,
                    samplesReturned=len(peaks),
                    durationSeconds=input_plan.duration_seconds,
                )
                yield ArchiveEntry(variant.archive_path, data)
        finally:
            await self._temp_files.release(path)
            input_plan.temp_path = None

    def _describe_input(self, input_plan: InputPlan) -> Dict[str, Any]:
        record = super()._describe_input(input_plan)
        record.update(
            extension=input_plan.extension or None,
            detectedFormat=input_plan.detected_format,
            durationSeconds=input_plan.duration_seconds,
        )
        return record


class ArchiveAssembler:
    """Stream a planned batch into *sink*, yielding archive bytes as they appear.

    Entry order is fixed: ``manifest.json``, every variant in manifest order,
    then ``debug.json`` when a trace is active. A failure after the first
    chunk has been yielded cannot become an HTTP error any more; it is logged
    and re-raised so the transport drops the truncated stream.
    """

    def __init__(self, sink: EntrySink, *, trace: Optional[DebugTrace] = None) -> None:
        self._sink = sink
        self._trace = trace
        self.entries_written = 0

    async def stream(self, plan: BatchPlan, generator: VariantGenerator) -> AsyncIterator[bytes]:
        self.entries_written = 0
        try:
            self._sink.add(MANIFEST_ENTRY, plan.manifest.pretty_json().encode("utf-8"))
            self.entries_written += 1
            yield self._sink.drain()

            async for entry in generator.generate(plan):
                self._sink.add(entry.name, entry.data)
                self.entries_written += 1
                chunk = self._sink.drain()
                if chunk:
                    yield chunk

            if self._trace is not None:
                self._trace.output.update(entries=self.entries_written + 1, variants=plan.variant_count)
                self._trace.finish()
                self._sink.add(DEBUG_ENTRY, self._trace.to_json(indent=2).encode("utf-8"))
                self.entries_written += 1

            self._sink.finalize()
            yield self._sink.drain()
            LOGGER.info("Batch archive complete with %s entries", self.entries_written)
        except asyncio.CancelledError:
            LOGGER.info("Batch archive cancelled after %s entries", self.entries_written)
            raise
        except Exception as error:
            if self._trace is not None:
                self._trace.fail(str(error))
            LOGGER.exception("Batch archive aborted after %s entries", self.entries_written)
            raise
        finally:
            await generator.close()


async def write_archive(
    plan: BatchPlan,
    generator: VariantGenerator,
    sink: EntrySink,
    *,
    trace: Optional[DebugTrace] = None,
) -> int:
    """Run a batch to completion into *sink* and return the number of entries.

    Drained chunks are discarded, so *sink* must write to its own target.
    """

    assembler = ArchiveAssembler(sink, trace=trace)
    async for _chunk in assembler.stream(plan, generator):
        pass
    return assembler.entries_written


__all__ = [
    "ArchiveAssembler",
    "ArchiveEntry",
    "AudioVariantGenerator",
    "BatchInput",
    "BatchPlan",
    "DEBUG_ENTRY",
    "ImageVariantGenerator",
    "InputPlan",
    "MANIFEST_ENTRY",
    "SAMPLES_RANGE_MESSAGE",
    "VariantGenerator",
    "VariantPlan",
    "index_uploads",
    "write_archive",
]
