"""Waveform peak extraction and duration probing via external tools."""

from __future__ import annotations

import json
import logging
import math
from pathlib import Path
from typing import List, Sequence

import numpy as np

from ..config import AppConfig
from .tools import ToolOutputError, run_tool


LOGGER = logging.getLogger(__name__)

MIN_SAMPLES = 1
MAX_SAMPLES = 10_000


class DurationProbeError(ToolOutputError):
    """Raised when the probe output is not a finite duration."""


def _round_half_up(value: float, places: int = 3) -> float:
    factor = 10 ** places
    return math.floor(value * factor + 0.5) / factor


def normalize_waveform_data(data: Sequence[int], bits: int) -> List[float]:
    """Reduce interleaved ``(min, max)`` pairs to normalised peaks in ``[0, 1]``.

    Samples are scaled by the full range implied by *bits*: 128 for 8-bit
    data and 32768 otherwise. A trailing unpaired value is treated as having a
    zero partner.
    """

    if len(data) == 0:
        return []
    scale = 128.0 if bits == 8 else 32768.0
    values = np.abs(np.asarray(data, dtype=np.float64))
    if values.size % 2:
        values = np.append(values, 0.0)
    pairs = values.reshape(-1, 2)
    peaks = np.minimum(pairs.max(axis=1) / scale, 1.0)
    return peaks.tolist()


def resample_peaks(peaks: Sequence[float], target_samples: int) -> List[float]:
    """Max-pool *peaks* down (or up) to exactly *target_samples* values.

    When the input already has the requested length it is returned as-is,
    without rounding. Every resampled value is rounded to three decimals.
    """

    if len(peaks) == 0:
        return []
    if len(peaks) == target_samples:
        return peaks if isinstance(peaks, list) else list(peaks)
    if target_samples <= 0:
        raise ValueError("target_samples must be positive")

    source_length = len(peaks)
    ratio = source_length / target_samples
    result: List[float] = []
    for index in range(target_samples):
        start = math.floor(index * ratio)
        end = math.floor((index + 1) * ratio)
        if start >= source_length:
            value = peaks[-1]
        elif start == end:
            value = peaks[start]
        else:
            value = max(peaks[start:min(end, source_length)])
        result.append(_round_half_up(float(value)))
    return result


def resolve_sample_count(
    samples: int | None,
    samples_per_minute: int | None,
    duration_seconds: float | None,
    *,
    default_samples_per_minute: int = 120,
) -> int:
    """Return the explicit sample count or derive one from the clip duration."""

    if samples is not None:
        return samples
    if duration_seconds is None:
        raise ValueError("duration_seconds is required when samples is not given")
    density = samples_per_minute if samples_per_minute is not None else default_samples_per_minute
    return int(_round_half_up(duration_seconds / 60 * density, 0))


def sample_count_in_range(samples: int) -> bool:
    return MIN_SAMPLES <= samples <= MAX_SAMPLES


class PeakExtractor:
    """Run the waveform tool on a file and return resampled peaks."""

    def __init__(self, config: AppConfig) -> None:
        self._binary = config.waveform_binary
        self._timeout = config.waveform_timeout_seconds
        self._pixels_per_second = config.waveform_pixels_per_second
        self._bits = config.waveform_bits

    def build_command(self, source: Path) -> List[str]:
        return [
            self._binary,
            "-i",
            str(source),
            "--output-format",
            "json",
            "--pixels-per-second",
            str(self._pixels_per_second),
            "-b",
            str(self._bits),
        ]

    async def extract(self, source: Path, target_samples: int) -> List[float]:
        result = await run_tool(
            self.build_command(source), timeout=self._timeout, label="audiowaveform"
        )
        try:
            payload = json.loads(result.stdout)
            raw_data = payload.get("data") or []
            bits = int(payload.get("bits") or 8)
            peaks = normalize_waveform_data(raw_data, bits)
        except (ValueError, TypeError, AttributeError) as error:
            raise ToolOutputError(
                f"Failed to parse audiowaveform output: {error}",
                tool="audiowaveform",
                diagnostic=result.stdout[:500],
            ) from error
        LOGGER.debug(
            "Extracted %s raw peaks from %s; resampling to %s", len(peaks), source, target_samples
        )
        return resample_peaks(peaks, target_samples)


class DurationProbe:
    """Ask the media inspection tool for the container duration in seconds."""

    def __init__(self, config: AppConfig) -> None:
        self._binary = config.probe_binary
        self._timeout = config.duration_timeout_seconds

    def build_command(self, source: Path) -> List[str]:
        return [
            self._binary,
            "-v",
            "error",
            "-show_entries",
            "format=duration",
            "-of",
            "default=noprint_wrappers=1:nokey=1",
            str(source),
        ]

    async def probe(self, source: Path) -> float:
        result = await run_tool(self.build_command(source), timeout=self._timeout, label="ffprobe")
        text = result.stdout.strip()
        try:
            value = float(text)
        except ValueError as error:
            raise DurationProbeError(
                f"ffprobe returned invalid duration: {text}", tool="ffprobe", diagnostic=text
            ) from error
        if not math.isfinite(value):
            raise DurationProbeError(
                f"ffprobe returned invalid duration: {text}", tool="ffprobe", diagnostic=text
            )
        return value


__all__ = [
    "DurationProbe",
    "DurationProbeError",
    "MAX_SAMPLES",
    "MIN_SAMPLES",
    "PeakExtractor",
    "normalize_waveform_data",
    "resample_peaks",
    "resolve_sample_count",
    "sample_count_in_range",
]
