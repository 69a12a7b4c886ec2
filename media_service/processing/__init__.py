"""Processing backends wrapping the image library and the audio tools."""

from .formats import (
    CONTENT_TYPES,
    FIT_OPTIONS,
    SUPPORTED_AUDIO_FORMATS,
    SUPPORTED_IMAGE_FORMATS,
    UnsupportedAudioFormatError,
    check_audio_upload,
    detect_audio_format,
)
from .images import (
    ImageProcessingError,
    ImageTransform,
    InvalidImageError,
    imaging_available,
    probe_image,
    transform_image,
)
from .tools import (
    ToolError,
    ToolExitError,
    ToolNotFoundError,
    ToolOutputError,
    ToolTimeoutError,
    tool_available,
)
from .waveform import (
    MAX_SAMPLES,
    MIN_SAMPLES,
    DurationProbe,
    DurationProbeError,
    PeakExtractor,
    resample_peaks,
    resolve_sample_count,
    sample_count_in_range,
)

__all__ = [
    "CONTENT_TYPES",
    "DurationProbe",
    "DurationProbeError",
    "FIT_OPTIONS",
    "ImageProcessingError",
    "ImageTransform",
    "InvalidImageError",
    "MAX_SAMPLES",
    "MIN_SAMPLES",
    "PeakExtractor",
    "SUPPORTED_AUDIO_FORMATS",
    "SUPPORTED_IMAGE_FORMATS",
    "ToolError",
    "ToolExitError",
    "ToolNotFoundError",
    "ToolOutputError",
    "ToolTimeoutError",
    "UnsupportedAudioFormatError",
    "check_audio_upload",
    "detect_audio_format",
    "imaging_available",
    "probe_image",
    "resample_peaks",
    "resolve_sample_count",
    "sample_count_in_range",
    "tool_available",
    "transform_image",
]
