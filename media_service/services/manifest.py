"""Parsing and validation of batch manifests."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Collection, List, Literal, Optional, Sequence, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ..errors import InvalidRequestError
from ..processing.waveform import MAX_SAMPLES, MIN_SAMPLES


LOGGER = logging.getLogger(__name__)

ManifestKind = Literal["image", "audio"]

ImageFormat = Literal["jpg", "jpeg", "png", "webp", "avif", "tiff", "gif"]
FitOption = Literal["cover", "contain", "fill", "inside", "outside"]


class ManifestError(InvalidRequestError):
    """Raised when a manifest is rejected; ``details`` lists each violation."""


class ImageVariantSpec(BaseModel):
    model_config = ConfigDict(extra="ignore")

    format: ImageFormat = "jpg"
    width: Optional[int] = Field(None, gt=0)
    height: Optional[int] = Field(None, gt=0)
    fit: FitOption = "cover"
    name: Optional[str] = Field(None, min_length=1)

    @field_validator("format", "fit", mode="before")
    @classmethod
    def _lowercase(cls, value: Any) -> Any:
        return value.lower() if isinstance(value, str) else value


class AudioVariantSpec(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    samples: Optional[int] = Field(None, ge=MIN_SAMPLES, le=MAX_SAMPLES)
    samples_per_minute: Optional[int] = Field(
        None, ge=MIN_SAMPLES, le=MAX_SAMPLES, alias="samplesPerMinute"
    )
    name: Optional[str] = Field(None, min_length=1)


class ImageOutputSpec(BaseModel):
    file: str = Field(..., min_length=1)
    variants: List[ImageVariantSpec] = Field(..., min_length=1)


class AudioOutputSpec(BaseModel):
    file: str = Field(..., min_length=1)
    variants: List[AudioVariantSpec] = Field(..., min_length=1)


class ImageManifestModel(BaseModel):
    outputs: List[ImageOutputSpec] = Field(..., min_length=1)


class AudioManifestModel(BaseModel):
    outputs: List[AudioOutputSpec] = Field(..., min_length=1)


OutputSpec = Union[ImageOutputSpec, AudioOutputSpec]


@dataclass(frozen=True)
class Manifest:
    """A validated manifest plus the document exactly as it was submitted."""

    kind: ManifestKind
    raw: Any
    outputs: Sequence[OutputSpec]

    @property
    def variant_count(self) -> int:
        return sum(len(output.variants) for output in self.outputs)

    def pretty_json(self) -> str:
        return json.dumps(self.raw, indent=2, ensure_ascii=False)


def format_validation_errors(error: ValidationError) -> List[str]:
    """Render each pydantic error as ``<json.path>: <message>``."""

    messages: List[str] = []
    for issue in error.errors():
        path = ".".join(str(part) for part in issue.get("loc", ())) or "manifest"
        messages.append(f"{path}: {issue.get('msg', 'Invalid value')}")
    return messages


def check_file_count(count: int, max_files: int) -> None:
    if count > max_files:
        raise ManifestError(
            f"Too many files. Maximum is {max_files}.", details=[f"received {count} files"]
        )


def parse_manifest(
    text: str | bytes,
    uploaded_names: Collection[str],
    *,
    kind: ManifestKind,
    max_files: int,
    max_variants_per_file: int,
) -> Manifest:
    """Validate *text* against the uploaded file names and the configured limits.

    Every check runs before any variant is produced: a rejected manifest never
    yields partial output.
    """

    try:
        raw = json.loads(text)
    except (ValueError, UnicodeDecodeError) as error:
        LOGGER.debug("Manifest JSON could not be parsed: %s", error)
        raise ManifestError("Invalid manifest JSON") from error

    model = ImageManifestModel if kind == "image" else AudioManifestModel
    try:
        parsed = model.model_validate(raw)
    except ValidationError as error:
        raise ManifestError("Invalid manifest", details=format_validation_errors(error)) from error

    check_file_count(len(uploaded_names), max_files)
    if len(parsed.outputs) > max_files:
        raise ManifestError(
            f"Too many outputs in manifest. Maximum is {max_files}.",
            details=[f"received {len(parsed.outputs)} outputs"],
        )

    for output in parsed.outputs:
        if len(output.variants) > max_variants_per_file:
            raise ManifestError(
                f"Too many variants for file '{output.file}'. Maximum is {max_variants_per_file}.",
                details=[f"received {len(output.variants)} variants"],
            )

    available = set(uploaded_names)
    missing = [output.file for output in parsed.outputs if output.file not in available]
    if missing:
        raise ManifestError(
            f"Manifest references missing file: {missing[0]}",
            details=[f"missing file: {name}" for name in dict.fromkeys(missing)],
        )

    return Manifest(kind=kind, raw=raw, outputs=parsed.outputs)


__all__ = [
    "AudioOutputSpec",
    "AudioVariantSpec",
    "ImageOutputSpec",
    "ImageVariantSpec",
    "Manifest",
    "ManifestError",
    "ManifestKind",
    "OutputSpec",
    "check_file_count",
    "format_validation_errors",
    "parse_manifest",
]
