"""Image resize and re-encode helpers built on Pillow."""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from PIL import Image, ImageOps, UnidentifiedImageError

from ..errors import InvalidRequestError, ServiceError


LOGGER = logging.getLogger(__name__)

_PIL_FORMATS: Dict[str, str] = {
    "jpg": "JPEG",
    "jpeg": "JPEG",
    "png": "PNG",
    "webp": "WEBP",
    "avif": "AVIF",
    "tiff": "TIFF",
    "gif": "GIF",
}

# Modes each encoder saves as-is; anything else goes through RGB or RGBA.
_WRITABLE_MODES: Dict[str, Tuple[str, ...]] = {
    "JPEG": ("RGB", "L"),
    "PNG": ("1", "L", "LA", "I", "I;16", "P", "RGB", "RGBA"),
    "GIF": ("1", "L", "P", "RGB", "RGBA"),
    "WEBP": ("RGB", "RGBA"),
    "AVIF": ("RGB", "RGBA"),
    "TIFF": ("1", "L", "LA", "P", "RGB", "RGBA"),
}

_RESAMPLE = Image.Resampling.LANCZOS


class InvalidImageError(InvalidRequestError):
    """Raised when an upload cannot be decoded or exceeds the pixel limit."""


class ImageProcessingError(ServiceError):
    """Raised when a decoded image cannot be resized or encoded."""


@dataclass(frozen=True)
class ImageTransform:
    """A single atomic resize plus the target encoding."""

    format: str = "jpg"
    width: Optional[int] = None
    height: Optional[int] = None
    fit: str = "cover"

    @property
    def resizes(self) -> bool:
        return self.width is not None or self.height is not None


@dataclass(frozen=True)
class ImageInfo:
    width: int
    height: int
    format: Optional[str]


def _open(data: bytes, *, max_pixels: int) -> Image.Image:
    try:
        image = Image.open(io.BytesIO(data))
    except (UnidentifiedImageError, Image.DecompressionBombError) as error:
        raise InvalidImageError("Unsupported or corrupt image data", details=str(error)) from error
    width, height = image.size
    if width * height > max_pixels:
        image.close()
        raise InvalidImageError(
            f"Input image exceeds the pixel limit of {max_pixels} pixels",
            details=f"{width}x{height}",
        )
    return image


def probe_image(data: bytes, *, max_pixels: int) -> ImageInfo:
    """Read the header of *data* and return its dimensions and format."""

    with _open(data, max_pixels=max_pixels) as image:
        return ImageInfo(width=image.width, height=image.height, format=image.format)


def _scaled(size: Tuple[int, int], scale: float) -> Tuple[int, int]:
    return max(1, round(size[0] * scale)), max(1, round(size[1] * scale))


def _background(image: Image.Image):
    return (0, 0, 0, 0) if "A" in image.getbands() else 0


def resize_image(image: Image.Image, width: Optional[int], height: Optional[int], fit: str) -> Image.Image:
    """Resize *image* according to the requested bounds and fit mode.

    ``cover`` crops to fill the box, ``contain`` letterboxes inside it,
    ``fill`` stretches to it, ``inside`` and ``outside`` keep the aspect
    ratio and bound the larger or smaller side respectively. With a single
    dimension the other one follows the aspect ratio.
    """

    source_width, source_height = image.size
    if width is None and height is None:
        return image
    if width is None or height is None:
        scale = (width / source_width) if width is not None else (height / source_height)  # type: ignore[operator]
        return image.resize(_scaled(image.size, scale), _RESAMPLE)

    if fit == "fill":
        return image.resize((width, height), _RESAMPLE)
    if fit == "cover":
        return ImageOps.fit(image, (width, height), method=_RESAMPLE, centering=(0.5, 0.5))
    if fit == "contain":
        if image.mode not in ("RGB", "RGBA", "L", "LA"):
            image = image.convert("RGBA")
        return ImageOps.pad(
            image, (width, height), method=_RESAMPLE, color=_background(image), centering=(0.5, 0.5)
        )
    if fit == "inside":
        scale = min(width / source_width, height / source_height)
        return image.resize(_scaled(image.size, scale), _RESAMPLE)
    if fit == "outside":
        scale = max(width / source_width, height / source_height)
        return image.resize(_scaled(image.size, scale), _RESAMPLE)
    raise ValueError(f"Unknown fit option: {fit}")


def _prepare_mode(image: Image.Image, pil_format: str) -> Image.Image:
    writable = _WRITABLE_MODES[pil_format]
    if image.mode in writable:
        return image
    has_alpha = "A" in image.getbands() or "transparency" in image.info
    return image.convert("RGBA" if has_alpha and "RGBA" in writable else "RGB")


def encode_image(image: Image.Image, output_format: str) -> bytes:
    pil_format = _PIL_FORMATS[output_format]
    buffer = io.BytesIO()
    _prepare_mode(image, pil_format).save(buffer, format=pil_format)
    return buffer.getvalue()


def transform_image(data: bytes, transform: ImageTransform, *, max_pixels: int) -> bytes:
    """Decode *data*, apply *transform* and return the encoded bytes."""

    with _open(data, max_pixels=max_pixels) as image:
        try:
            image.load()
            resized = resize_image(image, transform.width, transform.height, transform.fit)
            return encode_image(resized, transform.format)
        except (OSError, ValueError, KeyError) as error:
            LOGGER.debug("Image transform %s failed: %s", transform, error)
            raise ImageProcessingError(f"Image processing failed: {error}") from error


def imaging_available() -> bool:
    """Return ``True`` when Pillow can encode a minimal image."""

    try:
        encode_image(Image.new("RGB", (1, 1)), "png")
    except (OSError, ValueError):
        return False
    return True


__all__ = [
    "ImageInfo",
    "ImageProcessingError",
    "ImageTransform",
    "InvalidImageError",
    "encode_image",
    "imaging_available",
    "probe_image",
    "resize_image",
    "transform_image",
]
