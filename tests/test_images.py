import io

import pytest
from PIL import Image

from media_service.processing.images import (
    ImageTransform,
    InvalidImageError,
    encode_image,
    imaging_available,
    probe_image,
    resize_image,
    transform_image,
)

MAX_PIXELS = 50 * 1024 * 1024


def _decode(data: bytes) -> Image.Image:
    image = Image.open(io.BytesIO(data))
    image.load()
    return image


@pytest.mark.parametrize(
    "fit, expected",
    [
        ("cover", (20, 20)),
        ("contain", (20, 20)),
        ("fill", (20, 20)),
        ("inside", (20, 10)),
        ("outside", (40, 20)),
    ],
)
def test_resize_fit_modes(fit: str, expected) -> None:
    image = Image.new("RGB", (40, 20), (10, 20, 30))

    assert resize_image(image, 20, 20, fit).size == expected


def test_resize_with_single_dimension_keeps_aspect_ratio() -> None:
    image = Image.new("RGB", (40, 20))

    assert resize_image(image, 10, None, "cover").size == (10, 5)
    assert resize_image(image, None, 40, "fill").size == (80, 40)
    assert resize_image(image, None, None, "cover") is image


def test_transform_image_converts_format_and_size(png_bytes: bytes) -> None:
    output = transform_image(
        png_bytes, ImageTransform(format="webp", width=10, height=10, fit="cover"), max_pixels=MAX_PIXELS
    )

    decoded = _decode(output)
    assert decoded.format == "WEBP"
    assert decoded.size == (10, 10)


def test_transform_image_flattens_alpha_for_jpeg(image_bytes) -> None:
    data = image_bytes(mode="RGBA", color=(0, 0, 255, 128))

    decoded = _decode(transform_image(data, ImageTransform(format="jpg"), max_pixels=MAX_PIXELS))

    assert decoded.format == "JPEG"
    assert decoded.mode == "RGB"
    assert decoded.size == (40, 20)


@pytest.mark.parametrize(
    "output_format, pil_format",
    [("png", "PNG"), ("gif", "GIF"), ("tiff", "TIFF"), ("webp", "WEBP"), ("jpg", "JPEG")],
)
def test_transform_image_accepts_cmyk_jpeg(image_bytes, output_format: str, pil_format: str) -> None:
    data = image_bytes(mode="CMYK", color=(0, 120, 200, 10), image_format="JPEG")

    decoded = _decode(transform_image(data, ImageTransform(format=output_format), max_pixels=MAX_PIXELS))

    assert decoded.format == pil_format
    assert decoded.mode != "CMYK"
    assert decoded.size == (40, 20)


@pytest.mark.parametrize("output_format", ["png", "gif", "tiff"])
def test_encode_image_converts_unwritable_modes(output_format: str) -> None:
    image = Image.new("YCbCr", (6, 4), (120, 100, 150))

    decoded = _decode(encode_image(image, output_format))

    assert decoded.size == (6, 4)
    assert decoded.mode in ("RGB", "P")


def test_corrupt_input_is_a_client_error() -> None:
    with pytest.raises(InvalidImageError) as excinfo:
        transform_image(b"definitely not an image", ImageTransform(), max_pixels=MAX_PIXELS)

    assert excinfo.value.status_code == 400


def test_pixel_limit_is_enforced(png_bytes: bytes) -> None:
    with pytest.raises(InvalidImageError) as excinfo:
        probe_image(png_bytes, max_pixels=100)

    assert "pixel limit" in excinfo.value.message


def test_probe_image_reads_header(image_bytes) -> None:
    info = probe_image(image_bytes(size=(7, 3), image_format="GIF", mode="L", color=0), max_pixels=MAX_PIXELS)

    assert (info.width, info.height, info.format) == (7, 3, "GIF")


def test_imaging_available() -> None:
    assert imaging_available() is True
