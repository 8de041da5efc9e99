"""Tests for the media preprocessor."""

import io

import pytest
from PIL import Image

from intake.errors import ImageDecodeError
from intake.preprocessor import MediaPreprocessor


def open_image(data: bytes) -> Image.Image:
    img = Image.open(io.BytesIO(data))
    img.load()
    return img


class TestTargetSize:

    @pytest.mark.parametrize("size,expected", [
        ((4000, 3000), (1600, 1200)),
        ((1600, 900), (1600, 900)),
        ((800, 600), (800, 600)),
        ((3201, 1), (1600, 1)),
    ])
    def test_width_is_capped(self, size, expected):
        assert MediaPreprocessor(max_width=1600).target_size(*size) == expected


class TestProcess:

    def test_large_image_is_downscaled(self, make_image):
        processor = MediaPreprocessor(max_width=100)

        result = processor.process(make_image(400, 300))

        assert (result.width, result.height) == (100, 75)
        assert result.mime_type == "image/jpeg"
        assert open_image(result.data).size == (100, 75)

    def test_small_image_is_never_upscaled(self, make_image):
        result = MediaPreprocessor(max_width=1600).process(make_image(120, 80, fmt="PNG"))

        assert (result.width, result.height) == (120, 80)
        assert open_image(result.data).format == "JPEG"

    def test_conforming_jpeg_passes_through(self, make_image):
        data = make_image(200, 100)

        result = MediaPreprocessor(max_width=1600).process(data)

        assert result.data == data

    def test_transparent_png_is_flattened_for_jpeg(self, make_image):
        data = make_image(50, 50, color=(10, 20, 30, 128), fmt="PNG", mode="RGBA")

        result = MediaPreprocessor().process(data)

        assert open_image(result.data).mode == "RGB"

    def test_webp_output(self, make_image):
        result = MediaPreprocessor(max_width=40, output_format="image/webp").process(make_image(80, 80))

        assert result.mime_type == "image/webp"
        assert result.extension == "webp"
        assert open_image(result.data).format == "WEBP"

    def test_exif_orientation_is_applied(self, make_image):
        exif = Image.Exif()
        exif[0x0112] = 6  # rotated 90 degrees
        data = make_image(80, 40, exif=exif.tobytes())

        result = MediaPreprocessor().process(data)

        assert (result.width, result.height) == (40, 80)

    @pytest.mark.parametrize("data", [
        b"",
        b"not an image at all",
        b"\xff\xd8\xff\xe0" + b"\x00" * 32,
    ])
    def test_undecodable_bytes_raise(self, data):
        with pytest.raises(ImageDecodeError):
            MediaPreprocessor().process(data)

    def test_truncated_image_raises(self, make_image):
        data = make_image(300, 300, fmt="PNG")

        with pytest.raises(ImageDecodeError):
            MediaPreprocessor().process(data[: len(data) // 2])


@pytest.mark.parametrize("kwargs", [
    {"max_width": 0},
    {"quality": 0},
    {"quality": 1.5},
    {"output_format": "image/gif"},
])
def test_invalid_settings_are_rejected(kwargs):
    with pytest.raises(ValueError):
        MediaPreprocessor(**kwargs)
