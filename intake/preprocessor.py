"""
Media preprocessing for the intake pipeline.

Turns a raw captured image into a bounded-size encoded image suitable for
sending to the AI model and the catalog store:
- EXIF orientation applied
- Width capped at a maximum, height scaled proportionally, never upscaled
- Re-encoded in a fixed lossy format at a fixed quality
"""

import io
import logging

from PIL import ExifTags, Image, ImageOps, UnidentifiedImageError

from intake.errors import ImageDecodeError
from intake.models import EncodedImage

logger = logging.getLogger(__name__)

# Default preprocessing settings
DEFAULT_MAX_WIDTH = 1600
DEFAULT_QUALITY = 0.85
DEFAULT_OUTPUT_FORMAT = "image/jpeg"

PIL_FORMATS = {
    "image/jpeg": "JPEG",
    "image/webp": "WEBP",
    "image/png": "PNG",
}


class MediaPreprocessor:
    """
    Resizes and re-encodes images.

    The output dimensions depend only on the input dimensions and the
    configured maximum width; the encoded bytes may vary between Pillow
    versions.
    """

    def __init__(
        self,
        max_width: int = DEFAULT_MAX_WIDTH,
        quality: float = DEFAULT_QUALITY,
        output_format: str = DEFAULT_OUTPUT_FORMAT
    ):
        """
        Initialize the preprocessor.

        Args:
            max_width: Maximum output width in pixels.
            quality: Encoding quality as a fraction in (0, 1].
            output_format: Output mime type (image/jpeg, image/webp, image/png).
        """
        if max_width < 1:
            raise ValueError(f"max_width must be positive, got {max_width}")
        if not 0 < quality <= 1:
            raise ValueError(f"quality must be in (0, 1], got {quality}")
        if output_format not in PIL_FORMATS:
            raise ValueError(f"Unsupported output format: {output_format}")

        self.max_width = max_width
        self.quality = quality
        self.output_format = output_format

    def process(self, data: bytes) -> EncodedImage:
        """
        Produce the bounded, encoded form of an image.

        Args:
            data: Raw image bytes of any dimensions.

        Returns:
            EncodedImage in the configured format.

        Raises:
            ImageDecodeError: If the bytes cannot be decoded as an image.
        """
        if not data:
            raise ImageDecodeError("Empty image data")

        try:
            with Image.open(io.BytesIO(data)) as img:
                img.load()
                source_format = img.format
                orientation = img.getexif().get(ExifTags.Base.Orientation, 1)

                # Already upright, small enough and in the right encoding
                if (
                    orientation == 1
                    and img.width <= self.max_width
                    and source_format == PIL_FORMATS[self.output_format]
                ):
                    width, height = img.size
                    logger.debug(f"Passing through {width}x{height} {source_format} image")
                    return EncodedImage(self.output_format, data, width, height)

                oriented = ImageOps.exif_transpose(img)
                width, height = oriented.size
                new_width, new_height = self.target_size(width, height)
                encoded = self._encode(oriented, new_width, new_height)

        except (UnidentifiedImageError, Image.DecompressionBombError) as e:
            raise ImageDecodeError(f"Could not decode image: {e}") from e
        except (OSError, ValueError, SyntaxError) as e:
            raise ImageDecodeError(f"Corrupt image data: {e}") from e

        logger.debug(
            f"Preprocessed {width}x{height} {source_format} -> "
            f"{new_width}x{new_height} {self.output_format} ({len(encoded)} bytes)"
        )
        return EncodedImage(self.output_format, encoded, new_width, new_height)

    def target_size(self, width: int, height: int) -> tuple[int, int]:
        """Output dimensions for an input size: capped width, same aspect ratio."""
        if width <= self.max_width:
            return width, height
        scale = self.max_width / width
        return self.max_width, max(1, round(height * scale))

    def _encode(self, img: Image.Image, width: int, height: int) -> bytes:
        """Resize and encode an opened image."""
        pil_format = PIL_FORMATS[self.output_format]

        # JPEG has no alpha channel or palette
        if pil_format == "JPEG" and img.mode != "RGB":
            img = img.convert("RGB")

        if (width, height) != img.size:
            img = img.resize((width, height), Image.Resampling.LANCZOS)

        buffer = io.BytesIO()
        save_kwargs = {"format": pil_format, "optimize": True}
        if pil_format in ("JPEG", "WEBP"):
            save_kwargs["quality"] = max(1, round(self.quality * 100))
        img.save(buffer, **save_kwargs)
        return buffer.getvalue()
