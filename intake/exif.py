"""
Capture metadata reader.

Extracts the camera make, camera model and original capture date from the
EXIF block of raw image bytes. Missing or unreadable EXIF data yields an
empty CaptureInfo; it never fails an intake item.
"""

import io
import logging
from dataclasses import dataclass
from datetime import datetime

import piexif
from PIL import Image

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CaptureInfo:
    """Device and date information recorded by the camera."""
    camera_make: str | None = None
    camera_model: str | None = None
    date_taken: datetime | None = None


def read_capture_info(data: bytes) -> CaptureInfo:
    """
    Read capture information from image bytes.

    Args:
        data: Raw image bytes.

    Returns:
        CaptureInfo, with None for anything not present.
    """
    try:
        with Image.open(io.BytesIO(data)) as img:
            exif_bytes = img.info.get("exif")
        if not exif_bytes:
            return CaptureInfo()

        exif_dict = piexif.load(exif_bytes)
    except Exception as e:
        logger.debug(f"Could not extract EXIF: {e}")
        return CaptureInfo()

    # Camera info lives in the 0th IFD, the capture date in the Exif IFD
    ifd_0 = exif_dict.get("0th", {})
    exif_ifd = exif_dict.get("Exif", {})

    date_str = _decode_exif_string(exif_ifd.get(piexif.ExifIFD.DateTimeOriginal))

    return CaptureInfo(
        camera_make=_decode_exif_string(ifd_0.get(piexif.ImageIFD.Make)),
        camera_model=_decode_exif_string(ifd_0.get(piexif.ImageIFD.Model)),
        date_taken=_parse_exif_date(date_str) if date_str else None,
    )


def _decode_exif_string(value: bytes | str | None) -> str | None:
    """Decode EXIF string value."""
    if value is None:
        return None
    if isinstance(value, bytes):
        try:
            text = value.decode("utf-8")
        except UnicodeDecodeError:
            text = value.decode("latin-1")
    else:
        text = str(value)
    text = text.strip().rstrip("\x00").strip()
    return text or None


def _parse_exif_date(date_str: str) -> datetime | None:
    """Parse EXIF date string to datetime."""
    # EXIF format: "YYYY:MM:DD HH:MM:SS"
    for fmt in ("%Y:%m:%d %H:%M:%S", "%Y-%m-%d %H:%M:%S"):
        try:
            return datetime.strptime(date_str, fmt)
        except ValueError:
            continue
    logger.debug(f"Could not parse date: {date_str}")
    return None
