"""
Capture-date extraction from screenshot metadata.

Priority: EXIF DateTimeOriginal -> TIFF DateTime. Absence means the date
is unknown; it is never silently defaulted to "now".
"""

import io
import logging
from datetime import datetime
from typing import Optional

from PIL import Image, UnidentifiedImageError

logger = logging.getLogger(__name__)

EXIF_IFD_POINTER = 0x8769
EXIF_DATETIME_ORIGINAL = 0x9003
TIFF_DATETIME = 0x0132

EXIF_DATE_FORMAT = "%Y:%m:%d %H:%M:%S"


def extract_capture_date(image_data: bytes) -> Optional[datetime]:
    """
    Extract the capture date from image metadata.

    Args:
        image_data: Raw image bytes

    Returns:
        Naive local datetime, or None if no usable metadata exists
    """
    try:
        with Image.open(io.BytesIO(image_data)) as image:
            exif = image.getexif()
    except (UnidentifiedImageError, OSError) as e:
        logger.debug("Cannot read image metadata", extra={"error": str(e)})
        return None

    if not exif:
        return None

    original = exif.get_ifd(EXIF_IFD_POINTER).get(EXIF_DATETIME_ORIGINAL)
    date = _parse_exif_date(original)
    if date is not None:
        return date

    return _parse_exif_date(exif.get(TIFF_DATETIME))


def _parse_exif_date(value) -> Optional[datetime]:
    # EXIF format: "yyyy:MM:dd HH:mm:ss"
    if not value or not isinstance(value, str):
        return None
    try:
        return datetime.strptime(value.strip().rstrip('\x00'), EXIF_DATE_FORMAT)
    except ValueError:
        return None
