"""
EXIF metadata extraction.

Reads GPS coordinates and the flat tag map from image files with Pillow.
Failures never propagate: a file that cannot be read simply has no metadata.
"""

from dataclasses import dataclass
from io import BytesIO
from pathlib import Path
from typing import Any, Dict, Optional, Sequence, Union

from PIL import ExifTags, Image

from .logger import get_logger

logger = get_logger(__name__)

GPS_IFD = 0x8825
GPS_LATITUDE_REF = 1
GPS_LATITUDE = 2
GPS_LONGITUDE_REF = 3
GPS_LONGITUDE = 4

ImageSource = Union[str, Path, bytes]


@dataclass(frozen=True)
class GeoTag:
    """A decoded GPS position in decimal degrees."""
    lat: float
    lng: float

    def describe(self) -> str:
        return f"{self.lat:.4f}, {self.lng:.4f}"


def _open(source: ImageSource) -> Image.Image:
    if isinstance(source, (bytes, bytearray)):
        return Image.open(BytesIO(source))
    return Image.open(Path(source))


def dms_to_degrees(dms: Sequence[Any], ref: str = "N") -> float:
    """Convert a (degrees, minutes, seconds) triple to signed decimal degrees."""
    degrees, minutes, seconds = (float(v) for v in dms)
    value = degrees + minutes / 60 + seconds / 3600
    if str(ref).upper() in ("S", "W"):
        value = -value
    return value


def extract_gps(source: ImageSource) -> Optional[GeoTag]:
    """
    Read GPS coordinates from an image's EXIF block.

    Args:
        source: Image path or raw bytes

    Returns:
        GeoTag or None when the image has no usable GPS data
    """
    try:
        with _open(source) as image:
            gps = image.getexif().get_ifd(GPS_IFD)
    except Exception as e:
        logger.warning(f"Could not read EXIF GPS data: {e}")
        return None

    lat = gps.get(GPS_LATITUDE)
    lng = gps.get(GPS_LONGITUDE)
    if not lat or not lng:
        return None

    try:
        return GeoTag(
            lat=dms_to_degrees(lat, gps.get(GPS_LATITUDE_REF, "N")),
            lng=dms_to_degrees(lng, gps.get(GPS_LONGITUDE_REF, "E")),
        )
    except (TypeError, ValueError, ZeroDivisionError) as e:
        logger.warning(f"Malformed GPS coordinates in EXIF: {e}")
        return None


def extract_tags(source: ImageSource) -> Dict[str, Any]:
    """Return the image's top-level EXIF tags keyed by tag name."""
    try:
        with _open(source) as image:
            exif = image.getexif()
    except Exception as e:
        logger.warning(f"Could not read EXIF tags: {e}")
        return {}

    return {ExifTags.TAGS.get(tag_id, str(tag_id)): value for tag_id, value in exif.items()}
