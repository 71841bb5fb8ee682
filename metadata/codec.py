"""Combined EXIF + XMP view of an image's rating and capture dates."""
import dataclasses
import logging
from typing import Optional

from core.errors import FormatError, MetadataError, UnsupportedVariantError
from core.models import CaptureDates, GenerationParameters
from formats import png
from formats.image_format import ImageFormat
from metadata import exif, xmp
from metadata.rating import validate_rating
from metadata.sd_parameters import extract_generation_parameters

logger = logging.getLogger(__name__)


@dataclasses.dataclass
class EmbeddedMetadata:
    rating: Optional[int] = None
    capture_dates: CaptureDates = dataclasses.field(default_factory=CaptureDates)
    generation_parameters: Optional[GenerationParameters] = None


def resolve_embedded_rating(exif_info: Optional[exif.ExifInfo],
                            xmp_info: Optional[xmp.XmpInfo]) -> Optional[int]:
    """EXIF wins whenever it yields a rating; XMP is the fallback."""
    if exif_info is not None:
        rating = exif_info.resolved_rating
        if rating is not None:
            return rating
    if xmp_info is not None:
        return xmp_info.resolved_rating
    return None


def _first(*values):
    for value in values:
        if value is not None:
            return value
    return None


def read_embedded_metadata(data, fmt: ImageFormat) -> EmbeddedMetadata:
    """Collect rating, dates and generation parameters from data.

    Never raises for damaged metadata; whatever cannot be read is left None.
    """
    exif_info = exif.read_exif(data, fmt)
    xmp_info = xmp.read_xmp(data, fmt)
    e = exif_info or exif.ExifInfo()
    x = xmp_info or xmp.XmpInfo()

    result = EmbeddedMetadata(
        rating=resolve_embedded_rating(exif_info, xmp_info),
        capture_dates=CaptureDates(
            original=_first(e.date_time_original, x.date_time_original),
            created=_first(e.create_date, x.create_date),
            modified=_first(e.modify_date, x.modify_date),
        ),
    )

    if fmt is ImageFormat.PNG:
        try:
            result.generation_parameters = extract_generation_parameters(png.parse(data))
        except FormatError as err:
            logger.debug("Skipping generation parameters: %s", err)
    return result


def embed_rating(data, fmt: ImageFormat, rating: int) -> bytes:
    """Return new file bytes carrying rating in both EXIF and XMP.

    EXIF failures raise MetadataEncodeError. An XMP failure is logged and the
    EXIF-only result is returned.
    """
    validate_rating(rating)
    if not fmt.supports_rating_write:
        raise UnsupportedVariantError(f"Rating write is not supported for {fmt.value} files")

    updated = exif.write_exif_rating(data, fmt, rating)
    try:
        updated = xmp.write_xmp_rating(updated, fmt, rating)
    except (FormatError, MetadataError) as err:
        logger.warning(f"XMP rating update failed, keeping EXIF only: {err}")
    return updated
