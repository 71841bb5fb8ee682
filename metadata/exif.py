"""EXIF rating/date access.

The TIFF-structured EXIF block is located at container level (JPEG APP1,
PNG ``eXIf`` or legacy raw-profile text chunk, WebP ``EXIF`` chunk) and read or
rebuilt with Pillow's ``Image.Exif``. Pixel data is never decoded.
"""
import dataclasses
import logging
from typing import Any, Callable, Optional

from PIL import ExifTags, Image

from core.errors import FormatError, MetadataDecodeError, MetadataEncodeError, UnsupportedVariantError
from formats import jpeg, png, webp
from formats.image_format import ImageFormat
from metadata.rating import rating_to_percent, resolve_rating

logger = logging.getLogger(__name__)

TAG_DATE_TIME = 306
TAG_RATING = 18246
TAG_RATING_PERCENT = 18249
TAG_DATE_TIME_ORIGINAL = 36867
TAG_DATE_TIME_DIGITIZED = 36868

EXIF_HEADER = jpeg.EXIF_IDENTIFIER
RAW_PROFILE_KEYWORD = "Raw profile type exif"


@dataclasses.dataclass
class ExifInfo:
    date_time_original: Optional[str] = None
    create_date: Optional[str] = None
    modify_date: Optional[str] = None
    rating: Optional[int] = None
    rating_percent: Optional[int] = None

    @property
    def resolved_rating(self) -> Optional[int]:
        return resolve_rating(self.rating, self.rating_percent)

    def has_values(self) -> bool:
        return any(v is not None for v in dataclasses.astuple(self))


# ---------------------------------------------------------------------------
# Value conversion
# ---------------------------------------------------------------------------

def _as_text(value: Any) -> Optional[str]:
    if isinstance(value, (tuple, list)):
        value = value[0] if value else None
    if value is None:
        return None
    if isinstance(value, bytes):
        value = value.decode("ascii", "replace")
    text = str(value).strip("\x00").strip()
    return text or None


def _as_int(value: Any) -> Optional[int]:
    if isinstance(value, (tuple, list)):
        value = value[0] if value else None
    if value is None:
        return None
    if isinstance(value, bytes):
        value = value.decode("ascii").strip("\x00")
    return int(str(value).strip())


def _read_tag(ifd, tag: int, convert: Callable[[Any], Any]):
    """Read and convert one tag, returning None when it is absent or undecodable."""
    try:
        return convert(ifd.get(tag))
    except Exception as e:  # why: Pillow raises assorted errors for corrupt entries; one bad tag must not abort the read
        logger.debug("Skipping undecodable EXIF tag %d: %s", tag, e)
        return None


# ---------------------------------------------------------------------------
# Raw profile text chunks (ImageMagick / exiftool convention for PNG)
# ---------------------------------------------------------------------------

def decode_raw_profile(text: str) -> bytes:
    """Decode ``\\nexif\\n  <len>\\n<hex lines>`` into TIFF bytes."""
    lines = text.strip().splitlines()
    if len(lines) < 3:
        raise ValueError("Raw profile too short")
    length = int(lines[1].strip())
    payload = bytes.fromhex("".join(line.strip() for line in lines[2:]))[:length]
    if payload.startswith(EXIF_HEADER):
        payload = payload[len(EXIF_HEADER):]
    return payload


def encode_raw_profile(tiff: bytes) -> str:
    payload = EXIF_HEADER + tiff
    hex_text = payload.hex()
    lines = [hex_text[i:i + 72] for i in range(0, len(hex_text), 72)]
    return "\nexif\n%8d\n%s\n" % (len(payload), "\n".join(lines))


def _is_raw_profile(chunk: png.PngChunk) -> bool:
    return png.text_keyword(chunk) == RAW_PROFILE_KEYWORD


# ---------------------------------------------------------------------------
# Locating and replacing the EXIF block
# ---------------------------------------------------------------------------

def extract_exif_block(data, fmt: ImageFormat) -> Optional[bytes]:
    """Return the raw TIFF block (without the ``Exif\\0\\0`` header), or None."""
    if fmt is ImageFormat.JPEG:
        found = jpeg.find_app1(data, EXIF_HEADER)
        return found[1] if found else None

    if fmt is ImageFormat.WEBP:
        block = webp.find_chunk(data, webp.EXIF)
        if block and block.startswith(EXIF_HEADER):
            block = block[len(EXIF_HEADER):]
        return block

    layout = png.parse(data)
    index = layout.find(png.EXIF)
    if index is not None:
        return layout.chunks[index].data
    for chunk, keyword, text in png.iter_text(layout):
        if keyword == RAW_PROFILE_KEYWORD:
            try:
                return decode_raw_profile(text)
            except ValueError as e:
                logger.debug("Ignoring malformed EXIF raw profile: %s", e)
    return None


def embed_exif_block(data, fmt: ImageFormat, tiff: bytes) -> bytes:
    """Write tiff back into the container where the EXIF block lives.

    PNG: an existing ``eXIf`` (or raw-profile) chunk is replaced in place; a new
    ``eXIf`` chunk goes before the first IDAT. JPEG: the Exif APP1 segment is
    replaced in place or inserted right after SOI.
    """
    if fmt is ImageFormat.JPEG:
        return jpeg.upsert_app1(data, EXIF_HEADER, tiff)
    if fmt is not ImageFormat.PNG:
        raise UnsupportedVariantError(f"Writing EXIF is not supported for {fmt.value}")

    layout = png.parse(data)
    index = layout.find(png.EXIF)
    if index is not None:
        layout.chunks[index] = png.PngChunk.build(png.EXIF, tiff)
        return layout.to_bytes()

    for chunk_type in png.TEXT_CHUNK_TYPES:
        index = layout.find(chunk_type, _is_raw_profile)
        if index is None:
            continue
        text = encode_raw_profile(tiff)
        if chunk_type == png.ITXT:
            layout.chunks[index] = png.build_itxt(RAW_PROFILE_KEYWORD, text)
        else:
            layout.chunks[index] = png.build_text(chunk_type, RAW_PROFILE_KEYWORD, text)
        return layout.to_bytes()

    layout.insert_before(png.IDAT, png.PngChunk.build(png.EXIF, tiff))
    return layout.to_bytes()


# ---------------------------------------------------------------------------
# Decode / encode
# ---------------------------------------------------------------------------

def _load(tiff: bytes) -> Image.Exif:
    exif = Image.Exif()
    try:
        exif.load(tiff)
    except Exception as e:  # why: Pillow signals a bad TIFF header with SyntaxError and friends
        raise MetadataDecodeError(f"Unreadable EXIF container: {e}") from e
    return exif


def decode_exif(tiff: bytes) -> ExifInfo:
    """Read the fixed tag set from a TIFF block.

    Individual tags that fail to decode are skipped. Raises MetadataDecodeError
    only when the container itself is unreadable.
    """
    exif = _load(tiff)
    info = ExifInfo(
        modify_date=_read_tag(exif, TAG_DATE_TIME, _as_text),
        rating=_read_tag(exif, TAG_RATING, _as_int),
        rating_percent=_read_tag(exif, TAG_RATING_PERCENT, _as_int),
    )
    try:
        exif_ifd = exif.get_ifd(ExifTags.IFD.Exif)
    except Exception as e:  # why: a broken sub-IFD pointer only loses the dates stored there
        logger.debug("Skipping unreadable Exif sub-IFD: %s", e)
        exif_ifd = {}
    info.date_time_original = _read_tag(exif_ifd, TAG_DATE_TIME_ORIGINAL, _as_text)
    info.create_date = _read_tag(exif_ifd, TAG_DATE_TIME_DIGITIZED, _as_text)
    if info.date_time_original is None:
        info.date_time_original = _read_tag(exif, TAG_DATE_TIME_ORIGINAL, _as_text) or info.modify_date
    return info


def read_exif(data, fmt: ImageFormat) -> Optional[ExifInfo]:
    """EXIF info for an image, or None when it carries none or it is unreadable."""
    try:
        block = extract_exif_block(data, fmt)
    except FormatError as e:
        logger.debug("Cannot locate EXIF block: %s", e)
        return None
    if not block:
        return None
    try:
        info = decode_exif(block)
    except MetadataDecodeError as e:
        logger.debug("%s", e)
        return None
    return info if info.has_values() else None


def set_rating_tags(tiff: Optional[bytes], rating: int) -> bytes:
    """Return a TIFF block with Rating/RatingPercent set and every other tag kept."""
    percent = rating_to_percent(rating)
    if tiff:
        try:
            exif = _load(tiff)
        except MetadataDecodeError as e:
            raise MetadataEncodeError(str(e)) from e
    else:
        exif = Image.Exif()
    exif[TAG_RATING] = rating
    exif[TAG_RATING_PERCENT] = percent
    try:
        raw = exif.tobytes()
    except Exception as e:  # why: Pillow cannot re-serialize some exotic tag types
        raise MetadataEncodeError(f"Failed to serialize EXIF: {e}") from e
    if raw.startswith(EXIF_HEADER):
        raw = raw[len(EXIF_HEADER):]
    return raw


def write_exif_rating(data, fmt: ImageFormat, rating: int) -> bytes:
    """Return new file bytes with the EXIF rating tags updated."""
    if not fmt.supports_rating_write:
        raise UnsupportedVariantError(f"Rating write is not supported for {fmt.value}")
    try:
        block = extract_exif_block(data, fmt)
    except FormatError as e:
        raise MetadataEncodeError(f"Cannot locate EXIF block: {e}") from e
    return embed_exif_block(data, fmt, set_rating_tags(block, rating))
